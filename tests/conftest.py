from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from task_center.api.main import create_app
from task_center.config.settings import Settings
from task_center.engine.status import TaskStatusEngine
from task_center.errors import ConsoleError
from task_center.storage.memory import InMemoryConsoleStorage
from task_center.storage.models import (
    CreateTaskRequest,
    ProfileCreate,
    ScriptCreate,
    TaskRecord,
    TaskStatus,
    WorkerCreate,
)


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Simulated clock: timers only fire when the test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def live(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted(
                (timer for timer in self.live() if timer.when <= target),
                key=lambda timer: timer.when,
            )
            if not due:
                break
            timer = due[0]
            self.now = timer.when
            timer.fired = True
            timer.callback()
        self.now = target


class FakeGateway:
    """Engine-backed gateway with failure injection and per-status holds."""

    def __init__(self, engine: TaskStatusEngine) -> None:
        self.engine = engine
        self.calls: list[tuple[int, TaskStatus]] = []
        self.failures: list[ConsoleError] = []
        self.holds: dict[TaskStatus, asyncio.Event] = {}

    def hold(self, status: TaskStatus) -> asyncio.Event:
        """Block transitions to `status` until the returned event is set."""
        return self.holds.setdefault(status, asyncio.Event())

    async def transition(self, task_id: int, status: TaskStatus) -> TaskRecord:
        self.calls.append((task_id, status))
        hold = self.holds.get(status)
        if hold is not None:
            await hold.wait()
        if self.failures:
            raise self.failures.pop(0)
        return self.engine.request_transition(task_id, status)

    async def list_tasks(self) -> list[TaskRecord]:
        return self.engine.list_tasks()


class Seed:
    """Ids of one worker, one script and one profile created for each test."""

    def __init__(self, storage: InMemoryConsoleStorage) -> None:
        self.storage = storage
        self.worker_id = storage.create_worker(
            WorkerCreate(username="alice", password="s3cret")
        ).id
        self.script_id = storage.create_script(
            ScriptCreate(name="checkout", content="await page.goto('https://example.com');")
        ).id
        self.profile_id = storage.create_profile(ProfileCreate(name="desktop-ny")).id

    def task(
        self,
        status: TaskStatus = TaskStatus.NEW,
        *,
        profile_id: int | None = None,
    ) -> TaskRecord:
        record = self.storage.create_task(
            CreateTaskRequest(
                worker_id=self.worker_id,
                script_id=self.script_id,
                profile_id=profile_id,
            )
        )
        if status != TaskStatus.NEW:
            # Place the task directly; the table is exercised elsewhere.
            record = self.storage.update_task(record.id, {"status": status})
        return record


@pytest.fixture
def storage() -> InMemoryConsoleStorage:
    return InMemoryConsoleStorage()


@pytest.fixture
def seed(storage: InMemoryConsoleStorage) -> Seed:
    return Seed(storage)


@pytest.fixture
def engine(storage: InMemoryConsoleStorage) -> TaskStatusEngine:
    return TaskStatusEngine(storage)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_scheduler() -> Callable[[], ManualScheduler]:
    return ManualScheduler


@pytest.fixture
def gateway(engine: TaskStatusEngine) -> FakeGateway:
    return FakeGateway(engine)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend="memory",
        database_url="",
        refetch_interval_s=60.0,
        max_upload_bytes=4096,
    )


@pytest.fixture
def client(storage: InMemoryConsoleStorage, settings: Settings) -> Iterator[TestClient]:
    app = create_app(storage=storage, settings_override=settings)
    with TestClient(app) as test_client:
        yield test_client
