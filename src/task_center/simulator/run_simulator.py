"""Optimistic run simulator.

Keeps a local shadow of every task's status, flips a task to RUNNING the
moment a run is requested, and completes it after a fixed window. The server
stays authoritative: persists go through a gateway, failures roll the shadow
back to the last status the server confirmed, and a periodic refetch feeds
`reconcile`.

Timers live in one registry keyed by task id; arming always cancels the
previous handle first, so a task never has more than one pending completion.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import asdict, dataclass, replace
from typing import Any

from task_center.engine.status import ensure_allowed
from task_center.errors import ConsoleError, NotFoundError
from task_center.simulator.gateway import TaskGateway
from task_center.simulator.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from task_center.storage.models import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)

RUN_COMPLETION_DELAY_S = 30.0


@dataclass
class TaskShadow:
    task_id: int
    status: TaskStatus
    # Last status the server acknowledged; rollback target.
    confirmed_status: TaskStatus
    is_running: bool = False
    in_flight: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["confirmed_status"] = self.confirmed_status.value
        return payload


class RunSimulator:
    def __init__(self, gateway: TaskGateway, *, scheduler: Scheduler | None = None) -> None:
        self.gateway = gateway
        self.scheduler = scheduler or AsyncioScheduler()
        self._shadows: dict[int, TaskShadow] = {}
        self._timers: dict[int, TimerHandle] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._pending: set[asyncio.Task[TaskRecord]] = set()

    # Queries

    def shadow(self, task_id: int) -> TaskShadow | None:
        shadow = self._shadows.get(task_id)
        return replace(shadow) if shadow is not None else None

    def snapshot(self) -> list[TaskShadow]:
        return [replace(self._shadows[key]) for key in sorted(self._shadows)]

    def has_timer(self, task_id: int) -> bool:
        return task_id in self._timers

    def pending_timers(self) -> list[int]:
        return sorted(self._timers)

    def is_tracked(self, task_id: int) -> bool:
        return task_id in self._shadows

    # Intents

    def run(self, task_id: int) -> asyncio.Task[TaskRecord] | None:
        """Start a simulated run.

        Validation is local and raises before anything changes. The returned
        task resolves to the persisted record, or raises the persist error
        once the shadow has been rolled back. Running a task that is already
        RUNNING only re-arms its timer and returns None.
        """
        shadow = self._require(task_id)
        if shadow.status == TaskStatus.RUNNING:
            self._arm_timer(task_id)
            logger.info("simulator event=rearm task_id=%s", task_id)
            return None
        ensure_allowed(task_id, shadow.status, TaskStatus.RUNNING)
        self._cancel_timer(task_id)
        self._set_status(shadow, TaskStatus.RUNNING)
        shadow.last_error = None
        persist = self._persist(task_id, TaskStatus.RUNNING)
        self._arm_timer(task_id)
        logger.info("simulator event=run task_id=%s delay_s=%s", task_id, RUN_COMPLETION_DELAY_S)
        return persist

    def stop(self, task_id: int) -> asyncio.Task[TaskRecord]:
        shadow = self._require(task_id)
        ensure_allowed(task_id, shadow.status, TaskStatus.FAILED)
        self._cancel_timer(task_id)
        self._set_status(shadow, TaskStatus.FAILED)
        shadow.last_error = None
        logger.info("simulator event=stop task_id=%s", task_id)
        return self._persist(task_id, TaskStatus.FAILED)

    def forget(self, task_id: int) -> None:
        self._cancel_timer(task_id)
        self._locks.pop(task_id, None)
        if self._shadows.pop(task_id, None) is not None:
            logger.info("simulator event=forget task_id=%s", task_id)

    # Server state

    def reconcile(self, tasks: Iterable[TaskRecord]) -> None:
        """Merge a server task list into the shadows.

        Running the same list twice changes nothing the second time. Shadows
        with a persist in flight keep their optimistic status until the
        persist settles, and are not dropped by a list fetched before they
        appeared.
        """
        seen: set[int] = set()
        for task in tasks:
            seen.add(task.id)
            self.observe(task)

        stale = [
            task_id
            for task_id, shadow in self._shadows.items()
            if task_id not in seen and not shadow.in_flight
        ]
        for task_id in stale:
            self.forget(task_id)

    def observe(self, task: TaskRecord) -> None:
        """Merge one authoritative record, e.g. right after an API transition."""
        shadow = self._shadows.get(task.id)
        if shadow is None:
            shadow = TaskShadow(
                task_id=task.id,
                status=task.status,
                confirmed_status=task.status,
                is_running=task.status == TaskStatus.RUNNING,
            )
            self._shadows[task.id] = shadow
        else:
            shadow.confirmed_status = task.status
            if shadow.in_flight:
                return
            if shadow.status != task.status:
                logger.info(
                    "simulator event=reconciled task_id=%s local=%s server=%s",
                    task.id,
                    shadow.status.value,
                    task.status.value,
                )
                self._set_status(shadow, task.status)
        self._sync_timer(shadow)

    async def refresh(self) -> list[TaskShadow]:
        self.reconcile(await self.gateway.list_tasks())
        return self.snapshot()

    async def wait_idle(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_idle()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._shadows.clear()
        self._locks.clear()

    # Internals

    def _require(self, task_id: int) -> TaskShadow:
        shadow = self._shadows.get(task_id)
        if shadow is None:
            raise NotFoundError(f"Task {task_id} not found")
        return shadow

    @staticmethod
    def _set_status(shadow: TaskShadow, status: TaskStatus) -> None:
        shadow.status = status
        shadow.is_running = status == TaskStatus.RUNNING

    def _sync_timer(self, shadow: TaskShadow) -> None:
        if shadow.status != TaskStatus.RUNNING:
            self._cancel_timer(shadow.task_id)
        elif shadow.task_id not in self._timers:
            self._arm_timer(shadow.task_id)

    def _arm_timer(self, task_id: int) -> None:
        self._cancel_timer(task_id)
        self._timers[task_id] = self.scheduler.call_later(
            RUN_COMPLETION_DELAY_S, lambda: self._complete(task_id)
        )

    def _cancel_timer(self, task_id: int) -> None:
        handle = self._timers.pop(task_id, None)
        if handle is not None:
            handle.cancel()

    def _complete(self, task_id: int) -> None:
        self._timers.pop(task_id, None)
        shadow = self._shadows.get(task_id)
        if shadow is None or shadow.status != TaskStatus.RUNNING:
            return
        self._set_status(shadow, TaskStatus.COMPLETED)
        logger.info("simulator event=completed task_id=%s", task_id)
        self._persist(task_id, TaskStatus.COMPLETED)

    def _persist(self, task_id: int, status: TaskStatus) -> asyncio.Task[TaskRecord]:
        self._shadows[task_id].in_flight += 1
        task = asyncio.get_running_loop().create_task(self._write(task_id, status))
        self._pending.add(task)
        task.add_done_callback(self._reap)
        return task

    def _reap(self, task: asyncio.Task[TaskRecord]) -> None:
        self._pending.discard(task)
        if not task.cancelled():
            # Failures are already logged and rolled back by _write.
            task.exception()

    async def _write(self, task_id: int, status: TaskStatus) -> TaskRecord:
        lock = self._locks.setdefault(task_id, asyncio.Lock())
        try:
            async with lock:
                record = await self.gateway.transition(task_id, status)
        except ConsoleError as exc:
            shadow = self._settle(task_id)
            logger.warning(
                "simulator event=persist_failed task_id=%s status=%s error=%s",
                task_id,
                status.value,
                exc.message,
            )
            if isinstance(exc, NotFoundError):
                self.forget(task_id)
            elif shadow is not None:
                shadow.last_error = exc.message
                if shadow.in_flight == 0:
                    self._rollback(shadow)
            raise
        except BaseException:
            self._settle(task_id)
            raise

        shadow = self._settle(task_id)
        if shadow is not None:
            shadow.confirmed_status = record.status
            if shadow.in_flight == 0:
                self._set_status(shadow, record.status)
                self._sync_timer(shadow)
        return record

    def _settle(self, task_id: int) -> TaskShadow | None:
        shadow = self._shadows.get(task_id)
        if shadow is not None and shadow.in_flight > 0:
            shadow.in_flight -= 1
        return shadow

    def _rollback(self, shadow: TaskShadow) -> None:
        logger.info(
            "simulator event=rollback task_id=%s from=%s to=%s",
            shadow.task_id,
            shadow.status.value,
            shadow.confirmed_status.value,
        )
        self._set_status(shadow, shadow.confirmed_status)
        self._sync_timer(shadow)
