from __future__ import annotations

import itertools

import pytest

from task_center.engine.status import (
    TRANSITIONS,
    TaskStatusEngine,
    allowed_targets,
    is_allowed,
)
from task_center.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceFailure,
    TaskLockedError,
    ValidationError,
)
from task_center.storage.memory import InMemoryConsoleStorage
from task_center.storage.models import (
    CreateTaskRequest,
    ScriptCreate,
    TaskStatus,
    UpdateTaskRequest,
    WorkerCreate,
)

EXPECTED_PAIRS = {
    (TaskStatus.NEW, TaskStatus.READY),
    (TaskStatus.READY, TaskStatus.NEW),
    (TaskStatus.READY, TaskStatus.RUNNING),
    (TaskStatus.RUNNING, TaskStatus.COMPLETED),
    (TaskStatus.RUNNING, TaskStatus.FAILED),
    (TaskStatus.COMPLETED, TaskStatus.CONFIRMED),
    (TaskStatus.COMPLETED, TaskStatus.REJECTED),
    (TaskStatus.CONFIRMED, TaskStatus.REJECTED),
    (TaskStatus.REJECTED, TaskStatus.CONFIRMED),
    (TaskStatus.FAILED, TaskStatus.READY),
    (TaskStatus.FAILED, TaskStatus.RUNNING),
}


def test_transition_table_matches_seven_state_taxonomy() -> None:
    actual = {(current, target) for current, targets in TRANSITIONS.items() for target in targets}
    assert actual == EXPECTED_PAIRS
    assert set(TRANSITIONS) == set(TaskStatus)


def test_rejected_does_not_loop_back_to_completed() -> None:
    assert not is_allowed(TaskStatus.REJECTED, TaskStatus.COMPLETED)
    assert allowed_targets(TaskStatus.REJECTED) == frozenset({TaskStatus.CONFIRMED})


@pytest.mark.parametrize(
    ("current", "target"),
    list(itertools.product(TaskStatus, TaskStatus)),
)
def test_request_transition_succeeds_only_for_table_pairs(
    current: TaskStatus, target: TaskStatus, seed, engine: TaskStatusEngine
) -> None:
    task = seed.task(current)

    if (current, target) in EXPECTED_PAIRS:
        updated = engine.request_transition(task.id, target)
        assert updated.status == target
        assert updated.created_at == task.created_at
    else:
        with pytest.raises(InvalidTransitionError):
            engine.request_transition(task.id, target)
        assert engine.get_task(task.id).status == current


def test_activate_then_deactivate_round_trips(seed, engine: TaskStatusEngine) -> None:
    task = engine.create_task(
        CreateTaskRequest(worker_id=seed.worker_id, script_id=seed.script_id)
    )
    assert task.status == TaskStatus.NEW

    assert engine.activate(task.id).status == TaskStatus.READY
    assert engine.deactivate(task.id).status == TaskStatus.NEW


def test_completed_task_cannot_restart(seed, engine: TaskStatusEngine) -> None:
    task = seed.task(TaskStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError, match="cannot move from COMPLETED to RUNNING"):
        engine.request_transition(task.id, TaskStatus.RUNNING)

    assert engine.get_task(task.id).status == TaskStatus.COMPLETED


def test_review_helpers_follow_the_table(seed, engine: TaskStatusEngine) -> None:
    task = seed.task(TaskStatus.COMPLETED)

    assert engine.reject(task.id).status == TaskStatus.REJECTED
    assert engine.confirm(task.id).status == TaskStatus.CONFIRMED
    assert engine.reject(task.id).status == TaskStatus.REJECTED


def test_stop_only_applies_to_running(seed, engine: TaskStatusEngine) -> None:
    running = seed.task(TaskStatus.RUNNING)
    ready = seed.task(TaskStatus.READY)

    assert engine.stop(running.id).status == TaskStatus.FAILED
    with pytest.raises(InvalidTransitionError):
        engine.stop(ready.id)


def test_transition_on_missing_task_is_not_found(engine: TaskStatusEngine) -> None:
    with pytest.raises(NotFoundError):
        engine.request_transition(404, TaskStatus.READY)


def test_lost_race_is_revalidated_against_fresh_status(seed) -> None:
    class RacingStorage(InMemoryConsoleStorage):
        """Another writer deactivates the task just before our first write."""

        raced = False

        def compare_and_set_status(self, task_id, *, expected, status, changes=None):
            if not self.raced:
                self.raced = True
                self.update_task(task_id, {"status": TaskStatus.NEW})
            return super().compare_and_set_status(
                task_id, expected=expected, status=status, changes=changes
            )

    storage = RacingStorage()
    worker = seed.storage.get_worker(seed.worker_id)
    script = seed.storage.get_script(seed.script_id)
    storage._workers[worker.id] = worker
    storage._scripts[script.id] = script
    task = storage.create_task(
        CreateTaskRequest(worker_id=worker.id, script_id=script.id, status=TaskStatus.READY)
    )
    engine = TaskStatusEngine(storage)

    with pytest.raises(InvalidTransitionError, match="from NEW to RUNNING"):
        engine.request_transition(task.id, TaskStatus.RUNNING)
    assert storage.get_task(task.id).status == TaskStatus.NEW


def test_endless_contention_surfaces_as_retryable_failure(seed) -> None:
    class StubbornStorage(InMemoryConsoleStorage):
        def compare_and_set_status(self, task_id, *, expected, status, changes=None):
            return None

    storage = StubbornStorage()
    storage._workers[seed.worker_id] = seed.storage.get_worker(seed.worker_id)
    storage._scripts[seed.script_id] = seed.storage.get_script(seed.script_id)
    task = storage.create_task(
        CreateTaskRequest(worker_id=seed.worker_id, script_id=seed.script_id)
    )

    with pytest.raises(PersistenceFailure):
        TaskStatusEngine(storage).activate(task.id)


def test_contended_patch_writes_nothing(seed) -> None:
    class StubbornStorage(InMemoryConsoleStorage):
        def compare_and_set_status(self, task_id, *, expected, status, changes=None):
            return None

    storage = StubbornStorage()
    storage._workers[seed.worker_id] = seed.storage.get_worker(seed.worker_id)
    storage._scripts[seed.script_id] = seed.storage.get_script(seed.script_id)
    task = storage.create_task(
        CreateTaskRequest(worker_id=seed.worker_id, script_id=seed.script_id)
    )

    with pytest.raises(PersistenceFailure):
        TaskStatusEngine(storage).update_task(
            task.id,
            UpdateTaskRequest(profile_id=None, respond="queued", status=TaskStatus.READY),
        )
    assert storage.get_task(task.id) == task


def test_create_task_keeps_null_profile(seed, engine: TaskStatusEngine) -> None:
    task = engine.create_task(
        CreateTaskRequest(worker_id=seed.worker_id, script_id=seed.script_id, profile_id=None)
    )

    assert engine.get_task(task.id).profile_id is None


def test_create_task_may_start_ready(seed, engine: TaskStatusEngine) -> None:
    task = engine.create_task(
        CreateTaskRequest(
            worker_id=seed.worker_id,
            script_id=seed.script_id,
            status=TaskStatus.READY,
        )
    )
    assert task.status == TaskStatus.READY


def test_create_task_rejects_later_initial_status(seed, engine: TaskStatusEngine) -> None:
    with pytest.raises(ValidationError):
        engine.create_task(
            CreateTaskRequest(
                worker_id=seed.worker_id,
                script_id=seed.script_id,
                status=TaskStatus.COMPLETED,
            )
        )
    assert engine.list_tasks() == []


@pytest.mark.parametrize(
    ("field", "label"),
    [("worker_id", "Worker"), ("script_id", "Script"), ("profile_id", "Profile")],
)
def test_create_task_requires_existing_references(
    field: str, label: str, seed, engine: TaskStatusEngine
) -> None:
    payload = {"worker_id": seed.worker_id, "script_id": seed.script_id, "profile_id": None}
    payload[field] = 999

    with pytest.raises(NotFoundError, match=f"{label} 999 not found"):
        engine.create_task(CreateTaskRequest(**payload))


def test_new_task_fields_are_editable(seed, engine: TaskStatusEngine) -> None:
    task = seed.task()

    updated = engine.update_task(
        task.id,
        UpdateTaskRequest(profile_id=seed.profile_id, respond="use the EU proxy"),
    )

    assert updated.profile_id == seed.profile_id
    assert updated.respond == "use the EU proxy"


def test_explicit_null_profile_clears_it(seed, engine: TaskStatusEngine) -> None:
    task = seed.task(profile_id=seed.profile_id)

    updated = engine.update_task(task.id, UpdateTaskRequest(profile_id=None))

    assert updated.profile_id is None


@pytest.mark.parametrize("field", ["worker_id", "script_id", "profile_id"])
def test_fields_lock_once_task_leaves_new(field: str, seed, engine: TaskStatusEngine) -> None:
    task = seed.task(TaskStatus.READY)
    values = {
        "worker_id": seed.storage.create_worker(WorkerCreate(username="bob", password="pw")).id,
        "script_id": seed.storage.create_script(ScriptCreate(name="other", content="noop")).id,
        "profile_id": seed.profile_id,
    }

    with pytest.raises(TaskLockedError):
        engine.update_task(task.id, UpdateTaskRequest(**{field: values[field]}))
    assert engine.get_task(task.id) == task


def test_worker_reports_respond_with_status_change(seed, engine: TaskStatusEngine) -> None:
    task = seed.task(TaskStatus.READY)

    updated = engine.update_task(
        task.id,
        UpdateTaskRequest(status=TaskStatus.RUNNING, respond="Task started successfully"),
    )

    assert updated.status == TaskStatus.RUNNING
    assert updated.respond == "Task started successfully"
    assert engine.get_task(task.id) == updated


def test_respond_stays_writable_after_completion(seed, engine: TaskStatusEngine) -> None:
    task = seed.task(TaskStatus.COMPLETED)

    updated = engine.update_task(task.id, UpdateTaskRequest(respond="3 items in cart"))

    assert updated.respond == "3 items in cart"
    assert updated.status == TaskStatus.COMPLETED


def test_edit_lock_can_be_disabled(seed, storage: InMemoryConsoleStorage) -> None:
    engine = TaskStatusEngine(storage, enforce_edit_lock=False)
    task = seed.task(TaskStatus.COMPLETED)

    updated = engine.update_task(task.id, UpdateTaskRequest(profile_id=seed.profile_id))

    assert updated.profile_id == seed.profile_id
    assert updated.status == TaskStatus.COMPLETED


def test_unchanged_values_do_not_trip_the_lock(seed, engine: TaskStatusEngine) -> None:
    task = seed.task(TaskStatus.RUNNING)

    updated = engine.update_task(
        task.id,
        UpdateTaskRequest(worker_id=task.worker_id, status=TaskStatus.RUNNING),
    )

    assert updated == task


def test_status_in_patch_goes_through_the_table(seed, engine: TaskStatusEngine) -> None:
    task = seed.task()

    assert engine.update_task(task.id, UpdateTaskRequest(status=TaskStatus.READY)).status == (
        TaskStatus.READY
    )
    with pytest.raises(InvalidTransitionError):
        engine.update_task(task.id, UpdateTaskRequest(status=TaskStatus.CONFIRMED))
    assert engine.get_task(task.id).status == TaskStatus.READY


def test_illegal_status_in_patch_leaves_other_fields_untouched(
    seed, engine: TaskStatusEngine
) -> None:
    task = seed.task()

    with pytest.raises(InvalidTransitionError):
        engine.update_task(
            task.id,
            UpdateTaskRequest(respond="should not stick", status=TaskStatus.COMPLETED),
        )
    assert engine.get_task(task.id).respond == ""


def test_required_references_cannot_be_nulled(seed, engine: TaskStatusEngine) -> None:
    task = seed.task()

    with pytest.raises(ValidationError):
        engine.update_task(task.id, UpdateTaskRequest(script_id=None))


@pytest.mark.parametrize("status", list(TaskStatus))
def test_delete_is_allowed_from_any_state(
    status: TaskStatus, seed, engine: TaskStatusEngine
) -> None:
    task = seed.task(status)

    engine.delete_task(task.id)

    with pytest.raises(NotFoundError):
        engine.get_task(task.id)
    with pytest.raises(NotFoundError):
        engine.delete_task(task.id)


def test_status_counts_cover_every_status(seed, engine: TaskStatusEngine) -> None:
    seed.task()
    seed.task(TaskStatus.RUNNING)
    seed.task(TaskStatus.RUNNING)

    counts = engine.status_counts()

    assert counts["NEW"] == 1
    assert counts["RUNNING"] == 2
    assert counts["CONFIRMED"] == 0
    assert counts["total"] == 3
    assert set(counts) == {status.value for status in TaskStatus} | {"total"}


def test_list_tasks_filters(seed, engine: TaskStatusEngine) -> None:
    first = seed.task()
    seed.task(TaskStatus.READY)

    assert [task.id for task in engine.list_tasks(status=TaskStatus.NEW)] == [first.id]
    assert len(engine.list_tasks(worker_id=seed.worker_id)) == 2
    assert engine.list_tasks(worker_id=999) == []
