"""Task status state machine and the engine that persists transitions.

Transitions follow the seven-state taxonomy:

    NEW <=> READY                      operator activate / deactivate
    READY --> RUNNING                  worker pick-up (or simulated run)
    RUNNING --> COMPLETED | FAILED     worker result, operator stop
    COMPLETED --> CONFIRMED | REJECTED operator review
    CONFIRMED <=> REJECTED             operator changes the verdict
    FAILED --> READY | RUNNING         operator re-queue / re-run

Every other pair is rejected before anything is written.
"""

from __future__ import annotations

import logging
from typing import Any

from task_center.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceFailure,
    TaskLockedError,
    ValidationError,
)
from task_center.storage.base import ConsoleStorage
from task_center.storage.models import (
    TASK_EDITABLE_WHILE_NEW,
    CreateTaskRequest,
    TaskRecord,
    TaskStatus,
    UpdateTaskRequest,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.NEW: frozenset({TaskStatus.READY}),
    TaskStatus.READY: frozenset({TaskStatus.NEW, TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.CONFIRMED, TaskStatus.REJECTED}),
    TaskStatus.CONFIRMED: frozenset({TaskStatus.REJECTED}),
    TaskStatus.REJECTED: frozenset({TaskStatus.CONFIRMED}),
    TaskStatus.FAILED: frozenset({TaskStatus.READY, TaskStatus.RUNNING}),
}

# Statuses a task may be created with.
INITIAL_STATUSES = frozenset({TaskStatus.NEW, TaskStatus.READY})

# Compare-and-set retries before a contended transition is reported as retryable.
_CAS_ATTEMPTS = 3


def allowed_targets(current: TaskStatus) -> frozenset[TaskStatus]:
    return TRANSITIONS.get(current, frozenset())


def is_allowed(current: TaskStatus, target: TaskStatus) -> bool:
    return target in allowed_targets(current)


def ensure_allowed(task_id: int, current: TaskStatus, target: TaskStatus) -> None:
    if not is_allowed(current, target):
        raise InvalidTransitionError(task_id, current.value, target.value)


class TaskStatusEngine:
    """Single source of truth for task status once a transition is accepted."""

    def __init__(self, storage: ConsoleStorage, *, enforce_edit_lock: bool = True) -> None:
        self.storage = storage
        self.enforce_edit_lock = enforce_edit_lock

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        worker_id: int | None = None,
    ) -> list[TaskRecord]:
        return self.storage.list_tasks(status=status, worker_id=worker_id)

    def get_task(self, task_id: int) -> TaskRecord:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def status_counts(self) -> dict[str, int]:
        counts = self.storage.count_tasks_by_status()
        payload = {status.value: counts.get(status, 0) for status in TaskStatus}
        payload["total"] = sum(payload.values())
        return payload

    def create_task(self, payload: CreateTaskRequest) -> TaskRecord:
        if payload.status not in INITIAL_STATUSES:
            raise ValidationError(
                f"Tasks can only be created as NEW or READY, not {payload.status.value}"
            )
        self._check_references(payload.model_dump())
        task = self.storage.create_task(payload)
        logger.info(
            "task_create event=created task_id=%s status=%s worker_id=%s script_id=%s",
            task.id,
            task.status.value,
            task.worker_id,
            task.script_id,
        )
        return task

    def update_task(self, task_id: int, patch: UpdateTaskRequest) -> TaskRecord:
        """Apply a partial edit.

        Worker, profile and script only change while the task is NEW; `respond`
        is worker output and stays writable. A status in the patch is routed
        through the transition table and written together with the other
        fields; repeating the current status is not a transition.
        """
        changes: dict[str, Any] = patch.model_dump(exclude_unset=True)
        target = changes.pop("status", None)
        current = self.get_task(task_id)

        for required in ("worker_id", "script_id", "respond"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be null")

        edited = [
            field
            for field in TASK_EDITABLE_WHILE_NEW
            if field in changes and changes[field] != getattr(current, field)
        ]
        if edited and self.enforce_edit_lock and current.status != TaskStatus.NEW:
            raise TaskLockedError(
                f"Task {task_id} is {current.status.value}; "
                f"{', '.join(edited)} can only change while NEW"
            )
        self._check_references(changes)

        wants_transition = target is not None and target != current.status
        if wants_transition:
            ensure_allowed(task_id, current.status, target)
            # Fields ride along with the status write so neither lands alone.
            return self._transition(task_id, target, changes)

        if not changes:
            return current
        updated = self.storage.update_task(task_id, changes)
        if updated is None:
            raise NotFoundError(f"Task {task_id} not found")
        return updated

    def request_transition(self, task_id: int, target: TaskStatus) -> TaskRecord:
        """Validate and persist one status change.

        The write is a compare-and-set on the status that was validated, so a
        concurrent writer cannot sneak an illegal pair past the table. A lost
        race is re-validated against the fresher status.
        """
        return self._transition(task_id, target, {})

    def _transition(
        self,
        task_id: int,
        target: TaskStatus,
        changes: dict[str, Any],
    ) -> TaskRecord:
        for _ in range(_CAS_ATTEMPTS):
            current = self.get_task(task_id)
            ensure_allowed(task_id, current.status, target)
            updated = self.storage.compare_and_set_status(
                task_id,
                expected=current.status,
                status=target,
                changes=changes,
            )
            if updated is not None:
                logger.info(
                    "task_transition event=persisted task_id=%s from=%s to=%s",
                    task_id,
                    current.status.value,
                    target.value,
                )
                return updated
            logger.info(
                "task_transition event=contended task_id=%s expected=%s to=%s",
                task_id,
                current.status.value,
                target.value,
            )
        raise PersistenceFailure(f"Task {task_id} kept changing underneath the transition")

    def activate(self, task_id: int) -> TaskRecord:
        return self.request_transition(task_id, TaskStatus.READY)

    def deactivate(self, task_id: int) -> TaskRecord:
        return self.request_transition(task_id, TaskStatus.NEW)

    def confirm(self, task_id: int) -> TaskRecord:
        return self.request_transition(task_id, TaskStatus.CONFIRMED)

    def reject(self, task_id: int) -> TaskRecord:
        return self.request_transition(task_id, TaskStatus.REJECTED)

    def stop(self, task_id: int) -> TaskRecord:
        return self.request_transition(task_id, TaskStatus.FAILED)

    def delete_task(self, task_id: int) -> None:
        # No status guard: tasks can be removed from any state.
        if not self.storage.delete_task(task_id):
            raise NotFoundError(f"Task {task_id} not found")
        logger.info("task_delete event=deleted task_id=%s", task_id)

    def _check_references(self, fields: dict[str, Any]) -> None:
        worker_id = fields.get("worker_id")
        if worker_id is not None and self.storage.get_worker(worker_id) is None:
            raise NotFoundError(f"Worker {worker_id} not found")
        script_id = fields.get("script_id")
        if script_id is not None and self.storage.get_script(script_id) is None:
            raise NotFoundError(f"Script {script_id} not found")
        profile_id = fields.get("profile_id")
        if profile_id is not None and self.storage.get_profile(profile_id) is None:
            raise NotFoundError(f"Profile {profile_id} not found")
