"""In-memory storage backend for tests and local demos."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from task_center.errors import ConflictError
from task_center.storage.models import (
    CreateTaskRequest,
    ProfileCreate,
    ProfileRecord,
    ScriptCreate,
    ScriptRecord,
    TaskRecord,
    TaskStatus,
    WorkerCreate,
    WorkerRecord,
    script_size,
)


class InMemoryConsoleStorage:
    """Simple dict-backed implementation mirroring PostgresConsoleStorage rules."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[int, TaskRecord] = {}
        self._scripts: dict[int, ScriptRecord] = {}
        self._profiles: dict[int, ProfileRecord] = {}
        self._workers: dict[int, WorkerRecord] = {}
        self._task_ids = itertools.count(1)
        self._script_ids = itertools.count(1)
        self._profile_ids = itertools.count(1)
        self._worker_ids = itertools.count(1)

    def migrate(self) -> None:
        return None

    # Tasks

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        worker_id: int | None = None,
    ) -> list[TaskRecord]:
        with self._lock:
            records = [
                task.model_copy(deep=True)
                for task in self._tasks.values()
                if (status is None or task.status == status)
                and (worker_id is None or task.worker_id == worker_id)
            ]
        return sorted(records, key=lambda item: item.id)

    def get_task(self, task_id: int) -> TaskRecord | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def create_task(self, payload: CreateTaskRequest) -> TaskRecord:
        with self._lock:
            self._check_task_references(payload.model_dump())
            record = TaskRecord(
                id=next(self._task_ids),
                status=payload.status,
                worker_id=payload.worker_id,
                profile_id=payload.profile_id,
                script_id=payload.script_id,
                respond=payload.respond,
                created_at=datetime.now(UTC),
            )
            self._tasks[record.id] = record
            return record.model_copy(deep=True)

    def update_task(self, task_id: int, changes: Mapping[str, Any]) -> TaskRecord | None:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            self._check_task_references(changes)
            updated = current.model_copy(update=dict(changes))
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def compare_and_set_status(
        self,
        task_id: int,
        *,
        expected: TaskStatus,
        status: TaskStatus,
        changes: Mapping[str, Any] | None = None,
    ) -> TaskRecord | None:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None or current.status != expected:
                return None
            fields = dict(changes or {})
            self._check_task_references(fields)
            fields["status"] = status
            updated = current.model_copy(update=fields)
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    def delete_task(self, task_id: int) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def count_tasks_by_status(self) -> dict[TaskStatus, int]:
        counts = {status: 0 for status in TaskStatus}
        with self._lock:
            for task in self._tasks.values():
                counts[task.status] += 1
        return counts

    # Scripts

    def list_scripts(self) -> list[ScriptRecord]:
        with self._lock:
            return [self._scripts[key].model_copy(deep=True) for key in sorted(self._scripts)]

    def get_script(self, script_id: int) -> ScriptRecord | None:
        with self._lock:
            script = self._scripts.get(script_id)
            return script.model_copy(deep=True) if script else None

    def get_script_by_name(self, name: str) -> ScriptRecord | None:
        with self._lock:
            for script in self._scripts.values():
                if script.name == name:
                    return script.model_copy(deep=True)
        return None

    def create_script(self, payload: ScriptCreate) -> ScriptRecord:
        now = datetime.now(UTC)
        with self._lock:
            if any(item.name == payload.name for item in self._scripts.values()):
                raise ConflictError(f"Script with name {payload.name!r} already exists")
            record = ScriptRecord(
                id=next(self._script_ids),
                name=payload.name,
                content=payload.content,
                description=payload.description,
                size=script_size(payload.content),
                created_at=now,
                updated_at=now,
            )
            self._scripts[record.id] = record
            return record.model_copy(deep=True)

    def update_script(self, script_id: int, changes: Mapping[str, Any]) -> ScriptRecord | None:
        with self._lock:
            current = self._scripts.get(script_id)
            if current is None:
                return None
            update = dict(changes)
            if "content" in update:
                update["size"] = script_size(update["content"])
            update["updated_at"] = datetime.now(UTC)
            updated = current.model_copy(update=update)
            self._scripts[script_id] = updated
            return updated.model_copy(deep=True)

    def delete_script(self, script_id: int) -> bool:
        with self._lock:
            if script_id not in self._scripts:
                return False
            self._ensure_unreferenced("script_id", script_id, "Script")
            del self._scripts[script_id]
            return True

    # Profiles

    def list_profiles(self) -> list[ProfileRecord]:
        with self._lock:
            return [self._profiles[key].model_copy(deep=True) for key in sorted(self._profiles)]

    def get_profile(self, profile_id: int) -> ProfileRecord | None:
        with self._lock:
            profile = self._profiles.get(profile_id)
            return profile.model_copy(deep=True) if profile else None

    def get_profile_by_name(self, name: str) -> ProfileRecord | None:
        with self._lock:
            for profile in self._profiles.values():
                if profile.name == name:
                    return profile.model_copy(deep=True)
        return None

    def create_profile(self, payload: ProfileCreate) -> ProfileRecord:
        now = datetime.now(UTC)
        with self._lock:
            if any(item.name == payload.name for item in self._profiles.values()):
                raise ConflictError(f"Profile with name {payload.name!r} already exists")
            record = ProfileRecord(
                id=next(self._profile_ids),
                created_at=now,
                updated_at=now,
                **payload.model_dump(),
            )
            self._profiles[record.id] = record
            return record.model_copy(deep=True)

    def update_profile(
        self, profile_id: int, changes: Mapping[str, Any]
    ) -> ProfileRecord | None:
        with self._lock:
            current = self._profiles.get(profile_id)
            if current is None:
                return None
            updated = current.model_copy(update={**changes, "updated_at": datetime.now(UTC)})
            self._profiles[profile_id] = updated
            return updated.model_copy(deep=True)

    def delete_profile(self, profile_id: int) -> bool:
        with self._lock:
            if profile_id not in self._profiles:
                return False
            self._ensure_unreferenced("profile_id", profile_id, "Profile")
            del self._profiles[profile_id]
            return True

    # Workers

    def list_workers(self) -> list[WorkerRecord]:
        with self._lock:
            return [self._workers[key].model_copy(deep=True) for key in sorted(self._workers)]

    def get_worker(self, worker_id: int) -> WorkerRecord | None:
        with self._lock:
            worker = self._workers.get(worker_id)
            return worker.model_copy(deep=True) if worker else None

    def get_worker_by_username(self, username: str) -> WorkerRecord | None:
        with self._lock:
            for worker in self._workers.values():
                if worker.username == username:
                    return worker.model_copy(deep=True)
        return None

    def create_worker(self, payload: WorkerCreate) -> WorkerRecord:
        now = datetime.now(UTC)
        with self._lock:
            if any(item.username == payload.username for item in self._workers.values()):
                raise ConflictError(f"Worker {payload.username!r} already exists")
            record = WorkerRecord(
                id=next(self._worker_ids),
                username=payload.username,
                password=payload.password,
                description=payload.description,
                created_at=now,
                updated_at=now,
            )
            self._workers[record.id] = record
            return record.model_copy(deep=True)

    def update_worker(self, worker_id: int, changes: Mapping[str, Any]) -> WorkerRecord | None:
        with self._lock:
            current = self._workers.get(worker_id)
            if current is None:
                return None
            username = changes.get("username")
            if username is not None and any(
                item.username == username and item.id != worker_id
                for item in self._workers.values()
            ):
                raise ConflictError(f"Worker {username!r} already exists")
            updated = current.model_copy(update={**changes, "updated_at": datetime.now(UTC)})
            self._workers[worker_id] = updated
            return updated.model_copy(deep=True)

    def delete_worker(self, worker_id: int) -> bool:
        with self._lock:
            if worker_id not in self._workers:
                return False
            self._ensure_unreferenced("worker_id", worker_id, "Worker")
            del self._workers[worker_id]
            return True

    # Referential rules shared with the PostgreSQL foreign keys. Callers hold the lock.

    def _check_task_references(self, fields: Mapping[str, Any]) -> None:
        references = (
            ("worker_id", self._workers, "Worker"),
            ("script_id", self._scripts, "Script"),
            ("profile_id", self._profiles, "Profile"),
        )
        for field, table, label in references:
            value = fields.get(field)
            if value is not None and value not in table:
                raise ConflictError(f"{label} {value} does not exist")

    def _ensure_unreferenced(self, field: str, value: int, label: str) -> None:
        if any(getattr(task, field) == value for task in self._tasks.values()):
            raise ConflictError(f"{label} {value} is still referenced by tasks")
