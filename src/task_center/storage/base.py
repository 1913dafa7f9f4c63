"""Storage interface for the console's four entities."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

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
)


class ConsoleStorage(Protocol):
    """Durable CRUD over tasks, scripts, profiles and workers.

    Lookups return None for unknown ids and updates return None when the row
    is gone; raising is left to the engine. Unique and reference violations
    surface as ConflictError, backend outages as PersistenceFailure.
    """

    def migrate(self) -> None: ...

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        worker_id: int | None = None,
    ) -> list[TaskRecord]: ...

    def get_task(self, task_id: int) -> TaskRecord | None: ...

    def create_task(self, payload: CreateTaskRequest) -> TaskRecord: ...

    def update_task(self, task_id: int, changes: Mapping[str, Any]) -> TaskRecord | None: ...

    def compare_and_set_status(
        self,
        task_id: int,
        *,
        expected: TaskStatus,
        status: TaskStatus,
        changes: Mapping[str, Any] | None = None,
    ) -> TaskRecord | None: ...

    def delete_task(self, task_id: int) -> bool: ...

    def count_tasks_by_status(self) -> dict[TaskStatus, int]: ...

    def list_scripts(self) -> list[ScriptRecord]: ...

    def get_script(self, script_id: int) -> ScriptRecord | None: ...

    def get_script_by_name(self, name: str) -> ScriptRecord | None: ...

    def create_script(self, payload: ScriptCreate) -> ScriptRecord: ...

    def update_script(self, script_id: int, changes: Mapping[str, Any]) -> ScriptRecord | None: ...

    def delete_script(self, script_id: int) -> bool: ...

    def list_profiles(self) -> list[ProfileRecord]: ...

    def get_profile(self, profile_id: int) -> ProfileRecord | None: ...

    def get_profile_by_name(self, name: str) -> ProfileRecord | None: ...

    def create_profile(self, payload: ProfileCreate) -> ProfileRecord: ...

    def update_profile(
        self, profile_id: int, changes: Mapping[str, Any]
    ) -> ProfileRecord | None: ...

    def delete_profile(self, profile_id: int) -> bool: ...

    def list_workers(self) -> list[WorkerRecord]: ...

    def get_worker(self, worker_id: int) -> WorkerRecord | None: ...

    def get_worker_by_username(self, username: str) -> WorkerRecord | None: ...

    def create_worker(self, payload: WorkerCreate) -> WorkerRecord: ...

    def update_worker(self, worker_id: int, changes: Mapping[str, Any]) -> WorkerRecord | None: ...

    def delete_worker(self, worker_id: int) -> bool: ...
