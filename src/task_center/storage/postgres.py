"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from task_center.errors import ConflictError, PersistenceFailure
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

TRecord = TypeVar("TRecord", bound=BaseModel)
logger = logging.getLogger(__name__)

_STATUS_CHECK = ", ".join(f"'{status.value}'" for status in TaskStatus)


class PostgresConsoleStorage:
    """Persist tasks, scripts, profiles and workers in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("TASK_CENTER_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper, self._sql = self._load_psycopg()

    def migrate(self) -> None:
        with self._session() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workers (
                    id SERIAL PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS scripts (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    content TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    size INTEGER NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id SERIAL PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT NOT NULL DEFAULT '',
                    user_agent TEXT NOT NULL DEFAULT 'chrome-linux',
                    custom_user_agent TEXT NOT NULL DEFAULT '',
                    viewport_width INTEGER NOT NULL DEFAULT 1920,
                    viewport_height INTEGER NOT NULL DEFAULT 1080,
                    timezone TEXT NOT NULL DEFAULT 'America/New_York',
                    language TEXT NOT NULL DEFAULT 'en-US',
                    use_proxy BOOLEAN NOT NULL DEFAULT FALSE,
                    proxy_type TEXT NOT NULL DEFAULT 'http',
                    proxy_host TEXT NOT NULL DEFAULT '',
                    proxy_port TEXT NOT NULL DEFAULT '',
                    proxy_username TEXT NOT NULL DEFAULT '',
                    proxy_password TEXT NOT NULL DEFAULT '',
                    custom_field JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS tasks (
                    id SERIAL PRIMARY KEY,
                    status TEXT NOT NULL DEFAULT 'NEW'
                        CHECK (status IN ({_STATUS_CHECK})),
                    worker_id INTEGER NOT NULL REFERENCES workers(id) ON DELETE RESTRICT,
                    profile_id INTEGER REFERENCES profiles(id) ON DELETE RESTRICT,
                    script_id INTEGER NOT NULL REFERENCES scripts(id) ON DELETE RESTRICT,
                    respond TEXT NOT NULL DEFAULT '',
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)  # noqa: S608 - status list is built from the TaskStatus enum
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_status
                ON tasks(status)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tasks_worker_id
                ON tasks(worker_id)
                """)
            conn.commit()

    # Tasks

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        worker_id: int | None = None,
    ) -> list[TaskRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        if worker_id is not None:
            clauses.append("worker_id = %s")
            params.append(worker_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks {where} ORDER BY id",  # noqa: S608 - fixed clauses
                params,
            ).fetchall()
        return [TaskRecord.model_validate(row) for row in rows]

    def get_task(self, task_id: int) -> TaskRecord | None:
        return self._get_one("tasks", task_id, TaskRecord)

    def create_task(self, payload: CreateTaskRequest) -> TaskRecord:
        with self._session() as conn:
            row = conn.execute(
                """
                INSERT INTO tasks (status, worker_id, profile_id, script_id, respond, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    payload.status.value,
                    payload.worker_id,
                    payload.profile_id,
                    payload.script_id,
                    payload.respond,
                    datetime.now(tz=UTC),
                ),
            ).fetchone()
            conn.commit()
        if row is None:
            raise PersistenceFailure("Failed to load created task")
        return TaskRecord.model_validate(row)

    def update_task(self, task_id: int, changes: Mapping[str, Any]) -> TaskRecord | None:
        return self._update_one("tasks", task_id, dict(changes), TaskRecord)

    def compare_and_set_status(
        self,
        task_id: int,
        *,
        expected: TaskStatus,
        status: TaskStatus,
        changes: Mapping[str, Any] | None = None,
    ) -> TaskRecord | None:
        fields = {**(changes or {}), "status": status}
        columns = list(fields)
        query = self._sql.SQL(
            "UPDATE tasks SET {} WHERE id = %s AND status = %s RETURNING *"
        ).format(
            self._sql.SQL(", ").join(
                self._sql.SQL("{} = %s").format(self._sql.Identifier(column)) for column in columns
            ),
        )
        params = [self._adapt(fields[column]) for column in columns] + [task_id, expected.value]
        with self._session() as conn:
            row = conn.execute(query, params).fetchone()
            conn.commit()
        if row is None:
            return None
        return TaskRecord.model_validate(row)

    def delete_task(self, task_id: int) -> bool:
        return self._delete_one("tasks", task_id)

    def count_tasks_by_status(self) -> dict[TaskStatus, int]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM tasks GROUP BY status"
            ).fetchall()
        counts = {status: 0 for status in TaskStatus}
        for row in rows:
            counts[TaskStatus(row["status"])] = int(row["total"])
        return counts

    # Scripts

    def list_scripts(self) -> list[ScriptRecord]:
        return self._list_all("scripts", ScriptRecord)

    def get_script(self, script_id: int) -> ScriptRecord | None:
        return self._get_one("scripts", script_id, ScriptRecord)

    def get_script_by_name(self, name: str) -> ScriptRecord | None:
        return self._get_by("scripts", "name", name, ScriptRecord)

    def create_script(self, payload: ScriptCreate) -> ScriptRecord:
        fields = payload.model_dump()
        fields["size"] = script_size(payload.content)
        return self._insert_one("scripts", fields, ScriptRecord)

    def update_script(self, script_id: int, changes: Mapping[str, Any]) -> ScriptRecord | None:
        fields = dict(changes)
        if "content" in fields:
            fields["size"] = script_size(fields["content"])
        fields["updated_at"] = datetime.now(tz=UTC)
        return self._update_one("scripts", script_id, fields, ScriptRecord)

    def delete_script(self, script_id: int) -> bool:
        return self._delete_one("scripts", script_id)

    # Profiles

    def list_profiles(self) -> list[ProfileRecord]:
        return self._list_all("profiles", ProfileRecord)

    def get_profile(self, profile_id: int) -> ProfileRecord | None:
        return self._get_one("profiles", profile_id, ProfileRecord)

    def get_profile_by_name(self, name: str) -> ProfileRecord | None:
        return self._get_by("profiles", "name", name, ProfileRecord)

    def create_profile(self, payload: ProfileCreate) -> ProfileRecord:
        return self._insert_one("profiles", payload.model_dump(), ProfileRecord)

    def update_profile(
        self, profile_id: int, changes: Mapping[str, Any]
    ) -> ProfileRecord | None:
        fields = {**changes, "updated_at": datetime.now(tz=UTC)}
        return self._update_one("profiles", profile_id, fields, ProfileRecord)

    def delete_profile(self, profile_id: int) -> bool:
        return self._delete_one("profiles", profile_id)

    # Workers

    def list_workers(self) -> list[WorkerRecord]:
        return self._list_all("workers", WorkerRecord)

    def get_worker(self, worker_id: int) -> WorkerRecord | None:
        return self._get_one("workers", worker_id, WorkerRecord)

    def get_worker_by_username(self, username: str) -> WorkerRecord | None:
        return self._get_by("workers", "username", username, WorkerRecord)

    def create_worker(self, payload: WorkerCreate) -> WorkerRecord:
        return self._insert_one("workers", payload.model_dump(), WorkerRecord)

    def update_worker(self, worker_id: int, changes: Mapping[str, Any]) -> WorkerRecord | None:
        fields = {**changes, "updated_at": datetime.now(tz=UTC)}
        return self._update_one("workers", worker_id, fields, WorkerRecord)

    def delete_worker(self, worker_id: int) -> bool:
        return self._delete_one("workers", worker_id)

    # Generic row helpers; table and column names come from trusted model fields.

    def _list_all(self, table: str, model: type[TRecord]) -> list[TRecord]:
        query = self._sql.SQL("SELECT * FROM {} ORDER BY id").format(self._sql.Identifier(table))
        with self._session() as conn:
            rows = conn.execute(query).fetchall()
        return [model.model_validate(row) for row in rows]

    def _get_one(self, table: str, row_id: int, model: type[TRecord]) -> TRecord | None:
        return self._get_by(table, "id", row_id, model)

    def _get_by(self, table: str, column: str, value: Any, model: type[TRecord]) -> TRecord | None:
        query = self._sql.SQL("SELECT * FROM {} WHERE {} = %s").format(
            self._sql.Identifier(table),
            self._sql.Identifier(column),
        )
        with self._session() as conn:
            row = conn.execute(query, (value,)).fetchone()
        if row is None:
            return None
        return model.model_validate(row)

    def _insert_one(self, table: str, fields: dict[str, Any], model: type[TRecord]) -> TRecord:
        now = datetime.now(tz=UTC)
        values = {**fields, "created_at": now, "updated_at": now}
        columns = list(values)
        query = self._sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            self._sql.Identifier(table),
            self._sql.SQL(", ").join(self._sql.Identifier(column) for column in columns),
            self._sql.SQL(", ").join(self._sql.Placeholder() for _ in columns),
        )
        with self._session() as conn:
            row = conn.execute(query, [self._adapt(values[column]) for column in columns]).fetchone()
            conn.commit()
        if row is None:
            raise PersistenceFailure(f"Failed to load created row in {table}")
        return model.model_validate(row)

    def _update_one(
        self,
        table: str,
        row_id: int,
        fields: dict[str, Any],
        model: type[TRecord],
    ) -> TRecord | None:
        if not fields:
            return self._get_one(table, row_id, model)
        columns = list(fields)
        query = self._sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            self._sql.Identifier(table),
            self._sql.SQL(", ").join(
                self._sql.SQL("{} = %s").format(self._sql.Identifier(column)) for column in columns
            ),
        )
        params = [self._adapt(fields[column]) for column in columns] + [row_id]
        with self._session() as conn:
            row = conn.execute(query, params).fetchone()
            conn.commit()
        if row is None:
            return None
        return model.model_validate(row)

    def _delete_one(self, table: str, row_id: int) -> bool:
        query = self._sql.SQL("DELETE FROM {} WHERE id = %s").format(self._sql.Identifier(table))
        with self._session() as conn:
            deleted = conn.execute(query, (row_id,)).rowcount > 0
            conn.commit()
        return deleted

    def _adapt(self, value: Any) -> Any:
        if isinstance(value, TaskStatus):
            return value.value
        if isinstance(value, dict):
            return self._json_wrapper(value)
        return value

    @contextmanager
    def _session(self) -> Iterator[Any]:
        """Open a connection under the storage lock and translate driver errors."""
        errors = self._psycopg.errors
        with self._lock:
            try:
                with self._connect() as conn:
                    yield conn
            except (errors.UniqueViolation, errors.ForeignKeyViolation) as exc:
                raise ConflictError(self._describe_conflict(exc)) from exc
            except self._psycopg.Error as exc:
                logger.warning("storage event=error backend=postgres error=%s", exc)
                raise PersistenceFailure("Database is unavailable, retry later") from exc

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    def _describe_conflict(self, exc: Any) -> str:
        if isinstance(exc, self._psycopg.errors.UniqueViolation):
            return "A record with this name already exists"
        diag = getattr(exc, "diag", None)
        detail = getattr(diag, "message_detail", None)
        return detail or "Record is referenced by or references a missing record"

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any, Any]:
        try:
            import psycopg
            from psycopg import sql
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json, sql

