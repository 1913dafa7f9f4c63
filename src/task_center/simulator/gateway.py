"""Ways for the run simulator to reach the authoritative task state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from task_center.engine.status import TaskStatusEngine
from task_center.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceFailure,
    ValidationError,
)
from task_center.storage.models import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)


class TaskGateway(Protocol):
    async def transition(self, task_id: int, status: TaskStatus) -> TaskRecord: ...

    async def list_tasks(self) -> list[TaskRecord]: ...


class EngineGateway:
    """In-process gateway; storage calls run in a worker thread."""

    def __init__(self, engine: TaskStatusEngine) -> None:
        self.engine = engine

    async def transition(self, task_id: int, status: TaskStatus) -> TaskRecord:
        return await asyncio.to_thread(self.engine.request_transition, task_id, status)

    async def list_tasks(self) -> list[TaskRecord]:
        return await asyncio.to_thread(self.engine.list_tasks)


class HttpTaskGateway:
    """Drives a remote console over its REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout_s)

    async def transition(self, task_id: int, status: TaskStatus) -> TaskRecord:
        payload = await self._request(
            "POST",
            f"/api/tasks/{task_id}/transition",
            json={"status": status.value},
            task_id=task_id,
            target=status,
        )
        return _records([payload], f"/api/tasks/{task_id}/transition")[0]

    async def list_tasks(self) -> list[TaskRecord]:
        payload = await self._request("GET", "/api/tasks")
        if not isinstance(payload, list):
            raise PersistenceFailure("/api/tasks did not return a task list")
        return _records(payload, "/api/tasks")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        task_id: int | None = None,
        target: TaskStatus | None = None,
    ) -> Any:
        try:
            response = await self.client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("gateway event=transport_error method=%s path=%s error=%s", method, path, exc)
            raise PersistenceFailure(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                raise PersistenceFailure(f"{method} {path} returned a non-JSON body") from exc

        message, details = _error_body(response)
        if response.status_code == 404:
            raise NotFoundError(message)
        if response.status_code == 409:
            current = details.get("current") if isinstance(details, dict) else None
            if task_id is not None and target is not None and current:
                raise InvalidTransitionError(task_id, str(current), target.value)
            raise ConflictError(message)
        if response.status_code == 400:
            raise ValidationError(message)
        raise PersistenceFailure(f"{method} {path} returned {response.status_code}: {message}")


def _records(items: list[Any], path: str) -> list[TaskRecord]:
    try:
        return [TaskRecord.model_validate(item) for item in items]
    except PydanticValidationError as exc:
        logger.warning("gateway event=bad_payload path=%s errors=%s", path, exc.error_count())
        raise PersistenceFailure(f"{path} returned a malformed task record") from exc


def _error_body(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, None
    if isinstance(body, dict) and "error" in body:
        return str(body["error"]), body.get("details")
    return response.text, None
