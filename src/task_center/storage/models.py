"""Storage models shared by API, engine and persistence backends."""

from __future__ import annotations

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(StrEnum):
    NEW = "NEW"
    READY = "READY"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
    CONFIRMED = "CONFIRMED"


# Fields of a task that are frozen once it leaves NEW.
TASK_EDITABLE_WHILE_NEW = ("worker_id", "profile_id", "script_id")


def script_size(content: str) -> int:
    """Byte length of script content as stored on disk (UTF-8)."""
    return len(content.encode("utf-8"))


def parse_custom_field(raw: Any) -> dict[str, Any]:
    """Accept a JSON object or its text form; anything else is rejected."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        text = raw.strip() or "{}"
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"custom_field is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ValueError("custom_field must be a JSON object")
    return raw


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TaskRecord(BaseModel):
    """Persisted task record."""

    id: int
    status: TaskStatus = TaskStatus.NEW
    worker_id: int
    # None means "run with the worker's own dedicated profile".
    profile_id: int | None = None
    script_id: int
    respond: str = ""
    created_at: datetime


class ScriptRecord(BaseModel):
    """Persisted automation script; content is opaque to the console."""

    id: int
    name: str
    content: str
    description: str = ""
    size: int
    created_at: datetime
    updated_at: datetime


class ProfileRecord(BaseModel):
    """Persisted browser launch profile."""

    id: int
    name: str
    description: str = ""
    user_agent: str = "chrome-linux"
    custom_user_agent: str = ""
    viewport_width: int = 1920
    viewport_height: int = 1080
    timezone: str = "America/New_York"
    language: str = "en-US"
    use_proxy: bool = False
    proxy_type: str = "http"
    proxy_host: str = ""
    proxy_port: str = ""
    proxy_username: str = ""
    proxy_password: str = ""
    custom_field: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @field_validator("custom_field", mode="before")
    @classmethod
    def _load_custom_field(cls, value: Any) -> dict[str, Any]:
        return parse_custom_field(value)


class WorkerRecord(BaseModel):
    """Persisted worker credential. The password never leaves the server."""

    id: int
    username: str
    password: str = Field(exclude=True)
    description: str = ""
    created_at: datetime
    updated_at: datetime


class CreateTaskRequest(StrictModel):
    """Request body for POST /api/tasks."""

    worker_id: int
    script_id: int
    profile_id: int | None = None
    respond: str = ""
    status: TaskStatus = TaskStatus.NEW


class UpdateTaskRequest(StrictModel):
    """Request body for PUT /api/tasks/{id}; unset fields stay unchanged."""

    worker_id: int | None = None
    script_id: int | None = None
    profile_id: int | None = None
    respond: str | None = None
    status: TaskStatus | None = None


class TransitionRequest(StrictModel):
    status: TaskStatus


class ScriptCreate(StrictModel):
    name: str = Field(min_length=1)
    content: str = Field(min_length=1)
    description: str = ""


class ScriptUpdate(StrictModel):
    content: str | None = Field(default=None, min_length=1)
    description: str | None = None


class ProfileFields(StrictModel):
    description: str = ""
    user_agent: str = "chrome-linux"
    custom_user_agent: str = ""
    viewport_width: int = Field(default=1920, ge=1)
    viewport_height: int = Field(default=1080, ge=1)
    timezone: str = "America/New_York"
    language: str = "en-US"
    use_proxy: bool = False
    proxy_type: str = "http"
    proxy_host: str = ""
    proxy_port: str = ""
    proxy_username: str = ""
    proxy_password: str = ""
    custom_field: dict[str, Any] = Field(default_factory=dict)

    @field_validator("custom_field", mode="before")
    @classmethod
    def _load_custom_field(cls, value: Any) -> dict[str, Any]:
        return parse_custom_field(value)

    @field_validator("proxy_port", mode="before")
    @classmethod
    def _port_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ProfileCreate(ProfileFields):
    name: str = Field(min_length=1)


class ProfileUpdate(StrictModel):
    description: str | None = None
    user_agent: str | None = None
    custom_user_agent: str | None = None
    viewport_width: int | None = Field(default=None, ge=1)
    viewport_height: int | None = Field(default=None, ge=1)
    timezone: str | None = None
    language: str | None = None
    use_proxy: bool | None = None
    proxy_type: str | None = None
    proxy_host: str | None = None
    proxy_port: str | None = None
    proxy_username: str | None = None
    proxy_password: str | None = None
    custom_field: dict[str, Any] | None = None

    @field_validator("custom_field", mode="before")
    @classmethod
    def _load_custom_field(cls, value: Any) -> dict[str, Any] | None:
        if value is None:
            return None
        return parse_custom_field(value)

    @field_validator("proxy_port", mode="before")
    @classmethod
    def _port_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class WorkerCreate(StrictModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    description: str = ""


class WorkerUpdate(StrictModel):
    username: str | None = Field(default=None, min_length=1)
    password: str | None = Field(default=None, min_length=1)
    description: str | None = None
