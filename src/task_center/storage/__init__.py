"""Storage backends and models."""

from task_center.storage.base import ConsoleStorage
from task_center.storage.memory import InMemoryConsoleStorage
from task_center.storage.models import (
    ProfileRecord,
    ScriptRecord,
    TaskRecord,
    TaskStatus,
    WorkerRecord,
)
from task_center.storage.postgres import PostgresConsoleStorage

__all__ = [
    "ConsoleStorage",
    "InMemoryConsoleStorage",
    "PostgresConsoleStorage",
    "ProfileRecord",
    "ScriptRecord",
    "TaskRecord",
    "TaskStatus",
    "WorkerRecord",
]
