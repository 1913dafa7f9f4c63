"""Error taxonomy shared by storage, engine, simulator and API layers.

Every error carries the HTTP status the API renders it with, so route
handlers never translate exceptions by hand.
"""

from __future__ import annotations

from typing import Any


class ConsoleError(Exception):
    """Base class for recoverable console errors."""

    status_code = 500

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ConsoleError):
    """Referenced task/script/profile/worker id does not exist."""

    status_code = 404


class ValidationError(ConsoleError):
    """Malformed input, such as invalid JSON in a profile custom field."""

    status_code = 400


class InvalidTransitionError(ConsoleError):
    """Requested status change is not in the transition table."""

    status_code = 409

    def __init__(self, task_id: int, current: str, target: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from {current} to {target}",
            details={"current": current, "target": target},
        )
        self.task_id = task_id
        self.current = current
        self.target = target


class TaskLockedError(ConsoleError):
    """Assignment fields were edited on a task that has left NEW."""

    status_code = 409


class ConflictError(ConsoleError):
    """Unique name or username already taken."""

    status_code = 409


class PersistenceFailure(ConsoleError):
    """Durable store unreachable or rejected the write. Safe to retry."""

    status_code = 503
