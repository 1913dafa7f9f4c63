"""Task status engine and catalog services."""

from task_center.engine.catalog import CatalogService
from task_center.engine.status import (
    TRANSITIONS,
    TaskStatusEngine,
    allowed_targets,
    is_allowed,
)

__all__ = [
    "TRANSITIONS",
    "CatalogService",
    "TaskStatusEngine",
    "allowed_targets",
    "is_allowed",
]
