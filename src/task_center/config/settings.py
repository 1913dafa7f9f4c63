"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "task-center"
    app_debug: bool = False
    storage_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = ""
    # How often the run simulator pulls the task list to reconcile its shadows.
    refetch_interval_s: float = Field(default=5.0, gt=0.0)
    enforce_edit_lock: bool = True
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    remote_base_url: str = "http://127.0.0.1:8000"
    remote_timeout_s: float = Field(default=10.0, ge=0.1)

    model_config = SettingsConfigDict(
        env_prefix="TASK_CENTER_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
