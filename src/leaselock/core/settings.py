"""Runtime settings loader."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from leaselock.utils.env import get_env


class LockTableSettings(BaseModel):
    """Identifies a lock table and the lease timing used on it."""

    table: str
    key_column: str = "LockKey"
    version_column: str = "LockVersion"
    lease_duration_seconds: float = Field(default=20.0, gt=0)
    scan_page_size: int = Field(default=100, ge=1)

    @field_validator("table", "key_column", "version_column")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def heartbeat_interval_seconds(self) -> float:
        return self.lease_duration_seconds / 2


class RedisSettings(BaseModel):
    url: str = Field(default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    key_prefix: str = "leaselock"


class RuntimeSettings(BaseModel):
    backend: Literal["memory", "redis"] = "memory"
    table: LockTableSettings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    audit_log_path: Optional[Path] = None

    @classmethod
    def from_file(cls, path: Path) -> "RuntimeSettings":
        data = yaml.safe_load(path.read_text()) or {}
        backend = get_env("LEASELOCK_BACKEND")
        if backend:
            data["backend"] = backend.lower()
        try:
            settings = cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid runtime settings: {exc}") from exc
        if settings.audit_log_path and not settings.audit_log_path.is_absolute():
            settings.audit_log_path = (path.parent / settings.audit_log_path).resolve()
        return settings
