"""
Configuration for the audit chain using Pydantic v2 Settings.

Values come from keyword arguments or ``AUDITCHAIN_*`` environment variables.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_ROTATE_MAX_BYTES = 10 * 1024 * 1024
# ~7 years, the usual HIPAA audit retention
DEFAULT_RETENTION_DAYS = 2555


class AuditSettings(BaseSettings):
    """Top-level settings for stores, rotation and diagnostics."""

    log_dir: str = Field(
        default="logs/audit",
        description="Directory holding one JSONL file per log category",
    )
    fsync: bool = Field(
        default=True,
        description="fsync the log file after every append",
    )
    rotate_max_bytes: int | None = Field(
        default=DEFAULT_ROTATE_MAX_BYTES,
        ge=1,
        description="Rotate a live log once it reaches this size; None disables",
    )
    retention_days: int = Field(
        default=DEFAULT_RETENTION_DAYS,
        ge=1,
        description="Archived logs older than this are eligible for pruning",
    )
    actor_id_max_length: int = Field(
        default=256,
        ge=1,
        description="Maximum accepted length of an actor identifier",
    )
    internal_logging_enabled: bool = Field(
        default=False,
        description="Emit structured diagnostics to stderr",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUDITCHAIN_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("log_dir")
    @classmethod
    def _ensure_log_dir_non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("log_dir must not be empty")
        return value

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir)


def load_settings(**overrides: Any) -> AuditSettings:
    """Build settings from the environment plus explicit overrides.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    try:
        return AuditSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid audit settings: {e.error_count()} error(s)",
            cause=e,
            errors=[err["msg"] for err in e.errors()],
        ) from e
