"""Job status configuration using pydantic-settings.

This module defines the StatusSettings class that reads configuration
from environment variables with the CI_STATUS_ prefix. Every field has a
default, so an unconfigured process runs against the in-memory store.
"""

from typing import List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.ci_status.events.emitter import EventSinkType


class StatusSettings(BaseSettings):
    """Job status core configuration from environment variables.

    All environment variables are prefixed with CI_STATUS_ (e.g.,
    CI_STATUS_DATABASE_URL). List values such as event_sinks are given as
    JSON (e.g., CI_STATUS_EVENT_SINKS='["logging", "metrics"]').
    """

    model_config = SettingsConfigDict(
        env_prefix="CI_STATUS_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Database Configuration
    # -------------------------------------------------------------------------
    # PostgreSQL connection string; the in-memory store is used when unset
    database_url: Optional[str] = None

    db_min_pool_size: int = 2

    db_max_pool_size: int = 10

    # -------------------------------------------------------------------------
    # Transition Hook Configuration
    # -------------------------------------------------------------------------
    # Attempts per hook before a HookFailure is recorded
    hook_max_attempts: int = 3

    # Base delay between hook attempts; attempt N waits N times this
    hook_retry_delay_seconds: float = 1.0

    # -------------------------------------------------------------------------
    # Observability Configuration
    # -------------------------------------------------------------------------
    event_sinks: List[EventSinkType] = [EventSinkType.LOGGING]

    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that a database URL, if given, has a PostgreSQL scheme."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("database_url cannot be empty")
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with postgresql:// or postgres://"
            )
        return v

    @field_validator("db_min_pool_size", "db_max_pool_size")
    @classmethod
    def validate_pool_size(cls, v: int) -> int:
        """Validate that pool sizes are positive."""
        if v < 1:
            raise ValueError("pool sizes must be at least 1")
        return v

    @field_validator("hook_max_attempts")
    @classmethod
    def validate_hook_attempts(cls, v: int) -> int:
        """Validate that hooks are attempted at least once."""
        if v < 1:
            raise ValueError("hook_max_attempts must be at least 1")
        return v

    @field_validator("hook_retry_delay_seconds")
    @classmethod
    def validate_hook_delay(cls, v: float) -> float:
        """Validate that the hook retry delay is not negative."""
        if v < 0:
            raise ValueError("hook_retry_delay_seconds cannot be negative")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize the log level name."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be a standard logging level, got {v!r}")
        return level

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "StatusSettings":
        """Validate that the pool minimum does not exceed the maximum."""
        if self.db_min_pool_size > self.db_max_pool_size:
            raise ValueError("db_min_pool_size cannot exceed db_max_pool_size")
        return self


def get_settings() -> StatusSettings:
    """Create and return a StatusSettings instance.

    Raises:
        pydantic.ValidationError: If a value is invalid.
    """
    return StatusSettings()
