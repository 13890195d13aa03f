"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from datetime import timedelta
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jobqueue.constants import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_EXPONENT,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_RUN_TIME,
    DEFAULT_PRIORITY,
    DEFAULT_READ_AHEAD,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./jobqueue.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Queue policy
    min_priority: int | None = None
    max_priority: int | None = None
    default_priority: int = DEFAULT_PRIORITY
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    max_run_time: timedelta = DEFAULT_MAX_RUN_TIME
    destroy_failed_jobs: bool = True
    backoff_exponent: int = DEFAULT_BACKOFF_EXPONENT
    backoff_base_seconds: int = DEFAULT_BACKOFF_BASE_SECONDS
    read_ahead: int = Field(default=DEFAULT_READ_AHEAD, ge=1)
    queues: list[str] = Field(default_factory=list)

    # Worker Configuration
    worker_sleep_delay_seconds: float = 5.0
    worker_batch_size: int = 100

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "jobqueue"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    @model_validator(mode="after")
    def check_priority_window(self) -> "Settings":
        """Reject an empty priority window."""
        if (
            self.min_priority is not None
            and self.max_priority is not None
            and self.min_priority > self.max_priority
        ):
            raise ValueError(
                f"min_priority ({self.min_priority}) must not exceed "
                f"max_priority ({self.max_priority})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
