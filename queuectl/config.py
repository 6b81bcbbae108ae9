"""
Application configuration using Pydantic Settings.
Loads process-level configuration from environment variables with sensible defaults.

Tunables that operators change at runtime (``max-retries``, ``backoff-base``) live in
the persistent config relation instead; see ``queuectl.db.repository.ConfigRepository``.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ``QUEUECTL_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUEUECTL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path = Path("data")
    database_url: str | None = None

    # Worker Configuration
    lease_duration_seconds: int = 300
    poll_interval_seconds: float = 0.5
    error_backoff_seconds: float = 1.0
    default_timeout_seconds: int = 300
    reaper_interval_seconds: float = 30.0

    # Defaults for the persistent config store
    default_max_retries: int = 3
    default_backoff_base: float = 2.0

    # Dashboard
    dashboard_host: str = "127.0.0.1"
    dashboard_port: int = 8080

    # Observability
    otel_service_name: str = "queuectl"
    otel_exporter_otlp_endpoint: str | None = None
    tracing_console_export: bool = False
    log_level: str = "INFO"
    log_format: str = "console"  # json or console

    @property
    def resolved_database_url(self) -> str:
        """Database URL, defaulting to a SQLite file inside the data directory."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'jobs.db'}"

    @property
    def pid_file(self) -> Path:
        """Location of the worker pool liveness marker."""
        return self.data_dir / "worker.pid"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
