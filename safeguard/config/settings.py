"""
Application settings and configuration.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Core Settings
    environment: str = Field(
        default="development",
        description="development, testing or production; production hides error detail",
    )
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".safeguard",
        description="Base directory for local data",
    )
    sqlite_path: Optional[str] = Field(
        default=None, description="Local store path (defaults to <data_dir>/credentials.db)"
    )

    # Backend selection
    database_url: Optional[str] = Field(
        default=None, description="PostgreSQL connection URL for the remote backend"
    )
    force_backend: Optional[str] = Field(
        default=None, description="Force 'local' or 'remote', skipping detection"
    )
    use_remote: bool = Field(
        default=False, description="Force the remote backend when true"
    )

    # Connection pool
    pool_min_size: int = Field(default=1, description="Minimum pooled connections")
    pool_max_size: int = Field(default=20, description="Maximum pooled connections")
    pool_idle_timeout: float = Field(
        default=30.0, description="Seconds before an idle connection is recycled"
    )
    pool_acquire_timeout: float = Field(
        default=10.0, description="Seconds to wait for a free pooled connection"
    )
    connect_timeout: float = Field(default=5.0, description="Connection timeout")
    command_timeout: float = Field(default=30.0, description="Statement timeout")
    slow_query_ms: int = Field(
        default=1000, description="Statements slower than this are flagged"
    )

    # Retry
    retry_max_attempts: int = Field(default=3, description="Attempts per operation")
    retry_base_delay: float = Field(default=0.2, description="First backoff delay (s)")
    retry_max_delay: float = Field(default=5.0, description="Backoff ceiling (s)")

    # Queries
    recent_window_days: int = Field(
        default=30, description="Window for the recent-credentials count"
    )

    # Server
    host: str = Field(default="localhost", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Log level")

    @field_validator("force_backend", mode="before")
    @classmethod
    def _normalize_force_backend(cls, value):
        if value is None:
            return None
        value = str(value).strip().lower()
        if not value:
            return None
        if value not in ("local", "remote"):
            raise ValueError("force_backend must be 'local' or 'remote'")
        return value

    class Config:
        env_prefix = "SAFEGUARD_"
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        if self.sqlite_path is None:
            self.sqlite_path = str(self.data_dir / "credentials.db")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure logging with development-friendly structured output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    from ..utils.logging.structured import create_development_formatter

    log_level = getattr(logging, level.upper())

    app_logger = logging.getLogger("safeguard")
    app_logger.setLevel(log_level)

    for handler in app_logger.handlers[:]:
        app_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(create_development_formatter())
    app_logger.addHandler(console_handler)

    # Prevent propagation to root logger to avoid duplication
    app_logger.propagate = False

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
