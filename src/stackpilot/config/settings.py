"""
Application settings using Pydantic.

Provides environment-based configuration loading with STACKPILOT_ prefix.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STACKPILOT_",
        extra="ignore",
    )

    # Environment
    environment: str = "development"

    # AWS
    aws_region: str = "us-east-1"
    aws_profile: str | None = None

    # State store
    state_backend: Literal["file", "sql"] = "file"
    state_path: str = ".stackpilot/state.json"
    state_database_url: str | None = None
    state_retry_attempts: int = 3

    # Provider call retries
    max_attempts: int = 5
    backoff_multiplier: float = 1.0
    backoff_max: float = 30.0
    call_timeout: float | None = 900.0

    # Run control
    run_timeout: float | None = None
    max_workers: int = 1

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
