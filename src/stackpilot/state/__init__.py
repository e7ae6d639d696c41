"""State store backends for resource records and the migration log."""

from __future__ import annotations

from stackpilot.config import Settings
from stackpilot.core.errors import ConfigurationError
from stackpilot.state.base import (
    INCOMPLETE_FINGERPRINT,
    MigrationRecord,
    ResourceRecord,
    StateStore,
    parse_version,
)
from stackpilot.state.file import JsonStateStore
from stackpilot.state.memory import MemoryStateStore
from stackpilot.state.sql import SqlStateStore


async def open_state_store(settings: Settings) -> StateStore:
    """Open the backend selected by settings."""
    if settings.state_backend == "sql":
        if not settings.state_database_url:
            raise ConfigurationError(
                "STACKPILOT_STATE_DATABASE_URL is required for the sql state backend"
            )
        store = SqlStateStore(settings.state_database_url)
        await store.init()
        return store
    return JsonStateStore(settings.state_path)


__all__ = [
    "INCOMPLETE_FINGERPRINT",
    "JsonStateStore",
    "MemoryStateStore",
    "MigrationRecord",
    "ResourceRecord",
    "SqlStateStore",
    "StateStore",
    "open_state_store",
    "parse_version",
]
