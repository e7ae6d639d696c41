from __future__ import annotations

from stackpilot.state.base import MigrationRecord, ResourceRecord, check_append


class MemoryStateStore:
    """In-process state store, for tests and dry runs."""

    def __init__(self) -> None:
        self._records: dict[str, ResourceRecord] = {}
        self._migrations: list[MigrationRecord] = []

    async def get(self, name: str) -> ResourceRecord | None:
        return self._records.get(name)

    async def put(self, record: ResourceRecord) -> None:
        self._records[record.name] = record

    async def delete(self, name: str) -> bool:
        return self._records.pop(name, None) is not None

    async def list_records(self) -> list[ResourceRecord]:
        return [self._records[name] for name in sorted(self._records)]

    async def list_migrations(self) -> list[MigrationRecord]:
        return list(self._migrations)

    async def append_migration(self, record: MigrationRecord) -> None:
        if check_append(self._migrations, record):
            self._migrations.append(record)

    async def close(self) -> None:
        return None
