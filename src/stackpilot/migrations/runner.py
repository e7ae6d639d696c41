"""Migration runner: applies versioned migrations exactly once, in order."""

from __future__ import annotations

from typing import Iterable

import structlog

from stackpilot.core.errors import ConflictError, ProviderError
from stackpilot.migrations.database import MigrationDatabase
from stackpilot.migrations.models import (
    Migration,
    MigrationInfo,
    MigrationReport,
    MigrationState,
)
from stackpilot.migrations.source import sort_migrations
from stackpilot.state.base import MigrationRecord, StateStore, utcnow

logger = structlog.get_logger()


class MigrationRunner:
    """
    Applies migrations newer than the highest applied version.

    Every already-applied version is checked against its definition before
    anything runs; a changed checksum raises ConflictError. Each applied
    migration is recorded immediately, so a failed run resumes where it
    stopped.
    """

    def __init__(self, store: StateStore, database: MigrationDatabase) -> None:
        self._store = store
        self._database = database

    async def run(self, migrations: Iterable[Migration]) -> MigrationReport:
        ordered = sort_migrations(list(migrations))
        applied = await self._store.list_migrations()
        self._validate(ordered, applied)

        pending, ignored = self._partition(ordered, applied)
        report = MigrationReport(
            ignored=[m.version for m in ignored],
            current_version=self._highest(applied),
        )
        for migration in ignored:
            logger.warning("migration_ignored", version=migration.version, reason="older_than_applied")

        if not pending:
            logger.info("migrations_up_to_date", current_version=report.current_version)
            return report

        for migration in pending:
            log = logger.bind(version=migration.version, description=migration.description)
            log.info("migration_started")
            try:
                await self._database.execute(migration.statement)
            except Exception as e:
                report.failed = migration.version
                report.error = getattr(e, "message", None) or str(e)
                report.transient = isinstance(e, ProviderError) and e.transient
                log.error("migration_failed", error=report.error, transient=report.transient)
                break

            await self._store.append_migration(
                MigrationRecord(
                    version=migration.version,
                    description=migration.description,
                    checksum=migration.checksum,
                    applied_at=utcnow(),
                )
            )
            report.applied.append(migration.version)
            report.current_version = migration.version
            log.info("migration_applied")

        return report

    async def info(self, migrations: Iterable[Migration]) -> list[MigrationInfo]:
        """State of every known version, without executing anything."""
        ordered = sort_migrations(list(migrations))
        applied = await self._store.list_migrations()
        pending, ignored = self._partition(ordered, applied)
        pending_keys = {m.sort_key for m in pending}
        ignored_keys = {m.sort_key for m in ignored}
        defined = {m.sort_key: m for m in ordered}

        rows: dict[tuple[int, ...], MigrationInfo] = {}
        for record in applied:
            state = MigrationState.APPLIED if record.sort_key in defined else MigrationState.MISSING
            rows[record.sort_key] = MigrationInfo(
                record.version, record.description, state, record.checksum
            )
        for key, migration in defined.items():
            if key in pending_keys:
                state = MigrationState.PENDING
            elif key in ignored_keys:
                state = MigrationState.IGNORED
            else:
                continue
            rows[key] = MigrationInfo(
                migration.version, migration.description, state, migration.checksum
            )
        return [rows[key] for key in sorted(rows)]

    @staticmethod
    def _validate(migrations: list[Migration], applied: list[MigrationRecord]) -> None:
        defined = {m.sort_key: m for m in migrations}
        for record in applied:
            migration = defined.get(record.sort_key)
            if migration is None:
                logger.warning("applied_migration_missing", version=record.version)
                continue
            if migration.checksum != record.checksum:
                raise ConflictError(
                    f"Migration {record.version} has changed since it was applied",
                    details={
                        "version": record.version,
                        "recorded": record.checksum,
                        "current": migration.checksum,
                    },
                )

    @staticmethod
    def _partition(
        migrations: list[Migration], applied: list[MigrationRecord]
    ) -> tuple[list[Migration], list[Migration]]:
        applied_keys = {record.sort_key for record in applied}
        highest = max(applied_keys) if applied_keys else None
        pending, ignored = [], []
        for migration in migrations:
            if migration.sort_key in applied_keys:
                continue
            if highest is not None and migration.sort_key < highest:
                ignored.append(migration)
            else:
                pending.append(migration)
        return pending, ignored

    @staticmethod
    def _highest(applied: list[MigrationRecord]) -> str | None:
        if not applied:
            return None
        return max(applied, key=lambda r: r.sort_key).version
