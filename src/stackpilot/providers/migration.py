"""Database migrations as a plan step."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List

import structlog

from stackpilot.core.errors import ProviderError
from stackpilot.migrations.database import MigrationDatabase, SqlDatabase
from stackpilot.migrations.models import Migration
from stackpilot.migrations.runner import MigrationRunner
from stackpilot.migrations.source import load_migrations
from stackpilot.providers.base import require
from stackpilot.specs.models import ResourceKind
from stackpilot.state.base import StateStore

logger = structlog.get_logger()

MigrationLoader = Callable[..., Awaitable[List[Migration]]]


class DatabaseMigrationHandler:
    """
    Runs pending migrations from ``location`` against ``database_url``.

    The provider id is the highest applied version. ConflictError from the
    runner propagates unchanged so the executor aborts the run.
    """

    kind = ResourceKind.DATABASE_MIGRATION

    def __init__(
        self,
        store: StateStore,
        *,
        region: str | None = None,
        database_factory: Callable[[str], MigrationDatabase] = SqlDatabase,
        loader: MigrationLoader = load_migrations,
    ) -> None:
        self._store = store
        self._region = region
        self._database_factory = database_factory
        self._loader = loader

    async def create(self, config: Dict[str, Any]) -> str:
        location = require(config, "location", self.kind)
        migrations = await self._loader(location, region=self._region)
        database = self._database_factory(require(config, "database_url", self.kind))
        try:
            report = await MigrationRunner(self._store, database).run(migrations)
        finally:
            await database.close()

        if not report.success:
            raise ProviderError(
                f"Migration {report.failed} failed: {report.error}",
                transient=report.transient,
                details={"applied": report.applied},
            )
        logger.info("migrations_step_finished", applied=report.applied, version=report.current_version)
        return f"version:{report.current_version or '0'}"

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        await self.create(config)
