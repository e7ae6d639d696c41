"""
Deployment orchestrator for the plan/apply workflow.

Loads a manifest, reads recorded state, builds the plan and hands it to the
execution engine. The CLI commands are thin wrappers around this class.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

import structlog

from stackpilot.config import Settings, get_settings
from stackpilot.orchestration import (
    ApplyReport,
    ConfigResolver,
    ExecutionEngine,
    HandlerRegistry,
    Plan,
    PlanBuilder,
    RetryPolicy,
)
from stackpilot.secrets import SecretsManager
from stackpilot.specs import Manifest, load_manifest
from stackpilot.state import StateStore, open_state_store

logger = structlog.get_logger()


class DeploymentOrchestrator:
    """Plans and applies one manifest against the configured state store."""

    def __init__(
        self,
        manifest_path: str | Path,
        env: Optional[str] = None,
        settings: Optional[Settings] = None,
        store: Optional[StateStore] = None,
        registry: Optional[HandlerRegistry] = None,
    ) -> None:
        self.manifest_path = Path(manifest_path)
        self.env = env
        self.settings = settings or get_settings()
        self._store = store
        self._registry = registry
        self._manifest: Optional[Manifest] = None

    @property
    def manifest(self) -> Manifest:
        if self._manifest is None:
            self._manifest = load_manifest(self.manifest_path, environment=self.env)
        return self._manifest

    @asynccontextmanager
    async def _open_store(self) -> AsyncIterator[StateStore]:
        if self._store is not None:
            yield self._store
            return
        store = await open_state_store(self.settings)
        try:
            yield store
        finally:
            await store.close()

    async def _build_plan(self, store: StateStore, reapply: Iterable[str]) -> Plan:
        records = await store.list_records()
        plan = PlanBuilder().build(self.manifest.specs, records, reapply=reapply)
        logger.info(
            "plan_built",
            manifest=self.manifest.name,
            environment=self.env,
            orphaned=len(plan.orphaned),
            **plan.counts(),
        )
        return plan

    async def plan(self, reapply: Iterable[str] = ()) -> Plan:
        """Compute the plan without touching any provider."""
        async with self._open_store() as store:
            return await self._build_plan(store, reapply)

    async def apply(
        self,
        reapply: Iterable[str] = (),
        abort: Optional[asyncio.Event] = None,
    ) -> ApplyReport:
        """Build the plan and execute it."""
        async with self._open_store() as store:
            plan = await self._build_plan(store, reapply)
            registry = self._registry
            if registry is None:
                from stackpilot.providers import build_default_registry

                registry = build_default_registry(self.settings, store)

            secrets = SecretsManager(region=self.settings.aws_region)
            engine = ExecutionEngine(
                registry,
                store,
                retry=RetryPolicy.from_settings(self.settings),
                max_workers=self.settings.max_workers,
                call_timeout=self.settings.call_timeout,
                resolver=ConfigResolver(store, secrets),
            )
            return await engine.execute(plan, abort=abort, timeout=self.settings.run_timeout)
