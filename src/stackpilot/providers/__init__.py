"""Provider handlers and default registry wiring."""

from __future__ import annotations

from typing import Any

from stackpilot.config import Settings
from stackpilot.orchestration.registry import HandlerRegistry
from stackpilot.providers.aws import (
    AWS_HANDLERS,
    AwsHandler,
    ComputeGroupHandler,
    DatabaseHandler,
    DnsRecordHandler,
    LoadBalancerHandler,
    NetworkHandler,
    SecurityGroupHandler,
    StorageBucketHandler,
    SubnetHandler,
)
from stackpilot.providers.base import aws_errors, classify_aws_error
from stackpilot.providers.command import PackageInstallHandler, ShellCommandRunner
from stackpilot.providers.migration import DatabaseMigrationHandler
from stackpilot.providers.storage import ArtifactSyncHandler, S3DirectorySync
from stackpilot.state.base import StateStore


def build_default_registry(
    settings: Settings,
    store: StateStore,
    *,
    session: Any | None = None,
) -> HandlerRegistry:
    """Register every built-in handler against one shared AWS session."""
    import aioboto3

    session = session or aioboto3.Session(
        region_name=settings.aws_region, profile_name=settings.aws_profile
    )
    registry = HandlerRegistry()
    for handler_cls in AWS_HANDLERS:
        registry.register(handler_cls(session, region=settings.aws_region))
    registry.register(ArtifactSyncHandler(S3DirectorySync(session)))
    registry.register(PackageInstallHandler(ShellCommandRunner()))
    registry.register(DatabaseMigrationHandler(store, region=settings.aws_region))
    return registry


__all__ = [
    "ArtifactSyncHandler",
    "AwsHandler",
    "ComputeGroupHandler",
    "DatabaseHandler",
    "DatabaseMigrationHandler",
    "DnsRecordHandler",
    "LoadBalancerHandler",
    "NetworkHandler",
    "PackageInstallHandler",
    "S3DirectorySync",
    "SecurityGroupHandler",
    "ShellCommandRunner",
    "StorageBucketHandler",
    "SubnetHandler",
    "aws_errors",
    "build_default_registry",
    "classify_aws_error",
]
