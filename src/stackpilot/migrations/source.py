"""
Migration sources: local directories and S3 prefixes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aioboto3
import structlog

from stackpilot.core.errors import ConfigurationError, ValidationError
from stackpilot.migrations.models import Migration

logger = structlog.get_logger()


def sort_migrations(migrations: list[Migration]) -> list[Migration]:
    """Order by version and reject duplicate versions."""
    seen: dict[tuple[int, ...], Migration] = {}
    for migration in migrations:
        key = migration.sort_key
        if key in seen:
            raise ValidationError(
                f"Duplicate migration version {migration.version}",
                details={"version": migration.version},
            )
        seen[key] = migration
    return [seen[key] for key in sorted(seen)]


def load_directory(path: str | Path) -> list[Migration]:
    """Load ``V<version>__<description>.sql`` files from a directory."""
    directory = Path(path)
    if not directory.is_dir():
        raise ConfigurationError(f"Migration directory not found: {directory}")

    migrations = []
    for file in sorted(directory.iterdir()):
        if not file.is_file():
            continue
        migration = Migration.from_file_content(file.name, file.read_text(encoding="utf-8"))
        if migration is None:
            logger.info("migration_file_ignored", file=file.name)
            continue
        migrations.append(migration)
    return sort_migrations(migrations)


def parse_s3_location(location: str) -> tuple[str, str]:
    """Split ``s3://bucket/prefix`` into bucket and prefix."""
    if not location.startswith("s3://"):
        raise ConfigurationError(f"Not an S3 location: {location}")
    bucket, _, prefix = location[len("s3://") :].partition("/")
    if not bucket:
        raise ConfigurationError(f"S3 location has no bucket: {location}")
    return bucket, prefix


class S3MigrationSource:
    """Fetches migration files stored under an S3 prefix."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        region: str | None = None,
        session: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix
        self._session = session or aioboto3.Session(region_name=region)

    async def load(self) -> list[Migration]:
        from stackpilot.providers.base import aws_errors

        migrations = []
        async with self._session.client("s3") as client, aws_errors("s3.fetch_migrations"):
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents", []):
                    filename = obj["Key"].rsplit("/", 1)[-1]
                    if not filename.endswith(".sql"):
                        continue
                    response = await client.get_object(Bucket=self.bucket, Key=obj["Key"])
                    async with response["Body"] as stream:
                        body = (await stream.read()).decode("utf-8")
                    migration = Migration.from_file_content(filename, body)
                    if migration is None:
                        logger.info("migration_file_ignored", key=obj["Key"])
                        continue
                    migrations.append(migration)
        logger.info("migrations_fetched", bucket=self.bucket, prefix=self.prefix, count=len(migrations))
        return sort_migrations(migrations)


async def load_migrations(location: str, *, region: str | None = None) -> list[Migration]:
    """Load migrations from a local directory or an ``s3://bucket/prefix`` location."""
    if location.startswith("s3://"):
        bucket, prefix = parse_s3_location(location)
        return await S3MigrationSource(bucket, prefix, region=region).load()
    return load_directory(location)
