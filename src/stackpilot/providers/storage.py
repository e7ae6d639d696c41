"""
Object storage sync used to stage application code on a host.

Mirrors ``aws s3 sync s3://bucket/prefix local_path``: objects missing
locally, with a different size, or newer than the local copy are
downloaded. Nothing is deleted locally.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import aioboto3
import structlog

from stackpilot.core.errors import ProviderError
from stackpilot.providers.base import aws_errors, require
from stackpilot.specs.models import ResourceKind

logger = structlog.get_logger()


class S3DirectorySync:
    def __init__(self, session: Any | None = None, *, region: str | None = None) -> None:
        self._session = session or aioboto3.Session(region_name=region)

    async def sync_directory(self, bucket: str, local_path: str | Path, prefix: str = "") -> int:
        """Download changed objects under ``prefix`` into ``local_path``; return how many.

        ``prefix`` names a directory: ``app`` covers ``app/...`` but not
        ``application/...``.
        """
        root = Path(local_path).resolve()
        root.mkdir(parents=True, exist_ok=True)
        folder = prefix.strip("/")
        listing = f"{folder}/" if folder else ""
        copied = 0

        async with self._session.client("s3") as s3:
            paginator = s3.get_paginator("list_objects_v2")
            async with aws_errors("s3.list_objects_v2"):
                async for page in paginator.paginate(Bucket=bucket, Prefix=listing):
                    for obj in page.get("Contents", []):
                        key = obj["Key"]
                        relative = key[len(listing) :] if key.startswith(listing) else ""
                        if not relative or relative.endswith("/"):
                            continue
                        dest = self._destination(root, key, relative)
                        if not self._changed(dest, obj):
                            continue
                        await self._download(s3, bucket, key, dest)
                        copied += 1

        logger.info("s3_sync_finished", bucket=bucket, prefix=listing, path=str(root), copied=copied)
        return copied

    @staticmethod
    def _destination(root: Path, key: str, relative: str) -> Path:
        dest = (root / relative.lstrip("/")).resolve()
        if root not in dest.parents:
            raise ProviderError.permanent_error(f"Object key escapes sync directory: {key}", key=key)
        return dest

    @staticmethod
    def _changed(dest: Path, obj: Dict[str, Any]) -> bool:
        if not dest.exists():
            return True
        stat = dest.stat()
        if stat.st_size != obj.get("Size"):
            return True
        modified = obj.get("LastModified")
        return modified is not None and modified.timestamp() > stat.st_mtime

    @staticmethod
    async def _download(s3: Any, bucket: str, key: str, dest: Path) -> None:
        async with aws_errors("s3.get_object"):
            response = await s3.get_object(Bucket=bucket, Key=key)
            async with response["Body"] as stream:
                data = await stream.read()
        tmp = dest.with_name(f".{dest.name}.part")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, dest)
        except OSError as e:
            raise ProviderError.permanent_error(f"Cannot write {dest}: {e}", key=key) from e


class ArtifactSyncHandler:
    """Stages application files from a bucket onto the local host."""

    kind = ResourceKind.ARTIFACT_SYNC

    def __init__(self, sync: S3DirectorySync) -> None:
        self._sync = sync

    async def create(self, config: Dict[str, Any]) -> str:
        bucket = require(config, "bucket", self.kind)
        prefix = config.get("prefix", "")
        await self._sync.sync_directory(bucket, require(config, "local_path", self.kind), prefix)
        return f"s3://{bucket}/{prefix}"

    async def update(self, provider_id: str, config: Dict[str, Any]) -> None:
        await self.create(config)
