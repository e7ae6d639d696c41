"""Tests for providers/storage.py."""

import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from stackpilot.core.errors import ConfigurationError, ProviderError
from stackpilot.providers import ArtifactSyncHandler, S3DirectorySync


class FakePaginator:
    def __init__(self, pages):
        self.pages = pages
        self.kwargs = None

    def paginate(self, **kwargs):
        self.kwargs = kwargs
        return self._iterate()

    async def _iterate(self):
        for page in self.pages:
            yield page


def fake_s3(objects):
    """An S3 client serving ``objects`` ({key: bytes}) as one listing page."""
    modified = datetime(2024, 1, 1, tzinfo=timezone.utc)
    paginator = FakePaginator(
        [{"Contents": [{"Key": k, "Size": len(v), "LastModified": modified} for k, v in objects.items()]}]
    )
    s3 = MagicMock()
    s3.get_paginator.return_value = paginator

    async def get_object(Bucket, Key):
        body = AsyncMock()
        body.read.return_value = objects[Key]
        return {"Body": AsyncMock(__aenter__=AsyncMock(return_value=body), __aexit__=AsyncMock(return_value=None))}

    s3.get_object = AsyncMock(side_effect=get_object)
    return s3


def fake_session(client):
    session = MagicMock()
    session.client = MagicMock(
        return_value=AsyncMock(
            __aenter__=AsyncMock(return_value=client),
            __aexit__=AsyncMock(return_value=None),
        )
    )
    return session


class TestS3DirectorySync:
    """Tests for S3DirectorySync."""

    @pytest.mark.asyncio
    async def test_downloads_objects_under_prefix(self, tmp_path):
        """Test objects are written relative to the prefix."""
        s3 = fake_s3({"releases/v1/app.py": b"print('hi')", "releases/v1/static/site.css": b"body{}"})
        sync = S3DirectorySync(fake_session(s3))

        copied = await sync.sync_directory("deploy-bucket", tmp_path / "app", prefix="releases/v1")

        assert copied == 2
        assert (tmp_path / "app" / "app.py").read_bytes() == b"print('hi')"
        assert (tmp_path / "app" / "static" / "site.css").read_bytes() == b"body{}"
        assert s3.get_paginator.return_value.kwargs == {"Bucket": "deploy-bucket", "Prefix": "releases/v1/"}

    @pytest.mark.asyncio
    async def test_unchanged_files_are_skipped(self, tmp_path):
        """Test a second sync downloads nothing."""
        objects = {"app.py": b"print('hi')"}
        sync = S3DirectorySync(fake_session(fake_s3(objects)))
        await sync.sync_directory("b", tmp_path)

        s3 = fake_s3(objects)
        copied = await S3DirectorySync(fake_session(s3)).sync_directory("b", tmp_path)

        assert copied == 0
        s3.get_object.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_size_change_triggers_download(self, tmp_path):
        """Test a local file with a different size is replaced."""
        (tmp_path / "app.py").write_bytes(b"old contents that are longer")
        os.utime(tmp_path / "app.py", (2_000_000_000, 2_000_000_000))

        copied = await S3DirectorySync(fake_session(fake_s3({"app.py": b"new"}))).sync_directory("b", tmp_path)

        assert copied == 1
        assert (tmp_path / "app.py").read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_keys_escaping_directory_are_rejected(self, tmp_path):
        """Test ../ keys cannot write outside the target directory."""
        sync = S3DirectorySync(fake_session(fake_s3({"../evil.sh": b"rm -rf /"})))

        with pytest.raises(ProviderError, match="escapes"):
            await sync.sync_directory("b", tmp_path / "app")

        assert not (tmp_path / "evil.sh").exists()

    @pytest.mark.asyncio
    async def test_prefix_is_treated_as_directory(self, tmp_path):
        """Test a key equal to the prefix and sibling prefixes are not synced."""
        s3 = fake_s3(
            {
                "app": b"marker object",
                "app/": b"",
                "application/other.py": b"x = 1",
                "app/main.py": b"print('main')",
            }
        )

        copied = await S3DirectorySync(fake_session(s3)).sync_directory("b", tmp_path / "app", prefix="app/")

        assert copied == 1
        assert (tmp_path / "app").is_dir()
        assert (tmp_path / "app" / "main.py").read_bytes() == b"print('main')"
        assert not (tmp_path / "app" / "other.py").exists()
        assert s3.get_paginator.return_value.kwargs == {"Bucket": "b", "Prefix": "app/"}
        s3.get_object.assert_awaited_once_with(Bucket="b", Key="app/main.py")

    @pytest.mark.asyncio
    async def test_local_write_failure_is_a_provider_error(self, tmp_path):
        """Test an object that cannot be written locally fails as a permanent ProviderError."""
        (tmp_path / "static").write_text("a file where a directory is needed")

        sync = S3DirectorySync(fake_session(fake_s3({"static/site.css": b"body{}"})))

        with pytest.raises(ProviderError, match="Cannot write") as exc_info:
            await sync.sync_directory("b", tmp_path)

        assert not exc_info.value.transient


class TestArtifactSyncHandler:
    """Tests for ArtifactSyncHandler."""

    @pytest.mark.asyncio
    async def test_create_returns_source_uri(self):
        """Test the provider id is the synced S3 location."""
        sync = MagicMock()
        sync.sync_directory = AsyncMock(return_value=3)
        handler = ArtifactSyncHandler(sync)

        provider_id = await handler.create({"bucket": "deploy", "prefix": "web/v2", "local_path": "/srv/web"})

        assert provider_id == "s3://deploy/web/v2"
        sync.sync_directory.assert_awaited_once_with("deploy", "/srv/web", "web/v2")

    @pytest.mark.asyncio
    async def test_update_resyncs(self):
        """Test update performs the sync again."""
        sync = MagicMock()
        sync.sync_directory = AsyncMock(return_value=0)

        await ArtifactSyncHandler(sync).update("s3://deploy/", {"bucket": "deploy", "local_path": "/srv"})

        sync.sync_directory.assert_awaited_once_with("deploy", "/srv", "")

    @pytest.mark.asyncio
    async def test_requires_local_path(self):
        """Test local_path is mandatory."""
        with pytest.raises(ConfigurationError, match="local_path"):
            await ArtifactSyncHandler(MagicMock()).create({"bucket": "deploy"})
