"""Tests for the state store backends.

Every backend must behave the same, so most tests run against all three.
"""

import json
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from stackpilot.config import Settings
from stackpilot.core.errors import ConfigurationError, ConflictError, StateStoreError, ValidationError
from stackpilot.state import (
    JsonStateStore,
    MemoryStateStore,
    MigrationRecord,
    ResourceRecord,
    SqlStateStore,
    open_state_store,
    parse_version,
)

APPLIED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(name="network", provider_id="vpc-123", fingerprint="abc"):
    return ResourceRecord(
        name=name, kind="network", provider_id=provider_id, fingerprint=fingerprint, applied_at=APPLIED_AT
    )


def migration(version, checksum=None):
    return MigrationRecord(
        version=version,
        checksum=checksum or f"sum-{version}",
        description=f"step {version}",
        applied_at=APPLIED_AT,
    )


@pytest_asyncio.fixture(params=["memory", "json", "sql"])
async def backend(request, tmp_path):
    if request.param == "memory":
        yield MemoryStateStore()
    elif request.param == "json":
        yield JsonStateStore(tmp_path / "state.json")
    else:
        store = SqlStateStore(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
        await store.init()
        yield store
        await store.close()


class TestResourceRecords:
    """Tests for record persistence."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, backend):
        """Test reading an unknown name."""
        assert await backend.get("network") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, backend):
        """Test a written record is read back unchanged."""
        await backend.put(record())

        assert await backend.get("network") == record()

    @pytest.mark.asyncio
    async def test_put_replaces_existing(self, backend):
        """Test a second put for the same name overwrites the first."""
        await backend.put(record(fingerprint="old"))
        await backend.put(record(fingerprint="new"))

        records = await backend.list_records()
        assert len(records) == 1
        assert records[0].fingerprint == "new"

    @pytest.mark.asyncio
    async def test_list_is_sorted_by_name(self, backend):
        """Test records come back in name order."""
        await backend.put(record("subnet"))
        await backend.put(record("bucket"))

        assert [r.name for r in await backend.list_records()] == ["bucket", "subnet"]

    @pytest.mark.asyncio
    async def test_delete(self, backend):
        """Test delete reports whether something was removed."""
        await backend.put(record())

        assert await backend.delete("network") is True
        assert await backend.delete("network") is False
        assert await backend.get("network") is None


class TestMigrationLog:
    """Tests for the append-only migration log."""

    @pytest.mark.asyncio
    async def test_append_in_order(self, backend):
        """Test appended migrations are listed in version order."""
        await backend.append_migration(migration("1"))
        await backend.append_migration(migration("1.1"))
        await backend.append_migration(migration("2"))

        assert [m.version for m in await backend.list_migrations()] == ["1", "1.1", "2"]

    @pytest.mark.asyncio
    async def test_identical_append_is_ignored(self, backend):
        """Test re-appending the same record is a no-op."""
        await backend.append_migration(migration("1"))
        await backend.append_migration(migration("1"))

        assert len(await backend.list_migrations()) == 1

    @pytest.mark.asyncio
    async def test_checksum_mismatch_conflicts(self, backend):
        """Test re-appending a version with a new checksum raises ConflictError."""
        await backend.append_migration(migration("1"))

        with pytest.raises(ConflictError):
            await backend.append_migration(migration("1", checksum="different"))

    @pytest.mark.asyncio
    async def test_older_version_is_rejected(self, backend):
        """Test the log only grows forward."""
        await backend.append_migration(migration("2"))

        with pytest.raises(ValidationError):
            await backend.append_migration(migration("1"))

        assert [m.version for m in await backend.list_migrations()] == ["2"]


class TestJsonStateStore:
    """Tests specific to the JSON file backend."""

    @pytest.mark.asyncio
    async def test_document_layout(self, tmp_path):
        """Test the on-disk document format."""
        path = tmp_path / "nested" / "state.json"
        store = JsonStateStore(path)

        await store.put(record())
        await store.append_migration(migration("1"))

        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["resources"]["network"]["provider_id"] == "vpc-123"
        assert data["migrations"][0]["version"] == "1"

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        """Test state written by one store is read by another."""
        await JsonStateStore(tmp_path / "state.json").put(record())

        assert await JsonStateStore(tmp_path / "state.json").get("network") == record()

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        """Test atomic writes clean up after themselves."""
        store = JsonStateStore(tmp_path / "state.json")
        await store.put(record())
        await store.put(record("subnet"))

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_state_error(self, tmp_path):
        """Test unreadable state surfaces as StateStoreError."""
        path = tmp_path / "state.json"
        path.write_text("{not json")

        with pytest.raises(StateStoreError):
            await JsonStateStore(path).list_records()


class TestOpenStateStore:
    """Tests for backend selection from settings."""

    @pytest.mark.asyncio
    async def test_file_backend_by_default(self, tmp_path):
        """Test the JSON store is used unless sql is configured."""
        store = await open_state_store(Settings(state_path=str(tmp_path / "s.json")))

        assert isinstance(store, JsonStateStore)
        assert store.path == tmp_path / "s.json"

    @pytest.mark.asyncio
    async def test_sql_backend_requires_url(self):
        """Test sql backend without a URL is a configuration error."""
        with pytest.raises(ConfigurationError):
            await open_state_store(Settings(state_backend="sql", state_database_url=None))

    @pytest.mark.asyncio
    async def test_sql_backend_creates_tables(self, tmp_path):
        """Test the sql backend is initialised and usable."""
        settings = Settings(
            state_backend="sql", state_database_url=f"sqlite+aiosqlite:///{tmp_path / 'state.db'}"
        )
        store = await open_state_store(settings)
        try:
            await store.put(record())
            assert (await store.get("network")).applied_at == APPLIED_AT
        finally:
            await store.close()


class TestParseVersion:
    """Tests for parse_version."""

    def test_dotted_and_underscored(self):
        """Test both separators are accepted."""
        assert parse_version("1.2") == (1, 2)
        assert parse_version("2_1") == (2, 1)

    def test_numeric_ordering(self):
        """Test versions compare numerically, not lexically."""
        assert parse_version("1.10") > parse_version("1.9")

    def test_invalid(self):
        """Test non-numeric versions are rejected."""
        with pytest.raises(ValidationError):
            parse_version("1.x")
