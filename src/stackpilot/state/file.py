"""
JSON file state store.

The whole state lives in one document::

    {"version": 1, "resources": {name: record}, "migrations": [record, ...]}

Every write replaces the file atomically (temp file + ``os.replace``), so a
crash leaves either the previous or the new document on disk.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from stackpilot.core.errors import StateStoreError
from stackpilot.state.base import MigrationRecord, ResourceRecord, check_append

logger = structlog.get_logger()

STATE_FORMAT_VERSION = 1
DEFAULT_STATE_PATH = Path(".stackpilot/state.json")


class JsonStateStore:
    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path else DEFAULT_STATE_PATH
        self._lock = asyncio.Lock()

    async def get(self, name: str) -> ResourceRecord | None:
        data = self._read()
        raw = data["resources"].get(name)
        return ResourceRecord.from_dict(raw) if raw else None

    async def put(self, record: ResourceRecord) -> None:
        async with self._lock:
            data = self._read()
            data["resources"][record.name] = record.to_dict()
            self._write(data)

    async def delete(self, name: str) -> bool:
        async with self._lock:
            data = self._read()
            if data["resources"].pop(name, None) is None:
                return False
            self._write(data)
            return True

    async def list_records(self) -> list[ResourceRecord]:
        resources = self._read()["resources"]
        return [ResourceRecord.from_dict(resources[name]) for name in sorted(resources)]

    async def list_migrations(self) -> list[MigrationRecord]:
        return [MigrationRecord.from_dict(raw) for raw in self._read()["migrations"]]

    async def append_migration(self, record: MigrationRecord) -> None:
        async with self._lock:
            data = self._read()
            existing = [MigrationRecord.from_dict(raw) for raw in data["migrations"]]
            if not check_append(existing, record):
                return
            data["migrations"].append(record.to_dict())
            self._write(data)

    async def close(self) -> None:
        return None

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"version": STATE_FORMAT_VERSION, "resources": {}, "migrations": []}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreError(
                f"Cannot read state file: {e}", details={"path": str(self.path)}
            ) from e
        if not isinstance(data, dict):
            raise StateStoreError("State file is not a JSON object", details={"path": str(self.path)})
        data.setdefault("resources", {})
        data.setdefault("migrations", [])
        return data

    def _write(self, data: dict[str, Any]) -> None:
        data["version"] = STATE_FORMAT_VERSION
        payload = json.dumps(data, indent=2, sort_keys=True) + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".state-", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StateStoreError(
                f"Cannot write state file: {e}", details={"path": str(self.path)}
            ) from e
        logger.debug("state_written", path=str(self.path))
