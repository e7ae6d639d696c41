"""
Migration definitions and run reports.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from enum import StrEnum

from stackpilot.state.base import parse_version

# V1__create_users.sql, V1.2__add_index.sql, V2_1__seed.sql
MIGRATION_FILENAME = re.compile(r"^V(?P<version>\d+(?:[._]\d+)*)__(?P<description>.+)\.sql$")


def normalize_body(body: str) -> str:
    """Strip a BOM and normalize line endings so checksums are platform-independent."""
    return body.lstrip("\ufeff").replace("\r\n", "\n")


def checksum_of(body: str) -> str:
    return hashlib.sha256(normalize_body(body).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Migration:
    """A versioned schema change."""

    version: str
    description: str
    checksum: str
    statement: str

    @property
    def sort_key(self) -> tuple[int, ...]:
        return parse_version(self.version)

    @classmethod
    def from_file_content(cls, filename: str, body: str) -> "Migration | None":
        """Build a migration from a ``V<version>__<description>.sql`` file, or None."""
        match = MIGRATION_FILENAME.match(filename)
        if not match:
            return None
        return cls(
            version=match.group("version").replace("_", "."),
            description=match.group("description").replace("_", " "),
            checksum=checksum_of(body),
            statement=normalize_body(body),
        )


class MigrationState(StrEnum):
    APPLIED = "applied"
    PENDING = "pending"
    IGNORED = "ignored"  # below the highest applied version, never applied
    MISSING = "missing"  # recorded as applied, no longer defined


@dataclass(frozen=True)
class MigrationInfo:
    version: str
    description: str
    state: MigrationState
    checksum: str


@dataclass
class MigrationReport:
    """Outcome of one migration run."""

    applied: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    failed: str | None = None
    error: str | None = None
    # the failure was a connection problem worth retrying
    transient: bool = False
    current_version: str | None = None

    @property
    def success(self) -> bool:
        return self.failed is None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "applied": list(self.applied),
            "ignored": list(self.ignored),
            "failed": self.failed,
            "error": self.error,
            "transient": self.transient,
            "current_version": self.current_version,
        }
