"""State store contract and persisted record types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from stackpilot.core.errors import ConflictError, ValidationError

# Fingerprint of a resource that exists but whose creation did not finish.
# It never matches a spec, so the next plan updates the resource.
INCOMPLETE_FINGERPRINT = ""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_version(version: str) -> tuple[int, ...]:
    """Parse a dotted migration version ("1", "1.2", "2_1") into a sortable tuple."""
    parts = version.replace("_", ".").split(".")
    try:
        return tuple(int(part) for part in parts)
    except ValueError as e:
        raise ValidationError(f"Invalid migration version: {version!r}") from e


@dataclass(frozen=True)
class ResourceRecord:
    """Outcome of the last successful apply of a resource."""

    name: str
    kind: str
    provider_id: str
    fingerprint: str
    applied_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "provider_id": self.provider_id,
            "fingerprint": self.fingerprint,
            "applied_at": self.applied_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceRecord":
        return cls(
            name=data["name"],
            kind=data["kind"],
            provider_id=data["provider_id"],
            fingerprint=data["fingerprint"],
            applied_at=datetime.fromisoformat(data["applied_at"]),
        )


@dataclass(frozen=True)
class MigrationRecord:
    """An applied migration."""

    version: str
    checksum: str
    description: str = ""
    applied_at: datetime = field(default_factory=utcnow)

    @property
    def sort_key(self) -> tuple[int, ...]:
        return parse_version(self.version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "checksum": self.checksum,
            "applied_at": self.applied_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationRecord":
        return cls(
            version=data["version"],
            description=data.get("description", ""),
            checksum=data["checksum"],
            applied_at=datetime.fromisoformat(data["applied_at"]),
        )


def check_append(existing: Sequence[MigrationRecord], record: MigrationRecord) -> bool:
    """
    Validate appending ``record`` to an ordered migration log.

    Returns False when an identical record is already present (nothing to
    append). Raises ConflictError on a checksum mismatch for a known
    version and ValidationError when the version does not extend the log.
    """
    for applied in existing:
        if applied.version == record.version:
            if applied.checksum != record.checksum:
                raise ConflictError(
                    f"Migration {record.version} was applied with a different checksum",
                    details={
                        "version": record.version,
                        "recorded": applied.checksum,
                        "current": record.checksum,
                    },
                )
            return False

    if existing and record.sort_key <= existing[-1].sort_key:
        raise ValidationError(
            f"Migration {record.version} is not newer than {existing[-1].version}",
            details={"version": record.version, "highest": existing[-1].version},
        )
    return True


class StateStore(Protocol):
    """Persistence for resource records and the migration log."""

    async def get(self, name: str) -> ResourceRecord | None:
        ...

    async def put(self, record: ResourceRecord) -> None:
        ...

    async def delete(self, name: str) -> bool:
        ...

    async def list_records(self) -> list[ResourceRecord]:
        ...

    async def list_migrations(self) -> list[MigrationRecord]:
        ...

    async def append_migration(self, record: MigrationRecord) -> None:
        ...

    async def close(self) -> None:
        ...
