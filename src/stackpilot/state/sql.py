"""
SQL-backed state store.

Uses the SQLAlchemy async engine so any async driver works
(``postgresql+asyncpg://``, ``sqlite+aiosqlite://``). Each operation runs
in its own transaction; there are no cross-record transactions.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from stackpilot.core.errors import StateStoreError
from stackpilot.state.base import MigrationRecord, ResourceRecord, check_append
from stackpilot.state.models import Base, MigrationRecordModel, ResourceRecordModel

logger = structlog.get_logger()


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SqlStateStore:
    def __init__(self, url: str, *, engine: AsyncEngine | None = None) -> None:
        self.url = url
        self._engine = engine or create_async_engine(url, future=True, pool_pre_ping=True)
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def init(self) -> None:
        """Create tables that do not exist yet."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot initialise state tables: {e}") from e

    async def get(self, name: str) -> ResourceRecord | None:
        try:
            async with self._session_factory() as session:
                model = await session.get(ResourceRecordModel, name)
                return self._to_record(model) if model else None
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot read record '{name}': {e}") from e

    async def put(self, record: ResourceRecord) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                model = await session.get(ResourceRecordModel, record.name)
                if model is None:
                    session.add(
                        ResourceRecordModel(
                            name=record.name,
                            kind=record.kind,
                            provider_id=record.provider_id,
                            fingerprint=record.fingerprint,
                            applied_at=record.applied_at,
                        )
                    )
                else:
                    model.kind = record.kind
                    model.provider_id = record.provider_id
                    model.fingerprint = record.fingerprint
                    model.applied_at = record.applied_at
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot write record '{record.name}': {e}") from e

    async def delete(self, name: str) -> bool:
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(ResourceRecordModel).where(ResourceRecordModel.name == name)
                )
                return bool(result.rowcount)  # type: ignore[attr-defined]
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot delete record '{name}': {e}") from e

    async def list_records(self) -> list[ResourceRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ResourceRecordModel).order_by(ResourceRecordModel.name)
                )
                return [self._to_record(model) for model in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot list records: {e}") from e

    async def list_migrations(self) -> list[MigrationRecord]:
        try:
            async with self._session_factory() as session:
                return await self._migrations(session)
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot list migrations: {e}") from e

    async def append_migration(self, record: MigrationRecord) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                existing = await self._migrations(session)
                if not check_append(existing, record):
                    return
                session.add(
                    MigrationRecordModel(
                        version=record.version,
                        description=record.description,
                        checksum=record.checksum,
                        applied_at=record.applied_at,
                    )
                )
        except SQLAlchemyError as e:
            raise StateStoreError(f"Cannot append migration {record.version}: {e}") from e

    async def close(self) -> None:
        await self._engine.dispose()

    async def _migrations(self, session: AsyncSession) -> list[MigrationRecord]:
        result = await session.execute(select(MigrationRecordModel).order_by(MigrationRecordModel.id))
        records = [
            MigrationRecord(
                version=model.version,
                description=model.description,
                checksum=model.checksum,
                applied_at=_aware(model.applied_at),
            )
            for model in result.scalars().all()
        ]
        return sorted(records, key=lambda r: r.sort_key)

    @staticmethod
    def _to_record(model: ResourceRecordModel) -> ResourceRecord:
        return ResourceRecord(
            name=model.name,
            kind=model.kind,
            provider_id=model.provider_id,
            fingerprint=model.fingerprint,
            applied_at=_aware(model.applied_at),
        )
