"""Database targets that migration statements are executed against."""

from __future__ import annotations

import re
from typing import Protocol

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from stackpilot.core.errors import ProviderError

logger = structlog.get_logger()

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


class MigrationDatabase(Protocol):
    async def execute(self, script: str) -> None:
        ...

    async def close(self) -> None:
        ...


def split_statements(script: str) -> list[str]:
    """
    Split a SQL script on ``;`` outside quotes, comments and ``$$`` bodies.

    Comments are kept with the statement that follows them; empty
    statements are dropped.
    """
    statements: list[str] = []
    current: list[str] = []
    i = 0
    length = len(script)
    quote: str | None = None

    while i < length:
        char = script[i]
        pair = script[i : i + 2]

        if quote is not None:
            closer = "*/" if quote == "/*" else "\n" if quote == "--" else quote
            if script.startswith(closer, i):
                current.append(closer)
                i += len(closer)
                quote = None
            else:
                current.append(char)
                i += 1
            continue

        if pair in ("--", "/*", "$$"):
            quote = pair
            current.append(pair)
            i += 2
        elif char in ("'", '"'):
            quote = char
            current.append(char)
            i += 1
        elif char == ";":
            statements.append("".join(current))
            current = []
            i += 1
        else:
            current.append(char)
            i += 1

    statements.append("".join(current))
    return [s.strip() for s in statements if _has_code(s)]


def _has_code(statement: str) -> bool:
    for line in _BLOCK_COMMENT.sub("", statement).splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("--"):
            return True
    return False


def classify_database_error(exc: SQLAlchemyError, connected: bool) -> ProviderError:
    """Connection failures are transient; errors raised by a statement are permanent.

    Before a connection is established any ``OperationalError`` or
    ``InterfaceError`` means the server is unreachable (still starting,
    restarting, network). Once connected, only an invalidated connection is
    retried, since drivers also report bad SQL as ``OperationalError``.
    """
    lost = isinstance(exc, DBAPIError) and exc.connection_invalidated
    if lost or (not connected and isinstance(exc, (OperationalError, InterfaceError))):
        return ProviderError.transient_error(f"Database unavailable: {exc}")
    return ProviderError.permanent_error(f"Migration statement failed: {exc}")


class SqlDatabase:
    """Runs migration scripts through a SQLAlchemy async engine, one transaction per script."""

    def __init__(self, url: str, *, engine: AsyncEngine | None = None) -> None:
        self._engine = engine or create_async_engine(url, future=True)

    async def execute(self, script: str) -> None:
        statements = split_statements(script)
        connected = False
        try:
            async with self._engine.begin() as conn:
                connected = True
                for statement in statements:
                    await conn.exec_driver_sql(statement)
        except SQLAlchemyError as e:
            raise classify_database_error(e, connected) from e
        logger.debug("migration_script_executed", statements=len(statements))

    async def close(self) -> None:
        await self._engine.dispose()
