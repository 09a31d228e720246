"""PostgreSQL store adapter.

Implements StorePort using PostgreSQL with asyncpg for async access.
Serves the relational dialect and executes query text as given.
"""

import asyncio
import logging
import re
from typing import Any

import asyncpg

from polymediator.core.models import Dialect, StoreDescriptor, StoreResult
from polymediator.core.ports import StorePort

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)?$")


def quote_identifier(name: str) -> str:
    """Quote a possibly schema-qualified table name.

    Raises:
        ValueError: If the name is not a plain (optionally dotted) identifier.
    """
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table identifier: {name!r}")
    return ".".join(f'"{part}"' for part in name.split("."))


def record_to_row(record: Any) -> dict[str, Any]:
    """Convert an asyncpg Record (or any mapping) to a plain dict."""
    return dict(record.items()) if hasattr(record, "items") else dict(record)


class PostgreSQLStore(StorePort):
    """PostgreSQL-backed store with connection pooling and async access."""

    def __init__(self, dsn: str, name: str = "postgres", pool_size: int = 10):
        """Initialize PostgreSQL store with connection pooling.

        Args:
            dsn: PostgreSQL connection URL.
            name: Name the store is registered under.
            pool_size: Number of connections to maintain in the pool.
        """
        self.dsn = dsn
        self._descriptor = StoreDescriptor(
            name=name,
            dialects=frozenset({Dialect.RELATIONAL}),
            capabilities=frozenset({"sql", "transactions"}),
        )
        self._pool: asyncpg.Pool | None = None
        self._pool_size = pool_size
        self._pool_lock = asyncio.Lock()

    @property
    def descriptor(self) -> StoreDescriptor:
        return self._descriptor

    async def connect(self) -> None:
        """Create the connection pool on first use."""
        async with self._pool_lock:
            if self._pool is not None:
                return
            try:
                self._pool = await asyncpg.create_pool(
                    dsn=self.dsn,
                    min_size=1,
                    max_size=self._pool_size,
                )
            except (asyncpg.PostgresError, OSError) as e:
                raise ConnectionError(f"PostgreSQL connection failed: {e}") from e
        logger.info(f"Connected to PostgreSQL store {self.name}")

    async def close(self) -> None:
        """Close all pooled connections."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def execute_query(self, query: str) -> StoreResult:
        try:
            await self.connect()
            assert self._pool is not None
            async with self._pool.acquire() as conn:
                records = await conn.fetch(query)
        except ConnectionError as e:
            return StoreResult(success=False, error=str(e))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.debug(f"PostgreSQL query failed: {e}")
            return StoreResult(success=False, error=str(e))

        return StoreResult(success=True, data=tuple(record_to_row(r) for r in records))

    async def has_data(self, identifier: str) -> bool:
        """True if the table exists and holds at least one row."""
        try:
            quoted = quote_identifier(identifier)
        except ValueError as e:
            logger.debug(str(e))
            return False

        try:
            await self.connect()
            assert self._pool is not None
            async with self._pool.acquire() as conn:
                exists = await conn.fetchval("SELECT to_regclass($1) IS NOT NULL", identifier)
                if not exists:
                    return False
                return bool(await conn.fetchval(f"SELECT EXISTS (SELECT 1 FROM {quoted})"))
        except (ConnectionError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.debug(f"PostgreSQL data probe for {identifier} failed: {e}")
            return False
