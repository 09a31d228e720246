"""SQLite history store adapter.

Implements HistoryStorePort using SQLite with aiosqlite for async access.
Execution records and performance profiles are stored as JSON documents,
so rows written by newer versions with extra fields stay readable.
"""

import asyncio
import json
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from polymediator.core.errors import PersistenceError
from polymediator.core.history import aggregate_stats, filter_records
from polymediator.core.models import (
    ExecutionRecord,
    HistoryFilter,
    HistoryStats,
    PerformanceProfile,
)
from polymediator.core.ports import HistoryStorePort

logger = logging.getLogger(__name__)


class SQLiteHistoryStore(HistoryStorePort):
    """SQLite-backed execution log and profile document, with connection pooling."""

    def __init__(
        self,
        db_path: str,
        max_records: int = 1000,
        pool_size: int = 5,
        profile_capacity: int | None = None,
    ):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            max_records: Execution records retained; the oldest are deleted beyond this.
            pool_size: Number of connections to maintain in the pool.
            profile_capacity: Window size applied to loaded profiles (optional).
        """
        if max_records < 1:
            raise ValueError(f"max_records must be >= 1, got {max_records}")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_records = max_records
        self.profile_capacity = profile_capacity
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        return await aiosqlite.connect(str(self.db_path))

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a pooled connection, wrapping storage errors in PersistenceError."""
        await self._init_schema()
        try:
            conn = await self._get_connection()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Failed to open history database for {action}: {e}") from e
        try:
            yield conn
        except (sqlite3.Error, OSError) as e:
            logger.error(f"History {action} failed: {e}", exc_info=True)
            raise PersistenceError(f"History {action} failed: {e}") from e
        finally:
            await self._return_connection(conn)

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return

        async with self._schema_lock:
            if self._schema_initialized:
                return

            try:
                conn = await self._get_connection()
            except (sqlite3.Error, OSError) as e:
                raise PersistenceError(f"Failed to open history database: {e}") from e
            try:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS execution_log (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT UNIQUE NOT NULL,
                        signature TEXT NOT NULL,
                        store TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        record_json TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS performance_profiles (
                        signature TEXT NOT NULL,
                        store TEXT NOT NULL,
                        profile_json TEXT NOT NULL,
                        updated_at TEXT,
                        PRIMARY KEY (signature, store)
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_log_store ON execution_log(store)"
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_log_signature ON execution_log(signature)"
                )
                await conn.commit()
                self._schema_initialized = True
            except (sqlite3.Error, OSError) as e:
                raise PersistenceError(f"Failed to initialize history schema: {e}") from e
            finally:
                await self._return_connection(conn)

    async def append(self, record: ExecutionRecord) -> None:
        """Insert a record and delete the oldest beyond max_records."""
        document = json.dumps(record.to_dict())

        async with self._write_lock, self._connection("append") as conn:
            await conn.execute(
                """
                INSERT INTO execution_log (id, signature, store, timestamp, record_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.signature,
                    record.store,
                    record.timestamp.isoformat(),
                    document,
                ),
            )
            await conn.execute(
                """
                DELETE FROM execution_log
                WHERE seq NOT IN (
                    SELECT seq FROM execution_log ORDER BY seq DESC LIMIT ?
                )
                """,
                (self.max_records,),
            )
            await conn.commit()

    async def _load_records(self, store: str | None = None) -> list[ExecutionRecord]:
        """Records in insertion order, oldest first."""
        async with self._connection("read") as conn:
            if store is None:
                cursor = await conn.execute(
                    "SELECT seq, record_json FROM execution_log ORDER BY seq ASC"
                )
            else:
                cursor = await conn.execute(
                    "SELECT seq, record_json FROM execution_log WHERE store = ? ORDER BY seq ASC",
                    (store,),
                )
            rows = await cursor.fetchall()

        records = []
        for seq, document in rows:
            record = self._row_to_record(seq, document)
            if record is not None:
                records.append(record)
        return records

    async def query(self, filters: HistoryFilter | None = None) -> list[ExecutionRecord]:
        """Return matching records, newest first."""
        store = filters.store if filters else None
        return filter_records(await self._load_records(store), filters)

    async def stats(
        self, store: str | None = None, filters: HistoryFilter | None = None
    ) -> HistoryStats:
        """Aggregate per-store statistics over the log or a filtered subset."""
        records = await self._load_records(store)
        if filters is not None:
            records = filter_records(records, filters)
        return aggregate_stats(records, store)

    async def clear(self) -> None:
        """Delete every record and profile in a single transaction."""
        async with self._write_lock, self._connection("clear") as conn:
            try:
                await conn.execute("DELETE FROM execution_log")
                await conn.execute("DELETE FROM performance_profiles")
                await conn.commit()
            except sqlite3.Error:
                await conn.rollback()
                raise
        logger.info("Cleared execution log and performance profiles")

    async def save_profile(self, profile: PerformanceProfile) -> None:
        """Create or replace the document for one (signature, store) pair."""
        document = json.dumps(profile.to_dict())
        updated_at = profile.updated_at.isoformat() if profile.updated_at else None

        async with self._write_lock, self._connection("profile save") as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO performance_profiles
                (signature, store, profile_json, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (profile.signature, profile.store, document, updated_at),
            )
            await conn.commit()

    async def load_profiles(self) -> list[PerformanceProfile]:
        """Load every profile document, skipping malformed rows."""
        async with self._connection("profile load") as conn:
            cursor = await conn.execute(
                "SELECT signature, store, profile_json FROM performance_profiles"
            )
            rows = await cursor.fetchall()

        profiles = []
        for signature, store, document in rows:
            try:
                profiles.append(
                    PerformanceProfile.from_dict(
                        json.loads(document), capacity=self.profile_capacity
                    )
                )
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"Failed to parse profile {signature}/{store}: {e}. "
                    f"Profile will be discarded."
                )
        return profiles

    @staticmethod
    def _row_to_record(seq: int, document: str) -> ExecutionRecord | None:
        """Decode one execution_log row, or None if it is malformed."""
        try:
            data: dict[str, Any] = json.loads(document)
            return ExecutionRecord.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse execution record at seq {seq}: {e}. Skipping.")
            return None
