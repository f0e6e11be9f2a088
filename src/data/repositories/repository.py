"""SQLite repository backing the access layer's persistent store.

This module provides the single database connection used for:
- The persistent cache tier (esi_service_cache)
- Resolved universe names (esi_service_universe_names)
- OAuth token records (esi_service_tokens)
- Sync metadata for aggregate adapters (esi_sync_metadata)

Table-specific access functions live in separate modules
(cache_entries.py, names.py, tokens.py, sync_metadata.py) and take the
repository as their first argument.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from utils import global_config

from . import schemas

logger = logging.getLogger(__name__)


def to_db_time(value: datetime) -> str:
    """Serialize a datetime for storage (UTC, fixed-width ISO-8601)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class Repository:
    """SQLite persistent store for cache entries, names, tokens and sync state.

    Usage:
        repo = Repository()
        await repo.initialize()

        from data.repositories import cache_entries
        row = await cache_entries.get_entry(repo, key, now)
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        """Initialize repository with database path.

        Args:
            db_path: Path to the SQLite database file. If None, uses the
                configured cache database under the user data directory.
        """
        if db_path is None:
            db_path = global_config.cache.db_path

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()
        self._initialized = False

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level="DEFERRED",
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")

        return self._conn

    async def execute(
        self, sql: str, parameters: tuple[Any, ...] | dict[str, Any] = ()
    ) -> sqlite3.Cursor:
        """Execute a SQL statement asynchronously.

        Args:
            sql: SQL statement to execute
            parameters: Parameters for the SQL statement

        Returns:
            Cursor with results
        """
        async with self._lock:
            conn = self._get_connection()
            return await asyncio.to_thread(conn.execute, sql, parameters)

    async def execute_write(
        self, sql: str, parameters: tuple[Any, ...] | dict[str, Any] = ()
    ) -> int:
        """Execute a single write statement and commit it in one step.

        The statement and its commit run under the repository lock, so a
        conditional write (e.g. an upsert with a WHERE clause) is atomic
        with respect to other callers.

        Args:
            sql: SQL statement to execute
            parameters: Parameters for the SQL statement

        Returns:
            Number of rows affected
        """
        async with self._lock:
            conn = self._get_connection()

            def _execute_and_commit() -> int:
                try:
                    cursor = conn.execute(sql, parameters)
                    conn.commit()
                    return cursor.rowcount
                except Exception:
                    conn.rollback()
                    raise

            return await asyncio.to_thread(_execute_and_commit)

    async def executemany(
        self, sql: str, parameters: list[tuple[Any, ...]] | list[dict[str, Any]]
    ) -> sqlite3.Cursor:
        """Execute a SQL statement with multiple parameter sets in one transaction.

        Args:
            sql: SQL statement to execute
            parameters: List of parameter sets

        Returns:
            Cursor with results
        """
        async with self._lock:
            conn = self._get_connection()

            def _executemany_with_transaction():
                try:
                    cursor = conn.executemany(sql, parameters)
                    conn.commit()
                    return cursor
                except Exception:
                    conn.rollback()
                    raise

            return await asyncio.to_thread(_executemany_with_transaction)

    async def fetchall(self, sql: str, parameters: tuple[Any, ...] = ()) -> list[Any]:
        """Execute query and fetch all results."""
        async with self._lock:
            conn = self._get_connection()
            return await asyncio.to_thread(
                lambda: conn.execute(sql, parameters).fetchall()
            )

    async def fetchone(self, sql: str, parameters: tuple[Any, ...] = ()) -> Any | None:
        """Execute query and fetch one result."""
        async with self._lock:
            conn = self._get_connection()
            return await asyncio.to_thread(
                lambda: conn.execute(sql, parameters).fetchone()
            )

    async def commit(self) -> None:
        """Commit current transaction."""
        async with self._lock:
            if self._conn:
                await asyncio.to_thread(self._conn.commit)

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._conn:
                await asyncio.to_thread(self._conn.close)
                self._conn = None
                self._initialized = False

    async def initialize(self) -> None:
        """Initialize the repository and ensure schema is created.

        This is safe to call multiple times - it will only initialize once.
        """
        if self._initialized:
            return

        await self.initialize_schema()
        self._initialized = True

    async def initialize_schema(self) -> None:
        """Initialize database schema with all required tables."""
        logger.info("Initializing database schema at %s", self.db_path)

        for sql_statement in schemas.ALL_TABLES:
            statements = [s.strip() for s in sql_statement.split(";") if s.strip()]
            for stmt in statements:
                try:
                    await self.execute(stmt)
                except sqlite3.Error as e:
                    logger.error("Failed to execute schema statement: %s", e)
                    logger.debug("Statement was: %s", stmt)
                    raise

        await self.commit()
        logger.info("Database schema initialized successfully")

    async def table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database."""
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return result is not None


__all__ = ["Repository", "from_db_time", "to_db_time"]
