"""
Database connection management: one long-lived aiosqlite connection.

SQLite performs best with a single connection kept open for the whole
process: pragmas are applied once and the page cache stays warm. WAL mode
lets readers run while a single writer commits.

Concurrency model
-----------------
SQLite is single-writer. Writes are serialised at the application layer by
``_write_sem`` so coroutines queue up instead of fighting SQLite's
busy-timeout. Reads share the connection directly.

Every statement runs under the configured timeout. A timeout or an
``aiosqlite``/``sqlite3`` error surfaces as :class:`StorageError`. Using the
manager before ``open()`` raises ``RuntimeError``: an unopened store is a
wiring bug, not an I/O failure, and is left to propagate.

Usage
-----
    manager = ConnectionManager(timeout_seconds=5.0)
    await manager.open(path)

    rows = await manager.fetchall("SELECT ...", params)

    async with manager.transaction() as tx:
        cursor = await tx.execute("INSERT ...", params)
        # commits on clean exit, rolls back on exception

    await manager.close()
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Iterable, List, Optional, TypeVar

import aiosqlite

from modledger.errors import StorageError
from modledger.util.logger import get_logger

logger = get_logger("database_connection")

T = TypeVar("T")

# ── Pragmas applied once when the connection is opened ──────────────────────
_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",    # safe with WAL; faster than FULL
    "PRAGMA temp_store = MEMORY",
    "PRAGMA busy_timeout = 5000",
]


class Transaction:
    """Statement runner handed out by :meth:`ConnectionManager.transaction`."""

    def __init__(self, manager: "ConnectionManager", conn: aiosqlite.Connection) -> None:
        self._manager = manager
        self._conn = conn

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Cursor:
        return await self._manager.guarded(self._conn.execute(sql, tuple(params)))

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        cursor = await self.execute(sql, params)
        return await self._manager.guarded(cursor.fetchone())


class ConnectionManager:
    """
    Wrapper around a single aiosqlite connection.

    * Reads  - ``fetchall``/``fetchone``; WAL allows concurrent reads.
    * Writes - ``async with transaction()``; serialised by ``_write_sem``.
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)
        self._path: Path | None = None
        self.timeout_seconds = timeout_seconds

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, path: Path) -> None:
        """
        Open the database and apply pragmas. Call once at startup.

        Args:
            path: Path to the SQLite database file.
        """
        if self._conn is not None:
            logger.warning("[DB CONNECTION] open() called but connection already exists, ignoring")
            return

        self._path = path
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(path)
            self._conn.row_factory = aiosqlite.Row
            for pragma in _PRAGMAS:
                await self._conn.execute(pragma)
            await self._conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open database {path}: {exc}") from exc

        logger.info("[DB CONNECTION] Opened connection to %s", path)

    async def close(self) -> None:
        """Flush the WAL and close the connection."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except sqlite3.Error:
            logger.exception("[DB CONNECTION] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[DB CONNECTION] Connection closed")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw aiosqlite connection.

        Raises:
            RuntimeError: If the connection has not been opened yet.
        """
        if self._conn is None:
            raise RuntimeError(
                "ConnectionManager: connection is not open. "
                "Call await manager.open(path) at startup."
            )
        return self._conn

    # ------------------------------------------------------------------
    # Guarded execution
    # ------------------------------------------------------------------

    async def guarded(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` under the configured timeout, mapping failures to StorageError."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StorageError(f"Database operation timed out after {self.timeout_seconds}s") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Database operation failed: {exc}") from exc

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        conn = self.connection
        cursor = await self.guarded(conn.execute(sql, tuple(params)))
        return list(await self.guarded(cursor.fetchall()))

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        conn = self.connection
        cursor = await self.guarded(conn.execute(sql, tuple(params)))
        return await self.guarded(cursor.fetchone())

    # ------------------------------------------------------------------
    # Transaction context (writes)
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """
        Serialised write transaction.

        Acquires the write semaphore, commits on clean exit and rolls back
        if an exception escapes the block.

        Raises:
            RuntimeError: If the connection is not open.
            StorageError: If the commit fails or times out.
        """
        conn = self.connection

        async with self._write_sem:
            try:
                yield Transaction(self, conn)
                await self.guarded(conn.commit())
            except BaseException:
                try:
                    await conn.rollback()
                except sqlite3.Error:
                    logger.exception("[DB CONNECTION] Rollback failed")
                raise
