"""
Central coordinator for the ledger's SQLite store.

The ModerationDatabase owns the pieces the repository layer needs:
- connection: single long-lived aiosqlite connection (db_connection)
- schema: table/index creation (db_schema)
- performance: per-query timing statistics (db_perf_mon)
- cache: short-lived aggregate cache for dashboards (db_cache)

Lifecycle:
    1. ``await database.initialize()`` at program startup
    2. hand ``database.connection`` / ``database.perf_monitor`` to repositories
    3. ``await database.shutdown()`` at program end
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from modledger.database.db_cache import DatabaseQueryCache
from modledger.database.db_connection import ConnectionManager
from modledger.database.db_perf_mon import DatabasePerformanceMonitor
from modledger.database.db_schema import SchemaManager
from modledger.util.logger import get_logger

logger = get_logger("database")

DB_PATH = Path("./data/moderation.db").resolve()


class ModerationDatabase:
    """
    Owns the connection, schema, performance monitor and cache of one store.

    Args:
        db_path: Path to the SQLite database file.
        timeout_seconds: Per-statement timeout; expiry surfaces as StorageError.
        slow_query_ms: Threshold above which queries are logged as slow.
        cache_ttl_seconds: Lifetime of cached dashboard aggregates.
    """

    def __init__(
        self,
        db_path: Path = DB_PATH,
        *,
        timeout_seconds: float = 5.0,
        slow_query_ms: float = 100.0,
        cache_ttl_seconds: float = 30,
    ) -> None:
        self.db_path = db_path
        self.connection = ConnectionManager(timeout_seconds=timeout_seconds)
        self.perf_monitor = DatabasePerformanceMonitor(slow_query_threshold_ms=slow_query_ms)
        self.cache = DatabaseQueryCache(ttl_seconds=cache_ttl_seconds)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Open the connection and create the schema. Safe to call twice.

        Raises:
            StorageError: If the database cannot be opened or the schema fails.
        """
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return

        await self.connection.open(self.db_path)
        await self.connection.guarded(SchemaManager.initialize_schema(self.connection.connection))
        self._initialized = True
        logger.info("[DATABASE] Database initialized at %s", self.db_path)

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        await self.connection.close()
        self.cache.invalidate()
        self._initialized = False
        logger.info("[DATABASE] Database shutdown complete")

    async def analyze(self) -> None:
        """Refresh the query planner statistics."""
        with self.perf_monitor.timed("analyze"):
            async with self.connection.transaction() as tx:
                await tx.execute("ANALYZE")
        logger.info("[DATABASE] ANALYZE complete")

    async def vacuum(self) -> None:
        """Rebuild the database file. VACUUM cannot run inside a transaction."""
        with self.perf_monitor.timed("vacuum"):
            await self.connection.guarded(self.connection.connection.execute("VACUUM"))
        logger.info("[DATABASE] VACUUM complete")

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "path": str(self.db_path),
            "queries": self.perf_monitor.get_statistics(),
            "cache": self.cache.get_db_cache_stats(),
        }
