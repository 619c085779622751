"""
Short-lived result cache for dashboard aggregates.

Statistics consumers poll; caching their aggregates for a few seconds keeps
the store quiet. Cached values may be stale up to the TTL.
"""

from typing import Any, Callable, Dict, Optional, Tuple
import time

from modledger.util.logger import get_logger

logger = get_logger("database_cache")


class DatabaseQueryCache:
    """
    TTL cache keyed by string, counting hits and misses for the maintenance report.

    Args:
        ttl_seconds: Lifetime of an entry in seconds.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(self, ttl_seconds: float = 30, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def _fresh(self, stored_at: float) -> bool:
        return self._clock() - stored_at < self._ttl_seconds

    def get(self, cache_key: str) -> Optional[Any]:
        """Cached value for ``cache_key``; None when absent or past its TTL."""
        entry = self._entries.get(cache_key)
        if entry is not None and self._fresh(entry[0]):
            self._hits += 1
            return entry[1]

        self._misses += 1
        if entry is not None:
            self._entries.pop(cache_key)
            logger.debug("[CACHE] Dropped stale entry %s", cache_key)
        return None

    def set(self, cache_key: str, result: Any) -> None:
        self._entries[cache_key] = (self._clock(), result)

    def discard(self, cache_key: str) -> bool:
        """Forget exactly ``cache_key``. Returns True if it was cached."""
        if cache_key not in self._entries:
            return False
        del self._entries[cache_key]
        return True

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Forget entries whose key contains ``pattern``; everything when it is None.

        Returns:
            How many entries were forgotten
        """
        doomed = [key for key in self._entries if pattern is None or pattern in key]
        for key in doomed:
            self._entries.pop(key)
        if doomed:
            logger.debug("[CACHE] Invalidated %d entries (pattern=%s)", len(doomed), pattern)
        return len(doomed)

    def get_db_cache_stats(self) -> Dict[str, float]:
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "ttl_seconds": self._ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
        }
