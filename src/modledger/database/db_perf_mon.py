"""
Timing statistics for ledger queries.

Each repository operation reports its wall time under a stable name; the
monitor keeps count/total/min/max per name and warns about slow queries.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator

from modledger.util.logger import get_logger

logger = get_logger("database_perf_mon")


@dataclass(slots=True)
class QueryTiming:
    count: int = 0
    total_time: float = 0.0
    min_time: float = float("inf")
    max_time: float = 0.0

    def add(self, duration: float) -> None:
        self.count += 1
        self.total_time += duration
        self.min_time = min(self.min_time, duration)
        self.max_time = max(self.max_time, duration)

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0


class DatabasePerformanceMonitor:
    """
    Records execution times per query name.

    Args:
        slow_query_threshold_ms: Queries slower than this are logged as warnings.
    """

    def __init__(self, slow_query_threshold_ms: float = 100.0):
        self._timings: Dict[str, QueryTiming] = {}
        self._slow_query_threshold = slow_query_threshold_ms / 1000.0

    def track(self, query_name: str, duration: float) -> None:
        """Record one execution of ``query_name`` that took ``duration`` seconds."""
        self._timings.setdefault(query_name, QueryTiming()).add(duration)

        if duration > self._slow_query_threshold:
            logger.warning("[PERFORMANCE] Slow query: %s took %.2fms", query_name, duration * 1000)

    @contextmanager
    def timed(self, query_name: str) -> Iterator[None]:
        """Context manager that tracks the wall time of its block, even when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.track(query_name, time.perf_counter() - start)

    def get_statistics(self) -> Dict[str, Dict[str, float]]:
        """Return count, total, avg, min and max seconds per query name."""
        return {
            name: {
                "count": timing.count,
                "total_time": timing.total_time,
                "avg_time": timing.avg_time,
                "min_time": timing.min_time if timing.count else 0.0,
                "max_time": timing.max_time,
            }
            for name, timing in self._timings.items()
        }

    def reset(self) -> None:
        self._timings.clear()
        logger.info("[PERFORMANCE] Statistics reset")

    def get_summary(self) -> str:
        """Human-readable table of the collected timings."""
        stats = self.get_statistics()
        if not stats:
            return "No queries tracked yet"

        lines = ["Ledger Query Performance", "=" * 50]
        for name, s in sorted(stats.items()):
            lines.append(
                f"{name}: n={s['count']} avg={s['avg_time'] * 1000:.2f}ms "
                f"min={s['min_time'] * 1000:.2f}ms max={s['max_time'] * 1000:.2f}ms"
            )
        return "\n".join(lines)
