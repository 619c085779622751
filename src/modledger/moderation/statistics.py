"""
Read-side aggregates over moderation records.

StatisticsAggregator holds pure functions over an already fetched record
set. StatisticsService fetches the sets from the repository and caches the
dashboard aggregates for a short TTL, so consumers may see values up to
that TTL old.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from modledger.database.db_cache import DatabaseQueryCache
from modledger.datatypes.moderation_datatypes import (
    AppealStatus,
    EscalationStatistics,
    ModerationAction,
    ModerationRecord,
)
from modledger.moderation.escalation_policy import EscalationPolicyEngine
from modledger.repositories.moderation_repo import ModerationRepository
from modledger.util.logger import get_logger
from modledger.util.time_utils import Clock, to_epoch_ms, utcnow

logger = get_logger("statistics")


class StatisticsAggregator:
    """Pure computations over a record set. Nothing here touches the store."""

    @staticmethod
    def counts_by_action(records: Iterable[ModerationRecord]) -> Dict[str, int]:
        counts = Counter(record.action.value for record in records)
        return {action.value: counts.get(action.value, 0) for action in ModerationAction}

    @staticmethod
    def status_breakdown(records: Iterable[ModerationRecord], now: datetime) -> Dict[str, int]:
        """Classify each record as active, expired, revoked or instant at ``now``."""
        breakdown = {"active": 0, "expired": 0, "revoked": 0, "instant": 0}
        for record in records:
            if record.action.is_instant:
                breakdown["instant"] += 1
            elif record.revoked_at is not None:
                breakdown["revoked"] += 1
            elif record.is_in_effect(now):
                breakdown["active"] += 1
            else:
                breakdown["expired"] += 1
        return breakdown

    @staticmethod
    def appeal_funnel(records: Iterable[ModerationRecord]) -> Dict[str, Any]:
        """
        Per-status appeal counts plus ``success_rate``.

        ``success_rate`` is approved / (approved + denied), 0.0 when no appeal
        has been decided.
        """
        counts = Counter(record.appeal_status for record in records)
        funnel: Dict[str, Any] = {status.value: counts.get(status, 0) for status in AppealStatus}
        decided = counts.get(AppealStatus.APPROVED, 0) + counts.get(AppealStatus.DENIED, 0)
        funnel["success_rate"] = counts.get(AppealStatus.APPROVED, 0) / decided if decided else 0.0
        return funnel

    @staticmethod
    def staff_action_counts(
        records: Iterable[ModerationRecord],
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> Dict[str, Dict[str, int]]:
        """Per staff member, the number of each action issued in ``[since, until)``."""
        result: Dict[str, Dict[str, int]] = {}
        for record in records:
            if since is not None and record.timestamp < since:
                continue
            if until is not None and record.timestamp >= until:
                continue
            staff_key = record.staff_id or record.staff_name
            per_staff = result.setdefault(staff_key, {})
            per_staff[record.action.value] = per_staff.get(record.action.value, 0) + 1
        return result

    @staticmethod
    def escalation_statistics(
        target_id: str,
        records: Iterable[ModerationRecord],
        engine: Optional[EscalationPolicyEngine] = None,
    ) -> EscalationStatistics:
        """
        Derived per-target statistics.

        Violations are every record except notes. When an engine is given the
        violations are also counted per reason category.
        """
        stats = EscalationStatistics(target_id=target_id)
        for record in records:
            if record.appeal_status is AppealStatus.APPROVED:
                stats.successful_appeals += 1
            if record.action is ModerationAction.NOTE:
                continue
            stats.total_violations += 1
            if record.is_escalation:
                stats.total_escalations += 1
            if engine is not None:
                category = engine.classify_reason(record.reason)
                stats.violation_counts[category] = stats.violation_counts.get(category, 0) + 1
        return stats

    @classmethod
    def summarize(cls, records: Sequence[ModerationRecord], now: datetime) -> Dict[str, Any]:
        """Everything a server dashboard shows, in one mapping."""
        return {
            "total": len(records),
            "by_action": cls.counts_by_action(records),
            "status": cls.status_breakdown(records, now),
            "appeals": cls.appeal_funnel(records),
            "escalations": sum(1 for r in records if r.is_escalation),
            "unique_targets": len({r.target_id for r in records}),
        }


class StatisticsService:
    """
    Repository-backed statistics with a short-lived cache.

    Args:
        repository: Record source.
        cache: TTL cache for aggregates.
        engine: Optional, used to label violations by reason category.
        history_limit: Records read per target.
        clock: Source of ``now``.
    """

    def __init__(
        self,
        repository: ModerationRepository,
        cache: DatabaseQueryCache,
        engine: Optional[EscalationPolicyEngine] = None,
        history_limit: int = 100,
        clock: Clock = utcnow,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.engine = engine
        self.history_limit = history_limit
        self.clock = clock
        self.aggregator = StatisticsAggregator()

    async def get_escalation_statistics(self, target_id: str) -> EscalationStatistics:
        cache_key = f"escalation:{target_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        records = await self.repository.get_by_target(target_id, self.history_limit)
        stats = self.aggregator.escalation_statistics(target_id, records, self.engine)
        self.cache.set(cache_key, stats)
        return stats

    async def get_server_statistics(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Server-wide summary of records issued since ``since`` (default: last 30 days)."""
        now = self.clock()
        since = since or now - timedelta(days=30)
        cache_key = f"server:{to_epoch_ms(since)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        records = await self.repository.get_since(since)
        summary = self.aggregator.summarize(records, now)
        summary["staff"] = self.aggregator.staff_action_counts(records, since)
        self.cache.set(cache_key, summary)
        logger.debug("[STATISTICS] Server summary over %d records", len(records))
        return summary

    async def get_staff_statistics(self, staff_id: str, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Actions issued by ``staff_id`` since ``since`` (default: last 30 days)."""
        now = self.clock()
        since = since or now - timedelta(days=30)
        cache_key = f"staff:{staff_id}:{to_epoch_ms(since)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        records: List[ModerationRecord] = await self.repository.get_by_staff(staff_id, since)
        result = {
            "staff_id": staff_id,
            "total": len(records),
            "by_action": self.aggregator.counts_by_action(records),
            "escalations": sum(1 for r in records if r.is_escalation),
            "revoked": sum(1 for r in records if r.revoked_at is not None),
        }
        self.cache.set(cache_key, result)
        return result

    def invalidate(self, target_id: Optional[str] = None) -> int:
        """Drop cached aggregates for one target, or everything."""
        if target_id is None:
            return self.cache.invalidate()
        return int(self.cache.discard(f"escalation:{target_id}"))
