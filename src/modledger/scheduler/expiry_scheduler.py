"""
Lifts timed sanctions when they run out.

Expiry itself is never written to the store: a MUTE or TEMP_BAN simply
reads back inactive once ``timestamp + duration`` has passed. What does
need to happen at that moment is live enforcement being lifted, which is
what this scheduler asks the effect applier to do.
"""

from __future__ import annotations

import asyncio
import heapq
from typing import Dict, List, Optional, Tuple

from modledger.datatypes.moderation_datatypes import ModerationAction, ModerationRecord, SearchCriteria
from modledger.moderation.collaborators import EffectApplier
from modledger.repositories.moderation_repo import ModerationRepository
from modledger.util.logger import get_logger
from modledger.util.time_utils import Clock, utcnow

logger = get_logger("expiry_scheduler")


def lift_class(action: ModerationAction) -> Optional[str]:
    """Live-effect class of ``action``: ``mute``, ``ban``, or None when nothing is lifted."""
    if action is ModerationAction.MUTE:
        return "mute"
    if action.is_ban:
        return "ban"
    return None


async def covering_sanction(repository: ModerationRepository, record: ModerationRecord) -> Optional[ModerationRecord]:
    """
    Another sanction of the same class as ``record`` still in effect on its target.

    Lifting ``record``'s effect while one of these exists would free a player
    the ledger still holds muted or banned.
    """
    kind = lift_class(record.action)
    if kind is None:
        return None
    for other in await repository.get_active_by_target(record.target_id):
        if other.id != record.id and lift_class(other.action) == kind:
            return other
    return None


class ExpiryScheduler:
    """
    Min-heap of pending lifts keyed by record id.

    Attributes:
        heap: ``(run_at, job_id, record)`` tuples ordered by loop time.
        pending: Maps record id to its live job id.
        cancelled_ids: Job ids to skip when they reach the top of the heap.
        runner_task: Background task processing the heap.
        condition: Wakes the runner when the heap changes.
        repository: Checked for overlapping sanctions before a lift; None skips the check.
    """

    def __init__(
        self,
        effects: EffectApplier,
        repository: Optional[ModerationRepository] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.effects = effects
        self.repository = repository
        self.clock = clock
        self.heap: List[Tuple[float, int, ModerationRecord]] = []
        self.pending: Dict[int, int] = {}
        self.cancelled_ids: set[int] = set()
        self.counter: int = 0
        self.runner_task: Optional[asyncio.Task[None]] = None
        self.condition: asyncio.Condition = asyncio.Condition()

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    def is_scheduled(self, record_id: int) -> bool:
        return record_id in self.pending

    def ensure_runner(self) -> None:
        loop = asyncio.get_running_loop()
        if self.runner_task is None or self.runner_task.done():
            self.runner_task = loop.create_task(self.run(), name="modledger-expiry-scheduler")

    async def schedule(self, record: ModerationRecord) -> bool:
        """
        Arm a lift for ``record`` at its expiry, replacing any earlier job for it.

        A record already past its expiry is lifted immediately.

        Returns:
            False when the record never expires on its own (or has no id).
        """
        expires_at = record.expires_at
        if expires_at is None or record.id is None:
            return False

        delay = (expires_at - self.clock()).total_seconds()
        if delay <= 0:
            try:
                await self.execute(record)
            except Exception as exc:
                logger.error("[EXPIRY] Failed to lift record %s: %s", record.id, exc)
            return True

        loop = asyncio.get_running_loop()
        async with self.condition:
            self.ensure_runner()
            previous = self.pending.get(record.id)
            if previous is not None:
                self.cancelled_ids.add(previous)

            self.counter += 1
            job_id = self.counter
            heapq.heappush(self.heap, (loop.time() + delay, job_id, record))
            self.pending[record.id] = job_id
            self.condition.notify_all()

        logger.debug("[EXPIRY] Record %s lifts in %.0fs", record.id, delay)
        return True

    async def cancel(self, record_id: int) -> bool:
        """Drop the pending lift for ``record_id``. Returns True if one existed."""
        async with self.condition:
            job_id = self.pending.pop(record_id, None)
            if job_id is None:
                return False
            self.cancelled_ids.add(job_id)
            self.condition.notify_all()
            return True

    async def restore(self, repository: ModerationRepository, page_size: int = 500) -> int:
        """
        Re-arm lifts for every timed sanction still in effect. Call once at startup.

        Returns:
            Number of jobs scheduled.
        """
        restored = 0
        last_id = 0
        while True:
            # Keyset on id; rows leaving the active set between pages never shift the walk
            page = await repository.search(SearchCriteria(active_only=True, after_id=last_id, limit=page_size))
            for record in page:
                if record.action.is_timed and await self.schedule(record):
                    restored += 1
            if len(page) < page_size:
                break
            last_id = page[-1].id

        logger.info("[EXPIRY] Restored %d pending expiries", restored)
        return restored

    async def shutdown(self) -> None:
        """Stop the runner and forget every pending job. Safe to call repeatedly."""
        async with self.condition:
            if self.runner_task:
                self.runner_task.cancel()
            self.heap.clear()
            self.pending.clear()
            self.cancelled_ids.clear()
            self.condition.notify_all()

        if self.runner_task:
            try:
                await self.runner_task
            except asyncio.CancelledError:
                pass
            finally:
                self.runner_task = None

    async def run(self) -> None:
        """Background loop: sleep until the earliest job is due, then lift it."""
        loop = asyncio.get_running_loop()
        while True:
            async with self.condition:
                while self.heap and self.heap[0][1] in self.cancelled_ids:
                    _, job_id, _ = heapq.heappop(self.heap)
                    self.cancelled_ids.discard(job_id)

                if not self.heap:
                    await self.condition.wait()
                    continue

                run_at = self.heap[0][0]
                delay = run_at - loop.time()
                if delay > 0:
                    try:
                        await asyncio.wait_for(self.condition.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    continue

                _, job_id, record = heapq.heappop(self.heap)
                if self.pending.get(record.id) == job_id:
                    del self.pending[record.id]

            try:
                await self.execute(record)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("[EXPIRY] Failed to lift record %s: %s", record.id, exc)

    async def execute(self, record: ModerationRecord) -> None:
        """Ask the effect applier to lift ``record`` unless another sanction of its class still holds."""
        if self.repository is not None:
            covering = await covering_sanction(self.repository, record)
            if covering is not None:
                logger.info(
                    "[EXPIRY] %s on %s (record %s) expired; record %s still in effect, effect kept",
                    record.action, record.target_id, record.id, covering.id,
                )
                return
        if record.action is ModerationAction.MUTE:
            await self.effects.lift_mute(record.target_id, record)
        else:
            await self.effects.lift_ban(record.target_id, record)
        logger.info("[EXPIRY] %s on %s (record %s) expired", record.action, record.target_id, record.id)
