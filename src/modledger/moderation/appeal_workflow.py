"""
Appeal state machine layered on moderation records.

    NOT_APPEALED -> PENDING -> UNDER_REVIEW -> APPROVED | DENIED
    PENDING | UNDER_REVIEW -> WITHDRAWN

APPROVED, DENIED and WITHDRAWN are terminal. Approving takes the sanction
out of effect through ActionProcessor's deactivation path, in the same
repository update that records the new status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

from modledger.datatypes.moderation_datatypes import (
    AppealStatus,
    ModerationRecord,
    ModerationResult,
    RecordMutation,
    SearchCriteria,
)
from modledger.datatypes.staff_datatypes import Capability, Issuer
from modledger.errors import (
    AlreadyInactiveError,
    ConflictError,
    ModerationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from modledger.moderation.action_processor import ActionProcessor
from modledger.util.format_utils import humanize_timestamp
from modledger.util.keyed_lock import KeyedLock
from modledger.util.logger import get_logger

logger = get_logger("appeal_workflow")

APPEAL_TRANSITIONS: Dict[AppealStatus, FrozenSet[AppealStatus]] = {
    AppealStatus.NOT_APPEALED: frozenset({AppealStatus.PENDING}),
    AppealStatus.PENDING: frozenset({AppealStatus.UNDER_REVIEW, AppealStatus.WITHDRAWN}),
    AppealStatus.UNDER_REVIEW: frozenset({AppealStatus.APPROVED, AppealStatus.DENIED, AppealStatus.WITHDRAWN}),
    AppealStatus.APPROVED: frozenset(),
    AppealStatus.DENIED: frozenset(),
    AppealStatus.WITHDRAWN: frozenset(),
}

_REVIEW_STATUSES = frozenset({AppealStatus.UNDER_REVIEW, AppealStatus.APPROVED, AppealStatus.DENIED})

MAX_PRIORITY = 5
LONG_SANCTION_SECONDS = 7 * 86400


def can_transition(current: AppealStatus, new: AppealStatus) -> bool:
    return new in APPEAL_TRANSITIONS[current]


def appeal_priority(record: ModerationRecord) -> int:
    """Severity level, +2 for permanent sanctions, +1 for timed ones longer than a week; capped at 5."""
    priority = record.severity.level
    if record.is_permanent:
        priority += 2
    if record.action.is_timed and record.duration_seconds > LONG_SANCTION_SECONDS:
        priority += 1
    return min(priority, MAX_PRIORITY)


@dataclass(slots=True)
class AppealQueueEntry:
    record: ModerationRecord
    priority: int


class AppealWorkflow:
    """
    Drives records through the appeal graph.

    Args:
        processor: Owner of the deactivation path and the rank provider.
        deadline_days: Appeals must be submitted within this many days of issuance.
        max_open_per_target: Limit of PENDING plus UNDER_REVIEW appeals per target.
    """

    def __init__(self, processor: ActionProcessor, deadline_days: int = 14, max_open_per_target: int = 3) -> None:
        self.processor = processor
        self.repository = processor.repository
        self.deadline_days = deadline_days
        self.max_open_per_target = max_open_per_target
        self._target_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _check_eligibility(self, record: ModerationRecord, appellant_id: Optional[str], now: datetime) -> None:
        if appellant_id is not None and appellant_id != record.target_id:
            raise ValidationError("Only the sanctioned player can appeal this record")
        if record.action.is_instant:
            raise ValidationError(f"{record.action} cannot be appealed")
        if record.appeal_status is not AppealStatus.NOT_APPEALED:
            raise ValidationError(f"Record {record.id} has already been appealed ({record.appeal_status})")
        deadline = record.timestamp + timedelta(days=self.deadline_days)
        if now > deadline:
            raise ValidationError(f"Appeal deadline passed at {humanize_timestamp(deadline)}")
        if not record.is_in_effect(now):
            raise AlreadyInactiveError(f"Record {record.id} is no longer in effect")

        open_appeals = 0
        for status in (AppealStatus.PENDING, AppealStatus.UNDER_REVIEW):
            open_appeals += await self.repository.count(SearchCriteria(target_id=record.target_id, appeal_status=status))
        if open_appeals >= self.max_open_per_target:
            raise ValidationError(f"Too many open appeals (max {self.max_open_per_target})")

    async def check_eligibility(self, record_id: int, appellant_id: Optional[str]) -> ModerationResult:
        """Success when ``appellant_id`` could appeal ``record_id`` right now. Writes nothing."""
        try:
            record = await self._get(record_id)
            await self._check_eligibility(record, appellant_id, self.processor.clock())
        except ModerationError as exc:
            return ModerationResult.fail(exc)
        return ModerationResult.ok(record, "Appeal eligible")

    async def submit(self, record_id: int, appellant_id: Optional[str], reason: str = "") -> ModerationResult:
        """
        Open an appeal: NOT_APPEALED -> PENDING, stamping ``appealed_at``.

        Args:
            record_id: The sanction being contested.
            appellant_id: The sanctioned player; None when filed by the console.
            reason: The appellant's statement. Logged, not stored on the record.
        """
        try:
            record = await self._get(record_id)
        except ModerationError as exc:
            return ModerationResult.fail(exc)

        async with self._target_locks.hold(record.target_id):
            for _ in range(self.processor.conflict_retries + 1):
                now = self.processor.clock()
                try:
                    record = await self._get(record_id)
                    await self._check_eligibility(record, appellant_id, now)
                    updated = await self.repository.update(
                        record.id,
                        RecordMutation(
                            expected_version=record.version,
                            appeal_status=AppealStatus.PENDING,
                            appealed_at=now,
                        ),
                    )
                except ConflictError:
                    continue
                except ModerationError as exc:
                    return ModerationResult.fail(exc, record)

                logger.info(
                    "[APPEALS] Appeal opened on record %s (%s) by %s: %s",
                    record_id, record.action, appellant_id or "console", reason or "-",
                )
                return ModerationResult.ok(updated, "Appeal submitted")

        return ModerationResult.fail(ConflictError(f"Record {record_id} kept changing"), record)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def start_review(self, record_id: int, reviewer: Issuer) -> ModerationResult:
        return await self.transition(record_id, AppealStatus.UNDER_REVIEW, reviewer)

    async def approve(self, record_id: int, reviewer: Issuer) -> ModerationResult:
        """Approve the appeal and lift the sanction in the same update."""
        return await self.transition(record_id, AppealStatus.APPROVED, reviewer)

    async def deny(self, record_id: int, reviewer: Issuer) -> ModerationResult:
        return await self.transition(record_id, AppealStatus.DENIED, reviewer)

    async def withdraw(self, record_id: int, actor: Issuer) -> ModerationResult:
        return await self.transition(record_id, AppealStatus.WITHDRAWN, actor)

    async def transition(self, record_id: int, new_status, actor: Issuer) -> ModerationResult:
        """
        Move ``record_id`` to ``new_status`` along the appeal graph.

        Edges outside the graph fail with ValidationError. Entering PENDING
        runs the submission checks.
        """
        try:
            new_status = AppealStatus.parse(new_status)
            record = await self._get(record_id)
        except ModerationError as exc:
            return ModerationResult.fail(exc)

        if new_status is AppealStatus.PENDING and can_transition(record.appeal_status, new_status):
            return await self.submit(record_id, None if actor.is_console else actor.staff_id)

        try:
            await self._authorize(record, new_status, actor)
        except ModerationError as exc:
            return ModerationResult.fail(exc, record)

        for attempt in range(self.processor.conflict_retries + 1):
            if not can_transition(record.appeal_status, new_status):
                return ModerationResult.fail(
                    ValidationError(f"Invalid appeal transition: {record.appeal_status} -> {new_status}"), record
                )

            now = self.processor.clock()
            was_in_effect = record.is_in_effect(now)
            try:
                if new_status is AppealStatus.APPROVED:
                    updated = await self.processor._deactivate(
                        record, actor.audit_name, appeal_status=new_status, now=now
                    )
                else:
                    updated = await self.repository.update(
                        record.id, RecordMutation(expected_version=record.version, appeal_status=new_status)
                    )
            except ConflictError:
                logger.debug("[APPEALS] Transition on %s lost a race (attempt %d)", record_id, attempt + 1)
                record = await self._refetch(record_id)
                if record is None:
                    return ModerationResult.fail(NotFoundError(f"Record {record_id} not found"))
                continue
            except (NotFoundError, StorageError) as exc:
                return ModerationResult.fail(exc, record)

            effect_applied = True
            if new_status is AppealStatus.APPROVED and was_in_effect:
                effect_applied = await self.processor._lift(updated)

            logger.info("[APPEALS] Record %s appeal %s by %s", record_id, new_status, actor.name)
            return ModerationResult.ok(updated, f"Appeal {new_status}", effect_applied=effect_applied)

        return ModerationResult.fail(ConflictError(f"Record {record_id} kept changing"), record)

    async def _authorize(self, record: ModerationRecord, new_status: AppealStatus, actor: Issuer) -> None:
        if actor.is_console:
            return
        if new_status is AppealStatus.WITHDRAWN and actor.staff_id == record.target_id:
            return
        if not actor.staff_id:
            raise ValidationError(f"{actor.name} cannot review appeals")
        rank = await self.processor.rank_provider.get_rank(actor.staff_id)
        if new_status in _REVIEW_STATUSES or new_status is AppealStatus.WITHDRAWN:
            if not rank.can(Capability.REVIEW_APPEALS):
                raise ValidationError(f"{actor.name} ({rank}) cannot review appeals")

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def pending_appeals(self, limit: int = 50) -> List[AppealQueueEntry]:
        """Open appeals, highest priority first and oldest first within a priority."""
        if limit <= 0:
            raise ValidationError(f"Invalid limit: {limit}")
        records: List[ModerationRecord] = []
        for status in (AppealStatus.PENDING, AppealStatus.UNDER_REVIEW):
            records.extend(await self.repository.search(SearchCriteria(appeal_status=status, limit=1000)))

        queue = [AppealQueueEntry(record=r, priority=appeal_priority(r)) for r in records]
        queue.sort(key=lambda e: (-e.priority, e.record.appealed_at or e.record.timestamp, e.record.id))
        return queue[:limit]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get(self, record_id: int) -> ModerationRecord:
        record = await self.repository.get(record_id)
        if record is None:
            raise NotFoundError(f"Record {record_id} not found")
        return record

    async def _refetch(self, record_id: int) -> Optional[ModerationRecord]:
        return await self.repository.get(record_id)
