"""
Issuance and revocation of sanctions.

Every ``issue_*`` call runs validation, asks the escalation engine for a
recommendation (unless an authorised bypass applies), persists the record
and then requests live enforcement from the effect applier. The history
read, the decision and the insert happen inside a per-target critical
section so two concurrent requests against the same target observe each
other in arrival order.

Expected failures come back as ``ModerationResult(success=False)`` with
the typed error attached; only an unopened store raises.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Tuple

from modledger.datatypes.moderation_datatypes import (
    AppealStatus,
    EscalationResult,
    ModerationAction,
    ModerationRecord,
    ModerationResult,
    RecordMutation,
    Severity,
)
from modledger.datatypes.staff_datatypes import ACTION_CAPABILITIES, Capability, Issuer, Rank
from modledger.errors import (
    AlreadyInactiveError,
    ConflictError,
    ModerationError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from modledger.moderation.collaborators import EffectApplier, IdentityResolver, RankProvider
from modledger.moderation.escalation_policy import EscalationPolicyEngine
from modledger.repositories.moderation_repo import ModerationRepository
from modledger.scheduler.expiry_scheduler import ExpiryScheduler, covering_sanction
from modledger.util.format_utils import format_duration
from modledger.util.keyed_lock import KeyedLock
from modledger.util.logger import get_logger
from modledger.util.time_utils import Clock, utcnow

logger = get_logger("action_processor")

LIFT_KINDS: Dict[str, Tuple[ModerationAction, ...]] = {
    "mute": (ModerationAction.MUTE,),
    "ban": (ModerationAction.TEMP_BAN, ModerationAction.PERMANENT_BAN, ModerationAction.IP_BAN),
}
LIFT_KINDS["unmute"] = LIFT_KINDS["mute"]
LIFT_KINDS["unban"] = LIFT_KINDS["ban"]


class ActionProcessor:
    """
    Orchestrates sanctions: validate, escalate, persist, enforce.

    Args:
        repository: System of record.
        escalation: Policy engine consulted before every ladder action.
        rank_provider: Issuer and target rank lookup.
        effects: Live enforcement; failures never undo the record.
        identity: Optional name to id resolver for ``resolve_target``.
        scheduler: Optional expiry scheduler for timed sanctions.
        clock: Source of ``now``.
        conflict_retries: Re-fetch attempts when a revoke loses an update race.
        protect_staff: Refuse to sanction staff of equal or higher rank
            unless the issuer holds OVERRIDE_ESCALATION.
        required_ranks: Optional minimum rank per action.
    """

    def __init__(
        self,
        repository: ModerationRepository,
        escalation: EscalationPolicyEngine,
        rank_provider: RankProvider,
        effects: EffectApplier,
        *,
        identity: Optional[IdentityResolver] = None,
        scheduler: Optional[ExpiryScheduler] = None,
        clock: Clock = utcnow,
        conflict_retries: int = 3,
        protect_staff: bool = True,
        required_ranks: Optional[Dict[ModerationAction, Rank]] = None,
    ) -> None:
        self.repository = repository
        self.escalation = escalation
        self.rank_provider = rank_provider
        self.effects = effects
        self.identity = identity
        self.scheduler = scheduler
        self.clock = clock
        self.conflict_retries = conflict_retries
        self.protect_staff = protect_staff
        self.required_ranks = dict(required_ranks or {})
        self._target_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    async def issue_warning(self, target_id: str, issuer: Issuer, reason: str, severity, **kwargs) -> ModerationResult:
        return await self._issue(ModerationAction.WARNING, target_id, issuer, reason, severity, 0, **kwargs)

    async def issue_mute(
        self, target_id: str, issuer: Issuer, reason: str, severity, duration_seconds: int, **kwargs
    ) -> ModerationResult:
        """Mute ``target_id``; ``duration_seconds=0`` is a permanent mute."""
        return await self._issue(ModerationAction.MUTE, target_id, issuer, reason, severity, duration_seconds, **kwargs)

    async def issue_temp_ban(
        self, target_id: str, issuer: Issuer, reason: str, severity, duration_seconds: int, **kwargs
    ) -> ModerationResult:
        return await self._issue(
            ModerationAction.TEMP_BAN, target_id, issuer, reason, severity, duration_seconds, **kwargs
        )

    async def issue_permanent_ban(self, target_id: str, issuer: Issuer, reason: str, severity, **kwargs) -> ModerationResult:
        return await self._issue(ModerationAction.PERMANENT_BAN, target_id, issuer, reason, severity, 0, **kwargs)

    async def issue_ip_ban(
        self, target_id: str, issuer: Issuer, reason: str, severity, ip_address: str, **kwargs
    ) -> ModerationResult:
        if not ip_address or not str(ip_address).strip():
            return ModerationResult.fail(ValidationError("IP ban requires an IP address"))
        return await self._issue(
            ModerationAction.IP_BAN, target_id, issuer, reason, severity, 0, ip_address=ip_address, **kwargs
        )

    async def issue_kick(self, target_id: str, issuer: Issuer, reason: str, severity, **kwargs) -> ModerationResult:
        return await self._issue(ModerationAction.KICK, target_id, issuer, reason, severity, 0, **kwargs)

    async def add_note(
        self, target_id: str, issuer: Issuer, text: str, severity=Severity.LOW, **kwargs
    ) -> ModerationResult:
        """Attach a staff note. Notes never count toward escalation."""
        return await self._issue(ModerationAction.NOTE, target_id, issuer, text, severity, 0, **kwargs)

    async def _issue(
        self,
        action: ModerationAction,
        target_id: str,
        issuer: Issuer,
        reason: str,
        severity,
        duration_seconds: int,
        *,
        target_name: str = "",
        ip_address: Optional[str] = None,
        bypass_escalation: bool = False,
    ) -> ModerationResult:
        try:
            severity, reason, duration_seconds = self._validate(target_id, reason, severity, duration_seconds)
            await self._authorize(issuer, action, target_id)
        except ValidationError as exc:
            logger.info("[PROCESSOR] Rejected %s on %s by %s: %s", action, target_id, issuer.name, exc)
            return ModerationResult.fail(exc)

        if not action.is_timed:
            duration_seconds = 0

        async with self._target_locks.hold(target_id):
            now = self.clock()
            try:
                escalation = await self._recommend(action, target_id, issuer, reason, severity, now, bypass_escalation)
            except StorageError as exc:
                logger.error("[PROCESSOR] History read failed for %s: %s", target_id, exc)
                return ModerationResult.fail(exc)

            final_action, final_severity, final_duration = action, severity, duration_seconds
            escalated = escalation is not None and escalation.is_valid and escalation.was_escalated
            if escalated:
                final_action = escalation.recommended_action
                final_severity = escalation.recommended_severity
                final_duration = escalation.recommended_duration if final_action.is_timed else 0

            record = ModerationRecord(
                target_id=target_id,
                target_display_name=target_name or target_id,
                staff_id=issuer.staff_id,
                staff_name=issuer.name,
                action=final_action,
                severity=final_severity,
                reason=reason,
                timestamp=now,
                duration_seconds=final_duration,
                active=not final_action.is_instant,
                is_escalation=escalated,
                ip_address=ip_address,
            )
            try:
                entry = await self.repository.insert(record)
            except StorageError as exc:
                logger.error("[PROCESSOR] Failed to record %s on %s: %s", final_action, target_id, exc)
                return ModerationResult.fail(exc)

        effect_applied = await self._enforce(entry)
        if self.scheduler is not None and entry.expires_at is not None:
            await self.scheduler.schedule(entry)

        message = f"{final_action} issued to {entry.target_display_name}"
        if final_action.is_timed:
            message += f" ({format_duration(entry.duration_seconds)})"
        if escalated:
            message += f" (escalated from {action})"
        logger.info(
            "[PROCESSOR] %s on %s by %s, severity %s, record %s%s",
            final_action, target_id, issuer.name, final_severity, entry.id, " [escalated]" if escalated else "",
        )
        return ModerationResult.ok(entry, message, escalation=escalation, effect_applied=effect_applied)

    def _validate(self, target_id: str, reason: str, severity, duration_seconds) -> Tuple[Severity, str, int]:
        if not target_id or not str(target_id).strip():
            raise ValidationError("Target is required")
        if reason is None or not str(reason).strip():
            raise ValidationError("Reason must not be empty")
        parsed = Severity.parse(severity)
        try:
            duration = int(duration_seconds)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid duration: {duration_seconds}") from None
        if duration < 0:
            raise ValidationError(f"Invalid duration: {duration_seconds}")
        return parsed, str(reason).strip(), duration

    async def _authorize(self, issuer: Issuer, action: ModerationAction, target_id: str) -> None:
        if issuer.is_console:
            return
        if not issuer.staff_id:
            raise ValidationError(f"{issuer.name} is not allowed to issue {action}")

        rank = await self.rank_provider.get_rank(issuer.staff_id)
        if not rank.can(ACTION_CAPABILITIES[action]):
            raise ValidationError(f"{issuer.name} ({rank}) is not allowed to issue {action}")

        required = self.required_ranks.get(action)
        if required is not None and rank.level < required.level:
            raise ValidationError(f"{action} requires rank {required} or higher")

        if self.protect_staff and action is not ModerationAction.NOTE:
            target_rank = await self.rank_provider.get_rank(target_id)
            if target_rank.is_staff and not rank.outranks(target_rank) and not rank.can(Capability.OVERRIDE_ESCALATION):
                raise ValidationError(f"Cannot sanction staff of equal or higher rank ({target_rank})")

    async def _recommend(
        self,
        action: ModerationAction,
        target_id: str,
        issuer: Issuer,
        reason: str,
        severity: Severity,
        now: datetime,
        bypass_requested: bool,
    ) -> Optional[EscalationResult]:
        if action.ladder_rung is None or not self.escalation.enabled:
            return None
        if bypass_requested:
            if issuer.is_console or await self.escalation.should_bypass_escalation(target_id, issuer.staff_id):
                logger.info("[PROCESSOR] Escalation bypassed by %s for %s", issuer.name, target_id)
                return None
            logger.warning("[PROCESSOR] %s requested a bypass without the override capability", issuer.name)
        return await self.escalation.calculate_escalation(target_id, reason, severity, action, now)

    async def _enforce(self, entry: ModerationRecord) -> bool:
        """Ask the effect applier to enforce ``entry``. True when enforcement succeeded or none is needed."""
        try:
            if entry.action is ModerationAction.MUTE:
                await self.effects.apply_mute(entry.target_id, entry)
            elif entry.action.is_ban:
                await self.effects.apply_ban(entry.target_id, entry)
            elif entry.action is ModerationAction.KICK:
                await self.effects.apply_kick(entry.target_id, entry)
        except Exception:
            logger.exception("[PROCESSOR] Enforcement of record %s failed; audit record kept", entry.id)
            return False
        return True

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    async def revoke(self, record_id: int, revoked_by: Issuer) -> ModerationResult:
        """
        Lift a sanction.

        Unknown ids fail with NotFoundError, expired or instant records with
        AlreadyInactiveError. Revoking an already revoked record succeeds
        and leaves ``revoked_at`` untouched.
        """
        if not revoked_by.is_console:
            if not revoked_by.staff_id:
                return ModerationResult.fail(ValidationError(f"{revoked_by.name} is not allowed to revoke"))
            rank = await self.rank_provider.get_rank(revoked_by.staff_id)
            if not rank.can(Capability.REVOKE):
                return ModerationResult.fail(ValidationError(f"{revoked_by.name} ({rank}) is not allowed to revoke"))

        last_conflict: Optional[ConflictError] = None
        for attempt in range(self.conflict_retries + 1):
            try:
                record = await self.repository.get(record_id)
            except StorageError as exc:
                return ModerationResult.fail(exc)

            if record is None:
                return ModerationResult.fail(NotFoundError(f"Record {record_id} not found"))
            if record.revoked_at is not None:
                return ModerationResult.ok(record, f"Record {record_id} was already revoked")

            now = self.clock()
            if not record.is_in_effect(now):
                return ModerationResult.fail(
                    AlreadyInactiveError(f"Record {record_id} ({record.action}) is no longer in effect"), record
                )

            try:
                updated = await self._deactivate(record, revoked_by.audit_name, now=now)
            except ConflictError as exc:
                last_conflict = exc
                logger.debug("[PROCESSOR] Revoke of %s lost a race (attempt %d)", record_id, attempt + 1)
                continue
            except (NotFoundError, StorageError) as exc:
                return ModerationResult.fail(exc, record)

            effect_applied = await self._lift(updated)
            logger.info("[PROCESSOR] Record %s (%s on %s) revoked by %s",
                        record_id, updated.action, updated.target_id, revoked_by.name)
            return ModerationResult.ok(updated, f"{updated.action} lifted", effect_applied=effect_applied)

        return ModerationResult.fail(last_conflict or ConflictError(f"Record {record_id} kept changing"))

    async def lift_active(self, target_id: str, issuer: Issuer, kind: str) -> ModerationResult:
        """Revoke the most recent active sanction of ``kind`` ("mute" or "ban") on ``target_id``."""
        actions = LIFT_KINDS.get(str(kind).lower())
        if actions is None:
            return ModerationResult.fail(ValidationError(f"Invalid sanction kind: {kind}"))
        try:
            active = await self.repository.get_active_by_target(target_id)
        except StorageError as exc:
            return ModerationResult.fail(exc)

        for record in active:
            if record.action in actions:
                return await self.revoke(record.id, issuer)
        return ModerationResult.fail(NotFoundError(f"{target_id} has no active {kind}"))

    async def _deactivate(
        self,
        record: ModerationRecord,
        revoked_by: str,
        *,
        appeal_status: Optional[AppealStatus] = None,
        now: Optional[datetime] = None,
    ) -> ModerationRecord:
        """
        The single write path that takes a sanction out of effect.

        Records still in effect get ``active=False`` and the revocation
        stamp; ``appeal_status`` rides in the same update when given.

        Raises:
            ConflictError: ``record`` is stale.
            NotFoundError: The record disappeared.
        """
        now = now or self.clock()
        mutation = RecordMutation(expected_version=record.version, appeal_status=appeal_status)
        if record.is_in_effect(now):
            mutation.active = False
            mutation.revoked_at = now
            mutation.revoked_by = revoked_by
        if mutation.is_empty():
            return record
        return await self.repository.update(record.id, mutation)

    async def _lift(self, record: ModerationRecord) -> bool:
        """
        Cancel any pending expiry and ask the effect applier to lift ``record``.

        The live effect stays when another mute (or ban) is still in effect on the target.
        """
        if self.scheduler is not None:
            await self.scheduler.cancel(record.id)
        try:
            covering = await covering_sanction(self.repository, record)
            if covering is not None:
                logger.info("[PROCESSOR] Record %s revoked; record %s still in effect on %s, effect kept",
                            record.id, covering.id, record.target_id)
                return True
            if record.action is ModerationAction.MUTE:
                await self.effects.lift_mute(record.target_id, record)
            elif record.action.is_ban:
                await self.effects.lift_ban(record.target_id, record)
        except Exception:
            logger.exception("[PROCESSOR] Lifting record %s failed; revocation kept", record.id)
            return False
        return True

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def resolve_target(self, name: str) -> Optional[str]:
        """Resolve a player name to its stable id through the identity resolver."""
        if self.identity is None or not name:
            return None
        return await self.identity.resolve_player(name)

    async def get_history(self, target_id: str, limit: int = 50, offset: int = 0):
        return await self.repository.get_by_target(target_id, limit, offset)

    async def get_active(self, target_id: str):
        return await self.repository.get_active_by_target(target_id)

    @staticmethod
    def describe_failure(result: ModerationResult) -> str:
        """Message for the issuer, always naming the specific reason."""
        if result.success:
            return result.message
        error: Optional[ModerationError] = result.error
        return f"{type(error).__name__}: {error}" if error else result.message or "Unknown failure"
