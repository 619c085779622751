"""
Escalation policy: a target's history in, a recommended sanction out.

Scoring
-------
Every counted prior record contributes ``weight(severity) * decay(age)``
where ``decay`` falls linearly from 1 at issuance to 0 after
``decay_days``. NOTE records and records whose appeal was approved are not
counted. The score plus the weight of the requested severity is compared
against per-rung thresholds of the ladder WARNING, MUTE, TEMP_BAN,
PERMANENT_BAN.

Ladder rules
------------
* A single evaluation climbs at most one rung above the request.
* CRITICAL requests lift that cap and never land below TEMP_BAN.
* The more severe of requested and computed always wins.

Durations for MUTE and TEMP_BAN grow with the score, are softened by past
successful appeals, and are capped per action.

:meth:`EscalationPolicyEngine.evaluate` is pure: the same history, inputs
and ``now`` give the same result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from modledger.datatypes.moderation_datatypes import (
    ESCALATION_LADDER,
    AppealStatus,
    EscalationResult,
    ModerationAction,
    ModerationRecord,
    Severity,
)
from modledger.errors import ValidationError
from modledger.moderation.collaborators import RankProvider
from modledger.repositories.moderation_repo import ModerationRepository
from modledger.util.logger import get_logger
from modledger.util.time_utils import Clock, utcnow

logger = get_logger("escalation_policy")

GENERAL_CATEGORY = "general"

DEFAULT_SEVERITY_WEIGHTS: Dict[Severity, float] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.SEVERE: 5,
    Severity.CRITICAL: 8,
}

DEFAULT_THRESHOLDS: Dict[ModerationAction, float] = {
    ModerationAction.WARNING: 0,
    ModerationAction.MUTE: 6,
    ModerationAction.TEMP_BAN: 12,
    ModerationAction.PERMANENT_BAN: 20,
}

DEFAULT_BASE_DURATIONS: Dict[ModerationAction, int] = {
    ModerationAction.MUTE: 3600,
    ModerationAction.TEMP_BAN: 86400,
}

DEFAULT_MAX_DURATIONS: Dict[ModerationAction, int] = {
    ModerationAction.MUTE: 7 * 86400,
    ModerationAction.TEMP_BAN: 30 * 86400,
}

DEFAULT_VIOLATION_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "chat": ("spam", "toxic", "harassment", "inappropriate"),
    "griefing": ("grief", "stealing", "vandalism"),
    "hacking": ("hack", "cheat", "exploit", "x-ray", "fly"),
}

# Literal action for a severity when the caller names none
BASELINE_ACTIONS: Dict[Severity, ModerationAction] = {
    Severity.LOW: ModerationAction.WARNING,
    Severity.MEDIUM: ModerationAction.WARNING,
    Severity.HIGH: ModerationAction.MUTE,
    Severity.SEVERE: ModerationAction.TEMP_BAN,
    Severity.CRITICAL: ModerationAction.TEMP_BAN,
}

CRITICAL_FLOOR = ModerationAction.TEMP_BAN


def _parse_keyed(raw: Any, parse, defaults: Mapping, cast) -> Dict:
    result = dict(defaults)
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            result[parse(key)] = cast(value)
    return result


@dataclass(frozen=True)
class EscalationPolicy:
    """Tunables of the escalation engine, loaded from the ``escalation`` config section."""

    history_limit: int = 50
    lookback_days: int = 90
    decay_days: int = 90
    severity_weights: Mapping[Severity, float] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS))
    thresholds: Mapping[ModerationAction, float] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    base_durations: Mapping[ModerationAction, int] = field(default_factory=lambda: dict(DEFAULT_BASE_DURATIONS))
    max_durations: Mapping[ModerationAction, int] = field(default_factory=lambda: dict(DEFAULT_MAX_DURATIONS))
    duration_score_factor: float = 0.25
    max_duration_multiplier: float = 5.0
    appeal_impact_factor: float = 0.7
    violation_categories: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_VIOLATION_CATEGORIES)
    )

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "EscalationPolicy":
        """
        Build a policy from a configuration mapping. Missing keys keep their defaults.

        Raises:
            ValidationError: If a key names an unknown severity/action or the
                resulting policy is inconsistent.
        """
        data = data if isinstance(data, Mapping) else {}

        categories = dict(DEFAULT_VIOLATION_CATEGORIES)
        raw_categories = data.get("violation_categories")
        if isinstance(raw_categories, Mapping):
            categories = {
                str(name): tuple(str(k).lower() for k in (keywords or ()))
                for name, keywords in raw_categories.items()
            }

        return cls(
            history_limit=int(data.get("history_limit", 50)),
            lookback_days=int(data.get("lookback_days", 90)),
            decay_days=int(data.get("decay_days", 90)),
            severity_weights=_parse_keyed(
                data.get("severity_weights"), Severity.parse, DEFAULT_SEVERITY_WEIGHTS, float
            ),
            thresholds=_parse_keyed(
                data.get("thresholds"), ModerationAction.parse, DEFAULT_THRESHOLDS, float
            ),
            base_durations=_parse_keyed(
                data.get("base_durations"), ModerationAction.parse, DEFAULT_BASE_DURATIONS, int
            ),
            max_durations=_parse_keyed(
                data.get("max_durations"), ModerationAction.parse, DEFAULT_MAX_DURATIONS, int
            ),
            duration_score_factor=float(data.get("duration_score_factor", 0.25)),
            max_duration_multiplier=float(data.get("max_duration_multiplier", 5.0)),
            appeal_impact_factor=float(data.get("appeal_impact_factor", 0.7)),
            violation_categories=categories,
        )

    def validate(self) -> None:
        if self.history_limit <= 0:
            raise ValidationError(f"Invalid history_limit: {self.history_limit}")
        if self.decay_days <= 0 or self.lookback_days <= 0:
            raise ValidationError("decay_days and lookback_days must be positive")

        weights = [self.severity_weights[s] for s in sorted(Severity, key=lambda s: s.level)]
        if any(w < 0 for w in weights) or weights != sorted(weights):
            raise ValidationError("Severity weights must be non-negative and non-decreasing with severity")

        thresholds = [self.thresholds.get(a, 0) for a in ESCALATION_LADDER]
        if any(later <= earlier for earlier, later in zip(thresholds[1:], thresholds[2:])):
            raise ValidationError("Escalation thresholds must increase along the ladder")

        for action in (ModerationAction.MUTE, ModerationAction.TEMP_BAN):
            if self.base_durations.get(action, 0) < 0 or self.max_durations.get(action, 0) < 0:
                raise ValidationError(f"Durations for {action} must be non-negative")

        if not 0 < self.appeal_impact_factor <= 1:
            raise ValidationError(f"Invalid appeal_impact_factor: {self.appeal_impact_factor}")

    def weight(self, severity: Severity) -> float:
        return self.severity_weights[severity]

    def decay(self, age: timedelta) -> float:
        """Linear falloff: 1.0 at issuance, 0.0 once ``decay_days`` have passed."""
        age_days = max(age, timedelta(0)) / timedelta(days=1)
        return max(0.0, 1.0 - age_days / self.decay_days)


class EscalationPolicyEngine:
    """
    Turns a target's history into a recommended sanction.

    Args:
        repository: Source of the history snapshot.
        rank_provider: Consulted for the escalation override capability.
        policy: Tunables; defaults when omitted.
        clock: Source of ``now`` when the caller passes none.
        enabled: When False every request is echoed back unchanged.
    """

    def __init__(
        self,
        repository: ModerationRepository,
        rank_provider: RankProvider,
        policy: Optional[EscalationPolicy] = None,
        clock: Clock = utcnow,
        enabled: bool = True,
    ) -> None:
        self.repository = repository
        self.rank_provider = rank_provider
        self.policy = policy or EscalationPolicy()
        self.clock = clock
        self.enabled = enabled

    # ------------------------------------------------------------------
    # Pure helpers
    # ------------------------------------------------------------------

    def classify_reason(self, reason: str) -> str:
        """Return the first violation category with a keyword in ``reason``, else ``general``."""
        text = (reason or "").lower()
        for category, keywords in self.policy.violation_categories.items():
            if any(keyword in text for keyword in keywords):
                return category
        return GENERAL_CATEGORY

    @staticmethod
    def baseline_action(severity: Severity) -> ModerationAction:
        return BASELINE_ACTIONS[severity]

    @staticmethod
    def counts_toward_score(record: ModerationRecord) -> bool:
        return record.action is not ModerationAction.NOTE and record.appeal_status is not AppealStatus.APPROVED

    def violation_score(self, history: Sequence[ModerationRecord], now: datetime) -> float:
        """Weighted, decayed sum over the counted records inside the lookback window."""
        cutoff = now - timedelta(days=self.policy.lookback_days)
        score = 0.0
        for record in history:
            if record.timestamp < cutoff or not self.counts_toward_score(record):
                continue
            score += self.policy.weight(record.severity) * self.policy.decay(now - record.timestamp)
        return score

    def _rung_for_total(self, total: float) -> int:
        rung = 0
        for index, action in enumerate(ESCALATION_LADDER):
            if total >= self.policy.thresholds.get(action, 0):
                rung = index
        return rung

    def recommended_duration(self, action: ModerationAction, score: float, successful_appeals: int) -> int:
        """Duration in seconds for a timed action, 0 for everything else."""
        if not action.is_timed:
            return 0
        policy = self.policy
        base = policy.base_durations.get(action, 0)
        multiplier = min(1.0 + score * policy.duration_score_factor, policy.max_duration_multiplier)
        appeal_impact = max(policy.appeal_impact_factor, 1.0 - 0.1 * successful_appeals)
        duration = int(base * multiplier * appeal_impact)
        cap = policy.max_durations.get(action, 0)
        return min(duration, cap) if cap > 0 else duration

    def evaluate(
        self,
        history: Sequence[ModerationRecord],
        reason: str,
        severity: Severity,
        requested_action: Optional[ModerationAction],
        now: datetime,
    ) -> EscalationResult:
        """
        Decide the sanction for one request against a history snapshot.

        Args:
            history: Prior records of the target (any order).
            reason: Reason text of the new violation.
            severity: Requested severity.
            requested_action: Literal action asked for; None means the
                baseline action of ``severity``.
            now: Instant the time decay is measured from.

        Returns:
            The recommendation. Actions off the ladder come back with
            ``is_valid=False`` and the request echoed.
        """
        requested = requested_action or self.baseline_action(severity)
        category = self.classify_reason(reason)
        score = self.violation_score(history, now)
        successful_appeals = sum(1 for r in history if r.appeal_status is AppealStatus.APPROVED)

        requested_rung = requested.ladder_rung
        if requested_rung is None:
            return EscalationResult(
                is_valid=False,
                recommended_action=requested,
                recommended_severity=severity,
                recommended_duration=0,
                was_escalated=False,
                escalation_reason=f"{requested} is not on the escalation ladder",
                violation_score=score,
                category=category,
            )

        if not self.enabled:
            return EscalationResult(
                is_valid=True,
                recommended_action=requested,
                recommended_severity=severity,
                recommended_duration=self.recommended_duration(requested, score, successful_appeals),
                was_escalated=False,
                violation_score=score,
                category=category,
            )

        total = score + self.policy.weight(severity)
        computed_rung = self._rung_for_total(total)
        if severity is Severity.CRITICAL:
            computed_rung = max(computed_rung, CRITICAL_FLOOR.ladder_rung)
        else:
            computed_rung = min(computed_rung, requested_rung + 1)

        final_rung = max(requested_rung, computed_rung)
        final_action = ESCALATION_LADDER[final_rung]
        climbed = final_rung - requested_rung
        final_severity = Severity.from_level(severity.level + climbed)
        was_escalated = climbed > 0 or final_severity > severity

        escalation_reason = None
        if was_escalated:
            if severity is Severity.CRITICAL and total < self.policy.thresholds.get(final_action, 0):
                escalation_reason = f"CRITICAL severity raises {requested} to at least {final_action}"
            else:
                escalation_reason = (
                    f"Escalated {requested} to {final_action}: prior {category} violation score "
                    f"{score:.2f} plus {severity} reached {total:.2f}"
                )

        result = EscalationResult(
            is_valid=True,
            recommended_action=final_action,
            recommended_severity=final_severity,
            recommended_duration=self.recommended_duration(final_action, score, successful_appeals),
            was_escalated=was_escalated,
            escalation_reason=escalation_reason,
            violation_score=score,
            category=category,
        )
        logger.debug(
            "[ESCALATION] %s/%s -> %s/%s (score=%.2f, total=%.2f, escalated=%s)",
            requested, severity, final_action, final_severity, score, total, was_escalated,
        )
        return result

    # ------------------------------------------------------------------
    # Repository-backed entry points
    # ------------------------------------------------------------------

    async def fetch_history(self, target_id: str, now: datetime) -> List[ModerationRecord]:
        """Most recent ``history_limit`` records of the target inside the lookback window."""
        records = await self.repository.get_by_target(target_id, self.policy.history_limit)
        cutoff = now - timedelta(days=self.policy.lookback_days)
        return [r for r in records if r.timestamp >= cutoff]

    async def calculate_escalation(
        self,
        target_id: str,
        reason: str,
        severity: Severity,
        requested_action: Optional[ModerationAction] = None,
        now: Optional[datetime] = None,
    ) -> EscalationResult:
        """Fetch the target's history snapshot and evaluate the request against it."""
        now = now or self.clock()
        history = await self.fetch_history(target_id, now)
        return self.evaluate(history, reason, severity, requested_action, now)

    async def should_bypass_escalation(self, target_id: str, acting_staff_id: Optional[str]) -> bool:
        """True only when the acting staff member holds the override capability. No side effects."""
        if not acting_staff_id:
            return False
        allowed = await self.rank_provider.has_override(acting_staff_id)
        if allowed:
            logger.debug("[ESCALATION] %s may bypass escalation for %s", acting_staff_id, target_id)
        return allowed
