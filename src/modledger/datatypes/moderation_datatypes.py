"""
Moderation record types and the value objects that travel around them.

This module defines the enums and dataclasses shared by the repository, the
escalation policy, the action processor and the appeal workflow.

Key Features:
- `ModerationAction`, `Severity`, `AppealStatus`: the closed vocabularies of a sanction.
- `ModerationRecord`: one sanction event, immutable once issued apart from the
  fields listed in `MUTABLE_FIELDS`.
- `RecordMutation`: the only shape in which a persisted record may change.
- `SearchCriteria`: composable, AND'ed filter for history queries.
- `EscalationResult`, `EscalationStatistics`, `ModerationResult`: engine outputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional

from modledger.errors import ModerationError, ValidationError


class ModerationAction(Enum):
    """Enumeration of sanctions the ledger records."""

    WARNING = "WARNING"
    MUTE = "MUTE"
    TEMP_BAN = "TEMP_BAN"
    PERMANENT_BAN = "PERMANENT_BAN"
    IP_BAN = "IP_BAN"
    KICK = "KICK"
    NOTE = "NOTE"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "str | ModerationAction") -> "ModerationAction":
        if isinstance(value, ModerationAction):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Invalid action: {value}") from None

    @property
    def is_instant(self) -> bool:
        """KICK and NOTE happen once and are never in effect afterwards."""
        return self in (ModerationAction.KICK, ModerationAction.NOTE)

    @property
    def is_timed(self) -> bool:
        """Actions whose ``duration_seconds`` bounds how long they stay in effect."""
        return self in (ModerationAction.MUTE, ModerationAction.TEMP_BAN)

    @property
    def is_ban(self) -> bool:
        return self in (ModerationAction.TEMP_BAN, ModerationAction.PERMANENT_BAN, ModerationAction.IP_BAN)

    @property
    def ladder_rung(self) -> Optional[int]:
        """Position on the escalation ladder, or None for actions off the ladder."""
        return ESCALATION_LADDER.index(self) if self in ESCALATION_LADDER else None


ESCALATION_LADDER = (
    ModerationAction.WARNING,
    ModerationAction.MUTE,
    ModerationAction.TEMP_BAN,
    ModerationAction.PERMANENT_BAN,
)


class Severity(Enum):
    """Ordered seriousness of a violation.

    Ordering uses the explicit ``level`` and never the declaration order.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    SEVERE = "SEVERE"
    CRITICAL = "CRITICAL"

    def __str__(self) -> str:
        return self.value

    @property
    def level(self) -> int:
        return SEVERITY_LEVELS[self]

    @property
    def description(self) -> str:
        return SEVERITY_DESCRIPTIONS[self]

    @classmethod
    def parse(cls, value: "str | Severity") -> "Severity":
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Invalid severity: {value}") from None

    @classmethod
    def from_level(cls, level: int) -> "Severity":
        """Return the severity at ``level``, clamped to LOW..CRITICAL."""
        clamped = max(1, min(level, 5))
        return next(sev for sev, lvl in SEVERITY_LEVELS.items() if lvl == clamped)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.level >= other.level


SEVERITY_LEVELS: Dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.SEVERE: 4,
    Severity.CRITICAL: 5,
}

SEVERITY_DESCRIPTIONS: Dict[Severity, str] = {
    Severity.LOW: "Minor infraction",
    Severity.MEDIUM: "Moderate violation",
    Severity.HIGH: "Serious offense",
    Severity.SEVERE: "Major violation",
    Severity.CRITICAL: "Extreme violation",
}


class AppealStatus(Enum):
    """Where a record sits in the appeal state machine."""

    NOT_APPEALED = "NOT_APPEALED"
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    WITHDRAWN = "WITHDRAWN"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "str | AppealStatus") -> "AppealStatus":
        if isinstance(value, AppealStatus):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Invalid appeal status: {value}") from None

    @property
    def is_open(self) -> bool:
        return self in (AppealStatus.PENDING, AppealStatus.UNDER_REVIEW)

    @property
    def is_terminal(self) -> bool:
        return self in (AppealStatus.APPROVED, AppealStatus.DENIED, AppealStatus.WITHDRAWN)


# Fields that may change after a record is persisted, and only via RecordMutation.
MUTABLE_FIELDS = ("active", "revoked_at", "revoked_by", "appeal_status", "appealed_at")


@dataclass(slots=True)
class ModerationRecord:
    """One sanction event in the audit history.

    Attributes:
        target_id: Stable identifier of the punished user.
        target_display_name: Name at issuance time, for display only.
        staff_id: Issuer identifier (None for the console/system actor).
        staff_name: Issuer display name.
        action: The sanction that was applied.
        severity: Seriousness of the violation.
        reason: Free-text reason given by the issuer.
        timestamp: Creation time (aware UTC, millisecond precision).
        duration_seconds: Length of a MUTE/TEMP_BAN; 0 means permanent.
        active: True while the sanction is in effect.
        revoked_at / revoked_by: Set exactly once when manually lifted.
        is_escalation: True when the policy engine raised the caller's request.
        appeal_status / appealed_at: Appeal state; appealed_at set on PENDING entry.
        ip_address: Address associated with the target, if known.
        id: Assigned by the repository on insert.
        version: Optimistic concurrency stamp bumped on every update.
        updated_at: Time of the last mutation.
    """

    target_id: str
    target_display_name: str
    staff_id: Optional[str]
    staff_name: str
    action: ModerationAction
    severity: Severity
    reason: str
    timestamp: datetime
    duration_seconds: int = 0
    active: bool = True
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    is_escalation: bool = False
    appeal_status: AppealStatus = AppealStatus.NOT_APPEALED
    appealed_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    id: Optional[int] = None
    version: int = 1
    updated_at: Optional[datetime] = None

    @property
    def is_permanent(self) -> bool:
        """A ban-class or mute sanction with no end. False for warnings and instant actions."""
        if self.action.is_timed:
            return self.duration_seconds == 0
        return self.action.is_ban

    @property
    def expires_at(self) -> Optional[datetime]:
        """End of a timed sanction, or None when it never expires on its own."""
        if self.action.is_timed and self.duration_seconds > 0:
            return self.timestamp + timedelta(seconds=self.duration_seconds)
        return None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and expires_at <= now

    def is_in_effect(self, now: datetime) -> bool:
        """Not instant, not revoked and not past its expiry at ``now``."""
        return (
            self.active
            and not self.action.is_instant
            and self.revoked_at is None
            and not self.is_expired(now)
        )

    def remaining_seconds(self, now: datetime) -> int:
        """Seconds left before expiry, -1 for permanent, 0 once over or when nothing is timed."""
        if not self.is_in_effect(now):
            return 0
        expires_at = self.expires_at
        if expires_at is None:
            return -1 if self.is_permanent else 0
        return max(0, int((expires_at - now).total_seconds()))

    def with_id(self, record_id: int) -> "ModerationRecord":
        return replace(self, id=record_id)


@dataclass(slots=True)
class RecordMutation:
    """Changes to the mutable fields of a persisted record.

    ``None`` means "leave unchanged". ``expected_version`` must match the
    stored version or the update fails with ConflictError.
    """

    expected_version: int
    active: Optional[bool] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    appeal_status: Optional[AppealStatus] = None
    appealed_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in MUTABLE_FIELDS)

    def apply_to(self, record: ModerationRecord, updated_at: datetime) -> ModerationRecord:
        """Return a copy of ``record`` with this mutation applied and the version bumped."""
        changes = {name: getattr(self, name) for name in MUTABLE_FIELDS if getattr(self, name) is not None}
        return replace(record, version=record.version + 1, updated_at=updated_at, **changes)


@dataclass(slots=True)
class SearchCriteria:
    """Filter for history queries. Every set predicate is AND'ed.

    ``after_id`` switches to keyset paging: only ids above it, oldest id first.
    """

    target_id: Optional[str] = None
    staff_id: Optional[str] = None
    action: Optional[ModerationAction] = None
    severity: Optional[Severity] = None
    ip_address: Optional[str] = None
    reason_contains: Optional[str] = None
    appeal_status: Optional[AppealStatus] = None
    active_only: bool = False
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 50
    offset: int = 0
    after_id: Optional[int] = None

    def validate(self) -> None:
        if self.limit <= 0:
            raise ValidationError(f"Invalid limit: {self.limit}")
        if self.offset < 0:
            raise ValidationError(f"Invalid offset: {self.offset}")
        if self.after_id is not None and self.after_id < 0:
            raise ValidationError(f"Invalid after_id: {self.after_id}")


@dataclass(slots=True)
class EscalationResult:
    """Recommendation produced by the escalation policy engine."""

    is_valid: bool
    recommended_action: ModerationAction
    recommended_severity: Severity
    recommended_duration: int
    was_escalated: bool
    escalation_reason: Optional[str] = None
    violation_score: float = 0.0
    category: str = "general"


@dataclass(slots=True)
class EscalationStatistics:
    """Per-target aggregates derived from the record set on demand."""

    target_id: str
    total_violations: int = 0
    total_escalations: int = 0
    successful_appeals: int = 0
    violation_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def escalation_rate(self) -> float:
        if self.total_violations == 0:
            return 0.0
        return self.total_escalations / self.total_violations


@dataclass(slots=True)
class ModerationResult:
    """Outcome of an issuance, revocation or appeal transition."""

    success: bool
    message: str = ""
    entry: Optional[ModerationRecord] = None
    error: Optional[ModerationError] = None
    escalation: Optional[EscalationResult] = None
    effect_applied: bool = False

    @classmethod
    def ok(cls, entry: Optional[ModerationRecord], message: str = "", **kwargs) -> "ModerationResult":
        kwargs.setdefault("effect_applied", True)
        return cls(success=True, message=message, entry=entry, **kwargs)

    @classmethod
    def fail(cls, error: ModerationError, entry: Optional[ModerationRecord] = None) -> "ModerationResult":
        return cls(success=False, message=str(error), entry=entry, error=error)
