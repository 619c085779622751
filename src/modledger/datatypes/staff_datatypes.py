"""
Staff ranks, capabilities and the issuer of a moderation action.

Rank comparisons use the explicit ``level`` table below so reordering the
enum members can never change who outranks whom.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from modledger.datatypes.moderation_datatypes import ModerationAction
from modledger.errors import ValidationError


class Capability(Enum):
    """Individual permissions a rank may hold."""

    ISSUE_WARNING = "issue_warning"
    ISSUE_MUTE = "issue_mute"
    ISSUE_KICK = "issue_kick"
    ISSUE_TEMP_BAN = "issue_temp_ban"
    ISSUE_PERMANENT_BAN = "issue_permanent_ban"
    ISSUE_IP_BAN = "issue_ip_ban"
    ADD_NOTE = "add_note"
    REVOKE = "revoke"
    REVIEW_APPEALS = "review_appeals"
    OVERRIDE_ESCALATION = "override_escalation"


class Rank(Enum):
    DEFAULT = "DEFAULT"
    PMOD = "PMOD"
    GM = "GM"
    MANAGER = "MANAGER"
    DEV = "DEV"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "str | Rank") -> "Rank":
        if isinstance(value, Rank):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Invalid rank: {value}") from None

    @property
    def level(self) -> int:
        return RANK_LEVELS[self]

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return RANK_CAPABILITIES[self]

    @property
    def is_staff(self) -> bool:
        return self.level > RANK_LEVELS[Rank.DEFAULT]

    def outranks(self, other: "Rank") -> bool:
        return self.level > other.level

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


RANK_LEVELS: Dict[Rank, int] = {
    Rank.DEFAULT: 0,
    Rank.PMOD: 10,
    Rank.GM: 20,
    Rank.MANAGER: 30,
    Rank.DEV: 40,
}

_PMOD_CAPS = frozenset({
    Capability.ISSUE_WARNING,
    Capability.ISSUE_MUTE,
    Capability.ISSUE_KICK,
    Capability.ADD_NOTE,
})
_GM_CAPS = _PMOD_CAPS | {
    Capability.ISSUE_TEMP_BAN,
    Capability.REVOKE,
    Capability.REVIEW_APPEALS,
}
_MANAGER_CAPS = _GM_CAPS | {
    Capability.ISSUE_PERMANENT_BAN,
    Capability.ISSUE_IP_BAN,
    Capability.OVERRIDE_ESCALATION,
}

RANK_CAPABILITIES: Dict[Rank, FrozenSet[Capability]] = {
    Rank.DEFAULT: frozenset(),
    Rank.PMOD: _PMOD_CAPS,
    Rank.GM: _GM_CAPS,
    Rank.MANAGER: _MANAGER_CAPS,
    Rank.DEV: frozenset(Capability),
}

# Capability needed to issue each action class
ACTION_CAPABILITIES: Dict[ModerationAction, Capability] = {
    ModerationAction.WARNING: Capability.ISSUE_WARNING,
    ModerationAction.MUTE: Capability.ISSUE_MUTE,
    ModerationAction.KICK: Capability.ISSUE_KICK,
    ModerationAction.TEMP_BAN: Capability.ISSUE_TEMP_BAN,
    ModerationAction.PERMANENT_BAN: Capability.ISSUE_PERMANENT_BAN,
    ModerationAction.IP_BAN: Capability.ISSUE_IP_BAN,
    ModerationAction.NOTE: Capability.ADD_NOTE,
}


CONSOLE_NAME = "CONSOLE"


@dataclass(frozen=True, slots=True)
class Issuer:
    """Who is performing a moderation action.

    Attributes:
        staff_id: Stable identifier of the staff member, None for the console.
        name: Display name written to the record.
        is_console: The system/console actor, authorised for every action.
    """

    staff_id: Optional[str]
    name: str
    is_console: bool = False

    @classmethod
    def console(cls, name: str = CONSOLE_NAME) -> "Issuer":
        return cls(staff_id=None, name=name, is_console=True)

    @property
    def audit_name(self) -> str:
        """Identifier written to ``revoked_by`` and similar audit columns."""
        return self.staff_id or self.name
