"""
Boundaries to the systems around the ledger.

The ledger decides and records sanctions; identity lookup, rank lookup and
the live enforcement of a sanction belong to the host application. Each is
a Protocol here, with a logging-only default used when the host provides
nothing better.
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol, runtime_checkable

from modledger.datatypes.moderation_datatypes import ModerationRecord
from modledger.datatypes.staff_datatypes import Capability, Rank
from modledger.util.logger import get_logger

logger = get_logger("collaborators")


@runtime_checkable
class IdentityResolver(Protocol):
    async def resolve_player(self, name: str) -> Optional[str]:
        """Return the stable id for ``name`` (online or historical), or None."""
        ...


@runtime_checkable
class RankProvider(Protocol):
    async def get_rank(self, staff_id: str) -> Rank:
        ...

    async def has_override(self, staff_id: str) -> bool:
        ...


@runtime_checkable
class EffectApplier(Protocol):
    """Live enforcement of sanctions. Best-effort; failures never undo the record."""

    async def apply_mute(self, target_id: str, record: ModerationRecord) -> None:
        ...

    async def apply_ban(self, target_id: str, record: ModerationRecord) -> None:
        ...

    async def apply_kick(self, target_id: str, record: ModerationRecord) -> None:
        ...

    async def lift_mute(self, target_id: str, record: ModerationRecord) -> None:
        ...

    async def lift_ban(self, target_id: str, record: ModerationRecord) -> None:
        ...


class StaticRankProvider:
    """
    Rank table held in memory, typically filled from configuration.

    Unknown ids get ``Rank.DEFAULT``. Override is granted by the
    OVERRIDE_ESCALATION capability of the rank.
    """

    def __init__(self, ranks: Optional[Dict[str, Rank]] = None) -> None:
        self._ranks: Dict[str, Rank] = dict(ranks or {})

    def set_rank(self, staff_id: str, rank: Rank) -> None:
        self._ranks[staff_id] = rank

    async def get_rank(self, staff_id: str) -> Rank:
        return self._ranks.get(staff_id, Rank.DEFAULT)

    async def has_override(self, staff_id: str) -> bool:
        return (await self.get_rank(staff_id)).can(Capability.OVERRIDE_ESCALATION)


class DirectoryIdentityResolver:
    """Case-insensitive name to id lookup over a known directory of players."""

    def __init__(self, directory: Optional[Dict[str, str]] = None) -> None:
        self._by_name = {name.lower(): target_id for name, target_id in (directory or {}).items()}

    def remember(self, name: str, target_id: str) -> None:
        self._by_name[name.lower()] = target_id

    async def resolve_player(self, name: str) -> Optional[str]:
        return self._by_name.get(name.strip().lower())


class LoggingEffectApplier:
    """Effect applier that only logs what it would enforce."""

    async def apply_mute(self, target_id: str, record: ModerationRecord) -> None:
        logger.info("[EFFECTS] Mute %s (record %s, %ss)", target_id, record.id, record.duration_seconds)

    async def apply_ban(self, target_id: str, record: ModerationRecord) -> None:
        logger.info("[EFFECTS] Ban %s (record %s, %s)", target_id, record.id, record.action)

    async def apply_kick(self, target_id: str, record: ModerationRecord) -> None:
        logger.info("[EFFECTS] Kick %s (record %s)", target_id, record.id)

    async def lift_mute(self, target_id: str, record: ModerationRecord) -> None:
        logger.info("[EFFECTS] Unmute %s (record %s)", target_id, record.id)

    async def lift_ban(self, target_id: str, record: ModerationRecord) -> None:
        logger.info("[EFFECTS] Unban %s (record %s)", target_id, record.id)
