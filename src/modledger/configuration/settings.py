"""Typed accessors over the sections of ``app_config.yml``."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from modledger.datatypes.moderation_datatypes import ModerationAction
from modledger.datatypes.staff_datatypes import Rank


class SectionSettings:
    """Base helper around one mapping section of the configuration.

    Provides ``get`` and ``as_dict``; subclasses add typed properties with
    defaults so a missing or partial section still yields usable values.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return self.data


class DatabaseSettings(SectionSettings):
    @property
    def path(self) -> Path:
        return Path(str(self.data.get("path", "./data/moderation.db"))).resolve()

    @property
    def timeout_seconds(self) -> float:
        return float(self.data.get("timeout_seconds", 5.0))

    @property
    def slow_query_ms(self) -> float:
        return float(self.data.get("slow_query_ms", 100.0))


class EscalationSettings(SectionSettings):
    @property
    def enabled(self) -> bool:
        return bool(self.data.get("enabled", True))

    def policy(self):
        """Build the EscalationPolicy described by this section."""
        from modledger.moderation.escalation_policy import EscalationPolicy

        return EscalationPolicy.from_mapping(self.data)


class ActionSettings(SectionSettings):
    @property
    def conflict_retries(self) -> int:
        return max(0, int(self.data.get("conflict_retries", 3)))

    @property
    def protect_staff(self) -> bool:
        """Staff of equal or higher rank can only be punished with the override capability."""
        return bool(self.data.get("protect_staff", True))

    @property
    def required_ranks(self) -> Dict[ModerationAction, Rank]:
        """Optional minimum rank per action, on top of the capability check."""
        raw = self.data.get("required_ranks", {})
        if not isinstance(raw, dict):
            return {}
        return {ModerationAction.parse(action): Rank.parse(rank) for action, rank in raw.items()}


class AppealSettings(SectionSettings):
    @property
    def deadline_days(self) -> int:
        return int(self.data.get("deadline_days", 14))

    @property
    def max_open_per_target(self) -> int:
        return int(self.data.get("max_open_per_target", 3))


class StatisticsSettings(SectionSettings):
    @property
    def cache_ttl_seconds(self) -> int:
        return int(self.data.get("cache_ttl_seconds", 30))

    @property
    def history_limit(self) -> int:
        return int(self.data.get("history_limit", 100))


class StaffSettings(SectionSettings):
    @property
    def ranks(self) -> Dict[str, Rank]:
        """Staff id to rank; used by the built-in rank provider."""
        raw = self.data.get("ranks", {})
        if not isinstance(raw, dict):
            return {}
        return {str(staff_id): Rank.parse(rank) for staff_id, rank in raw.items()}
