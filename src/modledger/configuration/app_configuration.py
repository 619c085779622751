"""
Application configuration read from ``config/app_config.yml``.

Every section is optional; a missing file, a YAML error or a non-mapping
document all fall back to the built-in defaults of the settings wrappers.
"""

from __future__ import annotations
import fcntl
import os
from pathlib import Path
from typing import Any, Dict
import yaml

from modledger.configuration.settings import (
    ActionSettings,
    AppealSettings,
    DatabaseSettings,
    EscalationSettings,
    StaffSettings,
    StatisticsSettings,
)
from modledger.util.logger import get_logger

logger = get_logger("app_configuration")


DEFAULT_CONFIG_PATH = Path("./config/app_config.yml")


def resolve_config_path() -> Path:
    """Return ``MODLEDGER_CONFIG`` if set, otherwise ``./config/app_config.yml``."""
    return Path(os.getenv("MODLEDGER_CONFIG") or DEFAULT_CONFIG_PATH).resolve()


def _read_locked(path: Path) -> Any:
    # Shared flock so an editor's exclusive write is never read half-done
    with path.open("r", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_SH)
        try:
            return yaml.safe_load(handle)
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class AppConfig:
    """Cached view of the YAML config with one typed wrapper per section.

    ``reload()`` swaps the cached mapping wholesale; section properties build
    a fresh wrapper on each access, so they always reflect the latest load.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    def load_from_disk(self) -> Dict[str, Any]:
        try:
            loaded = _read_locked(self.config_path)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] No config at %s, running on defaults", self.config_path)
            return {}
        except (OSError, yaml.YAMLError) as exc:
            logger.error("[APP CONFIGURATION] Could not read %s: %s", self.config_path, exc)
            return {}

        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            logger.error("[APP CONFIGURATION] %s must hold a mapping, running on defaults", self.config_path)
            return {}
        return loaded

    def _section(self, key: str) -> Dict[str, Any]:
        value = self._data.get(key, {})
        return value if isinstance(value, dict) else {}

    def reload(self) -> Dict[str, Any]:
        """Read the file again and return what was loaded (``{}`` on any failure)."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    # Typed sections
    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings(self._section("database"))

    @property
    def escalation(self) -> EscalationSettings:
        return EscalationSettings(self._section("escalation"))

    @property
    def actions(self) -> ActionSettings:
        return ActionSettings(self._section("actions"))

    @property
    def appeals(self) -> AppealSettings:
        return AppealSettings(self._section("appeals"))

    @property
    def statistics(self) -> StatisticsSettings:
        return StatisticsSettings(self._section("statistics"))

    @property
    def staff(self) -> StaffSettings:
        return StaffSettings(self._section("staff"))
