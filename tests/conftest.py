"""
Pytest configuration and fixtures for Modledger tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modledger.database.database import ModerationDatabase  # noqa: E402
from modledger.datatypes.moderation_datatypes import ModerationAction, ModerationRecord, Severity  # noqa: E402
from modledger.datatypes.staff_datatypes import Issuer, Rank  # noqa: E402
from modledger.moderation.action_processor import ActionProcessor  # noqa: E402
from modledger.moderation.appeal_workflow import AppealWorkflow  # noqa: E402
from modledger.moderation.collaborators import DirectoryIdentityResolver, StaticRankProvider  # noqa: E402
from modledger.moderation.escalation_policy import EscalationPolicyEngine  # noqa: E402
from modledger.repositories.moderation_repo import SqliteModerationRepository  # noqa: E402
from modledger.scheduler.expiry_scheduler import ExpiryScheduler  # noqa: E402
from modledger.util.time_utils import truncate_ms  # noqa: E402

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, now: datetime = START) -> None:
        self.now = truncate_ms(now)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = truncate_ms(self.now + timedelta(**kwargs))
        return self.now


class RecordingEffects:
    """Effect applier that records every call and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, int | None]] = []
        self.fail = False

    async def _record(self, kind: str, target_id: str, record: ModerationRecord) -> None:
        if self.fail:
            raise ConnectionError(f"{kind} unavailable")
        self.calls.append((kind, target_id, record.id))

    async def apply_mute(self, target_id, record):
        await self._record("apply_mute", target_id, record)

    async def apply_ban(self, target_id, record):
        await self._record("apply_ban", target_id, record)

    async def apply_kick(self, target_id, record):
        await self._record("apply_kick", target_id, record)

    async def lift_mute(self, target_id, record):
        await self._record("lift_mute", target_id, record)

    async def lift_ban(self, target_id, record):
        await self._record("lift_ban", target_id, record)

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.calls]


STAFF_RANKS = {
    "pmod-1": Rank.PMOD,
    "gm-1": Rank.GM,
    "gm-2": Rank.GM,
    "mgr-1": Rank.MANAGER,
    "dev-1": Rank.DEV,
}

GM = Issuer(staff_id="gm-1", name="GameMaster")
PMOD = Issuer(staff_id="pmod-1", name="Helper")
MANAGER = Issuer(staff_id="mgr-1", name="Manager")
CONSOLE = Issuer.console()


def make_record(**overrides) -> ModerationRecord:
    """A WARNING on player-1 issued at START unless overridden."""
    values = dict(
        target_id="player-1",
        target_display_name="Player One",
        staff_id="gm-1",
        staff_name="GameMaster",
        action=ModerationAction.WARNING,
        severity=Severity.MEDIUM,
        reason="spam in chat",
        timestamp=START,
    )
    values.update(overrides)
    return ModerationRecord(**values)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def effects() -> RecordingEffects:
    return RecordingEffects()


@pytest.fixture
def ranks() -> StaticRankProvider:
    return StaticRankProvider(STAFF_RANKS)


@pytest_asyncio.fixture
async def database(tmp_path):
    db = ModerationDatabase(tmp_path / "moderation.db", timeout_seconds=5.0)
    await db.initialize()
    yield db
    await db.shutdown()


@pytest.fixture
def repository(database, clock) -> SqliteModerationRepository:
    return SqliteModerationRepository(database.connection, database.perf_monitor, clock=clock)


@pytest.fixture
def engine(repository, ranks, clock) -> EscalationPolicyEngine:
    return EscalationPolicyEngine(repository, ranks, clock=clock)


@pytest_asyncio.fixture
async def scheduler(effects, repository, clock):
    expiry = ExpiryScheduler(effects, repository, clock=clock)
    yield expiry
    await expiry.shutdown()


@pytest.fixture
def processor(repository, engine, ranks, effects, scheduler, clock) -> ActionProcessor:
    return ActionProcessor(
        repository,
        engine,
        ranks,
        effects,
        identity=DirectoryIdentityResolver({"PlayerOne": "player-1"}),
        scheduler=scheduler,
        clock=clock,
    )


@pytest.fixture
def appeals(processor) -> AppealWorkflow:
    return AppealWorkflow(processor, deadline_days=14, max_open_per_target=3)
