"""Tests for staff ranks and capabilities."""

import pytest

from modledger.datatypes.moderation_datatypes import ModerationAction
from modledger.datatypes.staff_datatypes import (
    ACTION_CAPABILITIES,
    RANK_LEVELS,
    Capability,
    Issuer,
    Rank,
)
from modledger.errors import ValidationError


def test_rank_order_comes_from_level_table():
    assert Rank.GM.outranks(Rank.PMOD)
    assert Rank.DEV.outranks(Rank.MANAGER)
    assert not Rank.GM.outranks(Rank.GM)
    assert sorted(Rank, key=lambda r: r.level) == sorted(RANK_LEVELS, key=RANK_LEVELS.get)


def test_default_rank_is_not_staff():
    assert not Rank.DEFAULT.is_staff
    assert Rank.PMOD.is_staff


def test_capabilities_grow_with_rank():
    assert Rank.PMOD.can(Capability.ISSUE_MUTE)
    assert not Rank.PMOD.can(Capability.ISSUE_TEMP_BAN)
    assert Rank.GM.can(Capability.ISSUE_TEMP_BAN)
    assert not Rank.GM.can(Capability.OVERRIDE_ESCALATION)
    assert Rank.MANAGER.can(Capability.OVERRIDE_ESCALATION)
    assert Rank.DEV.capabilities == frozenset(Capability)
    assert Rank.PMOD.capabilities <= Rank.GM.capabilities <= Rank.MANAGER.capabilities


def test_every_action_needs_a_capability():
    assert set(ACTION_CAPABILITIES) == set(ModerationAction)


def test_rank_parse():
    assert Rank.parse("gm") is Rank.GM
    with pytest.raises(ValidationError, match="Invalid rank"):
        Rank.parse("OWNER")


def test_console_issuer():
    console = Issuer.console()
    assert console.is_console
    assert console.staff_id is None
    assert console.audit_name == "CONSOLE"
    assert Issuer(staff_id="gm-1", name="GM").audit_name == "gm-1"
