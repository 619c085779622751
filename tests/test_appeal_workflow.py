"""Tests for the appeal workflow."""

from datetime import timedelta

import pytest

from conftest import CONSOLE, GM, PMOD, START, make_record
from modledger.datatypes.moderation_datatypes import AppealStatus, ModerationAction, Severity
from modledger.datatypes.staff_datatypes import Issuer
from modledger.errors import AlreadyInactiveError, NotFoundError, ValidationError
from modledger.moderation.appeal_workflow import APPEAL_TRANSITIONS, appeal_priority, can_transition

PLAYER = Issuer(staff_id="player-1", name="PlayerOne")


class TestGraph:
    def test_terminal_states_have_no_exits(self):
        for status in (AppealStatus.APPROVED, AppealStatus.DENIED, AppealStatus.WITHDRAWN):
            assert APPEAL_TRANSITIONS[status] == frozenset()
            assert status.is_terminal

    def test_edges(self):
        assert can_transition(AppealStatus.NOT_APPEALED, AppealStatus.PENDING)
        assert can_transition(AppealStatus.UNDER_REVIEW, AppealStatus.APPROVED)
        assert can_transition(AppealStatus.PENDING, AppealStatus.WITHDRAWN)
        assert not can_transition(AppealStatus.PENDING, AppealStatus.APPROVED)
        assert not can_transition(AppealStatus.APPROVED, AppealStatus.PENDING)

    @pytest.mark.parametrize(
        "action, severity, duration, expected",
        [
            (ModerationAction.WARNING, Severity.LOW, 0, 1),
            (ModerationAction.WARNING, Severity.MEDIUM, 30 * 86400, 2),
            (ModerationAction.IP_BAN, Severity.SEVERE, 0, 5),
            (ModerationAction.MUTE, Severity.MEDIUM, 600, 2),
            (ModerationAction.TEMP_BAN, Severity.MEDIUM, 14 * 86400, 3),
            (ModerationAction.PERMANENT_BAN, Severity.HIGH, 0, 5),
            (ModerationAction.PERMANENT_BAN, Severity.CRITICAL, 0, 5),
        ],
    )
    def test_priority(self, action, severity, duration, expected):
        record = make_record(action=action, severity=severity, duration_seconds=duration)
        assert appeal_priority(record) == expected


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_scenario_e_approval_lifts_the_sanction(self, processor, appeals, effects, engine):
        issued = await processor.issue_temp_ban("player-1", GM, "grief", Severity.HIGH, 86400)
        record_id = issued.entry.id

        submitted = await appeals.submit(record_id, "player-1", "it was my brother")
        reviewing = await appeals.start_review(record_id, GM)
        approved = await appeals.approve(record_id, GM)

        assert submitted.entry.appeal_status is AppealStatus.PENDING
        assert submitted.entry.appealed_at == START
        assert reviewing.entry.appeal_status is AppealStatus.UNDER_REVIEW
        assert approved.success
        assert approved.entry.appeal_status is AppealStatus.APPROVED
        assert approved.entry.active is False
        assert approved.entry.revoked_by == "gm-1"
        assert approved.effect_applied is True
        assert effects.kinds() == ["apply_ban", "lift_ban"]

        reopened = await appeals.transition(record_id, AppealStatus.PENDING, GM)
        assert isinstance(reopened.error, ValidationError)
        assert reopened.message == "Invalid appeal transition: APPROVED -> PENDING"

        stats = await engine.calculate_escalation("player-1", "grief", Severity.LOW, ModerationAction.WARNING)
        assert stats.violation_score == 0.0

    @pytest.mark.asyncio
    async def test_deny_keeps_sanction(self, processor, appeals, effects):
        issued = await processor.issue_mute("player-1", GM, "spam", Severity.LOW, 3600)
        await appeals.submit(issued.entry.id, "player-1")
        await appeals.start_review(issued.entry.id, GM)

        denied = await appeals.deny(issued.entry.id, GM)

        assert denied.entry.appeal_status is AppealStatus.DENIED
        assert denied.entry.active is True
        assert effects.kinds() == ["apply_mute"]

    @pytest.mark.asyncio
    async def test_target_can_withdraw_own_appeal(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)
        await appeals.submit(issued.entry.id, "player-1")

        withdrawn = await appeals.withdraw(issued.entry.id, PLAYER)
        review = await appeals.start_review(issued.entry.id, GM)

        assert withdrawn.entry.appeal_status is AppealStatus.WITHDRAWN
        assert isinstance(review.error, ValidationError)

    @pytest.mark.asyncio
    async def test_review_needs_capability(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)
        await appeals.submit(issued.entry.id, "player-1")

        result = await appeals.start_review(issued.entry.id, PMOD)

        assert isinstance(result.error, ValidationError)
        assert (await processor.repository.get(issued.entry.id)).appeal_status is AppealStatus.PENDING

    @pytest.mark.asyncio
    async def test_skipping_review_is_rejected(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)
        await appeals.submit(issued.entry.id, "player-1")

        result = await appeals.approve(issued.entry.id, CONSOLE)

        assert result.message == "Invalid appeal transition: PENDING -> APPROVED"

    @pytest.mark.asyncio
    async def test_approval_after_expiry_records_status_only(self, processor, appeals, effects, clock):
        issued = await processor.issue_mute("player-1", GM, "spam", Severity.LOW, 600)
        await appeals.submit(issued.entry.id, "player-1")
        await appeals.start_review(issued.entry.id, GM)
        clock.advance(minutes=20)

        approved = await appeals.approve(issued.entry.id, GM)

        assert approved.success
        assert approved.entry.appeal_status is AppealStatus.APPROVED
        assert approved.entry.revoked_at is None
        assert effects.kinds() == ["apply_mute"]

    @pytest.mark.asyncio
    async def test_console_submits_through_transition(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)

        result = await appeals.transition(issued.entry.id, "PENDING", CONSOLE)

        assert result.success
        assert result.entry.appeal_status is AppealStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_record(self, appeals):
        result = await appeals.submit(4242, "player-1")
        assert isinstance(result.error, NotFoundError)


class TestEligibility:
    @pytest.mark.asyncio
    async def test_only_target_may_appeal(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)
        result = await appeals.submit(issued.entry.id, "player-2")
        assert isinstance(result.error, ValidationError)

    @pytest.mark.asyncio
    async def test_instant_actions_are_not_appealable(self, processor, appeals):
        kick = await processor.issue_kick("player-1", GM, "spam", Severity.LOW)
        result = await appeals.submit(kick.entry.id, "player-1")
        assert isinstance(result.error, ValidationError)

    @pytest.mark.asyncio
    async def test_deadline(self, repository, appeals):
        old = await repository.insert(
            make_record(action=ModerationAction.PERMANENT_BAN, timestamp=START - timedelta(days=15))
        )
        result = await appeals.submit(old.id, "player-1")
        assert result.message == "Appeal deadline passed at 2026-02-28 12:00:00 UTC"

    @pytest.mark.asyncio
    async def test_expired_sanction(self, processor, appeals, clock):
        issued = await processor.issue_mute("player-1", GM, "spam", Severity.LOW, 60)
        clock.advance(minutes=5)

        result = await appeals.submit(issued.entry.id, "player-1")

        assert isinstance(result.error, AlreadyInactiveError)

    @pytest.mark.asyncio
    async def test_cannot_appeal_twice(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)
        await appeals.submit(issued.entry.id, "player-1")

        again = await appeals.submit(issued.entry.id, "player-1")

        assert isinstance(again.error, ValidationError)

    @pytest.mark.asyncio
    async def test_open_appeals_are_limited(self, repository, appeals):
        ids = [(await repository.insert(make_record(reason=f"spam {i}"))).id for i in range(4)]

        results = [await appeals.submit(record_id, "player-1") for record_id in ids]

        assert [r.success for r in results] == [True, True, True, False]
        assert "Too many open appeals" in results[-1].message

    @pytest.mark.asyncio
    async def test_check_eligibility_writes_nothing(self, processor, appeals):
        issued = await processor.issue_warning("player-1", GM, "spam", Severity.LOW)

        result = await appeals.check_eligibility(issued.entry.id, "player-1")

        assert result.success
        assert (await processor.repository.get(issued.entry.id)).version == 1


class TestQueue:
    @pytest.mark.asyncio
    async def test_pending_appeals_are_ordered_by_priority(self, repository, appeals, clock):
        warning = await repository.insert(make_record(target_id="a", severity=Severity.LOW))
        perm = await repository.insert(
            make_record(target_id="b", action=ModerationAction.PERMANENT_BAN, severity=Severity.HIGH)
        )
        long_ban = await repository.insert(
            make_record(target_id="c", action=ModerationAction.TEMP_BAN, duration_seconds=14 * 86400)
        )
        second_warning = await repository.insert(make_record(target_id="d", severity=Severity.LOW))

        for record, target in ((second_warning, "d"), (warning, "a"), (long_ban, "c"), (perm, "b")):
            await appeals.submit(record.id, target)
            clock.advance(minutes=1)

        queue = await appeals.pending_appeals()

        assert [entry.record.id for entry in queue] == [perm.id, long_ban.id, second_warning.id, warning.id]
        assert [entry.priority for entry in queue] == [5, 3, 1, 1]

    @pytest.mark.asyncio
    async def test_pending_appeals_rejects_bad_limit(self, appeals):
        with pytest.raises(ValidationError):
            await appeals.pending_appeals(0)
