"""Tests for search SQL construction."""

from datetime import timedelta

from conftest import START
from modledger.datatypes.moderation_datatypes import AppealStatus, ModerationAction, SearchCriteria, Severity
from modledger.repositories.query_builder import (
    build_count_query,
    build_search_query,
    escape_like,
)
from modledger.util.time_utils import to_epoch_ms


def test_empty_criteria_has_no_where_clause():
    sql, params = build_search_query(SearchCriteria(), START)

    assert "WHERE" not in sql
    assert sql.rstrip().endswith("ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?")
    assert params == [50, 0]


def test_predicates_are_anded_in_order():
    criteria = SearchCriteria(
        target_id="player-1",
        action=ModerationAction.MUTE,
        severity=Severity.HIGH,
        appeal_status=AppealStatus.PENDING,
        limit=10,
        offset=20,
    )
    sql, params = build_search_query(criteria, START)

    assert "target_id = ? AND action = ? AND severity = ? AND appeal_status = ?" in sql
    assert params == ["player-1", "MUTE", "HIGH", "PENDING", 10, 20]


def test_reason_contains_is_escaped_and_lowercased():
    sql, params = build_search_query(SearchCriteria(reason_contains="100%_Spam"), START)

    assert "LOWER(reason) LIKE ? ESCAPE '\\'" in sql
    assert params[0] == "%100\\%\\_spam%"


def test_escape_like_escapes_the_escape_character():
    assert escape_like("a\\b") == "a\\\\b"


def test_active_only_is_evaluated_at_now():
    sql, params = build_search_query(SearchCriteria(active_only=True), START)

    assert "revoked_at IS NULL" in sql
    assert to_epoch_ms(START) in params
    assert "KICK" in params and "NOTE" in params


def test_time_window_is_half_open():
    criteria = SearchCriteria(since=START, until=START + timedelta(days=1))
    sql, params = build_search_query(criteria, START)

    assert "timestamp >= ? AND timestamp < ?" in sql
    assert params[:2] == [to_epoch_ms(START), to_epoch_ms(START + timedelta(days=1))]


def test_count_query_ignores_pagination():
    sql, params = build_count_query(SearchCriteria(staff_id="gm-1", limit=5, offset=5), START)

    assert sql.startswith("SELECT COUNT(*) FROM moderation_records WHERE staff_id = ?")
    assert "LIMIT" not in sql
    assert params == ["gm-1"]


def test_keyset_paging_orders_by_id():
    sql, params = build_search_query(SearchCriteria(after_id=40, limit=10), START)

    assert "WHERE id > ?" in sql
    assert sql.endswith("ORDER BY id ASC LIMIT ? OFFSET ?")
    assert params == [40, 10, 0]
