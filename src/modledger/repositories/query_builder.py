"""
SQL construction and row mapping for the moderation_records table.

Every filter in a SearchCriteria becomes one predicate; predicates are
AND'ed. Timestamps are compared as INTEGER unix milliseconds, and the
active-only predicate is evaluated against an explicit ``now`` so the
same criteria give the same rows at the same instant.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, List, Tuple

from modledger.datatypes.moderation_datatypes import (
    AppealStatus,
    ModerationAction,
    ModerationRecord,
    SearchCriteria,
    Severity,
)
from modledger.util.time_utils import from_epoch_ms, to_epoch_ms

RECORD_COLUMNS = (
    "id",
    "target_id",
    "target_display_name",
    "staff_id",
    "staff_name",
    "action",
    "severity",
    "reason",
    "timestamp",
    "duration_seconds",
    "active",
    "revoked_at",
    "revoked_by",
    "is_escalation",
    "appeal_status",
    "appealed_at",
    "ip_address",
    "version",
    "updated_at",
)

SELECT_RECORDS = f"SELECT {', '.join(RECORD_COLUMNS)} FROM moderation_records"
ORDER_NEWEST_FIRST = "ORDER BY timestamp DESC, id DESC"
ORDER_BY_ID = "ORDER BY id ASC"

_INSTANT_ACTIONS = tuple(a.value for a in ModerationAction if a.is_instant)
_TIMED_ACTIONS = tuple(a.value for a in ModerationAction if a.is_timed)

LIKE_ESCAPE = "\\"


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` is matched literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _placeholders(values: Tuple[str, ...]) -> str:
    return ", ".join("?" for _ in values)


def active_predicate(now: datetime) -> Tuple[str, List[Any]]:
    """
    Predicate for sanctions in effect at ``now``.

    Not revoked, not an instant action, and either permanent or with
    ``timestamp + duration`` still in the future.
    """
    sql = (
        "(active = 1 AND revoked_at IS NULL"
        f" AND action NOT IN ({_placeholders(_INSTANT_ACTIONS)})"
        f" AND (action NOT IN ({_placeholders(_TIMED_ACTIONS)})"
        " OR duration_seconds = 0"
        " OR timestamp + duration_seconds * 1000 > ?))"
    )
    return sql, [*_INSTANT_ACTIONS, *_TIMED_ACTIONS, to_epoch_ms(now)]


def build_where(criteria: SearchCriteria, now: datetime) -> Tuple[str, List[Any]]:
    """Return the WHERE clause (possibly empty) and its parameters."""
    clauses: List[str] = []
    params: List[Any] = []

    if criteria.target_id is not None:
        clauses.append("target_id = ?")
        params.append(criteria.target_id)
    if criteria.staff_id is not None:
        clauses.append("staff_id = ?")
        params.append(criteria.staff_id)
    if criteria.action is not None:
        clauses.append("action = ?")
        params.append(criteria.action.value)
    if criteria.severity is not None:
        clauses.append("severity = ?")
        params.append(criteria.severity.value)
    if criteria.ip_address is not None:
        clauses.append("ip_address = ?")
        params.append(criteria.ip_address)
    if criteria.reason_contains:
        clauses.append(f"LOWER(reason) LIKE ? ESCAPE '{LIKE_ESCAPE}'")
        params.append(f"%{escape_like(criteria.reason_contains.lower())}%")
    if criteria.appeal_status is not None:
        clauses.append("appeal_status = ?")
        params.append(criteria.appeal_status.value)
    if criteria.active_only:
        sql, active_params = active_predicate(now)
        clauses.append(sql)
        params.extend(active_params)
    if criteria.since is not None:
        clauses.append("timestamp >= ?")
        params.append(to_epoch_ms(criteria.since))
    if criteria.until is not None:
        clauses.append("timestamp < ?")
        params.append(to_epoch_ms(criteria.until))
    if criteria.after_id is not None:
        clauses.append("id > ?")
        params.append(criteria.after_id)

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def build_search_query(criteria: SearchCriteria, now: datetime) -> Tuple[str, List[Any]]:
    """
    Build the SELECT for a search, newest first, paginated (ascending id when keyset paging).

    Args:
        criteria: Validated search filter.
        now: Instant the active-only predicate is evaluated at.

    Returns:
        (sql, params) ready for execution.
    """
    where, params = build_where(criteria, now)
    order = ORDER_BY_ID if criteria.after_id is not None else ORDER_NEWEST_FIRST
    sql = f"{SELECT_RECORDS} {where} {order} LIMIT ? OFFSET ?"
    return sql, [*params, criteria.limit, criteria.offset]


def build_count_query(criteria: SearchCriteria, now: datetime) -> Tuple[str, List[Any]]:
    """Same filter as :func:`build_search_query` without ordering or pagination."""
    where, params = build_where(criteria, now)
    return f"SELECT COUNT(*) FROM moderation_records {where}", params


def record_to_params(record: ModerationRecord) -> Tuple[Any, ...]:
    """Insert parameters for every column except ``id``."""
    return (
        record.target_id,
        record.target_display_name,
        record.staff_id,
        record.staff_name,
        record.action.value,
        record.severity.value,
        record.reason,
        to_epoch_ms(record.timestamp),
        record.duration_seconds,
        1 if record.active else 0,
        to_epoch_ms(record.revoked_at) if record.revoked_at else None,
        record.revoked_by,
        1 if record.is_escalation else 0,
        record.appeal_status.value,
        to_epoch_ms(record.appealed_at) if record.appealed_at else None,
        record.ip_address,
        record.version,
        to_epoch_ms(record.updated_at) if record.updated_at else None,
    )


INSERT_RECORD = (
    f"INSERT INTO moderation_records ({', '.join(RECORD_COLUMNS[1:])}) "
    f"VALUES ({', '.join('?' for _ in RECORD_COLUMNS[1:])})"
)


def row_to_record(row: sqlite3.Row, now: datetime) -> ModerationRecord:
    """
    Map a row to a record, recomputing ``active`` at ``now``.

    The stored flag only means "not revoked"; an expired timed sanction
    reads back inactive without any write having happened.
    """
    record = ModerationRecord(
        id=row["id"],
        target_id=row["target_id"],
        target_display_name=row["target_display_name"],
        staff_id=row["staff_id"],
        staff_name=row["staff_name"],
        action=ModerationAction(row["action"]),
        severity=Severity(row["severity"]),
        reason=row["reason"],
        timestamp=from_epoch_ms(row["timestamp"]),
        duration_seconds=row["duration_seconds"],
        active=bool(row["active"]),
        revoked_at=from_epoch_ms(row["revoked_at"]),
        revoked_by=row["revoked_by"],
        is_escalation=bool(row["is_escalation"]),
        appeal_status=AppealStatus(row["appeal_status"]),
        appealed_at=from_epoch_ms(row["appealed_at"]),
        ip_address=row["ip_address"],
        version=row["version"],
        updated_at=from_epoch_ms(row["updated_at"]),
    )
    if record.active and (record.is_expired(now) or record.action.is_instant):
        record.active = False
    return record
