"""Tests for the SQLite moderation repository."""

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import START, make_record
from modledger.datatypes.moderation_datatypes import (
    AppealStatus,
    ModerationAction,
    RecordMutation,
    SearchCriteria,
    Severity,
)
from modledger.errors import ConflictError, NotFoundError, StorageError, ValidationError

IMMUTABLE_FIELDS = (
    "target_id",
    "target_display_name",
    "staff_id",
    "staff_name",
    "action",
    "severity",
    "reason",
    "timestamp",
    "duration_seconds",
    "is_escalation",
    "ip_address",
)


@pytest.mark.asyncio
async def test_insert_then_get_by_target_round_trips(repository):
    record = make_record(
        action=ModerationAction.MUTE,
        duration_seconds=3600,
        ip_address="10.0.0.1",
        is_escalation=True,
    )

    stored = await repository.insert(record)
    fetched = await repository.get_by_target("player-1", 1)

    assert stored.id is not None
    assert len(fetched) == 1
    for name in IMMUTABLE_FIELDS:
        assert getattr(fetched[0], name) == getattr(record, name), name
    assert fetched[0] == stored


@pytest.mark.asyncio
async def test_insert_rejects_record_with_id(repository):
    with pytest.raises(ValidationError):
        await repository.insert(make_record(id=5))


@pytest.mark.asyncio
async def test_get_by_target_is_most_recent_first_and_paginated(repository):
    for minutes in (0, 10, 20):
        await repository.insert(make_record(timestamp=START + timedelta(minutes=minutes), reason=f"spam {minutes}"))

    records = await repository.get_by_target("player-1", 2)
    assert [r.reason for r in records] == ["spam 20", "spam 10"]

    rest = await repository.get_by_target("player-1", 2, offset=2)
    assert [r.reason for r in rest] == ["spam 0"]


@pytest.mark.asyncio
async def test_get_by_target_rejects_non_positive_limit(repository):
    with pytest.raises(ValidationError):
        await repository.get_by_target("player-1", 0)


@pytest.mark.asyncio
async def test_active_is_recomputed_at_read_time(repository, clock):
    await repository.insert(make_record(action=ModerationAction.MUTE, duration_seconds=600))

    assert (await repository.get_by_target("player-1", 1))[0].active is True
    assert len(await repository.get_active_by_target("player-1")) == 1

    clock.advance(minutes=11)

    assert (await repository.get_by_target("player-1", 1))[0].active is False
    assert await repository.get_active_by_target("player-1") == []


@pytest.mark.asyncio
async def test_active_only_excludes_revoked_and_instant(repository):
    await repository.insert(make_record(action=ModerationAction.PERMANENT_BAN))
    await repository.insert(make_record(action=ModerationAction.KICK, active=False))
    await repository.insert(make_record(action=ModerationAction.TEMP_BAN, revoked_at=START, revoked_by="gm-1", active=False))

    active = await repository.search(SearchCriteria(target_id="player-1", active_only=True))

    assert [r.action for r in active] == [ModerationAction.PERMANENT_BAN]


@pytest.mark.asyncio
async def test_get_by_staff_filters_since(repository):
    await repository.insert(make_record(staff_id="gm-1", timestamp=START - timedelta(days=2)))
    await repository.insert(make_record(staff_id="gm-1", timestamp=START))
    await repository.insert(make_record(staff_id="gm-2", timestamp=START))

    records = await repository.get_by_staff("gm-1", START - timedelta(days=1))

    assert len(records) == 1
    assert records[0].timestamp == START


@pytest.mark.asyncio
async def test_search_reason_is_case_insensitive_and_literal(repository):
    await repository.insert(make_record(reason="Used X-Ray client"))
    await repository.insert(make_record(reason="100% griefing"))
    await repository.insert(make_record(reason="100 griefing"))

    xray = await repository.search(SearchCriteria(reason_contains="x-ray"))
    percent = await repository.search(SearchCriteria(reason_contains="100%"))

    assert [r.reason for r in xray] == ["Used X-Ray client"]
    assert [r.reason for r in percent] == ["100% griefing"]


@pytest.mark.asyncio
async def test_search_combines_predicates(repository):
    await repository.insert(make_record(severity=Severity.HIGH, ip_address="1.1.1.1"))
    await repository.insert(make_record(severity=Severity.HIGH, ip_address="2.2.2.2"))
    await repository.insert(make_record(severity=Severity.LOW, ip_address="1.1.1.1"))

    criteria = SearchCriteria(severity=Severity.HIGH, ip_address="1.1.1.1")
    assert len(await repository.search(criteria)) == 1
    assert await repository.count(criteria) == 1
    assert len(await repository.get_by_ip("1.1.1.1")) == 2


@pytest.mark.asyncio
async def test_get_since(repository):
    await repository.insert(make_record(timestamp=START - timedelta(days=40)))
    await repository.insert(make_record(timestamp=START - timedelta(days=1)))

    assert len(await repository.get_since(START - timedelta(days=30))) == 1


@pytest.mark.asyncio
async def test_update_applies_mutation_and_bumps_version(repository, clock):
    stored = await repository.insert(make_record(action=ModerationAction.TEMP_BAN, duration_seconds=86400))
    clock.advance(minutes=5)

    updated = await repository.update(
        stored.id,
        RecordMutation(expected_version=1, active=False, revoked_at=clock(), revoked_by="gm-1"),
    )

    assert updated.version == 2
    assert updated.active is False
    assert updated.revoked_at == clock()
    assert updated.revoked_by == "gm-1"
    assert updated.updated_at == clock()
    assert updated.reason == stored.reason


@pytest.mark.asyncio
async def test_update_with_stale_version_conflicts(repository):
    stored = await repository.insert(make_record())
    await repository.update(stored.id, RecordMutation(expected_version=1, appeal_status=AppealStatus.PENDING))

    with pytest.raises(ConflictError):
        await repository.update(stored.id, RecordMutation(expected_version=1, appeal_status=AppealStatus.WITHDRAWN))

    current = await repository.get(stored.id)
    assert current.appeal_status is AppealStatus.PENDING


@pytest.mark.asyncio
async def test_update_unknown_id_is_not_found(repository):
    with pytest.raises(NotFoundError):
        await repository.update(999, RecordMutation(expected_version=1, active=False))


@pytest.mark.asyncio
async def test_update_requires_a_change(repository):
    stored = await repository.insert(make_record())
    with pytest.raises(ValidationError):
        await repository.update(stored.id, RecordMutation(expected_version=1))


@pytest.mark.asyncio
async def test_performance_monitor_tracks_operations(repository, database):
    await repository.insert(make_record())
    await repository.get_by_target("player-1", 5)

    stats = database.perf_monitor.get_statistics()
    assert stats["insert"]["count"] == 1
    assert stats["get_by_target"]["count"] == 1


@pytest.mark.asyncio
async def test_storage_failure_surfaces_as_storage_error(repository, database):
    await database.connection.connection.execute("DROP TABLE moderation_records")

    with pytest.raises(StorageError):
        await repository.insert(make_record())


@pytest.mark.asyncio
async def test_unopened_store_raises_runtime_error(tmp_path, clock):
    from modledger.database.db_connection import ConnectionManager
    from modledger.database.db_perf_mon import DatabasePerformanceMonitor
    from modledger.repositories.moderation_repo import SqliteModerationRepository

    repo = SqliteModerationRepository(ConnectionManager(), DatabasePerformanceMonitor(), clock=clock)

    with pytest.raises(RuntimeError):
        await repo.get(1)


@pytest.mark.asyncio
async def test_stored_record_equals_inserted_copy(repository):
    record = make_record(action=ModerationAction.IP_BAN, ip_address="9.9.9.9")
    stored = await repository.insert(record)

    assert await repository.get(stored.id) == replace(record, id=stored.id)
