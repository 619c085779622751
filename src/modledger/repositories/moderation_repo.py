"""
Durable storage for moderation records.

The repository is the system of record. Records are never deleted; the
only mutation is :meth:`ModerationRepository.update`, restricted to the
fields a RecordMutation can carry and guarded by an optimistic version
check.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import List, Optional

from modledger.database.db_connection import ConnectionManager
from modledger.database.db_perf_mon import DatabasePerformanceMonitor
from modledger.datatypes.moderation_datatypes import (
    MUTABLE_FIELDS,
    ModerationRecord,
    RecordMutation,
    SearchCriteria,
)
from modledger.errors import ConflictError, NotFoundError, ValidationError
from modledger.repositories.query_builder import (
    INSERT_RECORD,
    ORDER_NEWEST_FIRST,
    SELECT_RECORDS,
    active_predicate,
    build_count_query,
    build_search_query,
    record_to_params,
    row_to_record,
)
from modledger.util.logger import get_logger
from modledger.util.time_utils import Clock, to_epoch_ms, truncate_ms, utcnow

logger = get_logger("moderation_repo")


class ModerationRepository(ABC):
    """Storage contract for moderation records. Every method is a coroutine."""

    @abstractmethod
    async def insert(self, record: ModerationRecord) -> ModerationRecord:
        """Persist ``record`` and return it with its assigned id."""

    @abstractmethod
    async def get(self, record_id: int) -> Optional[ModerationRecord]:
        """Return the record with ``record_id`` or None."""

    @abstractmethod
    async def get_by_target(self, target_id: str, limit: int, offset: int = 0) -> List[ModerationRecord]:
        """Most recent first. ``limit`` must be positive."""

    @abstractmethod
    async def get_active_by_target(self, target_id: str) -> List[ModerationRecord]:
        """Sanctions currently in effect for ``target_id``, most recent first."""

    @abstractmethod
    async def get_by_staff(self, staff_id: str, since: datetime) -> List[ModerationRecord]:
        """Records issued by ``staff_id`` with ``timestamp >= since``."""

    @abstractmethod
    async def get_by_ip(self, ip_address: str, limit: int = 50) -> List[ModerationRecord]:
        """Records associated with ``ip_address``, most recent first."""

    @abstractmethod
    async def search(self, criteria: SearchCriteria) -> List[ModerationRecord]:
        """Records matching every set predicate of ``criteria``."""

    @abstractmethod
    async def count(self, criteria: SearchCriteria) -> int:
        """Number of records matching ``criteria``, ignoring pagination."""

    @abstractmethod
    async def get_since(self, since: datetime) -> List[ModerationRecord]:
        """Every record with ``timestamp >= since``, most recent first."""

    @abstractmethod
    async def update(self, record_id: int, mutation: RecordMutation) -> ModerationRecord:
        """
        Apply ``mutation`` and return the updated record.

        Raises:
            NotFoundError: ``record_id`` is unknown.
            ConflictError: The stored version differs from ``mutation.expected_version``.
        """


class SqliteModerationRepository(ModerationRepository):
    """
    ModerationRepository over the shared SQLite connection.

    Args:
        connection: Opened ConnectionManager; every call carries its timeout.
        perf_monitor: Receives one timing per repository operation.
        clock: Source of ``now`` for read-time activity and ``updated_at``.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        perf_monitor: DatabasePerformanceMonitor,
        clock: Clock = utcnow,
    ) -> None:
        self._db = connection
        self._perf = perf_monitor
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, record: ModerationRecord) -> ModerationRecord:
        if record.id is not None:
            raise ValidationError(f"Record already has id {record.id}")

        with self._perf.timed("insert"):
            async with self._db.transaction() as tx:
                cursor = await tx.execute(INSERT_RECORD, record_to_params(record))
                record_id = cursor.lastrowid

        logger.debug(
            "[REPOSITORY] Inserted record %s: %s on %s by %s",
            record_id, record.action, record.target_id, record.staff_name,
        )
        return record.with_id(record_id)

    async def update(self, record_id: int, mutation: RecordMutation) -> ModerationRecord:
        if mutation.is_empty():
            raise ValidationError("Mutation changes no fields")

        now = self._clock()
        assignments: List[str] = []
        params: List[object] = []
        for name in MUTABLE_FIELDS:
            value = getattr(mutation, name)
            if value is None:
                continue
            assignments.append(f"{name} = ?")
            if isinstance(value, bool):
                params.append(1 if value else 0)
            elif isinstance(value, datetime):
                params.append(to_epoch_ms(value))
            elif isinstance(value, Enum):
                params.append(value.value)
            else:
                params.append(value)

        sql = (
            f"UPDATE moderation_records SET {', '.join(assignments)}, "
            "version = version + 1, updated_at = ? WHERE id = ? AND version = ?"
        )
        params.extend([to_epoch_ms(now), record_id, mutation.expected_version])

        with self._perf.timed("update"):
            async with self._db.transaction() as tx:
                cursor = await tx.execute(sql, params)
                if cursor.rowcount == 0:
                    existing = await tx.fetchone("SELECT version FROM moderation_records WHERE id = ?", (record_id,))
                    if existing is None:
                        raise NotFoundError(f"Record {record_id} not found")
                    raise ConflictError(
                        f"Record {record_id} was modified concurrently "
                        f"(expected version {mutation.expected_version}, found {existing['version']})"
                    )
                row = await tx.fetchone(f"{SELECT_RECORDS} WHERE id = ?", (record_id,))

        logger.debug("[REPOSITORY] Updated record %s to version %s", record_id, row["version"])
        return row_to_record(row, truncate_ms(now))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _select(self, query_name: str, sql: str, params) -> List[ModerationRecord]:
        now = self._clock()
        with self._perf.timed(query_name):
            rows = await self._db.fetchall(sql, params)
        return [row_to_record(row, now) for row in rows]

    async def get(self, record_id: int) -> Optional[ModerationRecord]:
        records = await self._select("get", f"{SELECT_RECORDS} WHERE id = ?", (record_id,))
        return records[0] if records else None

    async def get_by_target(self, target_id: str, limit: int, offset: int = 0) -> List[ModerationRecord]:
        if limit <= 0:
            raise ValidationError(f"Invalid limit: {limit}")
        return await self._select(
            "get_by_target",
            f"{SELECT_RECORDS} WHERE target_id = ? {ORDER_NEWEST_FIRST} LIMIT ? OFFSET ?",
            (target_id, limit, max(0, offset)),
        )

    async def get_active_by_target(self, target_id: str) -> List[ModerationRecord]:
        predicate, params = active_predicate(self._clock())
        return await self._select(
            "get_active_by_target",
            f"{SELECT_RECORDS} WHERE target_id = ? AND {predicate} {ORDER_NEWEST_FIRST}",
            (target_id, *params),
        )

    async def get_by_staff(self, staff_id: str, since: datetime) -> List[ModerationRecord]:
        return await self._select(
            "get_by_staff",
            f"{SELECT_RECORDS} WHERE staff_id = ? AND timestamp >= ? {ORDER_NEWEST_FIRST}",
            (staff_id, to_epoch_ms(since)),
        )

    async def get_by_ip(self, ip_address: str, limit: int = 50) -> List[ModerationRecord]:
        if limit <= 0:
            raise ValidationError(f"Invalid limit: {limit}")
        return await self._select(
            "get_by_ip",
            f"{SELECT_RECORDS} WHERE ip_address = ? {ORDER_NEWEST_FIRST} LIMIT ?",
            (ip_address, limit),
        )

    async def get_since(self, since: datetime) -> List[ModerationRecord]:
        return await self._select(
            "get_since",
            f"{SELECT_RECORDS} WHERE timestamp >= ? {ORDER_NEWEST_FIRST}",
            (to_epoch_ms(since),),
        )

    async def search(self, criteria: SearchCriteria) -> List[ModerationRecord]:
        criteria.validate()
        sql, params = build_search_query(criteria, self._clock())
        return await self._select("search", sql, params)

    async def count(self, criteria: SearchCriteria) -> int:
        sql, params = build_count_query(criteria, self._clock())
        with self._perf.timed("count"):
            row = await self._db.fetchone(sql, params)
        return int(row[0]) if row else 0
