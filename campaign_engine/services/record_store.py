"""
Record store adapters for the Execution Ledger.

The ledger depends only on the RecordStore contract:

    append(record) -> id
    query(filter) -> records
    delete_where(older_than) -> count
    patch(id, fields) -> record | None

plus two read helpers (get, count) used for single-record lookups and
system statistics. Ordering is deterministic: records that tie on the sort
field come back in insertion order (reversed for descending sorts), so
pagination is reproducible.

Adapters:
- InMemoryRecordStore: process-local list, used in tests and when no
  DATABASE_URL is configured
- PostgresRecordStore: asyncpg pool over the execution_record table, opaque
  payloads kept in JSONB columns

Neither adapter retries; ExecutionLedger wraps every call in the RetryPolicy.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from asyncpg import Pool

from campaign_engine.models.enums import SortField, SortOrder
from campaign_engine.models.schemas import ExecutionRecord, RecordFilter
from campaign_engine.sql.ledger_queries import (
    INSERT_RECORD,
    PATCH_RECORD,
    SELECT_RECORD_BY_ID,
    get_count_since_query,
    get_delete_older_than_query,
    get_record_query,
)

logger = logging.getLogger(__name__)

# Fields a patch may touch; everything else on a record is immutable
PATCHABLE_FIELDS = frozenset({'qualityScore', 'metadata'})


class RecordStore(ABC):
    """Storage contract for execution records."""

    @abstractmethod
    async def append(self, record: ExecutionRecord) -> str:
        ...

    @abstractmethod
    async def query(self, record_filter: RecordFilter) -> List[ExecutionRecord]:
        ...

    @abstractmethod
    async def delete_where(self, older_than: datetime) -> int:
        ...

    @abstractmethod
    async def patch(self, record_id: str, fields: Dict[str, Any]) -> Optional[ExecutionRecord]:
        ...

    @abstractmethod
    async def get(self, record_id: str) -> Optional[ExecutionRecord]:
        ...

    @abstractmethod
    async def count(self, since: datetime) -> Tuple[int, int]:
        """Return (total records, records with timestamp >= since)."""


def _check_patch_fields(fields: Dict[str, Any]) -> None:
    illegal = set(fields) - PATCHABLE_FIELDS
    if illegal:
        raise ValueError(f"Fields are immutable: {sorted(illegal)}")


# =============================================================================
# In-memory adapter
# =============================================================================

_SORT_ATTRIBUTES = {
    SortField.TIMESTAMP: 'timestampUTC',
    SortField.COST: 'cost',
    SortField.EXECUTION_TIME: 'executionTimeMs',
    SortField.SCORE: 'qualityScore',
}


class InMemoryRecordStore(RecordStore):
    """
    List-backed record store.

    Each record is kept with its insertion sequence number, which serves as
    the tie-breaker for ordering.
    """

    def __init__(self, records: Optional[Iterable[ExecutionRecord]] = None):
        self._rows: List[Tuple[int, ExecutionRecord]] = []
        self._next_seq = 1
        for record in records or ():
            self._insert(record)

    def _insert(self, record: ExecutionRecord) -> None:
        self._rows.append((self._next_seq, record))
        self._next_seq += 1

    async def append(self, record: ExecutionRecord) -> str:
        if any(existing.id == record.id for _, existing in self._rows):
            raise ValueError(f"Duplicate record id: {record.id}")
        self._insert(record)
        return record.id

    def _matches(self, record: ExecutionRecord, record_filter: RecordFilter) -> bool:
        if record_filter.agentId is not None and record.agentId != record_filter.agentId:
            return False
        if record_filter.sessionId is not None and record.sessionId != record_filter.sessionId:
            return False
        if record_filter.userId is not None and record.userId != record_filter.userId:
            return False
        if record_filter.startDate is not None and record.timestampUTC < record_filter.startDate:
            return False
        if record_filter.endDate is not None and record.timestampUTC > record_filter.endDate:
            return False
        if record_filter.minCost is not None and record.cost < record_filter.minCost:
            return False
        if record_filter.successOnly and not record.success:
            return False
        if record_filter.failedOnly and record.success:
            return False
        return True

    async def query(self, record_filter: RecordFilter) -> List[ExecutionRecord]:
        matching = [(seq, r) for seq, r in self._rows if self._matches(r, record_filter)]

        attribute = _SORT_ATTRIBUTES[record_filter.sortBy]
        descending = record_filter.sortOrder == SortOrder.DESC

        # NULL sort values go last in both directions, as in PostgreSQL NULLS LAST
        valued = [(seq, r) for seq, r in matching if getattr(r, attribute) is not None]
        nulls = [(seq, r) for seq, r in matching if getattr(r, attribute) is None]
        valued.sort(key=lambda row: (getattr(row[1], attribute), row[0]), reverse=descending)
        nulls.sort(key=lambda row: row[0], reverse=descending)
        ordered = [r for _, r in valued + nulls]

        start = record_filter.offset
        end = start + record_filter.limit if record_filter.limit is not None else None
        return ordered[start:end]

    async def delete_where(self, older_than: datetime) -> int:
        before = len(self._rows)
        self._rows = [(seq, r) for seq, r in self._rows if r.timestampUTC >= older_than]
        return before - len(self._rows)

    async def patch(self, record_id: str, fields: Dict[str, Any]) -> Optional[ExecutionRecord]:
        _check_patch_fields(fields)
        for index, (seq, record) in enumerate(self._rows):
            if record.id == record_id:
                updated = record.model_copy(update=fields)
                self._rows[index] = (seq, updated)
                return updated
        return None

    async def get(self, record_id: str) -> Optional[ExecutionRecord]:
        for _, record in self._rows:
            if record.id == record_id:
                return record
        return None

    async def count(self, since: datetime) -> Tuple[int, int]:
        recent = sum(1 for _, r in self._rows if r.timestampUTC >= since)
        return len(self._rows), recent


# =============================================================================
# PostgreSQL adapter
# =============================================================================

def _dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load_json(value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    return json.loads(value)


def _row_to_record(row: Any) -> ExecutionRecord:
    return ExecutionRecord(
        id=row['id'],
        agentId=row['agent_id'],
        sessionId=row['session_id'],
        userId=row['user_id'],
        input=_load_json(row['input']),
        output=_load_json(row['output']),
        timestampUTC=row['timestamp_utc'],
        tokensUsed=row['tokens_used'],
        cost=float(row['cost']),
        executionTimeMs=row['execution_time_ms'],
        success=row['success'],
        errorMessage=row['error_message'],
        qualityScore=float(row['quality_score']) if row['quality_score'] is not None else None,
        metadata=_load_json(row['metadata']) or {},
    )


class PostgresRecordStore(RecordStore):
    """Record store over the execution_record table."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def append(self, record: ExecutionRecord) -> str:
        async with self._pool.acquire() as conn:
            return await conn.fetchval(
                INSERT_RECORD,
                record.id,
                record.agentId,
                record.sessionId,
                record.userId,
                _dump_json(record.input),
                _dump_json(record.output),
                record.timestampUTC,
                record.tokensUsed,
                record.cost,
                record.executionTimeMs,
                record.success,
                record.errorMessage,
                record.qualityScore,
                _dump_json(record.metadata),
            )

    async def query(self, record_filter: RecordFilter) -> List[ExecutionRecord]:
        sql, params = get_record_query(record_filter)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [_row_to_record(row) for row in rows]

    async def delete_where(self, older_than: datetime) -> int:
        sql, params = get_delete_older_than_query(older_than)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return len(rows)

    async def patch(self, record_id: str, fields: Dict[str, Any]) -> Optional[ExecutionRecord]:
        _check_patch_fields(fields)
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                current = await conn.fetchrow(SELECT_RECORD_BY_ID, record_id)
                if current is None:
                    return None
                existing = _row_to_record(current)
                score = fields.get('qualityScore', existing.qualityScore)
                metadata = fields.get('metadata', existing.metadata)
                row = await conn.fetchrow(PATCH_RECORD, record_id, score, _dump_json(metadata))
        return _row_to_record(row)

    async def get(self, record_id: str) -> Optional[ExecutionRecord]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_RECORD_BY_ID, record_id)
        return _row_to_record(row) if row is not None else None

    async def count(self, since: datetime) -> Tuple[int, int]:
        sql, params = get_count_since_query(since)
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(sql, *params)
        return int(row['total_records']), int(row['recent_records'])
