"""
Ledger Queries Module for the campaign decision engine.

Provides parameterized PostgreSQL statements for the execution_record table
used by PostgresRecordStore. Every builder returns the SQL text together with
its positional asyncpg parameters so values are never interpolated.

Table layout:
- seq BIGSERIAL: insertion sequence, the deterministic tie-breaker for pagination
- id TEXT: record id (uuid4 string)
- input/output/metadata JSONB: opaque payloads, stored and returned verbatim
"""

from datetime import datetime
from typing import Any, Dict, List, Tuple

from campaign_engine.models.enums import SortField, SortOrder
from campaign_engine.models.schemas import RecordFilter

# =============================================================================
# CONSTANTS
# =============================================================================

LEDGER_TABLE: str = "execution_record"

# Sort field -> column; anything not listed here can never reach ORDER BY
SORT_COLUMNS: Dict[SortField, str] = {
    SortField.TIMESTAMP: "timestamp_utc",
    SortField.COST: "cost",
    SortField.EXECUTION_TIME: "execution_time_ms",
    SortField.SCORE: "quality_score",
}

RECORD_COLUMNS: str = """
    id, agent_id, session_id, user_id, input, output, timestamp_utc,
    tokens_used, cost, execution_time_ms, success, error_message,
    quality_score, metadata
"""

# =============================================================================
# SCHEMA
# =============================================================================

CREATE_LEDGER_TABLE: str = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    seq BIGSERIAL PRIMARY KEY,
    id TEXT NOT NULL UNIQUE,
    agent_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    user_id TEXT,
    input JSONB,
    output JSONB,
    timestamp_utc TIMESTAMPTZ NOT NULL,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    cost DOUBLE PRECISION NOT NULL DEFAULT 0,
    execution_time_ms INTEGER NOT NULL DEFAULT 0,
    success BOOLEAN NOT NULL DEFAULT TRUE,
    error_message TEXT,
    quality_score DOUBLE PRECISION,
    metadata JSONB
);
CREATE INDEX IF NOT EXISTS idx_{LEDGER_TABLE}_agent_ts
    ON {LEDGER_TABLE} (agent_id, timestamp_utc);
CREATE INDEX IF NOT EXISTS idx_{LEDGER_TABLE}_session
    ON {LEDGER_TABLE} (session_id);
"""

# =============================================================================
# WRITES
# =============================================================================

INSERT_RECORD: str = f"""
INSERT INTO {LEDGER_TABLE} (
    id, agent_id, session_id, user_id, input, output, timestamp_utc,
    tokens_used, cost, execution_time_ms, success, error_message,
    quality_score, metadata
)
VALUES ($1, $2, $3, $4, $5::jsonb, $6::jsonb, $7, $8, $9, $10, $11, $12, $13, $14::jsonb)
RETURNING id
"""

# Only quality_score and metadata are patchable
PATCH_RECORD: str = f"""
UPDATE {LEDGER_TABLE}
SET quality_score = $2,
    metadata = $3::jsonb
WHERE id = $1
RETURNING {RECORD_COLUMNS}
"""

SELECT_RECORD_BY_ID: str = f"""
SELECT {RECORD_COLUMNS}
FROM {LEDGER_TABLE}
WHERE id = $1
"""


def get_delete_older_than_query(older_than: datetime) -> Tuple[str, List[Any]]:
    """
    Build the retention delete.

    Returns:
        (sql, params); the statement returns one row per deleted record id so
        the caller can count them.
    """
    sql = f"""
    DELETE FROM {LEDGER_TABLE}
    WHERE timestamp_utc < $1
    RETURNING id
    """
    return sql, [older_than]


# =============================================================================
# READS
# =============================================================================

def get_record_query(record_filter: RecordFilter) -> Tuple[str, List[Any]]:
    """
    Build a filtered, ordered, paginated SELECT over execution_record.

    Args:
        record_filter: Filter with optional agent/session/user, date range,
            success/failure flags, cost floor, sort and pagination.

    Returns:
        (sql, params) ready for conn.fetch(sql, *params).

    Note:
        Rows tie on the sort column fall back to seq in the same direction,
        so pages are reproducible. NULL scores sort last in both directions.
    """
    conditions: List[str] = []
    params: List[Any] = []

    def add(condition: str, value: Any) -> None:
        params.append(value)
        conditions.append(condition.format(f"${len(params)}"))

    if record_filter.agentId is not None:
        add("agent_id = {}", record_filter.agentId)
    if record_filter.sessionId is not None:
        add("session_id = {}", record_filter.sessionId)
    if record_filter.userId is not None:
        add("user_id = {}", record_filter.userId)
    if record_filter.startDate is not None:
        add("timestamp_utc >= {}", record_filter.startDate)
    if record_filter.endDate is not None:
        add("timestamp_utc <= {}", record_filter.endDate)
    if record_filter.minCost is not None:
        add("cost >= {}", record_filter.minCost)
    if record_filter.successOnly:
        conditions.append("success = TRUE")
    if record_filter.failedOnly:
        conditions.append("success = FALSE")

    where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    direction = "ASC" if record_filter.sortOrder == SortOrder.ASC else "DESC"
    column = SORT_COLUMNS[record_filter.sortBy]

    sql = f"""
    SELECT {RECORD_COLUMNS}
    FROM {LEDGER_TABLE}
    {where_clause}
    ORDER BY {column} {direction} NULLS LAST, seq {direction}
    """

    if record_filter.limit is not None:
        params.append(record_filter.limit)
        sql += f"\n    LIMIT ${len(params)}"
    if record_filter.offset:
        params.append(record_filter.offset)
        sql += f"\n    OFFSET ${len(params)}"

    return sql, params


def get_count_since_query(since: datetime) -> Tuple[str, List[Any]]:
    sql = f"""
    SELECT
        COUNT(*) AS total_records,
        COUNT(*) FILTER (WHERE timestamp_utc >= $1) AS recent_records
    FROM {LEDGER_TABLE}
    """
    return sql, [since]
