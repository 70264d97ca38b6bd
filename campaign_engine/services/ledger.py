"""
Execution Ledger service.

The ledger is the append-only record of every agent invocation and the only
source the Health Scorer and Strategy Planner read from. It exposes:

- append(): normalize and store one ExecutionRecord
- query(): filtered, sorted, paginated record reads
- metrics(): AgentMetricsWindow for one agent over a trailing window
- population_metrics(): metrics for every agent seen in the window
- purge(): retention cleanup, returns the number of records removed
- patch_score(): post-hoc quality feedback

plus convenience reads (last successful runs, failed runs, high-cost runs,
session history) and system statistics.

Daily Trends:
    Each trend series holds one point per calendar day, `window_days` points
    ending today (UTC). Days are initialized first and records bucketed into
    them afterwards, so days without runs are present with value 0 rather
    than missing. Trend-direction logic relies on that fixed length.
    Aggregates use the same span: records from midnight UTC of the first
    trend day onward.

Failure Semantics:
    Writes and plain reads raise DependencyUnavailable once the retry policy
    gives up. metrics() and population_metrics() are read-only aggregations:
    they log a warning and return an empty window / empty mapping instead, so
    planning can continue with conservative defaults.

Dependencies:
    - pandas: day bucketing and zero-filled reindexing for the trend series
    - numpy: aggregate means
"""

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from campaign_engine.core.errors import (
    DependencyUnavailable,
    NotFoundError,
    ValidationError,
)
from campaign_engine.core.retry import RetryPolicy
from campaign_engine.models.enums import SortField, SortOrder
from campaign_engine.models.schemas import (
    AgentMetricsWindow,
    DailyPoint,
    ExecutionRecord,
    ExecutionRecordCreate,
    LedgerStats,
    RecordFilter,
)
from campaign_engine.services.record_store import RecordStore

logger = logging.getLogger(__name__)

# =============================================================================
# Module Constants
# =============================================================================

DEFAULT_WINDOW_DAYS: int = 30

DEFAULT_QUERY_LIMIT: int = 50

# Soft capacity used for the utilization figure in system_stats()
LEDGER_CAPACITY: int = 10_000
HIGH_UTILIZATION_RECORDS: int = 8_000

# Trend series produced for every metrics window
TREND_COLUMNS = ('cost', 'executionTime', 'successRate')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Aggregation (pure)
# =============================================================================

def build_daily_trends(
    records: Sequence[ExecutionRecord],
    window_days: int,
    today: date,
) -> Dict[str, List[DailyPoint]]:
    """
    Build the zero-filled daily cost, execution time and success-rate series.

    Args:
        records: Records of one agent; records outside the day range are ignored.
        window_days: Number of days in each series.
        today: Last day of the series (UTC date).

    Returns:
        Mapping of 'cost', 'executionTime' and 'successRate' to exactly
        `window_days` DailyPoints in ascending date order. A day's value is the
        mean over that day's records (success rate in percent), 0 with none.
    """
    days = list(pd.date_range(end=pd.Timestamp(today), periods=window_days, freq='D').date)

    if records:
        frame = pd.DataFrame({
            'day': [_as_utc(r.timestampUTC).date() for r in records],
            'cost': [float(r.cost) for r in records],
            'executionTime': [float(r.executionTimeMs) for r in records],
            'successRate': [100.0 if r.success else 0.0 for r in records],
        })
        daily = frame.groupby('day')[list(TREND_COLUMNS)].mean()
        daily = daily.reindex(days, fill_value=0.0)
    else:
        daily = pd.DataFrame(0.0, index=days, columns=list(TREND_COLUMNS))

    return {
        column: [
            DailyPoint(date=day, value=float(value))
            for day, value in zip(days, daily[column].tolist())
        ]
        for column in TREND_COLUMNS
    }


def summarize_records(
    agent_id: str,
    records: Sequence[ExecutionRecord],
    window_days: int,
    today: date,
) -> AgentMetricsWindow:
    """
    Aggregate one agent's records into an AgentMetricsWindow.

    An empty record list yields zero metrics with zero-filled trends.
    """
    trends = build_daily_trends(records, window_days, today)

    if not records:
        return AgentMetricsWindow(
            agentId=agent_id,
            windowDays=window_days,
            costTrend=trends['cost'],
            executionTimeTrend=trends['executionTime'],
            successRateTrend=trends['successRate'],
        )

    costs = np.array([r.cost for r in records], dtype=float)
    tokens = np.array([r.tokensUsed for r in records], dtype=float)
    durations = np.array([r.executionTimeMs for r in records], dtype=float)
    successful = sum(1 for r in records if r.success)
    scores = [r.qualityScore for r in records if r.qualityScore is not None]
    total_runs = len(records)

    return AgentMetricsWindow(
        agentId=agent_id,
        windowDays=window_days,
        totalRuns=total_runs,
        successfulRuns=successful,
        failedRuns=total_runs - successful,
        successRate=successful / total_runs * 100,
        averageCost=float(np.mean(costs)),
        averageTokens=float(np.mean(tokens)),
        averageExecutionTimeMs=float(np.mean(durations)),
        averageQualityScore=float(np.mean(scores)) if scores else None,
        totalCost=float(np.sum(costs)),
        totalTokens=int(np.sum(tokens)),
        lastRun=max(_as_utc(r.timestampUTC) for r in records),
        costTrend=trends['cost'],
        executionTimeTrend=trends['executionTime'],
        successRateTrend=trends['successRate'],
    )


# =============================================================================
# Ledger Service
# =============================================================================

class ExecutionLedger:
    """
    Append/query/aggregate API over a RecordStore.

    Args:
        store: Backing record store.
        retry_policy: Policy applied to every store call.
        clock: Returns the current time (aware, UTC). Injected for tests.
        default_window_days: Window used when a caller does not pass one.
    """

    def __init__(
        self,
        store: RecordStore,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        default_window_days: int = DEFAULT_WINDOW_DAYS,
    ):
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self.default_window_days = default_window_days

    def now(self) -> datetime:
        return _as_utc(self._clock())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def append(self, data: ExecutionRecordCreate) -> ExecutionRecord:
        """
        Store one completed invocation.

        Unset numeric fields default to 0; `success` is True unless the caller
        passed False explicitly.

        Raises:
            ValidationError: Missing agent/session id or a negative numeric field.
            DependencyUnavailable: The store could not be reached.
        """
        if not data.agentId.strip():
            raise ValidationError('agentId', 'agentId is required')
        if not data.sessionId.strip():
            raise ValidationError('sessionId', 'sessionId is required')

        for field_name in ('tokensUsed', 'cost', 'executionTimeMs'):
            value = getattr(data, field_name)
            if value is not None and value < 0:
                raise ValidationError(field_name, f'{field_name} must be non-negative')

        record = ExecutionRecord(
            id=str(uuid.uuid4()),
            agentId=data.agentId,
            sessionId=data.sessionId,
            userId=data.userId,
            input=data.input,
            output=data.output,
            timestampUTC=_as_utc(data.timestampUTC) if data.timestampUTC else self.now(),
            tokensUsed=data.tokensUsed or 0,
            cost=data.cost or 0.0,
            executionTimeMs=data.executionTimeMs or 0,
            success=data.success is not False,
            errorMessage=data.errorMessage,
            qualityScore=data.qualityScore,
            metadata=data.metadata if data.metadata is not None else {},
        )
        await self._retry.run('ledger.append', self._store.append, record)
        logger.debug(f"Appended record {record.id} for {record.agentId}")
        return record

    async def patch_score(
        self,
        record_id: str,
        score: float,
        metadata: Optional[Dict] = None,
    ) -> ExecutionRecord:
        """
        Attach a quality score, merging any metadata into the existing metadata.

        Raises:
            ValidationError: Score outside 0-100.
            NotFoundError: Unknown record id.
        """
        if score < 0 or score > 100:
            raise ValidationError('score', 'score must be between 0 and 100')

        fields: Dict = {'qualityScore': float(score)}
        if metadata:
            existing = await self._retry.run('ledger.get', self._store.get, record_id)
            if existing is None:
                raise NotFoundError('ExecutionRecord', record_id)
            merged = dict(existing.metadata) if isinstance(existing.metadata, dict) else {}
            merged.update(metadata)
            fields['metadata'] = merged

        updated = await self._retry.run('ledger.patch', self._store.patch, record_id, fields)
        if updated is None:
            raise NotFoundError('ExecutionRecord', record_id)
        return updated

    async def purge(self, older_than_days: int) -> int:
        """Delete records older than `older_than_days` and return how many were removed."""
        if older_than_days < 0:
            raise ValidationError('olderThanDays', 'olderThanDays must be non-negative')
        cutoff = self.now() - timedelta(days=older_than_days)
        removed = await self._retry.run('ledger.delete_where', self._store.delete_where, cutoff)
        logger.info(f"Purged {removed} execution records older than {older_than_days} days")
        return removed

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def query(self, record_filter: RecordFilter) -> List[ExecutionRecord]:
        return await self._retry.run('ledger.query', self._store.query, record_filter)

    async def get(self, record_id: str) -> ExecutionRecord:
        record = await self._retry.run('ledger.get', self._store.get, record_id)
        if record is None:
            raise NotFoundError('ExecutionRecord', record_id)
        return record

    async def last_successful_runs(self, agent_id: str, count: int = 5) -> List[ExecutionRecord]:
        return await self.query(RecordFilter(agentId=agent_id, successOnly=True, limit=count))

    async def failed_runs(self, agent_id: str, limit: int = DEFAULT_QUERY_LIMIT) -> List[ExecutionRecord]:
        return await self.query(RecordFilter(agentId=agent_id, failedOnly=True, limit=limit))

    async def high_cost_runs(self, cost_threshold: float, limit: int = 20) -> List[ExecutionRecord]:
        return await self.query(RecordFilter(
            minCost=cost_threshold,
            sortBy=SortField.COST,
            sortOrder=SortOrder.DESC,
            limit=limit,
        ))

    async def session_history(self, session_id: str) -> List[ExecutionRecord]:
        """Every record of a session in chronological order."""
        return await self.query(RecordFilter(
            sessionId=session_id,
            sortOrder=SortOrder.ASC,
            limit=None,
        ))

    async def system_stats(self) -> LedgerStats:
        total, recent = await self._retry.run(
            'ledger.count', self._store.count, self.now() - timedelta(hours=24)
        )
        return LedgerStats(
            totalRecords=total,
            recordsLast24h=recent,
            capacity=LEDGER_CAPACITY,
            utilization=round(total / LEDGER_CAPACITY * 100, 2),
            status='high' if total > HIGH_UTILIZATION_RECORDS else 'normal',
        )

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------

    def window_start(self, window_days: int) -> datetime:
        """Midnight UTC of the first trend day, so totals and trend series cover the same records."""
        first_day = self.now().date() - timedelta(days=window_days - 1)
        return datetime.combine(first_day, time.min, tzinfo=timezone.utc)

    def _window_filter(self, window_days: int, agent_id: Optional[str] = None) -> RecordFilter:
        return RecordFilter(
            agentId=agent_id,
            startDate=self.window_start(window_days),
            sortOrder=SortOrder.ASC,
            limit=None,
        )

    async def metrics(self, agent_id: str, window_days: Optional[int] = None) -> AgentMetricsWindow:
        """
        Build the AgentMetricsWindow for one agent.

        Degrades to an empty (zero-filled) window when the store is unavailable.
        """
        window_days = window_days or self.default_window_days
        if window_days < 1:
            raise ValidationError('windowDays', 'windowDays must be at least 1')

        today = self.now().date()
        try:
            records = await self.query(self._window_filter(window_days, agent_id))
        except DependencyUnavailable as e:
            logger.warning(f"Metrics for {agent_id} degraded to empty window: {e}")
            records = []
        return summarize_records(agent_id, records, window_days, today)

    async def population_metrics(
        self,
        window_days: Optional[int] = None,
    ) -> Dict[str, AgentMetricsWindow]:
        """
        Metrics for every agent with at least one record in the window.

        Reads the window once and groups by agent. Returns an empty mapping,
        logged as a warning, when the store is unavailable.
        """
        window_days = window_days or self.default_window_days
        if window_days < 1:
            raise ValidationError('windowDays', 'windowDays must be at least 1')

        today = self.now().date()
        try:
            records = await self.query(self._window_filter(window_days))
        except DependencyUnavailable as e:
            logger.warning(f"Population metrics degraded to empty result: {e}")
            return {}

        by_agent: Dict[str, List[ExecutionRecord]] = defaultdict(list)
        for record in records:
            by_agent[record.agentId].append(record)

        return {
            agent_id: summarize_records(agent_id, agent_records, window_days, today)
            for agent_id, agent_records in sorted(by_agent.items())
        }
