"""
Tests for the Execution Ledger service.

Test Classes:
- TestAppend: normalization defaults and validation on append
- TestQuery: filtering, ordering, pagination and convenience reads
- TestPatchAndPurge: post-hoc scoring and retention
- TestMetricsWindow: aggregates and zero-filled daily trends
- TestDegradedReads: behaviour when the store is unreachable
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from campaign_engine.core.errors import DependencyUnavailable, NotFoundError, ValidationError
from campaign_engine.models.enums import SortField, SortOrder
from campaign_engine.models.schemas import ExecutionRecordCreate, RecordFilter
from campaign_engine.services.ledger import (
    ExecutionLedger,
    build_daily_trends,
    summarize_records,
)
from campaign_engine.services.record_store import InMemoryRecordStore
from campaign_engine.tests.conftest import FIXED_NOW, make_record


class TestAppend:

    @pytest.mark.asyncio
    async def test_unset_numeric_fields_default_to_zero(self, ledger: ExecutionLedger) -> None:
        record = await ledger.append(ExecutionRecordCreate(agentId='seo-agent', sessionId='s1'))

        assert record.tokensUsed == 0
        assert record.cost == 0.0
        assert record.executionTimeMs == 0
        assert record.success is True
        assert record.timestampUTC == FIXED_NOW
        assert record.metadata == {}

    @pytest.mark.asyncio
    async def test_success_false_only_when_explicit(self, ledger: ExecutionLedger) -> None:
        failed = await ledger.append(
            ExecutionRecordCreate(agentId='seo-agent', sessionId='s1', success=False)
        )
        unset = await ledger.append(
            ExecutionRecordCreate(agentId='seo-agent', sessionId='s1', success=None)
        )

        assert failed.success is False
        assert unset.success is True

    @pytest.mark.asyncio
    async def test_assigns_unique_ids(self, ledger: ExecutionLedger) -> None:
        first = await ledger.append(ExecutionRecordCreate(agentId='a', sessionId='s'))
        second = await ledger.append(ExecutionRecordCreate(agentId='a', sessionId='s'))

        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_opaque_payloads_stored_unchanged(self, ledger: ExecutionLedger) -> None:
        payload = {'nested': {'list': [1, 2, 3]}, 'flag': None}
        record = await ledger.append(
            ExecutionRecordCreate(agentId='a', sessionId='s', input=payload, output='text')
        )

        stored = await ledger.get(record.id)
        assert stored.input == payload
        assert stored.output == 'text'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ('cost', -0.01),
        ('tokensUsed', -1),
        ('executionTimeMs', -5),
    ])
    async def test_negative_numeric_field_rejected(
        self,
        ledger: ExecutionLedger,
        field: str,
        value: float,
    ) -> None:
        data = ExecutionRecordCreate(agentId='a', sessionId='s', **{field: value})

        with pytest.raises(ValidationError) as exc_info:
            await ledger.append(data)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_blank_agent_id_rejected(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await ledger.append(ExecutionRecordCreate(agentId='  ', sessionId='s'))
        assert exc_info.value.field == 'agentId'


class TestQuery:

    @pytest.mark.asyncio
    async def test_default_order_is_newest_first(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d) for d in (3, 1, 2)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await ledger.query(RecordFilter())

        assert [r.timestampUTC for r in result] == sorted(
            (r.timestampUTC for r in records), reverse=True
        )

    @pytest.mark.asyncio
    async def test_ties_keep_insertion_order(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=1, cost=0.1, record_id=f'tie-{i}') for i in range(4)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        ascending = await ledger.query(RecordFilter(sortBy=SortField.COST, sortOrder=SortOrder.ASC))
        descending = await ledger.query(RecordFilter(sortBy=SortField.COST, sortOrder=SortOrder.DESC))

        assert [r.id for r in ascending] == ['tie-0', 'tie-1', 'tie-2', 'tie-3']
        assert [r.id for r in descending] == ['tie-3', 'tie-2', 'tie-1', 'tie-0']

    @pytest.mark.asyncio
    async def test_pagination_is_stable(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=i, record_id=f'p-{i}') for i in range(10)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        page_one = await ledger.query(RecordFilter(limit=4, offset=0))
        page_two = await ledger.query(RecordFilter(limit=4, offset=4))
        everything = await ledger.query(RecordFilter(limit=10))

        assert [r.id for r in page_one + page_two] == [r.id for r in everything[:8]]

    @pytest.mark.asyncio
    async def test_filters_combine(self, clock, fast_retry) -> None:
        records = [
            make_record('email-agent', cost=0.2, success=True),
            make_record('email-agent', cost=0.2, success=False),
            make_record('email-agent', cost=0.01, success=True),
            make_record('seo-agent', cost=0.3, success=True),
        ]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await ledger.query(RecordFilter(agentId='email-agent', minCost=0.1, successOnly=True))

        assert len(result) == 1
        assert result[0].agentId == 'email-agent'
        assert result[0].cost == 0.2
        assert result[0].success is True

    @pytest.mark.asyncio
    async def test_date_range_is_inclusive(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d, record_id=f'd-{d}') for d in (1, 2, 3)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await ledger.query(RecordFilter(
            startDate=FIXED_NOW - timedelta(days=2),
            endDate=FIXED_NOW - timedelta(days=1),
        ))

        assert {r.id for r in result} == {'d-1', 'd-2'}

    @pytest.mark.asyncio
    async def test_date_bounds_without_offset_are_utc(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d, record_id=f'd-{d}') for d in (1, 2, 3)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await ledger.query(RecordFilter(startDate=datetime(2026, 3, 12, 18, 0)))

        assert {r.id for r in result} == {'d-1', 'd-2'}

    def test_filter_bounds_normalized_to_utc(self) -> None:
        offset = timezone(timedelta(hours=2))
        record_filter = RecordFilter(
            startDate=datetime(2026, 3, 1),
            endDate=datetime(2026, 3, 2, 14, 0, tzinfo=offset),
        )

        assert record_filter.startDate == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert record_filter.startDate.tzinfo == timezone.utc
        assert record_filter.endDate.hour == 12
        assert record_filter.endDate.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_high_cost_runs_sorted_by_cost(self, clock, fast_retry) -> None:
        records = [make_record(cost=c) for c in (0.05, 0.4, 0.2, 0.9)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await ledger.high_cost_runs(0.1)

        assert [r.cost for r in result] == [0.9, 0.4, 0.2]

    @pytest.mark.asyncio
    async def test_session_history_is_chronological(self, clock, fast_retry) -> None:
        records = [make_record(session_id='s-9', days_ago=d) for d in (1, 5, 3)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        history = await ledger.session_history('s-9')

        assert [r.timestampUTC for r in history] == sorted(r.timestampUTC for r in records)

    @pytest.mark.asyncio
    async def test_last_successful_runs_skips_failures(self, clock, fast_retry) -> None:
        records = [make_record(success=i % 2 == 0, days_ago=i) for i in range(10)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await ledger.last_successful_runs('content-agent', count=3)

        assert len(result) == 3
        assert all(r.success for r in result)

    @pytest.mark.asyncio
    async def test_get_unknown_record_raises(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(NotFoundError):
            await ledger.get('missing')


class TestPatchAndPurge:

    @pytest.mark.asyncio
    async def test_patch_score_merges_metadata(self, ledger: ExecutionLedger) -> None:
        record = await ledger.append(
            ExecutionRecordCreate(agentId='a', sessionId='s', metadata={'model': 'small'})
        )

        updated = await ledger.patch_score(record.id, 88, {'reviewer': 'ops'})

        assert updated.qualityScore == 88
        assert updated.metadata == {'model': 'small', 'reviewer': 'ops'}
        assert updated.cost == record.cost

    @pytest.mark.asyncio
    async def test_patch_score_out_of_range(self, ledger: ExecutionLedger) -> None:
        record = await ledger.append(ExecutionRecordCreate(agentId='a', sessionId='s'))

        with pytest.raises(ValidationError):
            await ledger.patch_score(record.id, 101)

    @pytest.mark.asyncio
    async def test_patch_unknown_record(self, ledger: ExecutionLedger) -> None:
        with pytest.raises(NotFoundError):
            await ledger.patch_score('nope', 50)

    @pytest.mark.asyncio
    async def test_purge_removes_only_old_records(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d) for d in (5, 40, 95, 120)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        removed = await ledger.purge(90)
        remaining = await ledger.query(RecordFilter(limit=None))

        assert removed == 2
        assert len(remaining) == 2

    @pytest.mark.asyncio
    async def test_system_stats_counts_recent(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d) for d in (0.1, 0.5, 2, 3)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        stats = await ledger.system_stats()

        assert stats.totalRecords == 4
        assert stats.recordsLast24h == 2
        assert stats.status == 'normal'


class TestMetricsWindow:

    def test_trend_series_have_one_point_per_day(self) -> None:
        today = date(2026, 3, 15)
        records = [make_record(days_ago=2), make_record(days_ago=2), make_record(days_ago=10)]

        trends = build_daily_trends(records, 30, today)

        for series in trends.values():
            assert len(series) == 30
            assert series[-1].date == today
            assert series[0].date == today - timedelta(days=29)

    def test_days_without_runs_are_zero(self) -> None:
        today = date(2026, 3, 15)
        records = [make_record(days_ago=0.1, cost=0.4)]

        trends = build_daily_trends(records, 7, today)

        assert trends['cost'][-1].value == pytest.approx(0.4)
        assert all(point.value == 0 for point in trends['cost'][:-1])

    def test_success_rate_trend_is_percent(self) -> None:
        today = date(2026, 3, 15)
        records = [
            make_record(days_ago=0.1, success=True),
            make_record(days_ago=0.2, success=False),
        ]

        trends = build_daily_trends(records, 3, today)

        assert trends['successRate'][-1].value == pytest.approx(50.0)

    def test_summarize_records_aggregates(self) -> None:
        records = [
            make_record(cost=0.1, tokens=100, execution_time_ms=1000, success=True, quality_score=80),
            make_record(cost=0.3, tokens=300, execution_time_ms=3000, success=False),
        ]

        window = summarize_records('content-agent', records, 30, date(2026, 3, 15))

        assert window.totalRuns == 2
        assert window.successfulRuns == 1
        assert window.failedRuns == 1
        assert window.successRate == pytest.approx(50.0)
        assert window.averageCost == pytest.approx(0.2)
        assert window.averageTokens == pytest.approx(200)
        assert window.averageExecutionTimeMs == pytest.approx(2000)
        assert window.averageQualityScore == pytest.approx(80)
        assert window.totalCost == pytest.approx(0.4)
        assert window.totalTokens == 400

    def test_empty_window_is_zeroed(self) -> None:
        window = summarize_records('idle-agent', [], 14, date(2026, 3, 15))

        assert window.totalRuns == 0
        assert window.successRate == 0
        assert window.lastRun is None
        assert len(window.costTrend) == 14

    @pytest.mark.asyncio
    async def test_metrics_respects_window(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d) for d in (1, 10, 29, 31, 60)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        window = await ledger.metrics('content-agent', 30)

        assert window.totalRuns == 3
        assert window.windowDays == 30

    @pytest.mark.asyncio
    async def test_totals_match_trend_days(self, clock, fast_retry) -> None:
        records = [
            make_record(days_ago=29.4, cost=0.3, record_id='first-day'),
            make_record(days_ago=29.6, cost=0.9, record_id='day-before'),
        ]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        window = await ledger.metrics('content-agent', 30)

        assert ledger.window_start(30) == datetime(2026, 2, 14, tzinfo=timezone.utc)
        assert window.totalRuns == 1
        assert window.totalCost == pytest.approx(0.3)
        assert window.costTrend[0].date == date(2026, 2, 14)
        assert window.costTrend[0].value == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_population_groups_by_agent(self, seeded_ledger: ExecutionLedger) -> None:
        population = await seeded_ledger.population_metrics(30)

        assert set(population) == {'content-agent', 'ad-agent'}
        assert population['content-agent'].successRate == pytest.approx(100.0)
        assert population['ad-agent'].successRate == pytest.approx(60.0)


class TestDegradedReads:

    @pytest.fixture
    def broken_ledger(self, clock, fast_retry) -> ExecutionLedger:
        store = InMemoryRecordStore()
        store.query = AsyncMock(side_effect=ConnectionError("connection refused"))
        store.append = AsyncMock(side_effect=ConnectionError("connection refused"))
        return ExecutionLedger(store, retry_policy=fast_retry, clock=clock)

    @pytest.mark.asyncio
    async def test_metrics_returns_empty_window(self, broken_ledger: ExecutionLedger) -> None:
        window = await broken_ledger.metrics('content-agent', 30)

        assert window.totalRuns == 0
        assert len(window.costTrend) == 30

    @pytest.mark.asyncio
    async def test_population_returns_empty_mapping(self, broken_ledger: ExecutionLedger) -> None:
        assert await broken_ledger.population_metrics(30) == {}

    @pytest.mark.asyncio
    async def test_append_raises_dependency_unavailable(self, broken_ledger: ExecutionLedger) -> None:
        with pytest.raises(DependencyUnavailable):
            await broken_ledger.append(ExecutionRecordCreate(agentId='a', sessionId='s'))

    @pytest.mark.asyncio
    async def test_query_retries_before_giving_up(self, clock, fast_retry) -> None:
        store = InMemoryRecordStore()
        store.query = AsyncMock(side_effect=[ConnectionError("blip"), []])
        ledger = ExecutionLedger(store, retry_policy=fast_retry, clock=clock)

        result = await ledger.query(RecordFilter())

        assert result == []
        assert store.query.await_count == 2
