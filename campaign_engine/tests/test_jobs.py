"""
Tests for background jobs and service wiring.

Test Classes:
- TestRetentionCleanup: ledger purge job result dicts
- TestHealthDigest: Slack Block Kit formatting and send outcomes
- TestExperimentMonitor: non-overlapping ticks and task lifecycle
- TestEngineContext: in-memory wiring from settings
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from campaign_engine.core.config import Settings
from campaign_engine.core.context import build_engine_context
from campaign_engine.core.errors import DependencyUnavailable
from campaign_engine.jobs.experiment_monitor import ExperimentMonitor
from campaign_engine.jobs.health_digest import format_health_digest, send_health_digest
from campaign_engine.jobs.retention import run_retention_cleanup
from campaign_engine.models.schemas import ExecutionRecordCreate
from campaign_engine.services.health_scorer import HealthScorer
from campaign_engine.services.ledger import ExecutionLedger
from campaign_engine.services.record_store import InMemoryRecordStore
from campaign_engine.tests.conftest import make_record


def _webhook(status_code: int = 200, body: str = 'ok') -> Mock:
    client = Mock()
    client.send.return_value = Mock(status_code=status_code, body=body)
    return client


class TestRetentionCleanup:

    @pytest.mark.asyncio
    async def test_removes_old_records(self, clock, fast_retry) -> None:
        records = [make_record(days_ago=d) for d in (1, 5, 100, 200)]
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        result = await run_retention_cleanup(ledger, 90)

        assert result == {'success': True, 'removed': 2, 'retention_days': 90}

    @pytest.mark.asyncio
    async def test_failure_reported_not_raised(self, clock, fast_retry) -> None:
        store = InMemoryRecordStore()
        store.delete_where = AsyncMock(side_effect=ConnectionError("connection refused"))
        ledger = ExecutionLedger(store, retry_policy=fast_retry, clock=clock)

        result = await run_retention_cleanup(ledger, 90)

        assert result['success'] is False
        assert 'unavailable' in result['error']

    @pytest.mark.asyncio
    async def test_negative_window_rejected(self, ledger: ExecutionLedger) -> None:
        result = await run_retention_cleanup(ledger, -1)

        assert result['success'] is False
        assert 'olderThanDays' in result['error']


class TestHealthDigest:

    @pytest.mark.asyncio
    async def test_blocks_cover_sections(self, scorer: HealthScorer) -> None:
        analysis = await scorer.analyze_system(30)

        blocks = format_health_digest(analysis)

        assert blocks[0]['type'] == 'header'
        assert '30-day window' in blocks[0]['text']['text']
        texts = [b['text']['text'] for b in blocks if b['type'] == 'section']
        assert any(t.startswith('*Top performers*') and 'Content Agent' in t for t in texts)
        assert any(t.startswith('*Underperformers*') and 'Ad Agent' in t for t in texts)
        assert any(t.startswith('*Critical issues*') for t in texts)
        assert blocks[-1]['type'] == 'context'

    @pytest.mark.asyncio
    async def test_sends_digest(self, scorer: HealthScorer) -> None:
        client = _webhook()

        result = await send_health_digest(scorer, None, window_days=30, client=client)

        assert result['success'] is True
        assert result['total_agents'] == 2
        assert result['critical_issues'] > 0
        client.send.assert_called_once()
        assert client.send.call_args.kwargs['blocks'][0]['type'] == 'header'

    @pytest.mark.asyncio
    async def test_missing_webhook(self, scorer: HealthScorer) -> None:
        result = await send_health_digest(scorer, None)

        assert result['success'] is False
        assert 'SLACK_WEBHOOK_URL' in result['error']

    @pytest.mark.asyncio
    async def test_skipped_without_activity(self, ledger: ExecutionLedger) -> None:
        client = _webhook()

        result = await send_health_digest(HealthScorer(ledger), None, client=client)

        assert result['success'] is True
        assert result['skipped'] is True
        client.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_slack_error_status(self, scorer: HealthScorer) -> None:
        result = await send_health_digest(scorer, None, client=_webhook(500, 'invalid_payload'))

        assert result['success'] is False
        assert '500' in result['error']

    @pytest.mark.asyncio
    async def test_send_exception(self, scorer: HealthScorer) -> None:
        client = Mock()
        client.send.side_effect = OSError("network unreachable")

        result = await send_health_digest(scorer, None, client=client)

        assert result['success'] is False
        assert 'network unreachable' in result['error']

    @pytest.mark.asyncio
    async def test_analysis_failure(self) -> None:
        scorer = Mock()
        scorer.analyze_system = AsyncMock(side_effect=DependencyUnavailable('ledger.query'))

        result = await send_health_digest(scorer, 'https://hooks.slack.com/services/x/y/z')

        assert result['success'] is False
        assert 'ledger.query' in result['error']


class TestExperimentMonitor:

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ExperimentMonitor(Mock(), 0)

    @pytest.mark.asyncio
    async def test_tick_returns_count(self) -> None:
        engine = Mock()
        engine.evaluate_running = AsyncMock(return_value=3)

        assert await ExperimentMonitor(engine, 60).tick() == 3

    @pytest.mark.asyncio
    async def test_overlapping_tick_skipped(self) -> None:
        engine = Mock()
        engine.evaluate_running = AsyncMock(return_value=1)
        monitor = ExperimentMonitor(engine, 60)

        async with monitor._tick_lock:
            assert await monitor.tick() is None

        engine.evaluate_running.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_tick_returns_none(self) -> None:
        engine = Mock()
        engine.evaluate_running = AsyncMock(side_effect=DependencyUnavailable('experiments.load_by_status'))

        assert await ExperimentMonitor(engine, 60).tick() is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self) -> None:
        engine = Mock()
        engine.evaluate_running = AsyncMock(return_value=0)
        monitor = ExperimentMonitor(engine, 0.01)

        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert not monitor.running
        assert engine.evaluate_running.await_count >= 1


class TestEngineContext:

    @pytest.mark.asyncio
    async def test_in_memory_wiring(self, clock) -> None:
        settings = Settings(database_url=None, ledger_window_days=14, retry_base_delay_seconds=0.0)

        context = build_engine_context(settings, clock=clock)
        record = await context.ledger.append(ExecutionRecordCreate(agentId='email-agent', sessionId='s-9'))

        assert context.pool is None
        assert context.ledger.default_window_days == 14
        assert (await context.ledger.get(record.id)).agentId == 'email-agent'
        assert await context.planner._learnings_provider(5) == []
