"""
Pytest configuration and shared fixtures for campaign engine tests.

Provides:
- A controllable clock so windows, trends and experiment durations are deterministic
- A fast RetryPolicy so failure-path tests do not sleep
- Mock asyncpg pool for the PostgreSQL adapters
- Record factories and pre-seeded in-memory ledgers

Async tests are marked with @pytest.mark.asyncio (pytest-asyncio).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from campaign_engine.core.retry import RetryPolicy
from campaign_engine.models.schemas import ExecutionRecord
from campaign_engine.services.experiment_store import InMemoryExperimentRepository
from campaign_engine.services.health_scorer import HealthScorer
from campaign_engine.services.ledger import ExecutionLedger
from campaign_engine.services.record_store import InMemoryRecordStore
from campaign_engine.services.significance import SignificanceEngine


FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: long-running tests (deselect with -m "not slow")
    - integration: tests that need a real PostgreSQL or Slack endpoint
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring external service connectivity'
    )


# ============================================================
# CLOCK AND RETRY FIXTURES
# ============================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Two quick attempts, no meaningful backoff."""
    return RetryPolicy(
        max_attempts=2,
        base_delay_seconds=0.0,
        max_delay_seconds=0.0,
        timeout_seconds=2.0,
    )


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool.

    pool.acquire() returns an async context manager yielding a connection
    whose execute/fetch/fetchrow/fetchval are AsyncMocks. conn.transaction()
    is an async context manager as well.

    Usage:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetch.return_value = [...]
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)

    transaction_context = AsyncMock()
    transaction_context.__aenter__ = AsyncMock(return_value=None)
    transaction_context.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = Mock(return_value=transaction_context)

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)

    pool.close = AsyncMock(return_value=None)
    return pool


# ============================================================
# RECORD FIXTURES
# ============================================================

_record_counter = {'next': 0}


def make_record(
    agent_id: str = 'content-agent',
    *,
    days_ago: float = 1,
    cost: float = 0.02,
    tokens: int = 400,
    execution_time_ms: int = 2000,
    success: bool = True,
    quality_score: Optional[float] = None,
    session_id: str = 'sess-1',
    user_id: Optional[str] = 'user-1',
    now: datetime = FIXED_NOW,
    record_id: Optional[str] = None,
) -> ExecutionRecord:
    """Build an ExecutionRecord relative to FIXED_NOW."""
    _record_counter['next'] += 1
    return ExecutionRecord(
        id=record_id or f"rec-{_record_counter['next']}",
        agentId=agent_id,
        sessionId=session_id,
        userId=user_id,
        input={'prompt': 'test'},
        output={'ok': success},
        timestampUTC=now - timedelta(days=days_ago),
        tokensUsed=tokens,
        cost=cost,
        executionTimeMs=execution_time_ms,
        success=success,
        errorMessage=None if success else 'upstream error',
        qualityScore=quality_score,
        metadata={},
    )


@pytest.fixture
def record_factory() -> Callable[..., ExecutionRecord]:
    return make_record


def healthy_runs(agent_id: str, count: int = 20) -> List[ExecutionRecord]:
    """Cheap, fast, always-successful runs spread over the last `count` days."""
    return [
        make_record(agent_id, days_ago=i + 0.5, cost=0.01, tokens=100, execution_time_ms=800)
        for i in range(count)
    ]


def failing_runs(agent_id: str, count: int = 20) -> List[ExecutionRecord]:
    """Expensive, slow runs where 40% fail."""
    return [
        make_record(
            agent_id,
            days_ago=i + 0.5,
            cost=0.5,
            tokens=5000,
            execution_time_ms=40000,
            success=i % 5 >= 2,
        )
        for i in range(count)
    ]


@pytest.fixture
def ledger(clock: FakeClock, fast_retry: RetryPolicy) -> ExecutionLedger:
    """Empty in-memory ledger on the fixed clock."""
    return ExecutionLedger(InMemoryRecordStore(), retry_policy=fast_retry, clock=clock)


@pytest.fixture
def seeded_ledger(clock: FakeClock, fast_retry: RetryPolicy) -> ExecutionLedger:
    """Ledger holding one healthy agent and one struggling agent."""
    records = healthy_runs('content-agent') + failing_runs('ad-agent')
    return ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)


@pytest.fixture
def scorer(seeded_ledger: ExecutionLedger) -> HealthScorer:
    return HealthScorer(seeded_ledger)


@pytest.fixture
def experiment_repository() -> InMemoryExperimentRepository:
    return InMemoryExperimentRepository()


@pytest.fixture
def significance_engine(
    experiment_repository: InMemoryExperimentRepository,
    fast_retry: RetryPolicy,
    clock: FakeClock,
) -> SignificanceEngine:
    return SignificanceEngine(experiment_repository, retry_policy=fast_retry, clock=clock)
