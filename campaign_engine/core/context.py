"""
Engine wiring.

EngineContext holds one instance of every service for the lifetime of the
process. build_engine_context() picks the Postgres adapters when a pool is
available and the in-memory adapters otherwise, and shares a single
RetryPolicy built from Settings across all of them.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from asyncpg import Pool

from campaign_engine.core.config import Settings
from campaign_engine.core.retry import RetryPolicy
from campaign_engine.services.experiment_store import (
    InMemoryExperimentRepository,
    PostgresExperimentRepository,
)
from campaign_engine.services.health_scorer import HealthScorer
from campaign_engine.services.ledger import ExecutionLedger, utc_now
from campaign_engine.services.record_store import InMemoryRecordStore, PostgresRecordStore
from campaign_engine.services.significance import SignificanceEngine
from campaign_engine.services.strategy_planner import StrategyPlanner, offset_brand_scorer
from campaign_engine.services.strategy_store import (
    InMemoryStrategyRepository,
    PostgresStrategyRepository,
    StrategyManager,
)


@dataclass
class EngineContext:
    settings: Settings
    ledger: ExecutionLedger
    scorer: HealthScorer
    planner: StrategyPlanner
    strategies: StrategyManager
    experiments: SignificanceEngine
    pool: Optional[Pool] = None


def build_engine_context(
    settings: Settings,
    pool: Optional[Pool] = None,
    clock: Callable = utc_now,
) -> EngineContext:
    """
    Construct every service from settings.

    Args:
        settings: Loaded application settings.
        pool: asyncpg pool, or None to run entirely in memory.
        clock: Time source shared by all services.
    """
    retry_policy = RetryPolicy.from_settings(settings)

    if pool is not None:
        record_store = PostgresRecordStore(pool)
        strategy_repository = PostgresStrategyRepository(pool)
        experiment_repository = PostgresExperimentRepository(pool)
    else:
        record_store = InMemoryRecordStore()
        strategy_repository = InMemoryStrategyRepository()
        experiment_repository = InMemoryExperimentRepository()

    ledger = ExecutionLedger(
        record_store,
        retry_policy=retry_policy,
        clock=clock,
        default_window_days=settings.ledger_window_days,
    )
    scorer = HealthScorer(ledger)
    experiments = SignificanceEngine(experiment_repository, retry_policy=retry_policy, clock=clock)
    planner = StrategyPlanner(
        ledger,
        scorer,
        brand_scorer=offset_brand_scorer(settings.brand_score_offset),
        learnings_provider=experiments.recent_learnings,
        window_days=settings.planner_window_days,
        default_performance_score=settings.default_performance_score,
        default_brand_score=settings.default_brand_score,
        clock=clock,
    )
    strategies = StrategyManager(strategy_repository, retry_policy=retry_policy, clock=clock)

    return EngineContext(
        settings=settings,
        ledger=ledger,
        scorer=scorer,
        planner=planner,
        strategies=strategies,
        experiments=experiments,
        pool=pool,
    )
