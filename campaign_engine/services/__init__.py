"""
Service layer of the campaign decision engine.

Services:
- record_store: RecordStore contract with in-memory and asyncpg adapters
- ledger: Execution Ledger (append, query, windowed metrics, retention)
- health_scorer: per-agent health scores, trends, benchmarks, recommendations
- strategy_planner: campaign strategy generation (agent selection, action DAG, timeline)
- strategy_store: strategy persistence and lifecycle
- experiment_store: A/B experiment and learning persistence
- significance: Significance Engine (z-test, recommendations, winner declaration)

Services receive their stores and collaborators by injection; see
campaign_engine.core.context for the wiring used by the API.
"""

# =============================================================================
# Execution Ledger
# =============================================================================
from campaign_engine.services.record_store import (
    RecordStore,
    InMemoryRecordStore,
    PostgresRecordStore,
)
from campaign_engine.services.ledger import (
    ExecutionLedger,
    build_daily_trends,
    summarize_records,
    utc_now,
)

# =============================================================================
# Health Scorer
# =============================================================================
from campaign_engine.services.health_scorer import (
    HealthScorer,
    calculate_health_score,
    classify_health,
    trend_direction,
    compare_to_population,
    generate_recommendations,
    summarize_system,
)

# =============================================================================
# Strategy Planner
# =============================================================================
from campaign_engine.services.strategy_planner import (
    StrategyPlanner,
    PlannerTables,
    offset_brand_scorer,
    validate_campaign_request,
    select_agents,
    build_action_sequence,
    build_timeline,
)
from campaign_engine.services.strategy_store import (
    StrategyRepository,
    InMemoryStrategyRepository,
    PostgresStrategyRepository,
    StrategyManager,
)

# =============================================================================
# Significance Engine
# =============================================================================
from campaign_engine.services.experiment_store import (
    ExperimentRepository,
    InMemoryExperimentRepository,
    PostgresExperimentRepository,
)
from campaign_engine.services.significance import (
    SignificanceEngine,
    two_proportion_z_test,
    required_sample_size,
    compare_variants,
    recommend_action,
    evaluate_experiment,
)

__all__ = [
    # Ledger
    'RecordStore',
    'InMemoryRecordStore',
    'PostgresRecordStore',
    'ExecutionLedger',
    'build_daily_trends',
    'summarize_records',
    'utc_now',
    # Health
    'HealthScorer',
    'calculate_health_score',
    'classify_health',
    'trend_direction',
    'compare_to_population',
    'generate_recommendations',
    'summarize_system',
    # Planner
    'StrategyPlanner',
    'PlannerTables',
    'offset_brand_scorer',
    'validate_campaign_request',
    'select_agents',
    'build_action_sequence',
    'build_timeline',
    'StrategyRepository',
    'InMemoryStrategyRepository',
    'PostgresStrategyRepository',
    'StrategyManager',
    # Significance
    'ExperimentRepository',
    'InMemoryExperimentRepository',
    'PostgresExperimentRepository',
    'SignificanceEngine',
    'two_proportion_z_test',
    'required_sample_size',
    'compare_variants',
    'recommend_action',
    'evaluate_experiment',
]
