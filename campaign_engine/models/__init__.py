"""
Data models for the campaign decision engine.

Re-exports every enum and Pydantic schema so other modules can import from
campaign_engine.models directly:

    from campaign_engine.models import (
        ExecutionRecord,
        AgentMetricsWindow,
        CampaignStrategy,
        ABExperiment,
    )
"""

# =============================================================================
# Enums
# =============================================================================
from campaign_engine.models.enums import (
    # Ledger
    SortField,
    SortOrder,
    # Health
    HealthStatus,
    TrendDirection,
    BenchmarkStanding,
    RecommendationType,
    Severity,
    Priority,
    Effort,
    # Planner
    CampaignGoalType,
    AudienceSegment,
    Channel,
    PipelineStage,
    SelectionCriteria,
    BrandComplianceLevel,
    StrategyStatus,
    # Experiments
    ExperimentStatus,
    VariantStatus,
    PrimaryMetric,
    TestAction,
)

# =============================================================================
# Schemas
# =============================================================================
from campaign_engine.models.schemas import (
    # Execution Ledger
    ExecutionRecordCreate,
    ExecutionRecord,
    RecordFilter,
    ScorePatch,
    DailyPoint,
    AgentMetricsWindow,
    LedgerStats,
    # Health Scorer
    SuggestedAction,
    DataSupport,
    Recommendation,
    TrendSummary,
    BenchmarkComparison,
    HealthProfile,
    TopPerformer,
    Underperformer,
    CriticalIssue,
    SystemAnalysis,
    # Strategy Planner
    CampaignBudget,
    CampaignGoal,
    Demographics,
    Persona,
    CampaignAudience,
    ProductInfo,
    CampaignTimeline,
    CampaignContext,
    StrategyOptions,
    StrategyRequest,
    AgentAction,
    TimelineStage,
    CampaignStrategy,
    StrategyStatusUpdate,
    StrategyCloneRequest,
    # Significance Engine
    VariantMetrics,
    MetricsDelta,
    TestVariant,
    TestConfig,
    StatisticalSignificance,
    VariantPerformance,
    TestRecommendation,
    TestResults,
    ABExperiment,
    VariantSpec,
    ExperimentCreate,
    ExperimentStopRequest,
    ExperimentLearning,
)

__all__ = [
    # Enums
    "SortField",
    "SortOrder",
    "HealthStatus",
    "TrendDirection",
    "BenchmarkStanding",
    "RecommendationType",
    "Severity",
    "Priority",
    "Effort",
    "CampaignGoalType",
    "AudienceSegment",
    "Channel",
    "PipelineStage",
    "SelectionCriteria",
    "BrandComplianceLevel",
    "StrategyStatus",
    "ExperimentStatus",
    "VariantStatus",
    "PrimaryMetric",
    "TestAction",
    # Execution Ledger
    "ExecutionRecordCreate",
    "ExecutionRecord",
    "RecordFilter",
    "ScorePatch",
    "DailyPoint",
    "AgentMetricsWindow",
    "LedgerStats",
    # Health Scorer
    "SuggestedAction",
    "DataSupport",
    "Recommendation",
    "TrendSummary",
    "BenchmarkComparison",
    "HealthProfile",
    "TopPerformer",
    "Underperformer",
    "CriticalIssue",
    "SystemAnalysis",
    # Strategy Planner
    "CampaignBudget",
    "CampaignGoal",
    "Demographics",
    "Persona",
    "CampaignAudience",
    "ProductInfo",
    "CampaignTimeline",
    "CampaignContext",
    "StrategyOptions",
    "StrategyRequest",
    "AgentAction",
    "TimelineStage",
    "CampaignStrategy",
    "StrategyStatusUpdate",
    "StrategyCloneRequest",
    # Significance Engine
    "VariantMetrics",
    "MetricsDelta",
    "TestVariant",
    "TestConfig",
    "StatisticalSignificance",
    "VariantPerformance",
    "TestRecommendation",
    "TestResults",
    "ABExperiment",
    "VariantSpec",
    "ExperimentCreate",
    "ExperimentStopRequest",
    "ExperimentLearning",
]
