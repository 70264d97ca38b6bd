"""
Pydantic models for the campaign decision engine.

These models are the engine's data contracts: they are returned by services,
accepted and returned by the API layer, and serialized into the JSONB state
columns of the PostgreSQL adapters. Field names are camelCase to match the
JSON contract consumed by the dashboard.

Sections:
- Execution Ledger: ExecutionRecordCreate, ExecutionRecord, RecordFilter,
  DailyPoint, AgentMetricsWindow, ScorePatch, LedgerStats
- Health Scorer: SuggestedAction, DataSupport, Recommendation, TrendSummary,
  BenchmarkComparison, HealthProfile, SystemAnalysis and its rows
- Strategy Planner: CampaignGoal, CampaignAudience, CampaignContext,
  StrategyOptions, AgentAction, TimelineStage, CampaignStrategy
- Significance Engine: VariantMetrics, MetricsDelta, TestVariant, TestConfig,
  StatisticalSignificance, TestRecommendation, TestResults, ABExperiment,
  ExperimentLearning

All rates are decimals (0.05 == 5%) except successRate and health scores,
which are on a 0-100 scale.
"""

from datetime import date as DateType
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from campaign_engine.models.enums import (
    AudienceSegment,
    BenchmarkStanding,
    BrandComplianceLevel,
    CampaignGoalType,
    Channel,
    Effort,
    ExperimentStatus,
    HealthStatus,
    PipelineStage,
    PrimaryMetric,
    Priority,
    RecommendationType,
    SelectionCriteria,
    Severity,
    SortField,
    SortOrder,
    StrategyStatus,
    TestAction,
    TrendDirection,
    VariantStatus,
)


# =============================================================================
# Execution Ledger
# =============================================================================

class ExecutionRecordCreate(BaseModel):
    """
    Input for appending one completed agent invocation to the ledger.

    Numeric fields left unset default to 0 and `success` defaults to True
    unless explicitly False. `input`, `output` and `metadata` are opaque and
    stored exactly as given.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "agentId": "content-agent",
                "sessionId": "sess-42",
                "userId": "user-7",
                "input": {"brief": "Spring launch blog post"},
                "output": {"wordCount": 950},
                "tokensUsed": 420,
                "cost": 0.03,
                "executionTimeMs": 3200,
                "success": True,
                "qualityScore": 82,
                "metadata": {"model": "default"},
            }
        }
    )

    agentId: str = Field(..., description="Identifier of the agent that ran")
    sessionId: str = Field(..., description="Session the invocation belonged to")
    userId: Optional[str] = Field(None, description="User who triggered the invocation")
    input: Any = Field(None, description="Opaque input payload")
    output: Any = Field(None, description="Opaque output payload")
    timestampUTC: Optional[datetime] = Field(
        None, description="Completion time; defaults to the append time"
    )
    tokensUsed: Optional[int] = Field(None, description="Tokens consumed")
    cost: Optional[float] = Field(None, description="Cost in currency units")
    executionTimeMs: Optional[int] = Field(None, description="Wall-clock duration in ms")
    success: Optional[bool] = Field(None, description="False only for failed runs")
    errorMessage: Optional[str] = None
    qualityScore: Optional[float] = Field(None, ge=0, le=100)
    metadata: Any = Field(default_factory=dict, description="Opaque metadata")


class ExecutionRecord(BaseModel):
    """
    One immutable ledger entry.

    Only qualityScore and metadata change after the append, through
    ExecutionLedger.patch_score(), which stores a new copy.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    agentId: str
    sessionId: str
    userId: Optional[str] = None
    input: Any = None
    output: Any = None
    timestampUTC: datetime
    tokensUsed: int = 0
    cost: float = 0.0
    executionTimeMs: int = 0
    success: bool = True
    errorMessage: Optional[str] = None
    qualityScore: Optional[float] = None
    metadata: Any = Field(default_factory=dict)


class RecordFilter(BaseModel):
    """
    Query filter for execution records.

    A `limit` of None returns every matching record; aggregation paths use it.
    Ordering is deterministic: ties on the sort field fall back to insertion order.
    """

    agentId: Optional[str] = None
    sessionId: Optional[str] = None
    userId: Optional[str] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    successOnly: bool = False
    failedOnly: bool = False
    minCost: Optional[float] = None
    sortBy: SortField = SortField.TIMESTAMP
    sortOrder: SortOrder = SortOrder.DESC
    limit: Optional[int] = Field(50, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator('startDate', 'endDate')
    @classmethod
    def normalize_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        """Bounds without an offset are read as UTC, matching stored timestamps."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ScorePatch(BaseModel):
    """Post-hoc feedback for a record."""

    score: float = Field(..., description="Quality score, 0-100")
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Merged into the record's existing metadata"
    )


class DailyPoint(BaseModel):
    date: DateType
    value: float


class AgentMetricsWindow(BaseModel):
    """
    Aggregates for one agent over a trailing window.

    Derived on demand from the ledger and never persisted. Each trend series
    holds exactly `windowDays` points, zero-filled for days with no runs.
    """

    agentId: str
    windowDays: int
    totalRuns: int = 0
    successfulRuns: int = 0
    failedRuns: int = 0
    successRate: float = Field(0.0, description="Percent of successful runs, 0-100")
    averageCost: float = 0.0
    averageTokens: float = 0.0
    averageExecutionTimeMs: float = 0.0
    averageQualityScore: Optional[float] = Field(
        None, description="Mean over scored runs only; None when no run was scored"
    )
    totalCost: float = 0.0
    totalTokens: int = 0
    lastRun: Optional[datetime] = None
    costTrend: List[DailyPoint] = Field(default_factory=list)
    executionTimeTrend: List[DailyPoint] = Field(default_factory=list)
    successRateTrend: List[DailyPoint] = Field(default_factory=list)


class LedgerStats(BaseModel):
    totalRecords: int
    recordsLast24h: int
    capacity: int
    utilization: float
    status: str


# =============================================================================
# Health Scorer
# =============================================================================

class SuggestedAction(BaseModel):
    action: str
    priority: Priority
    effort: Effort


class DataSupport(BaseModel):
    metric: str
    currentValue: float
    benchmarkValue: float
    trend: TrendDirection


class Recommendation(BaseModel):
    """One actionable finding produced from a benchmark breach."""

    type: RecommendationType
    severity: Severity
    title: str
    description: str
    expectedImpact: str
    suggestedActions: List[SuggestedAction] = Field(default_factory=list)
    dataSupport: Optional[DataSupport] = None


class TrendSummary(BaseModel):
    cost: TrendDirection = TrendDirection.STABLE
    performance: TrendDirection = TrendDirection.STABLE
    success: TrendDirection = TrendDirection.STABLE


class BenchmarkComparison(BaseModel):
    cost: BenchmarkStanding = BenchmarkStanding.AVERAGE
    speed: BenchmarkStanding = BenchmarkStanding.AVERAGE
    reliability: BenchmarkStanding = BenchmarkStanding.AVERAGE
    accuracy: BenchmarkStanding = BenchmarkStanding.AVERAGE


class HealthProfile(BaseModel):
    """
    Derived health of one agent over a window.

    healthScore is an integer in [0, 100]; recommendations are ordered
    critical -> high -> medium -> low.
    """

    agentId: str
    agentName: str
    windowDays: int
    healthScore: int = Field(..., ge=0, le=100)
    overallHealth: HealthStatus
    metrics: AgentMetricsWindow
    recommendations: List[Recommendation] = Field(default_factory=list)
    trends: TrendSummary = Field(default_factory=TrendSummary)
    benchmarkComparison: BenchmarkComparison = Field(default_factory=BenchmarkComparison)
    generatedAt: datetime


class TopPerformer(BaseModel):
    agentId: str
    agentName: str
    healthScore: int


class Underperformer(BaseModel):
    agentId: str
    agentName: str
    healthScore: int
    overallHealth: HealthStatus
    issues: List[str] = Field(default_factory=list)


class CriticalIssue(BaseModel):
    agentId: str
    issue: str
    impact: str
    urgency: str = "immediate"


class SystemAnalysis(BaseModel):
    windowDays: int
    totalAgents: int
    totalCost: float
    averageSuccessRate: float
    averageHealthScore: float
    overallHealth: HealthStatus
    costTrend: TrendDirection
    topPerformers: List[TopPerformer] = Field(default_factory=list)
    underperformers: List[Underperformer] = Field(default_factory=list)
    criticalIssues: List[CriticalIssue] = Field(default_factory=list)
    systemRecommendations: List[Recommendation] = Field(default_factory=list)
    generatedAt: datetime


# =============================================================================
# Strategy Planner
# =============================================================================

class CampaignBudget(BaseModel):
    total: float = Field(..., description="Planned spend; must be positive")
    max: Optional[float] = Field(None, description="Hard ceiling on estimated cost")
    allocation: Dict[str, float] = Field(default_factory=dict)


class CampaignGoal(BaseModel):
    type: CampaignGoalType
    objective: str
    kpis: List[str] = Field(default_factory=list)
    budget: Optional[CampaignBudget] = None


class Demographics(BaseModel):
    ageRange: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    painPoints: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)


class Persona(BaseModel):
    name: str
    description: str = ""
    motivations: List[str] = Field(default_factory=list)
    objections: List[str] = Field(default_factory=list)


class CampaignAudience(BaseModel):
    segment: AudienceSegment
    demographics: Demographics = Field(default_factory=Demographics)
    persona: Optional[Persona] = None


class ProductInfo(BaseModel):
    name: str
    description: str = ""
    features: List[str] = Field(default_factory=list)
    pricing: Optional[str] = None


class CampaignTimeline(BaseModel):
    startDate: DateType
    endDate: DateType


class CampaignContext(BaseModel):
    """
    Where and when a campaign runs.

    name, platforms and contentTypes are validated by the planner so each
    failure is reported against its own field.
    """

    name: str = ""
    platforms: List[str] = Field(default_factory=list)
    contentTypes: List[str] = Field(default_factory=list)
    channels: List[Channel] = Field(default_factory=list)
    timeline: CampaignTimeline
    product: Optional[ProductInfo] = None
    constraints: List[str] = Field(default_factory=list)


class StrategyOptions(BaseModel):
    brandComplianceLevel: BrandComplianceLevel = BrandComplianceLevel.MODERATE
    agentSelectionCriteria: SelectionCriteria = SelectionCriteria.BALANCED
    maxActions: int = Field(20, ge=1)
    useMemoryOptimization: bool = True


class StrategyRequest(BaseModel):
    """Body of POST /strategies."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "goal": {
                    "type": "product_launch",
                    "objective": "Launch the analytics add-on to existing customers",
                    "kpis": ["signups", "activation"],
                    "budget": {"total": 500, "max": 600},
                },
                "audience": {"segment": "saas", "persona": {"name": "Ops Lead"}},
                "context": {
                    "name": "Analytics Add-on Launch",
                    "platforms": ["linkedin", "newsletter"],
                    "contentTypes": ["blog", "email"],
                    "channels": ["social", "content", "email"],
                    "timeline": {"startDate": "2026-11-01", "endDate": "2026-11-30"},
                },
                "options": {"agentSelectionCriteria": "balanced", "maxActions": 10},
            }
        }
    )

    goal: CampaignGoal
    audience: CampaignAudience
    context: CampaignContext
    options: StrategyOptions = Field(default_factory=StrategyOptions)


class AgentAction(BaseModel):
    """
    One step of a campaign plan.

    dependsOn holds ids of earlier actions (DAG edges). performanceScore and
    brandScore are attached by the optimization pass.
    """

    id: str
    agentId: str
    action: str
    prompt: str
    config: Dict[str, Any] = Field(default_factory=dict)
    dependsOn: List[str] = Field(default_factory=list)
    estimatedDuration: int = Field(..., description="Minutes")
    priority: Priority
    stage: PipelineStage
    outputs: List[str] = Field(default_factory=list)
    performanceScore: Optional[float] = None
    brandScore: Optional[float] = None


class TimelineStage(BaseModel):
    stage: PipelineStage
    startDate: DateType
    endDate: DateType
    actionIds: List[str] = Field(default_factory=list)


class CampaignStrategy(BaseModel):
    id: str
    name: str
    goal: CampaignGoal
    audience: CampaignAudience
    context: CampaignContext
    options: StrategyOptions = Field(default_factory=StrategyOptions)
    actions: List[AgentAction] = Field(default_factory=list)
    timeline: List[TimelineStage] = Field(default_factory=list)
    estimatedCost: float = 0.0
    estimatedDuration: int = Field(0, description="Minutes along the stage critical path")
    brandAlignment: float = 0.0
    successProbability: float = 0.0
    status: StrategyStatus = StrategyStatus.DRAFT
    metadata: Dict[str, Any] = Field(default_factory=dict)
    createdAt: datetime
    updatedAt: datetime


class StrategyStatusUpdate(BaseModel):
    status: StrategyStatus


class StrategyCloneRequest(BaseModel):
    name: Optional[str] = None


# =============================================================================
# Significance Engine
# =============================================================================

class VariantMetrics(BaseModel):
    """
    Raw counts for one variant.

    Rates are computed from the counts on every access and are never stored
    on their own.
    """

    impressions: int = 0
    opens: int = 0
    clicks: int = 0
    conversions: int = 0
    revenue: float = 0.0
    bounces: int = 0

    @computed_field
    @property
    def openRate(self) -> float:
        return self.opens / self.impressions if self.impressions else 0.0

    @computed_field
    @property
    def clickRate(self) -> float:
        return self.clicks / self.impressions if self.impressions else 0.0

    @computed_field
    @property
    def conversionRate(self) -> float:
        return self.conversions / self.impressions if self.impressions else 0.0

    @computed_field
    @property
    def bounceRate(self) -> float:
        return self.bounces / self.impressions if self.impressions else 0.0

    @computed_field
    @property
    def revenuePerImpression(self) -> float:
        return self.revenue / self.impressions if self.impressions else 0.0


class MetricsDelta(BaseModel):
    """Increment reported by the delivery tracking system for one variant."""

    impressions: int = Field(0, ge=0)
    opens: int = Field(0, ge=0)
    clicks: int = Field(0, ge=0)
    conversions: int = Field(0, ge=0)
    revenue: float = Field(0.0, ge=0)
    bounces: int = Field(0, ge=0)


class TestVariant(BaseModel):
    __test__ = False

    id: str
    name: str
    trafficAllocation: float = Field(..., description="Percent of traffic, 0-100")
    configuration: Dict[str, Any] = Field(default_factory=dict)
    metrics: VariantMetrics = Field(default_factory=VariantMetrics)
    status: VariantStatus = VariantStatus.ACTIVE


class TestConfig(BaseModel):
    """Experiment configuration. Durations are in minutes."""

    __test__ = False

    duration: int = Field(2880, gt=0)
    minSampleSize: int = Field(1000, ge=1)
    confidenceLevel: float = Field(0.95, gt=0, lt=1)
    statisticalPower: float = Field(0.8, gt=0, lt=1)
    primaryMetric: PrimaryMetric = PrimaryMetric.CONVERSION_RATE
    autoWinner: bool = True
    maxDuration: int = Field(10080, gt=0)
    minimumDetectableEffect: float = Field(0.05, gt=0)


class StatisticalSignificance(BaseModel):
    isSignificant: bool = False
    pValue: float = 1.0
    zScore: float = 0.0
    confidenceInterval: List[float] = Field(
        default_factory=lambda: [0.0, 0.0],
        description="[lower, upper] bounds of the treatment - control rate difference",
    )
    controlRate: float = 0.0
    treatmentRate: float = 0.0
    sampleSizeReached: bool = False
    powerAchieved: bool = False


class VariantPerformance(BaseModel):
    variantId: str
    variantName: str
    metricValue: float
    lift: float = Field(0.0, description="Percent change vs the control variant")
    rank: int
    isWinner: bool = False
    isLoser: bool = False


class TestRecommendation(BaseModel):
    __test__ = False

    action: TestAction
    reason: str
    confidence: float
    expectedLift: Optional[float] = None
    estimatedRevenue: Optional[float] = None


class TestResults(BaseModel):
    __test__ = False

    progress: float = 0.0
    elapsedMinutes: float = 0.0
    significance: StatisticalSignificance = Field(default_factory=StatisticalSignificance)
    recommendation: TestRecommendation
    performanceComparison: List[VariantPerformance] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    timeToSignificance: float = Field(0.0, description="Estimated minutes")
    updatedAt: datetime


class ABExperiment(BaseModel):
    id: str
    campaignId: str
    name: str
    variants: List[TestVariant]
    config: TestConfig = Field(default_factory=TestConfig)
    status: ExperimentStatus = ExperimentStatus.DRAFT
    results: Optional[TestResults] = None
    winnerVariantId: Optional[str] = None
    stopReason: Optional[str] = None
    createdAt: datetime
    startedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    updatedAt: datetime


class VariantSpec(BaseModel):
    name: str
    trafficAllocation: Optional[float] = None
    configuration: Dict[str, Any] = Field(default_factory=dict)


class ExperimentCreate(BaseModel):
    """Body of POST /experiments. Omitted allocations are split equally."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "campaignId": "strategy-1",
                "name": "Subject line test",
                "variants": [
                    {"name": "Control", "configuration": {"subject": "Meet the add-on"}},
                    {"name": "Question", "configuration": {"subject": "Still exporting CSVs?"}},
                ],
                "config": {"confidenceLevel": 0.95, "primaryMetric": "conversion_rate"},
            }
        }
    )

    campaignId: str
    name: str
    variants: List[VariantSpec] = Field(default_factory=list)
    config: TestConfig = Field(default_factory=TestConfig)


class ExperimentStopRequest(BaseModel):
    reason: str = "manual"


class ExperimentLearning(BaseModel):
    """Winning configuration kept for future campaign planning."""

    experimentId: str
    campaignId: str
    testName: str
    winningVariantId: str
    winningVariantName: str
    winningConfiguration: Dict[str, Any] = Field(default_factory=dict)
    primaryMetric: PrimaryMetric
    metricValue: float
    lift: float
    confidence: float
    insights: List[str] = Field(default_factory=list)
    testDurationMinutes: float
    declaredAt: datetime
