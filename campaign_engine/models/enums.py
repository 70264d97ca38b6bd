"""
Enumeration definitions for the campaign decision engine.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in pydantic models, API responses and the JSONB state columns.

Groups:
- Ledger: SortField, SortOrder
- Health Scorer: HealthStatus, TrendDirection, BenchmarkStanding,
  RecommendationType, Severity, Priority, Effort
- Strategy Planner: CampaignGoalType, AudienceSegment, Channel, PipelineStage,
  SelectionCriteria, BrandComplianceLevel, StrategyStatus
- Significance Engine: ExperimentStatus, VariantStatus, PrimaryMetric, TestAction
"""

from enum import Enum


# =============================================================================
# Execution Ledger
# =============================================================================

class SortField(str, Enum):
    """Sortable fields of an execution record query."""

    TIMESTAMP = "timestamp"
    COST = "cost"
    EXECUTION_TIME = "executionTime"
    SCORE = "score"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


# =============================================================================
# Health Scorer
# =============================================================================

class HealthStatus(str, Enum):
    """
    Overall health band derived from a 0-100 health score.

    - excellent: score >= 90
    - good: score >= 75
    - fair: score >= 60
    - poor: score >= 40
    - critical: below 40
    """

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class BenchmarkStanding(str, Enum):
    """Agent position relative to the population average (+/-10% band)."""

    ABOVE = "above"
    AVERAGE = "average"
    BELOW = "below"


class RecommendationType(str, Enum):
    COST = "cost"
    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    EFFICIENCY = "efficiency"


class Severity(str, Enum):
    """
    Recommendation severity. Lists are ordered critical -> high -> medium -> low.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        """Higher is more urgent; used for priority-descending sorts."""
        return _PRIORITY_WEIGHT[self]


_PRIORITY_WEIGHT = {
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


class Effort(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Strategy Planner
# =============================================================================

class CampaignGoalType(str, Enum):
    """Campaign goal types; each maps to required and optional agents."""

    PRODUCT_LAUNCH = "product_launch"
    SEASONAL_PROMO = "seasonal_promo"
    RETARGETING = "retargeting"
    B2B_OUTREACH = "b2b_outreach"
    BRAND_AWARENESS = "brand_awareness"
    LEAD_GENERATION = "lead_generation"

    @property
    def display_name(self) -> str:
        return self.value.replace('_', ' ').title()


class AudienceSegment(str, Enum):
    ENTERPRISE = "enterprise"
    SMB = "smb"
    AGENCIES = "agencies"
    ECOMMERCE = "ecommerce"
    SAAS = "saas"
    CONSUMER = "consumer"


class Channel(str, Enum):
    """Delivery channels a campaign may request; each maps to one agent."""

    EMAIL = "email"
    SOCIAL = "social"
    ADS = "ads"
    CONTENT = "content"
    SEO = "seo"
    OUTREACH = "outreach"
    WHATSAPP = "whatsapp"


class PipelineStage(str, Enum):
    """
    Pipeline stages in execution order.

    Stages run sequentially; actions inside one stage may run in parallel.
    """

    RESEARCH = "Research"
    STRATEGY = "Strategy"
    CONTENT = "Content"
    OPTIMIZATION = "Optimization"
    CREATIVE = "Creative"
    EXECUTION = "Execution"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER = {stage: index for index, stage in enumerate(PipelineStage)}


class SelectionCriteria(str, Enum):
    PERFORMANCE = "performance"
    COST = "cost"
    BALANCED = "balanced"


class BrandComplianceLevel(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    FLEXIBLE = "flexible"


class StrategyStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# =============================================================================
# Significance Engine
# =============================================================================

class ExperimentStatus(str, Enum):
    """
    Experiment lifecycle: draft -> running -> {paused, completed, winner_declared}.

    A paused experiment may resume to running.
    """

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    WINNER_DECLARED = "winner_declared"


class VariantStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    WINNER = "winner"
    LOSER = "loser"


class PrimaryMetric(str, Enum):
    """Metric used to rank variants. All rates are fractions of impressions."""

    OPEN_RATE = "open_rate"
    CLICK_RATE = "click_rate"
    CONVERSION_RATE = "conversion_rate"
    REVENUE = "revenue"


class TestAction(str, Enum):
    """Recommendation issued for an experiment after each evaluation."""

    __test__ = False

    DECLARE_WINNER = "declare_winner"
    CONTINUE = "continue"
    STOP_TEST = "stop_test"
