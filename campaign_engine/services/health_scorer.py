"""
Agent Health Scorer.

Turns ledger aggregates into a 0-100 health score per agent, a health band,
benchmark-driven recommendations, per-dimension trend directions and a
comparison against the population of all agents in the same window.

Health Score Algorithm:
    score = 100 - success_penalty - cost_penalty - latency_penalty - token_penalty

    success_penalty  = max(0, (90 - successRate) * 0.4)                     (40% weight)
    cost_penalty     = min(30, max(0, (avgCost / 0.05 - 1) * 15))           (30% weight)
    latency_penalty  = min(20, max(0, (avgTimeMs / 5000 - 1) * 10))         (20% weight)
    token_penalty    = min(10, max(0, (avgTokens / 500 - 1) * 5))           (10% weight)

    The result is rounded and clamped to [0, 100].

Health Bands:
    excellent >= 90, good >= 75, fair >= 60, poor >= 40, critical below 40

Recommendations:
    One per benchmark breach (value worse than the `fair` cut point). Severity
    is high, escalating to critical once the value is worse than `poor`.
    Returned sorted critical -> high -> medium -> low.

Trend Direction:
    Mean of the first half of a daily series vs the mean of the second half.
    A relative change under 5% is stable. For lower-is-better metrics (cost,
    latency) a rise means declining.

Dependencies:
    - numpy: series means
    - campaign_engine.services.ledger: metrics windows
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from campaign_engine.models.enums import (
    BenchmarkStanding,
    Effort,
    HealthStatus,
    Priority,
    RecommendationType,
    Severity,
    TrendDirection,
)
from campaign_engine.models.schemas import (
    AgentMetricsWindow,
    BenchmarkComparison,
    CriticalIssue,
    DataSupport,
    DailyPoint,
    HealthProfile,
    Recommendation,
    SuggestedAction,
    SystemAnalysis,
    TopPerformer,
    TrendSummary,
    Underperformer,
)
from campaign_engine.services.ledger import ExecutionLedger

logger = logging.getLogger(__name__)


# =============================================================================
# Benchmarks
# =============================================================================

@dataclass(frozen=True)
class Benchmark:
    """Cut points for one metric, from best to worst."""

    excellent: float
    good: float
    fair: float
    poor: float


COST_BENCHMARK = Benchmark(excellent=0.01, good=0.05, fair=0.10, poor=0.25)
LATENCY_BENCHMARK = Benchmark(excellent=1000, good=5000, fair=15000, poor=30000)
SUCCESS_RATE_BENCHMARK = Benchmark(excellent=95, good=90, fair=80, poor=70)
TOKEN_BENCHMARK = Benchmark(excellent=100, good=500, fair=1000, poor=2000)

# Penalty weights (maximum points each dimension can remove)
SUCCESS_PENALTY_FACTOR: float = 0.4
COST_PENALTY_SLOPE: float = 15.0
COST_PENALTY_CAP: float = 30.0
LATENCY_PENALTY_SLOPE: float = 10.0
LATENCY_PENALTY_CAP: float = 20.0
TOKEN_PENALTY_SLOPE: float = 5.0
TOKEN_PENALTY_CAP: float = 10.0

# Relative change below which a series is considered stable
TREND_STABILITY_THRESHOLD: float = 0.05

# Tolerance band for population comparison
POPULATION_TOLERANCE: float = 0.10

# Quality score treated as "average accuracy" when comparing agents
ACCURACY_BASELINE: float = 75.0

TOP_PERFORMER_COUNT: int = 5

# Number of agents over a benchmark before a system-wide recommendation fires
SYSTEM_RECOMMENDATION_MIN_AGENTS: int = 2

# Share of the over-benchmark agents' spend a system-wide effort could save
SYSTEM_COST_SAVINGS_RATE: float = 0.3


def agent_display_name(agent_id: str) -> str:
    """'brand-voice-agent' -> 'Brand Voice Agent'."""
    return ' '.join(part.capitalize() for part in agent_id.replace('_', '-').split('-') if part)


# =============================================================================
# Scoring
# =============================================================================

def calculate_health_score(metrics: AgentMetricsWindow) -> int:
    """
    Compute the 0-100 health score for one metrics window.

    Args:
        metrics: Aggregated agent metrics; successRate is a percent.

    Returns:
        Integer score clamped to [0, 100].
    """
    success_penalty = max(0.0, (SUCCESS_RATE_BENCHMARK.good - metrics.successRate) * SUCCESS_PENALTY_FACTOR)

    cost_ratio = metrics.averageCost / COST_BENCHMARK.good
    cost_penalty = min(COST_PENALTY_CAP, max(0.0, (cost_ratio - 1) * COST_PENALTY_SLOPE))

    latency_ratio = metrics.averageExecutionTimeMs / LATENCY_BENCHMARK.good
    latency_penalty = min(LATENCY_PENALTY_CAP, max(0.0, (latency_ratio - 1) * LATENCY_PENALTY_SLOPE))

    token_ratio = metrics.averageTokens / TOKEN_BENCHMARK.good
    token_penalty = min(TOKEN_PENALTY_CAP, max(0.0, (token_ratio - 1) * TOKEN_PENALTY_SLOPE))

    score = 100 - success_penalty - cost_penalty - latency_penalty - token_penalty
    return int(max(0, min(100, round(score))))


def classify_health(score: float) -> HealthStatus:
    if score >= 90:
        return HealthStatus.EXCELLENT
    if score >= 75:
        return HealthStatus.GOOD
    if score >= 60:
        return HealthStatus.FAIR
    if score >= 40:
        return HealthStatus.POOR
    return HealthStatus.CRITICAL


def trend_direction(
    series: Sequence[float],
    lower_is_better: bool = False,
    threshold: float = TREND_STABILITY_THRESHOLD,
) -> TrendDirection:
    """
    Classify a series as improving, stable or declining.

    Args:
        series: Values in chronological order (DailyPoints are accepted too).
        lower_is_better: True for cost and latency.
        threshold: Relative change under which the trend is stable.

    Returns:
        TrendDirection. Series shorter than two points are stable.
    """
    values = [p.value if isinstance(p, DailyPoint) else float(p) for p in series]
    if len(values) < 2:
        return TrendDirection.STABLE

    middle = len(values) // 2
    first_mean = float(np.mean(values[:middle]))
    second_mean = float(np.mean(values[middle:]))

    if first_mean == 0:
        if second_mean == 0:
            return TrendDirection.STABLE
        change = float('inf') if second_mean > 0 else float('-inf')
    else:
        change = (second_mean - first_mean) / abs(first_mean)

    if abs(change) < threshold:
        return TrendDirection.STABLE

    rising = change > 0
    if lower_is_better:
        return TrendDirection.DECLINING if rising else TrendDirection.IMPROVING
    return TrendDirection.IMPROVING if rising else TrendDirection.DECLINING


def summarize_trends(metrics: AgentMetricsWindow) -> TrendSummary:
    return TrendSummary(
        cost=trend_direction(metrics.costTrend, lower_is_better=True),
        performance=trend_direction(metrics.executionTimeTrend, lower_is_better=True),
        success=trend_direction(metrics.successRateTrend),
    )


def _standing(value: float, average: float, lower_is_better: bool) -> BenchmarkStanding:
    if average <= 0:
        return BenchmarkStanding.AVERAGE
    ratio = value / average
    if lower_is_better:
        if ratio < 1 - POPULATION_TOLERANCE:
            return BenchmarkStanding.ABOVE
        if ratio > 1 + POPULATION_TOLERANCE:
            return BenchmarkStanding.BELOW
        return BenchmarkStanding.AVERAGE
    if ratio > 1 + POPULATION_TOLERANCE:
        return BenchmarkStanding.ABOVE
    if ratio < 1 - POPULATION_TOLERANCE:
        return BenchmarkStanding.BELOW
    return BenchmarkStanding.AVERAGE


def compare_to_population(
    metrics: AgentMetricsWindow,
    population: Iterable[AgentMetricsWindow],
) -> BenchmarkComparison:
    """
    Position an agent against the population average with a +/-10% band.

    Cost and speed are lower-is-better; reliability is higher-is-better.
    Accuracy compares the agent's average quality score against a fixed
    baseline of 75 and is 'average' when the agent has no scored runs.
    """
    population = [m for m in population if m.totalRuns > 0]
    if not population:
        return BenchmarkComparison()

    avg_cost = float(np.mean([m.averageCost for m in population]))
    avg_time = float(np.mean([m.averageExecutionTimeMs for m in population]))
    avg_success = float(np.mean([m.successRate for m in population]))

    accuracy = BenchmarkStanding.AVERAGE
    if metrics.averageQualityScore is not None:
        accuracy = _standing(metrics.averageQualityScore, ACCURACY_BASELINE, lower_is_better=False)

    return BenchmarkComparison(
        cost=_standing(metrics.averageCost, avg_cost, lower_is_better=True),
        speed=_standing(metrics.averageExecutionTimeMs, avg_time, lower_is_better=True),
        reliability=_standing(metrics.successRate, avg_success, lower_is_better=False),
        accuracy=accuracy,
    )


# =============================================================================
# Recommendations
# =============================================================================

def _actions(*entries: tuple) -> List[SuggestedAction]:
    return [SuggestedAction(action=a, priority=p, effort=e) for a, p, e in entries]


def generate_recommendations(
    metrics: AgentMetricsWindow,
    trends: Optional[TrendSummary] = None,
) -> List[Recommendation]:
    """
    Produce one Recommendation per benchmark breach, most severe first.

    Agents with no runs in the window have nothing to recommend.
    """
    if metrics.totalRuns == 0:
        return []

    trends = trends or summarize_trends(metrics)
    days = metrics.windowDays
    recommendations: List[Recommendation] = []

    avg_cost = metrics.averageCost
    if avg_cost > COST_BENCHMARK.fair:
        excess_share = (avg_cost - COST_BENCHMARK.good) / avg_cost * 100
        savings = (avg_cost - COST_BENCHMARK.good) * metrics.totalRuns
        recommendations.append(Recommendation(
            type=RecommendationType.COST,
            severity=Severity.CRITICAL if avg_cost > COST_BENCHMARK.poor else Severity.HIGH,
            title="High Cost Per Execution",
            description=(
                f"Average cost per run is ${avg_cost:.3f}, "
                f"{avg_cost / COST_BENCHMARK.good:.1f}x the ${COST_BENCHMARK.good:.2f} benchmark."
            ),
            expectedImpact=(
                f"Reaching the benchmark would cut cost per run by {excess_share:.0f}% "
                f"(about ${savings:.2f} over {days} days)."
            ),
            suggestedActions=_actions(
                ("Optimize prompts to reduce token usage", Priority.HIGH, Effort.LOW),
                ("Route simple tasks to a cheaper model", Priority.HIGH, Effort.MEDIUM),
                ("Cache responses for repeated inputs", Priority.MEDIUM, Effort.MEDIUM),
            ),
            dataSupport=DataSupport(
                metric="costPerRun",
                currentValue=avg_cost,
                benchmarkValue=COST_BENCHMARK.good,
                trend=trends.cost,
            ),
        ))

    avg_time = metrics.averageExecutionTimeMs
    if avg_time > LATENCY_BENCHMARK.fair:
        speedup = (avg_time - LATENCY_BENCHMARK.good) / avg_time * 100
        recommendations.append(Recommendation(
            type=RecommendationType.PERFORMANCE,
            severity=Severity.CRITICAL if avg_time > LATENCY_BENCHMARK.poor else Severity.HIGH,
            title="Slow Execution Time",
            description=(
                f"Average execution time is {avg_time / 1000:.1f}s against a "
                f"{LATENCY_BENCHMARK.good / 1000:.0f}s benchmark."
            ),
            expectedImpact=f"Reaching the benchmark would make runs {speedup:.0f}% faster.",
            suggestedActions=_actions(
                ("Parallelize independent processing steps", Priority.HIGH, Effort.MEDIUM),
                ("Cache frequent requests", Priority.MEDIUM, Effort.LOW),
                ("Reduce prompt size and output length", Priority.MEDIUM, Effort.LOW),
            ),
            dataSupport=DataSupport(
                metric="executionTimeMs",
                currentValue=avg_time,
                benchmarkValue=LATENCY_BENCHMARK.good,
                trend=trends.performance,
            ),
        ))

    success_rate = metrics.successRate
    if success_rate < SUCCESS_RATE_BENCHMARK.fair:
        gap = SUCCESS_RATE_BENCHMARK.good - success_rate
        avoided = round(gap / 100 * metrics.totalRuns)
        recommendations.append(Recommendation(
            type=RecommendationType.RELIABILITY,
            severity=Severity.CRITICAL if success_rate < SUCCESS_RATE_BENCHMARK.poor else Severity.HIGH,
            title="Low Success Rate",
            description=(
                f"Success rate is {success_rate:.1f}% against a "
                f"{SUCCESS_RATE_BENCHMARK.good:.0f}% benchmark."
            ),
            expectedImpact=(
                f"Closing the {gap:.1f} point gap would avoid about {avoided} failed runs "
                f"every {days} days."
            ),
            suggestedActions=_actions(
                ("Review recent failure logs for recurring errors", Priority.HIGH, Effort.LOW),
                ("Validate inputs before invocation", Priority.HIGH, Effort.MEDIUM),
                ("Retry transient failures with backoff", Priority.MEDIUM, Effort.LOW),
            ),
            dataSupport=DataSupport(
                metric="successRate",
                currentValue=success_rate,
                benchmarkValue=SUCCESS_RATE_BENCHMARK.good,
                trend=trends.success,
            ),
        ))

    avg_tokens = metrics.averageTokens
    if avg_tokens > TOKEN_BENCHMARK.fair:
        reduction = (avg_tokens - TOKEN_BENCHMARK.good) / avg_tokens * 100
        recommendations.append(Recommendation(
            type=RecommendationType.EFFICIENCY,
            severity=Severity.CRITICAL if avg_tokens > TOKEN_BENCHMARK.poor else Severity.HIGH,
            title="Inefficient Token Usage",
            description=(
                f"Runs use {avg_tokens:.0f} tokens on average against a "
                f"{TOKEN_BENCHMARK.good:.0f}-token benchmark."
            ),
            expectedImpact=f"Reaching the benchmark would cut token usage by {reduction:.0f}%.",
            suggestedActions=_actions(
                ("Trim redundant context from prompts", Priority.HIGH, Effort.LOW),
                ("Summarize long inputs before invocation", Priority.MEDIUM, Effort.MEDIUM),
                ("Cap output length for routine tasks", Priority.MEDIUM, Effort.LOW),
            ),
            dataSupport=DataSupport(
                metric="tokensPerRun",
                currentValue=avg_tokens,
                benchmarkValue=TOKEN_BENCHMARK.good,
                trend=trends.cost,
            ),
        ))

    recommendations.sort(key=lambda r: r.severity.rank)
    return recommendations


def build_health_profile(
    metrics: AgentMetricsWindow,
    population: Iterable[AgentMetricsWindow],
    generated_at,
) -> HealthProfile:
    """Assemble the HealthProfile for one metrics window (pure)."""
    score = calculate_health_score(metrics)
    trends = summarize_trends(metrics)
    return HealthProfile(
        agentId=metrics.agentId,
        agentName=agent_display_name(metrics.agentId),
        windowDays=metrics.windowDays,
        healthScore=score,
        overallHealth=classify_health(score),
        metrics=metrics,
        recommendations=generate_recommendations(metrics, trends),
        trends=trends,
        benchmarkComparison=compare_to_population(metrics, population),
        generatedAt=generated_at,
    )


# =============================================================================
# Service
# =============================================================================

class HealthScorer:
    """Health analysis over an ExecutionLedger."""

    def __init__(self, ledger: ExecutionLedger):
        self._ledger = ledger

    async def analyze_agent(
        self,
        agent_id: str,
        window_days: Optional[int] = None,
        population: Optional[Dict[str, AgentMetricsWindow]] = None,
    ) -> HealthProfile:
        """
        Build the HealthProfile of one agent.

        Args:
            agent_id: Agent to analyze.
            window_days: Trailing window; the ledger default when omitted.
            population: Pre-fetched population metrics for the same window.
                Callers analyzing many agents pass it to avoid re-reading.
        """
        window_days = window_days or self._ledger.default_window_days
        metrics = await self._ledger.metrics(agent_id, window_days)
        if population is None:
            population = await self._ledger.population_metrics(window_days)
        return build_health_profile(metrics, population.values(), self._ledger.now())

    async def analyze_system(self, window_days: Optional[int] = None) -> SystemAnalysis:
        """
        Analyze every agent seen in the window.

        Read-only: abandoning the call part-way leaves nothing behind.
        """
        window_days = window_days or self._ledger.default_window_days
        population = await self._ledger.population_metrics(window_days)
        now = self._ledger.now()

        profiles = [
            build_health_profile(metrics, population.values(), now)
            for metrics in population.values()
        ]
        return summarize_system(profiles, window_days, now)


def summarize_system(profiles: List[HealthProfile], window_days: int, generated_at) -> SystemAnalysis:
    """Roll individual profiles up into a SystemAnalysis (pure)."""
    ranked = sorted(profiles, key=lambda p: p.healthScore, reverse=True)

    top_performers = [
        TopPerformer(agentId=p.agentId, agentName=p.agentName, healthScore=p.healthScore)
        for p in ranked[:TOP_PERFORMER_COUNT]
    ]

    underperformers = [
        Underperformer(
            agentId=p.agentId,
            agentName=p.agentName,
            healthScore=p.healthScore,
            overallHealth=p.overallHealth,
            issues=[
                r.title for r in p.recommendations
                if r.severity in (Severity.CRITICAL, Severity.HIGH)
            ],
        )
        for p in ranked
        if p.overallHealth in (HealthStatus.POOR, HealthStatus.CRITICAL)
    ]

    critical_issues = [
        CriticalIssue(agentId=p.agentId, issue=r.title, impact=r.expectedImpact)
        for p in ranked
        for r in p.recommendations
        if r.severity == Severity.CRITICAL
    ]

    total_cost = float(sum(p.metrics.totalCost for p in profiles))
    average_score = float(np.mean([p.healthScore for p in profiles])) if profiles else 0.0
    average_success = float(np.mean([p.metrics.successRate for p in profiles])) if profiles else 0.0

    improving = sum(1 for p in profiles if p.trends.cost == TrendDirection.IMPROVING)
    declining = sum(1 for p in profiles if p.trends.cost == TrendDirection.DECLINING)
    if improving > declining:
        cost_trend = TrendDirection.IMPROVING
    elif declining > improving:
        cost_trend = TrendDirection.DECLINING
    else:
        cost_trend = TrendDirection.STABLE

    analysis = SystemAnalysis(
        windowDays=window_days,
        totalAgents=len(profiles),
        totalCost=total_cost,
        averageSuccessRate=average_success,
        averageHealthScore=average_score,
        overallHealth=classify_health(average_score),
        costTrend=cost_trend,
        topPerformers=top_performers,
        underperformers=underperformers,
        criticalIssues=critical_issues,
        systemRecommendations=_system_recommendations(profiles, window_days),
        generatedAt=generated_at,
    )
    logger.info(
        f"System analysis: {analysis.totalAgents} agents, overall {analysis.overallHealth.value}, "
        f"{len(critical_issues)} critical issues"
    )
    return analysis


def _system_recommendations(profiles: List[HealthProfile], window_days: int) -> List[Recommendation]:
    recommendations: List[Recommendation] = []

    costly = [p for p in profiles if p.metrics.averageCost > COST_BENCHMARK.fair]
    if len(costly) >= SYSTEM_RECOMMENDATION_MIN_AGENTS:
        costly_spend = sum(p.metrics.totalCost for p in costly)
        savings = costly_spend * SYSTEM_COST_SAVINGS_RATE
        recommendations.append(Recommendation(
            type=RecommendationType.COST,
            severity=Severity.HIGH,
            title="System-Wide Cost Optimization Opportunity",
            description=(
                f"{len(costly)} agents exceed the ${COST_BENCHMARK.fair:.2f} cost-per-run threshold: "
                f"{', '.join(p.agentName for p in costly)}."
            ),
            expectedImpact=(
                f"A coordinated optimization could save about ${savings:.2f} "
                f"every {window_days} days."
            ),
            suggestedActions=_actions(
                ("Share prompt optimizations across the affected agents", Priority.HIGH, Effort.MEDIUM),
                ("Introduce a response cache shared by all agents", Priority.HIGH, Effort.HIGH),
                ("Set per-agent cost budgets with alerts", Priority.MEDIUM, Effort.LOW),
            ),
            dataSupport=DataSupport(
                metric="agentsOverCostThreshold",
                currentValue=float(len(costly)),
                benchmarkValue=0.0,
                trend=TrendDirection.STABLE,
            ),
        ))

    unreliable = [p for p in profiles if p.metrics.successRate < SUCCESS_RATE_BENCHMARK.fair]
    if len(unreliable) >= SYSTEM_RECOMMENDATION_MIN_AGENTS:
        recommendations.append(Recommendation(
            type=RecommendationType.RELIABILITY,
            severity=Severity.HIGH,
            title="System-Wide Reliability Review",
            description=(
                f"{len(unreliable)} agents succeed less than "
                f"{SUCCESS_RATE_BENCHMARK.fair:.0f}% of the time."
            ),
            expectedImpact="Shared failure causes (inputs, upstream limits) can be fixed once for every agent.",
            suggestedActions=_actions(
                ("Group recent failures by error message across agents", Priority.HIGH, Effort.LOW),
                ("Check shared upstream rate limits and quotas", Priority.HIGH, Effort.LOW),
                ("Add a common retry wrapper for transient errors", Priority.MEDIUM, Effort.MEDIUM),
            ),
            dataSupport=DataSupport(
                metric="agentsBelowReliabilityThreshold",
                currentValue=float(len(unreliable)),
                benchmarkValue=0.0,
                trend=TrendDirection.STABLE,
            ),
        ))

    return recommendations
