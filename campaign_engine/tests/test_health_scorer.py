"""
Tests for the Health Scorer.

Test Classes:
- TestHealthScore: score formula, clamping and health bands
- TestTrendDirection: half-vs-half trend classification
- TestRecommendations: benchmark breaches, severity and ordering
- TestPopulationComparison: +/-10% standing against the population
- TestHealthScorerService: per-agent profiles and the system roll-up
"""

from datetime import date, timedelta
from typing import List

import pytest

from campaign_engine.models.enums import (
    BenchmarkStanding,
    HealthStatus,
    RecommendationType,
    Severity,
    TrendDirection,
)
from campaign_engine.models.schemas import AgentMetricsWindow, DailyPoint
from campaign_engine.services.health_scorer import (
    HealthScorer,
    agent_display_name,
    calculate_health_score,
    classify_health,
    compare_to_population,
    generate_recommendations,
    trend_direction,
)
from campaign_engine.services.ledger import ExecutionLedger
from campaign_engine.services.record_store import InMemoryRecordStore
from campaign_engine.tests.conftest import failing_runs, healthy_runs


def _window(
    agent_id: str = 'content-agent',
    *,
    runs: int = 100,
    success_rate: float = 95.0,
    cost: float = 0.02,
    time_ms: float = 2000,
    tokens: float = 300,
    quality=None,
) -> AgentMetricsWindow:
    return AgentMetricsWindow(
        agentId=agent_id,
        windowDays=30,
        totalRuns=runs,
        successfulRuns=round(runs * success_rate / 100),
        failedRuns=runs - round(runs * success_rate / 100),
        successRate=success_rate,
        averageCost=cost,
        averageTokens=tokens,
        averageExecutionTimeMs=time_ms,
        averageQualityScore=quality,
        totalCost=cost * runs,
        totalTokens=int(tokens * runs),
    )


def _series(values: List[float]) -> List[DailyPoint]:
    start = date(2026, 3, 1)
    return [DailyPoint(date=start + timedelta(days=i), value=v) for i, v in enumerate(values)]


class TestHealthScore:

    def test_perfect_agent_scores_100(self) -> None:
        metrics = _window(success_rate=98, cost=0.01, time_ms=800, tokens=100)

        assert calculate_health_score(metrics) == 100

    def test_struggling_agent_is_critical(self) -> None:
        metrics = _window(success_rate=60, cost=0.5, time_ms=40000, tokens=5000)

        score = calculate_health_score(metrics)

        # 100 - 12 (success) - 30 (cost cap) - 20 (latency cap) - 10 (token cap)
        assert score == 28
        assert classify_health(score) == HealthStatus.CRITICAL

    def test_score_never_negative(self) -> None:
        metrics = _window(success_rate=0, cost=10, time_ms=10**6, tokens=10**6)

        assert calculate_health_score(metrics) == 0

    def test_success_penalty_alone(self) -> None:
        metrics = _window(success_rate=80, cost=0.01, time_ms=800, tokens=100)

        assert calculate_health_score(metrics) == 96

    @pytest.mark.parametrize("score,expected", [
        (95, HealthStatus.EXCELLENT),
        (90, HealthStatus.EXCELLENT),
        (75, HealthStatus.GOOD),
        (74, HealthStatus.FAIR),
        (60, HealthStatus.FAIR),
        (40, HealthStatus.POOR),
        (39, HealthStatus.CRITICAL),
    ])
    def test_health_bands(self, score: int, expected: HealthStatus) -> None:
        assert classify_health(score) == expected

    def test_display_name(self) -> None:
        assert agent_display_name('brand-voice-agent') == 'Brand Voice Agent'


class TestTrendDirection:

    def test_flat_series_is_stable(self) -> None:
        assert trend_direction(_series([1.0] * 10)) == TrendDirection.STABLE

    def test_small_change_is_stable(self) -> None:
        assert trend_direction(_series([100] * 5 + [103] * 5)) == TrendDirection.STABLE

    def test_rising_success_is_improving(self) -> None:
        assert trend_direction(_series([70] * 5 + [90] * 5)) == TrendDirection.IMPROVING

    def test_rising_cost_is_declining(self) -> None:
        series = _series([0.1] * 5 + [0.2] * 5)

        assert trend_direction(series, lower_is_better=True) == TrendDirection.DECLINING

    def test_falling_latency_is_improving(self) -> None:
        series = _series([5000] * 5 + [2000] * 5)

        assert trend_direction(series, lower_is_better=True) == TrendDirection.IMPROVING

    def test_activity_starting_mid_window(self) -> None:
        series = _series([0] * 5 + [0.3] * 5)

        assert trend_direction(series, lower_is_better=True) == TrendDirection.DECLINING

    def test_all_zero_series_is_stable(self) -> None:
        assert trend_direction(_series([0] * 30)) == TrendDirection.STABLE

    def test_single_point_is_stable(self) -> None:
        assert trend_direction([5.0]) == TrendDirection.STABLE


class TestRecommendations:

    def test_no_runs_no_recommendations(self) -> None:
        metrics = _window(runs=0, success_rate=0, cost=0, time_ms=0, tokens=0)

        assert generate_recommendations(metrics) == []

    def test_healthy_agent_has_none(self) -> None:
        assert generate_recommendations(_window()) == []

    def test_each_breach_produces_one_recommendation(self) -> None:
        metrics = _window(success_rate=75, cost=0.15, time_ms=20000, tokens=1500)

        recommendations = generate_recommendations(metrics)

        assert {r.type for r in recommendations} == {
            RecommendationType.COST,
            RecommendationType.PERFORMANCE,
            RecommendationType.RELIABILITY,
            RecommendationType.EFFICIENCY,
        }
        assert all(r.severity == Severity.HIGH for r in recommendations)
        assert all(len(r.suggestedActions) == 3 for r in recommendations)

    def test_beyond_poor_escalates_to_critical(self) -> None:
        metrics = _window(cost=0.4)

        recommendations = generate_recommendations(metrics)

        assert len(recommendations) == 1
        assert recommendations[0].severity == Severity.CRITICAL
        assert recommendations[0].dataSupport.currentValue == pytest.approx(0.4)
        assert recommendations[0].dataSupport.benchmarkValue == pytest.approx(0.05)

    def test_sorted_most_severe_first(self) -> None:
        metrics = _window(success_rate=50, cost=0.15)

        recommendations = generate_recommendations(metrics)

        assert recommendations[0].type == RecommendationType.RELIABILITY
        assert recommendations[0].severity == Severity.CRITICAL
        assert recommendations[1].severity == Severity.HIGH

    def test_impact_text_reflects_gap(self) -> None:
        metrics = _window(cost=0.2, runs=100)

        recommendation = generate_recommendations(metrics)[0]

        # (0.20 - 0.05) / 0.20 = 75% saving, $15 over 100 runs
        assert '75%' in recommendation.expectedImpact
        assert '$15.00' in recommendation.expectedImpact


class TestPopulationComparison:

    def test_empty_population_is_average(self) -> None:
        comparison = compare_to_population(_window(), [])

        assert comparison.cost == BenchmarkStanding.AVERAGE
        assert comparison.reliability == BenchmarkStanding.AVERAGE

    def test_cheaper_and_faster_is_above(self) -> None:
        agent = _window('a', cost=0.01, time_ms=1000, success_rate=99)
        population = [agent, _window('b', cost=0.05, time_ms=4000, success_rate=80)]

        comparison = compare_to_population(agent, population)

        assert comparison.cost == BenchmarkStanding.ABOVE
        assert comparison.speed == BenchmarkStanding.ABOVE
        assert comparison.reliability == BenchmarkStanding.ABOVE

    def test_within_band_is_average(self) -> None:
        agent = _window('a', cost=0.05)
        population = [agent, _window('b', cost=0.052)]

        assert compare_to_population(agent, population).cost == BenchmarkStanding.AVERAGE

    def test_accuracy_uses_quality_baseline(self) -> None:
        agent = _window('a', quality=90)

        assert compare_to_population(agent, [agent]).accuracy == BenchmarkStanding.ABOVE


class TestHealthScorerService:

    @pytest.mark.asyncio
    async def test_analyze_healthy_agent(self, scorer: HealthScorer) -> None:
        profile = await scorer.analyze_agent('content-agent', 30)

        assert profile.healthScore == 100
        assert profile.overallHealth == HealthStatus.EXCELLENT
        assert profile.recommendations == []
        assert profile.agentName == 'Content Agent'
        assert profile.benchmarkComparison.cost == BenchmarkStanding.ABOVE

    @pytest.mark.asyncio
    async def test_analyze_struggling_agent(self, scorer: HealthScorer) -> None:
        profile = await scorer.analyze_agent('ad-agent', 30)

        assert profile.overallHealth == HealthStatus.CRITICAL
        assert profile.recommendations[0].severity == Severity.CRITICAL
        assert profile.benchmarkComparison.reliability == BenchmarkStanding.BELOW

    @pytest.mark.asyncio
    async def test_unknown_agent_has_empty_profile(self, scorer: HealthScorer) -> None:
        profile = await scorer.analyze_agent('ghost-agent', 30)

        assert profile.metrics.totalRuns == 0
        assert profile.recommendations == []

    @pytest.mark.asyncio
    async def test_system_analysis(self, scorer: HealthScorer) -> None:
        analysis = await scorer.analyze_system(30)

        assert analysis.totalAgents == 2
        assert analysis.topPerformers[0].agentId == 'content-agent'
        assert [u.agentId for u in analysis.underperformers] == ['ad-agent']
        assert 'Low Success Rate' in analysis.underperformers[0].issues
        assert all(issue.agentId == 'ad-agent' for issue in analysis.criticalIssues)
        assert all(issue.urgency == 'immediate' for issue in analysis.criticalIssues)
        assert analysis.systemRecommendations == []

    @pytest.mark.asyncio
    async def test_system_cost_recommendation_needs_two_agents(self, clock, fast_retry) -> None:
        records = failing_runs('ad-agent') + failing_runs('outreach-agent') + healthy_runs('seo-agent')
        ledger = ExecutionLedger(InMemoryRecordStore(records), retry_policy=fast_retry, clock=clock)

        analysis = await HealthScorer(ledger).analyze_system(30)

        cost = [r for r in analysis.systemRecommendations if r.type == RecommendationType.COST]
        assert len(cost) == 1
        # 20 runs x $0.50 per agent, two agents, 30% of spend
        assert '$6.00' in cost[0].expectedImpact

    @pytest.mark.asyncio
    async def test_system_analysis_of_empty_ledger(self, ledger: ExecutionLedger) -> None:
        analysis = await HealthScorer(ledger).analyze_system(30)

        assert analysis.totalAgents == 0
        assert analysis.averageHealthScore == 0
        assert analysis.costTrend == TrendDirection.STABLE
