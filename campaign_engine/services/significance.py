"""
Significance Engine.

Runs A/B experiments on campaign variants: accumulates per-variant metrics,
tests the first variant (control) against the second (treatment) with a
two-proportion z-test on conversion rate, recommends an action, and
declares a winner once the result is significant and the sample size is
reached. Declared winners are kept as ExperimentLearning records so the
Strategy Planner can read them when building future strategies.

Lifecycle:
    draft -> running <-> paused -> completed | winner_declared

The statistics are plain functions at the top of the module; the
SignificanceEngine class owns experiment state, locking and persistence.
"""

import asyncio
import logging
import math
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from campaign_engine.core.errors import (
    ConfigurationError,
    InvalidStateError,
    NoClearWinner,
    NotFoundError,
    ValidationError,
)
from campaign_engine.core.retry import RetryPolicy
from campaign_engine.models.enums import (
    ExperimentStatus,
    PrimaryMetric,
    TestAction,
    VariantStatus,
)
from campaign_engine.models.schemas import (
    ABExperiment,
    ExperimentCreate,
    ExperimentLearning,
    MetricsDelta,
    StatisticalSignificance,
    TestConfig,
    TestRecommendation,
    TestResults,
    TestVariant,
    VariantMetrics,
    VariantPerformance,
)
from campaign_engine.services.experiment_store import ExperimentRepository
from campaign_engine.services.ledger import utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

Z_CRITICAL_VALUES: Dict[float, float] = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}
DEFAULT_Z_CRITICAL: float = 1.96

# n = 16 / mde^2 per variant (80% power, alpha 0.05 rule of thumb)
SAMPLE_SIZE_FACTOR: float = 16.0

STRONG_LIFT_PERCENT: float = 10.0
WEAK_LIFT_PERCENT: float = -5.0

NEAR_SIGNIFICANCE_P: float = 0.1
FAST_SIGNIFICANCE_FACTOR: float = 0.5
SLOW_SIGNIFICANCE_FACTOR: float = 1.5

CONFIDENCE_INSUFFICIENT_SAMPLE: float = 0.5
CONFIDENCE_STOP: float = 0.3
CONFIDENCE_MONITORING: float = 0.7

TOTAL_ALLOCATION: float = 100.0
MAX_DURATION_REASON: str = "max_duration_reached"

TERMINAL_STATUSES: Tuple[ExperimentStatus, ...] = (
    ExperimentStatus.COMPLETED,
    ExperimentStatus.WINNER_DECLARED,
)


# =============================================================================
# Statistics
# =============================================================================

def normal_cdf(x: float) -> float:
    """Standard normal CDF via the error function."""
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def z_critical(confidence_level: float) -> float:
    """Two-sided critical value for 90/95/99% confidence; 1.96 otherwise."""
    for level, value in Z_CRITICAL_VALUES.items():
        if math.isclose(confidence_level, level, abs_tol=1e-9):
            return value
    return DEFAULT_Z_CRITICAL


def required_sample_size(minimum_detectable_effect: float) -> int:
    """Impressions needed per variant to detect the given effect."""
    return math.ceil(SAMPLE_SIZE_FACTOR / (minimum_detectable_effect ** 2))


def two_proportion_z_test(
    control: VariantMetrics,
    treatment: VariantMetrics,
    config: TestConfig,
) -> StatisticalSignificance:
    """
    Pooled two-proportion z-test on conversion rate.

    A variant with no impressions, or a pooled rate of 0 or 1, yields a
    zero standard error; the test then reports p = 1 and not significant.
    """
    n1, n2 = control.impressions, treatment.impressions
    p1, p2 = control.conversionRate, treatment.conversionRate
    sample_reached = min(n1, n2) >= config.minSampleSize

    if n1 == 0 or n2 == 0:
        return StatisticalSignificance(
            controlRate=p1,
            treatmentRate=p2,
            sampleSizeReached=sample_reached,
        )

    pooled = (control.conversions + treatment.conversions) / (n1 + n2)
    se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
    diff = p2 - p1
    if se == 0:
        return StatisticalSignificance(
            confidenceInterval=[diff, diff],
            controlRate=p1,
            treatmentRate=p2,
            sampleSizeReached=sample_reached,
        )

    z = diff / se
    p_value = 2 * (1 - normal_cdf(abs(z)))
    z_crit = z_critical(config.confidenceLevel)
    power = normal_cdf(abs(z) - z_crit)

    return StatisticalSignificance(
        isSignificant=p_value < (1 - config.confidenceLevel),
        pValue=p_value,
        zScore=z,
        confidenceInterval=[diff - z_crit * se, diff + z_crit * se],
        controlRate=p1,
        treatmentRate=p2,
        sampleSizeReached=sample_reached,
        powerAchieved=power >= config.statisticalPower,
    )


def metric_value(metrics: VariantMetrics, metric: PrimaryMetric) -> float:
    if metric == PrimaryMetric.OPEN_RATE:
        return metrics.openRate
    if metric == PrimaryMetric.CLICK_RATE:
        return metrics.clickRate
    if metric == PrimaryMetric.REVENUE:
        return metrics.revenue
    return metrics.conversionRate


def compare_variants(
    variants: List[TestVariant],
    metric: PrimaryMetric,
) -> List[VariantPerformance]:
    """
    Rank variants by the primary metric, best first.

    Lift is the percent change against the control (first) variant. The top
    variant is flagged winner only when it strictly beats the runner-up; the
    bottom variant is flagged loser when there are three or more variants.
    """
    if not variants:
        return []

    control_value = metric_value(variants[0].metrics, metric)
    values = [(variant, metric_value(variant.metrics, metric)) for variant in variants]
    # Stable sort keeps declaration order among ties
    ranked = sorted(values, key=lambda item: item[1], reverse=True)

    clear_winner = len(ranked) < 2 or ranked[0][1] > ranked[1][1]
    comparison: List[VariantPerformance] = []
    for rank, (variant, value) in enumerate(ranked, start=1):
        lift = ((value - control_value) / control_value * 100) if control_value > 0 else 0.0
        comparison.append(VariantPerformance(
            variantId=variant.id,
            variantName=variant.name,
            metricValue=value,
            lift=lift,
            rank=rank,
            isWinner=rank == 1 and clear_winner,
            isLoser=len(ranked) >= 3 and rank == len(ranked),
        ))
    return comparison


def has_clear_winner(comparison: List[VariantPerformance]) -> bool:
    return bool(comparison) and comparison[0].isWinner


def estimate_time_to_significance(significance: StatisticalSignificance, config: TestConfig) -> float:
    """Rough minutes until significance, scaled from the planned duration."""
    if significance.pValue < NEAR_SIGNIFICANCE_P:
        return config.duration * FAST_SIGNIFICANCE_FACTOR
    return config.duration * SLOW_SIGNIFICANCE_FACTOR


def build_insights(
    variants: List[TestVariant],
    comparison: List[VariantPerformance],
    significance: StatisticalSignificance,
    config: TestConfig,
) -> List[str]:
    insights: List[str] = []
    control_id = variants[0].id if variants else None

    for performance in comparison:
        if performance.variantId == control_id:
            continue
        if performance.lift > STRONG_LIFT_PERCENT:
            insights.append(
                f"{performance.variantName} shows strong performance with "
                f"{performance.lift:.1f}% lift over control"
            )
        elif performance.lift < WEAK_LIFT_PERCENT:
            insights.append(
                f"{performance.variantName} is underperforming control by "
                f"{abs(performance.lift):.1f}%"
            )

    if not significance.sampleSizeReached:
        smallest = min((v.metrics.impressions for v in variants), default=0)
        insights.append(
            f"Collecting data: {smallest} of {config.minSampleSize} impressions "
            f"in the smallest variant"
        )
    elif significance.isSignificant:
        insights.append(
            f"Result is statistically significant at "
            f"{config.confidenceLevel * 100:.0f}% confidence (p={significance.pValue:.4f})"
        )
    return insights


def recommend_action(
    significance: StatisticalSignificance,
    comparison: List[VariantPerformance],
    time_to_significance: float,
    config: TestConfig,
    total_revenue: float,
) -> TestRecommendation:
    """Apply the recommendation policy in priority order."""
    if significance.isSignificant and significance.sampleSizeReached and has_clear_winner(comparison):
        winner = comparison[0]
        return TestRecommendation(
            action=TestAction.DECLARE_WINNER,
            reason=(
                f"{winner.variantName} is the clear winner with {winner.lift:.1f}% lift "
                f"(p={significance.pValue:.4f})"
            ),
            confidence=1 - significance.pValue,
            expectedLift=winner.lift,
            estimatedRevenue=total_revenue * winner.lift / 100,
        )

    if not significance.sampleSizeReached:
        return TestRecommendation(
            action=TestAction.CONTINUE,
            reason="Minimum sample size not yet reached",
            confidence=CONFIDENCE_INSUFFICIENT_SAMPLE,
        )

    if time_to_significance > config.maxDuration:
        return TestRecommendation(
            action=TestAction.STOP_TEST,
            reason="Significance is not expected within the maximum test duration",
            confidence=CONFIDENCE_STOP,
        )

    return TestRecommendation(
        action=TestAction.CONTINUE,
        reason="Sample size reached; monitoring for significance",
        confidence=CONFIDENCE_MONITORING,
    )


def elapsed_minutes(experiment: ABExperiment, now) -> float:
    if experiment.startedAt is None:
        return 0.0
    end = experiment.completedAt or now
    return max(0.0, (end - experiment.startedAt).total_seconds() / 60)


def evaluate_experiment(experiment: ABExperiment, now) -> TestResults:
    """Recompute the full result set for an experiment from its current metrics."""
    config = experiment.config
    variants = experiment.variants
    significance = two_proportion_z_test(variants[0].metrics, variants[1].metrics, config)
    comparison = compare_variants(variants, config.primaryMetric)
    time_to_significance = estimate_time_to_significance(significance, config)
    total_revenue = sum(v.metrics.revenue for v in variants)
    elapsed = elapsed_minutes(experiment, now)

    return TestResults(
        progress=min(100.0, elapsed / config.duration * 100),
        elapsedMinutes=elapsed,
        significance=significance,
        recommendation=recommend_action(
            significance, comparison, time_to_significance, config, total_revenue
        ),
        performanceComparison=comparison,
        insights=build_insights(variants, comparison, significance, config),
        timeToSignificance=time_to_significance,
        updatedAt=now,
    )


def merge_metrics(metrics: VariantMetrics, delta: MetricsDelta) -> VariantMetrics:
    return VariantMetrics(
        impressions=metrics.impressions + delta.impressions,
        opens=metrics.opens + delta.opens,
        clicks=metrics.clicks + delta.clicks,
        conversions=metrics.conversions + delta.conversions,
        revenue=metrics.revenue + delta.revenue,
        bounces=metrics.bounces + delta.bounces,
    )


def allocate_traffic(allocations: List[Optional[float]]) -> List[float]:
    """
    Resolve variant traffic allocations.

    Unspecified allocations share whatever is left of 100% equally.

    Raises:
        ConfigurationError: The resolved allocations do not sum to 100.
    """
    specified = sum(a for a in allocations if a is not None)
    missing = [i for i, a in enumerate(allocations) if a is None]
    share = (TOTAL_ALLOCATION - specified) / len(missing) if missing else 0.0
    resolved = [share if a is None else a for a in allocations]

    if any(a < 0 for a in resolved) or not math.isclose(sum(resolved), TOTAL_ALLOCATION, abs_tol=1e-6):
        raise ConfigurationError(
            f"Traffic allocations must sum to {TOTAL_ALLOCATION:.0f}, got {sum(resolved):.2f}"
        )
    return resolved


# =============================================================================
# Engine
# =============================================================================

class SignificanceEngine:
    """
    Owns A/B experiment state.

    Every change (metric update, status change, re-evaluation) runs under a
    per-experiment lock and is applied to a copy of the cached experiment.
    The copy replaces the cached one only after the repository save succeeds,
    so a failed save leaves the experiment exactly as it was.

    Completed and winner-declared experiments are dropped from the cache and
    the lock table; later reads load them from the repository.
    """

    def __init__(
        self,
        repository: ExperimentRepository,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable = utc_now,
    ):
        self._repository = repository
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._cache: Dict[str, ABExperiment] = {}
        self._experiment_locks: Dict[str, asyncio.Lock] = {}

    def _experiment_lock(self, test_id: str) -> asyncio.Lock:
        return self._experiment_locks.setdefault(test_id, asyncio.Lock())

    def _forget(self, test_id: str) -> None:
        self._cache.pop(test_id, None)
        self._experiment_locks.pop(test_id, None)

    async def _persist(self, experiment: ABExperiment) -> ABExperiment:
        await self._retry.run('experiments.save', self._repository.save, experiment)
        if experiment.status in TERMINAL_STATUSES:
            self._forget(experiment.id)
        else:
            self._cache[experiment.id] = experiment
        return experiment

    # -------------------------------------------------------------------------
    # Creation and lookup
    # -------------------------------------------------------------------------

    async def create_experiment(self, request: ExperimentCreate) -> ABExperiment:
        """
        Create a draft experiment.

        Raises:
            ValidationError: Missing name/campaign, or fewer than two variants.
            ConfigurationError: Traffic allocations do not sum to 100.
        """
        if not request.campaignId.strip():
            raise ValidationError('campaignId', 'Campaign id is required')
        if not request.name.strip():
            raise ValidationError('name', 'Experiment name is required')
        if len(request.variants) < 2:
            raise ValidationError('variants', 'At least two variants are required')

        allocations = allocate_traffic([v.trafficAllocation for v in request.variants])
        now = self._clock()
        test_id = f"test-{uuid.uuid4().hex}"
        variants = [
            TestVariant(
                id=f"{test_id}-variant-{index}",
                name=variant_in.name or f"Variant {index}",
                trafficAllocation=allocation,
                configuration=dict(variant_in.configuration),
            )
            for index, (variant_in, allocation) in enumerate(zip(request.variants, allocations), start=1)
        ]
        experiment = ABExperiment(
            id=test_id,
            campaignId=request.campaignId,
            name=request.name,
            variants=variants,
            config=request.config,
            createdAt=now,
            updatedAt=now,
        )
        await self._persist(experiment)
        logger.info(f"Created experiment {test_id} with {len(variants)} variants")
        return experiment

    async def get_experiment(self, test_id: str) -> ABExperiment:
        cached = self._cache.get(test_id)
        if cached is not None:
            return cached
        experiment = await self._retry.run('experiments.load', self._repository.load, test_id)
        if experiment is None:
            self._experiment_locks.pop(test_id, None)
            raise NotFoundError('ABExperiment', test_id)
        if experiment.status in TERMINAL_STATUSES:
            self._experiment_locks.pop(test_id, None)
        else:
            self._cache[test_id] = experiment
        return experiment

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        test_id: str,
        allowed_from: Tuple[ExperimentStatus, ...],
        target: ExperimentStatus,
    ) -> ABExperiment:
        """Return a copy of the experiment moved to `target`; nothing is saved yet."""
        current = await self.get_experiment(test_id)
        if current.status not in allowed_from:
            raise InvalidStateError(
                f"Experiment {test_id} cannot move from {current.status.value} to {target.value}"
            )
        return current.model_copy(deep=True, update={'status': target, 'updatedAt': self._clock()})

    async def start(self, test_id: str) -> ABExperiment:
        """Start a draft experiment, raising minSampleSize to what the MDE requires."""
        async with self._experiment_lock(test_id):
            experiment = await self._transition(
                test_id, (ExperimentStatus.DRAFT,), ExperimentStatus.RUNNING
            )
            config = experiment.config
            needed = required_sample_size(config.minimumDetectableEffect)
            if needed > config.minSampleSize:
                experiment.config = config.model_copy(update={'minSampleSize': needed})
            experiment.startedAt = self._clock()
            experiment.results = evaluate_experiment(experiment, self._clock())
            await self._persist(experiment)
        logger.info(
            f"Started experiment {test_id} (min sample {experiment.config.minSampleSize} per variant)"
        )
        return experiment

    async def pause(self, test_id: str) -> ABExperiment:
        async with self._experiment_lock(test_id):
            experiment = await self._transition(
                test_id, (ExperimentStatus.RUNNING,), ExperimentStatus.PAUSED
            )
            await self._persist(experiment)
        logger.info(f"Paused experiment {test_id}")
        return experiment

    async def resume(self, test_id: str) -> ABExperiment:
        async with self._experiment_lock(test_id):
            experiment = await self._transition(
                test_id, (ExperimentStatus.PAUSED,), ExperimentStatus.RUNNING
            )
            await self._persist(experiment)
        logger.info(f"Resumed experiment {test_id}")
        return experiment

    async def stop(self, test_id: str, reason: str = "manual") -> ABExperiment:
        async with self._experiment_lock(test_id):
            return await self._stop(await self.get_experiment(test_id), reason)

    async def _stop(self, current: ABExperiment, reason: str) -> ABExperiment:
        if current.status not in (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED):
            raise InvalidStateError(
                f"Experiment {current.id} cannot be stopped from {current.status.value}"
            )
        now = self._clock()
        experiment = current.model_copy(deep=True)
        experiment.status = ExperimentStatus.COMPLETED
        experiment.stopReason = reason
        experiment.completedAt = now
        experiment.updatedAt = now
        experiment.results = evaluate_experiment(experiment, now)
        await self._persist(experiment)
        logger.info(f"Stopped experiment {experiment.id}: {reason}")
        return experiment

    # -------------------------------------------------------------------------
    # Metrics and results
    # -------------------------------------------------------------------------

    async def update_metrics(self, test_id: str, variant_id: str, delta: MetricsDelta) -> ABExperiment:
        """
        Add a metrics delta to one variant and re-evaluate the experiment.

        Updates for experiments that are not running are dropped with a log
        line. With autoWinner on, a decisive result declares the winner and
        an experiment past maxDuration is stopped. If the save fails the
        delta is not applied, so the caller can resend it.

        Raises:
            NotFoundError: Unknown experiment or variant.
            DependencyUnavailable: The repository save failed.
        """
        async with self._experiment_lock(test_id):
            current = await self.get_experiment(test_id)
            index = next((i for i, v in enumerate(current.variants) if v.id == variant_id), None)
            if index is None:
                raise NotFoundError('TestVariant', variant_id)
            if current.status != ExperimentStatus.RUNNING:
                logger.info(
                    f"Ignoring metrics for {test_id}/{variant_id}: experiment is {current.status.value}"
                )
                return current

            experiment = current.model_copy(deep=True)
            variant = experiment.variants[index]
            variant.metrics = merge_metrics(variant.metrics, delta)
            return await self._evaluate(experiment, auto_winner=experiment.config.autoWinner)

    async def _evaluate(self, experiment: ABExperiment, auto_winner: bool) -> ABExperiment:
        """
        Recompute results on a working copy and apply completion rules.

        Caller holds the experiment lock and owns `experiment`.
        """
        now = self._clock()
        results = evaluate_experiment(experiment, now)
        experiment.results = results
        experiment.updatedAt = now

        if results.elapsedMinutes > experiment.config.maxDuration:
            return await self._stop(experiment, MAX_DURATION_REASON)
        if auto_winner and results.recommendation.action == TestAction.DECLARE_WINNER:
            return await self._apply_winner(experiment, results)
        return await self._persist(experiment)

    async def get_results(self, test_id: str) -> TestResults:
        """Current results; recomputed for active experiments, frozen once completed."""
        experiment = await self.get_experiment(test_id)
        if experiment.results is not None and experiment.status in TERMINAL_STATUSES:
            return experiment.results
        return evaluate_experiment(experiment, self._clock())

    # -------------------------------------------------------------------------
    # Winner declaration
    # -------------------------------------------------------------------------

    async def declare_winner(self, test_id: str) -> ABExperiment:
        """
        Declare the best variant the winner.

        Raises:
            InvalidStateError: The experiment is not running or paused.
            NoClearWinner: Not significant, sample size not reached, or the
                top variants are tied on the primary metric.
        """
        async with self._experiment_lock(test_id):
            current = await self.get_experiment(test_id)
            if current.status not in (ExperimentStatus.RUNNING, ExperimentStatus.PAUSED):
                raise InvalidStateError(
                    f"Experiment {test_id} cannot declare a winner from {current.status.value}"
                )
            results = evaluate_experiment(current, self._clock())
            significance = results.significance
            if not significance.sampleSizeReached:
                raise NoClearWinner(test_id, "minimum sample size not reached")
            if not significance.isSignificant:
                raise NoClearWinner(test_id, f"result not significant (p={significance.pValue:.4f})")
            if not has_clear_winner(results.performanceComparison):
                raise NoClearWinner(test_id, "top variants are tied on the primary metric")
            return await self._apply_winner(current, results)

    async def _apply_winner(self, current: ABExperiment, results: TestResults) -> ABExperiment:
        now = self._clock()
        comparison = results.performanceComparison
        winner_id = comparison[0].variantId
        loser_id = comparison[-1].variantId if comparison[-1].isLoser else None

        experiment = current.model_copy(deep=True)
        for variant in experiment.variants:
            if variant.id == winner_id:
                variant.status = VariantStatus.WINNER
            elif variant.id == loser_id:
                variant.status = VariantStatus.LOSER

        experiment.status = ExperimentStatus.WINNER_DECLARED
        experiment.winnerVariantId = winner_id
        experiment.completedAt = now
        experiment.updatedAt = now
        experiment.results = results
        await self._persist(experiment)

        winner = next(v for v in experiment.variants if v.id == winner_id)
        learning = ExperimentLearning(
            experimentId=experiment.id,
            campaignId=experiment.campaignId,
            testName=experiment.name,
            winningVariantId=winner.id,
            winningVariantName=winner.name,
            winningConfiguration=dict(winner.configuration),
            primaryMetric=experiment.config.primaryMetric,
            metricValue=comparison[0].metricValue,
            lift=comparison[0].lift,
            confidence=results.recommendation.confidence,
            insights=list(results.insights),
            testDurationMinutes=results.elapsedMinutes,
            declaredAt=now,
        )
        await self._retry.run('experiments.save_learning', self._repository.save_learning, learning)
        logger.info(
            f"Declared {winner.name} winner of {experiment.id} "
            f"({comparison[0].lift:.1f}% lift, p={results.significance.pValue:.4f})"
        )
        return experiment

    # -------------------------------------------------------------------------
    # Background evaluation
    # -------------------------------------------------------------------------

    async def evaluate_running(self) -> int:
        """
        Re-evaluate every running experiment.

        Experiments past maxDuration are stopped whatever their significance;
        others may declare a winner when autoWinner is set. Returns the number
        of experiments evaluated.
        """
        stored = await self._retry.run(
            'experiments.load_by_status', self._repository.load_by_status, ExperimentStatus.RUNNING
        )
        for experiment in stored:
            self._cache.setdefault(experiment.id, experiment)

        running_ids = [
            test_id for test_id, e in self._cache.items() if e.status == ExperimentStatus.RUNNING
        ]
        evaluated = 0
        for test_id in running_ids:
            async with self._experiment_lock(test_id):
                current = await self.get_experiment(test_id)
                if current.status != ExperimentStatus.RUNNING:
                    continue
                await self._evaluate(current.model_copy(deep=True), auto_winner=current.config.autoWinner)
                evaluated += 1
        return evaluated

    async def recent_learnings(self, limit: int = 10) -> List[ExperimentLearning]:
        return await self._retry.run(
            'experiments.list_learnings', self._repository.list_learnings, limit
        )
