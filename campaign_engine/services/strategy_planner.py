"""
Campaign Strategy Planner.

Builds a CampaignStrategy for a goal/audience/context: which agents run, in
which order, what each action depends on, and what the plan is expected to
cost, take and achieve.

Pipeline (generate_strategy):
    1. Validate the request; every failure names its field.
    2. Score every agent for this campaign from 90-day population metrics:
           score = (successRate + goal boost) * segment multiplier
           * 0.9 if average cost > 0.10, * 0.95 if average latency > 10s
       clamped to [0, 100].
    3. Select agents: required agents (by goal type, plus one per requested
       channel) are always kept; optional agents are ranked and truncated to
       the maxActions budget.
    4. Emit actions from fixed stage templates for the selected agents only.
       Each action depends on the most recent action of each prerequisite
       capability, so the result is a DAG.
    5. Optimize: attach performance and brand scores from each agent's
       health profile (looked up concurrently; failures fall back to
       defaults), then stable-sort by (stage order, priority desc).
    6. Roll up cost, critical-path duration over stage maxima, brand
       alignment and success probability; reject plans over budget.
    7. Split the campaign window evenly across the stages present.

Lookup tables live in PlannerTables so deployments can replace them; the
brand alignment estimate is a pluggable callable.

Dependencies:
    - numpy: score means
    - campaign_engine.services.ledger: population metrics
    - campaign_engine.services.health_scorer: per-agent health profiles
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from campaign_engine.core.errors import BudgetExceeded, ConfigurationError, ValidationError
from campaign_engine.models.enums import (
    AudienceSegment,
    CampaignGoalType,
    Channel,
    PipelineStage,
    Priority,
    SelectionCriteria,
)
from campaign_engine.models.schemas import (
    AgentAction,
    AgentMetricsWindow,
    CampaignAudience,
    CampaignContext,
    CampaignGoal,
    CampaignStrategy,
    ExperimentLearning,
    StrategyOptions,
    TimelineStage,
)
from campaign_engine.services.health_scorer import HealthScorer
from campaign_engine.services.ledger import ExecutionLedger, utc_now

logger = logging.getLogger(__name__)

# =============================================================================
# Module Constants
# =============================================================================

PLANNER_WINDOW_DAYS: int = 90

# Score used for agents with no history in the planning window
DEFAULT_CAMPAIGN_SCORE: float = 50.0

DEFAULT_PERFORMANCE_SCORE: float = 75.0
DEFAULT_BRAND_SCORE: float = 80.0
DEFAULT_BRAND_OFFSET: float = 10.0

COST_PENALTY_THRESHOLD: float = 0.10
COST_PENALTY_FACTOR: float = 0.9
LATENCY_PENALTY_THRESHOLD_MS: float = 10_000
LATENCY_PENALTY_FACTOR: float = 0.95

PERFORMANCE_CRITERIA_WEIGHT: float = 1.2
# Cost criteria: score * (COST_CRITERIA_NUMERATOR / max(avgCost, COST_CRITERIA_FLOOR))
COST_CRITERIA_NUMERATOR: float = 0.1
COST_CRITERIA_FLOOR: float = 0.01
COST_CRITERIA_UNKNOWN_COST: float = 0.05

SUCCESS_PROBABILITY_CAP: float = 95.0
SUCCESS_PERFORMANCE_WEIGHT: float = 0.8
SUCCESS_BRAND_WEIGHT: float = 0.2

DEFAULT_AGENT_COST: float = 30.0

MAX_KEYWORDS: int = 10
LEARNINGS_IN_METADATA: int = 5

# =============================================================================
# Lookup Tables
# =============================================================================

CAMPAIGN_BOOSTS: Dict[CampaignGoalType, Dict[str, float]] = {
    CampaignGoalType.PRODUCT_LAUNCH: {
        'content-agent': 15, 'social-agent': 10, 'email-agent': 10, 'trend-agent': 20,
    },
    CampaignGoalType.SEASONAL_PROMO: {
        'ad-agent': 20, 'social-agent': 15, 'email-agent': 15, 'design-agent': 10,
    },
    CampaignGoalType.B2B_OUTREACH: {
        'outreach-agent': 25, 'email-agent': 15, 'content-agent': 10, 'insight-agent': 10,
    },
    CampaignGoalType.RETARGETING: {
        'ad-agent': 25, 'insight-agent': 15, 'email-agent': 10,
    },
}

AUDIENCE_MULTIPLIERS: Dict[AudienceSegment, Dict[str, float]] = {
    AudienceSegment.ENTERPRISE: {
        'outreach-agent': 1.2, 'content-agent': 1.1, 'email-agent': 1.1,
    },
    AudienceSegment.CONSUMER: {
        'social-agent': 1.3, 'trend-agent': 1.2, 'design-agent': 1.1,
    },
}

REQUIRED_AGENTS: Dict[CampaignGoalType, List[str]] = {
    CampaignGoalType.PRODUCT_LAUNCH: ['content-agent', 'brand-voice-agent'],
    CampaignGoalType.SEASONAL_PROMO: ['ad-agent', 'social-agent'],
    CampaignGoalType.B2B_OUTREACH: ['outreach-agent', 'email-agent'],
    CampaignGoalType.RETARGETING: ['ad-agent', 'insight-agent'],
    CampaignGoalType.BRAND_AWARENESS: ['content-agent', 'social-agent', 'brand-voice-agent'],
    CampaignGoalType.LEAD_GENERATION: ['content-agent', 'email-agent', 'seo-agent'],
}

OPTIONAL_AGENTS: Dict[CampaignGoalType, List[str]] = {
    CampaignGoalType.PRODUCT_LAUNCH: ['trend-agent', 'design-agent', 'insight-agent'],
    CampaignGoalType.SEASONAL_PROMO: ['trend-agent', 'email-agent', 'content-agent'],
    CampaignGoalType.B2B_OUTREACH: ['content-agent', 'insight-agent', 'brand-voice-agent'],
    CampaignGoalType.RETARGETING: ['content-agent', 'email-agent', 'social-agent'],
    CampaignGoalType.BRAND_AWARENESS: ['trend-agent', 'insight-agent', 'design-agent'],
    CampaignGoalType.LEAD_GENERATION: ['ad-agent', 'social-agent', 'trend-agent'],
}

CHANNEL_AGENTS: Dict[Channel, str] = {
    Channel.EMAIL: 'email-agent',
    Channel.SOCIAL: 'social-agent',
    Channel.ADS: 'ad-agent',
    Channel.CONTENT: 'content-agent',
    Channel.SEO: 'seo-agent',
    Channel.OUTREACH: 'outreach-agent',
    Channel.WHATSAPP: 'support-agent',
}

AGENT_BASE_COSTS: Dict[str, float] = {
    'trend-agent': 25,
    'content-agent': 40,
    'brand-voice-agent': 15,
    'social-agent': 35,
    'email-agent': 30,
    'ad-agent': 50,
    'seo-agent': 35,
    'design-agent': 45,
    'outreach-agent': 40,
    'insight-agent': 30,
    'support-agent': 20,
}

EMAIL_SEQUENCE_TYPES: Dict[CampaignGoalType, str] = {
    CampaignGoalType.PRODUCT_LAUNCH: 'launch',
    CampaignGoalType.SEASONAL_PROMO: 'promotional',
    CampaignGoalType.RETARGETING: 're-engagement',
    CampaignGoalType.B2B_OUTREACH: 'nurture',
    CampaignGoalType.BRAND_AWARENESS: 'newsletter',
    CampaignGoalType.LEAD_GENERATION: 'lead-nurture',
}

SEGMENT_TONES: Dict[AudienceSegment, str] = {
    AudienceSegment.ENTERPRISE: 'professional',
    AudienceSegment.SMB: 'friendly',
    AudienceSegment.AGENCIES: 'professional',
    AudienceSegment.ECOMMERCE: 'conversational',
    AudienceSegment.SAAS: 'professional',
    AudienceSegment.CONSUMER: 'conversational',
}


@dataclass
class PlannerTables:
    """
    Lookup tables driving agent selection and estimates.

    Validated at construction: every goal type needs a required-agent entry
    and every channel needs an agent.
    """

    campaign_boosts: Dict[CampaignGoalType, Dict[str, float]] = field(
        default_factory=lambda: {k: dict(v) for k, v in CAMPAIGN_BOOSTS.items()}
    )
    audience_multipliers: Dict[AudienceSegment, Dict[str, float]] = field(
        default_factory=lambda: {k: dict(v) for k, v in AUDIENCE_MULTIPLIERS.items()}
    )
    required_agents: Dict[CampaignGoalType, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in REQUIRED_AGENTS.items()}
    )
    optional_agents: Dict[CampaignGoalType, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in OPTIONAL_AGENTS.items()}
    )
    channel_agents: Dict[Channel, str] = field(default_factory=lambda: dict(CHANNEL_AGENTS))
    base_costs: Dict[str, float] = field(default_factory=lambda: dict(AGENT_BASE_COSTS))
    default_cost: float = DEFAULT_AGENT_COST

    def __post_init__(self) -> None:
        missing_goals = [g.value for g in CampaignGoalType if not self.required_agents.get(g)]
        if missing_goals:
            raise ConfigurationError(f"No required agents configured for goal types: {missing_goals}")
        missing_channels = [c.value for c in Channel if c not in self.channel_agents]
        if missing_channels:
            raise ConfigurationError(f"No agent configured for channels: {missing_channels}")

    def cost_of(self, agent_id: str) -> float:
        return self.base_costs.get(agent_id, self.default_cost)


# Brand alignment estimate: (agentId, performanceScore) -> 0-100
BrandScorer = Callable[[str, float], float]

LearningsProvider = Callable[[int], Awaitable[List[ExperimentLearning]]]


def offset_brand_scorer(offset: float = DEFAULT_BRAND_OFFSET) -> BrandScorer:
    """Brand score approximated as performance plus a fixed offset."""

    def score(agent_id: str, performance_score: float) -> float:
        return min(100.0, performance_score + offset)

    return score


# =============================================================================
# Validation
# =============================================================================

def validate_campaign_request(
    goal: CampaignGoal,
    context: CampaignContext,
    options: StrategyOptions,
    tables: PlannerTables,
) -> None:
    """
    Reject malformed requests with a field-scoped error.

    Raises:
        ValidationError: First failing field.
        ConfigurationError: Goal type missing from the required-agent table.
    """
    if not context.name.strip():
        raise ValidationError('context.name', 'Campaign name is required')
    if not goal.objective.strip():
        raise ValidationError('goal.objective', 'Campaign objective is required')
    if not [p for p in context.platforms if p.strip()]:
        raise ValidationError('context.platforms', 'At least one platform is required')
    if not [c for c in context.contentTypes if c.strip()]:
        raise ValidationError('context.contentTypes', 'At least one content type is required')

    if goal.budget is not None:
        if goal.budget.total <= 0:
            raise ValidationError('goal.budget.total', 'Budget must be positive')
        if goal.budget.max is not None and goal.budget.max <= 0:
            raise ValidationError('goal.budget.max', 'Budget ceiling must be positive')

    if context.timeline.endDate < context.timeline.startDate:
        raise ValidationError('context.timeline.endDate', 'End date must not precede start date')

    if goal.type not in tables.required_agents:
        raise ConfigurationError(f"Unknown campaign type for required-agent lookup: {goal.type}")

    required = required_agents_for(goal.type, context.channels, tables)
    if len(required) > options.maxActions:
        raise ValidationError(
            'options.maxActions',
            f'maxActions must be at least {len(required)} to cover the required agents',
            {'requiredAgents': required},
        )


# =============================================================================
# Agent Scoring and Selection
# =============================================================================

def campaign_score(
    agent_id: str,
    metrics: AgentMetricsWindow,
    goal_type: CampaignGoalType,
    segment: AudienceSegment,
    tables: PlannerTables,
) -> float:
    """Campaign-specific 0-100 score for one agent."""
    boost = tables.campaign_boosts.get(goal_type, {}).get(agent_id, 0.0)
    multiplier = tables.audience_multipliers.get(segment, {}).get(agent_id, 1.0)

    score = (metrics.successRate + boost) * multiplier

    if metrics.averageCost > COST_PENALTY_THRESHOLD:
        score *= COST_PENALTY_FACTOR
    if metrics.averageExecutionTimeMs > LATENCY_PENALTY_THRESHOLD_MS:
        score *= LATENCY_PENALTY_FACTOR

    return max(0.0, min(100.0, score))


def score_agents(
    population: Dict[str, AgentMetricsWindow],
    goal_type: CampaignGoalType,
    segment: AudienceSegment,
    tables: PlannerTables,
) -> Dict[str, float]:
    return {
        agent_id: campaign_score(agent_id, metrics, goal_type, segment, tables)
        for agent_id, metrics in population.items()
        if metrics.totalRuns > 0
    }


def required_agents_for(
    goal_type: CampaignGoalType,
    channels: Sequence[Channel],
    tables: PlannerTables,
) -> List[str]:
    """Goal-type agents followed by one agent per requested channel, deduplicated."""
    agents: List[str] = []
    for agent_id in list(tables.required_agents.get(goal_type, [])) + [tables.channel_agents[c] for c in channels]:
        if agent_id not in agents:
            agents.append(agent_id)
    return agents


def _selection_score(
    agent_id: str,
    scores: Dict[str, float],
    population: Dict[str, AgentMetricsWindow],
    criteria: SelectionCriteria,
) -> float:
    score = scores.get(agent_id, DEFAULT_CAMPAIGN_SCORE)
    if criteria == SelectionCriteria.PERFORMANCE:
        return score * PERFORMANCE_CRITERIA_WEIGHT
    if criteria == SelectionCriteria.COST:
        metrics = population.get(agent_id)
        avg_cost = metrics.averageCost if metrics and metrics.totalRuns else COST_CRITERIA_UNKNOWN_COST
        return score * (COST_CRITERIA_NUMERATOR / max(avg_cost or COST_CRITERIA_UNKNOWN_COST, COST_CRITERIA_FLOOR))
    return score


def select_agents(
    goal: CampaignGoal,
    context: CampaignContext,
    options: StrategyOptions,
    scores: Dict[str, float],
    population: Dict[str, AgentMetricsWindow],
    tables: PlannerTables,
) -> List[str]:
    """
    Choose the agents for a campaign.

    Returns:
        Required agents first (in table order), then the best-ranked optional
        agents, never more than options.maxActions in total.
    """
    required = required_agents_for(goal.type, context.channels, tables)
    optional = [a for a in tables.optional_agents.get(goal.type, []) if a not in required]

    ranked = sorted(
        optional,
        key=lambda a: _selection_score(a, scores, population, options.agentSelectionCriteria),
        reverse=True,
    )
    remaining = max(0, options.maxActions - len(required))
    return required + ranked[:remaining]


# =============================================================================
# Action Templates
# =============================================================================

@dataclass(frozen=True)
class PlanningContext:
    goal: CampaignGoal
    audience: CampaignAudience
    context: CampaignContext
    options: StrategyOptions

    @property
    def subject(self) -> str:
        return self.context.product.name if self.context.product else self.goal.objective

    @property
    def persona_name(self) -> str:
        return self.audience.persona.name if self.audience.persona else f"{self.audience.segment.value} buyer"


@dataclass(frozen=True)
class ActionTemplate:
    """
    One stage template.

    prerequisites: groups of agent ids; for each group the action depends on
    the most recently emitted action among those agents, if any.
    channel: when set, the action is emitted only if that channel was requested.
    """

    agent_id: str
    action: str
    stage: PipelineStage
    duration: int
    priority: Priority
    outputs: Tuple[str, ...]
    prompt: Callable[[PlanningContext], str]
    config: Callable[[PlanningContext], Dict[str, Any]]
    prerequisites: Tuple[Tuple[str, ...], ...] = ()
    channel: Optional[Channel] = None


def generate_keywords(objective: str, features: Sequence[str] = ()) -> List[str]:
    """Objective words longer than three characters plus product features, max ten."""
    words = [w.lower() for w in re.findall(r"[A-Za-z0-9']+", objective) if len(w) > 3]
    keywords: List[str] = []
    for word in words + [f.lower().strip() for f in features if f.strip()]:
        if word not in keywords:
            keywords.append(word)
    return keywords[:MAX_KEYWORDS]


def _keywords(pc: PlanningContext) -> List[str]:
    features = pc.context.product.features if pc.context.product else []
    return generate_keywords(pc.goal.objective, features)


def _budget_share(pc: PlanningContext, key: str) -> Optional[float]:
    if pc.goal.budget is None:
        return None
    return pc.goal.budget.allocation.get(key)


CONTENT_PREREQUISITE = (('content-agent',),)

ACTION_TEMPLATES: Tuple[ActionTemplate, ...] = (
    ActionTemplate(
        agent_id='trend-agent',
        action='market-analysis',
        stage=PipelineStage.RESEARCH,
        duration=30,
        priority=Priority.HIGH,
        outputs=('trend-report', 'opportunity-insights', 'competitor-analysis'),
        prompt=lambda pc: (
            f"Analyze current market trends and competitor activity relevant to {pc.subject} "
            f"for a {pc.goal.type.display_name} campaign aimed at {pc.audience.segment.value} audiences."
        ),
        config=lambda pc: {
            'subject': pc.subject,
            'timeframe': '30d',
            'sources': ['social', 'news', 'search'],
        },
    ),
    ActionTemplate(
        agent_id='insight-agent',
        action='audience-analysis',
        stage=PipelineStage.RESEARCH,
        duration=25,
        priority=Priority.HIGH,
        outputs=('audience-insights', 'segment-profiles', 'engagement-patterns'),
        prompt=lambda pc: (
            f"Profile the {pc.audience.segment.value} audience around the persona {pc.persona_name}: "
            f"motivations, objections and the channels they respond to."
        ),
        config=lambda pc: {
            'segment': pc.audience.segment.value,
            'interests': list(pc.audience.demographics.interests),
            'painPoints': list(pc.audience.demographics.painPoints),
        },
        prerequisites=(('trend-agent',),),
    ),
    ActionTemplate(
        agent_id='brand-voice-agent',
        action='brand-alignment',
        stage=PipelineStage.STRATEGY,
        duration=20,
        priority=Priority.HIGH,
        outputs=('brand-guidelines', 'tone-recommendations', 'messaging-framework'),
        prompt=lambda pc: (
            f"Define the messaging framework and tone for '{pc.context.name}' so every asset "
            f"stays on brand while addressing: {pc.goal.objective}"
        ),
        config=lambda pc: {
            'complianceLevel': pc.options.brandComplianceLevel.value,
            'persona': pc.persona_name,
            'constraints': list(pc.context.constraints),
        },
        prerequisites=(('trend-agent', 'insight-agent'),),
    ),
    ActionTemplate(
        agent_id='content-agent',
        action='content-creation',
        stage=PipelineStage.CONTENT,
        duration=45,
        priority=Priority.HIGH,
        outputs=('blog-posts', 'social-content', 'email-copy', 'ad-copy'),
        prompt=lambda pc: (
            f"Create {', '.join(pc.context.contentTypes)} content for {pc.subject} that speaks to "
            f"{pc.persona_name} and supports the objective: {pc.goal.objective}"
        ),
        config=lambda pc: {
            'contentTypes': list(pc.context.contentTypes),
            'tone': SEGMENT_TONES.get(pc.audience.segment, 'professional'),
            'keywords': _keywords(pc),
        },
        prerequisites=(('trend-agent',), ('brand-voice-agent',)),
    ),
    ActionTemplate(
        agent_id='seo-agent',
        action='seo-optimization',
        stage=PipelineStage.OPTIMIZATION,
        duration=35,
        priority=Priority.MEDIUM,
        outputs=('optimized-content', 'keyword-strategy', 'meta-descriptions'),
        prompt=lambda pc: f"Optimize the campaign content for search around: {', '.join(_keywords(pc))}",
        config=lambda pc: {'keywords': _keywords(pc), 'targetPages': 5},
        prerequisites=CONTENT_PREREQUISITE,
        channel=Channel.SEO,
    ),
    ActionTemplate(
        agent_id='design-agent',
        action='creative-assets',
        stage=PipelineStage.CREATIVE,
        duration=55,
        priority=Priority.MEDIUM,
        outputs=('visual-assets', 'banner-designs', 'social-graphics'),
        prompt=lambda pc: f"Design visual assets for {pc.subject} sized for {', '.join(pc.context.platforms)}.",
        config=lambda pc: {
            'formats': list(pc.context.platforms),
            'brandCompliance': pc.options.brandComplianceLevel.value,
        },
        prerequisites=CONTENT_PREREQUISITE,
    ),
    ActionTemplate(
        agent_id='social-agent',
        action='social-campaign',
        stage=PipelineStage.EXECUTION,
        duration=40,
        priority=Priority.HIGH,
        outputs=('social-posts', 'posting-schedule', 'engagement-strategy'),
        prompt=lambda pc: f"Plan and schedule social posts for '{pc.context.name}' on {', '.join(pc.context.platforms)}.",
        config=lambda pc: {'platforms': list(pc.context.platforms), 'postsPerWeek': 5},
        prerequisites=CONTENT_PREREQUISITE,
        channel=Channel.SOCIAL,
    ),
    ActionTemplate(
        agent_id='email-agent',
        action='email-sequence',
        stage=PipelineStage.EXECUTION,
        duration=35,
        priority=Priority.MEDIUM,
        outputs=('email-sequence', 'subject-lines', 'send-schedule'),
        prompt=lambda pc: f"Build a {EMAIL_SEQUENCE_TYPES[pc.goal.type]} email sequence for {pc.persona_name}.",
        config=lambda pc: {'sequenceType': EMAIL_SEQUENCE_TYPES[pc.goal.type], 'emails': 3},
        prerequisites=CONTENT_PREREQUISITE,
        channel=Channel.EMAIL,
    ),
    ActionTemplate(
        agent_id='ad-agent',
        action='paid-advertising',
        stage=PipelineStage.EXECUTION,
        duration=50,
        priority=Priority.HIGH,
        outputs=('ad-campaigns', 'targeting-settings', 'budget-allocation'),
        prompt=lambda pc: f"Set up paid campaigns for {pc.subject} targeting {pc.audience.segment.value} audiences.",
        config=lambda pc: {
            'platforms': list(pc.context.platforms),
            'objective': pc.goal.objective,
            'budget': _budget_share(pc, 'ads'),
        },
        prerequisites=CONTENT_PREREQUISITE,
        channel=Channel.ADS,
    ),
    ActionTemplate(
        agent_id='outreach-agent',
        action='b2b-outreach',
        stage=PipelineStage.EXECUTION,
        duration=60,
        priority=Priority.MEDIUM,
        outputs=('outreach-sequences', 'prospect-lists', 'follow-up-templates'),
        prompt=lambda pc: f"Run personalized outreach to {pc.persona_name} prospects about {pc.subject}.",
        config=lambda pc: {'segment': pc.audience.segment.value, 'touchpoints': 4},
        prerequisites=CONTENT_PREREQUISITE,
        channel=Channel.OUTREACH,
    ),
    ActionTemplate(
        agent_id='support-agent',
        action='whatsapp-messaging',
        stage=PipelineStage.EXECUTION,
        duration=30,
        priority=Priority.MEDIUM,
        outputs=('message-templates', 'response-flows'),
        prompt=lambda pc: f"Prepare WhatsApp message templates and reply flows for '{pc.context.name}'.",
        config=lambda pc: {'channel': Channel.WHATSAPP.value, 'persona': pc.persona_name},
        prerequisites=CONTENT_PREREQUISITE,
        channel=Channel.WHATSAPP,
    ),
)


def build_action_sequence(
    selected_agents: Sequence[str],
    planning: PlanningContext,
    templates: Sequence[ActionTemplate] = ACTION_TEMPLATES,
) -> List[AgentAction]:
    """
    Emit actions for the selected agents in template order.

    Channel-bound templates are skipped unless their channel was requested.
    Each prerequisite group contributes the id of its most recently emitted
    action; groups with no emitted action contribute nothing.
    """
    selected = set(selected_agents)
    requested_channels = set(planning.context.channels)
    actions: List[AgentAction] = []
    latest: Dict[str, Tuple[int, str]] = {}

    for template in templates:
        if template.agent_id not in selected:
            continue
        if template.channel is not None and template.channel not in requested_channels:
            continue

        depends_on: List[str] = []
        for group in template.prerequisites:
            emitted = [latest[a] for a in group if a in latest]
            if emitted:
                action_id = max(emitted)[1]
                if action_id not in depends_on:
                    depends_on.append(action_id)

        action_id = f"action-{len(actions) + 1}"
        actions.append(AgentAction(
            id=action_id,
            agentId=template.agent_id,
            action=template.action,
            prompt=template.prompt(planning),
            config=template.config(planning),
            dependsOn=depends_on,
            estimatedDuration=template.duration,
            priority=template.priority,
            stage=template.stage,
            outputs=list(template.outputs),
        ))
        latest[template.agent_id] = (len(actions), action_id)

    return actions


# =============================================================================
# Estimates and Timeline
# =============================================================================

def sort_actions(actions: Sequence[AgentAction]) -> List[AgentAction]:
    """Stable sort by (stage order, priority desc)."""
    return sorted(actions, key=lambda a: (a.stage.order, -a.priority.weight))


def estimate_duration(actions: Sequence[AgentAction]) -> int:
    """Sum over stages of the longest action in each stage."""
    stage_max: Dict[PipelineStage, int] = {}
    for action in actions:
        stage_max[action.stage] = max(stage_max.get(action.stage, 0), action.estimatedDuration)
    return int(sum(stage_max.values()))


def estimate_cost(actions: Sequence[AgentAction], tables: PlannerTables) -> float:
    return float(sum(tables.cost_of(a.agentId) for a in actions))


def estimate_quality(actions: Sequence[AgentAction]) -> Tuple[float, float]:
    """
    Returns:
        (brandAlignment, successProbability); both 0 for an empty plan.
    """
    if not actions:
        return 0.0, 0.0
    brand = float(np.mean([a.brandScore if a.brandScore is not None else DEFAULT_BRAND_SCORE for a in actions]))
    performance = float(np.mean([
        a.performanceScore if a.performanceScore is not None else DEFAULT_PERFORMANCE_SCORE
        for a in actions
    ]))
    success = min(
        SUCCESS_PROBABILITY_CAP,
        SUCCESS_PERFORMANCE_WEIGHT * performance + SUCCESS_BRAND_WEIGHT * brand,
    )
    return round(brand, 2), round(success, 2)


def build_timeline(actions: Sequence[AgentAction], start: date, end: date) -> List[TimelineStage]:
    """
    Divide [start, end] evenly across the stages present, in stage order.

    The last stage absorbs any remainder so the timeline ends on `end`.
    """
    stages = sorted({a.stage for a in actions}, key=lambda s: s.order)
    if not stages:
        return []

    total_days = (end - start).days + 1
    days_per_stage = max(1, total_days // len(stages))

    timeline: List[TimelineStage] = []
    for index, stage in enumerate(stages):
        stage_start = min(start + timedelta(days=index * days_per_stage), end)
        if index == len(stages) - 1:
            stage_end = end
        else:
            stage_end = min(stage_start + timedelta(days=days_per_stage - 1), end)
        timeline.append(TimelineStage(
            stage=stage,
            startDate=stage_start,
            endDate=stage_end,
            actionIds=[a.id for a in actions if a.stage == stage],
        ))
    return timeline


# =============================================================================
# Planner Service
# =============================================================================

class StrategyPlanner:
    """
    Generates campaign strategies from ledger history.

    Args:
        ledger: Source of population metrics.
        scorer: Source of per-agent health profiles.
        tables: Lookup tables; the built-in defaults when omitted.
        brand_scorer: Brand alignment estimate per action.
        learnings_provider: Returns recent experiment learnings for metadata.
        window_days: Window for campaign-specific scoring.
        default_performance_score: Used when an agent's profile is unavailable.
        default_brand_score: Used together with the performance default.
    """

    def __init__(
        self,
        ledger: ExecutionLedger,
        scorer: HealthScorer,
        tables: Optional[PlannerTables] = None,
        brand_scorer: Optional[BrandScorer] = None,
        learnings_provider: Optional[LearningsProvider] = None,
        window_days: int = PLANNER_WINDOW_DAYS,
        default_performance_score: float = DEFAULT_PERFORMANCE_SCORE,
        default_brand_score: float = DEFAULT_BRAND_SCORE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._ledger = ledger
        self._scorer = scorer
        self.tables = tables or PlannerTables()
        self._brand_scorer = brand_scorer or offset_brand_scorer()
        self._learnings_provider = learnings_provider
        self._window_days = window_days
        self._default_performance = default_performance_score
        self._default_brand = default_brand_score
        self._clock = clock

    async def generate_strategy(
        self,
        goal: CampaignGoal,
        audience: CampaignAudience,
        context: CampaignContext,
        options: Optional[StrategyOptions] = None,
    ) -> CampaignStrategy:
        """
        Build a complete draft CampaignStrategy.

        Raises:
            ValidationError: Malformed request (field-scoped).
            ConfigurationError: Goal type unknown to the planner tables.
            BudgetExceeded: Estimated cost above goal.budget.max.
        """
        options = options or StrategyOptions()
        validate_campaign_request(goal, context, options, self.tables)

        population = await self._ledger.population_metrics(self._window_days)
        scores = score_agents(population, goal.type, audience.segment, self.tables)
        selected = select_agents(goal, context, options, scores, population, self.tables)

        planning = PlanningContext(goal=goal, audience=audience, context=context, options=options)
        actions = build_action_sequence(selected, planning)
        actions = await self._optimize(actions)

        estimated_cost = estimate_cost(actions, self.tables)
        if goal.budget is not None and goal.budget.max is not None and estimated_cost > goal.budget.max:
            logger.info(
                f"Strategy '{context.name}' rejected: cost {estimated_cost:.2f} > budget {goal.budget.max:.2f}"
            )
            raise BudgetExceeded(estimated_cost, goal.budget.max)

        brand_alignment, success_probability = estimate_quality(actions)
        now = self._clock()

        metadata: Dict[str, Any] = {
            'generatedAt': now.isoformat(),
            'windowDays': self._window_days,
            'agentsConsidered': sorted(population.keys()),
            'selectedAgents': selected,
            'campaignScores': {a: round(scores[a], 2) for a in selected if a in scores},
            'selectionCriteria': options.agentSelectionCriteria.value,
        }
        if options.useMemoryOptimization:
            metadata['experimentLearnings'] = await self._recent_learnings()

        strategy = CampaignStrategy(
            id=f"strategy-{uuid.uuid4().hex}",
            name=context.name,
            goal=goal,
            audience=audience,
            context=context,
            options=options,
            actions=actions,
            timeline=build_timeline(actions, context.timeline.startDate, context.timeline.endDate),
            estimatedCost=estimated_cost,
            estimatedDuration=estimate_duration(actions),
            brandAlignment=brand_alignment,
            successProbability=success_probability,
            metadata=metadata,
            createdAt=now,
            updatedAt=now,
        )
        logger.info(
            f"Generated strategy {strategy.id} with {len(actions)} actions, "
            f"cost {estimated_cost:.2f}, success probability {success_probability:.1f}"
        )
        return strategy

    async def _optimize(self, actions: List[AgentAction]) -> List[AgentAction]:
        """Attach performance/brand scores concurrently, then sort."""
        agent_ids = sorted({a.agentId for a in actions})
        health_population = await self._ledger.population_metrics()
        results = await asyncio.gather(*(self._agent_scores(a, health_population) for a in agent_ids))
        scores = dict(zip(agent_ids, results))

        scored = [
            action.model_copy(update={
                'performanceScore': scores[action.agentId][0],
                'brandScore': scores[action.agentId][1],
            })
            for action in actions
        ]
        return sort_actions(scored)

    async def _agent_scores(
        self,
        agent_id: str,
        population: Dict[str, AgentMetricsWindow],
    ) -> Tuple[float, float]:
        try:
            profile = await self._scorer.analyze_agent(agent_id, population=population)
        except Exception as e:
            logger.warning(f"Health profile for {agent_id} unavailable, using defaults: {e}")
            return self._default_performance, self._default_brand

        if profile.metrics.totalRuns == 0:
            return self._default_performance, self._default_brand

        performance = float(profile.healthScore)
        brand = max(0.0, min(100.0, float(self._brand_scorer(agent_id, performance))))
        return performance, brand

    async def _recent_learnings(self) -> List[Dict[str, Any]]:
        if self._learnings_provider is None:
            return []
        try:
            learnings = await self._learnings_provider(LEARNINGS_IN_METADATA)
        except Exception as e:
            logger.warning(f"Experiment learnings unavailable: {e}")
            return []
        return [
            {
                'experimentId': learning.experimentId,
                'winningVariant': learning.winningVariantName,
                'primaryMetric': learning.primaryMetric.value,
                'lift': learning.lift,
                'winningConfiguration': learning.winningConfiguration,
            }
            for learning in learnings
        ]
