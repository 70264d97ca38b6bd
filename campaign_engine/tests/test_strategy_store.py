"""
Tests for strategy persistence and lifecycle.

Test Classes:
- TestStrategyLifecycle: allowed and rejected status transitions
- TestStrategyManager: cache reload, listing, cloning and deletion
- TestPostgresStrategyRepository: asyncpg adapter against a mocked pool
"""

from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from campaign_engine.core.errors import DependencyUnavailable, InvalidStateError, NotFoundError
from campaign_engine.models.enums import AudienceSegment, CampaignGoalType, StrategyStatus
from campaign_engine.models.schemas import (
    CampaignAudience,
    CampaignContext,
    CampaignGoal,
    CampaignStrategy,
    CampaignTimeline,
)
from campaign_engine.services.strategy_store import (
    InMemoryStrategyRepository,
    PostgresStrategyRepository,
    StrategyManager,
)
from campaign_engine.tests.conftest import FIXED_NOW


def _strategy(strategy_id: str = 'strategy-1', *, status=StrategyStatus.DRAFT, created_offset: int = 0):
    created = FIXED_NOW + timedelta(minutes=created_offset)
    return CampaignStrategy(
        id=strategy_id,
        name='Holiday Promo',
        goal=CampaignGoal(type=CampaignGoalType.SEASONAL_PROMO, objective='Clear winter stock'),
        audience=CampaignAudience(segment=AudienceSegment.ECOMMERCE),
        context=CampaignContext(
            name='Holiday Promo',
            platforms=['instagram'],
            contentTypes=['post'],
            timeline=CampaignTimeline(startDate=date(2026, 12, 1), endDate=date(2026, 12, 24)),
        ),
        estimatedCost=85.0,
        estimatedDuration=120,
        brandAlignment=82.0,
        successProbability=77.5,
        status=status,
        metadata={'selectedAgents': ['ad-agent', 'social-agent']},
        createdAt=created,
        updatedAt=created,
    )


@pytest.fixture
def repository() -> InMemoryStrategyRepository:
    return InMemoryStrategyRepository()


@pytest.fixture
def manager(repository, fast_retry, clock) -> StrategyManager:
    return StrategyManager(repository, retry_policy=fast_retry, clock=clock)


class TestStrategyLifecycle:

    @pytest.mark.asyncio
    async def test_full_happy_path(self, manager: StrategyManager, clock) -> None:
        await manager.save(_strategy())

        clock.advance(minutes=5)
        approved = await manager.update_status('strategy-1', StrategyStatus.APPROVED)
        executing = await manager.update_status('strategy-1', StrategyStatus.EXECUTING)
        completed = await manager.update_status('strategy-1', StrategyStatus.COMPLETED)

        assert approved.updatedAt == FIXED_NOW + timedelta(minutes=5)
        assert executing.status == StrategyStatus.EXECUTING
        assert completed.status == StrategyStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_approved_can_return_to_draft(self, manager: StrategyManager) -> None:
        await manager.save(_strategy(status=StrategyStatus.APPROVED))

        result = await manager.update_status('strategy-1', StrategyStatus.DRAFT)

        assert result.status == StrategyStatus.DRAFT

    @pytest.mark.asyncio
    async def test_draft_cannot_skip_to_executing(self, manager: StrategyManager) -> None:
        await manager.save(_strategy())

        with pytest.raises(InvalidStateError):
            await manager.update_status('strategy-1', StrategyStatus.EXECUTING)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [StrategyStatus.COMPLETED, StrategyStatus.CANCELLED])
    async def test_terminal_states_are_final(self, manager: StrategyManager, terminal) -> None:
        await manager.save(_strategy(status=terminal))

        with pytest.raises(InvalidStateError):
            await manager.update_status('strategy-1', StrategyStatus.APPROVED)

    @pytest.mark.asyncio
    async def test_same_status_is_a_no_op(self, manager: StrategyManager) -> None:
        original = await manager.save(_strategy())

        result = await manager.update_status('strategy-1', StrategyStatus.DRAFT)

        assert result.updatedAt == original.updatedAt

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, manager: StrategyManager) -> None:
        with pytest.raises(NotFoundError):
            await manager.update_status('missing', StrategyStatus.APPROVED)


class TestStrategyManager:

    @pytest.mark.asyncio
    async def test_cache_miss_reloads_from_repository(self, repository, fast_retry, clock) -> None:
        await StrategyManager(repository, fast_retry, clock).save(_strategy())

        restarted = StrategyManager(repository, fast_retry, clock)
        strategy = await restarted.get('strategy-1')

        assert strategy.name == 'Holiday Promo'
        assert strategy.metadata['selectedAgents'] == ['ad-agent', 'social-agent']

    @pytest.mark.asyncio
    async def test_list_filters_and_orders(self, manager: StrategyManager) -> None:
        await manager.save(_strategy('strategy-b', created_offset=10))
        await manager.save(_strategy('strategy-a', created_offset=20, status=StrategyStatus.APPROVED))
        await manager.save(_strategy('strategy-c', created_offset=0))

        everything = await manager.list_strategies()
        drafts = await manager.list_strategies(StrategyStatus.DRAFT)

        assert [s.id for s in everything] == ['strategy-c', 'strategy-b', 'strategy-a']
        assert [s.id for s in drafts] == ['strategy-c', 'strategy-b']

    @pytest.mark.asyncio
    async def test_clone_is_a_new_draft(self, manager: StrategyManager, clock) -> None:
        await manager.save(_strategy(status=StrategyStatus.EXECUTING))
        clock.advance(hours=1)

        clone = await manager.clone_strategy('strategy-1')

        assert clone.id != 'strategy-1'
        assert clone.name == 'Holiday Promo (Copy)'
        assert clone.status == StrategyStatus.DRAFT
        assert clone.createdAt == FIXED_NOW + timedelta(hours=1)
        assert clone.estimatedCost == 85.0
        assert clone.successProbability == 77.5
        assert clone.metadata['clonedFrom'] == 'strategy-1'
        assert (await manager.get(clone.id)).id == clone.id

    @pytest.mark.asyncio
    async def test_clone_does_not_share_state(self, manager: StrategyManager) -> None:
        source = await manager.save(_strategy())

        clone = await manager.clone_strategy('strategy-1', name='Holiday Promo B')
        clone.metadata['selectedAgents'].append('email-agent')

        assert clone.name == 'Holiday Promo B'
        assert source.metadata['selectedAgents'] == ['ad-agent', 'social-agent']

    @pytest.mark.asyncio
    async def test_delete(self, manager: StrategyManager) -> None:
        await manager.save(_strategy())

        await manager.delete('strategy-1')

        with pytest.raises(NotFoundError):
            await manager.get('strategy-1')
        with pytest.raises(NotFoundError):
            await manager.delete('strategy-1')

    @pytest.mark.asyncio
    async def test_unreachable_repository(self, fast_retry, clock) -> None:
        repository = InMemoryStrategyRepository()
        repository.save = AsyncMock(side_effect=ConnectionError("connection reset"))
        manager = StrategyManager(repository, fast_retry, clock)

        with pytest.raises(DependencyUnavailable):
            await manager.save(_strategy())

        assert repository.save.await_count == 2


class TestPostgresStrategyRepository:

    @pytest.mark.asyncio
    async def test_save_writes_payload(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        strategy = _strategy()

        await PostgresStrategyRepository(mock_db_pool).save(strategy)

        args = conn.execute.await_args.args
        assert args[1] == 'strategy-1'
        assert args[2] == 'draft'
        assert CampaignStrategy.model_validate_json(args[3]) == strategy

    @pytest.mark.asyncio
    async def test_load_round_trips_payload(self, mock_db_pool: AsyncMock) -> None:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetchval.return_value = _strategy().model_dump_json()

        strategy = await PostgresStrategyRepository(mock_db_pool).load('strategy-1')

        assert strategy.id == 'strategy-1'
        assert strategy.goal.type == CampaignGoalType.SEASONAL_PROMO

    @pytest.mark.asyncio
    async def test_load_missing(self, mock_db_pool: AsyncMock) -> None:
        assert await PostgresStrategyRepository(mock_db_pool).load('missing') is None

    @pytest.mark.asyncio
    async def test_delete_missing(self, mock_db_pool: AsyncMock) -> None:
        assert await PostgresStrategyRepository(mock_db_pool).delete('missing') is False
