"""
Campaign strategy persistence and lifecycle management.

StrategyRepository is the storage contract for CampaignStrategy documents,
with an in-memory adapter and an asyncpg adapter (JSONB payload column).

StrategyManager sits in front of a repository with a read-through cache:
a cache miss reloads from the store, so a restarted service sees every
strategy saved before the restart. It also enforces the status lifecycle:

    draft     -> approved | cancelled
    approved  -> executing | draft | cancelled
    executing -> completed | cancelled
    completed, cancelled: terminal
"""

import copy
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from asyncpg import Pool

from campaign_engine.core.errors import InvalidStateError, NotFoundError
from campaign_engine.core.retry import RetryPolicy
from campaign_engine.models.enums import StrategyStatus
from campaign_engine.models.schemas import CampaignStrategy
from campaign_engine.services.ledger import utc_now
from campaign_engine.sql.state_queries import (
    DELETE_STRATEGY,
    SELECT_ALL_STRATEGIES,
    SELECT_STRATEGY,
    UPSERT_STRATEGY,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[StrategyStatus, frozenset] = {
    StrategyStatus.DRAFT: frozenset({StrategyStatus.APPROVED, StrategyStatus.CANCELLED}),
    StrategyStatus.APPROVED: frozenset({
        StrategyStatus.EXECUTING, StrategyStatus.DRAFT, StrategyStatus.CANCELLED,
    }),
    StrategyStatus.EXECUTING: frozenset({StrategyStatus.COMPLETED, StrategyStatus.CANCELLED}),
    StrategyStatus.COMPLETED: frozenset(),
    StrategyStatus.CANCELLED: frozenset(),
}

COPY_SUFFIX: str = " (Copy)"


# =============================================================================
# Repositories
# =============================================================================

class StrategyRepository(ABC):

    @abstractmethod
    async def save(self, strategy: CampaignStrategy) -> None:
        ...

    @abstractmethod
    async def load(self, strategy_id: str) -> Optional[CampaignStrategy]:
        ...

    @abstractmethod
    async def load_all(self) -> List[CampaignStrategy]:
        ...

    @abstractmethod
    async def delete(self, strategy_id: str) -> bool:
        ...


class InMemoryStrategyRepository(StrategyRepository):
    """Dict-backed repository. Stores serialized copies so callers cannot mutate stored state."""

    def __init__(self):
        self._documents: Dict[str, str] = {}

    async def save(self, strategy: CampaignStrategy) -> None:
        self._documents[strategy.id] = strategy.model_dump_json()

    async def load(self, strategy_id: str) -> Optional[CampaignStrategy]:
        document = self._documents.get(strategy_id)
        return CampaignStrategy.model_validate_json(document) if document else None

    async def load_all(self) -> List[CampaignStrategy]:
        return [CampaignStrategy.model_validate_json(d) for d in self._documents.values()]

    async def delete(self, strategy_id: str) -> bool:
        return self._documents.pop(strategy_id, None) is not None


class PostgresStrategyRepository(StrategyRepository):
    """Repository over the campaign_strategy table."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def save(self, strategy: CampaignStrategy) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                UPSERT_STRATEGY,
                strategy.id,
                strategy.status.value,
                strategy.model_dump_json(),
                strategy.createdAt,
                strategy.updatedAt,
            )

    async def load(self, strategy_id: str) -> Optional[CampaignStrategy]:
        async with self._pool.acquire() as conn:
            payload = await conn.fetchval(SELECT_STRATEGY, strategy_id)
        return CampaignStrategy.model_validate_json(payload) if payload else None

    async def load_all(self) -> List[CampaignStrategy]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(SELECT_ALL_STRATEGIES)
        return [CampaignStrategy.model_validate_json(row['payload']) for row in rows]

    async def delete(self, strategy_id: str) -> bool:
        async with self._pool.acquire() as conn:
            deleted = await conn.fetchval(DELETE_STRATEGY, strategy_id)
        return deleted is not None


# =============================================================================
# Manager
# =============================================================================

class StrategyManager:
    """Cached access to stored strategies plus lifecycle operations."""

    def __init__(
        self,
        repository: StrategyRepository,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable = utc_now,
    ):
        self._repository = repository
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._cache: Dict[str, CampaignStrategy] = {}

    async def save(self, strategy: CampaignStrategy) -> CampaignStrategy:
        await self._retry.run('strategies.save', self._repository.save, strategy)
        self._cache[strategy.id] = strategy
        return strategy

    async def get(self, strategy_id: str) -> CampaignStrategy:
        """
        Return a strategy, reloading from the repository on a cache miss.

        Raises:
            NotFoundError: No strategy with this id exists.
        """
        cached = self._cache.get(strategy_id)
        if cached is not None:
            return cached
        strategy = await self._retry.run('strategies.load', self._repository.load, strategy_id)
        if strategy is None:
            raise NotFoundError('CampaignStrategy', strategy_id)
        self._cache[strategy_id] = strategy
        return strategy

    async def list_strategies(self, status: Optional[StrategyStatus] = None) -> List[CampaignStrategy]:
        strategies = await self._retry.run('strategies.load_all', self._repository.load_all)
        for strategy in strategies:
            self._cache[strategy.id] = strategy
        if status is not None:
            strategies = [s for s in strategies if s.status == status]
        return sorted(strategies, key=lambda s: (s.createdAt, s.id))

    async def update_status(self, strategy_id: str, status: StrategyStatus) -> CampaignStrategy:
        """
        Move a strategy to a new status.

        Raises:
            NotFoundError: Unknown strategy.
            InvalidStateError: Transition not allowed from the current status.
        """
        strategy = await self.get(strategy_id)
        if status == strategy.status:
            return strategy
        if status not in ALLOWED_TRANSITIONS[strategy.status]:
            raise InvalidStateError(
                f"Strategy {strategy_id} cannot move from {strategy.status.value} to {status.value}"
            )
        updated = strategy.model_copy(update={'status': status, 'updatedAt': self._clock()})
        await self.save(updated)
        logger.info(f"Strategy {strategy_id} status {strategy.status.value} -> {status.value}")
        return updated

    async def clone_strategy(self, strategy_id: str, name: Optional[str] = None) -> CampaignStrategy:
        """
        Copy a strategy as a new draft.

        The copy gets a new id and timestamps; actions, timeline and the
        cost/duration/brand/success estimates are carried over unchanged.
        """
        source = await self.get(strategy_id)
        now = self._clock()
        clone = source.model_copy(
            update={
                'id': f"strategy-{uuid.uuid4().hex}",
                'name': name or f"{source.name}{COPY_SUFFIX}",
                'status': StrategyStatus.DRAFT,
                'createdAt': now,
                'updatedAt': now,
                'metadata': {**copy.deepcopy(source.metadata), 'clonedFrom': source.id},
            },
            deep=True,
        )
        await self.save(clone)
        logger.info(f"Cloned strategy {source.id} as {clone.id}")
        return clone

    async def delete(self, strategy_id: str) -> None:
        deleted = await self._retry.run('strategies.delete', self._repository.delete, strategy_id)
        self._cache.pop(strategy_id, None)
        if not deleted:
            raise NotFoundError('CampaignStrategy', strategy_id)
