"""
A/B experiment persistence.

ExperimentRepository stores ABExperiment documents and the learnings kept
when an experiment declares a winner. The Significance Engine caches
experiments in memory but reloads from here on a miss, so a cold start
resumes every running experiment.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from asyncpg import Pool

from campaign_engine.models.enums import ExperimentStatus
from campaign_engine.models.schemas import ABExperiment, ExperimentLearning
from campaign_engine.sql.state_queries import (
    DEFAULT_LEARNING_LIMIT,
    SELECT_EXPERIMENT,
    SELECT_EXPERIMENTS_BY_STATUS,
    SELECT_RECENT_LEARNINGS,
    UPSERT_EXPERIMENT,
    UPSERT_LEARNING,
)

logger = logging.getLogger(__name__)


class ExperimentRepository(ABC):

    @abstractmethod
    async def save(self, experiment: ABExperiment) -> None:
        ...

    @abstractmethod
    async def load(self, test_id: str) -> Optional[ABExperiment]:
        ...

    @abstractmethod
    async def load_by_status(self, status: ExperimentStatus) -> List[ABExperiment]:
        ...

    @abstractmethod
    async def save_learning(self, learning: ExperimentLearning) -> None:
        ...

    @abstractmethod
    async def list_learnings(self, limit: int = DEFAULT_LEARNING_LIMIT) -> List[ExperimentLearning]:
        """Most recent learnings first."""


class InMemoryExperimentRepository(ExperimentRepository):

    def __init__(self):
        self._experiments: Dict[str, str] = {}
        self._learnings: Dict[str, str] = {}

    async def save(self, experiment: ABExperiment) -> None:
        self._experiments[experiment.id] = experiment.model_dump_json()

    async def load(self, test_id: str) -> Optional[ABExperiment]:
        document = self._experiments.get(test_id)
        return ABExperiment.model_validate_json(document) if document else None

    async def load_by_status(self, status: ExperimentStatus) -> List[ABExperiment]:
        experiments = [ABExperiment.model_validate_json(d) for d in self._experiments.values()]
        return [e for e in experiments if e.status == status]

    async def save_learning(self, learning: ExperimentLearning) -> None:
        self._learnings[learning.experimentId] = learning.model_dump_json()

    async def list_learnings(self, limit: int = DEFAULT_LEARNING_LIMIT) -> List[ExperimentLearning]:
        learnings = [ExperimentLearning.model_validate_json(d) for d in self._learnings.values()]
        learnings.sort(key=lambda learning: learning.declaredAt, reverse=True)
        return learnings[:limit]


class PostgresExperimentRepository(ExperimentRepository):
    """Repository over the ab_experiment and experiment_learning tables."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def save(self, experiment: ABExperiment) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                UPSERT_EXPERIMENT,
                experiment.id,
                experiment.campaignId,
                experiment.status.value,
                experiment.model_dump_json(),
                experiment.updatedAt,
            )

    async def load(self, test_id: str) -> Optional[ABExperiment]:
        async with self._pool.acquire() as conn:
            payload = await conn.fetchval(SELECT_EXPERIMENT, test_id)
        return ABExperiment.model_validate_json(payload) if payload else None

    async def load_by_status(self, status: ExperimentStatus) -> List[ABExperiment]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(SELECT_EXPERIMENTS_BY_STATUS, status.value)
        return [ABExperiment.model_validate_json(row['payload']) for row in rows]

    async def save_learning(self, learning: ExperimentLearning) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                UPSERT_LEARNING,
                learning.experimentId,
                learning.campaignId,
                learning.model_dump_json(),
                learning.declaredAt,
            )

    async def list_learnings(self, limit: int = DEFAULT_LEARNING_LIMIT) -> List[ExperimentLearning]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(SELECT_RECENT_LEARNINGS, limit)
        return [ExperimentLearning.model_validate_json(row['payload']) for row in rows]
