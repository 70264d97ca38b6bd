"""
FastAPI router for A/B experiments.

Key Endpoints:
- POST /experiments                                      - Create a draft experiment
- GET  /experiments/{test_id}                            - Experiment with current state
- POST /experiments/{test_id}/start|pause|resume|stop    - Lifecycle
- POST /experiments/{test_id}/variants/{variant_id}/metrics - Add a metrics delta
- GET  /experiments/{test_id}/results                    - Recomputed results
- POST /experiments/{test_id}/winner                     - Declare the winner (409 if none)
"""

from typing import Optional

from fastapi import APIRouter

from campaign_engine.api.errors import to_http_exception
from campaign_engine.core.dependencies import EngineDep
from campaign_engine.core.errors import EngineError
from campaign_engine.models.schemas import (
    ABExperiment,
    ExperimentCreate,
    ExperimentStopRequest,
    MetricsDelta,
    TestResults,
)

router = APIRouter()


@router.post("", response_model=ABExperiment, status_code=201)
async def create_experiment(request: ExperimentCreate, engine: EngineDep) -> ABExperiment:
    try:
        return await engine.experiments.create_experiment(request)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("/{test_id}", response_model=ABExperiment)
async def get_experiment(test_id: str, engine: EngineDep) -> ABExperiment:
    try:
        return await engine.experiments.get_experiment(test_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{test_id}/start", response_model=ABExperiment)
async def start_experiment(test_id: str, engine: EngineDep) -> ABExperiment:
    try:
        return await engine.experiments.start(test_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{test_id}/pause", response_model=ABExperiment)
async def pause_experiment(test_id: str, engine: EngineDep) -> ABExperiment:
    try:
        return await engine.experiments.pause(test_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{test_id}/resume", response_model=ABExperiment)
async def resume_experiment(test_id: str, engine: EngineDep) -> ABExperiment:
    try:
        return await engine.experiments.resume(test_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{test_id}/stop", response_model=ABExperiment)
async def stop_experiment(
    test_id: str,
    engine: EngineDep,
    request: Optional[ExperimentStopRequest] = None,
) -> ABExperiment:
    reason = request.reason if request else "manual"
    try:
        return await engine.experiments.stop(test_id, reason)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{test_id}/variants/{variant_id}/metrics", response_model=ABExperiment)
async def update_variant_metrics(
    test_id: str,
    variant_id: str,
    delta: MetricsDelta,
    engine: EngineDep,
) -> ABExperiment:
    try:
        return await engine.experiments.update_metrics(test_id, variant_id, delta)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("/{test_id}/results", response_model=TestResults)
async def experiment_results(test_id: str, engine: EngineDep) -> TestResults:
    try:
        return await engine.experiments.get_results(test_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{test_id}/winner", response_model=ABExperiment)
async def declare_winner(test_id: str, engine: EngineDep) -> ABExperiment:
    try:
        return await engine.experiments.declare_winner(test_id)
    except EngineError as e:
        raise to_http_exception(e) from e
