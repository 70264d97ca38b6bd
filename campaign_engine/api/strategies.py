"""
FastAPI router for campaign strategies.

Key Endpoints:
- POST   /strategies                      - Generate and store a draft strategy
- GET    /strategies                      - List stored strategies (optional status filter)
- GET    /strategies/{strategy_id}        - One strategy
- PATCH  /strategies/{strategy_id}/status - Lifecycle transition
- POST   /strategies/{strategy_id}/clone  - Copy as a new draft
- DELETE /strategies/{strategy_id}        - Remove a strategy

Generation errors map to 400 (validation), 409 (budget exceeded) and 422
(planner configuration); see campaign_engine.api.errors.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Response

from campaign_engine.api.errors import to_http_exception
from campaign_engine.core.dependencies import EngineDep
from campaign_engine.core.errors import EngineError
from campaign_engine.models.enums import StrategyStatus
from campaign_engine.models.schemas import (
    CampaignStrategy,
    StrategyCloneRequest,
    StrategyRequest,
    StrategyStatusUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=CampaignStrategy, status_code=201)
async def create_strategy(request: StrategyRequest, engine: EngineDep) -> CampaignStrategy:
    try:
        strategy = await engine.planner.generate_strategy(
            request.goal, request.audience, request.context, request.options
        )
        return await engine.strategies.save(strategy)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("", response_model=List[CampaignStrategy])
async def list_strategies(
    engine: EngineDep,
    status: Optional[StrategyStatus] = Query(None, description="Filter by lifecycle status"),
) -> List[CampaignStrategy]:
    try:
        return await engine.strategies.list_strategies(status)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("/{strategy_id}", response_model=CampaignStrategy)
async def get_strategy(strategy_id: str, engine: EngineDep) -> CampaignStrategy:
    try:
        return await engine.strategies.get(strategy_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.patch("/{strategy_id}/status", response_model=CampaignStrategy)
async def update_strategy_status(
    strategy_id: str,
    update: StrategyStatusUpdate,
    engine: EngineDep,
) -> CampaignStrategy:
    try:
        return await engine.strategies.update_status(strategy_id, update.status)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.post("/{strategy_id}/clone", response_model=CampaignStrategy, status_code=201)
async def clone_strategy(
    strategy_id: str,
    engine: EngineDep,
    request: Optional[StrategyCloneRequest] = None,
) -> CampaignStrategy:
    try:
        return await engine.strategies.clone_strategy(strategy_id, request.name if request else None)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.delete("/{strategy_id}", status_code=204)
async def delete_strategy(strategy_id: str, engine: EngineDep) -> Response:
    try:
        await engine.strategies.delete(strategy_id)
    except EngineError as e:
        raise to_http_exception(e) from e
    return Response(status_code=204)
