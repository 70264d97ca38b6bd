"""
FastAPI router for agent health analysis.

Key Endpoints:
- GET /agents/health/system        - System-wide roll-up of every active agent
- GET /agents/{agent_id}/health    - HealthProfile of one agent
"""

from typing import Optional

from fastapi import APIRouter, Query

from campaign_engine.api.errors import to_http_exception
from campaign_engine.core.dependencies import EngineDep
from campaign_engine.core.errors import EngineError
from campaign_engine.models.schemas import HealthProfile, SystemAnalysis

router = APIRouter()


@router.get("/health/system", response_model=SystemAnalysis)
async def system_health(
    engine: EngineDep,
    windowDays: Optional[int] = Query(None, ge=1, le=365),
) -> SystemAnalysis:
    try:
        return await engine.scorer.analyze_system(windowDays)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("/{agent_id}/health", response_model=HealthProfile)
async def agent_health(
    agent_id: str,
    engine: EngineDep,
    windowDays: Optional[int] = Query(None, ge=1, le=365),
) -> HealthProfile:
    try:
        return await engine.scorer.analyze_agent(agent_id, windowDays)
    except EngineError as e:
        raise to_http_exception(e) from e
