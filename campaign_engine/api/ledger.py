"""
FastAPI router for the Execution Ledger.

Key Endpoints:
- POST   /ledger/records                    - Append one execution record
- GET    /ledger/records                    - Filtered, sorted, paginated query
- GET    /ledger/records/{record_id}        - Single record
- PATCH  /ledger/records/{record_id}/score  - Post-hoc quality score
- DELETE /ledger/records?olderThanDays=N    - Retention purge
- GET    /ledger/agents/{agent_id}/metrics  - Trailing-window metrics
- GET    /ledger/stats                      - Record counts and utilization
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query

from campaign_engine.api.errors import to_http_exception
from campaign_engine.core.dependencies import EngineDep
from campaign_engine.core.errors import EngineError
from campaign_engine.models.enums import SortField, SortOrder
from campaign_engine.models.schemas import (
    AgentMetricsWindow,
    ExecutionRecord,
    ExecutionRecordCreate,
    LedgerStats,
    RecordFilter,
    ScorePatch,
)

logger = logging.getLogger(__name__)

# Maximum allowed page size for record listings
MAX_LIST_LIMIT: int = 500

router = APIRouter()


@router.post("/records", response_model=ExecutionRecord, status_code=201)
async def append_record(data: ExecutionRecordCreate, engine: EngineDep) -> ExecutionRecord:
    try:
        return await engine.ledger.append(data)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("/records", response_model=List[ExecutionRecord])
async def list_records(
    engine: EngineDep,
    agentId: Optional[str] = Query(None, description="Filter by agent"),
    sessionId: Optional[str] = Query(None, description="Filter by session"),
    userId: Optional[str] = Query(None, description="Filter by user"),
    startDate: Optional[datetime] = Query(None, description="Inclusive lower bound on timestampUTC"),
    endDate: Optional[datetime] = Query(None, description="Inclusive upper bound on timestampUTC"),
    successOnly: bool = Query(False),
    failedOnly: bool = Query(False),
    minCost: Optional[float] = Query(None, ge=0),
    sortBy: SortField = Query(SortField.TIMESTAMP),
    sortOrder: SortOrder = Query(SortOrder.DESC),
    limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
    offset: int = Query(0, ge=0),
) -> List[ExecutionRecord]:
    record_filter = RecordFilter(
        agentId=agentId,
        sessionId=sessionId,
        userId=userId,
        startDate=startDate,
        endDate=endDate,
        successOnly=successOnly,
        failedOnly=failedOnly,
        minCost=minCost,
        sortBy=sortBy,
        sortOrder=sortOrder,
        limit=limit,
        offset=offset,
    )
    try:
        return await engine.ledger.query(record_filter)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.get("/records/{record_id}", response_model=ExecutionRecord)
async def get_record(record_id: str, engine: EngineDep) -> ExecutionRecord:
    try:
        return await engine.ledger.get(record_id)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.patch("/records/{record_id}/score", response_model=ExecutionRecord)
async def patch_record_score(record_id: str, patch: ScorePatch, engine: EngineDep) -> ExecutionRecord:
    try:
        return await engine.ledger.patch_score(record_id, patch.score, patch.metadata)
    except EngineError as e:
        raise to_http_exception(e) from e


@router.delete("/records", response_model=dict)
async def purge_records(
    engine: EngineDep,
    olderThanDays: int = Query(..., ge=0, description="Delete records older than this many days"),
) -> Dict[str, Any]:
    try:
        removed = await engine.ledger.purge(olderThanDays)
    except EngineError as e:
        raise to_http_exception(e) from e
    return {'removed': removed, 'olderThanDays': olderThanDays}


@router.get("/agents/{agent_id}/metrics", response_model=AgentMetricsWindow)
async def agent_metrics(
    agent_id: str,
    engine: EngineDep,
    windowDays: Optional[int] = Query(None, ge=1, le=365),
) -> AgentMetricsWindow:
    return await engine.ledger.metrics(agent_id, windowDays)


@router.get("/stats", response_model=LedgerStats)
async def ledger_stats(engine: EngineDep) -> LedgerStats:
    try:
        return await engine.ledger.system_stats()
    except EngineError as e:
        raise to_http_exception(e) from e
