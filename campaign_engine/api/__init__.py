"""
API package initialization.

Router modules:
- ledger: execution record append/query/purge and agent metrics
- health: per-agent and system health analysis
- strategies: strategy generation and lifecycle
- experiments: A/B experiment lifecycle, metrics and winner declaration
"""

from fastapi import APIRouter

from campaign_engine.api.ledger import router as ledger_router
from campaign_engine.api.health import router as health_router
from campaign_engine.api.strategies import router as strategies_router
from campaign_engine.api.experiments import router as experiments_router

api_router = APIRouter()

api_router.include_router(ledger_router, prefix="/ledger", tags=["ledger"])
api_router.include_router(health_router, prefix="/agents", tags=["health"])
api_router.include_router(strategies_router, prefix="/strategies", tags=["strategies"])
api_router.include_router(experiments_router, prefix="/experiments", tags=["experiments"])

__all__ = [
    "api_router",
    "ledger_router",
    "health_router",
    "strategies_router",
    "experiments_router",
]
