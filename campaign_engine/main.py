"""
FastAPI application entry point for the campaign decision engine.

Startup builds the EngineContext (Postgres-backed when DATABASE_URL is set,
in-memory otherwise), stores it on app.state and starts the background
experiment monitor. Shutdown stops the monitor and closes the pool.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campaign_engine.api import api_router
from campaign_engine.core.config import get_settings
from campaign_engine.core.context import build_engine_context
from campaign_engine.core.database import close_pool, create_pool, ensure_schema
from campaign_engine.jobs.experiment_monitor import ExperimentMonitor

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    On startup:
        - Open the database pool and create tables (if configured)
        - Build the engine context
        - Start the experiment monitor
    On shutdown:
        - Stop the monitor
        - Close the database pool
    """
    logger.info("Campaign engine API starting")
    pool = None
    try:
        pool = await create_pool(settings)
        if pool is not None:
            await ensure_schema(pool)
            logger.info("Database schema ready")
    except Exception as e:
        logger.error(f"Failed to initialize database, using in-memory stores: {e}")
        await close_pool(pool)
        pool = None

    engine = build_engine_context(settings, pool)
    app.state.engine = engine
    monitor = ExperimentMonitor(engine.experiments, settings.experiment_tick_seconds)
    monitor.start()

    yield

    logger.info("Campaign engine API shutting down")
    await monitor.stop()
    try:
        await close_pool(pool)
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Campaign Decision Engine API",
    version="1.0.0",
    description=(
        "Execution ledger, agent health scoring, campaign strategy planning "
        "and A/B significance testing for marketing agents."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Campaign Decision Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "campaign_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
