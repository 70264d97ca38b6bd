"""
Async PostgreSQL connection pool management.

The pool is created once by the service lifespan, handed to the engine
context, and closed on shutdown. Nothing in this module keeps module-level
state; every consumer receives the pool by injection.

Connection Pool Configuration (from Settings):
- db_pool_min_size: minimum idle connections (default 2)
- db_pool_max_size: maximum connections (default 10)
- db_command_timeout: per-query timeout in seconds (default 60)

Usage:
    pool = await create_pool(settings)
    await ensure_schema(pool)
    ...
    await close_pool(pool)
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from campaign_engine.core.config import Settings
from campaign_engine.sql.ledger_queries import CREATE_LEDGER_TABLE
from campaign_engine.sql.state_queries import CREATE_STATE_TABLES

logger = logging.getLogger(__name__)


async def create_pool(settings: Settings) -> Optional[Pool]:
    """
    Create the asyncpg pool described by settings.

    Returns:
        The pool, or None when no DATABASE_URL is configured (in-memory mode).

    Raises:
        asyncpg.PostgresError: If the database rejects the connection.
        OSError: If the database host is unreachable.
    """
    if not settings.database_url:
        logger.info("DATABASE_URL not set; using in-memory stores")
        return None

    pool = await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
    )
    logger.info("Database pool created")
    return pool


async def ensure_schema(pool: Pool) -> None:
    """Create the ledger and state tables if they do not exist."""
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(CREATE_LEDGER_TABLE)
            await conn.execute(CREATE_STATE_TABLES)


async def close_pool(pool: Optional[Pool]) -> None:
    """Close the pool; a None pool is a no-op."""
    if pool is None:
        return
    await pool.close()
    logger.info("Database pool closed")
