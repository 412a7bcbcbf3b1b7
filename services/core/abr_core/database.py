"""
Database connection utilities using asyncpg.

This module provides:
- Connection pool management with a process-wide singleton
- JSONB codec registration for lookup scopes and attributes
- Pool shutdown and health checking
"""

import json
import logging
from typing import Optional

import asyncpg

from abr_core.config import BaseServiceSettings

logger = logging.getLogger(__name__)

# Global connection pool (singleton)
_db_pool: Optional[asyncpg.Pool] = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode jsonb columns into dicts on every pooled connection."""
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


async def get_db_pool(settings: BaseServiceSettings) -> asyncpg.Pool:
    """
    Get or create the asyncpg connection pool.

    The pool is created on first access from ``settings`` and reused by
    every later caller in the process.

    Example:
        ```python
        pool = await get_db_pool(settings)
        async with pool.acquire() as conn:
            count = await conn.fetchval("SELECT count(*) FROM lookup_records")
        ```
    """
    global _db_pool

    if _db_pool is None:
        logger.info(
            f"Creating database connection pool "
            f"(min={settings.DB_POOL_MIN_SIZE}, max={settings.DB_POOL_MAX_SIZE})"
        )

        _db_pool = await asyncpg.create_pool(
            settings.DATABASE_URL,
            min_size=settings.DB_POOL_MIN_SIZE,
            max_size=settings.DB_POOL_MAX_SIZE,
            command_timeout=settings.DB_COMMAND_TIMEOUT,
            init=_init_connection,
        )

        logger.info("Database connection pool created successfully")

    return _db_pool


async def close_db_pool() -> None:
    """Close the connection pool, if one was created."""
    global _db_pool

    if _db_pool is not None:
        logger.info("Closing database connection pool")
        await _db_pool.close()
        _db_pool = None
        logger.info("Database connection pool closed")


async def check_db_health(pool: asyncpg.Pool) -> bool:
    """
    Check that the database answers a trivial query.

    Returns:
        bool: True if the database is reachable, False otherwise
    """
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False


__all__ = [
    "get_db_pool",
    "close_db_pool",
    "check_db_health",
]
