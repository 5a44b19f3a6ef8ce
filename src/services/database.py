"""asyncpg connection pool with per-user RLS context.

Every connection handed out by ``get_connection`` runs inside a transaction
where ``app.current_user_id`` is set via ``SET LOCAL`` so Postgres Row-Level
Security policies see the calling user.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("kalori.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    # raw_data is jsonb; decode to dicts instead of strings
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min,
        max_size=s.db_pool_max,
        command_timeout=s.db_command_timeout_s,
        init=_init_connection,
    )
    logger.info("Database pool initialized (min=%d, max=%d)", s.db_pool_min, s.db_pool_max)
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized — call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: uuid.UUID | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with the RLS session variable set.

    Usage::

        async with get_connection(user_id=owner) as conn:
            rows = await conn.fetch("SELECT * FROM activity_records WHERE date = $1", today)
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if user_id:
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", str(user_id)
                )
            yield conn
