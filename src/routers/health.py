"""Liveness endpoint — public, no identity required."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from src.config import get_settings
from src.devices.base import utc_now
from src.devices.config_loader import get_engine_config
from src.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("kalori.health")


async def _database_reachable() -> bool:
    try:
        async with get_pool().acquire() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as exc:
        logger.warning("Health check database query failed: %s", exc)
        return False
    return True


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Report process liveness, database reachability and the active collaborators.

    Always 200; a failed database check reports ``degraded``.
    """
    settings = get_settings()
    db_ok = await _database_reachable()
    generator = getattr(request.app.state, "text_generator", None)

    return {
        "status": "healthy" if db_ok else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "connected" if db_ok else "unreachable",
        "engine_config": get_engine_config().version,
        "text_generation": generator.name if generator is not None else None,
        "timestamp": utc_now().isoformat(),
    }
