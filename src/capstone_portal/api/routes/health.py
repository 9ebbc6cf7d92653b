"""Health check route handlers.

``GET /api/health``
    Verifies the process can reach the database (``SELECT 1``) and Redis
    (``PING``).  Always returns HTTP 200; the ``status`` field distinguishes
    ``"ok"`` from ``"degraded"``.

This endpoint is diagnostic and must never raise HTTP 5xx errors.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import sqlalchemy as sa
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from capstone_portal import __version__
from capstone_portal.api.dependencies import RedisDep, SessionFactory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


async def _check_database(session_factory) -> str:
    """Run ``SELECT 1`` against the configured database."""
    try:
        async with session_factory() as session:
            await session.execute(sa.text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


async def _check_redis(redis) -> str:
    """Send ``PING`` to Redis."""
    try:
        await redis.ping()
        return "ok"
    except Exception:
        logger.exception("Health check: Redis unreachable")
        return "error"


@router.get("/api/health")
async def system_health(session_factory: SessionFactory, redis: RedisDep) -> JSONResponse:
    """Return process-level health including database and Redis connectivity.

    Returns:
        JSON with keys: ``status``, ``version``, ``database``, ``redis``,
        ``timestamp``.
    """
    db_status, redis_status = await asyncio.gather(
        _check_database(session_factory),
        _check_redis(redis),
    )
    overall = "ok" if db_status == "ok" and redis_status == "ok" else "degraded"
    return JSONResponse(
        {
            "status": overall,
            "version": __version__,
            "database": db_status,
            "redis": redis_status,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )
