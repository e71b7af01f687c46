"""Health check route for the ReviewInsight API.

``GET /api/health``
    Verifies the process can reach the database (``SELECT 1``) and Redis
    (``PING``) and reports which optional integrations are configured.
    Always returns HTTP 200; the ``status`` field distinguishes ``"ok"``
    from ``"degraded"``.

This endpoint is diagnostic and must never raise HTTP 5xx errors.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import redis.asyncio as aioredis
import sqlalchemy as sa
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from review_insight.config.settings import get_settings
from review_insight.core.database import AsyncSessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])

# ---------------------------------------------------------------------------
# Helper: DB check
# ---------------------------------------------------------------------------


async def _check_database() -> str:
    """Run ``SELECT 1`` against the configured database.

    Returns:
        ``"ok"`` if the query succeeds, ``"error"`` otherwise.
    """
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(sa.text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


# ---------------------------------------------------------------------------
# Helper: Redis check
# ---------------------------------------------------------------------------


async def _check_redis() -> str:
    """Send ``PING`` to the configured Redis instance.

    Returns:
        ``"ok"`` if Redis responds, ``"error"`` otherwise.
    """
    settings = get_settings()
    try:
        client: aioredis.Redis = aioredis.from_url(
            settings.redis_url,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        await client.ping()
        await client.aclose()
        return "ok"
    except Exception:
        logger.exception("Health check: Redis unreachable")
        return "error"


def _integration_flags() -> dict[str, bool]:
    settings = get_settings()
    return {
        "hasOpenRouterKey": bool(settings.openrouter_api_key),
        "hasDatabaseUrl": bool(settings.database_url),
        "hasStripe": bool(settings.stripe_secret_key),
        "hasSmtp": bool(settings.smtp_host),
        "subscriptionsEnabled": settings.enable_subscriptions,
    }


# ---------------------------------------------------------------------------
# GET /api/health
# ---------------------------------------------------------------------------


@router.get("/api/health", include_in_schema=True)
async def system_health() -> JSONResponse:
    """Return process-level health including database and Redis connectivity.

    Returns:
        JSON with keys: ``status``, ``database``, ``redis``, ``env``,
        ``timestamp``.
    """
    db_status, redis_status = await asyncio.gather(_check_database(), _check_redis())
    overall = "ok" if db_status == "ok" and redis_status == "ok" else "degraded"

    return JSONResponse(
        {
            "status": overall,
            "database": "connected" if db_status == "ok" else "error",
            "redis": redis_status,
            "env": _integration_flags(),
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
    )
