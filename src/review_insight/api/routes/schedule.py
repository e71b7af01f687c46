"""External trigger for the maintenance jobs.

Routes:
    POST /api/schedule-update   run a maintenance action now
    GET  /api/schedule-update   liveness and the list of actions

The same jobs run periodically under Celery Beat; this endpoint lets an
external cron (or an operator) run them on demand.  Callers authenticate
with ``Authorization: Bearer <SCHEDULE_SECRET>``; when no secret is
configured every request is rejected.
"""

from __future__ import annotations

import hmac
from datetime import UTC, datetime
from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.settings import get_settings
from review_insight.core.database import get_db
from review_insight.scrapers.incremental import DEFAULT_KEEP_COUNT, cleanup_all_apps
from review_insight.scrapers.quick_fetch import trigger_hot_apps_update

logger = structlog.get_logger(__name__)

router = APIRouter()

AVAILABLE_ACTIONS: tuple[str, ...] = ("update-hot-apps", "cleanup-old-reviews")


class ScheduleRequest(BaseModel):
    """Body of ``POST /api/schedule-update``.

    ``action`` is a plain string so that unknown actions get a 400 from
    the route instead of a 422 from validation.
    """

    model_config = ConfigDict(populate_by_name=True)

    action: str = "update-hot-apps"
    limit: int = Field(default=10, ge=1, le=100)
    cleanup_keep_count: int = Field(default=DEFAULT_KEEP_COUNT, ge=1, alias="cleanupKeepCount")


def verify_schedule_secret(
    authorization: Annotated[Optional[str], Header()] = None,
) -> None:
    """Reject the request unless it carries the configured bearer secret.

    Raises:
        HTTPException 401: On a missing, wrong or unconfigured secret.
    """
    secret = get_settings().schedule_secret
    provided = (authorization or "").removeprefix("Bearer ").strip()
    if not secret or not provided or not hmac.compare_digest(provided, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/schedule-update", dependencies=[Depends(verify_schedule_secret)])
async def run_scheduled_action(
    db: Annotated[AsyncSession, Depends(get_db)],
    payload: Optional[ScheduleRequest] = None,
) -> dict[str, Any]:
    """Run one maintenance action synchronously and report its outcome.

    Raises:
        HTTPException 400: If the action is unknown.
    """
    payload = payload or ScheduleRequest()
    logger.info("schedule.triggered", action=payload.action, limit=payload.limit)

    result: dict[str, Any]
    if payload.action == "update-hot-apps":
        result = await trigger_hot_apps_update(db, limit=payload.limit)
    elif payload.action == "cleanup-old-reviews":
        summary = await cleanup_all_apps(db, keep=payload.cleanup_keep_count)
        result = {
            "action": "cleanup",
            "appsProcessed": summary["apps"],
            "deleted": summary["deleted"],
            "keepCount": payload.cleanup_keep_count,
        }
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")

    return {
        "success": True,
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "result": result,
    }


@router.get("/schedule-update")
async def schedule_status() -> dict[str, Any]:
    """Liveness check and documentation of the available actions."""
    return {
        "status": "healthy",
        "message": "Schedule update API is running",
        "timestamp": datetime.now(tz=UTC).isoformat(),
        "availableActions": list(AVAILABLE_ACTIONS),
    }
