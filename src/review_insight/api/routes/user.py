"""Per-user routes: analysis history, notification settings, test email.

Routes:
    GET    /api/user/history      paginated, filterable list of own analyses
    DELETE /api/user/history      delete one of own analyses
    GET    /api/user/settings     notification preferences and profile
    PUT    /api/user/settings     partial update of the preferences
    POST   /api/user/test-email   send a test notification
"""

from __future__ import annotations

import json
import math
from typing import Annotated, Any, Literal, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.api.dependencies import (
    LIKE_ESCAPE,
    PaginationParams,
    contains_pattern,
    get_current_active_user,
    get_pagination,
)
from review_insight.core.database import get_db
from review_insight.core.email_service import get_email_service
from review_insight.core.models.analysis import AnalysisTask
from review_insight.core.models.users import User
from review_insight.core.schemas.user import (
    NOTIFICATION_FIELDS,
    DeleteHistoryRequest,
    UserSettingsRead,
    UserSettingsUpdate,
)
from review_insight.core.subscription import log_usage

logger = structlog.get_logger(__name__)

router = APIRouter()

_EMPTY_SENTIMENT = {"positive": 0, "negative": 0, "neutral": 0}


def _invalid_input(exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid input data",
            "details": json.loads(exc.json(include_url=False)),
        },
    )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def format_history_item(task: AnalysisTask) -> dict[str, Any]:
    """Shape one task row for the history list.

    ``summary`` is present only for completed tasks and ``processing``
    only for running ones.
    """
    result = task.result or {}
    app = result.get("app")
    analysis = result.get("analysis") or {}

    summary = None
    if task.result and task.status == "completed":
        summary = {
            "totalReviews": result.get("reviewCount") or 0,
            "analyzedCount": result.get("analyzedCount") or 0,
            "sentiment": analysis.get("sentiment") or _EMPTY_SENTIMENT,
            "criticalIssuesCount": len(analysis.get("criticalIssues") or []),
            "priorityActionsCount": len(analysis.get("priorityActions") or []),
        }

    processing = None
    if task.status in ("pending", "processing"):
        processing = {"progress": task.progress, "status": task.status}

    return {
        "id": str(task.id),
        "slug": task.app_slug,
        "platform": task.platform,
        "appStoreId": task.app_store_id,
        "status": task.status,
        "taskType": task.task_type,
        "createdAt": task.created_at.isoformat() if task.created_at else None,
        "completedAt": task.completed_at.isoformat() if task.completed_at else None,
        "app": (
            {
                "name": app.get("name"),
                "iconUrl": app.get("iconUrl"),
                "rating": app.get("rating"),
                "reviewCount": app.get("reviewCount"),
            }
            if app
            else None
        ),
        "summary": summary,
        "processing": processing,
    }


@router.get("/history")
async def get_history(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    pagination: Annotated[PaginationParams, Depends(get_pagination)],
    status_filter: Optional[str] = Query(default=None, alias="status"),
    platform: Optional[Literal["ios", "android"]] = Query(default=None),
    sort: Literal["recent", "app_name", "status"] = Query(default="recent"),
    search: Optional[str] = Query(default=None),
) -> dict[str, Any]:
    """List the caller's analyses with filters, sorting and pagination.

    ``search`` matches the stored app name or the slug, case-insensitively.
    """
    app_name = AnalysisTask.result["app"]["name"].astext
    conditions = [AnalysisTask.user_id == user.id]
    if status_filter:
        conditions.append(AnalysisTask.status == status_filter)
    if platform:
        conditions.append(AnalysisTask.platform == platform)
    if search:
        pattern = contains_pattern(search)
        conditions.append(
            or_(
                app_name.ilike(pattern, escape=LIKE_ESCAPE),
                AnalysisTask.app_slug.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )

    if sort == "app_name":
        order_by = [func.lower(app_name).asc().nulls_last(), AnalysisTask.created_at.desc()]
    elif sort == "status":
        order_by = [AnalysisTask.status.asc(), AnalysisTask.created_at.desc()]
    else:
        order_by = [AnalysisTask.created_at.desc()]

    total = (
        await db.execute(select(func.count()).select_from(AnalysisTask).where(*conditions))
    ).scalar_one()
    tasks = (
        await db.execute(
            select(AnalysisTask)
            .where(*conditions)
            .order_by(*order_by)
            .offset(pagination.offset)
            .limit(pagination.limit)
        )
    ).scalars().all()

    total_pages = math.ceil(total / pagination.limit) if total else 0
    return {
        "analyses": [format_history_item(task) for task in tasks],
        "pagination": {
            "currentPage": pagination.page,
            "totalPages": total_pages,
            "totalItems": total,
            "itemsPerPage": pagination.limit,
            "hasNextPage": pagination.page < total_pages,
            "hasPreviousPage": pagination.page > 1,
        },
        "filters": {
            "status": status_filter,
            "platform": platform,
            "sortBy": sort,
            "search": search,
        },
    }


@router.delete("/history")
async def delete_history_item(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    body: Annotated[Any, Body()] = None,
) -> Any:
    """Delete one analysis owned by the caller.

    Raises:
        HTTPException 404: If the analysis does not exist or belongs to
            someone else.
    """
    try:
        payload = DeleteHistoryRequest.model_validate(body or {})
    except ValidationError as exc:
        return _invalid_input(exc)

    task = (
        await db.execute(
            select(AnalysisTask).where(
                AnalysisTask.id == payload.analysis_id,
                AnalysisTask.user_id == user.id,
            )
        )
    ).scalar_one_or_none()
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Analysis not found or access denied",
        )

    app_name = ((task.result or {}).get("app") or {}).get("name") or "Unknown"
    await db.execute(delete(AnalysisTask).where(AnalysisTask.id == task.id))
    await log_usage(
        db,
        user.id,
        "analysis_completed",
        metadata={
            "action": "deleted",
            "analysisId": str(task.id),
            "appName": app_name,
            "platform": task.platform,
        },
    )
    await db.commit()
    logger.info("history.deleted", user_id=str(user.id), task_id=str(task.id))
    return {"message": "Analysis deleted successfully"}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@router.get("/settings")
async def get_user_settings(
    user: Annotated[User, Depends(get_current_active_user)],
) -> dict[str, Any]:
    return {
        "settings": UserSettingsRead.model_validate(user).model_dump(by_alias=True),
        "profile": {"name": user.name, "email": user.email},
    }


@router.put("/settings")
async def update_user_settings(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    body: Annotated[Any, Body()] = None,
) -> Any:
    """Apply a partial update to the notification preferences.

    Unknown keys and non-boolean values are rejected with 400.
    """
    try:
        payload = UserSettingsUpdate.model_validate(body or {})
    except ValidationError as exc:
        return _invalid_input(exc)

    changes = payload.model_dump(exclude_none=True)
    for attribute, value in changes.items():
        setattr(user, attribute, value)
    db.add(user)

    updated_fields = [key for key, attr in NOTIFICATION_FIELDS.items() if attr in changes]
    await log_usage(
        db,
        user.id,
        "login",
        metadata={
            "action": "settings_updated",
            "updatedFields": updated_fields,
            "newSettings": payload.model_dump(by_alias=True, exclude_none=True),
        },
    )
    await db.commit()
    logger.info("settings.updated", user_id=str(user.id), fields=updated_fields)
    return {
        "message": "Settings updated successfully",
        "settings": UserSettingsRead.model_validate(user).model_dump(by_alias=True),
    }


# ---------------------------------------------------------------------------
# Test email
# ---------------------------------------------------------------------------


@router.post("/test-email")
async def send_test_email(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, Any]:
    """Send a test notification to the caller's address.

    Raises:
        HTTPException 400: If the user disabled email notifications.
        HTTPException 503: If SMTP is not configured.
        HTTPException 502: If the SMTP server refused the message.
    """
    if not user.email_notifications:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email notifications are disabled",
        )
    email_service = get_email_service()
    if not email_service.is_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Email delivery is not configured",
        )
    if not await email_service.send_test_email(user.email):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send test email",
        )

    await log_usage(
        db, user.id, "email_sent", metadata={"type": "test_email", "email": user.email}
    )
    await db.commit()
    return {"message": "Test email sent successfully", "email": user.email}
