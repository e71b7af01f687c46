"""Multi-app comparison route.

Routes:
    POST /api/compare   queue a comparison of two to five apps

Comparisons are only available to signed-in users and always count
against the monthly quota.  The heavy lifting happens in the
``process_comparison`` Celery task; clients poll the task through
``GET /api/analyze?taskId=``.
"""

from __future__ import annotations

import json
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.analysis.comparison import estimated_time, extract_app_id_for_compare
from review_insight.api.dependencies import get_current_active_user
from review_insight.api.limiter import COMPARE_LIMIT, limiter
from review_insight.core.database import get_db
from review_insight.core.models.analysis import AnalysisTask, TaskApp
from review_insight.core.models.users import User
from review_insight.core.schemas.comparison import ComparisonRequest
from review_insight.core.subscription import can_user_analyze, log_usage

logger = structlog.get_logger(__name__)

router = APIRouter()


def _invalid_input(details: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid input data", "details": details},
    )


@router.post("")
@limiter.limit(COMPARE_LIMIT)
async def start_comparison(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_active_user)],
    body: Annotated[Any, Body()] = None,
) -> Any:
    """Validate the request, create the comparison task and enqueue it.

    The body is validated here rather than by FastAPI so that malformed
    input is reported as HTTP 400 with the validation details.

    Returns:
        ``{taskId, message, totalApps, estimatedTime}``.  HTTP 402 with
        ``requiresUpgrade`` when the monthly quota is used up.
    """
    try:
        payload = ComparisonRequest.model_validate(body or {})
    except ValidationError as exc:
        return _invalid_input(json.loads(exc.json(include_url=False)))

    try:
        app_ids = [
            extract_app_id_for_compare(app.app_url, app.platform) for app in payload.apps
        ]
    except ValueError as exc:
        return _invalid_input([{"msg": str(exc)}])

    verdict = await can_user_analyze(db, current_user)
    if not verdict["canAnalyze"]:
        await db.commit()
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content={
                "error": "Usage limit exceeded",
                "code": "USAGE_LIMIT_EXCEEDED",
                "message": verdict["reason"] or "You have reached your analysis limit",
                "requiresUpgrade": True,
                "currentTier": verdict["subscriptionTier"],
                "remainingAnalyses": verdict["remainingAnalyses"],
            },
        )

    apps = [app.model_dump(by_alias=True) for app in payload.apps]
    comparison_options = payload.comparison_options.model_dump(by_alias=True)

    task = AnalysisTask(
        user_id=current_user.id,
        task_type="comparison",
        status="pending",
        is_latest=False,
        options={"apps": apps, "comparisonOptions": comparison_options},
    )
    db.add(task)
    await db.flush()

    for index, (app, app_id) in enumerate(zip(payload.apps, app_ids)):
        db.add(
            TaskApp(
                task_id=task.id,
                platform=app.platform,
                app_store_id=app_id,
                sort_order=index,
            )
        )

    await log_usage(
        db,
        current_user.id,
        "analysis_started",
        task_id=task.id,
        metadata={
            "type": "comparison",
            "totalApps": len(apps),
            "focusAreas": comparison_options["focusAreas"],
            "timeRange": comparison_options["timeRange"],
        },
    )
    await db.commit()

    from review_insight.workers.tasks import process_comparison  # noqa: PLC0415

    process_comparison.delay(str(task.id), apps, comparison_options, str(current_user.id))

    logger.info(
        "compare.started",
        task_id=str(task.id),
        total_apps=len(apps),
        user_id=str(current_user.id),
    )
    return {
        "taskId": str(task.id),
        "message": "Comparison analysis started successfully",
        "totalApps": len(apps),
        "estimatedTime": estimated_time(len(apps)),
    }
