"""Single-app analysis routes.

Routes:
    POST /api/analyze          start (or serve a cached) analysis of one app
    GET  /api/analyze          poll a task by ``taskId`` or latest by ``slug``
    POST /api/analyze/refresh  force a deep re-scrape and re-analysis

Starting an analysis only validates the URL, looks the app up in its
storefront and creates an ``analysis_tasks`` row; the scraping and LLM work
runs in the ``process_analysis`` Celery task.  The browser then polls
``GET /api/analyze`` until the row reaches ``completed`` or ``failed``.

Failures before the task exists are raised as
:class:`~review_insight.core.exceptions.AppAnalysisError` and rendered by
the application-wide handler in the catalogued error envelope.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.api.dependencies import LIKE_ESCAPE, contains_pattern, get_optional_user
from review_insight.api.limiter import ANALYZE_LIMIT, limiter
from review_insight.config.settings import get_settings
from review_insight.config.store_defaults import LOOKUP_FALLBACK_COUNTRIES, SUPPORTED_PLATFORMS
from review_insight.core.database import get_db
from review_insight.core.error_handler import (
    URL_EXAMPLES,
    create_error,
    handle_platform_error,
    retry_with_backoff,
    sanitize_app_url,
    validate_app_url,
)
from review_insight.core.exceptions import AppAnalysisError
from review_insight.core.guest import (
    can_guest_analyze,
    format_remaining_time,
    get_browser_fingerprint,
    get_client_ip,
    record_guest_analysis,
)
from review_insight.core.models.analysis import AnalysisTask
from review_insight.core.models.apps import App
from review_insight.core.models.users import User
from review_insight.core.schemas.analysis import AnalyzeRequest, RefreshRequest
from review_insight.core.slug import generate_app_slug, get_cache_duration, is_analysis_recent
from review_insight.core.subscription import can_user_analyze, record_analysis_usage
from review_insight.scrapers.app_store import AppStoreScraper, extract_app_store_id
from review_insight.scrapers.google_play import GooglePlayScraper, extract_google_play_id
from review_insight.scrapers.types import AppInfo

logger = structlog.get_logger(__name__)

router = APIRouter()

_PLATFORM_SUGGESTIONS: dict[str, tuple[str, ...]] = {
    "ios": (
        "Try the US version of the App Store URL",
        "Check if the app is available in your region",
    ),
    "android": (
        "Try using a VPN if you are in a restricted region",
        "Check if the app is still available on Google Play",
    ),
}


# ---------------------------------------------------------------------------
# Scraper dependencies (overridable in tests)
# ---------------------------------------------------------------------------


def get_app_store_scraper() -> AppStoreScraper:
    return AppStoreScraper()


def get_google_play_scraper() -> GooglePlayScraper:
    return GooglePlayScraper()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mask_app_id(app_id: str) -> str:
    """Keep the first and last three characters of an id for logging."""
    if len(app_id) <= 6:
        return app_id
    return f"{app_id[:3]}***{app_id[-3:]}"


def _extract_app_id(url: str, platform: str) -> str:
    """Return the storefront id in *url* or raise ``INVALID_URL``."""
    app_id = (
        extract_app_store_id(url) if platform == "ios" else extract_google_play_id(url)
    )
    if not app_id:
        error = create_error("INVALID_URL", "Could not extract app ID from URL")
        error.suggestions.extend(
            [
                "Use the complete App Store or Google Play URL",
                f"Example iOS: {URL_EXAMPLES['ios']}",
                f"Example Android: {URL_EXAMPLES['android']}",
            ]
        )
        raise error
    return app_id


async def fetch_app_info(
    platform: str,
    app_id: str,
    app_store: AppStoreScraper,
    google_play: GooglePlayScraper,
) -> AppInfo:
    """Look up app metadata with retries.

    iOS apps missing from the US storefront are retried in the UK and
    Chinese storefronts before being reported as not found.

    Raises:
        AppAnalysisError: With a platform-specific code and suggestions.
    """

    async def _lookup() -> AppInfo:
        if platform == "ios":
            for country in LOOKUP_FALLBACK_COUNTRIES:
                info = await app_store.fetch_app(app_id, country)
                if info is not None:
                    return info
                logger.info("analyze.lookup_fallback", app_id=app_id, country=country)
            raise create_error("APP_NOT_FOUND", f"iOS app not found: {app_id}")
        info = await google_play.fetch_app(app_id)
        if info is None:
            raise create_error("APP_NOT_FOUND", f"Android app not found: {app_id}")
        return info

    try:
        return await retry_with_backoff(_lookup, max_retries=3, base_delay=1.0)
    except Exception as exc:
        logger.warning(
            "analyze.lookup_failed",
            platform=platform,
            app_id=_mask_app_id(app_id),
            error=str(exc),
        )
        error = handle_platform_error(platform, exc)
        error.suggestions.extend(_PLATFORM_SUGGESTIONS[platform])
        raise error from exc


async def _check_quota(
    db: AsyncSession,
    request: Request,
    user: Optional[User],
) -> None:
    """Raise ``QUOTA_EXCEEDED`` when the caller has no analyses left."""
    if user is not None:
        verdict = await can_user_analyze(db, user)
        if not verdict["canAnalyze"]:
            raise create_error("QUOTA_EXCEEDED", verdict["reason"])
        return

    verdict = await can_guest_analyze(db, get_client_ip(request), get_browser_fingerprint(request))
    if not verdict["canAnalyze"]:
        message = verdict["reason"]
        if verdict.get("remainingSeconds"):
            message = (
                f"{message} Try again in {format_remaining_time(verdict['remainingSeconds'])}."
            )
        raise create_error("QUOTA_EXCEEDED", message)


async def _latest_completed(
    db: AsyncSession, platform: str, app_id: str
) -> Optional[AnalysisTask]:
    result = await db.execute(
        select(AnalysisTask)
        .where(
            AnalysisTask.platform == platform,
            AnalysisTask.app_store_id == app_id,
            AnalysisTask.is_latest.is_(True),
            AnalysisTask.status == "completed",
        )
        .order_by(AnalysisTask.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _clear_latest(db: AsyncSession, platform: str, app_id: str) -> None:
    await db.execute(
        update(AnalysisTask)
        .where(
            AnalysisTask.platform == platform,
            AnalysisTask.app_store_id == app_id,
            AnalysisTask.is_latest.is_(True),
        )
        .values(is_latest=False)
    )


# ---------------------------------------------------------------------------
# POST /api/analyze
# ---------------------------------------------------------------------------


@router.post("")
@limiter.limit(ANALYZE_LIMIT)
async def start_analysis(
    request: Request,
    payload: AnalyzeRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[Optional[User], Depends(get_optional_user)],
    app_store: Annotated[AppStoreScraper, Depends(get_app_store_scraper)],
    google_play: Annotated[GooglePlayScraper, Depends(get_google_play_scraper)],
) -> dict[str, Any]:
    """Start an analysis of the app behind ``appUrl``.

    Returns the latest completed analysis instead when it is still within
    its popularity-based cache window.

    Returns:
        ``{taskId, appSlug, status, message, cached}``; cache hits add
        ``cacheDays`` and ``createdAt``.

    Raises:
        AppAnalysisError: ``INVALID_URL``, ``INVALID_PLATFORM``,
            ``APP_NOT_FOUND``, ``NETWORK_ERROR``, ``RATE_LIMITED``,
            ``QUOTA_EXCEEDED`` or ``AI_SERVICE_ERROR``.
    """
    settings = get_settings()
    platform = payload.platform

    if not payload.app_url or not platform:
        raise create_error("INVALID_URL", "Missing required fields: appUrl, platform")
    if platform not in SUPPORTED_PLATFORMS:
        raise create_error(
            "INVALID_PLATFORM",
            f"Invalid platform: {platform}. Supported platforms: ios, android",
        )

    app_url = sanitize_app_url(payload.app_url)
    if not validate_app_url(app_url, platform):
        error = create_error("INVALID_URL", "Invalid app URL format")
        error.suggestions.append(f"Example for {platform}: {URL_EXAMPLES[platform]}")
        raise error

    app_id = _extract_app_id(app_url, platform)
    info = await fetch_app_info(platform, app_id, app_store, google_play)
    app_slug = generate_app_slug(info.name, platform)

    cached = await _latest_completed(db, platform, app_id)
    if cached is not None and is_analysis_recent(cached.created_at, info.review_count):
        cache_days = get_cache_duration(info.review_count)
        logger.info("analyze.cache_hit", task_id=str(cached.id), cache_days=cache_days)
        return {
            "taskId": str(cached.id),
            "appSlug": cached.app_slug or app_slug,
            "status": "completed",
            "message": f"Using cached analysis ({cache_days} day{'s' if cache_days > 1 else ''} cache)",
            "cached": True,
            "cacheDays": cache_days,
            "createdAt": cached.created_at.isoformat(),
        }

    if settings.enable_subscriptions:
        await _check_quota(db, request, user)

    options = payload.options.model_dump(by_alias=True, exclude_none=True)
    await _clear_latest(db, platform, app_id)
    task = AnalysisTask(
        user_id=user.id if user is not None else None,
        task_type="single",
        status="processing",
        platform=platform,
        app_store_id=app_id,
        app_slug=app_slug,
        is_latest=True,
        options=options,
    )
    db.add(task)
    await db.flush()
    if settings.enable_subscriptions and user is not None:
        await record_analysis_usage(db, user, task.id)
    await db.commit()

    if settings.enable_subscriptions and user is None:
        await record_guest_analysis(
            db,
            get_client_ip(request),
            get_browser_fingerprint(request),
            task.id,
            platform=platform,
            app_url=app_url,
            user_agent=request.headers.get("user-agent"),
        )

    from review_insight.workers.tasks import process_analysis  # noqa: PLC0415

    process_analysis.delay(str(task.id), platform, app_id, info.to_dict(), options)

    logger.info(
        "analyze.started",
        task_id=str(task.id),
        platform=platform,
        app_id=_mask_app_id(app_id),
        user_id=str(user.id) if user is not None else None,
    )
    return {
        "taskId": str(task.id),
        "appSlug": app_slug,
        "status": "pending",
        "message": "Analysis started",
        "cached": False,
    }


# ---------------------------------------------------------------------------
# GET /api/analyze
# ---------------------------------------------------------------------------


@router.get("")
async def get_analysis(
    db: Annotated[AsyncSession, Depends(get_db)],
    task_id: Optional[str] = Query(default=None, alias="taskId"),
    slug: Optional[str] = Query(default=None),
) -> Any:
    """Return the status, progress and result of an analysis.

    ``taskId`` selects one task; ``slug`` selects the newest task flagged
    ``is_latest`` for that app.

    Returns:
        ``{taskId, appSlug, status, progress, result, error}``, or 400 when
        neither parameter is given and 404 when nothing matches.
    """
    if not task_id and not slug:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing taskId or slug parameter"},
        )

    task: Optional[AnalysisTask] = None
    if task_id:
        try:
            task = await db.get(AnalysisTask, uuid.UUID(task_id))
        except ValueError:
            task = None
    else:
        result = await db.execute(
            select(AnalysisTask)
            .where(AnalysisTask.app_slug == slug, AnalysisTask.is_latest.is_(True))
            .order_by(AnalysisTask.created_at.desc())
            .limit(1)
        )
        task = result.scalar_one_or_none()

    if task is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Analysis not found"},
        )

    return {
        "taskId": str(task.id),
        "appSlug": task.app_slug,
        "status": task.status,
        "progress": task.progress,
        "result": task.result,
        "error": task.error_msg,
    }


# ---------------------------------------------------------------------------
# POST /api/analyze/refresh
# ---------------------------------------------------------------------------


@router.post("/refresh")
@limiter.limit(ANALYZE_LIMIT)
async def refresh_analysis(
    request: Request,
    payload: RefreshRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[Optional[User], Depends(get_optional_user)],
) -> dict[str, Any]:
    """Force a deep incremental scrape and fresh analysis of a stored app.

    The app is matched case-insensitively on a substring of its name.

    Raises:
        HTTPException 400: If ``appName`` is empty.
        HTTPException 404: If no stored app matches.
    """
    app_name = payload.app_name.strip()
    if not app_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="App name is required",
        )

    result = await db.execute(
        select(App)
        .where(App.name.ilike(contains_pattern(app_name), escape=LIKE_ESCAPE))
        .order_by(App.review_count.desc().nulls_last())
        .limit(1)
    )
    app = result.scalar_one_or_none()
    if app is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="App not found")

    slug = generate_app_slug(app.name, app.platform)
    options = {"forceRefresh": True, "forceReanalysis": payload.force_reanalysis}
    await _clear_latest(db, app.platform, app.app_id)
    task = AnalysisTask(
        user_id=user.id if user is not None else None,
        task_type="single",
        status="processing",
        platform=app.platform,
        app_store_id=app.app_id,
        app_slug=slug,
        is_latest=True,
        options=options,
    )
    db.add(task)
    await db.commit()

    from review_insight.workers.tasks import process_refresh  # noqa: PLC0415

    process_refresh.delay(str(task.id), str(app.id), options)

    logger.info("analyze.refresh_started", task_id=str(task.id), app_pk=str(app.id))
    return {
        "taskId": str(task.id),
        "slug": slug,
        "message": (
            "Force reanalysis started. Collecting up to 2000 new reviews "
            "and generating a fresh report."
        ),
    }
