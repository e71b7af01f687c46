"""Background processing of single-app analyses.

:func:`process_analysis` is the body of the ``process_analysis`` Celery
task.  It owns the lifecycle of one ``analysis_tasks`` row: every stage
writes its progress and commits immediately so the polling client sees it.

Progress checkpoints::

     5  processing started
    15  app metadata stored
    45  reviews fetched
    60  new reviews stored
    70  reviews filtered and sampled
    85  LLM analysis returned
   100  completed

Any exception moves the task to ``failed`` with a message chosen by
:func:`~review_insight.core.error_handler.classify_processing_error`.
Nothing is re-raised: the task row is the only channel back to the client.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from review_insight.ai import analyze_single_app
from review_insight.analysis.sampling import apply_rating_filter, sample_reviews
from review_insight.api.metrics import (
    ai_requests_total,
    analysis_tasks_total,
    reviews_scraped_total,
    reviews_stored_total,
)
from review_insight.config.store_defaults import (
    ANDROID_DEFAULT_COUNTRIES,
    IOS_DEFAULT_COUNTRIES,
    ITUNES_MAX_PAGES,
    REVIEW_TARGET_DEFAULT,
    REVIEW_TARGET_MULTI_COUNTRY,
)
from review_insight.core.category import normalize_category
from review_insight.core.database import AsyncSessionLocal
from review_insight.core.email_service import notify_analysis_completed, notify_analysis_failed
from review_insight.core.error_handler import classify_processing_error
from review_insight.core.exceptions import AIServiceError, ScraperError
from review_insight.core.models.analysis import AnalysisTask
from review_insight.core.models.apps import App
from review_insight.core.subscription import log_usage
from review_insight.scrapers.app_store import AppStoreScraper
from review_insight.scrapers.google_play import GooglePlayScraper
from review_insight.scrapers.incremental import fetch_incremental_reviews
from review_insight.scrapers.storage import existing_review_ids, store_reviews, upsert_app
from review_insight.scrapers.types import AppInfo, ScrapedReview

logger = structlog.get_logger(__name__)

REFRESH_TARGET_COUNT = 5000
REFRESH_MAX_NEW = 2000
STALE_TASK_AGE = timedelta(hours=2)
TIMED_OUT_MESSAGE = "Analysis timed out before completing. Please try again."


# ---------------------------------------------------------------------------
# Task-row helpers
# ---------------------------------------------------------------------------


async def update_task(session: AsyncSession, task_id: uuid.UUID, **values: Any) -> None:
    """Write *values* onto the task row and commit so pollers see them."""
    await session.execute(
        update(AnalysisTask).where(AnalysisTask.id == task_id).values(**values)
    )
    await session.commit()


async def _load_task(session: AsyncSession, task_id: uuid.UUID) -> Optional[AnalysisTask]:
    result = await session.execute(select(AnalysisTask).where(AnalysisTask.id == task_id))
    return result.scalar_one_or_none()


async def fail_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    error: BaseException,
    task_type: str = "single",
) -> str:
    """Mark the task failed and return the stored error message."""
    await session.rollback()
    message, code = classify_processing_error(error)
    error_msg = f"{message}: {error}"
    await update_task(session, task_id, status="failed", error_msg=error_msg)
    analysis_tasks_total.labels(task_type=task_type, status="failed").inc()
    logger.error(
        "analysis.failed",
        task_id=str(task_id),
        code=code,
        error=str(error),
        error_type=type(error).__name__,
    )
    return error_msg


async def fail_stale_tasks(
    session: AsyncSession,
    max_age: timedelta = STALE_TASK_AGE,
    now: Optional[datetime] = None,
) -> int:
    """Fail ``pending``/``processing`` tasks created more than *max_age* ago.

    A worker killed at its hard time limit, or lost altogether, never
    reaches the failure handler, so its row would otherwise poll as
    running forever.
    """
    cutoff = (now or datetime.now(tz=UTC)) - max_age
    result = await session.execute(
        update(AnalysisTask)
        .where(
            AnalysisTask.status.in_(("pending", "processing")),
            AnalysisTask.created_at < cutoff,
        )
        .values(status="failed", error_msg=TIMED_OUT_MESSAGE)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    failed = max(result.rowcount or 0, 0)
    if failed:
        logger.warning("analysis.stale_tasks_failed", count=failed)
    return failed


async def record_outcome(
    session: AsyncSession,
    user_id: Optional[uuid.UUID],
    task_id: uuid.UUID,
    app_name: str,
    *,
    succeeded: bool,
    app_slug: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log usage and email the task owner; guest tasks are skipped.

    Failures here are logged and never change the task's final status.
    """
    if user_id is None:
        return
    try:
        await log_usage(
            session,
            user_id,
            "analysis_completed" if succeeded else "analysis_failed",
            task_id=task_id,
            metadata={"appName": app_name},
        )
        if succeeded:
            await notify_analysis_completed(session, user_id, app_name, app_slug or str(task_id))
        else:
            await notify_analysis_failed(session, user_id, app_name, error)
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.warning("analysis.outcome_recording_failed", task_id=str(task_id), error=str(exc))


# ---------------------------------------------------------------------------
# Review collection
# ---------------------------------------------------------------------------


async def fetch_reviews_for_analysis(
    platform: str,
    app_id: str,
    options: dict[str, Any],
    *,
    app_store: AppStoreScraper,
    google_play: GooglePlayScraper,
) -> list[ScrapedReview]:
    """Fetch the review set for a fresh analysis.

    The target is 1000 reviews with ``multiCountry`` and 800 otherwise.
    iOS reads ten pages of the US feed or walks several storefronts;
    Android uses deep mode or walks several storefronts.
    """
    multi_country = bool(options.get("multiCountry"))
    target = REVIEW_TARGET_MULTI_COUNTRY if multi_country else REVIEW_TARGET_DEFAULT

    if platform == "ios":
        if multi_country:
            countries = options.get("countries") or IOS_DEFAULT_COUNTRIES
            return await app_store.fetch_reviews_multi_country(
                app_id, target=target, countries=countries
            )
        return await app_store.fetch_reviews_multi_page(
            app_id, country="us", max_pages=ITUNES_MAX_PAGES, max_reviews=target
        )

    if multi_country:
        countries = options.get("countries") or ANDROID_DEFAULT_COUNTRIES
        return await google_play.fetch_reviews_multi_country(
            app_id, target=target, countries=countries
        )
    return await google_play.fetch_reviews_multi_page(
        app_id, max_reviews=target, deep_mode=True
    )


def build_single_result(
    app: dict[str, Any],
    reviews: Sequence[ScrapedReview],
    analyzed_count: int,
    analysis: dict[str, Any],
) -> dict[str, Any]:
    """Assemble the JSON document stored in ``analysis_tasks.result``."""
    return {
        "app": app,
        "reviewCount": len(reviews),
        "analyzedCount": analyzed_count,
        "analysis": analysis,
        "reviews": [review.to_dict() for review in reviews],
    }


async def _analyze(reviews: Sequence[ScrapedReview]) -> dict[str, Any]:
    try:
        result = await analyze_single_app(reviews)
    except AIServiceError:
        ai_requests_total.labels(kind="single", status="error").inc()
        raise
    ai_requests_total.labels(kind="single", status="success").inc()
    return result.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def process_analysis(
    task_id: uuid.UUID,
    platform: str,
    app_id: str,
    app_info: dict[str, Any],
    options: Optional[dict[str, Any]] = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    app_store: Optional[AppStoreScraper] = None,
    google_play: Optional[GooglePlayScraper] = None,
) -> None:
    """Scrape, store, sample and analyse reviews for one task.

    Args:
        task_id: The ``analysis_tasks`` row to drive.
        platform: ``"ios"`` or ``"android"``.
        app_id: Storefront identifier of the app.
        app_info: App metadata as produced by :meth:`AppInfo.to_dict`.
        options: Request options (``multiCountry``, ``countries``,
            ``ratingFilter``).
    """
    options = options or {}
    app_store = app_store or AppStoreScraper()
    google_play = google_play or GooglePlayScraper()
    info = AppInfo.from_dict(app_info, platform=platform)
    log = logger.bind(task_id=str(task_id), platform=platform, app_id=app_id)

    async with session_factory() as session:
        task = await _load_task(session, task_id)
        if task is None:
            log.warning("analysis.task_missing")
            return
        user_id, app_slug = task.user_id, task.app_slug

        try:
            now = datetime.now(tz=UTC)
            await update_task(session, task_id, status="processing", progress=5, started_at=now)

            app_pk = await upsert_app(session, info, crawled_at=now)
            await update_task(session, task_id, progress=15)

            reviews = await fetch_reviews_for_analysis(
                platform, app_id, options, app_store=app_store, google_play=google_play
            )
            reviews_scraped_total.labels(platform=platform).inc(len(reviews))
            await update_task(session, task_id, progress=45)

            known = await existing_review_ids(session, platform, (r.id for r in reviews))
            inserted = await store_reviews(
                session, app_pk, platform, [r for r in reviews if r.id not in known]
            )
            reviews_stored_total.labels(platform=platform).inc(inserted)
            await update_task(session, task_id, progress=60)

            to_analyze = sample_reviews(
                apply_rating_filter(reviews, options.get("ratingFilter"))
            )
            await update_task(session, task_id, progress=70)
            log.info(
                "analysis.sampled",
                fetched=len(reviews),
                inserted=inserted,
                analyzed=len(to_analyze),
            )

            analysis = await _analyze(to_analyze)
            await update_task(session, task_id, progress=85)

            app_payload = {
                **app_info,
                "category": normalize_category(info.category),
                "platform": platform,
            }
            await update_task(
                session,
                task_id,
                status="completed",
                progress=100,
                review_count=len(reviews),
                result=build_single_result(app_payload, reviews, len(to_analyze), analysis),
                completed_at=datetime.now(tz=UTC),
            )
        except Exception as exc:  # noqa: BLE001
            error_msg = await fail_task(session, task_id, exc)
            await record_outcome(
                session, user_id, task_id, info.name, succeeded=False, error=error_msg
            )
            return

        analysis_tasks_total.labels(task_type="single", status="completed").inc()
        log.info("analysis.completed", reviews=len(reviews))
        await record_outcome(
            session, user_id, task_id, info.name, succeeded=True, app_slug=app_slug
        )


async def process_refresh(
    task_id: uuid.UUID,
    app_pk: uuid.UUID,
    options: Optional[dict[str, Any]] = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    app_store: Optional[AppStoreScraper] = None,
    google_play: Optional[GooglePlayScraper] = None,
) -> None:
    """Force a deep incremental scrape of a stored app and re-analyse it.

    Up to 2000 new reviews are scraped (target 5000 stored), and the newest
    2000 stored reviews are analysed.
    """
    log = logger.bind(task_id=str(task_id), app_pk=str(app_pk))

    async with session_factory() as session:
        task = await _load_task(session, task_id)
        app = (await session.execute(select(App).where(App.id == app_pk))).scalar_one_or_none()
        if task is None or app is None:
            log.warning("refresh.missing_rows", task_found=task is not None, app_found=app is not None)
            return
        user_id, app_slug = task.user_id, task.app_slug
        app_name, platform, store_id = app.name, app.platform, app.app_id
        app_payload = {
            "id": app.app_id,
            "name": app.name,
            "iconUrl": app.icon_url,
            "rating": app.rating,
            "reviewCount": app.review_count,
            "developer": app.developer,
            "category": normalize_category(app.category),
            "platform": app.platform,
        }

        try:
            await update_task(
                session,
                task_id,
                status="processing",
                progress=5,
                started_at=datetime.now(tz=UTC),
            )
            incremental = await fetch_incremental_reviews(
                session,
                platform,
                store_id,
                target_count=REFRESH_TARGET_COUNT,
                max_new=REFRESH_MAX_NEW,
                force_refresh=True,
                app_store=app_store,
                google_play=google_play,
            )
            reviews = incremental.reviews[:REFRESH_MAX_NEW]
            reviews_stored_total.labels(platform=platform).inc(incremental.new_count)
            if not reviews:
                raise ScraperError("No reviews found for analysis", platform=platform)
            await update_task(session, task_id, progress=40, review_count=len(reviews))

            analysis = await _analyze(reviews)
            await update_task(session, task_id, progress=85)

            await update_task(
                session,
                task_id,
                status="completed",
                progress=100,
                result=build_single_result(app_payload, reviews, len(reviews), analysis),
                completed_at=datetime.now(tz=UTC),
            )
        except Exception as exc:  # noqa: BLE001
            error_msg = await fail_task(session, task_id, exc)
            await record_outcome(
                session, user_id, task_id, app_name, succeeded=False, error=error_msg
            )
            return

        analysis_tasks_total.labels(task_type="single", status="completed").inc()
        log.info("refresh.completed", reviews=len(reviews), new=incremental.new_count)
        await record_outcome(
            session, user_id, task_id, app_name, succeeded=True, app_slug=app_slug
        )
