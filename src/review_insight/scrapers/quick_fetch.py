"""Small review fetches and the periodic refresh of recently analysed apps."""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.core.exceptions import ReviewInsightError
from review_insight.core.models.analysis import AnalysisTask
from review_insight.scrapers.app_store import AppStoreScraper
from review_insight.scrapers.google_play import GooglePlayScraper
from review_insight.scrapers.incremental import fetch_incremental_reviews, get_scrape_stats
from review_insight.scrapers.types import ScrapedReview

logger = structlog.get_logger(__name__)

HOT_APP_MIN_TARGET = 800
HOT_APP_GROWTH = 50
HOT_APP_MAX_NEW = 100


async def fetch_quick_reviews(
    session: AsyncSession,
    platform: str,
    app_id: str,
    count: int = 50,
    force_refresh: bool = False,
    use_incremental: bool = True,
    *,
    app_store: AppStoreScraper | None = None,
    google_play: GooglePlayScraper | None = None,
) -> list[ScrapedReview]:
    """Return up to *count* recent reviews, preferring the stored set.

    The incremental path is tried first.  When it fails or holds fewer
    than *count* reviews, a single direct fetch is made instead: the first
    App Store page, or at most 100 Google Play reviews.
    """
    app_store = app_store or AppStoreScraper()
    google_play = google_play or GooglePlayScraper()

    if use_incremental and not force_refresh:
        try:
            result = await fetch_incremental_reviews(
                session,
                platform,
                app_id,
                target_count=max(count, 100),
                max_new=count,
                app_store=app_store,
                google_play=google_play,
            )
        except ReviewInsightError as exc:
            logger.warning(
                "quick_fetch.incremental_failed", platform=platform, app_id=app_id, error=str(exc)
            )
        else:
            if result.total_reviews >= count:
                return result.reviews[:count]

    if platform == "ios":
        reviews = await app_store.fetch_reviews(app_id, country="us", page=1)
        return reviews[:count]
    return await google_play.fetch_reviews(app_id, num=min(count, 100))


async def trigger_hot_apps_update(
    session: AsyncSession,
    limit: int = 10,
    *,
    app_store: AppStoreScraper | None = None,
    google_play: GooglePlayScraper | None = None,
) -> dict[str, int]:
    """Incrementally refresh the apps analysed most recently.

    Takes the newest *limit* completed, latest single-app tasks (one per
    app) and tops up every app whose last crawl is older than 24 hours.

    Returns:
        ``{"total", "successful", "skipped", "failed"}`` counts.
    """
    result = await session.execute(
        select(AnalysisTask.platform, AnalysisTask.app_store_id)
        .where(
            AnalysisTask.status == "completed",
            AnalysisTask.is_latest.is_(True),
            AnalysisTask.task_type == "single",
            AnalysisTask.platform.is_not(None),
            AnalysisTask.app_store_id.is_not(None),
        )
        .order_by(AnalysisTask.created_at.desc())
        .limit(limit * 5)
    )

    apps: list[tuple[str, str]] = []
    for platform, app_store_id in result.all():
        key = (platform, app_store_id)
        if key not in apps:
            apps.append(key)
        if len(apps) >= limit:
            break

    summary: dict[str, Any] = {"total": len(apps), "successful": 0, "skipped": 0, "failed": 0}
    for platform, app_store_id in apps:
        log = logger.bind(platform=platform, app_id=app_store_id)
        try:
            stats = await get_scrape_stats(session, platform, app_store_id)
            if not stats["needs_update"]:
                summary["skipped"] += 1
                continue
            await fetch_incremental_reviews(
                session,
                platform,
                app_store_id,
                target_count=max(stats["total_reviews"] + HOT_APP_GROWTH, HOT_APP_MIN_TARGET),
                max_new=HOT_APP_MAX_NEW,
                app_store=app_store,
                google_play=google_play,
            )
            summary["successful"] += 1
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            log.warning("hot_apps.update_failed", error=str(exc))
            summary["failed"] += 1

    logger.info("hot_apps.update_complete", **summary)
    return summary
