"""Incremental review collection backed by the ``reviews`` table.

Each app's reviews accumulate in the database across analyses.  Before
scraping, :func:`fetch_incremental_reviews` checks how many reviews are
already stored and when the app was last crawled; a recent crawl with
enough stored reviews is served straight from the database.  Otherwise the
newest reviews are scraped, reviews already stored are dropped, and only
the remainder is inserted.

Storefronts are throttled: App Store pages are fetched two seconds apart.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.store_defaults import ITUNES_MAX_PAGES, ITUNES_PAGE_SIZE
from review_insight.core.exceptions import AppNotFoundError
from review_insight.core.models.apps import App, Review
from review_insight.scrapers.app_store import AppStoreScraper
from review_insight.scrapers.google_play import GooglePlayScraper
from review_insight.scrapers.storage import existing_review_ids, review_from_row, store_reviews
from review_insight.scrapers.types import ScrapedReview

logger = structlog.get_logger(__name__)

FRESHNESS_WINDOW = timedelta(hours=24)
CACHE_SUFFICIENCY_RATIO = 0.4
MAX_RETURNED_REVIEWS = 2000
IOS_PAGE_DELAY_SECONDS = 2.0
DEFAULT_KEEP_COUNT = 1000


@dataclass
class IncrementalResult:
    """Outcome of :func:`fetch_incremental_reviews`.

    Attributes:
        reviews: Newest stored reviews, at most ``min(2000, target_count)``.
        total_reviews: Reviews stored for the app after this call.
        new_count: Reviews inserted by this call.
        from_cache: True when no scrape was performed.
    """

    reviews: list[ScrapedReview] = field(default_factory=list)
    total_reviews: int = 0
    new_count: int = 0
    from_cache: bool = False


async def _get_app(session: AsyncSession, platform: str, app_id: str) -> App | None:
    result = await session.execute(
        select(App).where(App.platform == platform, App.app_id == app_id)
    )
    return result.scalar_one_or_none()


async def _count_reviews(session: AsyncSession, app_pk: Any) -> int:
    result = await session.execute(
        select(func.count()).select_from(Review).where(Review.app_pk == app_pk)
    )
    return int(result.scalar_one() or 0)


def _is_fresh(last_crawled_at: datetime | None, now: datetime) -> bool:
    if last_crawled_at is None:
        return False
    if last_crawled_at.tzinfo is None:
        last_crawled_at = last_crawled_at.replace(tzinfo=UTC)
    return now - last_crawled_at < FRESHNESS_WINDOW


async def get_scrape_stats(session: AsyncSession, platform: str, app_id: str) -> dict[str, Any]:
    """Summarise what is stored for one app.

    Returns:
        Dict with keys ``total_reviews``, ``last_crawled_at``,
        ``latest_review_date`` and ``needs_update`` (no crawl yet, or the
        last crawl is older than 24 hours).
    """
    app = await _get_app(session, platform, app_id)
    if app is None:
        return {
            "total_reviews": 0,
            "last_crawled_at": None,
            "latest_review_date": None,
            "needs_update": True,
        }

    total = await _count_reviews(session, app.id)
    latest = await session.execute(
        select(func.max(Review.review_date)).where(Review.app_pk == app.id)
    )
    return {
        "total_reviews": total,
        "last_crawled_at": app.last_crawled_at,
        "latest_review_date": latest.scalar_one_or_none(),
        "needs_update": not _is_fresh(app.last_crawled_at, datetime.now(tz=UTC)),
    }


async def _scrape_newest(
    platform: str,
    app_id: str,
    max_new: int,
    app_store: AppStoreScraper,
    google_play: GooglePlayScraper,
) -> list[ScrapedReview]:
    if platform == "ios":
        pages = min(math.ceil(max_new / ITUNES_PAGE_SIZE), ITUNES_MAX_PAGES)
        return await app_store.fetch_reviews_multi_page(
            app_id,
            country="us",
            max_pages=pages,
            max_reviews=max_new,
            page_delay=IOS_PAGE_DELAY_SECONDS,
        )
    return await google_play.fetch_reviews(app_id, num=max_new)


async def fetch_incremental_reviews(
    session: AsyncSession,
    platform: str,
    app_id: str,
    target_count: int = 800,
    max_new: int = 500,
    force_refresh: bool = False,
    *,
    app_store: AppStoreScraper | None = None,
    google_play: GooglePlayScraper | None = None,
) -> IncrementalResult:
    """Top up the stored reviews of an app and return the newest ones.

    The app must already have an ``apps`` row.  The stored set is served
    without scraping when the app was crawled within 24 hours and at least
    ``40%`` of *target_count* reviews are stored, unless *force_refresh*.

    Commits the session.

    Raises:
        AppNotFoundError: If the app has never been stored.
        ScraperError: If the storefront scrape fails.
    """
    now = datetime.now(tz=UTC)
    log = logger.bind(platform=platform, app_id=app_id)

    app = await _get_app(session, platform, app_id)
    if app is None:
        raise AppNotFoundError(f"{platform} app {app_id} is not tracked", platform=platform)

    stored = await _count_reviews(session, app.id)
    limit = min(MAX_RETURNED_REVIEWS, target_count)

    if (
        not force_refresh
        and _is_fresh(app.last_crawled_at, now)
        and stored >= target_count * CACHE_SUFFICIENCY_RATIO
    ):
        log.info("incremental.served_from_cache", stored=stored, target=target_count)
        return IncrementalResult(
            reviews=await _newest_reviews(session, app.id, limit),
            total_reviews=stored,
            new_count=0,
            from_cache=True,
        )

    scraped = await _scrape_newest(
        platform,
        app_id,
        max_new,
        app_store or AppStoreScraper(),
        google_play or GooglePlayScraper(),
    )

    known = await existing_review_ids(session, platform, (review.id for review in scraped))
    fresh: list[ScrapedReview] = []
    seen: set[str] = set()
    for review in sorted(scraped, key=lambda r: r.date, reverse=True):
        if review.id in known or review.id in seen:
            continue
        seen.add(review.id)
        fresh.append(review)

    inserted = await store_reviews(session, app.id, platform, fresh)
    await session.execute(
        update(App).where(App.id == app.id).values(last_crawled_at=now, updated_at=now)
    )
    await session.commit()

    log.info(
        "incremental.scraped",
        scraped=len(scraped),
        duplicates=len(scraped) - len(fresh),
        inserted=inserted,
    )
    return IncrementalResult(
        reviews=await _newest_reviews(session, app.id, limit),
        total_reviews=stored + inserted,
        new_count=inserted,
        from_cache=False,
    )


async def _newest_reviews(session: AsyncSession, app_pk: Any, limit: int) -> list[ScrapedReview]:
    result = await session.execute(
        select(Review)
        .where(Review.app_pk == app_pk)
        .order_by(Review.review_date.desc())
        .limit(limit)
    )
    return [review_from_row(row) for row in result.scalars().all()]


async def cleanup_old_reviews(
    session: AsyncSession,
    platform: str,
    app_id: str,
    keep: int = DEFAULT_KEEP_COUNT,
) -> int:
    """Delete all but the newest *keep* reviews of one app.

    Returns:
        Number of reviews deleted.  Commits the session.
    """
    app = await _get_app(session, platform, app_id)
    if app is None:
        return 0

    newest = (
        select(Review.id)
        .where(Review.app_pk == app.id)
        .order_by(Review.review_date.desc())
        .limit(keep)
    )
    result = await session.execute(
        delete(Review)
        .where(Review.app_pk == app.id, Review.id.not_in(newest))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    deleted = max(result.rowcount or 0, 0)
    if deleted:
        logger.info(
            "incremental.cleanup", platform=platform, app_id=app_id, deleted=deleted, kept=keep
        )
    return deleted


async def cleanup_all_apps(session: AsyncSession, keep: int = DEFAULT_KEEP_COUNT) -> dict[str, int]:
    """Run :func:`cleanup_old_reviews` for every stored app holding more than *keep* reviews.

    Returns:
        ``{"apps": <apps trimmed>, "deleted": <reviews deleted>}``.
    """
    result = await session.execute(
        select(App.platform, App.app_id)
        .join(Review, Review.app_pk == App.id)
        .group_by(App.id, App.platform, App.app_id)
        .having(func.count(Review.id) > keep)
    )
    targets = result.all()
    deleted = 0
    for platform, app_id in targets:
        deleted += await cleanup_old_reviews(session, platform, app_id, keep=keep)
    logger.info("incremental.cleanup_all", apps=len(targets), deleted=deleted, kept=keep)
    return {"apps": len(targets), "deleted": deleted}
