"""Persistence helpers shared by the scrapers and the analysis pipeline.

Both writers are idempotent under concurrency: apps are upserted on
``(platform, app_id)`` and reviews are inserted with
``ON CONFLICT (platform, review_id) DO NOTHING``, so two workers analysing
the same app at once cannot create duplicate rows.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.core.category import normalize_category
from review_insight.core.models.apps import App, Review
from review_insight.scrapers.types import AppInfo, ScrapedReview

logger = structlog.get_logger(__name__)

INSERT_BATCH_SIZE = 100


async def upsert_app(
    session: AsyncSession,
    info: AppInfo,
    *,
    crawled_at: datetime | None = None,
) -> uuid.UUID:
    """Insert or refresh the ``apps`` row for *info* and return its id.

    A new row stores the unified category; an existing row is refreshed
    with the raw storefront genre.  ``last_crawled_at`` is set in both
    cases.  The caller commits.
    """
    crawled_at = crawled_at or datetime.now(tz=UTC)
    values = {
        "platform": info.platform,
        "app_id": info.app_id,
        "name": info.name,
        "bundle_id": info.bundle_id or None,
        "icon_url": info.icon_url or None,
        "rating": info.rating,
        "review_count": info.review_count,
        "developer": info.developer or None,
        "category": normalize_category(info.category),
        "last_crawled_at": crawled_at,
    }
    stmt = pg_insert(App).values(**values)
    stmt = stmt.on_conflict_do_update(
        constraint="uq_apps_platform_app_id",
        set_={
            "name": stmt.excluded.name,
            "bundle_id": stmt.excluded.bundle_id,
            "icon_url": stmt.excluded.icon_url,
            "rating": stmt.excluded.rating,
            "review_count": stmt.excluded.review_count,
            "developer": stmt.excluded.developer,
            "category": info.category,
            "last_crawled_at": crawled_at,
            "updated_at": crawled_at,
        },
    ).returning(App.id)
    result = await session.execute(stmt)
    return result.scalar_one()


async def existing_review_ids(
    session: AsyncSession,
    platform: str,
    review_ids: Iterable[str],
) -> set[str]:
    """Return the subset of *review_ids* already stored for *platform*."""
    ids = list(review_ids)
    if not ids:
        return set()
    result = await session.execute(
        select(Review.review_id).where(
            Review.platform == platform,
            Review.review_id.in_(ids),
        )
    )
    return set(result.scalars().all())


async def store_reviews(
    session: AsyncSession,
    app_pk: uuid.UUID,
    platform: str,
    reviews: Sequence[ScrapedReview],
    batch_size: int = INSERT_BATCH_SIZE,
) -> int:
    """Insert *reviews* in batches, skipping ones already stored.

    Returns:
        Number of rows actually inserted.  The caller commits.
    """
    inserted = 0
    for start in range(0, len(reviews), batch_size):
        batch = reviews[start : start + batch_size]
        rows = [
            {
                "app_pk": app_pk,
                "platform": platform,
                "review_id": review.id,
                "author": review.author or "Anonymous",
                "rating": review.rating,
                "title": review.title or "",
                "content": review.content or "",
                "review_date": review.date,
                "app_version": review.app_version,
                "helpful_count": review.helpful_count or 0,
                "country": review.country or "us",
            }
            for review in batch
        ]
        stmt = pg_insert(Review).values(rows).on_conflict_do_nothing(
            constraint="uq_reviews_platform_review_id"
        )
        result = await session.execute(stmt)
        inserted += max(result.rowcount or 0, 0)

    logger.debug(
        "storage.reviews_inserted",
        platform=platform,
        app_pk=str(app_pk),
        offered=len(reviews),
        inserted=inserted,
    )
    return inserted


def review_from_row(row: Review) -> ScrapedReview:
    """Convert a stored :class:`Review` back into a :class:`ScrapedReview`."""
    return ScrapedReview(
        id=row.review_id,
        author=row.author or "Anonymous",
        rating=row.rating,
        title=row.title or "",
        content=row.content,
        date=row.review_date,
        app_version=row.app_version or "Unknown",
        helpful_count=row.helpful_count,
        country=row.country,
    )
