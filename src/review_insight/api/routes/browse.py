"""Discovery routes over completed analyses.

Routes:
    GET /api/browse    filter by category, platform and region; sort
    GET /api/popular   most-reviewed apps first
    GET /api/recent    most recently analysed first

All three read completed, ``is_latest`` tasks that carry a slug and a
result, and show each (app_store_id, platform) pair at most once.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.store_defaults import REGIONS
from review_insight.core.category import normalize_category
from review_insight.core.database import get_db
from review_insight.core.models.analysis import AnalysisTask
from review_insight.core.models.apps import App, Review
from review_insight.core.slug import get_time_ago

logger = structlog.get_logger(__name__)

router = APIRouter()

# Extra rows fetched so that deduplication still leaves ``limit`` items.
_OVERFETCH = 3
_CATEGORY_SAMPLE = 1000
_EMPTY_SENTIMENT = {"positive": 0, "negative": 0, "neutral": 0}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _listed_tasks():
    return select(AnalysisTask).where(
        AnalysisTask.status == "completed",
        AnalysisTask.is_latest.is_(True),
        AnalysisTask.task_type == "single",
        AnalysisTask.app_slug.is_not(None),
        AnalysisTask.result.is_not(None),
    )


def _analyzed_at(task: AnalysisTask) -> Optional[datetime]:
    return task.completed_at or task.created_at


def format_listing(
    tasks: Iterable[AnalysisTask],
    category: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    """Turn task rows into listing items, dropping duplicates and bad rows.

    The first task seen for an (app_store_id, platform) pair wins, so
    callers pass rows in their preferred order.
    """
    now = now or datetime.now(tz=UTC)
    wanted = normalize_category(category) if category else None
    seen: set[tuple[str, str]] = set()
    items: list[dict[str, Any]] = []

    for task in tasks:
        result = task.result or {}
        app = result.get("app")
        if not app or not task.app_slug or not task.app_store_id:
            continue
        app_category = normalize_category(app.get("category"))
        if wanted is not None and app_category != wanted:
            continue
        key = (task.app_store_id, task.platform or "")
        if key in seen:
            continue
        seen.add(key)

        analyzed_at = _analyzed_at(task)
        items.append(
            {
                "id": str(task.id),
                "slug": task.app_slug,
                "name": app.get("name"),
                "iconUrl": app.get("iconUrl"),
                "platform": task.platform,
                "rating": app.get("rating") or 0,
                "reviewCount": result.get("reviewCount") or 0,
                "appReviewCount": app.get("reviewCount") or 0,
                "category": app_category,
                "analyzedAt": analyzed_at.isoformat() if analyzed_at else None,
                "timeAgo": get_time_ago(analyzed_at, now=now) if analyzed_at else None,
                "sentiment": (result.get("analysis") or {}).get("sentiment") or _EMPTY_SENTIMENT,
            }
        )
    return items


def sort_listing(items: list[dict[str, Any]], sort: str) -> list[dict[str, Any]]:
    if sort == "popular":
        return sorted(items, key=lambda item: item["appReviewCount"], reverse=True)
    if sort == "rating":
        return sorted(items, key=lambda item: item["rating"], reverse=True)
    return sorted(items, key=lambda item: item["analyzedAt"] or "", reverse=True)


def category_counts(results: Sequence[Optional[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Count analysed apps per unified category, largest first."""
    counts = Counter(
        normalize_category((result or {}).get("app", {}).get("category"))
        for result in results
        if (result or {}).get("app")
    )
    return [
        {"name": name, "count": count}
        for name, count in sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))
    ]


# ---------------------------------------------------------------------------
# GET /api/browse
# ---------------------------------------------------------------------------


@router.get("/browse")
async def browse_apps(
    db: Annotated[AsyncSession, Depends(get_db)],
    category: Optional[str] = Query(default=None),
    sort: Literal["popular", "recent", "rating"] = Query(default="popular"),
    region: Optional[str] = Query(default=None),
    platform: Optional[Literal["ios", "android"]] = Query(default=None),
    limit: int = Query(default=24, ge=1, le=100),
) -> dict[str, Any]:
    """Browse analysed apps with category, region and platform filters.

    ``region`` keeps apps that have stored reviews from that storefront.
    Category filtering happens after loading because categories live in
    the stored result.
    """
    stmt = _listed_tasks().order_by(AnalysisTask.completed_at.desc().nulls_last())
    if platform:
        stmt = stmt.where(AnalysisTask.platform == platform)
    if region:
        stmt = stmt.where(
            exists(
                select(Review.id)
                .join(App, App.id == Review.app_pk)
                .where(
                    and_(
                        App.platform == AnalysisTask.platform,
                        App.app_id == AnalysisTask.app_store_id,
                        Review.country == region.lower(),
                    )
                )
            )
        )
    fetch = limit * _OVERFETCH if not category else limit * _OVERFETCH * 4
    tasks = (await db.execute(stmt.limit(fetch))).scalars().all()
    items = sort_listing(format_listing(tasks, category=category), sort)[:limit]

    sample = (
        await db.execute(
            select(AnalysisTask.result)
            .where(
                AnalysisTask.status == "completed",
                AnalysisTask.is_latest.is_(True),
                AnalysisTask.result.is_not(None),
            )
            .limit(_CATEGORY_SAMPLE)
        )
    ).scalars().all()

    return {
        "apps": items,
        "total": len(items),
        "filters": {
            "categories": category_counts(sample),
            "regions": [dict(region_info) for region_info in REGIONS],
        },
    }


# ---------------------------------------------------------------------------
# GET /api/popular
# ---------------------------------------------------------------------------


@router.get("/popular")
async def popular_analyses(
    db: Annotated[AsyncSession, Depends(get_db)],
    platform: Optional[Literal["ios", "android"]] = Query(default=None),
    limit: int = Query(default=12, ge=1, le=100),
) -> dict[str, Any]:
    """Analyses of the apps with the most store reviews."""
    stmt = _listed_tasks().order_by(AnalysisTask.completed_at.desc().nulls_last())
    if platform:
        stmt = stmt.where(AnalysisTask.platform == platform)
    tasks = (await db.execute(stmt.limit(limit * 5))).scalars().all()
    items = sort_listing(format_listing(tasks), "popular")[:limit]
    return {"analyses": items, "total": len(items)}


# ---------------------------------------------------------------------------
# GET /api/recent
# ---------------------------------------------------------------------------


@router.get("/recent")
async def recent_analyses(
    db: Annotated[AsyncSession, Depends(get_db)],
    platform: Optional[Literal["ios", "android"]] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
) -> dict[str, Any]:
    """The most recently completed analyses, newest first."""
    stmt = _listed_tasks().order_by(AnalysisTask.completed_at.desc().nulls_last())
    if platform:
        stmt = stmt.where(AnalysisTask.platform == platform)
    tasks = (await db.execute(stmt.limit(limit * _OVERFETCH))).scalars().all()
    items = format_listing(tasks)[:limit]
    return {"analyses": items, "total": len(items)}
