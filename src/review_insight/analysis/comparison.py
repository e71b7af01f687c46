"""Multi-app comparison: per-app analysis, cross-app insights and a SWOT.

:func:`process_comparison` is the body of the ``process_comparison``
Celery task.  It analyses every app in request order, writing
``round(i / n * 100)`` progress together with a ``currentStep`` payload
before each app, then derives the comparison insights locally and asks
the model for a SWOT of the first app against the others.

The first app that fails aborts the whole comparison; the error message
names its position (``Failed to analyze app 2: ...``).
"""

from __future__ import annotations

import calendar
import math
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from review_insight.ai import AppReviews, analyze_single_app, compare_apps
from review_insight.analysis.pipeline import update_task
from review_insight.api.metrics import (
    ai_requests_total,
    analysis_tasks_total,
    reviews_scraped_total,
)
from review_insight.config.store_defaults import ITUNES_MAX_PAGES, ITUNES_PAGE_SIZE
from review_insight.core.database import AsyncSessionLocal
from review_insight.core.email_service import (
    get_email_service,
    notify_analysis_completed,
    notify_analysis_failed,
)
from review_insight.core.exceptions import AIServiceError, AppNotFoundError
from review_insight.core.subscription import increment_monthly_count, log_usage
from review_insight.scrapers.app_store import AppStoreScraper
from review_insight.scrapers.google_play import GooglePlayScraper
from review_insight.scrapers.types import AppInfo, ScrapedReview

logger = structlog.get_logger(__name__)

UNKNOWN_APP = "Unknown App"
DEFAULT_FOCUS_AREAS: list[str] = ["sentiment", "features"]
DEFAULT_TIME_RANGE = "last_90_days"
DEFAULT_MAX_REVIEWS = 500

_IOS_ID = re.compile(r"/id(\d+)")
_ANDROID_ID = re.compile(r"id=([^&]+)")
_SLUG_NOISE = re.compile(r"[^a-z0-9]")
_DASHES = re.compile(r"-+")


@dataclass
class AppAnalysis:
    """One analysed participant of a comparison."""

    app_id: str
    platform: str
    app_info: Optional[AppInfo]
    reviews: list[ScrapedReview]
    analysis: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        if self.app_info is None or not self.app_info.name:
            return UNKNOWN_APP
        return self.app_info.name

    @property
    def rating(self) -> float:
        return self.app_info.rating if self.app_info is not None else 0.0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def extract_app_id_for_compare(app_url: str, platform: str) -> str:
    """Pull the storefront id out of *app_url*.

    Raises:
        ValueError: If the URL carries no id for *platform*.
    """
    if platform == "ios":
        match = _IOS_ID.search(app_url)
        if match:
            return match.group(1)
        raise ValueError("Invalid iOS App Store URL")
    match = _ANDROID_ID.search(app_url)
    if match:
        return match.group(1)
    raise ValueError("Invalid Google Play URL")


def _months_back(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def time_range_cutoff(time_range: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Return the earliest review date kept for *time_range*, or ``None``."""
    now = now or datetime.now(tz=UTC)
    if time_range == "last_30_days":
        return now - timedelta(days=30)
    if time_range == "last_90_days":
        return now - timedelta(days=90)
    if time_range == "last_6_months":
        return _months_back(now, 6)
    return None


def filter_by_time_range(
    reviews: Sequence[ScrapedReview],
    time_range: Optional[str],
    now: Optional[datetime] = None,
) -> list[ScrapedReview]:
    """Drop reviews older than the window named by *time_range*.

    ``all_time`` and unknown values keep everything.  Naive review dates
    are treated as UTC.
    """
    cutoff = time_range_cutoff(time_range, now)
    if cutoff is None:
        return list(reviews)
    kept = []
    for review in reviews:
        moment = review.date if review.date.tzinfo else review.date.replace(tzinfo=UTC)
        if moment >= cutoff:
            kept.append(review)
    return kept


def generate_comparison_slug(names: Sequence[str]) -> str:
    """``"Slack", "Microsoft Teams"`` -> ``"slack-vs-microsoft-teams-comparison"``."""
    cleaned = []
    for name in names[:3]:
        slug = _DASHES.sub("-", _SLUG_NOISE.sub("-", name.lower())).strip("-")
        cleaned.append(slug[:20])
    return "-vs-".join(cleaned) + "-comparison"


def _net_sentiment(analysis: dict[str, Any]) -> float:
    sentiment = analysis.get("sentiment") or {}
    return float(sentiment.get("positive") or 0) - float(sentiment.get("negative") or 0)


def generate_comparison_insights(app_analyses: Sequence[AppAnalysis]) -> dict[str, Any]:
    """Derive the rule-based comparison block of a finished comparison.

    Returns a dict with ``sentimentComparison`` (apps ranked by net
    sentiment), ``strengthsComparison`` (critical issues reported for
    exactly one app), an overall ``ranking`` and three canned
    ``recommendations``.
    """
    sentiment_scores = [
        {
            "name": app.name,
            "platform": app.platform,
            "sentiment": app.analysis.get("sentiment"),
            "rating": app.rating,
        }
        for app in app_analyses
    ]
    order = sorted(
        range(len(app_analyses)),
        key=lambda i: _net_sentiment(app_analyses[i].analysis),
        reverse=True,
    )
    sentiment_ranking = [sentiment_scores[i] for i in order]

    issues_by_title: dict[str, list[str]] = {}
    for app in app_analyses:
        for issue in app.analysis.get("criticalIssues") or []:
            key = str(issue.get("title") or "").lower().strip()
            issues_by_title.setdefault(key, []).append(app.name)

    all_names = [app.name for app in app_analyses]
    strengths = [
        {
            "issue": title,
            "affectedApps": affected,
            "unaffectedApps": [name for name in all_names if name not in affected],
        }
        for title, affected in issues_by_title.items()
        if len(affected) == 1
    ]

    ranking = []
    for app in app_analyses:
        sentiment_score = _net_sentiment(app.analysis)
        rating_score = (app.rating or 0) / 5
        issues_count = len(app.analysis.get("criticalIssues") or [])
        features_count = len(app.analysis.get("featureRequests") or [])
        overall = (
            sentiment_score * 0.4 + rating_score * 0.4 - issues_count * 0.1 + features_count * 0.1
        )
        ranking.append(
            {
                "name": app.name,
                "platform": app.platform,
                "overallScore": overall,
                "sentimentScore": sentiment_score,
                "ratingScore": rating_score,
                "issuesCount": issues_count,
                "featuresCount": features_count,
                "details": {
                    "sentiment": app.analysis.get("sentiment"),
                    "rating": app.rating,
                    "reviewCount": len(app.reviews),
                },
            }
        )
    ranking.sort(key=lambda entry: entry["overallScore"], reverse=True)

    return {
        "sentimentComparison": {
            "bestSentiment": sentiment_ranking[0] if sentiment_ranking else None,
            "worstSentiment": sentiment_ranking[-1] if sentiment_ranking else None,
            "ranking": sentiment_ranking,
        },
        "strengthsComparison": strengths,
        "ranking": ranking,
        "recommendations": [
            {
                "type": "improvement",
                "target": ranking[-1]["name"] if ranking else None,
                "recommendation": (
                    "Focus on addressing critical issues mentioned in reviews "
                    "to improve user satisfaction"
                ),
            },
            {
                "type": "strength",
                "target": ranking[0]["name"] if ranking else None,
                "recommendation": "Leverage your high user satisfaction in marketing materials",
            },
            {
                "type": "feature",
                "target": "All apps",
                "recommendation": (
                    "Consider implementing the most requested features across "
                    "all analyzed apps"
                ),
            },
        ],
    }


def estimated_time(total_apps: int) -> str:
    """Human estimate returned when a comparison is queued."""
    return f"{max(5, total_apps * 2)}-{max(10, total_apps * 3)} minutes"


def build_comparison_result(
    app_analyses: Sequence[AppAnalysis],
    comparison_options: dict[str, Any],
    insights: dict[str, Any],
    swot: Optional[dict[str, Any]],
) -> dict[str, Any]:
    """Assemble the JSON document stored in ``analysis_tasks.result``."""
    return {
        "comparisonType": "multi_app",
        "totalApps": len(app_analyses),
        "focusAreas": comparison_options.get("focusAreas", DEFAULT_FOCUS_AREAS),
        "timeRange": comparison_options.get("timeRange", DEFAULT_TIME_RANGE),
        "apps": [
            {
                "appId": app.app_id,
                "platform": app.platform,
                "app": app.app_info.to_dict() if app.app_info else None,
                "reviewCount": len(app.reviews),
                "analyzedCount": len(app.reviews),
                "sentiment": app.analysis.get("sentiment"),
                "criticalIssues": app.analysis.get("criticalIssues") or [],
                "experienceIssues": app.analysis.get("experienceIssues") or [],
                "featureRequests": app.analysis.get("featureRequests") or [],
                "priorityActions": app.analysis.get("priorityActions") or [],
                "insights": app.analysis.get("insights") or [],
            }
            for app in app_analyses
        ],
        "comparison": {**insights, "swot": swot},
        "generatedAt": datetime.now(tz=UTC).isoformat(),
    }


# ---------------------------------------------------------------------------
# Per-app work
# ---------------------------------------------------------------------------


async def _fetch_comparison_reviews(
    platform: str,
    app_id: str,
    options: dict[str, Any],
    *,
    app_store: AppStoreScraper,
    google_play: GooglePlayScraper,
) -> list[ScrapedReview]:
    max_reviews = int(options.get("maxReviews") or DEFAULT_MAX_REVIEWS)
    if platform == "ios":
        pages = min(math.ceil(max_reviews / ITUNES_PAGE_SIZE), ITUNES_MAX_PAGES)
        return await app_store.fetch_reviews_multi_page(
            app_id, country="us", max_pages=pages, max_reviews=max_reviews
        )
    return await google_play.fetch_reviews_multi_page(
        app_id,
        max_reviews=max_reviews,
        deep_mode=bool(options.get("deepAnalysis", True)),
    )


async def analyze_comparison_app(
    app: dict[str, Any],
    time_range: Optional[str],
    *,
    app_store: AppStoreScraper,
    google_play: GooglePlayScraper,
) -> AppAnalysis:
    """Fetch metadata and reviews for one participant and analyse them.

    Raises:
        AppNotFoundError: If the storefront does not know the app.
        ValueError: If the URL carries no storefront id.
    """
    platform = app["platform"]
    app_id = extract_app_id_for_compare(app["appUrl"], platform)
    scraper = app_store if platform == "ios" else google_play
    info = await scraper.fetch_app(app_id)
    if info is None:
        raise AppNotFoundError(f"App {app_id} not found", platform=platform)

    reviews = await _fetch_comparison_reviews(
        platform, app_id, app.get("options") or {}, app_store=app_store, google_play=google_play
    )
    reviews_scraped_total.labels(platform=platform).inc(len(reviews))
    reviews = filter_by_time_range(reviews, time_range)

    try:
        result = await analyze_single_app(reviews)
    except AIServiceError:
        ai_requests_total.labels(kind="single", status="error").inc()
        raise
    ai_requests_total.labels(kind="single", status="success").inc()
    return AppAnalysis(
        app_id=app_id,
        platform=platform,
        app_info=info,
        reviews=reviews,
        analysis=result.model_dump(by_alias=True),
    )


async def _swot(app_analyses: Sequence[AppAnalysis], task_id: uuid.UUID) -> Optional[dict[str, Any]]:
    try:
        result = await compare_apps(
            [AppReviews(app_name=app.name, reviews=app.reviews) for app in app_analyses]
        )
    except (AIServiceError, ValueError) as exc:
        ai_requests_total.labels(kind="comparison", status="error").inc()
        logger.warning("comparison.swot_failed", task_id=str(task_id), error=str(exc))
        return None
    ai_requests_total.labels(kind="comparison", status="success").inc()
    return result.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def process_comparison(
    task_id: uuid.UUID,
    apps: list[dict[str, Any]],
    comparison_options: Optional[dict[str, Any]],
    user_id: Optional[uuid.UUID],
    *,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    app_store: Optional[AppStoreScraper] = None,
    google_play: Optional[GooglePlayScraper] = None,
) -> None:
    """Analyse every app of a comparison task and store the combined report.

    Args:
        task_id: The ``analysis_tasks`` row (``task_type='comparison'``).
        apps: Request entries ``{appUrl, platform, options}`` in order.
        comparison_options: ``{focusAreas, timeRange, exportFormat}``.
        user_id: Owner of the task; usage and email go to this user.
    """
    comparison_options = comparison_options or {}
    app_store = app_store or AppStoreScraper()
    google_play = google_play or GooglePlayScraper()
    time_range = comparison_options.get("timeRange", DEFAULT_TIME_RANGE)
    total = len(apps)
    log = logger.bind(task_id=str(task_id), total_apps=total)

    async with session_factory() as session:
        try:
            await update_task(
                session, task_id, status="processing", started_at=datetime.now(tz=UTC)
            )
            app_analyses: list[AppAnalysis] = []
            for index, app in enumerate(apps):
                await update_task(
                    session,
                    task_id,
                    progress=round(index / total * 100),
                    result={
                        "currentStep": f"Analyzing app {index + 1} of {total}",
                        "currentAppIndex": index,
                        "totalApps": total,
                    },
                )
                try:
                    app_analyses.append(
                        await analyze_comparison_app(
                            app, time_range, app_store=app_store, google_play=google_play
                        )
                    )
                except Exception as exc:
                    log.error("comparison.app_failed", index=index, error=str(exc))
                    raise RuntimeError(f"Failed to analyze app {index + 1}: {exc}") from exc

            insights = generate_comparison_insights(app_analyses)
            swot = await _swot(app_analyses, task_id)
            await update_task(
                session,
                task_id,
                status="completed",
                progress=100,
                completed_at=datetime.now(tz=UTC),
                review_count=sum(len(app.reviews) for app in app_analyses),
                result=build_comparison_result(app_analyses, comparison_options, insights, swot),
            )
        except Exception as exc:  # noqa: BLE001
            await session.rollback()
            await update_task(
                session,
                task_id,
                status="failed",
                error_msg=str(exc),
                completed_at=datetime.now(tz=UTC),
            )
            analysis_tasks_total.labels(task_type="comparison", status="failed").inc()
            log.error("comparison.failed", error=str(exc), error_type=type(exc).__name__)
            if user_id is not None:
                await _notify_failure(session, user_id, task_id, str(exc))
            return

        analysis_tasks_total.labels(task_type="comparison", status="completed").inc()
        log.info("comparison.completed", reviews=sum(len(a.reviews) for a in app_analyses))
        if user_id is not None:
            await _record_success(session, user_id, task_id, app_analyses, comparison_options)


async def _record_success(
    session: AsyncSession,
    user_id: uuid.UUID,
    task_id: uuid.UUID,
    app_analyses: Sequence[AppAnalysis],
    comparison_options: dict[str, Any],
) -> None:
    names = [app.name for app in app_analyses]
    try:
        await log_usage(
            session,
            user_id,
            "analysis_completed",
            task_id=task_id,
            metadata={
                "type": "comparison",
                "totalApps": len(app_analyses),
                "appNames": names,
                "focusAreas": comparison_options.get("focusAreas", DEFAULT_FOCUS_AREAS),
                "timeRange": comparison_options.get("timeRange", DEFAULT_TIME_RANGE),
            },
        )
        await increment_monthly_count(session, user_id)
        await session.commit()
        await notify_analysis_completed(
            session,
            user_id,
            f"App Comparison ({len(app_analyses)} apps)",
            generate_comparison_slug(names),
            report_url=get_email_service().comparison_url(task_id),
        )
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.warning("comparison.outcome_recording_failed", task_id=str(task_id), error=str(exc))


async def _notify_failure(
    session: AsyncSession, user_id: uuid.UUID, task_id: uuid.UUID, error: str
) -> None:
    try:
        await notify_analysis_failed(session, user_id, "App Comparison", error)
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.warning("comparison.outcome_recording_failed", task_id=str(task_id), error=str(exc))
