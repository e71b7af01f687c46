"""Tests for incremental collection and quick fetches.

Covers scrapers/incremental.py and scrapers/quick_fetch.py:
    - _is_fresh: 24-hour window, naive timestamps.
    - get_scrape_stats for an untracked app.
    - fetch_incremental_reviews: cache hit, forced scrape with duplicate
      filtering, untracked app.
    - cleanup_all_apps sums per-app deletions.
    - fetch_quick_reviews: stored set first, direct fetch fallback.
    - trigger_hot_apps_update: dedup, skip fresh apps, count failures.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from review_insight.core.exceptions import AppNotFoundError, ScraperError
from review_insight.scrapers import incremental, quick_fetch
from review_insight.scrapers.incremental import (
    IncrementalResult,
    _is_fresh,
    cleanup_all_apps,
    fetch_incremental_reviews,
    get_scrape_stats,
)
from review_insight.scrapers.quick_fetch import fetch_quick_reviews, trigger_hot_apps_update
from tests.conftest import make_result
from tests.factories.reviews import ScrapedReviewFactory

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


def _app(crawled_hours_ago: float | None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        last_crawled_at=None if crawled_hours_ago is None else datetime.now(tz=UTC)
        - timedelta(hours=crawled_hours_ago),
    )


class TestIsFresh:
    def test_never_crawled(self) -> None:
        assert _is_fresh(None, NOW) is False

    def test_inside_window(self) -> None:
        assert _is_fresh(NOW - timedelta(hours=23, minutes=59), NOW) is True

    def test_outside_window(self) -> None:
        assert _is_fresh(NOW - timedelta(hours=24), NOW) is False

    def test_naive_is_utc(self) -> None:
        assert _is_fresh(datetime(2026, 5, 1, 6, 0), NOW) is True


async def test_stats_for_untracked_app() -> None:
    session = AsyncMock()
    session.execute = AsyncMock(return_value=make_result(scalar=None))
    stats = await get_scrape_stats(session, "ios", "1")
    assert stats == {
        "total_reviews": 0,
        "last_crawled_at": None,
        "latest_review_date": None,
        "needs_update": True,
    }


class TestFetchIncremental:
    async def test_untracked_app(self) -> None:
        session = AsyncMock()
        session.execute = AsyncMock(return_value=make_result(scalar=None))
        with pytest.raises(AppNotFoundError):
            await fetch_incremental_reviews(session, "ios", "1")

    async def test_recent_crawl_is_served_from_cache(self) -> None:
        session = AsyncMock()
        session.execute = AsyncMock(
            side_effect=[make_result(scalar=_app(2)), make_result(count=400)]
        )
        app_store = MagicMock()
        cached = ScrapedReviewFactory.build_batch(3)
        with patch.object(incremental, "_newest_reviews", AsyncMock(return_value=cached)):
            result = await fetch_incremental_reviews(
                session, "ios", "1", target_count=800, app_store=app_store
            )

        assert result == IncrementalResult(
            reviews=cached, total_reviews=400, new_count=0, from_cache=True
        )
        app_store.fetch_reviews_multi_page.assert_not_called()

    async def test_scrape_keeps_only_unknown_reviews(self) -> None:
        session = AsyncMock()
        session.execute = AsyncMock(
            side_effect=[make_result(scalar=_app(2)), make_result(count=400), make_result()]
        )
        scraped = [ScrapedReviewFactory.build(id=i) for i in ("known", "new-1", "new-2", "new-1")]
        app_store = MagicMock()
        app_store.fetch_reviews_multi_page = AsyncMock(return_value=scraped)

        with (
            patch.object(incremental, "existing_review_ids", AsyncMock(return_value={"known"})),
            patch.object(incremental, "store_reviews", AsyncMock(return_value=2)) as store,
            patch.object(incremental, "_newest_reviews", AsyncMock(return_value=scraped[1:3])),
        ):
            result = await fetch_incremental_reviews(
                session, "ios", "1", max_new=120, force_refresh=True, app_store=app_store
            )

        kwargs = app_store.fetch_reviews_multi_page.await_args.kwargs
        assert kwargs["max_pages"] == 3
        assert kwargs["page_delay"] == 2.0
        assert sorted(r.id for r in store.await_args.args[3]) == ["new-1", "new-2"]
        assert result.new_count == 2
        assert result.total_reviews == 402
        assert result.from_cache is False
        session.commit.assert_awaited_once()

    async def test_android_uses_single_sort_fetch(self) -> None:
        session = AsyncMock()
        session.execute = AsyncMock(
            side_effect=[make_result(scalar=_app(None)), make_result(count=0), make_result()]
        )
        google_play = MagicMock()
        google_play.fetch_reviews = AsyncMock(return_value=[])
        with (
            patch.object(incremental, "existing_review_ids", AsyncMock(return_value=set())),
            patch.object(incremental, "store_reviews", AsyncMock(return_value=0)),
            patch.object(incremental, "_newest_reviews", AsyncMock(return_value=[])),
        ):
            await fetch_incremental_reviews(
                session, "android", "com.Slack", max_new=300, google_play=google_play
            )
        google_play.fetch_reviews.assert_awaited_once_with("com.Slack", num=300)


async def test_cleanup_all_apps() -> None:
    session = AsyncMock()
    targets = MagicMock()
    targets.all.return_value = [("ios", "1"), ("android", "com.Slack")]
    session.execute = AsyncMock(return_value=targets)
    with patch.object(
        incremental, "cleanup_old_reviews", AsyncMock(side_effect=[120, 30])
    ) as cleanup:
        summary = await cleanup_all_apps(session, keep=500)
    assert summary == {"apps": 2, "deleted": 150}
    assert cleanup.await_args_list[1].kwargs == {"keep": 500}


class TestQuickFetch:
    async def test_stored_reviews_are_preferred(self) -> None:
        stored = ScrapedReviewFactory.build_batch(80)
        app_store = MagicMock()
        with patch.object(
            quick_fetch,
            "fetch_incremental_reviews",
            AsyncMock(return_value=IncrementalResult(reviews=stored, total_reviews=80)),
        ):
            reviews = await fetch_quick_reviews(AsyncMock(), "ios", "1", app_store=app_store)
        assert reviews == stored[:50]
        app_store.fetch_reviews.assert_not_called()

    async def test_falls_back_to_first_page(self) -> None:
        page = ScrapedReviewFactory.build_batch(60)
        app_store = MagicMock()
        app_store.fetch_reviews = AsyncMock(return_value=page)
        with patch.object(
            quick_fetch,
            "fetch_incremental_reviews",
            AsyncMock(side_effect=ScraperError("blocked")),
        ):
            reviews = await fetch_quick_reviews(AsyncMock(), "ios", "1", app_store=app_store)
        assert reviews == page[:50]
        app_store.fetch_reviews.assert_awaited_once_with("1", country="us", page=1)

    async def test_android_direct_fetch_is_capped(self) -> None:
        google_play = MagicMock()
        google_play.fetch_reviews = AsyncMock(return_value=[])
        await fetch_quick_reviews(
            AsyncMock(), "android", "com.Slack", count=250, use_incremental=False,
            google_play=google_play,
        )
        google_play.fetch_reviews.assert_awaited_once_with("com.Slack", num=100)


async def test_hot_apps_update_counts_outcomes() -> None:
    rows = MagicMock()
    rows.all.return_value = [
        ("ios", "1"),
        ("ios", "1"),
        ("android", "com.Slack"),
        ("ios", "2"),
    ]
    session = AsyncMock()
    session.execute = AsyncMock(return_value=rows)
    stats = {
        "1": {"needs_update": False, "total_reviews": 900},
        "com.Slack": {"needs_update": True, "total_reviews": 900},
        "2": {"needs_update": True, "total_reviews": 10},
    }

    async def fake_stats(_session, _platform, app_id):
        return stats[app_id]

    fetch = AsyncMock(side_effect=[IncrementalResult(), ScraperError("throttled")])
    with (
        patch.object(quick_fetch, "get_scrape_stats", fake_stats),
        patch.object(quick_fetch, "fetch_incremental_reviews", fetch),
    ):
        summary = await trigger_hot_apps_update(session, limit=10)

    assert summary == {"total": 3, "successful": 1, "skipped": 1, "failed": 1}
    assert fetch.await_args_list[0].kwargs["target_count"] == 950
    assert fetch.await_args_list[1].kwargs["target_count"] == 800
    session.rollback.assert_awaited_once()
