"""Unit tests for core/slug.py.

Covers:
- generate_app_slug: subtitle cut at the first colon, punctuation removal,
  whitespace collapsing, 50-character cap, "app" fallback.
- parse_app_slug: platform suffix detection.
- get_cache_duration: popularity bands.
- is_analysis_recent / get_time_ago with a fixed clock.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from review_insight.core.slug import (
    generate_app_slug,
    get_cache_duration,
    get_time_ago,
    is_analysis_recent,
    parse_app_slug,
)

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


class TestGenerateAppSlug:
    def test_drops_subtitle_after_colon(self) -> None:
        assert generate_app_slug("Slack: Team Chat", "android") == "slack-android"

    def test_collapses_whitespace_and_strips_punctuation(self) -> None:
        assert generate_app_slug("  Instagram   Lite! ", "android") == "instagram-lite-android"

    def test_ampersand_is_removed(self) -> None:
        assert generate_app_slug("Photo & Video Editor", "ios") == "photo-video-editor-ios"

    def test_caps_name_at_fifty_characters(self) -> None:
        slug = generate_app_slug("a" * 80, "ios")
        assert slug == "a" * 50 + "-ios"

    def test_falls_back_to_app_for_symbol_only_names(self) -> None:
        assert generate_app_slug("微信", "ios") == "app-ios"
        assert generate_app_slug(":subtitle only", "android") == "app-android"


class TestParseAppSlug:
    def test_splits_name_and_platform(self) -> None:
        assert parse_app_slug("instagram-lite-android") == {
            "app_name": "instagram-lite",
            "platform": "android",
        }

    @pytest.mark.parametrize("slug", ["instagram", "instagram-web", ""])
    def test_rejects_slugs_without_platform(self, slug: str) -> None:
        assert parse_app_slug(slug) is None


@pytest.mark.parametrize(
    ("review_count", "days"),
    [
        (250_000, 1),
        (100_000, 1),
        (99_999, 7),
        (10_000, 7),
        (5_000, 14),
        (1_000, 14),
        (999, 30),
        (0, 30),
        (None, 30),
    ],
)
def test_get_cache_duration_bands(review_count: int | None, days: int) -> None:
    assert get_cache_duration(review_count) == days


class TestIsAnalysisRecent:
    def test_popular_app_expires_after_one_day(self) -> None:
        assert is_analysis_recent(NOW - timedelta(hours=23), 200_000, now=NOW)
        assert not is_analysis_recent(NOW - timedelta(hours=25), 200_000, now=NOW)

    def test_small_app_stays_fresh_for_a_month(self) -> None:
        assert is_analysis_recent(NOW - timedelta(days=29), 50, now=NOW)
        assert not is_analysis_recent(NOW - timedelta(days=31), 50, now=NOW)

    def test_custom_hours_override_popularity(self) -> None:
        created = NOW - timedelta(hours=3)
        assert not is_analysis_recent(created, 50, custom_hours=2, now=NOW)
        assert is_analysis_recent(created, 200_000, custom_hours=4, now=NOW)

    def test_naive_timestamps_are_treated_as_utc(self) -> None:
        naive = (NOW - timedelta(hours=1)).replace(tzinfo=None)
        assert is_analysis_recent(naive, 200_000, now=NOW)


class TestGetTimeAgo:
    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(seconds=30), "0 minutes ago"),
            (timedelta(minutes=1), "1 minute ago"),
            (timedelta(minutes=45), "45 minutes ago"),
            (timedelta(hours=1), "1 hour ago"),
            (timedelta(hours=5), "5 hours ago"),
            (timedelta(days=1), "1 day ago"),
            (timedelta(days=6), "6 days ago"),
        ],
    )
    def test_relative_wording(self, delta: timedelta, expected: str) -> None:
        assert get_time_ago(NOW - delta, now=NOW) == expected

    def test_older_than_a_week_renders_date(self) -> None:
        assert get_time_ago(NOW - timedelta(days=10), now=NOW) == "2026-03-05"
