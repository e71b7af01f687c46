"""Tests for multi-app comparison (analysis/comparison.py).

Covers:
    - extract_app_id_for_compare for both platforms and invalid URLs.
    - time_range_cutoff / filter_by_time_range including month arithmetic.
    - generate_comparison_slug truncation and the three-name cap.
    - generate_comparison_insights: sentiment ranking, unique issues, score.
    - estimated_time bounds.
    - process_comparison: per-app progress, positional failure message.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from review_insight.analysis import comparison
from review_insight.analysis.comparison import (
    AppAnalysis,
    build_comparison_result,
    estimated_time,
    extract_app_id_for_compare,
    filter_by_time_range,
    generate_comparison_insights,
    generate_comparison_slug,
    process_comparison,
    time_range_cutoff,
)
from tests.factories.reviews import AppInfoFactory, ScrapedReviewFactory

NOW = datetime(2026, 8, 31, 12, 0, tzinfo=UTC)


def _analysis(name: str, positive: float, negative: float, issues=(), rating: float = 4.0):
    return AppAnalysis(
        app_id=name.lower(),
        platform="ios",
        app_info=AppInfoFactory.build(name=name, rating=rating),
        reviews=ScrapedReviewFactory.build_batch(2),
        analysis={
            "sentiment": {"positive": positive, "negative": negative, "neutral": 0},
            "criticalIssues": [{"title": t} for t in issues],
            "featureRequests": [],
        },
    )


class TestExtractAppId:
    def test_ios(self) -> None:
        url = "https://apps.apple.com/us/app/slack/id618783545"
        assert extract_app_id_for_compare(url, "ios") == "618783545"

    def test_android(self) -> None:
        url = "https://play.google.com/store/apps/details?id=com.Slack&hl=en"
        assert extract_app_id_for_compare(url, "android") == "com.Slack"

    @pytest.mark.parametrize(
        ("url", "platform", "message"),
        [
            ("https://apps.apple.com/us/app/slack", "ios", "Invalid iOS App Store URL"),
            ("https://play.google.com/store/apps", "android", "Invalid Google Play URL"),
        ],
    )
    def test_invalid(self, url: str, platform: str, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            extract_app_id_for_compare(url, platform)


class TestTimeRange:
    def test_day_windows(self) -> None:
        assert time_range_cutoff("last_30_days", NOW) == NOW - timedelta(days=30)
        assert time_range_cutoff("last_90_days", NOW) == NOW - timedelta(days=90)

    def test_six_months_clamps_day(self) -> None:
        assert time_range_cutoff("last_6_months", NOW) == datetime(2026, 2, 28, 12, 0, tzinfo=UTC)

    def test_six_months_crosses_year(self) -> None:
        start = datetime(2026, 3, 15, tzinfo=UTC)
        assert time_range_cutoff("last_6_months", start) == datetime(2025, 9, 15, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["all_time", None, "forever"])
    def test_unbounded(self, value) -> None:
        assert time_range_cutoff(value, NOW) is None

    def test_filter_keeps_recent_and_naive_dates(self) -> None:
        recent = ScrapedReviewFactory.build(date=NOW - timedelta(days=3))
        old = ScrapedReviewFactory.build(date=NOW - timedelta(days=60))
        naive = ScrapedReviewFactory.build(date=datetime(2026, 8, 30))
        kept = filter_by_time_range([recent, old, naive], "last_30_days", NOW)
        assert kept == [recent, naive]


class TestSlug:
    def test_joins_names(self) -> None:
        assert generate_comparison_slug(["Slack", "Microsoft Teams"]) == (
            "slack-vs-microsoft-teams-comparison"
        )

    def test_caps_names_and_length(self) -> None:
        slug = generate_comparison_slug(["A very long application name indeed", "B", "C", "D"])
        assert slug == "a-very-long-applicat-vs-b-vs-c-comparison"


class TestInsights:
    def test_sentiment_ranking(self) -> None:
        apps = [_analysis("Low", 20, 60), _analysis("High", 80, 10), _analysis("Mid", 50, 30)]
        insights = generate_comparison_insights(apps)
        sentiment = insights["sentimentComparison"]
        assert [e["name"] for e in sentiment["ranking"]] == ["High", "Mid", "Low"]
        assert sentiment["bestSentiment"]["name"] == "High"
        assert sentiment["worstSentiment"]["name"] == "Low"

    def test_unique_issues_become_strengths(self) -> None:
        apps = [
            _analysis("A", 50, 20, issues=["Crashes", "Login"]),
            _analysis("B", 50, 20, issues=["crashes "]),
        ]
        strengths = generate_comparison_insights(apps)["strengthsComparison"]
        assert strengths == [{"issue": "login", "affectedApps": ["A"], "unaffectedApps": ["B"]}]

    def test_overall_score_and_recommendations(self) -> None:
        apps = [_analysis("A", 60, 20, issues=["x"], rating=5.0), _analysis("B", 40, 30)]
        insights = generate_comparison_insights(apps)
        top = insights["ranking"][0]
        assert top["name"] == "A"
        assert top["overallScore"] == pytest.approx(40 * 0.4 + 1.0 * 0.4 - 0.1)
        assert insights["recommendations"][0]["target"] == "B"
        assert insights["recommendations"][1]["target"] == "A"

    def test_unknown_app_name(self) -> None:
        app = AppAnalysis(app_id="1", platform="ios", app_info=None, reviews=[])
        assert app.name == "Unknown App"
        assert app.rating == 0.0


@pytest.mark.parametrize(("apps", "expected"), [(2, "5-10 minutes"), (4, "8-12 minutes")])
def test_estimated_time(apps: int, expected: str) -> None:
    assert estimated_time(apps) == expected


def test_build_comparison_result_defaults() -> None:
    apps = [_analysis("A", 60, 20), _analysis("B", 40, 30)]
    result = build_comparison_result(apps, {}, {"ranking": []}, None)
    assert result["comparisonType"] == "multi_app"
    assert result["totalApps"] == 2
    assert result["focusAreas"] == ["sentiment", "features"]
    assert result["timeRange"] == "last_90_days"
    assert result["comparison"] == {"ranking": [], "swot": None}
    assert result["apps"][0]["reviewCount"] == 2


# ---------------------------------------------------------------------------
# process_comparison
# ---------------------------------------------------------------------------


def _session_factory(session):
    @asynccontextmanager
    async def factory():
        yield session

    return factory


async def test_process_comparison_completes() -> None:
    session = AsyncMock()
    apps = [
        {"appUrl": "https://apps.apple.com/app/id1", "platform": "ios"},
        {"appUrl": "https://apps.apple.com/app/id2", "platform": "ios"},
    ]
    analysed = [_analysis("A", 60, 20), _analysis("B", 40, 30)]
    with (
        patch.object(comparison, "update_task", AsyncMock()) as update_task,
        patch.object(comparison, "analyze_comparison_app", AsyncMock(side_effect=analysed)),
        patch.object(comparison, "_swot", AsyncMock(return_value={"strengths": ["x"]})),
    ):
        await process_comparison(
            uuid.uuid4(), apps, {"timeRange": "all_time"}, None,
            session_factory=_session_factory(session),
        )

    calls = [c.kwargs for c in update_task.await_args_list]
    assert [c["progress"] for c in calls if "progress" in c] == [0, 50, 100]
    assert calls[1]["result"]["currentStep"] == "Analyzing app 1 of 2"
    final = calls[-1]
    assert final["status"] == "completed"
    assert final["review_count"] == 4
    assert final["result"]["comparison"]["swot"] == {"strengths": ["x"]}


async def test_process_comparison_names_failing_app() -> None:
    session = AsyncMock()
    apps = [
        {"appUrl": "https://apps.apple.com/app/id1", "platform": "ios"},
        {"appUrl": "https://apps.apple.com/app/id2", "platform": "ios"},
    ]
    with (
        patch.object(comparison, "update_task", AsyncMock()) as update_task,
        patch.object(
            comparison,
            "analyze_comparison_app",
            AsyncMock(side_effect=[_analysis("A", 60, 20), RuntimeError("App 2 not found")]),
        ),
    ):
        await process_comparison(
            uuid.uuid4(), apps, None, None, session_factory=_session_factory(session)
        )

    final = update_task.await_args_list[-1].kwargs
    assert final["status"] == "failed"
    assert final["error_msg"] == "Failed to analyze app 2: App 2 not found"
    session.rollback.assert_awaited_once()
