"""Unit tests for pure helpers used by the route modules.

Covers:
    - browse.format_listing: dedup per app, category filter, bad rows.
    - browse.sort_listing and browse.category_counts.
    - auth.decode_id_token_claims.
    - dependencies.get_pagination bounds and contains_pattern escaping.
    - user.format_history_item for completed and running tasks.
"""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException

from review_insight.api.dependencies import contains_pattern, get_pagination
from review_insight.api.routes.auth import decode_id_token_claims
from review_insight.api.routes.browse import category_counts, format_listing, sort_listing
from review_insight.api.routes.user import format_history_item
from review_insight.core.models.analysis import AnalysisTask
from tests.factories.tasks import AnalysisTaskFactory

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def _task(**overrides) -> AnalysisTask:
    return AnalysisTask(**AnalysisTaskFactory.build(**overrides))


def _jwt(claims) -> str:
    segment = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"eyJhbGciOiJub25lIn0.{segment}.signature"


# ---------------------------------------------------------------------------
# Browse
# ---------------------------------------------------------------------------


class TestFormatListing:
    def test_item_shape(self) -> None:
        task = _task(completed_at=NOW - timedelta(hours=3))
        (item,) = format_listing([task], now=NOW)
        assert item["slug"] == "instagram-ios"
        assert item["name"] == "Instagram"
        assert item["reviewCount"] == 800
        assert item["appReviewCount"] == 25_000
        assert item["category"] == "Photo & Video"
        assert item["timeAgo"] == "3 hours ago"
        assert item["sentiment"] == {"positive": 60, "negative": 30, "neutral": 10}

    def test_first_task_per_app_wins(self) -> None:
        newer = _task(app_slug="instagram-ios")
        older = _task(app_slug="instagram-ios-old")
        other_platform = _task(platform="android", app_slug="instagram-android")
        items = format_listing([newer, older, other_platform], now=NOW)
        assert [i["slug"] for i in items] == ["instagram-ios", "instagram-android"]

    def test_category_filter_uses_unified_names(self) -> None:
        photo = _task()
        game_result = AnalysisTaskFactory.build()["result"]
        game_result["app"]["category"] = "GAME"
        game = _task(app_store_id="2", app_slug="game-ios", result=game_result)
        items = format_listing([photo, game], category="Games", now=NOW)
        assert [i["slug"] for i in items] == ["game-ios"]

    def test_rows_without_app_are_skipped(self) -> None:
        assert format_listing([_task(result={"reviewCount": 1}), _task(app_slug=None)]) == []


def test_sort_listing() -> None:
    items = [
        {"appReviewCount": 10, "rating": 4.9, "analyzedAt": "2026-05-01T00:00:00"},
        {"appReviewCount": 99, "rating": 3.0, "analyzedAt": None},
        {"appReviewCount": 50, "rating": 4.0, "analyzedAt": "2026-05-03T00:00:00"},
    ]
    assert [i["appReviewCount"] for i in sort_listing(items, "popular")] == [99, 50, 10]
    assert [i["rating"] for i in sort_listing(items, "rating")] == [4.9, 4.0, 3.0]
    assert [i["appReviewCount"] for i in sort_listing(items, "recent")] == [50, 10, 99]


def test_category_counts() -> None:
    results = [
        {"app": {"category": "GAME"}},
        {"app": {"category": "Games"}},
        {"app": {"category": "Finance"}},
        {"app": {"category": "Business"}},
        {"reviewCount": 3},
        None,
    ]
    assert category_counts(results) == [
        {"name": "Games", "count": 2},
        {"name": "Business", "count": 1},
        {"name": "Finance", "count": 1},
    ]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestDecodeIdTokenClaims:
    def test_valid(self) -> None:
        claims = {"sub": "001122.apple", "email": "a@example.com"}
        assert decode_id_token_claims(_jwt(claims)) == claims

    @pytest.mark.parametrize("token", ["not-a-jwt", "a.b", "a.b.c.d"])
    def test_wrong_shape(self, token: str) -> None:
        with pytest.raises(ValueError, match="not a JWT"):
            decode_id_token_claims(token)

    def test_claims_not_json(self) -> None:
        with pytest.raises(ValueError, match="not valid JSON"):
            decode_id_token_claims("header.bm90IGpzb24.sig")

    def test_claims_not_object(self) -> None:
        with pytest.raises(ValueError, match="not an object"):
            decode_id_token_claims(_jwt(["sub"]))


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class TestPagination:
    def test_offset(self) -> None:
        params = get_pagination(page=3, limit=20)
        assert params.offset == 40

    @pytest.mark.parametrize(("page", "limit"), [(0, 20), (1, 0), (1, 101)])
    def test_out_of_range(self, page: int, limit: int) -> None:
        with pytest.raises(HTTPException) as exc_info:
            get_pagination(page=page, limit=limit)
        assert exc_info.value.status_code == 422


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class TestFormatHistoryItem:
    def test_completed(self) -> None:
        item = format_history_item(_task())
        assert item["summary"] == {
            "totalReviews": 800,
            "analyzedCount": 300,
            "sentiment": {"positive": 60, "negative": 30, "neutral": 10},
            "criticalIssuesCount": 1,
            "priorityActionsCount": 2,
        }
        assert item["processing"] is None
        assert item["app"]["name"] == "Instagram"

    def test_processing(self) -> None:
        item = format_history_item(
            _task(status="processing", progress=45, result=None, completed_at=None)
        )
        assert item["summary"] is None
        assert item["processing"] == {"progress": 45, "status": "processing"}
        assert item["app"] is None
        assert item["completedAt"] is None


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("slack", "%slack%"),
        ("100%", "%100\\%%"),
        ("my_app", "%my\\_app%"),
        ("a\\b", "%a\\\\b%"),
    ],
)
def test_contains_pattern_escapes_wildcards(text: str, expected: str) -> None:
    assert contains_pattern(text) == expected
