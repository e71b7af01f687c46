"""Route tests for the discovery listings.

Covers:
    - GET /api/browse: platform and region filters, category filter after
      loading, overfetch then dedupe down to ``limit``, filter facets.
    - GET /api/popular: most-reviewed first, five rows read per slot.
    - GET /api/recent: query order kept, duplicates dropped.

Each route is driven through ``client`` with ``mock_db.execute`` answering
the listing query (and, for /browse, the category sample).
"""

from __future__ import annotations

from sqlalchemy.dialects import postgresql

from review_insight.config.store_defaults import REGIONS
from review_insight.core.models.analysis import AnalysisTask
from tests.conftest import make_result
from tests.factories.tasks import AnalysisTaskFactory


def _task(app_store_id: str, slug: str, app_reviews: int = 1000, **overrides) -> AnalysisTask:
    result = AnalysisTaskFactory.build()["result"]
    result["app"]["reviewCount"] = app_reviews
    if "category" in overrides:
        result["app"]["category"] = overrides.pop("category")
    return AnalysisTask(
        **AnalysisTaskFactory.build(
            app_store_id=app_store_id, app_slug=slug, result=result, **overrides
        )
    )


def _compiled(mock_db, index: int = 0):
    statement = mock_db.execute.await_args_list[index].args[0]
    return statement.compile(dialect=postgresql.dialect())


# ---------------------------------------------------------------------------
# GET /api/browse
# ---------------------------------------------------------------------------


class TestBrowse:
    async def test_overfetches_then_dedupes_to_limit(self, client, mock_db) -> None:
        tasks = [
            _task("1", "alpha-ios", app_reviews=10),
            _task("1", "alpha-ios-old", app_reviews=10),
            _task("2", "beta-ios", app_reviews=500),
            _task("3", "gamma-ios", app_reviews=90),
        ]
        mock_db.execute.side_effect = [
            make_result(scalars=tasks),
            make_result(scalars=[t.result for t in tasks]),
        ]

        response = await client.get("/api/browse", params={"limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert [a["slug"] for a in body["apps"]] == ["beta-ios", "gamma-ios"]
        assert body["total"] == 2
        assert 6 in _compiled(mock_db).params.values()

    async def test_category_filter_reads_a_wider_window(self, client, mock_db) -> None:
        tasks = [
            _task("1", "photos-ios"),
            _task("2", "game-ios", category="GAME"),
        ]
        mock_db.execute.side_effect = [make_result(scalars=tasks), make_result()]

        response = await client.get("/api/browse", params={"category": "Games", "limit": 5})

        assert [a["slug"] for a in response.json()["apps"]] == ["game-ios"]
        assert 60 in _compiled(mock_db).params.values()

    async def test_platform_and_region_filters(self, client, mock_db) -> None:
        mock_db.execute.side_effect = [make_result(), make_result()]

        response = await client.get(
            "/api/browse", params={"platform": "android", "region": "GB", "sort": "recent"}
        )

        assert response.status_code == 200
        compiled = _compiled(mock_db)
        assert "EXISTS" in str(compiled)
        assert "android" in compiled.params.values()
        assert "gb" in compiled.params.values()

    async def test_filters_carry_categories_and_regions(self, client, mock_db) -> None:
        sample = [_task(str(i), f"app-{i}").result for i in range(2)]
        game = _task("9", "game-ios", category="GAME").result
        mock_db.execute.side_effect = [make_result(), make_result(scalars=[*sample, game, None])]

        filters = (await client.get("/api/browse")).json()["filters"]

        assert filters["categories"] == [
            {"name": "Photo & Video", "count": 2},
            {"name": "Games", "count": 1},
        ]
        assert [r["code"] for r in filters["regions"]] == [r["code"] for r in REGIONS]

    async def test_rejects_unknown_sort(self, client, mock_db) -> None:
        response = await client.get("/api/browse", params={"sort": "random"})
        assert response.status_code == 422
        mock_db.execute.assert_not_awaited()


# ---------------------------------------------------------------------------
# GET /api/popular and /api/recent
# ---------------------------------------------------------------------------


class TestPopular:
    async def test_most_reviewed_first(self, client, mock_db) -> None:
        mock_db.execute.return_value = make_result(
            scalars=[
                _task("1", "small-ios", app_reviews=50),
                _task("2", "big-ios", app_reviews=9_000),
                _task("2", "big-ios-old", app_reviews=9_000),
                _task("3", "mid-ios", app_reviews=700),
            ]
        )

        response = await client.get("/api/popular", params={"limit": 2, "platform": "ios"})

        body = response.json()
        assert [a["slug"] for a in body["analyses"]] == ["big-ios", "mid-ios"]
        assert body["total"] == 2
        compiled = _compiled(mock_db)
        assert 10 in compiled.params.values()
        assert "ios" in compiled.params.values()

    async def test_empty(self, client) -> None:
        response = await client.get("/api/popular")
        assert response.json() == {"analyses": [], "total": 0}


class TestRecent:
    async def test_keeps_query_order_and_drops_duplicates(self, client, mock_db) -> None:
        mock_db.execute.return_value = make_result(
            scalars=[
                _task("1", "newest-ios"),
                _task("1", "newest-ios-old"),
                _task("2", "older-ios", platform="android"),
                _task("3", "oldest-ios"),
            ]
        )

        response = await client.get("/api/recent", params={"limit": 2})

        assert [a["slug"] for a in response.json()["analyses"]] == ["newest-ios", "older-ios"]
        assert 6 in _compiled(mock_db).params.values()

    async def test_limit_is_bounded(self, client) -> None:
        response = await client.get("/api/recent", params={"limit": 500})
        assert response.status_code == 422
