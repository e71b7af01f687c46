"""Route tests for /api/analyze and /api/compare.

Covers:
    - POST /api/analyze: task created and enqueued, catalogued 400s,
      APP_NOT_FOUND after storefront fallbacks, cache hit, guest-limit
      lookup failure still starts the analysis.
    - GET /api/analyze: missing parameters, unknown task, task by id.
    - POST /api/analyze/refresh: empty name, unknown app, literal wildcards.
    - POST /api/compare: guest rejected, validation 400, quota 402, enqueue.

The database is ``mock_db`` and the Celery tasks are patched, so nothing
leaves the process.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import ProgrammingError

from review_insight.api.main import app
from review_insight.api.routes.analyze import get_app_store_scraper, get_google_play_scraper
from review_insight.config.settings import get_settings
from review_insight.core.models.analysis import AnalysisTask
from tests.conftest import make_result
from tests.factories.reviews import AppInfoFactory
from tests.factories.tasks import AnalysisTaskFactory

IOS_URL = "https://apps.apple.com/us/app/instagram/id389801252"
ANDROID_URL = "https://play.google.com/store/apps/details?id=com.instagram.android"


@pytest.fixture
def app_store():
    scraper = MagicMock()
    scraper.fetch_app = AsyncMock(return_value=AppInfoFactory.build(app_id="389801252"))
    app.dependency_overrides[get_app_store_scraper] = lambda: scraper
    return scraper


@pytest.fixture
def google_play():
    scraper = MagicMock()
    scraper.fetch_app = AsyncMock(
        return_value=AppInfoFactory.build(
            app_id="com.instagram.android", platform="android", category="PHOTOGRAPHY"
        )
    )
    app.dependency_overrides[get_google_play_scraper] = lambda: scraper
    return scraper


# ---------------------------------------------------------------------------
# POST /api/analyze
# ---------------------------------------------------------------------------


class TestStartAnalysis:
    async def test_creates_and_enqueues_task(self, client, mock_db, app_store) -> None:
        with patch("review_insight.workers.tasks.process_analysis") as task:
            response = await client.post(
                "/api/analyze",
                json={"appUrl": IOS_URL, "platform": "ios", "options": {"multiCountry": True}},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["appSlug"] == "instagram-ios"
        assert body["cached"] is False

        created = mock_db.add.call_args.args[0]
        assert isinstance(created, AnalysisTask)
        assert created.app_store_id == "389801252"
        assert str(created.id) == body["taskId"]
        mock_db.commit.assert_awaited()

        args = task.delay.call_args.args
        assert args[0] == body["taskId"]
        assert args[1:3] == ("ios", "389801252")
        assert args[4] == {"multiCountry": True}

    async def test_guest_check_failure_rolls_back_and_proceeds(
        self, client, mock_db, app_store
    ) -> None:
        def _execute(statement, *args, **kwargs):
            if "guest_analyses" in str(statement) and "SELECT" in str(statement):
                raise ProgrammingError("SELECT", {}, Exception("relation does not exist"))
            return make_result()

        mock_db.execute.side_effect = _execute
        settings = get_settings().model_copy(update={"enable_subscriptions": True})
        with (
            patch("review_insight.api.routes.analyze.get_settings", return_value=settings),
            patch("review_insight.workers.tasks.process_analysis"),
        ):
            response = await client.post(
                "/api/analyze", json={"appUrl": IOS_URL, "platform": "ios"}
            )

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        mock_db.rollback.assert_awaited()
        mock_db.commit.assert_awaited()

    async def test_android(self, client, google_play) -> None:
        with patch("review_insight.workers.tasks.process_analysis"):
            response = await client.post(
                "/api/analyze", json={"appUrl": ANDROID_URL, "platform": "android"}
            )
        assert response.status_code == 200
        assert response.json()["appSlug"] == "instagram-android"
        google_play.fetch_app.assert_awaited_once_with("com.instagram.android")

    async def test_missing_fields(self, client) -> None:
        response = await client.post("/api/analyze", json={"platform": "ios"})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_URL"

    async def test_invalid_platform(self, client) -> None:
        response = await client.post(
            "/api/analyze", json={"appUrl": IOS_URL, "platform": "windows"}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_PLATFORM"
        assert body["suggestions"]
        assert "timestamp" in body

    async def test_url_for_wrong_store(self, client) -> None:
        response = await client.post(
            "/api/analyze", json={"appUrl": ANDROID_URL, "platform": "ios"}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_URL"

    async def test_app_not_found_after_fallbacks(self, client, app_store) -> None:
        app_store.fetch_app.return_value = None
        response = await client.post("/api/analyze", json={"appUrl": IOS_URL, "platform": "ios"})

        assert response.status_code == 404
        assert response.json()["code"] == "APP_NOT_FOUND"
        countries = [c.args[1] for c in app_store.fetch_app.await_args_list]
        assert countries == ["us", "gb", "cn"]

    async def test_recent_analysis_is_served_from_cache(self, client, mock_db, app_store) -> None:
        cached = AnalysisTask(
            **AnalysisTaskFactory.build(created_at=datetime.now(tz=UTC) - timedelta(hours=1))
        )
        mock_db.execute.return_value = make_result(scalar=cached)

        with patch("review_insight.workers.tasks.process_analysis") as task:
            response = await client.post(
                "/api/analyze", json={"appUrl": IOS_URL, "platform": "ios"}
            )

        body = response.json()
        assert body["cached"] is True
        assert body["taskId"] == str(cached.id)
        assert body["status"] == "completed"
        task.delay.assert_not_called()
        mock_db.add.assert_not_called()


# ---------------------------------------------------------------------------
# GET /api/analyze
# ---------------------------------------------------------------------------


class TestGetAnalysis:
    async def test_requires_a_parameter(self, client) -> None:
        response = await client.get("/api/analyze")
        assert response.status_code == 400
        assert response.json() == {"error": "Missing taskId or slug parameter"}

    async def test_unknown_task(self, client) -> None:
        response = await client.get("/api/analyze", params={"taskId": str(uuid.uuid4())})
        assert response.status_code == 404
        assert response.json() == {"error": "Analysis not found"}

    async def test_malformed_task_id(self, client, mock_db) -> None:
        response = await client.get("/api/analyze", params={"taskId": "not-a-uuid"})
        assert response.status_code == 404
        mock_db.get.assert_not_awaited()

    async def test_by_task_id(self, client, mock_db) -> None:
        task = AnalysisTask(**AnalysisTaskFactory.build(status="processing", progress=45))
        mock_db.get.return_value = task

        response = await client.get("/api/analyze", params={"taskId": str(task.id)})

        assert response.status_code == 200
        body = response.json()
        assert body["taskId"] == str(task.id)
        assert body["status"] == "processing"
        assert body["progress"] == 45
        assert body["error"] is None

    async def test_by_slug(self, client, mock_db) -> None:
        task = AnalysisTask(**AnalysisTaskFactory.build())
        mock_db.execute.return_value = make_result(scalar=task)
        response = await client.get("/api/analyze", params={"slug": "instagram-ios"})
        assert response.json()["result"]["app"]["name"] == "Instagram"


# ---------------------------------------------------------------------------
# POST /api/analyze/refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    async def test_requires_name(self, client) -> None:
        response = await client.post("/api/analyze/refresh", json={"appName": "  "})
        assert response.status_code == 400

    async def test_unknown_app(self, client) -> None:
        response = await client.post("/api/analyze/refresh", json={"appName": "Nope"})
        assert response.status_code == 404
        assert response.json()["detail"] == "App not found"

    async def test_name_wildcards_match_literally(self, client, mock_db) -> None:
        await client.post("/api/analyze/refresh", json={"appName": "100%_off"})

        statement = mock_db.execute.await_args_list[0].args[0]
        compiled = statement.compile(dialect=postgresql.dialect())
        assert "%100\\%\\_off%" in compiled.params.values()
        assert "ESCAPE" in str(compiled)


# ---------------------------------------------------------------------------
# POST /api/compare
# ---------------------------------------------------------------------------

_COMPARE_BODY = {
    "apps": [
        {"appUrl": "https://apps.apple.com/us/app/slack/id618783545", "platform": "ios"},
        {"appUrl": "https://play.google.com/store/apps/details?id=com.microsoft.teams", "platform": "android"},
    ],
    "comparisonOptions": {"timeRange": "last_30_days"},
}


class TestCompare:
    async def test_requires_sign_in(self, client) -> None:
        response = await client.post("/api/compare", json=_COMPARE_BODY)
        assert response.status_code == 401

    async def test_needs_two_apps(self, auth_client) -> None:
        response = await auth_client.post("/api/compare", json={"apps": _COMPARE_BODY["apps"][:1]})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid input data"

    async def test_url_without_id(self, auth_client) -> None:
        body = {
            "apps": [
                {"appUrl": "https://apps.apple.com/us/app/slack", "platform": "ios"},
                _COMPARE_BODY["apps"][1],
            ]
        }
        response = await auth_client.post("/api/compare", json=body)
        assert response.status_code == 400
        assert response.json()["details"] == [{"msg": "Invalid iOS App Store URL"}]

    async def test_quota_exhausted(self, auth_client) -> None:
        verdict = {
            "canAnalyze": False,
            "reason": "Monthly analysis limit reached",
            "remainingAnalyses": 0,
            "subscriptionTier": "free",
        }
        with patch(
            "review_insight.api.routes.compare.can_user_analyze", AsyncMock(return_value=verdict)
        ):
            response = await auth_client.post("/api/compare", json=_COMPARE_BODY)
        assert response.status_code == 402
        assert response.json()["requiresUpgrade"] is True

    async def test_enqueues_comparison(self, auth_client, mock_db, test_user) -> None:
        verdict = {
            "canAnalyze": True,
            "reason": None,
            "remainingAnalyses": 2,
            "subscriptionTier": "free",
        }
        with (
            patch(
                "review_insight.api.routes.compare.can_user_analyze",
                AsyncMock(return_value=verdict),
            ),
            patch("review_insight.workers.tasks.process_comparison") as task,
        ):
            response = await auth_client.post("/api/compare", json=_COMPARE_BODY)

        assert response.status_code == 200
        body = response.json()
        assert body["totalApps"] == 2
        assert body["estimatedTime"] == "5-10 minutes"
        task_id, apps, options, user_id = task.delay.call_args.args
        assert task_id == body["taskId"]
        assert [a["platform"] for a in apps] == ["ios", "android"]
        assert options["timeRange"] == "last_30_days"
        assert user_id == str(test_user.id)
