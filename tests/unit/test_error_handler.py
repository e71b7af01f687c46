"""Unit tests for core/error_handler.py.

Covers:
- create_error / error_payload / format_error_response envelope.
- handle_platform_error mapping for typed scraper exceptions and messages.
- retry_with_backoff: retries, immediate client-error re-raise.
- sanitize_app_url / validate_app_url.
- classify_processing_error.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from review_insight.core.error_handler import (
    ERROR_TYPES,
    classify_processing_error,
    create_error,
    error_payload,
    format_error_response,
    handle_platform_error,
    is_network_error,
    retry_with_backoff,
    sanitize_app_url,
    validate_app_url,
)
from review_insight.core.exceptions import (
    AIServiceError,
    AppAnalysisError,
    AppNotFoundError,
    ScraperRateLimitError,
)

# ===========================================================================
# Catalogue and envelope
# ===========================================================================


@pytest.mark.parametrize(
    ("code", "status"),
    [
        ("INVALID_URL", 400),
        ("APP_NOT_FOUND", 404),
        ("NETWORK_ERROR", 503),
        ("RATE_LIMITED", 429),
        ("ANALYSIS_TIMEOUT", 408),
        ("AI_SERVICE_ERROR", 503),
        ("INVALID_PLATFORM", 400),
        ("QUOTA_EXCEEDED", 429),
    ],
)
def test_catalogue_status_codes(code: str, status: int) -> None:
    error = create_error(code)
    assert error.status_code == status
    assert error.code == code
    assert error.message == ERROR_TYPES[code].message


def test_create_error_copies_suggestions() -> None:
    error = create_error("INVALID_URL", "Could not extract app ID from URL")
    error.suggestions.append("extra hint")
    assert error.message == "Could not extract app ID from URL"
    assert "extra hint" not in ERROR_TYPES["INVALID_URL"].suggestions


def test_create_error_rejects_unknown_code() -> None:
    with pytest.raises(KeyError):
        create_error("NOT_A_CODE")


def test_error_payload_for_app_analysis_error() -> None:
    body, status = error_payload(create_error("QUOTA_EXCEEDED"))
    assert status == 429
    assert body["code"] == "QUOTA_EXCEEDED"
    assert body["retry"] is False
    assert set(body) == {"error", "code", "suggestions", "retry", "timestamp"}


def test_error_payload_hides_unexpected_errors() -> None:
    body, status = error_payload(RuntimeError("db password is hunter2"))
    assert status == 500
    assert body["code"] == "INTERNAL_ERROR"
    assert "hunter2" not in body["error"]


def test_format_error_response_renders_json() -> None:
    response = format_error_response(create_error("APP_NOT_FOUND", "iOS app not found"))
    assert response.status_code == 404
    body = json.loads(response.body)
    assert body["error"] == "iOS app not found"
    assert body["suggestions"]


# ===========================================================================
# Platform error mapping
# ===========================================================================


class TestHandlePlatformError:
    def test_network_errors(self) -> None:
        error = handle_platform_error("ios", httpx.ConnectError("refused"))
        assert error.code == "NETWORK_ERROR"
        assert error.message == "Failed to connect to App Store"

    def test_not_found(self) -> None:
        error = handle_platform_error("ios", AppNotFoundError("gone", platform="ios"))
        assert error.code == "APP_NOT_FOUND"
        assert error.message == "iOS app not found"

    def test_404_in_message(self) -> None:
        error = handle_platform_error("android", RuntimeError("HTTP 404"))
        assert error.code == "APP_NOT_FOUND"
        assert error.message == "Android app not found"

    def test_rate_limit_and_forbidden(self) -> None:
        assert handle_platform_error("ios", ScraperRateLimitError("429")).code == "RATE_LIMITED"
        error = handle_platform_error("android", RuntimeError("403 Forbidden"))
        assert error.code == "RATE_LIMITED"
        assert error.message == "Google Play access restricted"

    def test_unknown_failures(self) -> None:
        error = handle_platform_error("android", RuntimeError("boom"))
        assert error.code == "AI_SERVICE_ERROR"

    def test_passes_through_catalogued_errors(self) -> None:
        original = create_error("INVALID_URL")
        assert handle_platform_error("ios", original) is original


def test_is_network_error_by_message() -> None:
    assert is_network_error(RuntimeError("ECONNRESET while reading"))
    assert is_network_error(asyncio.TimeoutError())
    assert not is_network_error(ValueError("bad value"))


# ===========================================================================
# Retry with backoff
# ===========================================================================


class TestRetryWithBackoff:
    async def test_returns_first_success(self) -> None:
        operation = AsyncMock(side_effect=[RuntimeError("flaky"), "ok"])
        with patch("review_insight.core.error_handler.asyncio.sleep", AsyncMock()) as sleep:
            assert await retry_with_backoff(operation, max_retries=3, base_delay=1.0) == "ok"
        assert operation.await_count == 2
        sleep.assert_awaited_once()
        assert 1.0 <= sleep.await_args.args[0] < 2.0

    async def test_raises_last_error_after_max_retries(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("down"))
        with patch("review_insight.core.error_handler.asyncio.sleep", AsyncMock()) as sleep:
            with pytest.raises(RuntimeError, match="down"):
                await retry_with_backoff(operation, max_retries=3, base_delay=1.0)
        assert operation.await_count == 3
        delays = [call.args[0] for call in sleep.await_args_list]
        assert len(delays) == 2
        assert 2.0 <= delays[1] < 3.0

    async def test_client_errors_are_not_retried(self) -> None:
        operation = AsyncMock(side_effect=create_error("APP_NOT_FOUND"))
        with patch("review_insight.core.error_handler.asyncio.sleep", AsyncMock()) as sleep:
            with pytest.raises(AppAnalysisError):
                await retry_with_backoff(operation, max_retries=3)
        assert operation.await_count == 1
        sleep.assert_not_awaited()


# ===========================================================================
# URL handling
# ===========================================================================


def test_sanitize_forces_https_and_drops_tracking_params() -> None:
    url = "  http://apps.apple.com/us/app/instagram/id389801252?mt=8&uo=4&l=fr  "
    assert sanitize_app_url(url) == "https://apps.apple.com/us/app/instagram/id389801252?l=fr"


def test_sanitize_leaves_google_play_query_alone() -> None:
    url = "https://play.google.com/store/apps/details?id=com.slack&hl=en"
    assert sanitize_app_url(url) == url


@pytest.mark.parametrize(
    ("url", "platform", "valid"),
    [
        ("https://apps.apple.com/us/app/instagram/id389801252", "ios", True),
        ("https://apps.apple.com/app/id389801252", "ios", True),
        ("https://apps.apple.com/us/app/instagram", "ios", False),
        ("https://play.google.com/store/apps/details?id=com.slack", "android", True),
        ("https://play.google.com/store/apps/details?id=com.slack", "ios", False),
        ("https://example.com/app/id123", "ios", False),
        ("https://apps.apple.com/us/app/x/id1", "windows", False),
    ],
)
def test_validate_app_url(url: str, platform: str, valid: bool) -> None:
    assert validate_app_url(url, platform) is valid


# ===========================================================================
# Background failure classification
# ===========================================================================


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (asyncio.TimeoutError(), "ANALYSIS_TIMEOUT"),
        (RuntimeError("read timeout"), "ANALYSIS_TIMEOUT"),
        (MemoryError(), "ANALYSIS_TIMEOUT"),
        (AIServiceError("openrouter: HTTP 500"), "AI_SERVICE_ERROR"),
        (ValueError("something else"), "ANALYSIS_ERROR"),
    ],
)
def test_classify_processing_error(error: BaseException, code: str) -> None:
    message, actual = classify_processing_error(error)
    assert actual == code
    assert message


def test_classify_memory_message() -> None:
    assert classify_processing_error(MemoryError()) == (
        "Too much data - try disabling deep mode",
        "ANALYSIS_TIMEOUT",
    )
