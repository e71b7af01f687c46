"""Catalogue of user-facing analysis errors and helpers around it.

Every error returned to an HTTP client by the analysis endpoints is an
:class:`~review_insight.core.exceptions.AppAnalysisError` built from the
:data:`ERROR_TYPES` table, so clients can rely on a stable ``code`` and a
list of recovery ``suggestions``.  The response envelope is::

    {"error": str, "code": str, "suggestions": [str], "retry": bool,
     "timestamp": ISO-8601}

Also provides URL sanitising/validation for storefront links, the
exponential-backoff helper used around app-metadata lookups, and the
classifier that turns background-processing failures into the message
stored on a failed task row.
"""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog
from fastapi.responses import JSONResponse

from review_insight.core.exceptions import (
    AIServiceError,
    AppAnalysisError,
    AppNotFoundError,
    ScraperAuthError,
    ScraperRateLimitError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ErrorType:
    code: str
    message: str
    status_code: int
    suggestions: tuple[str, ...]
    retry: bool


ERROR_TYPES: dict[str, ErrorType] = {
    "INVALID_URL": ErrorType(
        code="INVALID_URL",
        message="Invalid app URL format",
        status_code=400,
        suggestions=(
            "Check that the URL is complete and correct",
            "Include the full domain (https://apps.apple.com/ or https://play.google.com/)",
            "Copy the URL directly from the app store",
        ),
        retry=False,
    ),
    "APP_NOT_FOUND": ErrorType(
        code="APP_NOT_FOUND",
        message="App not found in store",
        status_code=404,
        suggestions=(
            "Verify the app is still available in the store",
            "Try the US version of the app store URL",
            "Check if the app ID or package name is correct",
        ),
        retry=True,
    ),
    "NETWORK_ERROR": ErrorType(
        code="NETWORK_ERROR",
        message="Network connection failed",
        status_code=503,
        suggestions=(
            "Check your internet connection",
            "Try again in a few moments",
            "If the problem persists, contact support",
        ),
        retry=True,
    ),
    "RATE_LIMITED": ErrorType(
        code="RATE_LIMITED",
        message="Too many requests. Please try again later.",
        status_code=429,
        suggestions=(
            "Wait a few minutes before trying again",
            "Consider using deep analysis mode for more comprehensive results",
        ),
        retry=True,
    ),
    "ANALYSIS_TIMEOUT": ErrorType(
        code="ANALYSIS_TIMEOUT",
        message="Analysis took too long to complete",
        status_code=408,
        suggestions=(
            "Try with deep analysis mode disabled",
            "The app might have too many reviews to process",
            "Contact support for assistance with large apps",
        ),
        retry=False,
    ),
    "AI_SERVICE_ERROR": ErrorType(
        code="AI_SERVICE_ERROR",
        message="AI analysis service unavailable",
        status_code=503,
        suggestions=(
            "Try again in a few minutes",
            "The AI service might be temporarily overloaded",
            "Contact support if the problem persists",
        ),
        retry=True,
    ),
    "INVALID_PLATFORM": ErrorType(
        code="INVALID_PLATFORM",
        message="Invalid platform specified",
        status_code=400,
        suggestions=(
            'Use either "ios" or "android" as the platform',
            "Make sure the URL matches the selected platform",
        ),
        retry=False,
    ),
    "QUOTA_EXCEEDED": ErrorType(
        code="QUOTA_EXCEEDED",
        message="Analysis quota exceeded",
        status_code=429,
        suggestions=(
            "Upgrade to a higher plan for more analyses",
            "Wait until your quota resets",
            "Use cached results when available",
        ),
        retry=False,
    ),
}

_GENERIC_SUGGESTIONS: list[str] = [
    "Try again in a few moments",
    "If the problem persists, contact support",
    "Check the app URL and try again",
]

URL_EXAMPLES: dict[str, str] = {
    "ios": "https://apps.apple.com/us/app/instagram/id389801252",
    "android": "https://play.google.com/store/apps/details?id=com.instagram.android",
}

_URL_PATTERNS: dict[str, re.Pattern[str]] = {
    "ios": re.compile(r"^https?://apps\.apple\.com/.*/id\d+"),
    "android": re.compile(r"^https?://play\.google\.com/store/apps/details\?id="),
}

# Query parameters Apple appends to shared links; they never affect the app.
_IOS_TRACKING_PARAMS: frozenset[str] = frozenset({"mt", "uo", "ct", "pt", "ls", "at"})

_NETWORK_MARKERS: tuple[str, ...] = (
    "ETIMEDOUT",
    "ENOTFOUND",
    "ECONNRESET",
    "ECONNREFUSED",
    "network",
    "timeout",
    "timed out",
    "connection",
)

_STORE_NAMES: dict[str, str] = {"ios": "App Store", "android": "Google Play"}
_OS_NAMES: dict[str, str] = {"ios": "iOS", "android": "Android"}


def create_error(error_type: str, custom_message: str | None = None) -> AppAnalysisError:
    """Build an :class:`AppAnalysisError` from the :data:`ERROR_TYPES` catalogue.

    The suggestions list is copied so callers may append platform-specific
    hints without mutating the catalogue.

    Raises:
        KeyError: If *error_type* is not a catalogued code.
    """
    spec = ERROR_TYPES[error_type]
    return AppAnalysisError(
        custom_message or spec.message,
        code=spec.code,
        status_code=spec.status_code,
        suggestions=list(spec.suggestions),
        retry=spec.retry,
    )


def error_payload(error: BaseException) -> tuple[dict[str, Any], int]:
    """Return ``(body, status_code)`` for *error* in the client envelope.

    Anything that is not an :class:`AppAnalysisError` is reported as
    ``INTERNAL_ERROR`` with HTTP 500 and generic suggestions; its message is
    never leaked to the client.
    """
    timestamp = datetime.now(tz=UTC).isoformat()
    if isinstance(error, AppAnalysisError):
        return (
            {
                "error": error.message,
                "code": error.code,
                "suggestions": list(error.suggestions),
                "retry": error.retry,
                "timestamp": timestamp,
            },
            error.status_code,
        )
    return (
        {
            "error": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
            "suggestions": list(_GENERIC_SUGGESTIONS),
            "retry": True,
            "timestamp": timestamp,
        },
        500,
    )


def format_error_response(error: BaseException) -> JSONResponse:
    """Render *error* as a :class:`JSONResponse` using :func:`error_payload`."""
    body, status_code = error_payload(error)
    if status_code >= 500:
        logger.error("error_handler.server_error", code=body["code"], error=str(error))
    else:
        logger.info("error_handler.client_error", code=body["code"], error=str(error))
    return JSONResponse(status_code=status_code, content=body)


def is_network_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(error)
    return any(marker.lower() in message.lower() for marker in _NETWORK_MARKERS)


def handle_platform_error(platform: str, error: BaseException) -> AppAnalysisError:
    """Map a storefront failure to the matching catalogued error.

    Typed scraper exceptions are recognised first; otherwise the exception
    message is inspected for network, 404 and 403 markers.  Anything
    unrecognised becomes ``AI_SERVICE_ERROR``.
    """
    if isinstance(error, AppAnalysisError):
        return error

    store = _STORE_NAMES.get(platform, platform)
    os_name = _OS_NAMES.get(platform, platform)
    message = str(error).lower()

    if is_network_error(error):
        return create_error("NETWORK_ERROR", f"Failed to connect to {store}")
    if isinstance(error, AppNotFoundError) or "404" in message or "not found" in message:
        return create_error("APP_NOT_FOUND", f"{os_name} app not found")
    if (
        isinstance(error, (ScraperRateLimitError, ScraperAuthError))
        or "403" in message
        or "forbidden" in message
    ):
        return create_error("RATE_LIMITED", f"{store} access restricted")
    return create_error("AI_SERVICE_ERROR", f"Failed to analyze {os_name} app")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> T:
    """Await *operation* up to *max_retries* times with exponential backoff.

    The wait after attempt ``n`` (1-based) is
    ``base_delay * 2 ** (n - 1)`` seconds plus up to one second of jitter.
    Client errors (an :class:`AppAnalysisError` with a 4xx status) are
    raised immediately without retrying.

    Raises:
        Exception: The error from the final attempt.
    """
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            if isinstance(exc, AppAnalysisError) and 400 <= exc.status_code < 500:
                raise
            if attempt == max_retries:
                raise
            logger.warning(
                "retry_with_backoff.attempt_failed",
                attempt=attempt,
                max_retries=max_retries,
                error=str(exc),
            )
        delay = base_delay * (2 ** (attempt - 1)) + random.random()  # noqa: S311
        await asyncio.sleep(delay)
    raise RuntimeError("retry_with_backoff called with max_retries < 1")


def sanitize_app_url(url: str) -> str:
    """Trim whitespace, force ``https`` and drop Apple share-link tracking params."""
    cleaned = url.strip()
    if cleaned.startswith("http://"):
        cleaned = "https://" + cleaned[len("http://"):]
    parts = urlsplit(cleaned)
    if parts.netloc == "apps.apple.com" and parts.query:
        kept = [
            (key, value)
            for key, value in parse_qsl(parts.query, keep_blank_values=True)
            if key not in _IOS_TRACKING_PARAMS
        ]
        cleaned = urlunsplit(parts._replace(query=urlencode(kept)))
    return cleaned


def validate_app_url(url: str, platform: str) -> bool:
    pattern = _URL_PATTERNS.get(platform)
    return bool(pattern and pattern.match(url))


def classify_processing_error(error: BaseException) -> tuple[str, str]:
    """Return ``(user_message, code)`` for a failure inside a background analysis.

    The caller stores ``f"{user_message}: {error}"`` on the task row.
    """
    text = str(error)
    lowered = text.lower()
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)) or (
        "timeout" in lowered or "ETIMEDOUT" in text
    ):
        return "Analysis timeout - please try with fewer reviews", "ANALYSIS_TIMEOUT"
    if isinstance(error, MemoryError) or "memory" in lowered or "heap" in lowered:
        return "Too much data - try disabling deep mode", "ANALYSIS_TIMEOUT"
    if isinstance(error, AIServiceError) or "AI" in text or "OpenAI" in text:
        return "AI service error - please try again", "AI_SERVICE_ERROR"
    return "Analysis failed", "ANALYSIS_ERROR"
