"""Application-wide exception hierarchy for ReviewInsight.

All custom exceptions subclass ``ReviewInsightError``, enabling
consistent error handling and structured logging across the application.

Hierarchy::

    ReviewInsightError
    ├── ScraperError                (platform)
    │   ├── ScraperRateLimitError   (retry_after: float)
    │   ├── ScraperAuthError
    │   └── AppNotFoundError
    ├── AIServiceError
    │   ├── AIRateLimitError        (retry_after: float)
    │   ├── AIAuthError
    │   └── AIResponseFormatError
    ├── AppAnalysisError            (code, status_code, suggestions, retry)
    └── BillingError

``AppAnalysisError`` is the only member that is rendered directly to HTTP
clients; see :mod:`review_insight.core.error_handler` for the catalogue of
error codes and the response envelope.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

DEFAULT_RETRY_AFTER: float = 60.0


class ReviewInsightError(Exception):
    """Base class for all ReviewInsight exceptions."""


# ---------------------------------------------------------------------------
# Storefront scraping
# ---------------------------------------------------------------------------


class ScraperError(ReviewInsightError):
    """Raised when fetching reviews or metadata from a storefront fails.

    Args:
        message: Human-readable description of the failure.
        platform: ``"ios"`` or ``"android"``.
    """

    def __init__(self, message: str, platform: str | None = None) -> None:
        super().__init__(message)
        self.platform = platform


class ScraperRateLimitError(ScraperError):
    """Raised when a storefront answers HTTP 429.

    Args:
        message: Human-readable description of the rate limit.
        retry_after: Seconds to wait before retrying. Defaults to 60.
        platform: Platform identifier.
    """

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        platform: str | None = None,
    ) -> None:
        super().__init__(message, platform=platform)
        self.retry_after = retry_after


class ScraperAuthError(ScraperError):
    """Raised when a storefront refuses the request (HTTP 401/403)."""


class AppNotFoundError(ScraperError):
    """Raised when the storefront has no app with the requested identifier."""


# ---------------------------------------------------------------------------
# LLM analysis
# ---------------------------------------------------------------------------


class AIServiceError(ReviewInsightError):
    """Raised when the completion API fails or cannot be reached."""


class AIRateLimitError(AIServiceError):
    """Raised when the completion API answers HTTP 429.

    Args:
        message: Human-readable description of the rate limit.
        retry_after: Seconds to wait before retrying. Defaults to 60.
    """

    def __init__(self, message: str, retry_after: float = 60.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AIAuthError(AIServiceError):
    """Raised when the completion API rejects the configured key (HTTP 401/403)."""


class AIResponseFormatError(AIServiceError):
    """Raised when the model's reply is not the JSON document that was requested.

    Args:
        message: Description of the parse or validation failure.
        raw_content: The first part of the model output, kept for debugging.
    """

    def __init__(self, message: str, raw_content: str | None = None) -> None:
        super().__init__(message)
        self.raw_content = raw_content


# ---------------------------------------------------------------------------
# Request-level analysis errors
# ---------------------------------------------------------------------------


class AppAnalysisError(ReviewInsightError):
    """User-facing error raised while validating or starting an analysis.

    Args:
        message: Human-readable message shown to the client.
        code: Stable machine-readable code (e.g. ``"INVALID_URL"``).
        status_code: HTTP status the error is rendered with.
        suggestions: Hints the client can show to help the user recover.
        retry: Whether retrying the same request may succeed.
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        suggestions: list[str] | None = None,
        retry: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.suggestions: list[str] = list(suggestions or [])
        self.retry = retry

    @property
    def user_friendly(self) -> bool:
        """True for client errors whose message is safe to show verbatim."""
        return self.status_code < 500


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class BillingError(ReviewInsightError):
    """Raised when a Stripe operation or webhook verification fails."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_retry_after(value: str | None, default: float = DEFAULT_RETRY_AFTER) -> float:
    """Seconds to wait according to a ``Retry-After`` header value.

    Accepts both the delay-seconds and the HTTP-date forms.  Unparseable
    values yield *default*; a date already in the past yields ``0.0``.
    """
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        try:
            moment = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return default
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return max((moment - datetime.now(tz=UTC)).total_seconds(), 0.0)
    if not math.isfinite(seconds):
        return default
    return max(seconds, 0.0)
