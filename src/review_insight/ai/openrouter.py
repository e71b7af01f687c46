"""Low-level OpenRouter HTTP client.

Responsibilities:
- ``chat_completion()``: POST a system + user message pair to the
  OpenAI-compatible ``/chat/completions`` endpoint and return the raw JSON
  response dict.
- ``extract_message_content()``: pull the assistant text out of that dict.

Error handling maps HTTP status codes to typed exceptions:
- HTTP 429 -> :class:`~review_insight.core.exceptions.AIRateLimitError`
- HTTP 401/403 -> :class:`~review_insight.core.exceptions.AIAuthError`
- Other non-2xx -> :class:`~review_insight.core.exceptions.AIServiceError`
- Network errors -> :class:`~review_insight.core.exceptions.AIServiceError`
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from review_insight.config.settings import get_settings
from review_insight.core.exceptions import (
    AIAuthError,
    AIRateLimitError,
    AIServiceError,
    parse_retry_after,
)

logger = structlog.get_logger(__name__)

APP_TITLE = "ReviewInsight"


def completions_url(base_url: str) -> str:
    return base_url.rstrip("/") + "/chat/completions"


async def chat_completion(
    client: httpx.AsyncClient,
    model: str,
    system_prompt: str,
    user_message: str,
    api_key: str,
    temperature: float = 0.7,
    max_tokens: int | None = None,
) -> dict[str, Any]:
    """Call the OpenRouter chat completions endpoint and return the raw response.

    Args:
        client: Shared :class:`httpx.AsyncClient` instance.
        model: OpenRouter model identifier (e.g. ``"anthropic/claude-3.5-sonnet"``).
        system_prompt: System message to prepend to the conversation.
        user_message: The prompt carrying the reviews.
        api_key: OpenRouter API key (``Bearer`` token).
        temperature: Sampling temperature.
        max_tokens: Upper bound on generated tokens; omitted when ``None``.

    Returns:
        Parsed JSON response dict from the OpenRouter API.

    Raises:
        AIRateLimitError: On HTTP 429.
        AIAuthError: On HTTP 401 or 403.
        AIServiceError: On other non-2xx responses or network errors.
    """
    settings = get_settings()
    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        "temperature": temperature,
    }
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    headers: dict[str, str] = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "HTTP-Referer": settings.app_url,
        "X-Title": APP_TITLE,
    }
    return await _post_completion(
        client, completions_url(settings.openrouter_base_url), payload, headers
    )


async def _post_completion(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
) -> dict[str, Any]:
    """Execute the POST request and return the parsed response.

    Raises:
        AIRateLimitError: On HTTP 429.
        AIAuthError: On HTTP 401 or 403.
        AIServiceError: On other HTTP errors, network failures or a
            non-JSON body.
    """
    try:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        code = exc.response.status_code
        if code == 429:
            retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))
            raise AIRateLimitError(
                "openrouter: HTTP 429, rate limited", retry_after=retry_after
            ) from exc
        if code in (401, 403):
            raise AIAuthError(f"openrouter: HTTP {code}, invalid API key") from exc
        raise AIServiceError(
            f"openrouter: HTTP {code}: {exc.response.text[:200]}"
        ) from exc
    except httpx.RequestError as exc:
        raise AIServiceError(f"openrouter: network error: {exc}") from exc

    try:
        return response.json()  # type: ignore[no-any-return]
    except ValueError as exc:
        raise AIServiceError(f"openrouter: JSON parse error: {exc}") from exc


def extract_message_content(response: dict[str, Any]) -> str:
    """Return the assistant message text of the first choice.

    An empty string is returned when the response carries no choices or no
    content.
    """
    choices = response.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content")
    return content if isinstance(content, str) else ""
