"""Tests for the OpenRouter client (ai/openrouter.py).

Covers:
    - completions_url: trailing slash handling.
    - chat_completion: request shape (auth, attribution headers, payload).
    - HTTP status mapping to AIRateLimitError / AIAuthError / AIServiceError.
    - extract_message_content on well-formed and empty responses.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from review_insight.ai.openrouter import (
    APP_TITLE,
    chat_completion,
    completions_url,
    extract_message_content,
)
from review_insight.config.settings import get_settings
from review_insight.core.exceptions import AIAuthError, AIRateLimitError, AIServiceError

URL = completions_url(get_settings().openrouter_base_url)


def _ok(content: str = "{}") -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


async def _call(**overrides):
    kwargs = {
        "model": "anthropic/claude-3.5-sonnet",
        "system_prompt": "system",
        "user_message": "reviews",
        "api_key": "sk-or-test-key",
    }
    kwargs.update(overrides)
    async with httpx.AsyncClient() as client:
        return await chat_completion(client, **kwargs)


def test_completions_url_strips_trailing_slash() -> None:
    assert completions_url("https://openrouter.ai/api/v1/") == (
        "https://openrouter.ai/api/v1/chat/completions"
    )


@respx.mock
async def test_request_shape() -> None:
    route = respx.post(URL).mock(return_value=httpx.Response(200, json=_ok()))

    response = await _call(temperature=0.2, max_tokens=500)

    assert response == _ok()
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer sk-or-test-key"
    assert request.headers["X-Title"] == APP_TITLE
    assert request.headers["HTTP-Referer"] == get_settings().app_url
    body = json.loads(request.content)
    assert body["model"] == "anthropic/claude-3.5-sonnet"
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 500
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


@respx.mock
async def test_max_tokens_omitted_by_default() -> None:
    route = respx.post(URL).mock(return_value=httpx.Response(200, json=_ok()))
    await _call()
    assert "max_tokens" not in json.loads(route.calls.last.request.content)


@respx.mock
async def test_rate_limit_carries_retry_after() -> None:
    respx.post(URL).mock(return_value=httpx.Response(429, headers={"Retry-After": "12"}))
    with pytest.raises(AIRateLimitError) as exc_info:
        await _call()
    assert exc_info.value.retry_after == 12.0


@respx.mock
async def test_rate_limit_with_unparseable_retry_after_uses_default() -> None:
    respx.post(URL).mock(return_value=httpx.Response(429, headers={"Retry-After": "soon"}))
    with pytest.raises(AIRateLimitError) as exc_info:
        await _call()
    assert exc_info.value.retry_after == 60.0


@pytest.mark.parametrize("status_code", [401, 403])
@respx.mock
async def test_auth_errors(status_code: int) -> None:
    respx.post(URL).mock(return_value=httpx.Response(status_code))
    with pytest.raises(AIAuthError):
        await _call()


@respx.mock
async def test_server_error() -> None:
    respx.post(URL).mock(return_value=httpx.Response(502, text="bad gateway"))
    with pytest.raises(AIServiceError, match="HTTP 502"):
        await _call()


@respx.mock
async def test_network_error() -> None:
    respx.post(URL).mock(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(AIServiceError, match="network error"):
        await _call()


@respx.mock
async def test_non_json_body() -> None:
    respx.post(URL).mock(return_value=httpx.Response(200, text="<html>"))
    with pytest.raises(AIServiceError, match="JSON parse error"):
        await _call()


class TestExtractMessageContent:
    def test_returns_first_choice(self) -> None:
        assert extract_message_content(_ok("hello")) == "hello"

    @pytest.mark.parametrize(
        "response",
        [{}, {"choices": []}, {"choices": [{}]}, {"choices": [{"message": {"content": None}}]}],
    )
    def test_missing_content(self, response: dict) -> None:
        assert extract_message_content(response) == ""
