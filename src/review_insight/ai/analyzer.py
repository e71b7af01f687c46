"""Run review analyses through the completion API and validate the reply.

:func:`analyze_single_app` and :func:`compare_apps` are the only entry
points used by the analysis pipeline.  Both send one prompt, strip any
markdown fences around the reply, parse it as JSON and validate it with the
matching pydantic model.  Output that cannot be parsed raises
:class:`~review_insight.core.exceptions.AIResponseFormatError`; the task is
then marked failed rather than stored with an empty report.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from review_insight.ai.openrouter import chat_completion, extract_message_content
from review_insight.ai.prompts import (
    COMPARISON_SYSTEM_PROMPT,
    SINGLE_APP_SYSTEM_PROMPT,
    AppReviews,
    build_comparison_prompt,
    build_single_app_prompt,
)
from review_insight.ai.schemas import AnalysisResult, ComparisonResult
from review_insight.config.settings import get_settings
from review_insight.core.exceptions import AIAuthError, AIResponseFormatError
from review_insight.scrapers.types import ScrapedReview

logger = structlog.get_logger(__name__)

SINGLE_APP_TEMPERATURE = 0.7
SINGLE_APP_MAX_TOKENS = 12000
COMPARISON_TEMPERATURE = 0.7
COMPARISON_MAX_TOKENS = 6000

_RAW_SNIPPET_LENGTH = 500
_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)

ModelT = TypeVar("ModelT", bound=BaseModel)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if any."""
    stripped = text.strip()
    match = _FENCE.match(stripped)
    return match.group(1).strip() if match else stripped


def parse_model_output(content: str, model: type[ModelT]) -> ModelT:
    """Parse *content* as JSON and validate it against *model*.

    When the reply has prose around the JSON object, the outermost
    ``{...}`` span is tried as a second attempt.

    Raises:
        AIResponseFormatError: If no JSON object can be parsed or it fails
            validation.
    """
    text = strip_code_fences(content)
    if not text:
        raise AIResponseFormatError("model returned an empty response", raw_content="")

    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise AIResponseFormatError(
                "model response is not JSON", raw_content=text[:_RAW_SNIPPET_LENGTH]
            ) from None
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise AIResponseFormatError(
                f"model response is not valid JSON: {exc}",
                raw_content=text[:_RAW_SNIPPET_LENGTH],
            ) from exc

    if not isinstance(data, dict):
        raise AIResponseFormatError(
            "model response is not a JSON object", raw_content=text[:_RAW_SNIPPET_LENGTH]
        )
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise AIResponseFormatError(
            f"model response failed validation: {exc.error_count()} errors",
            raw_content=text[:_RAW_SNIPPET_LENGTH],
        ) from exc


@asynccontextmanager
async def _client(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    timeout = httpx.Timeout(get_settings().ai_timeout_seconds, connect=10.0)
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def _api_key() -> str:
    api_key = get_settings().openrouter_api_key
    if not api_key:
        raise AIAuthError("OPENROUTER_API_KEY is not configured")
    return api_key


async def analyze_single_app(
    reviews: Sequence[ScrapedReview],
    model: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> AnalysisResult:
    """Ask the model for a categorised analysis of one app's reviews.

    Raises:
        AIServiceError: Or one of its subclasses, on any failure.
    """
    model = model or get_settings().default_model_pro
    prompt = build_single_app_prompt(reviews)
    log = logger.bind(model=model, reviews=len(reviews))
    log.info("ai.analyze_single_app.start", prompt_chars=len(prompt))

    async with _client(client) as http:
        response = await chat_completion(
            http,
            model=model,
            system_prompt=SINGLE_APP_SYSTEM_PROMPT,
            user_message=prompt,
            api_key=_api_key(),
            temperature=SINGLE_APP_TEMPERATURE,
            max_tokens=SINGLE_APP_MAX_TOKENS,
        )

    result = parse_model_output(extract_message_content(response), AnalysisResult)
    log.info(
        "ai.analyze_single_app.done",
        critical=len(result.critical_issues),
        experience=len(result.experience_issues),
        features=len(result.feature_requests),
    )
    return result


async def compare_apps(
    apps_reviews: Sequence[AppReviews],
    model: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> ComparisonResult:
    """Ask the model for a SWOT comparison; the first app is the user's own."""
    model = model or get_settings().default_model_pro
    prompt = build_comparison_prompt(apps_reviews)
    logger.info("ai.compare_apps.start", model=model, apps=len(apps_reviews))

    async with _client(client) as http:
        response = await chat_completion(
            http,
            model=model,
            system_prompt=COMPARISON_SYSTEM_PROMPT,
            user_message=prompt,
            api_key=_api_key(),
            temperature=COMPARISON_TEMPERATURE,
            max_tokens=COMPARISON_MAX_TOKENS,
        )

    return parse_model_output(extract_message_content(response), ComparisonResult)
