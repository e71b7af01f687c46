"""Pydantic models validating the JSON documents returned by the LLM.

The model output is loosely structured, so validation is lenient: missing
lists default to empty, unknown severities collapse to ``"medium"`` and
sentiment shares are clamped to ``0..100``.  Serialise with
``model_dump(by_alias=True)`` to obtain the camelCase shape stored in
``analysis_tasks.result`` and returned to clients.
"""

from __future__ import annotations

import math
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Severity = Literal["high", "medium", "low"]

_SEVERITIES = ("high", "medium", "low")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _as_float(value: Any) -> Optional[float]:
    """*value* as a finite float, or ``None``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> int:
    number = _as_float(value)
    return max(int(number), 0) if number is not None else 0


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    return []


class IssueCategory(_CamelModel):
    """One experience issue or feature request category."""

    title: str = ""
    frequency: int = 0
    examples: list[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("frequency", mode="before")
    @classmethod
    def _coerce_frequency(cls, value: Any) -> int:
        return _as_int(value)

    @field_validator("examples", mode="before")
    @classmethod
    def _coerce_examples(cls, value: Any) -> list[str]:
        return _as_str_list(value)


class CriticalIssue(IssueCategory):
    """A critical issue category with severity and optional affected version."""

    severity: Severity = "medium"
    affected_version: Optional[str] = Field(default=None, alias="affectedVersion")

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> str:
        normalised = str(value or "").strip().lower()
        return normalised if normalised in _SEVERITIES else "medium"

    @field_validator("affected_version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)


class Sentiment(_CamelModel):
    """Percentage split of positive, negative and neutral feedback."""

    positive: float = 0.0
    negative: float = 0.0
    neutral: float = 0.0

    @field_validator("positive", "negative", "neutral", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        number = _as_float(value)
        if number is None:
            return 0.0
        return min(max(number, 0.0), 100.0)


class AnalysisResult(_CamelModel):
    """Structured insights for a single app."""

    critical_issues: list[CriticalIssue] = Field(default_factory=list, alias="criticalIssues")
    experience_issues: list[IssueCategory] = Field(
        default_factory=list, alias="experienceIssues"
    )
    feature_requests: list[IssueCategory] = Field(default_factory=list, alias="featureRequests")
    sentiment: Sentiment = Field(default_factory=Sentiment)
    insights: str = ""
    priority_actions: list[str] = Field(default_factory=list, alias="priorityActions")

    @field_validator("critical_issues", "experience_issues", "feature_requests", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("sentiment", mode="before")
    @classmethod
    def _default_sentiment(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @field_validator("insights", mode="before")
    @classmethod
    def _coerce_insights(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("priority_actions", mode="before")
    @classmethod
    def _coerce_actions(cls, value: Any) -> list[str]:
        return _as_str_list(value)


class ComparisonResult(_CamelModel):
    """SWOT-style competitive analysis across several apps."""

    executive_summary: str = Field(default="", alias="executiveSummary")
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    opportunities: list[str] = Field(default_factory=list)
    threats: list[str] = Field(default_factory=list)
    comparison_matrix: dict[str, dict[str, float]] = Field(
        default_factory=dict, alias="comparisonMatrix"
    )
    actionable_insights: list[str] = Field(default_factory=list, alias="actionableInsights")

    @field_validator(
        "strengths", "weaknesses", "opportunities", "threats", "actionable_insights",
        mode="before",
    )
    @classmethod
    def _coerce_lists(cls, value: Any) -> list[str]:
        return _as_str_list(value)

    @field_validator("executive_summary", mode="before")
    @classmethod
    def _coerce_summary(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("comparison_matrix", mode="before")
    @classmethod
    def _coerce_matrix(cls, value: Any) -> dict[str, dict[str, float]]:
        if not isinstance(value, dict):
            return {}
        matrix: dict[str, dict[str, float]] = {}
        for dimension, scores in value.items():
            if not isinstance(scores, dict):
                continue
            row: dict[str, float] = {}
            for app_name, score in scores.items():
                number = _as_float(score)
                if number is not None:
                    row[str(app_name)] = number
            matrix[str(dimension)] = row
        return matrix
