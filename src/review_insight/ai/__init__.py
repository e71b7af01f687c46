"""LLM-backed review analysis via the OpenRouter completion API."""

from __future__ import annotations

from review_insight.ai.analyzer import analyze_single_app, compare_apps
from review_insight.ai.prompts import AppReviews
from review_insight.ai.schemas import AnalysisResult, ComparisonResult

__all__ = [
    "AnalysisResult",
    "AppReviews",
    "ComparisonResult",
    "analyze_single_app",
    "compare_apps",
]
