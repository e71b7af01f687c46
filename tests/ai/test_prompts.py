"""Tests for prompt construction (ai/prompts.py)."""

from __future__ import annotations

import pytest

from review_insight.ai.prompts import (
    COMPARISON_REVIEWS_PER_APP,
    AppReviews,
    build_comparison_prompt,
    build_single_app_prompt,
)
from tests.factories.reviews import ScrapedReviewFactory


def test_single_app_prompt_counts_rating_bands() -> None:
    reviews = [ScrapedReviewFactory.build(rating=r) for r in (1, 2, 2, 3, 4, 5, 5)]

    prompt = build_single_app_prompt(reviews)

    assert "Critical Issues (1-2⭐): 3 reviews" in prompt
    assert "Experience Issues (3⭐): 1 reviews" in prompt
    assert "Feature Requests (4-5⭐): 3 reviews" in prompt
    assert "Total Reviews: 7" in prompt


def test_single_app_prompt_quotes_at_most_max_reviews() -> None:
    reviews = ScrapedReviewFactory.build_batch(10)

    prompt = build_single_app_prompt(reviews, max_reviews=4)

    assert "Total Reviews: 10" in prompt
    assert "sample of 4 reviews" in prompt
    assert prompt.count("Content: ") == 4


def test_unknown_version_is_not_rendered() -> None:
    known = ScrapedReviewFactory.build(app_version="3.1.4")
    unknown = ScrapedReviewFactory.build(app_version="Unknown")
    prompt = build_single_app_prompt([known, unknown])
    assert prompt.count("Version: ") == 1
    assert "Version: 3.1.4" in prompt


def test_comparison_prompt_names_target_and_competitors() -> None:
    prompt = build_comparison_prompt(
        [
            AppReviews("Notion", ScrapedReviewFactory.build_batch(2)),
            AppReviews("Evernote", ScrapedReviewFactory.build_batch(2)),
            AppReviews("Obsidian", ScrapedReviewFactory.build_batch(2)),
        ]
    )
    assert "YOUR APP: Notion" in prompt
    assert "\nEvernote:\n" in prompt
    assert "\nObsidian:\n" in prompt
    assert '"Notion": 7, "Evernote": 9' in prompt


def test_comparison_prompt_truncates_each_app() -> None:
    many = [ScrapedReviewFactory.build(content=f"review body {i}") for i in range(80)]
    prompt = build_comparison_prompt(
        [AppReviews("A", many), AppReviews("B", ScrapedReviewFactory.build_batch(1))]
    )
    assert prompt.count("review body ") == COMPARISON_REVIEWS_PER_APP


def test_comparison_needs_two_apps() -> None:
    with pytest.raises(ValueError):
        build_comparison_prompt([AppReviews("Solo", [])])
