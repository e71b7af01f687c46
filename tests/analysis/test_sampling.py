"""Unit tests for analysis/sampling.py."""

from __future__ import annotations

from review_insight.analysis.sampling import apply_rating_filter, sample_reviews
from tests.factories.reviews import ScrapedReviewFactory


def _reviews(rating: int, count: int) -> list:
    return ScrapedReviewFactory.build_batch(count, rating=rating)


def test_small_inputs_are_returned_unchanged() -> None:
    reviews = _reviews(5, 10)
    assert sample_reviews(reviews, max_reviews=300) == reviews


def test_bands_are_weighted_towards_negative_reviews() -> None:
    reviews = _reviews(1, 400) + _reviews(3, 400) + _reviews(5, 400)
    sample = sample_reviews(reviews, max_reviews=300)

    assert len(sample) == 300
    assert sum(1 for r in sample if r.rating <= 2) == 150
    assert sum(1 for r in sample if r.rating == 3) == 90
    assert sum(1 for r in sample if r.rating >= 4) == 60


def test_short_band_leaves_budget_unused() -> None:
    reviews = _reviews(5, 400) + _reviews(2, 10)
    sample = sample_reviews(reviews, max_reviews=100)

    # 10 critical + 0 experience + 20 positive; no redistribution.
    assert len(sample) == 30
    assert [r.rating for r in sample[:10]] == [2] * 10


def test_bands_keep_input_order() -> None:
    reviews = _reviews(1, 200) + _reviews(4, 200)
    sample = sample_reviews(reviews, max_reviews=100)
    critical = [r for r in sample if r.rating == 1]
    assert critical == reviews[:50]


def test_rating_filter() -> None:
    reviews = [ScrapedReviewFactory.build(rating=r) for r in (1, 2, 3, 4, 5)]
    assert [r.rating for r in apply_rating_filter(reviews, [1, 5])] == [1, 5]
    assert apply_rating_filter(reviews, None) == reviews
    assert apply_rating_filter(reviews, []) == reviews
