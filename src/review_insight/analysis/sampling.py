"""Review selection before the LLM call."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from review_insight.config.store_defaults import MAX_REVIEWS_FOR_AI
from review_insight.scrapers.types import ScrapedReview

CRITICAL_SHARE = 0.5
EXPERIENCE_SHARE = 0.3


def sample_reviews(
    reviews: Sequence[ScrapedReview],
    max_reviews: int = MAX_REVIEWS_FOR_AI,
) -> list[ScrapedReview]:
    """Pick at most *max_reviews* reviews weighted towards negative feedback.

    Half of the budget goes to 1-2 star reviews, 30% to 3 star reviews and
    the remainder to 4-5 star reviews, each taken in input order.  A band
    with fewer reviews than its share leaves the budget unused; the sample
    can therefore be smaller than *max_reviews*.

    Inputs no larger than *max_reviews* are returned unchanged.
    """
    if len(reviews) <= max_reviews:
        return list(reviews)

    critical_count = int(max_reviews * CRITICAL_SHARE)
    experience_count = int(max_reviews * EXPERIENCE_SHARE)
    positive_count = max_reviews - critical_count - experience_count

    critical = [r for r in reviews if r.rating <= 2][:critical_count]
    experience = [r for r in reviews if r.rating == 3][:experience_count]
    positive = [r for r in reviews if r.rating >= 4][:positive_count]
    return critical + experience + positive


def apply_rating_filter(
    reviews: Sequence[ScrapedReview],
    ratings: Iterable[int] | None,
) -> list[ScrapedReview]:
    """Keep only reviews whose star rating is in *ratings*.

    ``None`` or an empty collection disables the filter.
    """
    if not ratings:
        return list(reviews)
    allowed = {int(r) for r in ratings}
    return [review for review in reviews if review.rating in allowed]
