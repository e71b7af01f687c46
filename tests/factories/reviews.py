"""Factory Boy factories for scraper records."""

from __future__ import annotations

import datetime

import factory

from review_insight.scrapers.types import AppInfo, ScrapedReview


class ScrapedReviewFactory(factory.Factory):
    """Factory for :class:`ScrapedReview` instances.

    Ratings cycle through 1..5 unless overridden.
    """

    class Meta:
        model = ScrapedReview

    id = factory.Sequence(lambda n: f"review-{n}")
    author = factory.Faker("user_name")
    rating = factory.Sequence(lambda n: n % 5 + 1)
    content = factory.Faker("sentence")
    date = factory.LazyFunction(lambda: datetime.datetime.now(tz=datetime.UTC))
    title = ""
    app_version = "1.0.0"
    helpful_count = None
    country = "us"


class AppInfoFactory(factory.Factory):
    """Factory for :class:`AppInfo` instances (iOS by default)."""

    class Meta:
        model = AppInfo

    app_id = factory.Sequence(lambda n: str(389801252 + n))
    name = "Instagram"
    platform = "ios"
    bundle_id = "com.burbn.instagram"
    icon_url = "https://is1-ssl.mzstatic.com/image/instagram.png"
    rating = 4.7
    review_count = 25_000
    developer = "Instagram, Inc."
    category = "Photo & Video"
