"""Google Play review scraper built on ``google-play-scraper``.

The library is synchronous (it drives ``urllib`` under the hood), so every
call is pushed to a worker thread with :func:`asyncio.to_thread` to keep
the event loop free.

Entry points:

- :func:`extract_google_play_id`: package name from a Play Store URL.
- :meth:`GooglePlayScraper.fetch_app`: metadata lookup.
- :meth:`GooglePlayScraper.fetch_reviews`: up to *num* reviews in one sort
  order, paged with continuation tokens.
- :meth:`GooglePlayScraper.fetch_reviews_multi_page`: newest reviews plus,
  in deep mode, the most relevant ones.
- :meth:`GooglePlayScraper.fetch_reviews_multi_country`: several
  storefronts merged and deduplicated by review id.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import UTC, datetime
from typing import Any

from google_play_scraper import Sort
from google_play_scraper import app as gp_app
from google_play_scraper import reviews as gp_reviews
from google_play_scraper.exceptions import NotFoundError

from review_insight.config.store_defaults import (
    ANDROID_DEFAULT_COUNTRIES,
    COUNTRY_DELAY_SECONDS,
    GOOGLE_PLAY_BATCH_SIZE,
    GOOGLE_PLAY_MAX_MULTI_PAGE,
)
from review_insight.core.exceptions import AppNotFoundError, ScraperError
from review_insight.scrapers.types import AppInfo, ScrapedReview

logger = logging.getLogger(__name__)

PLATFORM = "android"

_PACKAGE_NAME = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$", re.IGNORECASE)
_ID_IN_URL = re.compile(r"[?&]id=([a-z][a-z0-9_]*(?:\.[a-z][a-z0-9_]*)+)", re.IGNORECASE)


def extract_google_play_id(value: str) -> str | None:
    """Return the package name in *value*, or ``None``.

    Accepts a bare package name (``"com.instagram.android"``) or a Play
    Store URL carrying an ``id=`` query parameter.
    """
    value = value.strip()
    if _PACKAGE_NAME.match(value):
        return value
    match = _ID_IN_URL.search(value)
    return match.group(1) if match else None


def _to_review(raw: dict[str, Any], country: str | None) -> ScrapedReview:
    at = raw.get("at")
    if isinstance(at, datetime):
        date = at if at.tzinfo else at.replace(tzinfo=UTC)
    else:
        date = datetime.now(tz=UTC)
    return ScrapedReview(
        id=str(raw.get("reviewId")),
        author=raw.get("userName") or "Anonymous",
        rating=int(raw.get("score") or 0),
        title="",
        content=raw.get("content") or "",
        date=date,
        app_version=raw.get("reviewCreatedVersion") or raw.get("appVersion") or "Unknown",
        helpful_count=int(raw.get("thumbsUpCount") or 0),
        country=country,
    )


class GooglePlayScraper:
    """Fetches Google Play metadata and reviews."""

    platform: str = PLATFORM

    async def fetch_app(
        self,
        app_id: str,
        country: str = "us",
        lang: str = "en",
    ) -> AppInfo | None:
        """Look up app metadata, falling back to the US/English storefront.

        Returns:
            The app's metadata, or ``None`` when Google Play does not know
            the package in the requested or the fallback locale.

        Raises:
            ScraperError: On network or HTTP failures in the fallback locale.
        """
        try:
            return await self._fetch_app_once(app_id, country, lang)
        except (AppNotFoundError, ScraperError) as exc:
            if country == "us" and lang == "en":
                if isinstance(exc, AppNotFoundError):
                    return None
                raise
            logger.warning(
                "google_play: lookup of %s in %s/%s failed (%s), retrying in us/en",
                app_id,
                country,
                lang,
                exc,
            )

        try:
            return await self._fetch_app_once(app_id, "us", "en")
        except AppNotFoundError:
            logger.info("google_play: app %s not found", app_id)
            return None

    async def fetch_reviews(
        self,
        app_id: str,
        num: int = 100,
        sort: Sort = Sort.NEWEST,
        country: str = "us",
        lang: str = "en",
    ) -> list[ScrapedReview]:
        """Fetch up to *num* reviews in *sort* order.

        Requests are issued in batches of at most 500 and follow the
        library's continuation token until *num* is reached or the feed
        runs dry.

        Raises:
            AppNotFoundError: When the package does not exist.
            ScraperError: On any other library failure.
        """
        collected: list[ScrapedReview] = []
        token = None
        while len(collected) < num:
            batch_size = min(GOOGLE_PLAY_BATCH_SIZE, num - len(collected))
            try:
                result, token = await asyncio.to_thread(
                    gp_reviews,
                    app_id,
                    lang=lang,
                    country=country,
                    sort=sort,
                    count=batch_size,
                    continuation_token=token,
                )
            except NotFoundError as exc:
                raise AppNotFoundError(
                    f"google_play: {app_id} not found", platform=PLATFORM
                ) from exc
            except Exception as exc:
                raise ScraperError(
                    f"google_play: failed to fetch reviews for {app_id}: {exc}",
                    platform=PLATFORM,
                ) from exc

            if not result:
                break
            collected.extend(_to_review(raw, country) for raw in result)
            if token is None:
                break
        return collected[:num]

    async def fetch_reviews_multi_page(
        self,
        app_id: str,
        max_reviews: int = 1000,
        deep_mode: bool = False,
        country: str = "us",
        lang: str = "en",
    ) -> list[ScrapedReview]:
        """Fetch newest reviews and, in deep mode, top up with relevant ones.

        At most :data:`GOOGLE_PLAY_MAX_MULTI_PAGE` reviews are returned and
        each batch asks for at most :data:`GOOGLE_PLAY_BATCH_SIZE`.  A
        failure of the deep-mode batch is logged and the newest reviews are
        returned on their own.
        """
        target = min(max_reviews, GOOGLE_PLAY_MAX_MULTI_PAGE)
        recent = await self.fetch_reviews(
            app_id,
            num=min(GOOGLE_PLAY_BATCH_SIZE, target),
            sort=Sort.NEWEST,
            country=country,
            lang=lang,
        )
        if not deep_mode or len(recent) >= target:
            return recent[:target]

        try:
            relevant = await self.fetch_reviews(
                app_id,
                num=min(GOOGLE_PLAY_BATCH_SIZE, target - len(recent)),
                sort=Sort.MOST_RELEVANT,
                country=country,
                lang=lang,
            )
        except ScraperError as exc:
            logger.warning(
                "google_play: deep-mode batch failed for %s, using %d recent reviews: %s",
                app_id,
                len(recent),
                exc,
            )
            return recent

        merged = list(recent)
        seen = {review.id for review in recent}
        for review in relevant:
            if review.id not in seen:
                seen.add(review.id)
                merged.append(review)
        logger.info("google_play: %d unique reviews for %s (deep mode)", len(merged), app_id)
        return merged[:target]

    async def fetch_reviews_multi_country(
        self,
        app_id: str,
        target: int = 1000,
        countries: tuple[str, ...] | list[str] = ANDROID_DEFAULT_COUNTRIES,
    ) -> list[ScrapedReview]:
        """Collect up to *target* unique reviews across several storefronts."""
        merged: list[ScrapedReview] = []
        seen: set[str] = set()

        for index, country in enumerate(countries):
            if len(merged) >= target:
                break
            if index > 0:
                await asyncio.sleep(COUNTRY_DELAY_SECONDS)
            try:
                batch = await self.fetch_reviews_multi_page(
                    app_id,
                    max_reviews=min(GOOGLE_PLAY_BATCH_SIZE, target - len(merged)),
                    country=country,
                )
            except ScraperError as exc:
                logger.warning("google_play: country %s failed for %s: %s", country, app_id, exc)
                continue
            fresh = 0
            for review in batch:
                if review.id in seen:
                    continue
                seen.add(review.id)
                merged.append(review)
                fresh += 1
            logger.debug(
                "google_play: %s yielded %d new reviews (total %d)", country, fresh, len(merged)
            )

        return merged[:target]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch_app_once(self, app_id: str, country: str, lang: str) -> AppInfo:
        try:
            data = await asyncio.to_thread(gp_app, app_id, lang=lang, country=country)
        except NotFoundError as exc:
            raise AppNotFoundError(
                f"google_play: {app_id} not found", platform=PLATFORM
            ) from exc
        except Exception as exc:
            raise ScraperError(
                f"google_play: lookup failed for {app_id}: {exc}", platform=PLATFORM
            ) from exc

        return AppInfo(
            app_id=data.get("appId") or app_id,
            name=data.get("title") or "",
            platform=PLATFORM,
            bundle_id=data.get("appId") or app_id,
            icon_url=data.get("icon") or "",
            rating=float(data.get("score") or 0.0),
            review_count=int(data.get("ratings") or data.get("reviews") or 0),
            developer=data.get("developer") or "",
            category=data.get("genre") or data.get("genreId"),
        )
