"""App Store review scraper.

Uses two unauthenticated Apple endpoints:

- ``GET https://itunes.apple.com/lookup?id=&country=`` for app metadata.
- The customer-review RSS feed
  (``/{country}/rss/customerreviews/id={id}/sortBy={sort}/page={n}/json``),
  which serves 50 reviews per page and stops at page 10.

Entry points:

- :func:`extract_app_store_id`: numeric id from an App Store URL.
- :meth:`AppStoreScraper.fetch_app`: metadata lookup.
- :meth:`AppStoreScraper.fetch_reviews`: a single RSS page.
- :meth:`AppStoreScraper.fetch_reviews_multi_page`: up to 10 pages from
  one storefront.
- :meth:`AppStoreScraper.fetch_reviews_multi_country`: several storefronts
  merged and deduplicated by review id.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import httpx

from review_insight.config.store_defaults import (
    COUNTRY_DELAY_SECONDS,
    IOS_DEFAULT_COUNTRIES,
    ITUNES_LOOKUP_URL,
    ITUNES_MAX_PAGES,
    ITUNES_REVIEWS_URL,
)
from review_insight.core.exceptions import (
    AppNotFoundError,
    ScraperAuthError,
    ScraperError,
    ScraperRateLimitError,
    parse_retry_after,
)
from review_insight.scrapers.types import AppInfo, ScrapedReview

logger = logging.getLogger(__name__)

PLATFORM = "ios"

_ID_IN_URL = re.compile(r"/id(\d+)")
_DIGITS_ONLY = re.compile(r"^\d+$")

_LOOKUP_TIMEOUT = 15.0
_FEED_TIMEOUT = 30.0

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15",
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}

SORT_MOST_RECENT = "mostRecent"
SORT_MOST_HELPFUL = "mostHelpful"


def extract_app_store_id(value: str) -> str | None:
    """Return the numeric App Store id in *value*, or ``None``.

    Accepts a bare id (``"389801252"``) or any URL containing ``/id<digits>``,
    e.g. ``https://apps.apple.com/us/app/instagram/id389801252``.
    """
    value = value.strip()
    if _DIGITS_ONLY.match(value):
        return value
    match = _ID_IN_URL.search(value)
    return match.group(1) if match else None


def _clean_id(app_id: str) -> str:
    return app_id[2:] if app_id.startswith("id") else app_id


def _label(entry: dict[str, Any], *path: str) -> str | None:
    """Walk ``entry[path[0]][path[1]]...["label"]``; ``None`` if any hop is missing."""
    node: Any = entry
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    if isinstance(node, dict):
        node = node.get("label")
    return node if isinstance(node, str) else None


def _parse_date(raw: str | None) -> datetime:
    if raw:
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            logger.debug("app_store: unparseable review date %r", raw)
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.now(tz=UTC)


def _parse_rating(raw: str | None) -> int:
    try:
        return int(raw or 0)
    except ValueError:
        return 0


def parse_feed_entries(payload: dict[str, Any], country: str | None = None) -> list[ScrapedReview]:
    """Convert an RSS JSON payload into :class:`ScrapedReview` records.

    The first ``entry`` describes the app itself and is skipped.  A feed
    with a single entry encodes it as an object rather than a list.
    """
    entries = (payload.get("feed") or {}).get("entry") or []
    if isinstance(entries, dict):
        entries = [entries]

    reviews: list[ScrapedReview] = []
    for entry in entries[1:]:
        review_id = _label(entry, "id")
        if not review_id:
            continue
        reviews.append(
            ScrapedReview(
                id=review_id,
                author=_label(entry, "author", "name") or "Anonymous",
                rating=_parse_rating(_label(entry, "im:rating")),
                title=_label(entry, "title") or "",
                content=_label(entry, "content") or "",
                date=_parse_date(_label(entry, "updated")),
                app_version=_label(entry, "im:version") or "Unknown",
                helpful_count=None,
                country=country,
            )
        )
    return reviews


class AppStoreScraper:
    """Fetches App Store metadata and reviews over HTTP.

    Args:
        http_client: Optional injected :class:`httpx.AsyncClient`.  When
            supplied it is reused for every request and never closed by the
            scraper; otherwise a client is opened per public call.
    """

    platform: str = PLATFORM

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_app(self, app_id: str, country: str = "us") -> AppInfo | None:
        """Look up app metadata in the *country* storefront.

        Returns:
            The app's metadata, or ``None`` when the storefront reports
            ``resultCount == 0``.

        Raises:
            ScraperRateLimitError: On HTTP 429.
            ScraperAuthError: On HTTP 401/403.
            ScraperError: On other HTTP or connection errors.
        """
        clean_id = _clean_id(app_id)
        async with self._client() as client:
            data = await self._get_json(
                client,
                ITUNES_LOOKUP_URL,
                params={"id": clean_id, "country": country},
                timeout=_LOOKUP_TIMEOUT,
            )

        results = data.get("results") or []
        if not data.get("resultCount") or not results:
            logger.info("app_store: app %s not found in %s storefront", clean_id, country)
            return None

        app = results[0]
        genres = app.get("genres") or []
        return AppInfo(
            app_id=str(app.get("trackId", clean_id)),
            name=app.get("trackName") or "",
            platform=PLATFORM,
            bundle_id=app.get("bundleId") or "",
            icon_url=app.get("artworkUrl512") or app.get("artworkUrl100") or "",
            rating=float(app.get("averageUserRating") or 0.0),
            review_count=int(app.get("userRatingCount") or 0),
            developer=app.get("artistName") or "",
            category=app.get("primaryGenreName") or (genres[0] if genres else None),
        )

    async def fetch_reviews(
        self,
        app_id: str,
        country: str = "us",
        page: int = 1,
        sort: str = SORT_MOST_RECENT,
    ) -> list[ScrapedReview]:
        """Fetch one RSS page (at most 50 reviews).

        Raises:
            ScraperError: On any HTTP or connection failure.
        """
        async with self._client() as client:
            return await self._fetch_page(client, app_id, country, page, sort)

    async def fetch_reviews_multi_page(
        self,
        app_id: str,
        country: str = "us",
        max_pages: int = ITUNES_MAX_PAGES,
        max_reviews: int | None = None,
        page_delay: float = 0.0,
    ) -> list[ScrapedReview]:
        """Fetch consecutive pages from one storefront.

        *max_pages* is clamped to 1..10.  Paging stops at the first empty
        page, at the first failing page (earlier pages are kept), or once
        *max_reviews* have been collected.

        Args:
            page_delay: Seconds to sleep between page requests.
        """
        pages = max(1, min(max_pages, ITUNES_MAX_PAGES))
        collected: list[ScrapedReview] = []

        async with self._client() as client:
            for page in range(1, pages + 1):
                try:
                    batch = await self._fetch_page(client, app_id, country, page, SORT_MOST_RECENT)
                except ScraperError as exc:
                    logger.warning(
                        "app_store: page %d for %s/%s failed, keeping %d reviews: %s",
                        page,
                        app_id,
                        country,
                        len(collected),
                        exc,
                    )
                    break
                if not batch:
                    break
                collected.extend(batch)
                if max_reviews is not None and len(collected) >= max_reviews:
                    break
                if page_delay and page < pages:
                    await asyncio.sleep(page_delay)

        if max_reviews is not None:
            collected = collected[:max_reviews]
        logger.info(
            "app_store: fetched %d reviews for %s from %s", len(collected), app_id, country
        )
        return collected

    async def fetch_reviews_multi_country(
        self,
        app_id: str,
        target: int = 1000,
        countries: tuple[str, ...] | list[str] = IOS_DEFAULT_COUNTRIES,
    ) -> list[ScrapedReview]:
        """Collect up to *target* unique reviews across several storefronts.

        Each review is tagged with the storefront it came from.  A failing
        country is logged and skipped.
        """
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
                    country=country,
                    max_pages=ITUNES_MAX_PAGES,
                    max_reviews=target - len(merged),
                )
            except ScraperError as exc:
                logger.warning("app_store: country %s failed for %s: %s", country, app_id, exc)
                continue
            for review in batch:
                if review.id in seen:
                    continue
                seen.add(review.id)
                review.country = country
                merged.append(review)
                if len(merged) >= target:
                    break

        logger.info(
            "app_store: multi-country fetch for %s collected %d unique reviews",
            app_id,
            len(merged),
        )
        return merged

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=_FEED_TIMEOUT, headers=_HEADERS) as client:
            yield client

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        app_id: str,
        country: str,
        page: int,
        sort: str,
    ) -> list[ScrapedReview]:
        url = ITUNES_REVIEWS_URL.format(
            country=country,
            app_id=_clean_id(app_id),
            sort=sort,
            page=page,
        )
        payload = await self._get_json(client, url, timeout=_FEED_TIMEOUT)
        return parse_feed_entries(payload, country=country)

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None = None,
        timeout: float = _FEED_TIMEOUT,
    ) -> dict[str, Any]:
        """GET *url* and decode JSON, mapping failures to scraper exceptions.

        Raises:
            ScraperRateLimitError: On HTTP 429.
            ScraperAuthError: On HTTP 401/403.
            AppNotFoundError: On HTTP 404.
            ScraperError: On other non-2xx responses, connection errors or
                a body that is not JSON.
        """
        try:
            response = await client.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429:
                retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))
                raise ScraperRateLimitError(
                    "app_store: 429 rate limit",
                    retry_after=retry_after,
                    platform=PLATFORM,
                ) from exc
            if status in (401, 403):
                raise ScraperAuthError(
                    f"app_store: HTTP {status} forbidden", platform=PLATFORM
                ) from exc
            if status == 404:
                raise AppNotFoundError("app_store: 404 not found", platform=PLATFORM) from exc
            raise ScraperError(f"app_store: HTTP {status}", platform=PLATFORM) from exc
        except httpx.RequestError as exc:
            raise ScraperError(
                f"app_store: connection error: {exc}", platform=PLATFORM
            ) from exc
        except ValueError as exc:
            raise ScraperError(
                f"app_store: invalid JSON from {url}", platform=PLATFORM
            ) from exc
