"""Storefront defaults shared by the review scrapers.

Endpoint templates, default country lists for multi-country fetching, and
the fetch targets used by the analysis pipeline.  Consumed by:

- App Store scraper: :data:`ITUNES_LOOKUP_URL`, :data:`ITUNES_REVIEWS_URL`
- Multi-country fetching: :data:`IOS_DEFAULT_COUNTRIES`,
  :data:`ANDROID_DEFAULT_COUNTRIES`
- Analysis pipeline: :data:`REVIEW_TARGET_DEFAULT`,
  :data:`REVIEW_TARGET_MULTI_COUNTRY`, :data:`MAX_REVIEWS_FOR_AI`
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------

SUPPORTED_PLATFORMS: tuple[str, ...] = ("ios", "android")
"""Platform identifiers accepted by every public endpoint."""

# ---------------------------------------------------------------------------
# Apple endpoints
# ---------------------------------------------------------------------------

ITUNES_LOOKUP_URL: str = "https://itunes.apple.com/lookup"
"""iTunes Search API lookup endpoint (app metadata by track ID)."""

ITUNES_REVIEWS_URL: str = (
    "https://itunes.apple.com/{country}/rss/customerreviews/"
    "id={app_id}/sortBy={sort}/page={page}/json"
)
"""Customer-review RSS feed.  Serves 50 reviews per page, pages 1..10."""

ITUNES_MAX_PAGES: int = 10
"""Apple stops serving review pages after page 10."""

ITUNES_PAGE_SIZE: int = 50

LOOKUP_FALLBACK_COUNTRIES: tuple[str, ...] = ("us", "gb", "cn")
"""Storefronts tried in order when an iOS app is missing from the US store."""

# ---------------------------------------------------------------------------
# Multi-country defaults
# ---------------------------------------------------------------------------

IOS_DEFAULT_COUNTRIES: tuple[str, ...] = ("us", "gb", "ca", "au", "de", "fr", "jp")
ANDROID_DEFAULT_COUNTRIES: tuple[str, ...] = ("us", "gb", "ca", "au", "de", "fr", "in", "br")

COUNTRY_DELAY_SECONDS: float = 0.5
"""Pause between storefront countries so consecutive requests stay polite."""

GOOGLE_PLAY_BATCH_SIZE: int = 500
"""Largest ``count`` requested from google-play-scraper in one call."""

GOOGLE_PLAY_MAX_MULTI_PAGE: int = 1000
"""Most reviews one multi-page Google Play fetch returns, across both batches."""

# ---------------------------------------------------------------------------
# Analysis targets
# ---------------------------------------------------------------------------

REVIEW_TARGET_DEFAULT: int = 800
REVIEW_TARGET_MULTI_COUNTRY: int = 1000
MAX_REVIEWS_FOR_AI: int = 300
"""Largest sample sent to the model for a single-app analysis."""

REGIONS: tuple[dict[str, str], ...] = (
    {"code": "us", "name": "United States"},
    {"code": "gb", "name": "United Kingdom"},
    {"code": "ca", "name": "Canada"},
    {"code": "au", "name": "Australia"},
    {"code": "de", "name": "Germany"},
    {"code": "fr", "name": "France"},
    {"code": "jp", "name": "Japan"},
    {"code": "in", "name": "India"},
    {"code": "br", "name": "Brazil"},
)
"""Regions advertised by ``GET /api/browse`` as filter options."""
