"""``GET /api/data-sources``: where review data comes from.

The response is static apart from the feature flags, which reflect the
running configuration.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from review_insight.config.settings import get_settings
from review_insight.config.store_defaults import (
    ANDROID_DEFAULT_COUNTRIES,
    IOS_DEFAULT_COUNTRIES,
    ITUNES_MAX_PAGES,
)

router = APIRouter()

SOURCE_DETAILS: list[dict[str, Any]] = [
    {
        "name": "App Store RSS Feeds",
        "platform": "iOS",
        "quality": 0.8,
        "cost": "Free",
        "description": "Official Apple customer-review RSS feeds",
        "limitations": f"{ITUNES_MAX_PAGES} pages of 50 reviews per storefront",
    },
    {
        "name": "iTunes Lookup API",
        "platform": "iOS",
        "quality": 0.9,
        "cost": "Free",
        "description": "App metadata: name, icon, rating and genre",
        "limitations": "Metadata only",
    },
    {
        "name": "Google Play Scraper",
        "platform": "Android",
        "quality": 0.7,
        "cost": "Free",
        "description": "Open-source scraper for Google Play metadata and reviews",
        "limitations": "May be throttled or blocked in some regions",
    },
]


@router.get("/data-sources")
async def get_data_sources() -> dict[str, Any]:
    """Describe the review sources and the active feature flags."""
    settings = get_settings()
    return {
        "dataSources": {
            "ios": {
                "sources": ["App Store RSS Feeds", "iTunes Lookup API"],
                "defaultCountries": list(IOS_DEFAULT_COUNTRIES),
            },
            "android": {
                "sources": ["Google Play Scraper"],
                "defaultCountries": list(ANDROID_DEFAULT_COUNTRIES),
            },
        },
        "features": {
            "incrementalCollection": True,
            "deduplication": True,
            "intelligentCaching": True,
            "rateLimiting": True,
            "multiCountry": True,
            "aiAnalysis": bool(settings.openrouter_api_key),
            "subscriptions": settings.enable_subscriptions,
        },
        "benefits": [
            "Free public data sources",
            "Up to 2000 reviews per analysis",
            "Reviews stored and reused across analyses",
            "Cache duration tuned to app popularity",
        ],
        "sourceDetails": SOURCE_DETAILS,
    }
