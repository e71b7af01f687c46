"""Storefront scrapers for the App Store and Google Play."""

from __future__ import annotations

from review_insight.scrapers.app_store import AppStoreScraper, extract_app_store_id
from review_insight.scrapers.google_play import GooglePlayScraper, extract_google_play_id
from review_insight.scrapers.types import AppInfo, ScrapedReview

__all__ = [
    "AppInfo",
    "AppStoreScraper",
    "GooglePlayScraper",
    "ScrapedReview",
    "extract_app_store_id",
    "extract_google_play_id",
]
