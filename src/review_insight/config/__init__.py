"""Configuration package for ReviewInsight.

Re-exports the most commonly used configuration symbols so that
callers can write::

    from review_insight.config import get_settings, SubscriptionTier

without needing to know which sub-module each symbol lives in.
"""

from __future__ import annotations

from review_insight.config.settings import Settings, get_settings
from review_insight.config.store_defaults import (
    ANDROID_DEFAULT_COUNTRIES,
    IOS_DEFAULT_COUNTRIES,
    MAX_REVIEWS_FOR_AI,
    REVIEW_TARGET_DEFAULT,
    REVIEW_TARGET_MULTI_COUNTRY,
    SUPPORTED_PLATFORMS,
)
from review_insight.config.tiers import TIER_LIMITS, UNLIMITED, SubscriptionTier, TierLimits

__all__ = [
    # settings
    "Settings",
    "get_settings",
    # tiers
    "SubscriptionTier",
    "TierLimits",
    "TIER_LIMITS",
    "UNLIMITED",
    # storefront defaults
    "SUPPORTED_PLATFORMS",
    "IOS_DEFAULT_COUNTRIES",
    "ANDROID_DEFAULT_COUNTRIES",
    "REVIEW_TARGET_DEFAULT",
    "REVIEW_TARGET_MULTI_COUNTRY",
    "MAX_REVIEWS_FOR_AI",
]
