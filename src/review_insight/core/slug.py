"""URL slugs for analysed apps and popularity-based cache windows.

A slug is the SEO-friendly public identifier of an app's latest report,
e.g. ``"instagram-ios"`` or ``"slack-android"``.  Slugs are not unique by
themselves; lookups always pick the newest ``is_latest`` task carrying the
slug.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

_MAX_NAME_LENGTH = 50
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

PLATFORMS: frozenset[str] = frozenset({"ios", "android"})


def generate_app_slug(app_name: str, platform: str) -> str:
    """Build the public slug for *app_name* on *platform*.

    Everything after the first colon is dropped, so subtitles such as
    ``"Slack: Team Chat"`` collapse to the brand name.

    Example::

        >>> generate_app_slug("Slack: Team Chat", "android")
        'slack-android'
        >>> generate_app_slug("Instagram Lite", "android")
        'instagram-lite-android'
    """
    normalized = app_name.lower().strip().split(":")[0]
    normalized = _NON_SLUG_CHARS.sub("", normalized)
    normalized = _WHITESPACE.sub("-", normalized).strip("-")
    normalized = normalized[:_MAX_NAME_LENGTH]
    if not normalized:
        normalized = "app"
    return f"{normalized}-{platform}"


def parse_app_slug(slug: str) -> dict[str, str] | None:
    """Split a slug into ``{"app_name", "platform"}`` or return ``None``."""
    parts = slug.split("-")
    if len(parts) < 2:
        return None
    platform = parts[-1]
    if platform not in PLATFORMS:
        return None
    return {"app_name": "-".join(parts[:-1]), "platform": platform}


def get_cache_duration(review_count: int | None) -> int:
    """Return how many days a completed analysis stays fresh.

    Apps with more reviews change faster, so their reports expire sooner:

    ============  ======
    reviews       days
    ============  ======
    >= 100 000    1
    >= 10 000     7
    >= 1 000      14
    otherwise     30
    ============  ======
    """
    count = review_count or 0
    if count >= 100_000:
        return 1
    if count >= 10_000:
        return 7
    if count >= 1_000:
        return 14
    return 30


def is_analysis_recent(
    created_at: datetime,
    review_count: int | None = None,
    custom_hours: float | None = None,
    now: datetime | None = None,
) -> bool:
    """Return True when an analysis created at *created_at* is still cacheable."""
    now = now or datetime.now(tz=UTC)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    age = now - created_at
    if custom_hours is not None:
        return age < timedelta(hours=custom_hours)
    return age < timedelta(days=get_cache_duration(review_count))


def get_time_ago(moment: datetime, now: datetime | None = None) -> str:
    """Human-readable age of *moment*, e.g. ``"3 hours ago"``.

    Anything older than a week is rendered as an ISO date instead.
    """
    now = now or datetime.now(tz=UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    seconds = max(0, int((now - moment).total_seconds()))
    minutes = seconds // 60
    hours = seconds // 3600
    days = seconds // 86_400

    if minutes < 60:
        return f"{minutes} {'minute' if minutes == 1 else 'minutes'} ago"
    if hours < 24:
        return f"{hours} {'hour' if hours == 1 else 'hours'} ago"
    if days < 7:
        return f"{days} {'day' if days == 1 else 'days'} ago"
    return moment.date().isoformat()
