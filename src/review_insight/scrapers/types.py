"""Platform-neutral records produced by the storefront scrapers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class ScrapedReview:
    """One review as fetched from a storefront, before persistence.

    ``id`` is the storefront's review identifier.  ``title`` is always empty
    for Google Play, which has no review titles.
    """

    id: str
    author: str
    rating: int
    content: str
    date: datetime
    title: str = ""
    app_version: str = "Unknown"
    helpful_count: int | None = None
    country: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation used inside stored reports."""
        return {
            "id": self.id,
            "author": self.author,
            "rating": self.rating,
            "title": self.title,
            "content": self.content,
            "date": self.date.isoformat(),
            "appVersion": self.app_version,
        }


@dataclass
class AppInfo:
    """Storefront metadata for one app."""

    app_id: str
    name: str
    platform: str
    bundle_id: str = ""
    icon_url: str = ""
    rating: float = 0.0
    review_count: int = 0
    developer: str = ""
    category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.app_id,
            "name": self.name,
            "bundleId": self.bundle_id,
            "iconUrl": self.icon_url,
            "rating": self.rating,
            "reviewCount": self.review_count,
            "developer": self.developer,
            "category": self.category,
            "platform": self.platform,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], platform: str | None = None) -> AppInfo:
        """Inverse of :meth:`to_dict`, tolerant of missing keys."""
        return cls(
            app_id=str(data.get("id") or ""),
            name=data.get("name") or "",
            platform=platform or data.get("platform") or "",
            bundle_id=data.get("bundleId") or "",
            icon_url=data.get("iconUrl") or "",
            rating=float(data.get("rating") or 0.0),
            review_count=int(data.get("reviewCount") or 0),
            developer=data.get("developer") or "",
            category=data.get("category"),
        )
