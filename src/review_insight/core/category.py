"""Unified app categories across the App Store and Google Play.

Apple reports ``primaryGenreName`` values such as ``"Social Networking"``;
Google Play reports upper-case genre IDs such as ``"SOCIAL"``.  Both are
folded into one vocabulary so the browse endpoint can filter across
platforms.
"""

from __future__ import annotations

UNCATEGORIZED = "Uncategorized"

CATEGORY_MAP: dict[str, str] = {
    # App Store (primaryGenreName)
    "Social Networking": "Social Media",
    "Photo & Video": "Photo & Video",
    "Games": "Games",
    "Productivity": "Productivity",
    "Utilities": "Utilities",
    "Shopping": "Shopping",
    "Entertainment": "Entertainment",
    "News": "News",
    "Music": "Music",
    "Education": "Education",
    "Health & Fitness": "Health & Fitness",
    "Travel": "Travel",
    "Food & Drink": "Food & Drink",
    "Finance": "Finance",
    "Business": "Business",
    "Lifestyle": "Lifestyle",
    "Sports": "Sports",
    "Weather": "Weather",
    "Reference": "Reference",
    "Medical": "Medical",
    "Book": "Books",
    "Navigation": "Navigation",
    "Catalogs": "Catalogs",
    # Google Play (genreId)
    "SOCIAL": "Social Media",
    "PHOTOGRAPHY": "Photo & Video",
    "GAME": "Games",
    "PRODUCTIVITY": "Productivity",
    "TOOLS": "Utilities",
    "SHOPPING": "Shopping",
    "ENTERTAINMENT": "Entertainment",
    "NEWS_AND_MAGAZINES": "News",
    "MUSIC_AND_AUDIO": "Music",
    "EDUCATION": "Education",
    "HEALTH_AND_FITNESS": "Health & Fitness",
    "TRAVEL_AND_LOCAL": "Travel",
    "FOOD_AND_DRINK": "Food & Drink",
    "FINANCE": "Finance",
    "BUSINESS": "Business",
    "LIFESTYLE": "Lifestyle",
    "SPORTS": "Sports",
    "WEATHER": "Weather",
    "LIBRARIES_AND_DEMO": "Reference",
    "MEDICAL": "Medical",
    "BOOKS_AND_REFERENCE": "Books",
    "MAPS_AND_NAVIGATION": "Navigation",
    "COMICS": "Comics",
    "ART_AND_DESIGN": "Art & Design",
    "VIDEO_PLAYERS": "Video Players",
    "COMMUNICATION": "Communication",
    "AUTO_AND_VEHICLES": "Auto & Vehicles",
    "DATING": "Dating",
    "HOUSE_AND_HOME": "Home & Garden",
    "PARENTING": "Parenting",
    "EVENTS": "Events",
}

_LOWER_MAP: dict[str, str] = {key.lower(): value for key, value in CATEGORY_MAP.items()}

POPULAR_CATEGORIES: tuple[str, ...] = (
    "Social Media",
    "Games",
    "Productivity",
    "Utilities",
    "Shopping",
    "Entertainment",
    "Photo & Video",
    "News",
    "Music",
    "Education",
    "Health & Fitness",
    "Travel",
    "Finance",
    "Business",
)


def normalize_category(category: str | None) -> str:
    """Map a storefront genre to its unified name.

    Unknown genres are returned unchanged (trimmed) rather than dropped, so
    new storefront genres still show up in the browse filters.
    """
    if not category or not category.strip():
        return UNCATEGORIZED
    if category in CATEGORY_MAP:
        return CATEGORY_MAP[category]
    stripped = category.strip()
    return _LOWER_MAP.get(stripped.lower(), stripped)


def is_popular_category(category: str | None) -> bool:
    return normalize_category(category) in POPULAR_CATEGORIES


def get_all_categories() -> list[str]:
    """Every unified category name, sorted alphabetically."""
    return sorted(set(CATEGORY_MAP.values()))
