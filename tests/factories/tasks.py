"""Factory Boy factories for analysis task rows."""

from __future__ import annotations

import datetime
import uuid

import factory


def _result() -> dict:
    return {
        "app": {
            "id": "389801252",
            "name": "Instagram",
            "iconUrl": "https://is1-ssl.mzstatic.com/image/instagram.png",
            "rating": 4.7,
            "reviewCount": 25_000,
            "category": "Photo & Video",
            "platform": "ios",
        },
        "reviewCount": 800,
        "analyzedCount": 300,
        "analysis": {
            "sentiment": {"positive": 60, "negative": 30, "neutral": 10},
            "criticalIssues": [{"title": "Crashes on launch", "severity": "high"}],
            "priorityActions": ["Fix launch crash", "Improve feed loading"],
        },
        "reviews": [],
    }


class AnalysisTaskFactory(factory.Factory):
    """Factory for completed single-app AnalysisTask dicts."""

    class Meta:
        model = dict

    id = factory.LazyFunction(uuid.uuid4)
    user_id = None
    task_type = "single"
    status = "completed"
    progress = 100
    platform = "ios"
    app_store_id = "389801252"
    app_slug = "instagram-ios"
    is_latest = True
    options = factory.LazyFunction(dict)
    result = factory.LazyFunction(_result)
    error_msg = None
    review_count = 800
    created_at = factory.LazyFunction(
        lambda: datetime.datetime.now(tz=datetime.UTC) - datetime.timedelta(hours=2)
    )
    completed_at = factory.LazyFunction(
        lambda: datetime.datetime.now(tz=datetime.UTC) - datetime.timedelta(hours=1)
    )
