"""SQLAlchemy ORM models for ReviewInsight.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do `from review_insight.core.models import User`
   without knowing which sub-module a model lives in.
3. SQLAlchemy's relationship resolution finds all mapper targets at
   import time, avoiding "mapper not yet configured" errors.
"""

from __future__ import annotations

from review_insight.core.models.base import Base, TimestampMixin
from review_insight.core.models.analysis import AnalysisTask, TaskApp
from review_insight.core.models.apps import App, Review
from review_insight.core.models.users import (
    GuestAnalysis,
    Subscription,
    UsageLog,
    User,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Users
    "User",
    "Subscription",
    "UsageLog",
    "GuestAnalysis",
    # Apps
    "App",
    "Review",
    # Analysis
    "AnalysisTask",
    "TaskApp",
]
