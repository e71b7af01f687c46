"""Factory Boy factories for test data generation.

Available factories
-------------------
UserFactory              - free-tier user dict
ProfessionalUserFactory  - professional-tier user dict
ScrapedReviewFactory     - ScrapedReview dataclass instance
AppInfoFactory           - AppInfo dataclass instance
AnalysisTaskFactory      - completed single-app task dict with a result
"""

from __future__ import annotations

from tests.factories.reviews import AppInfoFactory, ScrapedReviewFactory
from tests.factories.tasks import AnalysisTaskFactory
from tests.factories.users import ProfessionalUserFactory, UserFactory

__all__ = [
    "AnalysisTaskFactory",
    "AppInfoFactory",
    "ProfessionalUserFactory",
    "ScrapedReviewFactory",
    "UserFactory",
]
