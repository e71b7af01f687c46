"""Subscription tier definitions and per-tier usage limits.

Defines the three plans (FREE, PROFESSIONAL, TEAM) a user account can be on.
The limits defined here are enforced by
:mod:`review_insight.core.subscription` before an analysis is started and
are reported back to clients by ``GET /api/auth/me``.

Pricing for the paid tiers lives in :mod:`review_insight.core.billing`
because it is tied to Stripe price IDs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

UNLIMITED: int = -1
"""Sentinel used for ``monthly_analyses`` on plans without a monthly cap."""


class SubscriptionTier(str, Enum):
    """Plan a user account is subscribed to."""

    FREE = "free"
    PROFESSIONAL = "professional"
    TEAM = "team"


@dataclass(frozen=True)
class TierLimits:
    """Usage limits for a single subscription tier.

    Attributes:
        tier: The :class:`SubscriptionTier` these limits apply to.
        monthly_analyses: Analyses allowed per calendar month, or
            :data:`UNLIMITED`.
        max_reviews_per_analysis: Upper bound on reviews fetched for one
            analysis on this plan.
        features: Marketing feature list returned to the client.
    """

    tier: SubscriptionTier
    monthly_analyses: int
    max_reviews_per_analysis: int
    features: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_analyses == UNLIMITED

    def as_dict(self) -> dict[str, object]:
        return {
            "monthlyAnalyses": self.monthly_analyses,
            "maxReviewsPerAnalysis": self.max_reviews_per_analysis,
            "features": list(self.features),
        }


TIER_LIMITS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(
        tier=SubscriptionTier.FREE,
        monthly_analyses=3,
        max_reviews_per_analysis=500,
        features=("Basic analysis", "Standard report"),
    ),
    SubscriptionTier.PROFESSIONAL: TierLimits(
        tier=SubscriptionTier.PROFESSIONAL,
        monthly_analyses=UNLIMITED,
        max_reviews_per_analysis=2000,
        features=(
            "Unlimited analyses",
            "Advanced analysis",
            "Detailed reports",
            "Historical data",
            "Priority support",
        ),
    ),
    SubscriptionTier.TEAM: TierLimits(
        tier=SubscriptionTier.TEAM,
        monthly_analyses=UNLIMITED,
        max_reviews_per_analysis=5000,
        features=(
            "All Professional features",
            "Multi-user collaboration",
            "Advanced analytics",
            "API access",
            "Custom reports",
            "Dedicated support",
        ),
    ),
}
"""Limits per plan.  Unknown tier strings fall back to FREE via
:func:`review_insight.core.subscription.get_subscription_limits`."""
