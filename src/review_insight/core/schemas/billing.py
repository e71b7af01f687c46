"""Request bodies of the Stripe checkout and subscription endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PaidTier = Literal["professional", "team"]
BillingCycle = Literal["monthly", "yearly"]


class CheckoutRequest(BaseModel):
    """Body of ``POST /api/stripe/checkout``."""

    model_config = ConfigDict(populate_by_name=True)

    tier: PaidTier
    billing_cycle: BillingCycle = Field(..., alias="billingCycle")


class CancelSubscriptionRequest(BaseModel):
    """Body of ``DELETE /api/subscription/manage``.

    ``immediate=False`` keeps the plan until the end of the paid period.
    """

    immediate: bool = False
