"""Stripe checkout, webhook and subscription management routes.

Routes:
    POST   /api/stripe/checkout         open a Checkout session
    POST   /api/stripe/webhook          receive Stripe events
    GET    /api/subscription/manage     current plan plus a portal link
    POST   /api/subscription/manage     portal link only
    DELETE /api/subscription/manage     cancel the active plan

The Stripe calls and the local bookkeeping live in
:mod:`review_insight.core.billing`; this module validates input, maps
:class:`BillingError` to HTTP responses and commits.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.api.dependencies import get_current_active_user
from review_insight.core.billing import (
    CYCLE_INTERVALS,
    MANAGEABLE_STATUSES,
    cancel_subscription,
    construct_webhook_event,
    create_checkout_session,
    create_portal_session,
    dispatch_webhook_event,
    find_subscription,
    record_cancellation,
    record_checkout_intent,
    subscription_payload,
)
from review_insight.core.database import get_db
from review_insight.core.exceptions import BillingError
from review_insight.core.models.users import User
from review_insight.core.schemas.billing import CancelSubscriptionRequest, CheckoutRequest
from review_insight.core.subscription import log_usage

logger = structlog.get_logger(__name__)

router = APIRouter()


def _invalid_input(exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid input data",
            "details": json.loads(exc.json(include_url=False)),
        },
    )


# ---------------------------------------------------------------------------
# POST /api/stripe/checkout
# ---------------------------------------------------------------------------


@router.post("/stripe/checkout")
async def create_checkout(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    body: Annotated[Any, Body()] = None,
) -> Any:
    """Start a Stripe Checkout for a paid plan.

    A user who already pays for *tier* may switch billing cycle; any other
    purchase on top of an active plan is refused.

    Returns:
        ``{sessionId, url, action}`` where ``action`` is ``create`` or
        ``update``.

    Raises:
        HTTPException 400: On an existing plan that cannot be replaced.
        HTTPException 502: If Stripe rejects the request.
    """
    try:
        payload = CheckoutRequest.model_validate(body or {})
    except ValidationError as exc:
        return _invalid_input(exc)

    active = await find_subscription(db, user.id)
    action = "create"
    if active is not None:
        if active.tier != payload.tier or active.interval == CYCLE_INTERVALS[payload.billing_cycle]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    "You already have an active subscription. Please manage your "
                    "existing subscription from the dashboard."
                ),
            )
        action = "update"

    try:
        session = await create_checkout_session(user, payload.tier, payload.billing_cycle)
    except BillingError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    if action == "create":
        await record_checkout_intent(
            db, user.id, payload.tier, payload.billing_cycle, session.id
        )
        await db.commit()

    logger.info(
        "billing.checkout_created",
        user_id=str(user.id),
        tier=payload.tier,
        billing_cycle=payload.billing_cycle,
        action=action,
    )
    return {"sessionId": session.id, "url": session.url, "action": action}


# ---------------------------------------------------------------------------
# POST /api/stripe/webhook
# ---------------------------------------------------------------------------


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> dict[str, Any]:
    """Verify and apply a Stripe event.

    The raw body is read untouched because the signature covers the exact
    bytes Stripe sent.

    Raises:
        HTTPException 400: On a missing or invalid signature.
    """
    payload = await request.body()
    try:
        event = construct_webhook_event(payload, stripe_signature)
    except BillingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    handled = await dispatch_webhook_event(db, event)
    await db.commit()
    return {"received": True, "handled": handled}


# ---------------------------------------------------------------------------
# /api/subscription/manage
# ---------------------------------------------------------------------------


@router.get("/subscription/manage")
async def get_subscription(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, Any]:
    """Describe the newest manageable subscription and link to the portal.

    A portal failure still returns the subscription, with ``portalUrl``
    set to ``None``.
    """
    subscription = await find_subscription(db, user.id, MANAGEABLE_STATUSES)
    if subscription is None:
        return {
            "hasSubscription": False,
            "subscriptionTier": user.subscription_tier,
            "canManage": False,
        }

    can_manage = bool(subscription.stripe_customer_id)
    portal_url: Optional[str] = None
    if can_manage:
        try:
            portal = await create_portal_session(subscription.stripe_customer_id)
            portal_url = portal.url
        except BillingError as exc:
            logger.warning("billing.portal_unavailable", user_id=str(user.id), error=str(exc))

    return {
        "hasSubscription": True,
        "subscription": subscription_payload(subscription),
        "canManage": can_manage,
        "portalUrl": portal_url,
    }


@router.post("/subscription/manage")
async def open_billing_portal(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, Any]:
    """Return a Stripe customer-portal URL.

    Raises:
        HTTPException 404: If the user has no subscription with a Stripe
            customer.
        HTTPException 502: If Stripe rejects the request.
    """
    subscription = await find_subscription(db, user.id, MANAGEABLE_STATUSES)
    if subscription is None or not subscription.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found"
        )

    try:
        portal = await create_portal_session(subscription.stripe_customer_id)
    except BillingError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    await log_usage(
        db,
        user.id,
        "subscription_downgraded",
        metadata={
            "action": "portal_access",
            "subscriptionId": subscription.stripe_subscription_id,
        },
    )
    await db.commit()
    return {"url": portal.url}


@router.delete("/subscription/manage")
async def cancel_active_subscription(
    user: Annotated[User, Depends(get_current_active_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    payload: Optional[CancelSubscriptionRequest] = None,
) -> dict[str, Any]:
    """Cancel the active plan now or at the end of the paid period.

    Raises:
        HTTPException 404: If there is no active Stripe subscription.
        HTTPException 502: If Stripe rejects the cancellation.
    """
    immediate = payload.immediate if payload else False
    subscription = await find_subscription(db, user.id)
    if subscription is None or not subscription.stripe_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found"
        )

    try:
        await cancel_subscription(subscription.stripe_subscription_id, immediate)
    except BillingError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    await record_cancellation(db, subscription, immediate)
    await db.commit()
    logger.info("billing.subscription_canceled", user_id=str(user.id), immediate=immediate)
    return {
        "message": (
            "Subscription canceled immediately"
            if immediate
            else "Subscription will be canceled at the end of the billing period"
        ),
        "immediate": immediate,
    }
