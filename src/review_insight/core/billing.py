"""Stripe billing: checkout, customer portal, cancellation and webhooks.

The Stripe SDK is synchronous; every call is pushed to a worker thread
with :func:`asyncio.to_thread` and authenticated with a per-call
``api_key`` so no global SDK state is mutated.

Plan prices (cents)::

    professional   2900 / month    24000 / year
    team           9900 / month    79200 / year

Webhook handlers update ``subscriptions`` and ``users`` and write one
usage-log entry each.  They flush but never commit; the webhook route
commits once per event.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

import stripe
import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from review_insight.config.settings import Settings, get_settings
from review_insight.config.tiers import SubscriptionTier
from review_insight.core.email_service import get_email_service
from review_insight.core.exceptions import BillingError
from review_insight.core.models.users import Subscription, User
from review_insight.core.subscription import log_usage

logger = structlog.get_logger(__name__)

PAID_TIERS: tuple[str, ...] = (SubscriptionTier.PROFESSIONAL.value, SubscriptionTier.TEAM.value)
BILLING_CYCLES: tuple[str, ...] = ("monthly", "yearly")

PLAN_AMOUNTS: dict[str, dict[str, int]] = {
    "professional": {"monthly": 2900, "yearly": 24000},
    "team": {"monthly": 9900, "yearly": 79200},
}
PLAN_NAMES: dict[str, str] = {"professional": "Professional", "team": "Team"}
CYCLE_INTERVALS: dict[str, str] = {"monthly": "month", "yearly": "year"}
CYCLE_DAYS: dict[str, int] = {"monthly": 30, "yearly": 365}

MANAGEABLE_STATUSES: tuple[str, ...] = ("active", "canceled", "past_due", "trialing")


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


def _price_ids(settings: Settings) -> dict[str, dict[str, str]]:
    return {
        "professional": {
            "monthly": settings.stripe_price_pro_monthly,
            "yearly": settings.stripe_price_pro_yearly,
        },
        "team": {
            "monthly": settings.stripe_price_team_monthly,
            "yearly": settings.stripe_price_team_yearly,
        },
    }


def get_stripe_price(
    tier: str, billing_cycle: str, settings: Optional[Settings] = None
) -> dict[str, Any]:
    """Return ``{name, priceId, amount, interval, currency}`` for a paid plan.

    Raises:
        BillingError: If *tier* or *billing_cycle* is not a paid plan.
    """
    if tier not in PAID_TIERS:
        raise BillingError(f"Invalid tier. Supported tiers: {', '.join(PAID_TIERS)}")
    if billing_cycle not in BILLING_CYCLES:
        raise BillingError(
            f"Invalid billing cycle. Supported cycles: {', '.join(BILLING_CYCLES)}"
        )
    settings = settings or get_settings()
    return {
        "name": PLAN_NAMES[tier],
        "priceId": _price_ids(settings)[tier][billing_cycle],
        "amount": PLAN_AMOUNTS[tier][billing_cycle],
        "interval": billing_cycle,
        "currency": "usd",
    }


def tier_for_price_id(price_id: Optional[str], settings: Optional[Settings] = None) -> str:
    """Map a Stripe price id back to a tier; unknown prices mean ``free``."""
    if price_id:
        for tier, cycles in _price_ids(settings or get_settings()).items():
            if price_id in cycles.values():
                return tier
    return SubscriptionTier.FREE.value


# ---------------------------------------------------------------------------
# Stripe API calls
# ---------------------------------------------------------------------------


def _api_key(settings: Settings) -> str:
    if not settings.stripe_secret_key:
        raise BillingError("Stripe is not configured")
    return settings.stripe_secret_key


async def _call(func: Any, *args: Any, **kwargs: Any) -> Any:
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except stripe.StripeError as exc:
        logger.error("billing.stripe_error", error=str(exc), error_type=type(exc).__name__)
        raise BillingError(f"Stripe request failed: {exc}") from exc


async def create_checkout_session(
    user: User,
    tier: str,
    billing_cycle: str,
    settings: Optional[Settings] = None,
) -> Any:
    """Open a subscription-mode Checkout session for *user*.

    The session metadata carries ``userId``, ``tier`` and ``billingCycle``
    so the ``checkout.session.completed`` webhook can activate the plan.
    """
    settings = settings or get_settings()
    price = get_stripe_price(tier, billing_cycle, settings)
    app_url = settings.app_url.rstrip("/")
    return await _call(
        stripe.checkout.Session.create,
        api_key=_api_key(settings),
        customer_email=user.email,
        billing_address_collection="auto",
        line_items=[{"price": price["priceId"], "quantity": 1}],
        mode="subscription",
        success_url=f"{app_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{app_url}/pricing?canceled=true",
        metadata={"userId": str(user.id), "tier": tier, "billingCycle": billing_cycle},
        allow_promotion_codes=True,
        automatic_tax={"enabled": True},
    )


async def cancel_subscription(
    stripe_subscription_id: str,
    immediate: bool = False,
    settings: Optional[Settings] = None,
) -> Any:
    """Cancel now, or flag the subscription to end with the paid period."""
    settings = settings or get_settings()
    if immediate:
        return await _call(
            stripe.Subscription.cancel,
            stripe_subscription_id,
            api_key=_api_key(settings),
        )
    return await _call(
        stripe.Subscription.modify,
        stripe_subscription_id,
        api_key=_api_key(settings),
        cancel_at_period_end=True,
    )


async def create_portal_session(customer_id: str, settings: Optional[Settings] = None) -> Any:
    """Open a Stripe customer-portal session returning to the dashboard."""
    settings = settings or get_settings()
    return await _call(
        stripe.billing_portal.Session.create,
        api_key=_api_key(settings),
        customer=customer_id,
        return_url=f"{settings.app_url.rstrip('/')}/dashboard",
    )


async def retrieve_subscription(subscription_id: str, settings: Optional[Settings] = None) -> Any:
    settings = settings or get_settings()
    return await _call(
        stripe.Subscription.retrieve,
        subscription_id,
        api_key=_api_key(settings),
    )


def construct_webhook_event(
    payload: bytes,
    signature: Optional[str],
    settings: Optional[Settings] = None,
) -> Any:
    """Verify the ``Stripe-Signature`` header and parse the event.

    Raises:
        BillingError: On a missing signature or secret, or a payload that
            fails verification.
    """
    settings = settings or get_settings()
    if not signature or not settings.stripe_webhook_secret:
        raise BillingError("Missing signature")
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("billing.webhook_signature_invalid", error=str(exc))
        raise BillingError("Invalid signature") from exc


# ---------------------------------------------------------------------------
# Local subscription records
# ---------------------------------------------------------------------------


async def find_subscription(
    session: AsyncSession,
    user_id: uuid.UUID,
    statuses: tuple[str, ...] = ("active",),
) -> Optional[Subscription]:
    """Newest subscription of *user_id* in one of *statuses*."""
    result = await session.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status.in_(statuses))
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def record_checkout_intent(
    session: AsyncSession,
    user_id: uuid.UUID,
    tier: str,
    billing_cycle: str,
    checkout_session_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """Insert the ``incomplete`` row that the checkout webhook later activates."""
    now = now or datetime.now(tz=UTC)
    subscription = Subscription(
        user_id=user_id,
        tier=tier,
        status="incomplete",
        interval=CYCLE_INTERVALS[billing_cycle],
        price=Decimal(PLAN_AMOUNTS[tier][billing_cycle]) / 100,
        currency="usd",
        current_period_start=now,
        current_period_end=now + timedelta(days=CYCLE_DAYS[billing_cycle]),
    )
    session.add(subscription)
    await log_usage(
        session,
        user_id,
        "subscription_upgraded",
        metadata={"tier": tier, "billingCycle": billing_cycle, "sessionId": checkout_session_id},
    )
    return subscription


def subscription_payload(subscription: Subscription) -> dict[str, Any]:
    return {
        "id": str(subscription.id),
        "tier": subscription.tier,
        "status": subscription.status,
        "interval": subscription.interval,
        "price": float(subscription.price),
        "currency": subscription.currency,
        "currentPeriodStart": subscription.current_period_start.isoformat(),
        "currentPeriodEnd": subscription.current_period_end.isoformat(),
        "cancelAtPeriodEnd": subscription.cancel_at_period_end,
        "canceledAt": subscription.canceled_at.isoformat() if subscription.canceled_at else None,
        "stripeSubscriptionId": subscription.stripe_subscription_id,
    }


# ---------------------------------------------------------------------------
# Webhook handlers
# ---------------------------------------------------------------------------


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _first_item(stripe_subscription: Any) -> dict[str, Any]:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period(stripe_subscription: Any) -> tuple[Optional[datetime], Optional[datetime]]:
    """Billing period of a Stripe subscription.

    Newer API versions report the period on the subscription item rather
    than on the subscription itself.
    """
    item = _first_item(stripe_subscription)
    start = stripe_subscription.get("current_period_start") or item.get("current_period_start")
    end = stripe_subscription.get("current_period_end") or item.get("current_period_end")
    return _timestamp(start), _timestamp(end)


async def _by_stripe_id(session: AsyncSession, stripe_subscription_id: str) -> Optional[Subscription]:
    if not stripe_subscription_id:
        return None
    result = await session.execute(
        select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    )
    return result.scalars().first()


async def handle_checkout_completed(session: AsyncSession, checkout: Any) -> None:
    metadata = checkout.get("metadata") or {}
    user_id, tier, cycle = metadata.get("userId"), metadata.get("tier"), metadata.get("billingCycle")
    if not user_id or not tier or not cycle:
        logger.error("billing.checkout_metadata_missing", session_id=checkout.get("id"))
        return
    uid = uuid.UUID(user_id)

    await session.execute(
        update(Subscription)
        .where(Subscription.user_id == uid, Subscription.status == "incomplete")
        .values(
            stripe_customer_id=checkout.get("customer") or "",
            stripe_subscription_id=checkout.get("subscription") or "",
            stripe_price_id=get_stripe_price(tier, cycle)["priceId"],
            status="active",
        )
    )
    await session.execute(
        update(User).where(User.id == uid).values(subscription_tier=tier, subscription_ends=None)
    )
    await log_usage(
        session,
        uid,
        "subscription_upgraded",
        metadata={
            "tier": tier,
            "billingCycle": cycle,
            "sessionId": checkout.get("id"),
            "customerId": checkout.get("customer"),
            "subscriptionId": checkout.get("subscription"),
        },
    )
    logger.info("billing.checkout_completed", user_id=user_id, tier=tier, cycle=cycle)

    user = (await session.execute(select(User).where(User.id == uid))).scalar_one_or_none()
    if user is not None and user.email_notifications:
        await get_email_service().send_subscription_activated(user.email, tier)


async def handle_invoice_payment_succeeded(
    session: AsyncSession, invoice: Any, settings: Optional[Settings] = None
) -> None:
    subscription_id = invoice.get("subscription")
    local = await _by_stripe_id(session, subscription_id)
    if local is None:
        logger.error("billing.subscription_not_found", subscription_id=subscription_id)
        return

    remote = await retrieve_subscription(subscription_id, settings)
    start, end = _period(remote)
    local.status = "active"
    local.current_period_start = start or local.current_period_start
    local.current_period_end = end or local.current_period_end
    local.cancel_at_period_end = bool(remote.get("cancel_at_period_end"))
    await log_usage(
        session,
        local.user_id,
        "subscription_upgraded",
        metadata={
            "invoiceId": invoice.get("id"),
            "amount": invoice.get("amount_paid"),
            "subscriptionId": subscription_id,
        },
    )


async def handle_invoice_payment_failed(session: AsyncSession, invoice: Any) -> None:
    subscription_id = invoice.get("subscription")
    local = await _by_stripe_id(session, subscription_id)
    if local is None:
        logger.error("billing.subscription_not_found", subscription_id=subscription_id)
        return
    local.status = "past_due"
    await log_usage(
        session,
        local.user_id,
        "subscription_downgraded",
        metadata={
            "invoiceId": invoice.get("id"),
            "amount": invoice.get("amount_due"),
            "subscriptionId": subscription_id,
            "reason": "payment_failed",
        },
    )


async def handle_subscription_updated(session: AsyncSession, remote: Any) -> None:
    local = await _by_stripe_id(session, remote.get("id"))
    if local is None:
        logger.error("billing.subscription_not_found", subscription_id=remote.get("id"))
        return

    tier = tier_for_price_id((_first_item(remote).get("price") or {}).get("id"))
    start, end = _period(remote)
    local.status = remote.get("status") or local.status
    local.current_period_start = start or local.current_period_start
    local.current_period_end = end or local.current_period_end
    local.cancel_at_period_end = bool(remote.get("cancel_at_period_end"))
    local.canceled_at = _timestamp(remote.get("canceled_at"))
    if tier != local.tier:
        await session.execute(
            update(User).where(User.id == local.user_id).values(subscription_tier=tier)
        )
    await log_usage(
        session,
        local.user_id,
        "subscription_upgraded",
        metadata={
            "subscriptionId": remote.get("id"),
            "newStatus": remote.get("status"),
            "newTier": tier,
            "cancelAtPeriodEnd": bool(remote.get("cancel_at_period_end")),
        },
    )


async def handle_subscription_deleted(session: AsyncSession, remote: Any) -> None:
    local = await _by_stripe_id(session, remote.get("id"))
    if local is None:
        logger.error("billing.subscription_not_found", subscription_id=remote.get("id"))
        return

    _, end = _period(remote)
    local.status = "canceled"
    await session.execute(
        update(User)
        .where(User.id == local.user_id)
        .values(subscription_tier=SubscriptionTier.FREE.value, subscription_ends=end)
    )
    await log_usage(
        session,
        local.user_id,
        "subscription_downgraded",
        metadata={
            "subscriptionId": remote.get("id"),
            "reason": "subscription_deleted",
            "periodEnd": end.isoformat() if end else None,
        },
    )


async def dispatch_webhook_event(session: AsyncSession, event: Any) -> bool:
    """Route a verified event to its handler.

    Returns:
        ``True`` if the event type is handled, ``False`` if it was ignored.
    """
    event_type = event["type"]
    obj = event["data"]["object"]
    logger.info("billing.webhook_received", event_type=event_type, event_id=event.get("id"))

    if event_type == "checkout.session.completed":
        await handle_checkout_completed(session, obj)
    elif event_type == "invoice.payment_succeeded":
        await handle_invoice_payment_succeeded(session, obj)
    elif event_type == "invoice.payment_failed":
        await handle_invoice_payment_failed(session, obj)
    elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
        await handle_subscription_updated(session, obj)
    elif event_type == "customer.subscription.deleted":
        await handle_subscription_deleted(session, obj)
    else:
        logger.debug("billing.webhook_unhandled", event_type=event_type)
        return False
    await session.flush()
    return True


async def record_cancellation(
    session: AsyncSession, subscription: Subscription, immediate: bool
) -> None:
    """Mirror a cancellation made through :func:`cancel_subscription` locally."""
    subscription.cancel_at_period_end = not immediate
    subscription.status = "canceled" if immediate else "active"
    if immediate:
        subscription.canceled_at = datetime.now(tz=UTC)
        await session.execute(
            update(User)
            .where(User.id == subscription.user_id)
            .values(subscription_tier=SubscriptionTier.FREE.value)
        )
    await log_usage(
        session,
        subscription.user_id,
        "subscription_downgraded",
        metadata={
            "action": "immediate_cancellation" if immediate else "end_of_period_cancellation",
            "subscriptionId": subscription.stripe_subscription_id,
        },
    )
