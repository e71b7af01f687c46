"""Unit tests for core/billing.py.

Stripe SDK calls are patched; webhook signatures are computed locally with
the same HMAC scheme Stripe uses so verification runs for real.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe

from review_insight.config.settings import get_settings
from review_insight.core.billing import (
    construct_webhook_event,
    create_checkout_session,
    dispatch_webhook_event,
    get_stripe_price,
    record_cancellation,
    record_checkout_intent,
    tier_for_price_id,
)
from review_insight.core.exceptions import BillingError
from review_insight.core.models.users import Subscription, User
from tests.factories.users import UserFactory

WEBHOOK_SECRET = "whsec_unit_test"


def _settings(**overrides):
    return get_settings().model_copy(update=overrides)


def _signed(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


# ===========================================================================
# Prices
# ===========================================================================


class TestPrices:
    def test_professional_monthly(self) -> None:
        settings = _settings(stripe_price_pro_monthly="price_123")
        assert get_stripe_price("professional", "monthly", settings) == {
            "name": "Professional",
            "priceId": "price_123",
            "amount": 2900,
            "interval": "monthly",
            "currency": "usd",
        }

    def test_team_yearly_amount(self) -> None:
        assert get_stripe_price("team", "yearly", _settings())["amount"] == 79200

    @pytest.mark.parametrize(("tier", "cycle"), [("free", "monthly"), ("team", "weekly")])
    def test_rejects_unpaid_plans(self, tier: str, cycle: str) -> None:
        with pytest.raises(BillingError):
            get_stripe_price(tier, cycle, _settings())

    def test_tier_for_price_id(self) -> None:
        settings = _settings(stripe_price_team_yearly="price_team_y")
        assert tier_for_price_id("price_team_y", settings) == "team"
        assert tier_for_price_id("price_unknown", settings) == "free"
        assert tier_for_price_id(None, settings) == "free"


# ===========================================================================
# Stripe API calls
# ===========================================================================


class TestCheckoutSession:
    async def test_passes_metadata_and_price(self) -> None:
        user = User(**UserFactory.build())
        settings = _settings(
            stripe_secret_key="sk_test_1",
            stripe_price_pro_yearly="price_pro_y",
            app_url="https://reviewinsight.example/",
        )
        with patch.object(
            stripe.checkout.Session, "create", MagicMock(return_value=MagicMock(id="cs_1"))
        ) as create:
            session = await create_checkout_session(user, "professional", "yearly", settings)

        assert session.id == "cs_1"
        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_1"
        assert kwargs["line_items"] == [{"price": "price_pro_y", "quantity": 1}]
        assert kwargs["metadata"] == {
            "userId": str(user.id),
            "tier": "professional",
            "billingCycle": "yearly",
        }
        assert kwargs["cancel_url"] == "https://reviewinsight.example/pricing?canceled=true"

    async def test_requires_secret_key(self) -> None:
        user = User(**UserFactory.build())
        with pytest.raises(BillingError, match="not configured"):
            await create_checkout_session(
                user, "team", "monthly", _settings(stripe_secret_key=None)
            )

    async def test_stripe_errors_become_billing_errors(self) -> None:
        user = User(**UserFactory.build())
        with patch.object(
            stripe.checkout.Session,
            "create",
            MagicMock(side_effect=stripe.StripeError("card declined")),
        ):
            with pytest.raises(BillingError, match="card declined"):
                await create_checkout_session(
                    user, "team", "monthly", _settings(stripe_secret_key="sk_test_1")
                )


# ===========================================================================
# Webhook verification
# ===========================================================================


class TestConstructWebhookEvent:
    def test_missing_signature(self) -> None:
        settings = _settings(stripe_webhook_secret=WEBHOOK_SECRET)
        with pytest.raises(BillingError, match="Missing signature"):
            construct_webhook_event(b"{}", None, settings)

    def test_missing_secret(self) -> None:
        with pytest.raises(BillingError, match="Missing signature"):
            construct_webhook_event(b"{}", "t=1,v1=abc", _settings(stripe_webhook_secret=None))

    def test_valid_signature(self) -> None:
        payload = json.dumps(
            {"id": "evt_1", "object": "event", "type": "invoice.payment_failed", "data": {"object": {}}}
        ).encode()
        settings = _settings(stripe_webhook_secret=WEBHOOK_SECRET)
        event = construct_webhook_event(payload, _signed(payload), settings)
        assert event["type"] == "invoice.payment_failed"

    def test_tampered_payload(self) -> None:
        payload = b'{"id": "evt_1", "object": "event"}'
        settings = _settings(stripe_webhook_secret=WEBHOOK_SECRET)
        with pytest.raises(BillingError, match="Invalid signature"):
            construct_webhook_event(payload + b" ", _signed(payload), settings)


# ===========================================================================
# Local bookkeeping
# ===========================================================================


async def test_record_checkout_intent(mock_db: AsyncMock) -> None:
    user_id = uuid.uuid4()
    subscription = await record_checkout_intent(mock_db, user_id, "professional", "monthly", "cs_1")

    assert subscription.status == "incomplete"
    assert subscription.interval == "month"
    assert subscription.price == Decimal("29")
    assert (subscription.current_period_end - subscription.current_period_start).days == 30
    logged = mock_db.add.call_args_list[-1].args[0]
    assert logged.action_type == "subscription_upgraded"
    assert logged.metadata_["sessionId"] == "cs_1"


def _subscription(**overrides) -> Subscription:
    values = {
        "id": uuid.uuid4(),
        "user_id": uuid.uuid4(),
        "tier": "team",
        "status": "active",
        "interval": "month",
        "price": Decimal("99"),
        "currency": "usd",
        "cancel_at_period_end": False,
        "canceled_at": None,
        "stripe_subscription_id": "sub_1",
        "stripe_customer_id": "cus_1",
    }
    values.update(overrides)
    return Subscription(**values)


async def test_record_cancellation_at_period_end(mock_db: AsyncMock) -> None:
    subscription = _subscription()
    await record_cancellation(mock_db, subscription, immediate=False)
    assert subscription.cancel_at_period_end is True
    assert subscription.status == "active"
    mock_db.execute.assert_not_awaited()


async def test_record_cancellation_immediate_downgrades_user(mock_db: AsyncMock) -> None:
    subscription = _subscription()
    await record_cancellation(mock_db, subscription, immediate=True)
    assert subscription.status == "canceled"
    assert subscription.canceled_at is not None
    mock_db.execute.assert_awaited_once()


class TestDispatchWebhookEvent:
    async def test_ignores_unknown_events(self, mock_db: AsyncMock) -> None:
        event = {"id": "evt_1", "type": "customer.created", "data": {"object": {}}}
        assert await dispatch_webhook_event(mock_db, event) is False
        mock_db.flush.assert_not_awaited()

    async def test_payment_failed_marks_past_due(self, mock_db: AsyncMock) -> None:
        subscription = _subscription()
        result = MagicMock()
        result.scalars.return_value.first.return_value = subscription
        mock_db.execute.return_value = result

        event = {
            "id": "evt_2",
            "type": "invoice.payment_failed",
            "data": {"object": {"id": "in_1", "subscription": "sub_1", "amount_due": 9900}},
        }
        assert await dispatch_webhook_event(mock_db, event) is True
        assert subscription.status == "past_due"

    async def test_subscription_deleted_downgrades(self, mock_db: AsyncMock) -> None:
        subscription = _subscription()
        result = MagicMock()
        result.scalars.return_value.first.return_value = subscription
        mock_db.execute.return_value = result

        event = {
            "id": "evt_3",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_1", "current_period_end": 1_780_000_000}},
        }
        assert await dispatch_webhook_event(mock_db, event) is True
        assert subscription.status == "canceled"
        logged = mock_db.add.call_args_list[-1].args[0]
        assert logged.metadata_["reason"] == "subscription_deleted"
