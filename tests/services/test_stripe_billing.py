"""Tests for the Stripe billing provider."""

import time

import pytest
import stripe

from dinner_surprise.core.clock import from_timestamp
from dinner_surprise.core.errors import BillingProviderError, BillingSubscriptionNotFound
from dinner_surprise.providers.stripe_billing import (
    StripeBillingProvider,
    parse_checkout_session,
    parse_subscription,
)

from conftest import PERIOD_END, PERIOD_START, subscription_payload


class TestPayloadParsing:
    """Test conversion of Stripe objects."""

    def test_parse_subscription(self):
        subscription = parse_subscription(
            subscription_payload(cancel_at_period_end=True, metadata={"planType": "family"})
        )

        assert subscription.id == "sub_abc"
        assert subscription.customer_id == "cus_123"
        assert subscription.price_id == "price_premium_monthly"
        assert subscription.price_name == "Premium"
        assert subscription.plan_type_hint == "family"
        assert subscription.cancel_at_period_end is True
        assert subscription.current_period_end == from_timestamp(PERIOD_END)

    def test_period_read_from_item(self):
        """Test payloads that only carry period bounds on the subscription item."""
        payload = subscription_payload()
        del payload["current_period_start"]
        del payload["current_period_end"]
        item = payload["items"]["data"][0]
        item["current_period_start"] = PERIOD_START
        item["current_period_end"] = PERIOD_END

        subscription = parse_subscription(payload)

        assert subscription.current_period_start == from_timestamp(PERIOD_START)
        assert subscription.current_period_end == from_timestamp(PERIOD_END)

    def test_unexpanded_product_falls_back_to_nickname(self):
        payload = subscription_payload()
        payload["items"]["data"][0]["price"] = {
            "id": "price_x",
            "nickname": "Family Monthly",
            "product": "prod_1",
        }

        assert parse_subscription(payload).price_name == "Family Monthly"

    def test_parse_checkout_session(self):
        session = parse_checkout_session(
            {
                "id": "cs_1",
                "object": "checkout.session",
                "url": None,
                "payment_status": "paid",
                "customer": "cus_123",
                "subscription": "sub_abc",
                "metadata": {"userId": "u1", "planType": "premium"},
            }
        )

        assert session.payment_status == "paid"
        assert session.subscription_id == "sub_abc"
        assert session.metadata == {"userId": "u1", "planType": "premium"}


class TestStripeErrorMapping:
    """Test that Stripe failures surface as billing errors."""

    @pytest.mark.asyncio
    async def test_retrieve_subscription(self, monkeypatch):
        calls = []

        def fake_retrieve(subscription_id, **kwargs):
            calls.append((subscription_id, kwargs))
            return subscription_payload()

        monkeypatch.setattr(stripe.Subscription, "retrieve", fake_retrieve)

        subscription = await StripeBillingProvider().retrieve_subscription("sub_abc")

        assert subscription.id == "sub_abc"
        assert calls == [("sub_abc", {"expand": ["items.data.price.product"]})]

    @pytest.mark.asyncio
    async def test_missing_subscription(self, monkeypatch):
        def fake_retrieve(subscription_id, **kwargs):
            raise stripe.InvalidRequestError(
                f"No such subscription: '{subscription_id}'", "id", code="resource_missing"
            )

        monkeypatch.setattr(stripe.Subscription, "retrieve", fake_retrieve)

        with pytest.raises(BillingSubscriptionNotFound):
            await StripeBillingProvider().retrieve_subscription("sub_gone")

    @pytest.mark.asyncio
    async def test_connection_error(self, monkeypatch):
        def fake_retrieve(subscription_id, **kwargs):
            raise stripe.APIConnectionError("Network error")

        monkeypatch.setattr(stripe.Subscription, "retrieve", fake_retrieve)

        with pytest.raises(BillingProviderError) as exc_info:
            await StripeBillingProvider().retrieve_subscription("sub_abc")

        assert not isinstance(exc_info.value, BillingSubscriptionNotFound)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch):
        def slow_retrieve(subscription_id, **kwargs):
            time.sleep(0.5)
            return subscription_payload()

        monkeypatch.setattr(stripe.Subscription, "retrieve", slow_retrieve)

        with pytest.raises(BillingProviderError, match="timed out"):
            await StripeBillingProvider(timeout=0.05).retrieve_subscription("sub_abc")

    @pytest.mark.asyncio
    async def test_create_checkout_session_params(self, monkeypatch):
        captured = {}

        def fake_create(**params):
            captured.update(params)
            return {"id": "cs_1", "url": "https://checkout.stripe.com/c/pay/cs_1", "metadata": params["metadata"]}

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

        session = await StripeBillingProvider().create_checkout_session(
            price_id="price_premium_monthly",
            user_id="u1",
            plan_type="premium",
            success_url="https://app/success",
            cancel_url="https://app/pricing",
            customer_email="cook@example.com",
        )

        assert session.url == "https://checkout.stripe.com/c/pay/cs_1"
        assert captured["mode"] == "subscription"
        assert captured["customer_email"] == "cook@example.com"
        assert captured["subscription_data"] == {"metadata": {"userId": "u1", "planType": "premium"}}
