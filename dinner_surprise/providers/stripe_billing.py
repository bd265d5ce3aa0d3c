"""Stripe implementation of the billing provider.

The Stripe SDK is synchronous, so every call runs in a worker thread and is
bounded by ``STRIPE_TIMEOUT_SECONDS``.
"""

import asyncio
from functools import partial
from typing import Any, Callable

import stripe
import structlog

from dinner_surprise.core.clock import from_timestamp
from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import BillingProviderError, BillingSubscriptionNotFound
from dinner_surprise.providers.base import (
    BillingProvider,
    BillingSubscription,
    CheckoutSessionInfo,
)

logger = structlog.get_logger(__name__)


def configure_stripe() -> None:
    """Apply process-wide Stripe settings. Called once at startup."""
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = settings.STRIPE_API_VERSION


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a plain dict or a StripeObject."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(name)
    else:
        try:
            value = obj[name]
        except (KeyError, TypeError):
            value = getattr(obj, name, None)
    return default if value is None else value


def _first_item(subscription: Any) -> Any:
    items = _field(subscription, "items")
    data = _field(items, "data") or []
    return data[0] if data else None


def parse_subscription(payload: Any) -> BillingSubscription:
    """
    Build a BillingSubscription from a Stripe subscription object or webhook payload.

    Period bounds are read from the subscription, falling back to the first
    item (newer API versions only carry them there).
    """
    item = _first_item(payload)
    price = _field(item, "price")
    product = _field(price, "product")

    period_start = _field(payload, "current_period_start") or _field(item, "current_period_start")
    period_end = _field(payload, "current_period_end") or _field(item, "current_period_end")

    product_name = _field(product, "name") if not isinstance(product, str) else None
    metadata = _field(payload, "metadata") or {}

    return BillingSubscription(
        id=_field(payload, "id"),
        customer_id=_field(payload, "customer"),
        status=_field(payload, "status", "incomplete"),
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        cancel_at_period_end=bool(_field(payload, "cancel_at_period_end", False)),
        price_id=_field(price, "id"),
        price_name=product_name or _field(price, "nickname"),
        plan_type_hint=_field(metadata, "planType"),
    )


def parse_checkout_session(payload: Any) -> CheckoutSessionInfo:
    """Build a CheckoutSessionInfo from a Stripe checkout session object or payload."""
    metadata = _field(payload, "metadata") or {}
    return CheckoutSessionInfo(
        id=_field(payload, "id"),
        url=_field(payload, "url"),
        payment_status=_field(payload, "payment_status"),
        customer_id=_field(payload, "customer"),
        subscription_id=_field(payload, "subscription"),
        metadata={key: str(metadata[key]) for key in metadata.keys()},
    )


class StripeBillingProvider(BillingProvider):
    """Billing provider backed by the Stripe API."""

    def __init__(self, timeout: float | None = None) -> None:
        """
        Initialize the Stripe provider.

        Args:
            timeout: Seconds before a Stripe call counts as failed
                (defaults to STRIPE_TIMEOUT_SECONDS)
        """
        self.timeout = timeout or settings.STRIPE_TIMEOUT_SECONDS

    async def _call(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        not_found: type[Exception] | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Run a blocking Stripe call in a thread with a timeout and map its errors.

        Args:
            operation: Name used in logs
            func: Stripe SDK callable
            not_found: Exception raised when Stripe answers ``resource_missing``

        Raises:
            not_found: Resource missing upstream
            BillingProviderError: Any other failure
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(partial(func, *args, **kwargs)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("stripe.timeout", operation=operation, timeout=self.timeout)
            raise BillingProviderError(
                "Payment provider timed out, please try again later",
                context={"operation": operation},
            ) from e
        except stripe.InvalidRequestError as e:
            if not_found is not None and e.code == "resource_missing":
                logger.info("stripe.resource_missing", operation=operation)
                raise not_found(str(e.user_message or e)) from e
            logger.error("stripe.invalid_request", operation=operation, error=str(e))
            raise BillingProviderError(
                "Payment provider rejected the request",
                context={"operation": operation},
            ) from e
        except stripe.StripeError as e:
            logger.warning(
                "stripe.error",
                operation=operation,
                error_type=type(e).__name__,
                http_status=e.http_status,
            )
            raise BillingProviderError(
                "Payment provider unavailable, please try again later",
                context={"operation": operation},
            ) from e

    async def retrieve_subscription(self, subscription_id: str) -> BillingSubscription:
        subscription = await self._call(
            "subscription.retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=["items.data.price.product"],
            not_found=BillingSubscriptionNotFound,
        )
        return parse_subscription(subscription)

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool = True
    ) -> BillingSubscription:
        subscription = await self._call(
            "subscription.modify",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel,
            expand=["items.data.price.product"],
            not_found=BillingSubscriptionNotFound,
        )
        logger.info(
            "stripe.cancel_at_period_end_set",
            subscription_id=subscription_id,
            cancel=cancel,
        )
        return parse_subscription(subscription)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        session = await self._call(
            "checkout_session.retrieve",
            stripe.checkout.Session.retrieve,
            session_id,
            not_found=ValueError,
        )
        return parse_checkout_session(session)

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        user_id: str,
        plan_type: str,
        success_url: str,
        cancel_url: str,
        customer_id: str | None = None,
        customer_email: str | None = None,
    ) -> CheckoutSessionInfo:
        metadata = {"userId": user_id, "planType": plan_type}
        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata": metadata,
            # Copied onto the subscription so plan derivation can read it later
            "subscription_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        session = await self._call(
            "checkout_session.create",
            stripe.checkout.Session.create,
            **params,
        )
        logger.info(
            "stripe.checkout_session_created",
            session_id=_field(session, "id"),
            user_id=user_id,
            plan_type=plan_type,
        )
        return parse_checkout_session(session)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = await self._call(
            "billing_portal.create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return _field(session, "url")
