"""Stripe webhook ingestion.

Events are verified, parsed into one of a small set of variants, and each
variant is applied by exactly one handler. Handlers only resolve which user
an event belongs to; all state changes go through ReconciliationService.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Union

import stripe
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.clock import from_timestamp
from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import WebhookVerificationError
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.models.subscription_plan import ENDED_STATUSES, SubscriptionStatus
from dinner_surprise.providers.base import (
    BillingProvider,
    BillingSubscription,
    CheckoutSessionInfo,
)
from dinner_surprise.providers.stripe_billing import parse_checkout_session, parse_subscription
from dinner_surprise.services.reconciliation_service import (
    ReconciliationService,
    map_provider_status,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubscriptionChanged:
    event_type: str
    subscription: BillingSubscription


@dataclass(frozen=True)
class SubscriptionEnded:
    event_type: str
    subscription: BillingSubscription
    status: SubscriptionStatus  # canceled or paused


@dataclass(frozen=True)
class PaymentSucceeded:
    event_type: str
    subscription_id: str | None
    customer_id: str | None
    period_end: datetime | None


@dataclass(frozen=True)
class PaymentFailed:
    event_type: str
    subscription_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class TrialEnding:
    event_type: str
    subscription: BillingSubscription
    trial_end: datetime | None


@dataclass(frozen=True)
class CheckoutCompleted:
    event_type: str
    session: CheckoutSessionInfo


@dataclass(frozen=True)
class Unhandled:
    event_type: str


WebhookEvent = Union[
    SubscriptionChanged,
    SubscriptionEnded,
    PaymentSucceeded,
    PaymentFailed,
    TrialEnding,
    CheckoutCompleted,
    Unhandled,
]

SUBSCRIPTION_CHANGED_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.resumed",
}
SUBSCRIPTION_ENDED_EVENTS = {
    "customer.subscription.deleted": SubscriptionStatus.CANCELED,
    "customer.subscription.paused": SubscriptionStatus.PAUSED,
}


def verify_event(payload: bytes, signature_header: str | None) -> dict[str, Any]:
    """
    Verify a Stripe webhook signature and decode the event.

    Args:
        payload: Raw request body, exactly as received
        signature_header: Value of the ``Stripe-Signature`` header

    Returns:
        The decoded event as a plain dict

    Raises:
        WebhookVerificationError: Missing header or secret, bad signature,
            stale timestamp, or a body that is not a Stripe event
    """
    if not signature_header:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise WebhookVerificationError("Webhook secret is not configured")

    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body,
            signature_header,
            settings.STRIPE_WEBHOOK_SECRET,
            settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookVerificationError(f"Invalid signature: {e.user_message or e}") from e
    except UnicodeDecodeError as e:
        raise WebhookVerificationError("Webhook payload is not valid UTF-8") from e

    try:
        event = json.loads(body)
    except json.JSONDecodeError as e:
        raise WebhookVerificationError("Webhook payload is not valid JSON") from e

    if not isinstance(event, dict) or "type" not in event:
        raise WebhookVerificationError("Webhook payload is not a Stripe event")
    return event


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")
    # Newer API versions nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


def _invoice_period_end(invoice: dict[str, Any]) -> datetime | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        period = lines[0].get("period") or {}
        if period.get("end"):
            return from_timestamp(period["end"])
    return from_timestamp(invoice.get("period_end"))


def parse_event(event: dict[str, Any]) -> WebhookEvent:
    """Turn a verified Stripe event dict into its variant."""
    event_type = event.get("type", "")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in SUBSCRIPTION_CHANGED_EVENTS:
        return SubscriptionChanged(event_type, parse_subscription(obj))
    if event_type in SUBSCRIPTION_ENDED_EVENTS:
        return SubscriptionEnded(
            event_type,
            parse_subscription(obj),
            SUBSCRIPTION_ENDED_EVENTS[event_type],
        )
    if event_type == "customer.subscription.trial_will_end":
        return TrialEnding(event_type, parse_subscription(obj), from_timestamp(obj.get("trial_end")))
    if event_type == "invoice.payment_succeeded":
        return PaymentSucceeded(
            event_type,
            _invoice_subscription_id(obj),
            obj.get("customer"),
            _invoice_period_end(obj),
        )
    if event_type == "invoice.payment_failed":
        return PaymentFailed(event_type, _invoice_subscription_id(obj), obj.get("customer"))
    if event_type == "checkout.session.completed":
        return CheckoutCompleted(event_type, parse_checkout_session(obj))
    return Unhandled(event_type)


class WebhookService:
    """Apply verified Stripe events to local subscription state."""

    def __init__(self, db: AsyncSession, billing: BillingProvider | None = None):
        self.db = db
        self.reconciliation = ReconciliationService(db, billing)
        self._handlers: dict[type, Callable[[Any], Awaitable[None]]] = {
            SubscriptionChanged: self._apply_subscription_changed,
            SubscriptionEnded: self._apply_subscription_ended,
            PaymentSucceeded: self._apply_payment_succeeded,
            PaymentFailed: self._apply_payment_failed,
            TrialEnding: self._apply_trial_ending,
            CheckoutCompleted: self._apply_checkout_completed,
            Unhandled: self._apply_unhandled,
        }

    async def handle_event(self, payload: bytes, signature_header: str | None) -> WebhookEvent:
        """
        Verify, parse and apply one webhook delivery.

        Returns:
            The parsed event variant

        Raises:
            WebhookVerificationError: The delivery is not authentic; nothing was written
        """
        event = verify_event(payload, signature_header)
        parsed = parse_event(event)
        logger.info("webhook.received", event_id=event.get("id"), event_type=parsed.event_type)
        await self.apply(parsed)
        return parsed

    async def apply(self, event: WebhookEvent) -> None:
        await self._handlers[type(event)](event)

    async def _owner_by_customer(self, customer_id: str | None) -> uuid.UUID | None:
        if not customer_id:
            return None
        subscription = await subscription_crud.get_subscription_by_customer(self.db, customer_id)
        return subscription.user_id if subscription else None

    async def _owner_by_subscription(
        self, subscription_id: str | None, customer_id: str | None
    ) -> uuid.UUID | None:
        if subscription_id:
            subscription = await subscription_crud.get_subscription_by_stripe_id(
                self.db, subscription_id
            )
            if subscription is not None:
                return subscription.user_id
        return await self._owner_by_customer(customer_id)

    async def _apply_subscription_changed(self, event: SubscriptionChanged) -> None:
        user_id = await self._owner_by_customer(event.subscription.customer_id)
        if user_id is None:
            logger.info(
                "webhook.owner_unknown",
                event_type=event.event_type,
                customer_id=event.subscription.customer_id,
            )
            return

        current = await subscription_crud.get_subscription(self.db, user_id)
        if (
            current is not None
            and current.stripe_subscription_id
            and current.stripe_subscription_id != event.subscription.id
            and map_provider_status(event.subscription) in ENDED_STATUSES
        ):
            # A late update for a subscription the user has already left
            logger.info(
                "webhook.stale_subscription_ignored",
                user_id=str(user_id),
                event_subscription_id=event.subscription.id,
                current_subscription_id=current.stripe_subscription_id,
            )
            return

        await self.reconciliation.reconcile(user_id, subscription_id=event.subscription.id)

    async def _apply_subscription_ended(self, event: SubscriptionEnded) -> None:
        user_id = await self._owner_by_customer(event.subscription.customer_id)
        if user_id is None:
            logger.info(
                "webhook.owner_unknown",
                event_type=event.event_type,
                customer_id=event.subscription.customer_id,
            )
            return

        current = await subscription_crud.get_subscription(self.db, user_id)
        if (
            current is not None
            and current.stripe_subscription_id
            and current.stripe_subscription_id != event.subscription.id
        ):
            # The user has moved on to another subscription
            logger.info(
                "webhook.stale_subscription_ignored",
                user_id=str(user_id),
                event_subscription_id=event.subscription.id,
                current_subscription_id=current.stripe_subscription_id,
            )
            return

        extra = {}
        if event.subscription.current_period_end is not None:
            extra["current_period_end"] = event.subscription.current_period_end
        await self.reconciliation.downgrade_to_free(user_id, event.status, **extra)

    async def _apply_payment_succeeded(self, event: PaymentSucceeded) -> None:
        if not event.subscription_id:
            return
        user_id = await self._owner_by_subscription(event.subscription_id, event.customer_id)
        if user_id is None:
            logger.info("webhook.owner_unknown", event_type=event.event_type)
            return
        await self.reconciliation.mark_payment_succeeded(user_id, event.period_end)

    async def _apply_payment_failed(self, event: PaymentFailed) -> None:
        user_id = await self._owner_by_subscription(event.subscription_id, event.customer_id)
        if user_id is None:
            logger.info("webhook.owner_unknown", event_type=event.event_type)
            return
        await self.reconciliation.mark_past_due(user_id)

    async def _apply_trial_ending(self, event: TrialEnding) -> None:
        user_id = await self._owner_by_subscription(
            event.subscription.id, event.subscription.customer_id
        )
        if user_id is None or event.trial_end is None:
            return
        await self.reconciliation.record_trial_end(user_id, event.trial_end)

    async def _apply_checkout_completed(self, event: CheckoutCompleted) -> None:
        session = event.session
        raw_user_id = session.metadata.get("userId")
        if session.payment_status != "paid" or not raw_user_id:
            logger.info(
                "webhook.checkout_not_actionable",
                session_id=session.id,
                payment_status=session.payment_status,
            )
            return

        try:
            user_id = uuid.UUID(raw_user_id)
        except ValueError:
            logger.warning("webhook.checkout_bad_user_id", session_id=session.id)
            return

        await self.reconciliation.record_paid_checkout(user_id, session)

    async def _apply_unhandled(self, event: Unhandled) -> None:
        logger.debug("webhook.ignored", event_type=event.event_type)

