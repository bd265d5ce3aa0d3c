"""Checkout, payment verification, cancellation and customer portal."""

import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import AuthorizationError, BillingSubscriptionNotFound
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.models.subscription_plan import SubscriptionStatus
from dinner_surprise.providers.base import BillingProvider, CheckoutSessionInfo
from dinner_surprise.services.reconciliation_service import (
    ReconciliationService,
    SubscriptionState,
    is_manual_subscription_id,
)

logger = structlog.get_logger(__name__)

PRICE_ID_SETTINGS = {
    ("premium", "monthly"): "STRIPE_PRICE_ID_PREMIUM_MONTHLY",
    ("premium", "yearly"): "STRIPE_PRICE_ID_PREMIUM_YEARLY",
    ("family", "monthly"): "STRIPE_PRICE_ID_FAMILY_MONTHLY",
    ("family", "yearly"): "STRIPE_PRICE_ID_FAMILY_YEARLY",
}


def get_price_id(plan_type: str, billing_interval: str) -> str:
    """
    Configured Stripe price for a plan and interval.

    Raises:
        ValueError: Unknown combination or price not configured
    """
    setting_name = PRICE_ID_SETTINGS.get((plan_type, billing_interval))
    if setting_name is None:
        raise ValueError(f"Cannot create checkout session for plan '{plan_type}' ({billing_interval})")
    price_id = getattr(settings, setting_name)
    if not price_id:
        raise ValueError(f"Stripe Price ID not configured for plan '{plan_type}' ({billing_interval})")
    return price_id


@dataclass(frozen=True)
class CancellationResult:
    state: SubscriptionState
    message: str


class CheckoutService:
    """Payment entry points. State changes go through ReconciliationService."""

    def __init__(self, db: AsyncSession, billing: BillingProvider):
        """Initialize checkout service.

        Args:
            db: Database session
            billing: Billing provider
        """
        self.db = db
        self.billing = billing
        self.reconciliation = ReconciliationService(db, billing)

    async def create_checkout_session(
        self,
        user_id: uuid.UUID,
        plan_type: str,
        billing_interval: str = "monthly",
        success_url: str | None = None,
        cancel_url: str | None = None,
        customer_email: str | None = None,
    ) -> CheckoutSessionInfo:
        """Create Stripe Checkout Session for subscription purchase.

        Args:
            user_id: Purchasing user
            plan_type: 'premium' or 'family'
            billing_interval: 'monthly' or 'yearly'
            success_url: URL to redirect after successful payment
            cancel_url: URL to redirect if user cancels
            customer_email: Prefills checkout for users without a Stripe customer

        Returns:
            CheckoutSessionInfo with id and url

        Raises:
            ValueError: If plan is invalid or its price is not configured
        """
        price_id = get_price_id(plan_type, billing_interval)
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        customer_id = subscription.stripe_customer_id if subscription else None

        session = await self.billing.create_checkout_session(
            price_id=price_id,
            user_id=str(user_id),
            plan_type=plan_type,
            success_url=success_url
            or f"{settings.FRONTEND_URL}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{settings.FRONTEND_URL}/pricing",
            customer_id=customer_id,
            customer_email=customer_email,
        )
        logger.info(
            "checkout.session_created",
            user_id=str(user_id),
            plan_type=plan_type,
            billing_interval=billing_interval,
            session_id=session.id,
        )
        return session

    async def verify_payment(self, user_id: uuid.UUID, session_id: str) -> SubscriptionState:
        """
        Confirm a checkout session after the redirect back from Stripe.

        Covers the window before the checkout webhook arrives; both paths
        converge through the same reconciliation.

        Raises:
            ValueError: Unknown session or payment not completed
            AuthorizationError: Session belongs to another user
        """
        session = await self.billing.retrieve_checkout_session(session_id)
        if session.metadata.get("userId") != str(user_id):
            raise AuthorizationError("Checkout session belongs to another user")
        if session.payment_status != "paid":
            raise ValueError(f"Payment not completed (status: {session.payment_status})")

        return await self.reconciliation.record_paid_checkout(user_id, session)

    async def cancel(self, user_id: uuid.UUID) -> CancellationResult:
        """
        Cancel the user's subscription.

        Manual subscriptions end immediately. Stripe subscriptions are set to
        cancel at the end of the paid period, so the user keeps the plan until
        then. A subscription Stripe no longer knows is downgraded right away.

        Raises:
            ValueError: The user has no subscription to cancel
            BillingProviderError: Stripe unreachable; nothing was written
        """
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        if subscription is None or not subscription.stripe_subscription_id:
            raise ValueError("No active subscription to cancel")

        subscription_id = subscription.stripe_subscription_id
        if is_manual_subscription_id(subscription_id):
            state = await self.reconciliation.downgrade_to_free(user_id, SubscriptionStatus.INACTIVE)
            return CancellationResult(state, "Manual subscription successfully canceled")

        try:
            await self.billing.set_cancel_at_period_end(subscription_id, True)
        except BillingSubscriptionNotFound:
            state = await self.reconciliation.downgrade_to_free(user_id, SubscriptionStatus.CANCELED)
            return CancellationResult(state, "Subscription not found in Stripe, marked as canceled")

        state = await self.reconciliation.reconcile(user_id)
        return CancellationResult(
            state,
            "Subscription has been scheduled to cancel at the end of the billing period",
        )

    async def create_portal_session(self, user_id: uuid.UUID, return_url: str | None = None) -> str:
        """Create Stripe Customer Portal Session.

        Raises:
            ValueError: If user has no Stripe customer ID
        """
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        if subscription is None or not subscription.stripe_customer_id:
            raise ValueError("User has no Stripe customer ID")

        url = await self.billing.create_portal_session(
            subscription.stripe_customer_id,
            return_url or f"{settings.FRONTEND_URL}/profile?tab=subscription",
        )
        logger.info("checkout.portal_session_created", user_id=str(user_id))
        return url
