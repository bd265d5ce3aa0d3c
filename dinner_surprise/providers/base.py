"""Base abstract class for billing provider implementations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class BillingSubscription:
    """Provider-side view of a subscription, reduced to what plan derivation needs."""

    id: str
    customer_id: str | None
    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    price_id: str | None
    price_name: str | None  # product name, else price nickname
    plan_type_hint: str | None  # metadata.planType set at checkout


@dataclass(frozen=True)
class CheckoutSessionInfo:
    """Provider-side view of a checkout session."""

    id: str
    url: str | None
    payment_status: str | None
    customer_id: str | None
    subscription_id: str | None
    metadata: dict[str, str] = field(default_factory=dict)


class BillingProvider(ABC):
    """
    Abstract billing provider.

    Implementations must distinguish "the subscription does not exist"
    (``BillingSubscriptionNotFound``) from transient failures
    (``BillingProviderError``). Callers rely on that distinction to decide
    whether a user should be downgraded.
    """

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> BillingSubscription:
        """
        Fetch a subscription with its price and product.

        Raises:
            BillingSubscriptionNotFound: Provider reports no such subscription
            BillingProviderError: Network failure, timeout, rate limit, 5xx
        """

    @abstractmethod
    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool = True
    ) -> BillingSubscription:
        """Schedule (or unschedule) cancellation at the end of the current period."""

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionInfo:
        """Fetch a checkout session. Unknown ids raise ``ValueError``."""

    @abstractmethod
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
        """Create a subscription-mode checkout session tagged with the user."""

    @abstractmethod
    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a customer portal session and return its URL."""
