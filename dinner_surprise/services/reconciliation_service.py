"""Subscription reconciliation: keeps user_subscriptions, Stripe and profiles.tier in agreement.

Every write to a subscription record or to the profile tier goes through
``ReconciliationService._commit_state``. It writes only the fields whose
values changed, so reconciling an unchanged subscription is free and
replaying a webhook is harmless.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.clock import ensure_utc, utcnow
from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import BillingSubscriptionNotFound
from dinner_surprise.crud import profile as profile_crud
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.models.profile import Profile
from dinner_surprise.models.subscription_plan import (
    ENDED_STATUSES,
    PlanType,
    SubscriptionStatus,
    parse_plan_type,
)
from dinner_surprise.models.user_subscription import UserSubscription
from dinner_surprise.providers.base import (
    BillingProvider,
    BillingSubscription,
    CheckoutSessionInfo,
)

logger = structlog.get_logger(__name__)

# Stripe statuses that have no local equivalent
PROVIDER_STATUS_MAP = {
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INACTIVE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def is_manual_subscription_id(subscription_id: str | None) -> bool:
    return bool(subscription_id) and subscription_id.startswith(settings.MANUAL_SUBSCRIPTION_PREFIX)


def is_expired(
    status: SubscriptionStatus | str,
    current_period_end: datetime | None,
    now: datetime | None = None,
) -> bool:
    """True for a cancel-at-period-end subscription whose period is over."""
    if SubscriptionStatus(status) is not SubscriptionStatus.ACTIVE_UNTIL_PERIOD_END:
        return False
    if current_period_end is None:
        return False
    return ensure_utc(current_period_end) <= (now or utcnow())


def effective_plan_type(
    plan_type: PlanType | str,
    status: SubscriptionStatus | str,
    current_period_end: datetime | None,
    now: datetime | None = None,
) -> PlanType:
    """
    Plan a user is entitled to right now.

    An expired cancel-at-period-end subscription counts as free even before
    reconciliation writes the downgrade. Ended statuses never grant a paid plan.
    """
    plan = parse_plan_type(plan_type) or PlanType.FREE
    status = SubscriptionStatus(status)
    if status in ENDED_STATUSES:
        return PlanType.FREE
    if is_expired(status, current_period_end, now):
        return PlanType.FREE
    return plan


def derive_plan_type(remote: BillingSubscription) -> PlanType:
    """
    Derive the plan of a Stripe subscription.

    Precedence: planType metadata, then product or price name keyword
    ("family" before "premium"), then configured price ids, then premium for
    any other paid price, else free.
    """
    hint = parse_plan_type(remote.plan_type_hint)
    if hint is not None and hint.is_paid:
        return hint

    name = (remote.price_name or "").lower()
    if "family" in name:
        return PlanType.FAMILY
    if "premium" in name:
        return PlanType.PREMIUM

    if remote.price_id:
        if remote.price_id in settings.family_price_ids:
            return PlanType.FAMILY
        if remote.price_id in settings.premium_price_ids:
            return PlanType.PREMIUM
        return PlanType.PREMIUM

    return PlanType.FREE


def map_provider_status(remote: BillingSubscription) -> SubscriptionStatus:
    """Translate a Stripe subscription status to the local vocabulary."""
    status = PROVIDER_STATUS_MAP.get(remote.status)
    if status is None:
        try:
            status = SubscriptionStatus(remote.status)
        except ValueError:
            logger.warning("reconcile.unknown_provider_status", status=remote.status)
            status = SubscriptionStatus.INACTIVE

    if remote.cancel_at_period_end and status in (
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.TRIALING,
    ):
        return SubscriptionStatus.ACTIVE_UNTIL_PERIOD_END
    return status


@dataclass(frozen=True)
class SubscriptionState:
    """Resolved subscription of a user as returned by reconciliation."""

    user_id: uuid.UUID
    plan_type: PlanType
    status: SubscriptionStatus
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    price_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    trial_end: datetime | None = None
    canceled_at: datetime | None = None
    tier: PlanType | None = None

    @classmethod
    def default(cls, user_id: uuid.UUID) -> "SubscriptionState":
        return cls(user_id=user_id, plan_type=PlanType.FREE, status=SubscriptionStatus.INACTIVE)

    @classmethod
    def from_record(
        cls, subscription: UserSubscription, tier: PlanType | None
    ) -> "SubscriptionState":
        return cls(
            user_id=subscription.user_id,
            plan_type=PlanType(subscription.plan_type),
            status=SubscriptionStatus(subscription.status),
            stripe_customer_id=subscription.stripe_customer_id,
            stripe_subscription_id=subscription.stripe_subscription_id,
            price_id=subscription.price_id,
            current_period_start=ensure_utc(subscription.current_period_start),
            current_period_end=ensure_utc(subscription.current_period_end),
            cancel_at_period_end=subscription.cancel_at_period_end,
            trial_end=ensure_utc(subscription.trial_end),
            canceled_at=ensure_utc(subscription.canceled_at),
            tier=tier,
        )

    @property
    def effective_plan_type(self) -> PlanType:
        return effective_plan_type(self.plan_type, self.status, self.current_period_end)

    @property
    def is_manual(self) -> bool:
        return is_manual_subscription_id(self.stripe_subscription_id)


@dataclass(frozen=True)
class TierMismatch:
    user_id: uuid.UUID
    plan_type: str
    tier: str


def _normalized(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


def _changed_fields(
    subscription: UserSubscription | None, target: dict[str, Any]
) -> dict[str, Any]:
    if subscription is None:
        return dict(target)
    return {
        field: value
        for field, value in target.items()
        if _normalized(getattr(subscription, field)) != _normalized(value)
    }


class ReconciliationService:
    """Single writer of subscription records and the profile tier mirror."""

    def __init__(self, db: AsyncSession, billing: BillingProvider | None = None):
        """Initialize reconciliation service.

        Args:
            db: Database session
            billing: Billing provider, required for Stripe-backed subscriptions
        """
        self.db = db
        self.billing = billing

    async def reconcile(
        self, user_id: uuid.UUID, subscription_id: str | None = None
    ) -> SubscriptionState:
        """
        Bring the user's subscription record and tier in line with Stripe.

        Stripe-backed subscriptions are re-read from Stripe; manual or
        provider-less ones keep their local values. Either way an expired
        cancel-at-period-end subscription is downgraded and the profile tier
        is mirrored. Nothing is written when nothing changed.

        Args:
            user_id: User to reconcile
            subscription_id: Stripe subscription to link the record to. It is
                read from Stripe first and linked in the same write.

        Returns:
            The resolved SubscriptionState

        Raises:
            BillingProviderError: Stripe could not be reached; nothing was written
        """
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        stored_tier = await profile_crud.get_stored_tier(self.db, user_id)
        tier = profile_crud.tier_from_stored(stored_tier)
        now = utcnow()

        if subscription is None and tier is None:
            return SubscriptionState.default(user_id)

        if subscription is None:
            # Seed from the profile so existing tiers survive the first sync
            target: dict[str, Any] = {
                "plan_type": tier,
                "status": SubscriptionStatus.ACTIVE if tier.is_paid else SubscriptionStatus.INACTIVE,
            }
            logger.info("reconcile.seeding_from_profile", user_id=str(user_id), tier=tier.value)
            return await self._commit_state(user_id, None, stored_tier, target)

        stripe_subscription_id = subscription_id or subscription.stripe_subscription_id
        if stripe_subscription_id and not is_manual_subscription_id(stripe_subscription_id):
            target = await self._state_from_provider(subscription, stripe_subscription_id, now)
            target["stripe_subscription_id"] = stripe_subscription_id
        else:
            target = {}

        status = target.get("status", subscription.status)
        period_end = target.get("current_period_end", subscription.current_period_end)
        if is_expired(status, period_end, now):
            logger.info(
                "reconcile.period_expired",
                user_id=str(user_id),
                current_period_end=str(period_end),
            )
            target.update(
                plan_type=PlanType.FREE,
                status=SubscriptionStatus.CANCELED,
                cancel_at_period_end=False,
            )
            if subscription.canceled_at is None:
                target["canceled_at"] = now

        return await self._commit_state(user_id, subscription, stored_tier, target)

    async def _state_from_provider(
        self, subscription: UserSubscription, stripe_subscription_id: str, now: datetime
    ) -> dict[str, Any]:
        if self.billing is None:
            raise RuntimeError("A billing provider is required to reconcile Stripe subscriptions")

        try:
            remote = await self.billing.retrieve_subscription(stripe_subscription_id)
        except BillingSubscriptionNotFound:
            logger.info(
                "reconcile.subscription_missing_upstream",
                user_id=str(subscription.user_id),
                stripe_subscription_id=stripe_subscription_id,
            )
            target: dict[str, Any] = {
                "plan_type": PlanType.FREE,
                "status": SubscriptionStatus.CANCELED,
                "cancel_at_period_end": False,
            }
            if subscription.canceled_at is None:
                target["canceled_at"] = now
            return target

        status = map_provider_status(remote)
        plan_type = PlanType.FREE if status in ENDED_STATUSES else derive_plan_type(remote)

        target = {
            "plan_type": plan_type,
            "status": status,
            "price_id": remote.price_id,
            "current_period_start": remote.current_period_start,
            "current_period_end": remote.current_period_end,
            "cancel_at_period_end": remote.cancel_at_period_end,
        }
        if remote.customer_id:
            target["stripe_customer_id"] = remote.customer_id
        if status is SubscriptionStatus.CANCELED and subscription.canceled_at is None:
            target["canceled_at"] = now
        return target

    async def _commit_state(
        self,
        user_id: uuid.UUID,
        subscription: UserSubscription | None,
        stored_tier: str | None,
        target: dict[str, Any],
    ) -> SubscriptionState:
        """
        The single write path for subscription records and the tier mirror.

        Upserts only the fields of ``target`` that differ from the stored
        record and mirrors the plan to ``profiles.tier`` only if the stored
        string differs, so a tier saved as "Premium" is rewritten as "premium".
        Commits once when anything was written.
        """
        changes = _changed_fields(subscription, target)
        wrote = False

        if subscription is None or changes:
            subscription = await subscription_crud.upsert_subscription(self.db, user_id, changes)
            wrote = True

        plan_type = PlanType(subscription.plan_type)
        tier: PlanType | None = None
        if stored_tier is None:
            logger.warning("reconcile.profile_missing", user_id=str(user_id))
        else:
            if stored_tier != plan_type.value:
                await profile_crud.set_tier(self.db, user_id, plan_type)
                logger.info(
                    "reconcile.tier_mirrored",
                    user_id=str(user_id),
                    previous_tier=stored_tier,
                    tier=plan_type.value,
                )
                wrote = True
            tier = plan_type

        if wrote:
            await self.db.commit()
            logger.info(
                "reconcile.state_written",
                user_id=str(user_id),
                fields=sorted(changes),
                plan_type=plan_type.value,
                status=subscription.status,
            )

        return SubscriptionState.from_record(subscription, tier)

    async def apply_state(self, user_id: uuid.UUID, **fields: Any) -> SubscriptionState:
        """
        Write explicit field values through the single write path.

        Used by webhook handlers and cancellation for changes that do not come
        from re-reading Stripe.
        """
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        stored_tier = await profile_crud.get_stored_tier(self.db, user_id)
        return await self._commit_state(user_id, subscription, stored_tier, fields)

    async def downgrade_to_free(
        self,
        user_id: uuid.UUID,
        status: SubscriptionStatus = SubscriptionStatus.INACTIVE,
        **extra: Any,
    ) -> SubscriptionState:
        """
        Force the user onto the free plan, keeping Stripe references for audit.

        Args:
            user_id: User to downgrade
            status: Resulting status (inactive, canceled or paused)
            extra: Further fields to write in the same pass
        """
        fields: dict[str, Any] = {
            **extra,
            "plan_type": PlanType.FREE,
            "status": status,
            "cancel_at_period_end": False,
        }
        if status is SubscriptionStatus.CANCELED:
            subscription = await subscription_crud.get_subscription(self.db, user_id)
            if subscription is None or subscription.canceled_at is None:
                fields["canceled_at"] = utcnow()
        logger.info("reconcile.downgrade_to_free", user_id=str(user_id), status=status.value)
        return await self.apply_state(user_id, **fields)

    async def mark_past_due(self, user_id: uuid.UUID) -> SubscriptionState:
        """Payment failed: keep the plan, flag the status."""
        return await self.apply_state(user_id, status=SubscriptionStatus.PAST_DUE)

    async def mark_payment_succeeded(
        self, user_id: uuid.UUID, current_period_end: datetime | None = None
    ) -> SubscriptionState:
        """Invoice paid: the subscription is active and its period may have moved."""
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        status = SubscriptionStatus.ACTIVE
        if subscription is not None and subscription.cancel_at_period_end:
            status = SubscriptionStatus.ACTIVE_UNTIL_PERIOD_END

        fields: dict[str, Any] = {"status": status}
        if current_period_end is not None:
            fields["current_period_end"] = current_period_end
        return await self.apply_state(user_id, **fields)

    async def record_trial_end(self, user_id: uuid.UUID, trial_end: datetime | None) -> SubscriptionState:
        return await self.apply_state(user_id, trial_end=trial_end)

    async def find_tier_mismatches(self) -> list[TierMismatch]:
        """List users whose profile tier disagrees with their subscription plan."""
        result = await self.db.execute(
            select(UserSubscription.user_id, UserSubscription.plan_type, Profile.tier)
            .join(Profile, Profile.id == UserSubscription.user_id)
            .where(Profile.tier != UserSubscription.plan_type)
            .order_by(UserSubscription.user_id)
        )
        return [
            TierMismatch(user_id=row.user_id, plan_type=row.plan_type, tier=row.tier)
            for row in result.all()
        ]

    async def record_paid_checkout(
        self, user_id: uuid.UUID, session: CheckoutSessionInfo
    ) -> SubscriptionState:
        """
        Record a paid checkout session and reconcile against Stripe.

        Shared by the checkout webhook and the payment verification endpoint.
        The planType metadata is written first so it holds even if Stripe
        cannot be reached for the reconcile that follows.
        """
        fields: dict[str, Any] = {"status": SubscriptionStatus.ACTIVE}
        plan_type = parse_plan_type(session.metadata.get("planType"))
        if plan_type is not None and plan_type.is_paid:
            fields["plan_type"] = plan_type
        if session.customer_id:
            fields["stripe_customer_id"] = session.customer_id
        if session.subscription_id:
            fields["stripe_subscription_id"] = session.subscription_id

        await self.apply_state(user_id, **fields)
        logger.info(
            "reconcile.checkout_recorded",
            user_id=str(user_id),
            session_id=session.id,
            plan_type=plan_type.value if plan_type else None,
        )
        return await self.reconcile(user_id)
