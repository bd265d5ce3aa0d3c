"""Subscription plan definitions (Free, Premium, Family) and status values."""

from dataclasses import dataclass
from enum import Enum

from dinner_surprise.core.config import settings


class PlanType(str, Enum):
    """Tier a user is entitled to."""

    FREE = "free"
    PREMIUM = "premium"
    FAMILY = "family"

    @property
    def is_paid(self) -> bool:
        return self is not PlanType.FREE


class SubscriptionStatus(str, Enum):
    """Local subscription status.

    Mirrors Stripe's vocabulary except ``inactive`` (free / manual records)
    and ``active_until_period_end`` (canceled at Stripe, still paid up).
    """

    INACTIVE = "inactive"
    ACTIVE = "active"
    ACTIVE_UNTIL_PERIOD_END = "active_until_period_end"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"
    TRIALING = "trialing"


# Statuses that never entitle a user to a paid plan
ENDED_STATUSES = {
    SubscriptionStatus.INACTIVE,
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.PAUSED,
}


@dataclass(frozen=True)
class PlanLimits:
    """Quota ceilings for a plan. ``None`` means unlimited."""

    monthly_generations: int | None
    saved_recipes: int | None


def get_plan_limits(plan_type: PlanType) -> PlanLimits:
    """Return quota ceilings for a plan type."""
    if plan_type is PlanType.FREE:
        return PlanLimits(
            monthly_generations=settings.FREE_MONTHLY_GENERATIONS,
            saved_recipes=settings.FREE_SAVED_RECIPES,
        )
    return PlanLimits(
        monthly_generations=None,
        saved_recipes=settings.PAID_SAVED_RECIPES,
    )


def parse_plan_type(value: str | None) -> PlanType | None:
    """Parse a plan type string, returning None for unknown values."""
    if not value:
        return None
    try:
        return PlanType(str(value).strip().lower())
    except ValueError:
        return None
