"""Usage ledger: plan quotas for recipe generations and saved recipes.

Counters live on the profile row. Every check-and-increment is a single
conditional UPDATE, so two concurrent requests can never both take the last
slot. Releases undo an increment when the work it paid for failed.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.clock import ensure_utc, month_start, utcnow
from dinner_surprise.core.config import settings
from dinner_surprise.core.errors import CompensationError, ProfileNotFoundError
from dinner_surprise.crud import profile as profile_crud
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.models.profile import Profile
from dinner_surprise.models.subscription_plan import PlanType, get_plan_limits
from dinner_surprise.models.user_subscription import UserSubscription
from dinner_surprise.services.reconciliation_service import effective_plan_type

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UsageDecision:
    """Outcome of a check-and-increment."""

    allowed: bool
    plan_type: PlanType
    used: int
    limit: int | None


@dataclass(frozen=True)
class UsageSummary:
    plan_type: PlanType
    monthly_usage: int
    monthly_limit: int | None
    saved_recipes_count: int
    saved_recipes_limit: int | None
    period_start: datetime


def usage_window_start(
    plan_type: PlanType,
    subscription: UserSubscription | None,
    now: datetime,
) -> datetime:
    """
    Start of the window ``monthly_usage`` currently counts.

    ``calendar_month`` resets on the first of each UTC month. ``billing_period``
    follows the Stripe billing period for paid plans and falls back to the
    calendar month otherwise.
    """
    if settings.USAGE_RESET_POLICY == "billing_period" and plan_type.is_paid and subscription:
        period_start = ensure_utc(subscription.current_period_start)
        if period_start is not None and period_start <= now:
            return period_start
    return month_start(now)


class UsageLedger:
    """Quota accounting for a user's profile counters."""

    def __init__(self, db: AsyncSession):
        """Initialize usage ledger.

        Args:
            db: Database session
        """
        self.db = db

    async def _resolve_plan(self, user_id: uuid.UUID) -> tuple[PlanType, datetime]:
        """Effective plan and current usage window of a user."""
        now = utcnow()
        subscription = await subscription_crud.get_subscription(self.db, user_id)
        tier = await profile_crud.get_tier(self.db, user_id)
        if tier is None:
            raise ProfileNotFoundError(f"Profile {user_id} not found")

        if subscription is not None:
            plan_type = effective_plan_type(
                subscription.plan_type,
                subscription.status,
                subscription.current_period_end,
                now,
            )
        else:
            plan_type = tier
        return plan_type, usage_window_start(plan_type, subscription, now)

    async def _reset_if_new_period(self, user_id: uuid.UUID, window_start: datetime) -> None:
        result = await self.db.execute(
            update(Profile)
            .where(
                Profile.id == user_id,
                or_(
                    Profile.usage_period_start.is_(None),
                    Profile.usage_period_start < window_start,
                ),
            )
            .values(monthly_usage=0, usage_period_start=window_start)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                "usage.period_reset",
                user_id=str(user_id),
                period_start=window_start.isoformat(),
            )

    async def _counter(self, user_id: uuid.UUID, column) -> int:
        result = await self.db.execute(select(column).where(Profile.id == user_id))
        return result.scalar_one()

    async def try_consume_generation(self, user_id: uuid.UUID) -> UsageDecision:
        """
        Take one recipe generation from the user's monthly quota.

        Args:
            user_id: User requesting a generation

        Returns:
            UsageDecision; ``allowed`` is False when the quota is used up

        Raises:
            ProfileNotFoundError: The user has no profile
        """
        plan_type, window_start = await self._resolve_plan(user_id)
        limit = get_plan_limits(plan_type).monthly_generations

        await self._reset_if_new_period(user_id, window_start)

        stmt = update(Profile).where(Profile.id == user_id)
        if limit is not None:
            stmt = stmt.where(Profile.monthly_usage < limit)
        result = await self.db.execute(
            stmt.values(monthly_usage=Profile.monthly_usage + 1).execution_options(
                synchronize_session=False
            )
        )
        await self.db.commit()

        allowed = result.rowcount == 1
        used = await self._counter(user_id, Profile.monthly_usage)
        if not allowed:
            logger.info(
                "usage.generation_quota_exceeded",
                user_id=str(user_id),
                plan_type=plan_type.value,
                used=used,
                limit=limit,
            )
        return UsageDecision(allowed=allowed, plan_type=plan_type, used=used, limit=limit)

    async def try_save_item(self, user_id: uuid.UUID) -> UsageDecision:
        """Take one saved-recipe slot. Saved recipes do not reset with the period."""
        plan_type, _ = await self._resolve_plan(user_id)
        limit = get_plan_limits(plan_type).saved_recipes

        stmt = update(Profile).where(Profile.id == user_id)
        if limit is not None:
            stmt = stmt.where(Profile.saved_recipes_count < limit)
        result = await self.db.execute(
            stmt.values(saved_recipes_count=Profile.saved_recipes_count + 1).execution_options(
                synchronize_session=False
            )
        )
        await self.db.commit()

        allowed = result.rowcount == 1
        used = await self._counter(user_id, Profile.saved_recipes_count)
        if not allowed:
            logger.info(
                "usage.save_quota_exceeded",
                user_id=str(user_id),
                plan_type=plan_type.value,
                used=used,
                limit=limit,
            )
        return UsageDecision(allowed=allowed, plan_type=plan_type, used=used, limit=limit)

    async def _release(self, user_id: uuid.UUID, column, counter_name: str) -> None:
        try:
            await self.db.execute(
                update(Profile)
                .where(Profile.id == user_id, column > 0)
                .values({column: column - 1})
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "usage.compensation_failed",
                user_id=str(user_id),
                counter=counter_name,
                error=str(e),
            )
            raise CompensationError(
                f"Failed to release {counter_name} for user {user_id}",
                context={"user_id": str(user_id), "counter": counter_name},
            ) from e

        logger.info("usage.released", user_id=str(user_id), counter=counter_name)

    async def release_generation(self, user_id: uuid.UUID) -> None:
        """Give back a generation whose AI call failed. Never goes below zero."""
        await self._release(user_id, Profile.monthly_usage, "monthly_usage")

    async def release_saved_item(self, user_id: uuid.UUID) -> None:
        """Give back a saved-recipe slot (failed save or deleted recipe)."""
        await self._release(user_id, Profile.saved_recipes_count, "saved_recipes_count")

    async def get_usage(self, user_id: uuid.UUID) -> UsageSummary:
        """Current counters and limits without writing anything."""
        plan_type, window_start = await self._resolve_plan(user_id)
        profile = await profile_crud.get_profile(self.db, user_id, refresh=True)
        limits = get_plan_limits(plan_type)

        period_start = ensure_utc(profile.usage_period_start)
        monthly_usage = profile.monthly_usage
        if period_start is None or period_start < window_start:
            monthly_usage = 0

        return UsageSummary(
            plan_type=plan_type,
            monthly_usage=monthly_usage,
            monthly_limit=limits.monthly_generations,
            saved_recipes_count=profile.saved_recipes_count,
            saved_recipes_limit=limits.saved_recipes,
            period_start=window_start,
        )
