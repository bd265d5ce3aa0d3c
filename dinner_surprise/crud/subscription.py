"""CRUD operations for UserSubscription (the subscription record store).

These functions flush but never commit; the reconciliation write path owns
the transaction so the subscription row and the profile tier land together.
"""

import uuid
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.core.clock import utcnow
from dinner_surprise.models.user_subscription import UserSubscription

# Columns a patch may touch; identity and timestamps are managed here
PATCHABLE_FIELDS = frozenset(
    {
        "plan_type",
        "status",
        "stripe_customer_id",
        "stripe_subscription_id",
        "price_id",
        "current_period_start",
        "current_period_end",
        "cancel_at_period_end",
        "trial_end",
        "canceled_at",
    }
)


def _normalize(patch: dict[str, Any]) -> dict[str, Any]:
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
    return {
        field: value.value if isinstance(value, Enum) else value
        for field, value in patch.items()
    }


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")


async def get_subscription(
    db: AsyncSession, user_id: uuid.UUID, *, refresh: bool = False
) -> UserSubscription | None:
    """
    Get the subscription record of a user.

    Args:
        db: Database session
        user_id: Owner of the record
        refresh: Re-read column values even if the row is already loaded

    Returns:
        UserSubscription or None if the user has no record
    """
    stmt = select(UserSubscription).where(UserSubscription.user_id == user_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_subscription_by_customer(
    db: AsyncSession, stripe_customer_id: str
) -> UserSubscription | None:
    """Find the record owning a Stripe customer id."""
    result = await db.execute(
        select(UserSubscription)
        .where(UserSubscription.stripe_customer_id == stripe_customer_id)
        .order_by(UserSubscription.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_id(
    db: AsyncSession, stripe_subscription_id: str
) -> UserSubscription | None:
    """Find the record holding a Stripe subscription id."""
    result = await db.execute(
        select(UserSubscription)
        .where(UserSubscription.stripe_subscription_id == stripe_subscription_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_subscriptions(db: AsyncSession) -> list[UserSubscription]:
    result = await db.execute(select(UserSubscription).order_by(UserSubscription.created_at))
    return list(result.scalars().all())


async def upsert_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    patch: dict[str, Any],
) -> UserSubscription:
    """
    Create the user's record if absent, otherwise merge ``patch`` into it.

    Only the fields present in ``patch`` are written, so concurrent writers
    touching different fields do not overwrite each other. Creation uses
    ``INSERT ... ON CONFLICT DO NOTHING`` on the unique ``user_id`` so two
    concurrent first writes still yield a single row.

    Args:
        db: Database session
        user_id: Owner of the record
        patch: Field values to set

    Returns:
        The stored UserSubscription
    """
    values = _normalize(patch)
    insert = _insert_for(db)

    stmt = (
        insert(UserSubscription)
        .values(id=uuid.uuid4(), user_id=user_id, **values)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    result = await db.execute(stmt)

    subscription = await get_subscription(db, user_id, refresh=True)
    if subscription is None:
        raise RuntimeError(f"Subscription for user {user_id} vanished during upsert")

    if result.rowcount == 1:
        return subscription

    for field, value in values.items():
        setattr(subscription, field, value)
    subscription.updated_at = utcnow()
    await db.flush()
    return subscription
