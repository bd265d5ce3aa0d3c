"""CRUD operations for Profile, including the tier mirror."""

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.models.profile import Profile
from dinner_surprise.models.subscription_plan import PlanType, parse_plan_type


async def get_profile(
    db: AsyncSession, user_id: uuid.UUID, *, refresh: bool = False
) -> Profile | None:
    """
    Get a profile by user id.

    Args:
        db: Database session
        user_id: Supabase auth user id
        refresh: Re-read column values even if the row is already loaded

    Returns:
        Profile object or None if not found
    """
    stmt = select(Profile).where(Profile.id == user_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_profiles(db: AsyncSession) -> list[Profile]:
    result = await db.execute(select(Profile).order_by(Profile.created_at))
    return list(result.scalars().all())


async def get_stored_tier(db: AsyncSession, user_id: uuid.UUID) -> str | None:
    """Raw ``profiles.tier`` value, or None when the user has no profile."""
    result = await db.execute(select(Profile.tier).where(Profile.id == user_id))
    return result.scalar_one_or_none()


def tier_from_stored(stored: str | None) -> PlanType | None:
    if stored is None:
        return None
    return parse_plan_type(stored) or PlanType.FREE


async def get_tier(db: AsyncSession, user_id: uuid.UUID) -> PlanType | None:
    """
    Read the mirrored tier of a user.

    Returns:
        PlanType, or None when the user has no profile. Unknown stored values
        read as FREE.
    """
    return tier_from_stored(await get_stored_tier(db, user_id))


async def set_tier(db: AsyncSession, user_id: uuid.UUID, plan_type: PlanType) -> bool:
    """
    Write the mirrored tier.

    Must only be called from the reconciliation write path, which pairs it
    with the subscription write. Flushes without committing.

    Returns:
        True if a profile row was updated
    """
    result = await db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(tier=PlanType(plan_type).value)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1
