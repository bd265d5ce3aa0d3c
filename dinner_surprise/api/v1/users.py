"""User subscription endpoints: sync, status and downgrade."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.api.deps import CurrentUserId, ensure_same_user, get_billing_provider
from dinner_surprise.core.database import get_db
from dinner_surprise.core.rate_limit import sync_limit
from dinner_surprise.crud import profile as profile_crud
from dinner_surprise.crud import subscription as subscription_crud
from dinner_surprise.providers.base import BillingProvider
from dinner_surprise.schemas.subscription import (
    DowngradeRequest,
    SubscriptionResponse,
    SyncSubscriptionRequest,
    SyncSubscriptionResponse,
    UsageResponse,
    UserSubscriptionResponse,
)
from dinner_surprise.services.reconciliation_service import (
    ReconciliationService,
    SubscriptionState,
)
from dinner_surprise.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])


@router.post("/sync-subscription", response_model=SyncSubscriptionResponse)
@sync_limit
async def sync_subscription(
    request: Request,
    response: Response,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    billing: Annotated[BillingProvider, Depends(get_billing_provider)],
    body: SyncSubscriptionRequest | None = None,
) -> SyncSubscriptionResponse:
    """Reconcile the caller's subscription with Stripe.

    Safe to call on every login; nothing is written when the stored state
    already matches.

    Raises:
        HTTPException: 403 if the body names another user
    """
    ensure_same_user(body.userId if body else None, current_user_id)

    service = ReconciliationService(db, billing)
    state = await service.reconcile(current_user_id)
    logger.info(
        f"Synced subscription for user {current_user_id}: "
        f"{state.plan_type.value}/{state.status.value}"
    )
    return SyncSubscriptionResponse(subscription=SubscriptionResponse.from_state(state))


@router.get("/subscription", response_model=UserSubscriptionResponse)
async def get_user_subscription(
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserSubscriptionResponse:
    """Get the caller's stored subscription and quota usage.

    Reads local state only; call sync-subscription to refresh from Stripe.
    """
    subscription = await subscription_crud.get_subscription(db, current_user_id)
    tier = await profile_crud.get_tier(db, current_user_id)
    if subscription is None:
        state = SubscriptionState.default(current_user_id)
    else:
        state = SubscriptionState.from_record(subscription, tier)

    usage = await UsageLedger(db).get_usage(current_user_id)
    return UserSubscriptionResponse(
        subscription=SubscriptionResponse.from_state(state),
        usage=UsageResponse.from_summary(usage),
    )


@router.post("/downgrade-to-free", response_model=SyncSubscriptionResponse)
async def downgrade_to_free(
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    body: DowngradeRequest | None = None,
) -> SyncSubscriptionResponse:
    """Force the caller onto the free plan.

    Stripe references are kept on the record.

    Raises:
        HTTPException: 403 if the body names another user, 404 if the user has no profile
    """
    ensure_same_user(body.userId if body else None, current_user_id)

    profile = await profile_crud.get_profile(db, current_user_id)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    service = ReconciliationService(db)
    state = await service.downgrade_to_free(current_user_id)
    logger.info(f"User {current_user_id} downgraded to free")
    return SyncSubscriptionResponse(subscription=SubscriptionResponse.from_state(state))
