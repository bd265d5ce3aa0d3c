"""Subscription purchase and management endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dinner_surprise.api.deps import CurrentUserId, get_billing_provider
from dinner_surprise.core.database import get_db
from dinner_surprise.providers.base import BillingProvider
from dinner_surprise.schemas.subscription import (
    CreateCheckoutSessionRequest,
    CreateCheckoutSessionResponse,
    CreatePortalSessionRequest,
    CreatePortalSessionResponse,
    SubscriptionResponse,
    SyncSubscriptionResponse,
    VerifyPaymentRequest,
)
from dinner_surprise.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post(
    "/create-checkout-session",
    response_model=CreateCheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout_session(
    request: CreateCheckoutSessionRequest,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    billing: Annotated[BillingProvider, Depends(get_billing_provider)],
) -> CreateCheckoutSessionResponse:
    """Create Stripe Checkout Session for subscription purchase.

    Args:
        request: Checkout session request with plan and interval

    Returns:
        Checkout session ID and URL

    Raises:
        HTTPException: If plan is invalid or its price is not configured
    """
    service = CheckoutService(db, billing)

    try:
        session = await service.create_checkout_session(
            user_id=current_user_id,
            plan_type=request.plan_type,
            billing_interval=request.billing_interval,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(
        f"Created checkout session for user {current_user_id}: "
        f"{request.plan_type} ({request.billing_interval})"
    )
    return CreateCheckoutSessionResponse(session_id=session.id, url=session.url)


@router.post("/verify-payment", response_model=SyncSubscriptionResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    billing: Annotated[BillingProvider, Depends(get_billing_provider)],
) -> SyncSubscriptionResponse:
    """Confirm a checkout session after the redirect back from Stripe.

    Raises:
        HTTPException: 400 if the session is unknown or not paid yet
    """
    service = CheckoutService(db, billing)

    try:
        state = await service.verify_payment(current_user_id, request.session_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Verified payment for user {current_user_id}: {state.plan_type.value}")
    return SyncSubscriptionResponse(subscription=SubscriptionResponse.from_state(state))


@router.post("/cancel")
async def cancel_subscription(
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    billing: Annotated[BillingProvider, Depends(get_billing_provider)],
) -> dict:
    """Cancel the caller's subscription.

    Stripe subscriptions stay active until the end of the paid period.

    Raises:
        HTTPException: If there is no subscription to cancel
    """
    service = CheckoutService(db, billing)

    try:
        result = await service.cancel(current_user_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Canceled subscription for user {current_user_id}: {result.state.status.value}")
    return {
        "success": True,
        "message": result.message,
        "subscription": SubscriptionResponse.from_state(result.state).model_dump(mode="json"),
    }


@router.post(
    "/create-portal-session",
    response_model=CreatePortalSessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_portal_session(
    request: CreatePortalSessionRequest,
    current_user_id: CurrentUserId,
    db: Annotated[AsyncSession, Depends(get_db)],
    billing: Annotated[BillingProvider, Depends(get_billing_provider)],
) -> CreatePortalSessionResponse:
    """Create Stripe Customer Portal Session.

    Args:
        request: Portal session request with optional return URL

    Returns:
        Customer Portal URL

    Raises:
        HTTPException: If user has no Stripe customer ID
    """
    service = CheckoutService(db, billing)

    try:
        url = await service.create_portal_session(current_user_id, request.return_url)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return CreatePortalSessionResponse(url=url)
