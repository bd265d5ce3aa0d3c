"""Subscription request/response schemas."""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubscriptionResponse(BaseModel):
    """Resolved subscription of a user."""

    user_id: UUID
    plan_type: str = Field(..., description="Plan type (free, premium, family)")
    effective_plan_type: str = Field(
        ..., description="Plan that quotas are computed from right now"
    )
    status: str = Field(
        ...,
        description=(
            "Subscription status (inactive, active, active_until_period_end, "
            "past_due, canceled, paused, trialing)"
        ),
    )
    stripe_customer_id: Optional[str] = Field(None, description="Stripe customer ID")
    stripe_subscription_id: Optional[str] = Field(None, description="Stripe subscription ID")
    price_id: Optional[str] = Field(None, description="Stripe price ID")
    current_period_start: Optional[datetime] = Field(
        None, description="Current billing period start"
    )
    current_period_end: Optional[datetime] = Field(
        None, description="Current billing period end"
    )
    cancel_at_period_end: bool = Field(
        False, description="Subscription will cancel at period end"
    )
    trial_end: Optional[datetime] = Field(None, description="Trial end")
    canceled_at: Optional[datetime] = Field(None, description="Cancellation timestamp")

    class Config:
        """Pydantic config."""

        from_attributes = True

    @classmethod
    def from_state(cls, state: Any) -> "SubscriptionResponse":
        """Build from a reconciliation SubscriptionState."""
        return cls(
            user_id=state.user_id,
            plan_type=state.plan_type.value,
            effective_plan_type=state.effective_plan_type.value,
            status=state.status.value,
            stripe_customer_id=state.stripe_customer_id,
            stripe_subscription_id=state.stripe_subscription_id,
            price_id=state.price_id,
            current_period_start=state.current_period_start,
            current_period_end=state.current_period_end,
            cancel_at_period_end=state.cancel_at_period_end,
            trial_end=state.trial_end,
            canceled_at=state.canceled_at,
        )


class UsageResponse(BaseModel):
    """Quota usage of a user."""

    plan_type: str
    monthly_usage: int = Field(..., description="Recipe generations this period")
    monthly_limit: Optional[int] = Field(
        None, description="Generations per period (null = unlimited)"
    )
    saved_recipes_count: int
    saved_recipes_limit: Optional[int] = Field(
        None, description="Saved recipes allowed (null = unlimited)"
    )
    period_start: datetime

    class Config:
        """Pydantic config."""

        from_attributes = True

    @classmethod
    def from_summary(cls, summary: Any) -> "UsageResponse":
        """Build from a UsageLedger UsageSummary."""
        return cls(
            plan_type=summary.plan_type.value,
            monthly_usage=summary.monthly_usage,
            monthly_limit=summary.monthly_limit,
            saved_recipes_count=summary.saved_recipes_count,
            saved_recipes_limit=summary.saved_recipes_limit,
            period_start=summary.period_start,
        )


class UserSubscriptionResponse(BaseModel):
    """Subscription plus quota usage."""

    subscription: SubscriptionResponse
    usage: UsageResponse


class SyncSubscriptionRequest(BaseModel):
    """Optional body of the sync endpoint. ``userId`` must match the caller."""

    userId: Optional[UUID] = None


class SyncSubscriptionResponse(BaseModel):
    success: bool = True
    subscription: SubscriptionResponse


class DowngradeRequest(BaseModel):
    userId: Optional[UUID] = None


class CreateCheckoutSessionRequest(BaseModel):
    """Request to create Stripe Checkout Session."""

    plan_type: Literal["premium", "family"] = Field(..., description="Plan to subscribe to")
    billing_interval: Literal["monthly", "yearly"] = Field(
        "monthly", description="Billing interval"
    )
    success_url: Optional[str] = Field(
        None, description="URL to redirect after successful payment"
    )
    cancel_url: Optional[str] = Field(None, description="URL to redirect if user cancels")


class CreateCheckoutSessionResponse(BaseModel):
    """Response with Stripe Checkout Session details."""

    session_id: str = Field(..., description="Stripe Checkout Session ID")
    url: str = Field(..., description="Stripe Checkout URL")


class VerifyPaymentRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Stripe Checkout Session ID")


class CreatePortalSessionRequest(BaseModel):
    """Request to create Stripe Customer Portal Session."""

    return_url: Optional[str] = Field(
        None, description="URL to return to after portal session"
    )


class CreatePortalSessionResponse(BaseModel):
    """Response with Stripe Customer Portal Session details."""

    url: str = Field(..., description="Stripe Customer Portal URL")
