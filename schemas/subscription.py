"""Subscription schemas for Stripe integration."""

from datetime import datetime

from pydantic import BaseModel, Field

from core.constants import PlanType


class CheckoutRequest(BaseModel):
    """Request to create a Stripe checkout session or change plan."""

    plan_type: PlanType = Field(..., description="Plan to subscribe to")
    referral_code: str | None = Field(
        default=None, description="Referral code entered at signup", max_length=32
    )
    success_url: str | None = Field(default=None, description="Redirect after payment")
    cancel_url: str | None = Field(default=None, description="Redirect on abort")


class CheckoutResponse(BaseModel):
    """Where to send the browser next."""

    url: str = Field(..., description="Stripe checkout URL or plan change confirmation URL")
    session_id: str | None = Field(None, description="Stripe session ID")
    type: str = Field(..., description="new_checkout or plan_change")


class PortalRequest(BaseModel):
    """Request to open the Stripe billing portal."""

    return_url: str | None = Field(default=None, description="URL to come back to")


class PortalResponse(BaseModel):
    """Stripe billing portal link."""

    url: str = Field(..., description="Billing portal session URL")


class CancelSubscriptionResponse(BaseModel):
    """Response after canceling or reactivating a subscription."""

    success: bool = Field(..., description="Whether the request was accepted")
    message: str = Field(..., description="Result message")


class SubscriptionStatusResponse(BaseModel):
    """Kiné subscription status."""

    plan_type: str | None = Field(None, description="Current plan")
    status: str | None = Field(None, description="Stripe subscription status")
    current_period_end: datetime | None = Field(None, description="End of the paid period")
    cancel_at_period_end: bool = Field(
        False, description="Whether the subscription stops at period end"
    )
    stripe_customer_id: str | None = Field(None, description="Stripe customer ID")


class PlanAvailabilityResponse(BaseModel):
    """Remaining slots of a plan."""

    plan_type: str
    available: bool
    unlimited: bool
    max_slots: int | None = None
    used_slots: int | None = None
    remaining_slots: int | None = None
