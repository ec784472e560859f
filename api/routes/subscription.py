"""Subscription management routes."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import PlanType
from core.rate_limit import (
    RateLimited,
    StripePaymentRateLimited,
    StripeSubscriptionRateLimited,
)
from core.subscription import get_current_kine
from database.connection import get_db_session
from database.models import Kine
from database.service import DatabaseService
from schemas.subscription import (
    CancelSubscriptionResponse,
    CheckoutRequest,
    CheckoutResponse,
    PlanAvailabilityResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionStatusResponse,
)
from services.subscription_service import SubscriptionService

router = APIRouter()


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: Request,
    checkout_request: CheckoutRequest,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: StripePaymentRateLimited = None,
) -> CheckoutResponse:
    """
    Create a Stripe checkout session, or change plan.

    A kiné whose subscription is still running is moved to the new plan in
    place instead of buying a second subscription.
    """
    subscription_service = SubscriptionService(db_session)
    session_data = await subscription_service.create_checkout_session(
        kine=kine,
        plan=checkout_request.plan_type,
        referral_code=checkout_request.referral_code,
        success_url=checkout_request.success_url,
        cancel_url=checkout_request.cancel_url,
    )
    return CheckoutResponse(**session_data)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    request: Request,
    portal_request: PortalRequest,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: StripePaymentRateLimited = None,
) -> PortalResponse:
    """Open the Stripe billing portal."""
    url = await SubscriptionService(db_session).create_portal_session(
        kine, portal_request.return_url
    )
    return PortalResponse(url=url)


@router.post("/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: StripeSubscriptionRateLimited = None,
) -> CancelSubscriptionResponse:
    """
    Cancel the kiné's subscription.

    The subscription will be canceled at the end of the current billing period,
    so the kiné retains access until then.
    """
    result = await SubscriptionService(db_session).cancel_subscription(kine)
    return CancelSubscriptionResponse(
        success=bool(result["success"]), message=str(result["message"])
    )


@router.post("/reactivate", response_model=CancelSubscriptionResponse)
async def reactivate_subscription(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: StripeSubscriptionRateLimited = None,
) -> CancelSubscriptionResponse:
    """Undo a pending cancellation."""
    result = await SubscriptionService(db_session).reactivate_subscription(kine)
    return CancelSubscriptionResponse(
        success=bool(result["success"]), message=str(result["message"])
    )


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> SubscriptionStatusResponse:
    """Get the current kiné's subscription status."""
    subscription = await DatabaseService(db_session).get_subscription_for_kine(kine.id)
    if subscription is None:
        return SubscriptionStatusResponse(stripe_customer_id=kine.stripe_customer_id)

    return SubscriptionStatusResponse(
        plan_type=subscription.plan_type,
        status=subscription.status,
        current_period_end=subscription.current_period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
        stripe_customer_id=kine.stripe_customer_id,
    )


@router.get("/plans/{plan_type}/availability", response_model=PlanAvailabilityResponse)
async def get_plan_availability(
    plan_type: PlanType,
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> PlanAvailabilityResponse:
    """Remaining slots of a plan. Public, used by the pricing page."""
    availability = await SubscriptionService(db_session).plan_availability(plan_type)
    return PlanAvailabilityResponse(**availability)
