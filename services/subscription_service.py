"""Stripe subscription service."""

import logging
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.constants import PIONNIER_MAX_SLOTS, PlanType, SubscriptionStatus
from core.exceptions import ExternalAPIError, NotFoundError, ValidationError
from database.models import Kine, Subscription
from database.service import DatabaseService
from services.referral_service import ReferralService, is_self_referral
from utils.log_sanitizer import sanitize_id

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.stripe_api_key

# A subscription in these states is changed in place rather than bought again
CHANGEABLE_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.PAST_DUE.value,
    }
)


class SubscriptionService:
    """Service for managing Stripe subscriptions."""

    def __init__(self, db_session: AsyncSession) -> None:
        """Initialize subscription service."""
        self.db_session = db_session
        self.db_service = DatabaseService(db_session)

    async def plan_availability(self, plan: PlanType) -> dict[str, Any]:
        """Remaining slots of a limited plan."""
        if plan != PlanType.PIONNIER:
            return {"plan_type": plan.value, "available": True, "unlimited": True}

        taken = await self.db_service.count_plan_subscriptions(PlanType.PIONNIER)
        remaining = max(0, PIONNIER_MAX_SLOTS - taken)
        return {
            "plan_type": plan.value,
            "available": remaining > 0,
            "unlimited": False,
            "max_slots": PIONNIER_MAX_SLOTS,
            "used_slots": taken,
            "remaining_slots": remaining,
        }

    async def _ensure_customer(self, kine: Kine) -> str:
        """Return the kiné's Stripe customer, creating it if needed."""
        if kine.stripe_customer_id:
            try:
                # Verify it still exists (e.g. after switching test/live mode)
                stripe.Customer.retrieve(kine.stripe_customer_id)
                return kine.stripe_customer_id
            except stripe.StripeError as e:
                logger.warning(
                    f"Stripe customer of kiné {sanitize_id(kine.id)} not found: {e}. "
                    "Creating new customer."
                )

        name = " ".join(part for part in (kine.first_name, kine.last_name) if part)
        customer = stripe.Customer.create(
            email=kine.email,
            name=name or None,
            metadata={"kineId": str(kine.id), "uid": kine.uid},
        )
        kine.stripe_customer_id = customer.id
        await self.db_session.commit()
        logger.info(f"Created Stripe customer for kiné {sanitize_id(kine.id)}")
        return customer.id

    async def _validated_referral_code(self, kine: Kine, code: str | None) -> str | None:
        if not code:
            return None
        referrer = await ReferralService(self.db_session).validate_code(code)
        if referrer is None:
            logger.warning(f"Referral code rejected at checkout for kiné {sanitize_id(kine.id)}")
            return None
        if is_self_referral(referrer, kine):
            logger.warning(f"Self-referral attempt by kiné {sanitize_id(kine.id)}")
            return None
        return referrer.referral_code

    async def create_checkout_session(
        self,
        kine: Kine,
        plan: PlanType,
        referral_code: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict[str, Any]:
        """
        Start a subscription purchase, or switch plan when one is running.

        Returns:
            Dictionary with url, session_id and type ("new_checkout" or
            "plan_change")

        Raises:
            ValidationError: same plan, or the Pionnier plan is full
            ExternalAPIError: Stripe rejected the request
        """
        success_url = success_url or settings.stripe_success_url
        cancel_url = cancel_url or settings.stripe_cancel_url

        subscription = await self.db_service.get_subscription_for_kine(kine.id)
        if (
            subscription
            and subscription.stripe_subscription_id
            and subscription.status in CHANGEABLE_STATUSES
        ):
            return await self._change_plan(subscription, plan, success_url)

        if plan == PlanType.PIONNIER:
            availability = await self.plan_availability(plan)
            if not availability["available"]:
                raise ValidationError("Pionnier plan is full", availability)

        validated_code = await self._validated_referral_code(kine, referral_code)

        metadata = {"kineId": str(kine.id), "planType": plan.value, "source": "kineai_paywall"}
        if validated_code:
            metadata["referralCode"] = validated_code

        try:
            customer_id = await self._ensure_customer(kine)
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": settings.stripe_price_ids()[plan], "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                customer_update={"address": "auto"},
                metadata=metadata,
                subscription_data={"metadata": metadata},
                allow_promotion_codes=not validated_code,
                automatic_tax={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout failed for kiné {sanitize_id(kine.id)}: {e}")
            raise ExternalAPIError("Stripe", "Unable to create checkout session") from e

        return {
            "url": session.url or "",
            "session_id": session.id or "",
            "type": "new_checkout",
        }

    async def _change_plan(
        self, subscription: Subscription, plan: PlanType, success_url: str
    ) -> dict[str, Any]:
        if subscription.plan_type == plan.value:
            raise ValidationError("You already have this plan", {"currentPlan": plan.value})

        if plan == PlanType.PIONNIER:
            availability = await self.plan_availability(plan)
            if not availability["available"]:
                raise ValidationError("Pionnier plan is full", availability)

        try:
            current = stripe.Subscription.retrieve(subscription.stripe_subscription_id)
            item_id = current["items"]["data"][0]["id"]
            stripe.Subscription.modify(
                subscription.stripe_subscription_id,
                items=[{"id": item_id, "price": settings.stripe_price_ids()[plan]}],
                proration_behavior="create_prorations",
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe plan change failed: {e}")
            raise ExternalAPIError("Stripe", "Unable to change plan") from e

        # The new plan is written by the customer.subscription.updated webhook
        previous = subscription.plan_type
        logger.info(f"Plan change requested: {previous} -> {plan.value}")
        return {
            "url": f"{success_url}?change=success&from={previous}&to={plan.value}",
            "session_id": None,
            "type": "plan_change",
        }

    async def create_portal_session(self, kine: Kine, return_url: str | None = None) -> str:
        if not kine.stripe_customer_id:
            raise NotFoundError("No Stripe customer for this account")

        try:
            session = stripe.billing_portal.Session.create(
                customer=kine.stripe_customer_id,
                return_url=return_url or f"{settings.frontend_url}/dashboard/kine",
            )
        except stripe.StripeError as e:
            raise ExternalAPIError("Stripe", "Unable to create billing portal") from e
        return session.url

    async def _set_cancel_at_period_end(self, kine: Kine, cancel: bool) -> None:
        subscription = await self.db_service.get_subscription_for_kine(kine.id)
        if not subscription or not subscription.stripe_subscription_id:
            raise NotFoundError("No subscription found")

        try:
            stripe.Subscription.modify(
                subscription.stripe_subscription_id, cancel_at_period_end=cancel
            )
        except stripe.StripeError as e:
            raise ExternalAPIError("Stripe", "Unable to update subscription") from e

    async def cancel_subscription(self, kine: Kine) -> dict[str, str | bool]:
        """
        Cancel at the end of the billing period.

        The local status is left alone: the webhook layer owns it and will
        record the change when Stripe reports it.
        """
        await self._set_cancel_at_period_end(kine, True)
        logger.info(f"Cancellation requested by kiné {sanitize_id(kine.id)}")
        return {
            "success": True,
            "message": "Subscription will be canceled at the end of the billing period",
        }

    async def reactivate_subscription(self, kine: Kine) -> dict[str, str | bool]:
        await self._set_cancel_at_period_end(kine, False)
        return {"success": True, "message": "Subscription reactivated"}
