"""Referral codes and renewal credits."""

import logging
import secrets
from dataclasses import dataclass
from typing import Any

import stripe
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.constants import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    MAX_REFERRALS_PER_MONTH,
    PLAN_MONTHLY_PRICE_CENTS,
    REFERRAL_CODE_BYTES,
    NotificationType,
    PlanType,
    ReferralStatus,
)
from core.exceptions import AuthorizationError, ExternalAPIError
from database.models import Kine, Referral, Subscription
from database.service import DatabaseService
from services.notification_service import NotificationService
from utils.log_sanitizer import sanitize_id
from utils.timestamps import ensure_utc, start_of_month, utc_now

logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 4
CODE_GENERATION_ATTEMPTS = 10


def referral_link(code: str) -> str:
    return f"{settings.frontend_url}/signup?ref={code}"


def _email_identity(email: str | None) -> str | None:
    """Lowercased address without a ``+tag`` suffix."""
    if not email or "@" not in email:
        return None
    local, _, domain = email.strip().lower().partition("@")
    return f"{local.split('+', 1)[0]}@{domain}"


def is_self_referral(referrer: Kine, referee: Kine) -> bool:
    if referrer.id == referee.id:
        return True
    referrer_email = _email_identity(referrer.email)
    return referrer_email is not None and referrer_email == _email_identity(referee.email)


@dataclass
class RenewalOutcome:
    """What happened when a renewal was checked for a referral credit."""

    credited: bool
    reason: str
    referral_id: int | None = None
    amount: int = 0


class ReferralService:
    """Manages referral codes, pending referrals and renewal credits."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session
        self.db_service = DatabaseService(db_session)
        self.notifications = NotificationService(db_session)

    async def _has_active_subscription(self, kine_id: int) -> bool:
        subscription = await self.db_service.get_subscription_for_kine(kine_id)
        return bool(
            subscription
            and subscription.plan_type
            and subscription.status in ACTIVE_SUBSCRIPTION_STATUSES
        )

    async def _find_referrer(self, code: str) -> Kine | None:
        result = await self.db.execute(
            select(Kine).where(Kine.referral_code == code.strip().upper())
        )
        return result.scalar_one_or_none()

    # ==================== CODES ====================

    async def generate_code(self, kine: Kine) -> tuple[str, bool]:
        """
        Return the kiné's referral code, creating it on first call.

        Returns:
            (code, is_new)

        Raises:
            AuthorizationError: the kiné has no active subscription.
        """
        if not await self._has_active_subscription(kine.id):
            raise AuthorizationError("An active subscription is required to refer")

        if kine.referral_code:
            return kine.referral_code, False

        for _ in range(CODE_GENERATION_ATTEMPTS):
            code = secrets.token_hex(REFERRAL_CODE_BYTES).upper()
            if await self._find_referrer(code) is None:
                kine.referral_code = code
                await self.db.commit()
                logger.info(f"Referral code generated for kiné {sanitize_id(kine.id)}")
                return code, True

        raise RuntimeError("Unable to generate a unique referral code")

    async def validate_code(self, code: str) -> Kine | None:
        """Return the referrer behind a code if it can currently be used."""
        if not code or len(code.strip()) < MIN_CODE_LENGTH:
            return None

        referrer = await self._find_referrer(code)
        if referrer is None or not await self._has_active_subscription(referrer.id):
            return None
        return referrer

    # ==================== REFERRALS ====================

    async def record_pending(
        self, referee: Kine, code: str, plan_type: PlanType | None
    ) -> Referral | None:
        """
        Link a new subscriber to the kiné whose code they used at checkout.

        Staged in the caller's transaction. Invalid, self-referring or
        repeated referrals are ignored.
        """
        referrer = await self.validate_code(code)
        if referrer is None:
            logger.warning(f"Referral code ignored for kiné {sanitize_id(referee.id)}")
            return None

        if is_self_referral(referrer, referee):
            logger.warning(f"Self-referral blocked for kiné {sanitize_id(referee.id)}")
            return None

        existing = await self.db.execute(
            select(Referral.id).where(Referral.referee_id == referee.id)
        )
        if existing.scalar_one_or_none() is not None:
            return None

        referral = Referral(
            referrer_id=referrer.id,
            referee_id=referee.id,
            code=referrer.referral_code or code.upper(),
            status=ReferralStatus.PENDING.value,
            plan_subscribed=plan_type.value if plan_type else None,
        )
        self.db.add(referral)
        await self.db.flush()

        logger.info(
            f"Pending referral {sanitize_id(referral.id)}: "
            f"{sanitize_id(referrer.id)} -> {sanitize_id(referee.id)}"
        )
        return referral

    async def completed_this_month(self, referrer_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Referral.id)).where(
                Referral.referrer_id == referrer_id,
                Referral.status == ReferralStatus.COMPLETED.value,
                Referral.credited_at >= start_of_month(),
            )
        )
        return int(result.scalar_one())

    def _apply_customer_credit(
        self,
        customer_id: str,
        amount_cents: int,
        description: str,
        idempotency_key: str,
    ) -> None:
        """
        Add a negative balance transaction so the next invoice is reduced.

        The idempotency key is derived from the referral and the credited
        party, so a retried webhook that lost its database writes does not
        credit the customer twice.
        """
        try:
            stripe.Customer.create_balance_transaction(
                customer_id,
                amount=-amount_cents,
                currency=settings.stripe_currency,
                description=description,
                metadata={"referralCredit": idempotency_key},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise ExternalAPIError("Stripe", f"Balance credit failed: {e}") from e

    async def evaluate_renewal(
        self, referee_subscription: Subscription
    ) -> RenewalOutcome:
        """
        Credit both kinés once the referee's subscription renews.

        Runs inside the webhook transaction. Stripe credits are applied
        before the referral is marked completed; a failed credit leaves the
        referral pending for the next renewal.
        """
        result = await self.db.execute(
            select(Referral)
            .where(
                Referral.referee_id == referee_subscription.kine_id,
                Referral.status == ReferralStatus.PENDING.value,
            )
            .options(selectinload(Referral.referrer), selectinload(Referral.referee))
        )
        referral = result.scalar_one_or_none()
        if referral is None:
            return RenewalOutcome(credited=False, reason="no pending referral")

        if not await self._has_active_subscription(referral.referrer_id):
            return RenewalOutcome(
                credited=False, reason="referrer inactive", referral_id=referral.id
            )

        if await self.completed_this_month(referral.referrer_id) >= MAX_REFERRALS_PER_MONTH:
            logger.info(
                f"Referral cap reached for kiné {sanitize_id(referral.referrer_id)}"
            )
            return RenewalOutcome(
                credited=False, reason="monthly cap reached", referral_id=referral.id
            )

        plan_value = referee_subscription.plan_type or referral.plan_subscribed
        try:
            plan = PlanType(plan_value)
        except ValueError:
            return RenewalOutcome(
                credited=False, reason="unknown plan", referral_id=referral.id
            )
        amount = PLAN_MONTHLY_PRICE_CENTS[plan]

        description = f"Parrainage KineAI - 1 mois {plan.value}"
        try:
            if not referral.referrer_credited and referral.referrer.stripe_customer_id:
                self._apply_customer_credit(
                    referral.referrer.stripe_customer_id,
                    amount,
                    description,
                    f"referral-{referral.id}-referrer",
                )
                referral.referrer_credited = True
            if not referral.referee_credited and referral.referee.stripe_customer_id:
                self._apply_customer_credit(
                    referral.referee.stripe_customer_id,
                    amount,
                    description,
                    f"referral-{referral.id}-referee",
                )
                referral.referee_credited = True
        except ExternalAPIError as e:
            # Stays pending; parties already credited are skipped next time
            logger.error(f"Referral {sanitize_id(referral.id)} credit failed: {e.message}")
            return RenewalOutcome(
                credited=False, reason="credit failed", referral_id=referral.id
            )

        referral.status = ReferralStatus.COMPLETED.value
        referral.plan_subscribed = plan.value
        referral.credit_amount = amount
        referral.credited_at = utc_now()

        euros = f"{amount / 100:.2f}"
        await self.notifications.create_notification(
            kine_id=referral.referrer_id,
            notification_type=NotificationType.REFERRAL_CREDITED,
            title="Parrainage validé",
            message=f"Votre filleul a renouvelé son abonnement : {euros} € crédités.",
            metadata={"referralId": referral.id, "amount": amount},
        )
        await self.notifications.create_notification(
            kine_id=referral.referee_id,
            notification_type=NotificationType.REFERRAL_CREDITED,
            title="Mois offert",
            message=f"Merci d'avoir rejoint KineAI par parrainage : {euros} € crédités.",
            metadata={"referralId": referral.id, "amount": amount},
        )

        logger.info(f"Referral {sanitize_id(referral.id)} credited")
        return RenewalOutcome(
            credited=True, reason="credited", referral_id=referral.id, amount=amount
        )

    # ==================== STATS ====================

    async def stats(self, kine: Kine) -> dict[str, Any]:
        result = await self.db.execute(
            select(Referral)
            .where(Referral.referrer_id == kine.id)
            .options(selectinload(Referral.referee))
            .order_by(Referral.created_at.desc(), Referral.id.desc())
        )
        referrals = list(result.scalars().all())

        month_start = start_of_month()
        completed = [r for r in referrals if r.status == ReferralStatus.COMPLETED.value]
        monthly_used = sum(
            1
            for r in completed
            if r.credited_at is not None and ensure_utc(r.credited_at) >= month_start
        )

        return {
            "code": kine.referral_code,
            "link": referral_link(kine.referral_code) if kine.referral_code else None,
            "stats": {
                "total": len(referrals),
                "pending": sum(
                    1 for r in referrals if r.status == ReferralStatus.PENDING.value
                ),
                "completed": len(completed),
                "canceled": sum(
                    1 for r in referrals if r.status == ReferralStatus.CANCELED.value
                ),
                "total_credits_earned": sum(r.credit_amount for r in completed),
            },
            "limits": {"monthly_used": monthly_used, "monthly_max": MAX_REFERRALS_PER_MONTH},
            "referrals": [
                {
                    "id": r.id,
                    "referee_name": _anonymized_name(r.referee),
                    "plan": r.plan_subscribed,
                    "credit": r.credit_amount,
                    "status": r.status,
                    "date": r.created_at,
                    "credited_at": r.credited_at,
                }
                for r in referrals
            ],
        }

    async def referral_of(self, kine: Kine) -> Referral | None:
        """The referral through which this kiné subscribed, if any."""
        result = await self.db.execute(
            select(Referral)
            .where(Referral.referee_id == kine.id)
            .options(selectinload(Referral.referrer))
        )
        return result.scalar_one_or_none()


def _anonymized_name(kine: Kine) -> str:
    first = kine.first_name or ""
    initial = f" {kine.last_name[0]}." if kine.last_name else ""
    return f"{first}{initial}".strip() or "Kiné"
