"""Handlers for the Stripe events that drive subscription state."""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.constants import (
    NotificationType,
    PlanType,
    SubscriptionStatus,
    WebhookOutcome,
)
from core.exceptions import RecoverableWebhookError
from database.models import Kine, Subscription
from database.service import DatabaseService
from schemas.webhooks import HandlerResult, StripeEvent
from services.notification_service import NotificationService
from services.referral_service import ReferralService
from utils.log_sanitizer import sanitize_id
from utils.timestamps import ensure_utc, from_unix

logger = logging.getLogger(__name__)

StripeEventHandler = Callable[[StripeEvent, AsyncSession], Awaitable[HandlerResult]]

RENEWAL_BILLING_REASON = "subscription_cycle"


# ==================== PAYLOAD HELPERS ====================


def plan_from_price(price_id: str | None) -> PlanType | None:
    """Map a configured Stripe price ID back to its plan."""
    if not price_id:
        return None
    for plan, configured in settings.stripe_price_ids().items():
        if configured == price_id:
            return plan
    return None


def plan_from_value(value: Any) -> PlanType | None:
    try:
        return PlanType(str(value).upper()) if value else None
    except ValueError:
        return None


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period_bound(subscription: dict[str, Any], key: str) -> datetime | None:
    # Recent API versions moved the billing period onto subscription items
    value = subscription.get(key)
    if value is None:
        value = _first_item(subscription).get(key)
    return from_unix(value)


def _expandable_id(value: Any) -> str | None:
    """Stripe fields may hold an ID or the expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def subscription_values(subscription: dict[str, Any]) -> dict[str, Any]:
    """Subscription row fields carried by a Stripe subscription object."""
    item = _first_item(subscription)
    plan = plan_from_price((item.get("price") or {}).get("id")) or plan_from_value(
        (subscription.get("metadata") or {}).get("planType")
    )

    values: dict[str, Any] = {
        "stripe_subscription_id": subscription.get("id"),
        "stripe_customer_id": _expandable_id(subscription.get("customer")),
        "status": SubscriptionStatus.from_stripe(subscription.get("status")).value,
        "current_period_start": _period_bound(subscription, "current_period_start"),
        "current_period_end": _period_bound(subscription, "current_period_end"),
        "trial_end": from_unix(subscription.get("trial_end")),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
    }
    if plan:
        values["plan_type"] = plan.value
    # Absent fields keep their stored value; a cleared trial is written as NULL
    return {k: v for k, v in values.items() if v is not None or k == "trial_end"}


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription_id = _expandable_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _expandable_id(details.get("subscription"))


def invoice_period_end(invoice: dict[str, Any]) -> datetime | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        end = (lines[0].get("period") or {}).get("end")
        if end:
            return from_unix(end)
    return from_unix(invoice.get("period_end"))


async def _subscription_for_invoice(
    db_service: DatabaseService, invoice: dict[str, Any]
) -> Subscription | None:
    subscription_id = invoice_subscription_id(invoice)
    if subscription_id:
        subscription = await db_service.get_subscription_by_stripe_id(subscription_id)
        if subscription:
            return subscription

    customer_id = _expandable_id(invoice.get("customer"))
    if customer_id:
        kine = await db_service.get_kine_by_customer(customer_id)
        if kine:
            return await db_service.get_subscription_for_kine(kine.id)
    return None


# ==================== HANDLERS ====================


async def handle_checkout_completed(
    event: StripeEvent, db: AsyncSession
) -> HandlerResult:
    """First purchase: attach the Stripe customer and subscription to the kiné."""
    session = event.data_object
    if session.get("mode") != "subscription":
        return HandlerResult(
            status=WebhookOutcome.IGNORED, detail="Checkout is not a subscription"
        )

    db_service = DatabaseService(db)
    metadata = session.get("metadata") or {}
    customer_id = _expandable_id(session.get("customer"))

    kine: Kine | None = None
    if metadata.get("kineId"):
        try:
            kine = await db_service.get_kine(int(metadata["kineId"]))
        except (TypeError, ValueError):
            kine = None
    if kine is None and customer_id:
        kine = await db_service.get_kine_by_customer(customer_id)
    if kine is None:
        raise RecoverableWebhookError("No kiné matches the checkout session")

    if customer_id and kine.stripe_customer_id != customer_id:
        kine.stripe_customer_id = customer_id

    values: dict[str, Any] = {
        "status": SubscriptionStatus.ACTIVE.value,
        "stripe_subscription_id": _expandable_id(session.get("subscription")),
        "stripe_customer_id": customer_id,
        "cancel_at_period_end": False,
    }
    plan = plan_from_value(metadata.get("planType"))
    if plan:
        values["plan_type"] = plan.value

    _, applied = await db_service.attach_subscription(
        kine.id, {k: v for k, v in values.items() if v is not None}
    )

    referral_code = metadata.get("referralCode")
    if referral_code:
        await ReferralService(db).record_pending(kine, referral_code, plan)

    logger.info(
        f"Checkout completed for kiné {sanitize_id(kine.id)} "
        f"(plan {plan.value if plan else 'unknown'})"
    )
    if not applied:
        return HandlerResult(
            status=WebhookOutcome.STALE,
            detail="Customer attached; newer subscription state kept",
        )
    return HandlerResult(status=WebhookOutcome.PROCESSED, detail="Subscription attached")


async def handle_subscription_upsert(
    event: StripeEvent, db: AsyncSession
) -> HandlerResult:
    """``customer.subscription.created`` and ``customer.subscription.updated``."""
    subscription = event.data_object
    db_service = DatabaseService(db)

    kine = await db_service.find_kine_for_stripe_subscription(
        subscription.get("id"),
        (subscription.get("metadata") or {}).get("kineId"),
        _expandable_id(subscription.get("customer")),
    )
    if kine is None:
        raise RecoverableWebhookError("No kiné matches the subscription")

    values = subscription_values(subscription)
    row, applied = await db_service.upsert_subscription(kine.id, values, event.created)
    if not applied:
        return HandlerResult(
            status=WebhookOutcome.STALE, detail="Older than the stored subscription state"
        )

    logger.info(
        f"Subscription {sanitize_id(row.id)} is now {row.status} "
        f"(plan {row.plan_type})"
    )
    return HandlerResult(status=WebhookOutcome.PROCESSED, detail=f"Status {row.status}")


async def handle_subscription_deleted(
    event: StripeEvent, db: AsyncSession
) -> HandlerResult:
    """Mark the subscription canceled; the plan is kept for history."""
    subscription = event.data_object
    db_service = DatabaseService(db)

    kine = await db_service.find_kine_for_stripe_subscription(
        subscription.get("id"),
        (subscription.get("metadata") or {}).get("kineId"),
        _expandable_id(subscription.get("customer")),
    )
    if kine is None:
        raise RecoverableWebhookError("No kiné matches the deleted subscription")

    ended_at = from_unix(
        subscription.get("ended_at") or subscription.get("canceled_at")
    ) or _period_bound(subscription, "current_period_end")

    values: dict[str, Any] = {
        "status": SubscriptionStatus.CANCELED.value,
        "stripe_subscription_id": subscription.get("id"),
        "cancel_at_period_end": False,
    }
    if ended_at:
        values["current_period_end"] = ended_at

    row, applied = await db_service.upsert_subscription(kine.id, values, event.created)
    if not applied:
        return HandlerResult(
            status=WebhookOutcome.STALE, detail="Older than the stored subscription state"
        )

    await NotificationService(db).create_notification(
        kine_id=kine.id,
        notification_type=NotificationType.SUBSCRIPTION_CANCELED,
        title="Abonnement terminé",
        message="Votre abonnement KineAI est terminé.",
        metadata={"planType": row.plan_type},
    )

    logger.info(f"Subscription {sanitize_id(row.id)} canceled")
    return HandlerResult(status=WebhookOutcome.PROCESSED, detail="Subscription canceled")


async def handle_payment_succeeded(
    event: StripeEvent, db: AsyncSession
) -> HandlerResult:
    """Payment went through: back to active, period end only moves forward."""
    invoice = event.data_object
    db_service = DatabaseService(db)

    subscription = await _subscription_for_invoice(db_service, invoice)
    if subscription is None:
        return HandlerResult(
            status=WebhookOutcome.IGNORED, detail="Invoice has no known subscription"
        )

    values: dict[str, Any] = {"status": SubscriptionStatus.ACTIVE.value}
    period_end = invoice_period_end(invoice)
    current_end = ensure_utc(subscription.current_period_end)
    if period_end and (current_end is None or period_end > current_end):
        values["current_period_end"] = period_end

    applied = await db_service.update_subscription_if_newer(
        subscription, values, event.created
    )

    detail = "Subscription active" if applied else "Newer subscription state kept"
    # A renewal counts for referrals even when a newer event already set the state
    if invoice.get("billing_reason") == RENEWAL_BILLING_REASON:
        outcome = await ReferralService(db).evaluate_renewal(subscription)
        detail = f"{detail}; referral {outcome.reason}"

    return HandlerResult(
        status=WebhookOutcome.PROCESSED if applied else WebhookOutcome.STALE,
        detail=detail,
    )


async def handle_payment_failed(
    event: StripeEvent, db: AsyncSession
) -> HandlerResult:
    """Payment failed: past_due and a notification, nothing destructive."""
    invoice = event.data_object
    db_service = DatabaseService(db)

    subscription = await _subscription_for_invoice(db_service, invoice)
    if subscription is None:
        return HandlerResult(
            status=WebhookOutcome.IGNORED, detail="Invoice has no known subscription"
        )

    applied = await db_service.update_subscription_if_newer(
        subscription, {"status": SubscriptionStatus.PAST_DUE.value}, event.created
    )

    await NotificationService(db).create_notification(
        kine_id=subscription.kine_id,
        notification_type=NotificationType.PAYMENT_FAILED,
        title="Échec de paiement",
        message=(
            "Le paiement de votre abonnement a échoué. "
            "Mettez à jour votre moyen de paiement pour conserver votre accès."
        ),
        metadata={
            "invoiceId": invoice.get("id"),
            "attemptCount": invoice.get("attempt_count"),
        },
    )

    logger.warning(
        f"Payment failed for subscription {sanitize_id(subscription.id)} "
        f"(attempt {invoice.get('attempt_count')})"
    )
    if not applied:
        return HandlerResult(
            status=WebhookOutcome.STALE, detail="Kiné notified; newer state kept"
        )
    return HandlerResult(status=WebhookOutcome.PROCESSED, detail="Subscription past_due")


DEFAULT_HANDLERS: dict[str, StripeEventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_upsert,
    "customer.subscription.updated": handle_subscription_upsert,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
}
