"""Checkout, plan changes and cancellation against a stubbed Stripe SDK."""

from types import SimpleNamespace
from typing import Any

import pytest
import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import PIONNIER_MAX_SLOTS, PlanType, SubscriptionStatus
from core.exceptions import ExternalAPIError, ValidationError
from database.models import Subscription
from services.subscription_service import SubscriptionService
from tests.conftest import create_kine, create_subscription


class StripeStub:
    """Captures the keyword arguments of each Stripe call."""

    def __init__(self, monkeypatch: pytest.MonkeyPatch) -> None:
        self.calls: dict[str, list[tuple[tuple, dict[str, Any]]]] = {}
        monkeypatch.setattr(stripe.Customer, "create", self._record("customer.create", id="cus_new"))
        monkeypatch.setattr(stripe.Customer, "retrieve", self._record("customer.retrieve", id="cus_x"))
        monkeypatch.setattr(
            stripe.checkout.Session,
            "create",
            self._record("checkout.create", id="cs_1", url="https://checkout.stripe.com/c/cs_1"),
        )
        monkeypatch.setattr(
            stripe.Subscription,
            "retrieve",
            self._record("subscription.retrieve", items={"data": [{"id": "si_1"}]}),
        )
        monkeypatch.setattr(
            stripe.Subscription, "modify", self._record("subscription.modify", id="sub_1")
        )

    def _record(self, name: str, **result: Any):
        def call(*args: Any, **kwargs: Any) -> Any:
            self.calls.setdefault(name, []).append((args, kwargs))
            if "items" in result:
                return result
            return SimpleNamespace(**result)

        return call


async def test_new_checkout_carries_metadata(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    stub = StripeStub(monkeypatch)
    kine = await create_kine(db_session)

    session = await SubscriptionService(db_session).create_checkout_session(
        kine, PlanType.DECLIC
    )

    assert session == {
        "url": "https://checkout.stripe.com/c/cs_1",
        "session_id": "cs_1",
        "type": "new_checkout",
    }
    assert kine.stripe_customer_id == "cus_new"
    [(_, kwargs)] = stub.calls["checkout.create"]
    assert kwargs["mode"] == "subscription"
    assert kwargs["line_items"] == [{"price": "price_declic", "quantity": 1}]
    assert kwargs["metadata"]["kineId"] == str(kine.id)
    assert kwargs["metadata"]["planType"] == "DECLIC"
    assert "referralCode" not in kwargs["metadata"]


async def test_valid_referral_code_is_forwarded(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    stub = StripeStub(monkeypatch)
    referrer = await create_kine(
        db_session, uid="referrer-uid-001", email="alice@example.com", referral_code="ABC123"
    )
    await create_subscription(db_session, referrer)
    kine = await create_kine(db_session, email="bob@example.com")

    await SubscriptionService(db_session).create_checkout_session(
        kine, PlanType.PRATIQUE, referral_code="abc123"
    )

    [(_, kwargs)] = stub.calls["checkout.create"]
    assert kwargs["metadata"]["referralCode"] == "ABC123"
    assert kwargs["allow_promotion_codes"] is False


async def test_pionnier_is_capped(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    StripeStub(monkeypatch)
    for index in range(PIONNIER_MAX_SLOTS):
        holder = await create_kine(db_session, uid=f"pionnier-uid-{index:03d}")
        db_session.add(
            Subscription(
                kine_id=holder.id,
                plan_type=PlanType.PIONNIER.value,
                status=SubscriptionStatus.ACTIVE.value,
            )
        )
    await db_session.commit()
    kine = await create_kine(db_session, uid="late-comer-uid")

    with pytest.raises(ValidationError, match="Pionnier plan is full"):
        await SubscriptionService(db_session).create_checkout_session(
            kine, PlanType.PIONNIER
        )


async def test_running_subscription_changes_plan_in_place(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    stub = StripeStub(monkeypatch)
    kine = await create_kine(db_session, stripe_customer_id="cus_x")
    await create_subscription(db_session, kine, plan=PlanType.DECLIC)

    result = await SubscriptionService(db_session).create_checkout_session(
        kine, PlanType.EXPERT
    )

    assert result["type"] == "plan_change"
    assert result["session_id"] is None
    assert "from=DECLIC&to=EXPERT" in result["url"]
    [(args, kwargs)] = stub.calls["subscription.modify"]
    assert kwargs["items"] == [{"id": "si_1", "price": "price_expert"}]
    assert "checkout.create" not in stub.calls


async def test_same_plan_is_rejected(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    StripeStub(monkeypatch)
    kine = await create_kine(db_session, stripe_customer_id="cus_x")
    await create_subscription(db_session, kine, plan=PlanType.EXPERT)

    with pytest.raises(ValidationError, match="already have this plan"):
        await SubscriptionService(db_session).create_checkout_session(
            kine, PlanType.EXPERT
        )


async def test_cancel_leaves_status_to_the_webhook(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    stub = StripeStub(monkeypatch)
    kine = await create_kine(db_session, stripe_customer_id="cus_x")
    subscription = await create_subscription(db_session, kine)

    result = await SubscriptionService(db_session).cancel_subscription(kine)

    assert result["success"] is True
    [(args, kwargs)] = stub.calls["subscription.modify"]
    assert args == (subscription.stripe_subscription_id,)
    assert kwargs == {"cancel_at_period_end": True}
    await db_session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.ACTIVE.value
    assert subscription.cancel_at_period_end is False


async def test_stripe_failure_is_reported_as_external_error(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    StripeStub(monkeypatch)

    def declined(*args: Any, **kwargs: Any) -> None:
        raise stripe.InvalidRequestError("No such price", "price")

    monkeypatch.setattr(stripe.checkout.Session, "create", declined)
    kine = await create_kine(db_session)

    with pytest.raises(ExternalAPIError):
        await SubscriptionService(db_session).create_checkout_session(
            kine, PlanType.DECLIC
        )
