"""Referral codes, pending referrals and renewal credits."""

from typing import Any

import httpx
import pytest
import stripe
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import (
    MAX_REFERRALS_PER_MONTH,
    PLAN_MONTHLY_PRICE_CENTS,
    NotificationType,
    PlanType,
    ReferralStatus,
    SubscriptionStatus,
)
from core.exceptions import AuthorizationError, ExternalAPIError
from database.models import Kine, Notification, Referral
from database.service import DatabaseService
from services.referral_service import ReferralService, is_self_referral
from tests.conftest import (
    create_kine,
    create_subscription,
    sign_stripe_payload,
    stripe_event_payload,
)
from utils.timestamps import utc_now


class CreditRecorder:
    """Stands in for the Stripe balance call."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.calls: list[tuple[str, int]] = []
        self.fail_for = fail_for or set()

    def __call__(
        self, customer_id: str, amount_cents: int, description: str, idempotency_key: str
    ) -> None:
        if customer_id in self.fail_for:
            raise ExternalAPIError("Stripe", "card_declined")
        self.calls.append((customer_id, amount_cents))


@pytest.fixture
async def referrer(db_session: AsyncSession) -> Kine:
    kine = await create_kine(
        db_session,
        uid="referrer-uid-001",
        email="alice@example.com",
        stripe_customer_id="cus_referrer",
        referral_code="A1B2C3",
    )
    await create_subscription(db_session, kine, plan=PlanType.EXPERT)
    return kine


@pytest.fixture
async def referee(db_session: AsyncSession) -> Kine:
    kine = await create_kine(
        db_session,
        uid="referee-uid-001",
        email="bob@example.com",
        first_name="Bob",
        last_name="Durand",
        stripe_customer_id="cus_referee",
    )
    return kine


async def test_generate_code_requires_active_subscription(db_session: AsyncSession) -> None:
    kine = await create_kine(db_session)

    with pytest.raises(AuthorizationError):
        await ReferralService(db_session).generate_code(kine)


async def test_generate_code_is_stable(db_session: AsyncSession) -> None:
    kine = await create_kine(db_session)
    await create_subscription(db_session, kine)
    service = ReferralService(db_session)

    code, is_new = await service.generate_code(kine)
    again, again_new = await service.generate_code(kine)

    assert is_new is True
    assert again_new is False
    assert again == code
    assert len(code) == 6
    int(code, 16)


async def test_validate_code_requires_active_referrer(
    db_session: AsyncSession, referrer: Kine
) -> None:
    service = ReferralService(db_session)

    assert (await service.validate_code("a1b2c3")).id == referrer.id
    assert await service.validate_code("ZZZZZZ") is None
    assert await service.validate_code("A1") is None

    subscription = await service.db_service.get_subscription_for_kine(referrer.id)
    subscription.status = SubscriptionStatus.CANCELED.value
    await db_session.commit()
    assert await service.validate_code("A1B2C3") is None


def test_self_referral_ignores_plus_tags() -> None:
    alice = Kine(id=1, uid="a", email="Alice+pro@Example.com")
    alias = Kine(id=2, uid="b", email="alice@example.com")
    other = Kine(id=3, uid="c", email="carol@example.com")

    assert is_self_referral(alice, alias)
    assert is_self_referral(alice, alice)
    assert not is_self_referral(alice, other)


async def test_record_pending_once_per_referee(
    db_session: AsyncSession, referrer: Kine, referee: Kine
) -> None:
    service = ReferralService(db_session)

    first = await service.record_pending(referee, "A1B2C3", PlanType.PRATIQUE)
    second = await service.record_pending(referee, "A1B2C3", PlanType.PRATIQUE)
    await db_session.commit()

    assert first is not None
    assert first.status == ReferralStatus.PENDING.value
    assert first.referrer_id == referrer.id
    assert second is None


async def test_record_pending_blocks_self_referral(
    db_session: AsyncSession, referrer: Kine
) -> None:
    twin = await create_kine(db_session, uid="twin-uid-001", email="alice+2@example.com")

    assert await ReferralService(db_session).record_pending(twin, "A1B2C3", None) is None


async def test_renewal_credits_both_kines(
    db_session: AsyncSession, referrer: Kine, referee: Kine, monkeypatch: pytest.MonkeyPatch
) -> None:
    service = ReferralService(db_session)
    credits = CreditRecorder()
    monkeypatch.setattr(service, "_apply_customer_credit", credits)
    await service.record_pending(referee, "A1B2C3", PlanType.PRATIQUE)
    referee_subscription = await create_subscription(
        db_session, referee, plan=PlanType.PRATIQUE
    )

    outcome = await service.evaluate_renewal(referee_subscription)
    await db_session.commit()

    amount = PLAN_MONTHLY_PRICE_CENTS[PlanType.PRATIQUE]
    assert outcome.credited is True
    assert outcome.amount == amount
    assert credits.calls == [("cus_referrer", amount), ("cus_referee", amount)]

    referral = (await db_session.execute(select(Referral))).scalar_one()
    assert referral.status == ReferralStatus.COMPLETED.value
    assert referral.credit_amount == amount
    assert referral.credited_at is not None

    notifications = await db_session.execute(
        select(Notification.kine_id).where(
            Notification.type == NotificationType.REFERRAL_CREDITED.value
        )
    )
    assert sorted(notifications.scalars().all()) == sorted([referrer.id, referee.id])


async def test_failed_credit_keeps_referral_pending(
    db_session: AsyncSession, referrer: Kine, referee: Kine, monkeypatch: pytest.MonkeyPatch
) -> None:
    service = ReferralService(db_session)
    credits = CreditRecorder(fail_for={"cus_referee"})
    monkeypatch.setattr(service, "_apply_customer_credit", credits)
    await service.record_pending(referee, "A1B2C3", PlanType.DECLIC)
    referee_subscription = await create_subscription(
        db_session, referee, plan=PlanType.DECLIC
    )

    outcome = await service.evaluate_renewal(referee_subscription)

    assert outcome.credited is False
    assert outcome.reason == "credit failed"
    referral = (await db_session.execute(select(Referral))).scalar_one()
    assert referral.status == ReferralStatus.PENDING.value
    assert referral.referrer_credited is True
    assert referral.referee_credited is False

    credits.fail_for.clear()
    retry = await service.evaluate_renewal(referee_subscription)

    assert retry.credited is True
    # The referrer is not credited twice
    assert [customer for customer, _ in credits.calls] == ["cus_referrer", "cus_referee"]


async def test_monthly_cap_blocks_credit(
    db_session: AsyncSession, referrer: Kine, referee: Kine, monkeypatch: pytest.MonkeyPatch
) -> None:
    for index in range(MAX_REFERRALS_PER_MONTH):
        earlier = await create_kine(db_session, uid=f"earlier-uid-{index:03d}")
        db_session.add(
            Referral(
                referrer_id=referrer.id,
                referee_id=earlier.id,
                code="A1B2C3",
                status=ReferralStatus.COMPLETED.value,
                plan_subscribed=PlanType.DECLIC.value,
                credit_amount=900,
                credited_at=utc_now(),
            )
        )
    await db_session.commit()

    service = ReferralService(db_session)
    credits = CreditRecorder()
    monkeypatch.setattr(service, "_apply_customer_credit", credits)
    await service.record_pending(referee, "A1B2C3", PlanType.PRATIQUE)
    referee_subscription = await create_subscription(db_session, referee)

    outcome = await service.evaluate_renewal(referee_subscription)

    assert outcome.reason == "monthly cap reached"
    assert credits.calls == []


async def test_stats_counts_and_anonymizes(
    db_session: AsyncSession, referrer: Kine, referee: Kine
) -> None:
    service = ReferralService(db_session)
    await service.record_pending(referee, "A1B2C3", PlanType.PRATIQUE)
    await db_session.commit()

    stats = await service.stats(referrer)

    assert stats["code"] == "A1B2C3"
    assert stats["link"].endswith("/signup?ref=A1B2C3")
    assert stats["stats"]["total"] == 1
    assert stats["stats"]["pending"] == 1
    assert stats["limits"] == {"monthly_used": 0, "monthly_max": MAX_REFERRALS_PER_MONTH}
    assert stats["referrals"][0]["referee_name"] == "Bob D."


async def test_redelivered_renewal_reuses_credit_idempotency_keys(
    client: httpx.AsyncClient,
    db_session: AsyncSession,
    referrer: Kine,
    referee: Kine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    referral = await ReferralService(db_session).record_pending(
        referee, "A1B2C3", PlanType.PRATIQUE
    )
    await db_session.commit()
    subscription = await create_subscription(db_session, referee, plan=PlanType.PRATIQUE)

    stripe_calls: list[tuple[str, str]] = []

    def create_balance_transaction(customer_id: str, **kwargs: Any) -> dict:
        stripe_calls.append((customer_id, kwargs["idempotency_key"]))
        return {"id": f"cbtxn_{len(stripe_calls)}"}

    monkeypatch.setattr(
        stripe.Customer, "create_balance_transaction", create_balance_transaction
    )

    record_event = DatabaseService.record_processed_event
    record_attempts: list[str] = []

    async def lose_first_commit(self: DatabaseService, event_id: str, *args: Any) -> Any:
        record_attempts.append(event_id)
        if len(record_attempts) == 1:
            raise OperationalError("INSERT", {}, ConnectionResetError("connection lost"))
        return await record_event(self, event_id, *args)

    monkeypatch.setattr(DatabaseService, "record_processed_event", lose_first_commit)

    payload = stripe_event_payload(
        "invoice.payment_succeeded",
        {
            "id": "in_renewal",
            "customer": "cus_referee",
            "subscription": subscription.stripe_subscription_id,
            "billing_reason": "subscription_cycle",
        },
        event_id="evt_renewal",
    )
    headers = {"content-type": "application/json"}

    first = await client.post(
        "/webhook/stripe",
        content=payload,
        headers={**headers, "stripe-signature": sign_stripe_payload(payload)},
    )
    second = await client.post(
        "/webhook/stripe",
        content=payload,
        headers={**headers, "stripe-signature": sign_stripe_payload(payload)},
    )

    assert first.status_code == 500
    assert second.status_code == 200
    keys = [
        ("cus_referrer", f"referral-{referral.id}-referrer"),
        ("cus_referee", f"referral-{referral.id}-referee"),
    ]
    assert stripe_calls == keys + keys

    stored = await db_session.execute(
        select(Referral).execution_options(populate_existing=True)
    )
    assert stored.scalar_one().status == ReferralStatus.COMPLETED.value
