"""Shared fixtures: in-memory database, fake clock and an ASGI client."""

import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncIterator
from typing import Any

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("FIREBASE_PROJECT_ID", "kineai-test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("STRIPE_API_KEY", "sk_test_kineai")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PRICE_ID_DECLIC", "price_declic")
os.environ.setdefault("STRIPE_PRICE_ID_PRATIQUE", "price_pratique")
os.environ.setdefault("STRIPE_PRICE_ID_PIONNIER", "price_pionnier")
os.environ.setdefault("STRIPE_PRICE_ID_EXPERT", "price_expert")
os.environ.setdefault("WHATSAPP_WEBHOOK_TOKEN", "verify-me")
os.environ.setdefault("WHATSAPP_ACCESS_TOKEN", "wa-token")
os.environ.setdefault("WHATSAPP_PHONE_ID", "1234567890")
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi import FastAPI, Request  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from api.app import create_app  # noqa: E402
from core.auth import get_current_user  # noqa: E402
from core.config import settings  # noqa: E402
from core.constants import PlanType, SubscriptionStatus  # noqa: E402
from core.rate_limit import InMemoryRateLimitStore  # noqa: E402
from database.connection import get_db_session  # noqa: E402
from database.models import Base, Kine, Subscription  # noqa: E402
from schemas.auth import AuthenticatedUser, AuthError  # noqa: E402

TEST_UID = "firebase-uid-0001"
TEST_UID_HEADER = "X-Test-Uid"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sign_stripe_payload(
    payload: bytes,
    secret: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Build a ``stripe-signature`` header for a payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    signature = hmac.new(
        (secret or settings.stripe_webhook_secret).encode(), signed, hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={signature}"


def stripe_event_payload(
    event_type: str,
    data_object: dict[str, Any],
    event_id: str = "evt_test_0001",
    created: int = 1_700_000_000,
) -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created,
            "livemode": False,
            "api_version": "2024-06-20",
            "data": {"object": data_object},
        }
    ).encode()


async def fake_current_user(request: Request) -> AuthenticatedUser:
    uid = request.headers.get(TEST_UID_HEADER)
    if not uid:
        raise AuthError("missing_token", "Authorization header is required")
    request.state.user_id = uid
    return AuthenticatedUser(user_id=uid, email=f"{uid}@example.com", name="Test Kine")


async def create_kine(
    db: AsyncSession,
    uid: str = TEST_UID,
    email: str | None = None,
    first_name: str = "Camille",
    last_name: str = "Martin",
    stripe_customer_id: str | None = None,
    referral_code: str | None = None,
) -> Kine:
    kine = Kine(
        uid=uid,
        email=email or f"{uid}@example.com",
        first_name=first_name,
        last_name=last_name,
        stripe_customer_id=stripe_customer_id,
        referral_code=referral_code,
    )
    db.add(kine)
    await db.commit()
    await db.refresh(kine)
    return kine


async def create_subscription(
    db: AsyncSession,
    kine: Kine,
    plan: PlanType = PlanType.PRATIQUE,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    stripe_subscription_id: str | None = None,
    last_event_created: int | None = None,
) -> Subscription:
    subscription = Subscription(
        kine_id=kine.id,
        plan_type=plan.value,
        status=status.value,
        stripe_subscription_id=stripe_subscription_id or f"sub_{kine.id:04d}",
        stripe_customer_id=kine.stripe_customer_id,
        last_event_created=last_event_created,
    )
    db.add(subscription)
    await db.commit()
    await db.refresh(subscription)
    return subscription


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession], clock: FakeClock) -> FastAPI:
    application = create_app(InMemoryRateLimitStore(clock=clock))

    async def override_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db_session] = override_db_session
    application.dependency_overrides[get_current_user] = fake_current_user
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {TEST_UID_HEADER: TEST_UID}
