"""Dashboard routes: subscription, referral, notifications and chat."""

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from api.routes import health
from clients.openai_client import OpenAIClient
from core.config import settings
from core.constants import NotificationType, PlanType, SubscriptionStatus
from database.models import Kine
from services.chat_service import KineChatService, get_chat_service
from services.notification_service import NotificationService
from tests.conftest import TEST_UID, create_kine, create_subscription


class ScriptedOpenAIClient(OpenAIClient):
    """Answers without calling OpenAI and remembers the context it got."""

    def __init__(self) -> None:
        self.model = "scripted"
        self.histories: list[list[dict]] = []

    async def generate_response(self, text, conversation_history=None, system_prompt=None):
        self.histories.append(list(conversation_history or []))
        return f"Réponse à : {text}"


@pytest.fixture
async def kine(db_session: AsyncSession) -> Kine:
    return await create_kine(db_session, uid=TEST_UID, stripe_customer_id="cus_me")


@pytest.fixture
def assistant(app: FastAPI) -> ScriptedOpenAIClient:
    client = ScriptedOpenAIClient()
    app.dependency_overrides[get_chat_service] = lambda: KineChatService(client)
    return client


async def test_health(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Request-ID" in response.headers


async def test_liveness(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/v1/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


async def test_readiness_follows_database(
    client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    database = {"status": "healthy", "message": "Database connection OK"}

    async def fake_check() -> dict[str, str]:
        return dict(database)

    monkeypatch.setattr(health, "check_database_health", fake_check)

    response = await client.get("/api/v1/health/ready")
    assert response.status_code == 200
    assert response.json()["integrations"]["stripe"] is True

    database["status"] = "unhealthy"
    response = await client.get("/api/v1/health/ready")
    assert response.status_code == 503


async def test_detailed_health_is_debug_only(
    client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    response = await client.get("/api/v1/health/detailed")
    assert response.status_code == 404

    monkeypatch.setattr(settings, "debug", True)
    response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    body = response.json()
    assert body["environment"] == "production"
    assert body["trust_proxy_headers"] is False
    assert body["integrations"]["whatsapp"] is True


async def test_profile_creates_kine_on_first_call(
    client: httpx.AsyncClient, auth_headers: dict[str, str]
) -> None:
    response = await client.get("/api/v1/auth/me", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["uid"] == TEST_UID
    assert body["first_name"] == "Test"
    assert body["last_name"] == "Kine"
    assert body["subscription_status"] is None


async def test_subscription_status(
    client: httpx.AsyncClient,
    db_session: AsyncSession,
    auth_headers: dict[str, str],
    kine: Kine,
) -> None:
    await create_subscription(db_session, kine, plan=PlanType.EXPERT)

    response = await client.get("/api/v1/subscription/status", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["plan_type"] == "EXPERT"
    assert body["status"] == "active"
    assert body["stripe_customer_id"] == "cus_me"


async def test_pionnier_availability(
    client: httpx.AsyncClient, db_session: AsyncSession, kine: Kine
) -> None:
    await create_subscription(
        db_session, kine, plan=PlanType.PIONNIER, status=SubscriptionStatus.CANCELED
    )

    response = await client.get("/api/v1/subscription/plans/PIONNIER/availability")

    assert response.status_code == 200
    body = response.json()
    assert body["unlimited"] is False
    assert body["used_slots"] == 1
    assert body["remaining_slots"] == body["max_slots"] - 1


async def test_cancel_without_subscription_is_not_found(
    client: httpx.AsyncClient, auth_headers: dict[str, str], kine: Kine
) -> None:
    response = await client.post("/api/v1/subscription/cancel", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


async def test_referral_code_requires_subscription(
    client: httpx.AsyncClient, auth_headers: dict[str, str], kine: Kine
) -> None:
    response = await client.post("/api/v1/referral/generate-code", headers=auth_headers)

    assert response.status_code == 403


async def test_referral_code_roundtrip(
    client: httpx.AsyncClient,
    db_session: AsyncSession,
    auth_headers: dict[str, str],
    kine: Kine,
) -> None:
    await create_subscription(db_session, kine)

    generated = await client.post("/api/v1/referral/generate-code", headers=auth_headers)
    code = generated.json()["code"]
    validated = await client.get(f"/api/v1/referral/validate/{code}")
    invalid = await client.get("/api/v1/referral/validate/NOPE42")

    assert generated.status_code == 200
    assert generated.json()["is_new"] is True
    assert validated.json()["valid"] is True
    assert validated.json()["referrer_first_name"] == "Camille"
    assert invalid.json()["valid"] is False


async def test_referral_stats_shape(
    client: httpx.AsyncClient, auth_headers: dict[str, str], kine: Kine
) -> None:
    response = await client.get("/api/v1/referral/stats", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["code"] is None
    assert body["stats"]["total"] == 0
    assert body["limits"]["monthly_max"] == 5
    assert body["referrals"] == []


async def test_notifications_list_and_mark_read(
    client: httpx.AsyncClient,
    db_session: AsyncSession,
    auth_headers: dict[str, str],
    kine: Kine,
) -> None:
    service = NotificationService(db_session)
    first = await service.create_notification(
        kine_id=kine.id,
        notification_type=NotificationType.PAYMENT_FAILED,
        title="Échec de paiement",
        message="Le paiement a échoué.",
        metadata={"invoiceId": "in_1"},
    )
    await service.create_notification(
        kine_id=kine.id,
        notification_type=NotificationType.PAIN_ALERT,
        title="Alerte douleur",
        message="Douleur signalée.",
    )
    await db_session.commit()

    listed = await client.get("/api/v1/notifications", headers=auth_headers)
    assert listed.status_code == 200
    assert listed.json()["unread_count"] == 2
    assert {n["type"] for n in listed.json()["notifications"]} == {
        "PAYMENT_FAILED",
        "PAIN_ALERT",
    }

    marked = await client.post(
        f"/api/v1/notifications/{first.id}/read", headers=auth_headers
    )
    assert marked.status_code == 200

    unread = await client.get(
        "/api/v1/notifications", params={"unread_only": "true"}, headers=auth_headers
    )
    assert unread.json()["unread_count"] == 1
    assert [n["type"] for n in unread.json()["notifications"]] == ["PAIN_ALERT"]

    missing = await client.post("/api/v1/notifications/9999/read", headers=auth_headers)
    assert missing.status_code == 404

    read_all = await client.post("/api/v1/notifications/read-all", headers=auth_headers)
    assert read_all.json()["updated"] == 1


async def test_chat_requires_active_subscription(
    client: httpx.AsyncClient,
    auth_headers: dict[str, str],
    assistant: ScriptedOpenAIClient,
    kine: Kine,
) -> None:
    response = await client.post(
        "/api/v1/chat/kine/message", json={"message": "Bonjour"}, headers=auth_headers
    )

    assert response.status_code == 403
    assert assistant.histories == []


async def test_chat_stores_both_turns_and_sends_history(
    client: httpx.AsyncClient,
    db_session: AsyncSession,
    auth_headers: dict[str, str],
    assistant: ScriptedOpenAIClient,
    kine: Kine,
) -> None:
    await create_subscription(db_session, kine)

    first = await client.post(
        "/api/v1/chat/kine/message",
        json={"message": "Protocole LCA ?"},
        headers=auth_headers,
    )
    await client.post(
        "/api/v1/chat/kine/message", json={"message": "Et après ?"}, headers=auth_headers
    )
    history = await client.get("/api/v1/chat/kine/history", headers=auth_headers)

    assert first.status_code == 200
    assert first.json()["role"] == "assistant"
    assert first.json()["content"] == "Réponse à : Protocole LCA ?"
    assert assistant.histories[0] == []
    assert [turn["role"] for turn in assistant.histories[1]] == ["user", "assistant"]
    assert history.json()["total"] == 4

    cleared = await client.delete("/api/v1/chat/kine/history", headers=auth_headers)
    assert cleared.json()["deleted"] == 4


async def test_chat_is_rate_limited(
    client: httpx.AsyncClient,
    db_session: AsyncSession,
    auth_headers: dict[str, str],
    assistant: ScriptedOpenAIClient,
    kine: Kine,
) -> None:
    await create_subscription(db_session, kine)

    statuses = [
        (
            await client.post(
                "/api/v1/chat/kine/message", json={"message": "?"}, headers=auth_headers
            )
        ).status_code
        for _ in range(6)
    ]

    assert statuses == [200] * 5 + [429]
