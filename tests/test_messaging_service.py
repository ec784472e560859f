"""WhatsApp sends with template fallback, against a mocked Cloud API."""

import json
from collections.abc import Callable

import httpx

from clients.whatsapp_client import WhatsAppClient
from core.config import settings
from services.messaging_service import MessagingService, deep_link_token

Responder = Callable[[dict], httpx.Response]


class FakeCloudAPI:
    """Records payloads and answers with a per-template responder."""

    def __init__(self, failing_templates: set[str] | None = None, fail_text: bool = False):
        self.payloads: list[dict] = []
        self.failing_templates = failing_templates or set()
        self.fail_text = fail_text

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.payloads.append(payload)

        failing = (
            payload["type"] == "text" and self.fail_text
        ) or payload.get("template", {}).get("name") in self.failing_templates
        if failing:
            return httpx.Response(
                400,
                json={"error": {"message": "Template not approved", "code": 132001}},
            )
        return httpx.Response(
            200, json={"messages": [{"id": f"wamid.{len(self.payloads)}"}]}
        )


def make_service(api: FakeCloudAPI) -> MessagingService:
    client = WhatsAppClient(
        access_token="token",
        phone_number_id="1234567890",
        transport=httpx.MockTransport(api),
    )
    return MessagingService(client)


def test_deep_link_token_is_last_path_segment() -> None:
    assert deep_link_token("https://app.kineai.fr/chat/abc123") == "abc123"
    assert deep_link_token("https://app.kineai.fr/chat/abc123/") == "abc123"
    assert deep_link_token("abc123") == "abc123"


async def test_link_template_is_sent_first() -> None:
    api = FakeCloudAPI()

    result = await make_service(api).send(
        "06 12 34 56 78", message="Léa", deep_link="https://app.kineai.fr/chat/tok42"
    )

    assert result.success is True
    assert result.data["recipient"] == "33612345678"
    assert result.data["template"] == settings.whatsapp_link_template
    assert result.data["fallback"] is False
    assert result.data["messageId"] == "wamid.1"

    [payload] = api.payloads
    assert payload["to"] == "33612345678"
    components = payload["template"]["components"]
    assert components[0]["parameters"] == [{"type": "text", "text": "Léa"}]
    assert components[1]["sub_type"] == "url"
    assert components[1]["parameters"] == [{"type": "text", "text": "tok42"}]


async def test_plain_text_without_deep_link() -> None:
    api = FakeCloudAPI()

    result = await make_service(api).send("+33612345678", message="Bonjour")

    assert result.success is True
    assert api.payloads[0]["type"] == "text"
    assert api.payloads[0]["text"] == {"body": "Bonjour"}


async def test_falls_back_to_generic_template() -> None:
    api = FakeCloudAPI(failing_templates={settings.whatsapp_link_template})

    result = await make_service(api).send(
        "0612345678", message="Léa", deep_link="https://app.kineai.fr/chat/tok42"
    )

    assert result.success is True
    assert result.data["fallback"] is True
    assert result.data["template"] == settings.whatsapp_fallback_template
    assert result.data["primaryError"]["status_code"] == 400
    assert result.data["primaryError"]["message"] == "Template not approved"
    assert [p["template"]["name"] for p in api.payloads] == [
        settings.whatsapp_link_template,
        settings.whatsapp_fallback_template,
    ]


async def test_both_failures_are_reported_together() -> None:
    api = FakeCloudAPI(
        failing_templates={
            settings.whatsapp_link_template,
            settings.whatsapp_fallback_template,
        }
    )

    result = await make_service(api).send(
        "0612345678", deep_link="https://app.kineai.fr/chat/tok42"
    )

    assert result.success is False
    assert set(result.error) == {"primary", "fallback"}
    assert result.to_dict() == {"success": False, "error": result.error}


async def test_invalid_phone_sends_nothing() -> None:
    api = FakeCloudAPI()

    result = await make_service(api).send("12", message="Bonjour")

    assert result.success is False
    assert "phone" in result.error
    assert api.payloads == []


async def test_transport_error_triggers_fallback() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        calls.append(payload["type"])
        if payload["type"] == "text":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"messages": [{"id": "wamid.fallback"}]})

    client = WhatsAppClient(
        access_token="token",
        phone_number_id="1234567890",
        transport=httpx.MockTransport(handler),
    )

    result = await MessagingService(client).send("0612345678", message="Bonjour")

    assert result.success is True
    assert result.data["fallback"] is True
    assert calls == ["text", "template"]
