"""Stripe signature verification and WhatsApp source checks."""

import pytest

from core.config import settings
from core.constants import Environment
from core.exceptions import WebhookSignatureError
from core.webhook_security import is_allowed_whatsapp_source, verify_stripe_event
from tests.conftest import sign_stripe_payload, stripe_event_payload


def test_valid_signature_returns_parsed_event() -> None:
    payload = stripe_event_payload(
        "invoice.payment_failed", {"id": "in_1", "customer": "cus_1"}, event_id="evt_42"
    )

    event = verify_stripe_event(payload, sign_stripe_payload(payload))

    assert event.id == "evt_42"
    assert event.type == "invoice.payment_failed"
    assert event.data_object["customer"] == "cus_1"


def test_body_must_be_byte_exact() -> None:
    payload = stripe_event_payload("invoice.payment_failed", {"id": "in_1"})
    header = sign_stripe_payload(payload)
    reserialized = payload.replace(b", ", b",")

    with pytest.raises(WebhookSignatureError):
        verify_stripe_event(reserialized, header)


def test_signed_garbage_is_rejected() -> None:
    payload = b'{"not": "an event"}'

    with pytest.raises(WebhookSignatureError, match="Invalid event payload"):
        verify_stripe_event(payload, sign_stripe_payload(payload))


def test_non_utf8_body_is_rejected() -> None:
    with pytest.raises(WebhookSignatureError):
        verify_stripe_event(b"\xff\xfe", "t=1,v1=abc")


def test_whatsapp_allow_list() -> None:
    assert is_allowed_whatsapp_source("157.240.22.35")
    assert is_allowed_whatsapp_source("::ffff:157.240.22.35")
    assert is_allowed_whatsapp_source("2a03:2880:f10d:83:face:b00c:0:25de")
    assert not is_allowed_whatsapp_source("8.8.8.8")
    assert not is_allowed_whatsapp_source("unknown")


def test_whatsapp_check_bypassed_in_development(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(settings, "environment", Environment.DEVELOPMENT)

    assert is_allowed_whatsapp_source("8.8.8.8")
    assert "BYPASSED" in caplog.text
