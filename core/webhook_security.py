"""Authentication of inbound provider webhooks."""

import logging
import secrets

import stripe
from fastapi import HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from core.config import settings
from core.exceptions import WebhookSignatureError
from schemas.webhooks import StripeEvent
from utils.log_sanitizer import masked
from utils.network import get_client_ip, ip_in_networks

logger = logging.getLogger(__name__)

WHATSAPP_SUBSCRIBE_MODE = "subscribe"


def verify_stripe_event(payload: bytes, sig_header: str | None) -> StripeEvent:
    """
    Authenticate a Stripe delivery and parse its envelope.

    The signature is computed over the byte-exact body, so ``payload`` must
    be the raw request body, never a re-serialized one.

    Raises:
        WebhookSignatureError: missing header, bad signature, timestamp
            outside tolerance, or an unparseable payload.
    """
    if not sig_header:
        raise WebhookSignatureError("Missing stripe-signature header")

    try:
        payload_text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookSignatureError("Payload is not valid UTF-8") from e

    try:
        stripe.WebhookSignature.verify_header(
            payload_text,
            sig_header,
            settings.stripe_webhook_secret,
            settings.stripe_webhook_tolerance,
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(f"Invalid signature: {e.user_message or e}") from e

    try:
        return StripeEvent.model_validate_json(payload)
    except PydanticValidationError as e:
        raise WebhookSignatureError("Invalid event payload") from e


def is_allowed_whatsapp_source(ip: str) -> bool:
    """Check the caller against the configured Meta networks."""
    if settings.is_development:
        logger.warning(
            "⚠️ WhatsApp webhook origin check BYPASSED (development mode) - "
            f"caller {masked(ip, 'ip')}"
        )
        return True

    return ip_in_networks(ip, settings.whatsapp_allowed_networks)


async def require_whatsapp_origin(request: Request) -> str:
    """Dependency rejecting WhatsApp deliveries from outside the allow-list."""
    client_ip = get_client_ip(request, settings.proxy_networks())

    if not is_allowed_whatsapp_source(client_ip):
        logger.warning(
            f"🚫 WhatsApp webhook rejected from {masked(client_ip, 'ip')}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )

    return client_ip


def verify_whatsapp_handshake(
    mode: str | None, token: str | None, challenge: str | None
) -> str | None:
    """Return the challenge to echo, or None when the handshake must be refused."""
    if mode != WHATSAPP_SUBSCRIBE_MODE or not token:
        return None
    if not secrets.compare_digest(
        token.encode("utf-8"), settings.whatsapp_webhook_token.encode("utf-8")
    ):
        return None
    return challenge if challenge is not None else ""
