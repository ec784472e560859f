"""WhatsApp Cloud API webhook endpoints."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from core.webhook_security import require_whatsapp_origin, verify_whatsapp_handshake
from utils.log_sanitizer import masked

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_RECEIVED = "EVENT_RECEIVED"


def summarize_whatsapp_payload(payload: Any) -> list[str]:
    """One log-safe line per status update or inbound message."""
    if not isinstance(payload, dict):
        return []

    lines: list[str] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for item in value.get("statuses") or []:
                lines.append(
                    f"status {item.get('status')} for message "
                    f"{masked(item.get('id'))} to {masked(item.get('recipient_id'), 'phone')}"
                )
            for message in value.get("messages") or []:
                lines.append(
                    f"inbound {message.get('type')} message "
                    f"from {masked(message.get('from'), 'phone')}"
                )
    return lines


@router.get("/whatsapp", response_class=PlainTextResponse)
async def whatsapp_handshake(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    """Subscription handshake: echo the challenge when the token matches."""
    echoed = verify_whatsapp_handshake(mode, token, challenge)
    if echoed is None:
        logger.warning(f"WhatsApp handshake refused (mode={mode})")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    logger.info("WhatsApp webhook verified")
    return PlainTextResponse(echoed)


@router.post("/whatsapp", response_class=PlainTextResponse)
async def whatsapp_event(
    request: Request,
    client_ip: str = Depends(require_whatsapp_origin),
) -> PlainTextResponse:
    """
    Receive delivery statuses and inbound messages.

    Always acknowledged once the origin check passes, even when the body
    cannot be parsed, so Meta does not retry indefinitely.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning(f"Unparseable WhatsApp webhook body from {masked(client_ip, 'ip')}")
        return PlainTextResponse(EVENT_RECEIVED)

    for line in summarize_whatsapp_payload(payload):
        logger.info(f"WhatsApp {line}")

    return PlainTextResponse(EVENT_RECEIVED)
