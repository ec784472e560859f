"""Outbound patient messaging with a template fallback."""

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from clients.whatsapp_client import WhatsAppClient, whatsapp_client
from core.config import settings
from core.exceptions import WhatsAppAPIError
from utils.log_sanitizer import masked
from utils.phone import InvalidPhoneNumberError, normalize_phone_number

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    """Uniform outcome of a send: ``data`` on success, ``error`` otherwise."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: Any = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


def deep_link_token(deep_link: str) -> str:
    """The last path segment of a link, used as the URL button suffix."""
    path = urlparse(deep_link).path.rstrip("/")
    return path.rsplit("/", 1)[-1] if path else deep_link


def _describe(error: WhatsAppAPIError) -> dict[str, Any]:
    return {
        "message": error.message,
        "status_code": error.status_code,
        "response": error.response,
    }


def _message_id(response: dict[str, Any]) -> str | None:
    messages = response.get("messages") or []
    return messages[0].get("id") if messages else None


class MessagingService:
    """Sends patient messages through WhatsApp."""

    def __init__(self, client: WhatsAppClient) -> None:
        self.client = client

    async def send(
        self,
        phone_number: str,
        message: str | None = None,
        deep_link: str | None = None,
    ) -> SendResult:
        """
        Send a message, falling back to the generic template on failure.

        With a deep link the primary attempt is the link template (``message``
        fills the body placeholder, the link token fills the URL button);
        without one it is a plain text message. Recording the send is left
        to the caller, once a successful result is returned.
        """
        try:
            recipient = normalize_phone_number(phone_number)
        except InvalidPhoneNumberError as e:
            return SendResult(success=False, error={"phone": str(e)})

        primary_template = settings.whatsapp_link_template if deep_link else None
        try:
            if deep_link:
                response = await self.client.send_template(
                    recipient,
                    primary_template,
                    body_parameters=[message] if message else None,
                    button_url_parameter=deep_link_token(deep_link),
                )
            elif message:
                response = await self.client.send_text(recipient, message)
            else:
                raise WhatsAppAPIError("Nothing to send: no message and no link")

            return SendResult(
                success=True,
                data={
                    "recipient": recipient,
                    "template": primary_template,
                    "fallback": False,
                    "messageId": _message_id(response),
                    "response": response,
                },
            )
        except WhatsAppAPIError as primary_error:
            logger.warning(
                f"Primary WhatsApp send to {masked(recipient, 'phone')} failed: "
                f"{primary_error.message}"
            )
            primary_failure = _describe(primary_error)

        fallback_template = settings.whatsapp_fallback_template
        try:
            response = await self.client.send_template(recipient, fallback_template)
        except WhatsAppAPIError as fallback_error:
            logger.error(
                f"Fallback WhatsApp send to {masked(recipient, 'phone')} failed: "
                f"{fallback_error.message}"
            )
            return SendResult(
                success=False,
                error={"primary": primary_failure, "fallback": _describe(fallback_error)},
            )

        return SendResult(
            success=True,
            data={
                "recipient": recipient,
                "template": fallback_template,
                "fallback": True,
                "messageId": _message_id(response),
                "response": response,
                "primaryError": primary_failure,
            },
        )


def get_messaging_service() -> MessagingService:
    """Dependency returning the messaging service bound to the global client."""
    return MessagingService(whatsapp_client)
