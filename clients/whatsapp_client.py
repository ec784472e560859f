"""WhatsApp Cloud API client."""

import logging
from typing import Any

import httpx

from core.config import settings
from core.exceptions import WhatsAppAPIError
from utils.log_sanitizer import masked

logger = logging.getLogger(__name__)


class WhatsAppClient:
    """Client for sending messages through the WhatsApp Cloud API."""

    def __init__(
        self,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        api_version: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the client.

        Args:
            access_token: Cloud API bearer token (defaults to settings)
            phone_number_id: Sender phone number ID (defaults to settings)
            api_version: Graph API version (defaults to settings)
            transport: Optional httpx transport, used to stub the API in tests
            timeout: Request timeout in seconds
        """
        self.access_token = access_token or settings.whatsapp_access_token
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_id
        self.api_version = api_version or settings.whatsapp_api_version
        self._transport = transport
        self._timeout = timeout

    @property
    def messages_url(self) -> str:
        return (
            f"https://graph.facebook.com/{self.api_version}/"
            f"{self.phone_number_id}/messages"
        )

    async def send_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST a message payload.

        Returns:
            The decoded API response

        Raises:
            WhatsAppAPIError: transport failure or non-2xx answer
        """
        if not self.access_token or not self.phone_number_id:
            raise WhatsAppAPIError("WhatsApp Cloud API is not configured")

        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            ) as client:
                response = await client.post(
                    self.messages_url, json=payload, headers=headers
                )
        except httpx.HTTPError as e:
            raise WhatsAppAPIError(f"WhatsApp request failed: {e}") from e

        try:
            data: dict[str, Any] = response.json()
        except ValueError:
            data = {"raw": response.text}

        if response.is_error:
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            raise WhatsAppAPIError(
                message or f"WhatsApp API returned {response.status_code}",
                status_code=response.status_code,
                response=data,
            )

        logger.info(f"WhatsApp message accepted for {masked(payload.get('to'), 'phone')}")
        return data

    async def send_text(self, to: str, body: str) -> dict[str, Any]:
        return await self.send_payload(
            {
                "messaging_product": "whatsapp",
                "to": to,
                "type": "text",
                "text": {"body": body},
            }
        )

    async def send_template(
        self,
        to: str,
        name: str,
        language: str | None = None,
        body_parameters: list[str] | None = None,
        button_url_parameter: str | None = None,
    ) -> dict[str, Any]:
        """
        Send an approved template.

        Args:
            to: Normalized recipient number
            name: Template name
            language: Template language code (defaults to settings)
            body_parameters: Values for the body placeholders, in order
            button_url_parameter: Dynamic suffix of the first URL button
        """
        components: list[dict[str, Any]] = []
        if body_parameters:
            components.append(
                {
                    "type": "body",
                    "parameters": [
                        {"type": "text", "text": value} for value in body_parameters
                    ],
                }
            )
        if button_url_parameter:
            components.append(
                {
                    "type": "button",
                    "sub_type": "url",
                    "index": "0",
                    "parameters": [{"type": "text", "text": button_url_parameter}],
                }
            )

        template: dict[str, Any] = {
            "name": name,
            "language": {"code": language or settings.whatsapp_template_language},
        }
        if components:
            template["components"] = components

        return await self.send_payload(
            {
                "messaging_product": "whatsapp",
                "to": to,
                "type": "template",
                "template": template,
            }
        )


# Global client instance
whatsapp_client = WhatsAppClient()
