"""Custom exceptions for the application."""

from typing import Any


class KineAIError(Exception):
    """Base exception for the KineAI backend."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(KineAIError):
    """Raised when data validation fails."""


class AuthenticationError(KineAIError):
    """Raised when authentication fails."""


class AuthorizationError(KineAIError):
    """Raised when a kiné lacks access to a resource."""


class NotFoundError(KineAIError):
    """Raised when a requested resource is not found."""


class DatabaseError(KineAIError):
    """Raised when database operations fail."""


class ExternalAPIError(KineAIError):
    """Raised when external API calls fail."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        details: dict[str, Any] = {"service": service}
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details)


class WhatsAppAPIError(ExternalAPIError):
    """Raised when the WhatsApp Cloud API rejects or fails a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict[str, Any] | None = None,
    ):
        super().__init__("WhatsApp", message, status_code)
        self.response = response


class WebhookSignatureError(KineAIError):
    """Raised when an inbound webhook cannot be authenticated."""


class WebhookHandlerError(KineAIError):
    """Base class for errors raised by webhook event handlers."""


class RecoverableWebhookError(WebhookHandlerError):
    """Handler failure that must be acknowledged so the provider stops retrying."""


class CriticalWebhookError(WebhookHandlerError):
    """Infrastructure failure: answer with a server error so the provider retries."""
