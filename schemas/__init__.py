"""Schemas package for request/response validation."""

from .common import ErrorResponse, HealthResponse
from .webhooks import HandlerResult, StripeEvent, StripeWebhookAck

__all__ = [
    "ErrorResponse",
    "HandlerResult",
    "HealthResponse",
    "StripeEvent",
    "StripeWebhookAck",
]
