"""Schemas for inbound provider webhooks."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from core.constants import WebhookOutcome


class StripeEventData(BaseModel):
    """The ``data`` member of a Stripe event."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    object_: dict[str, Any] = Field(..., alias="object")
    previous_attributes: dict[str, Any] | None = None


class StripeEvent(BaseModel):
    """Verified Stripe event envelope."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created: int = Field(..., description="Unix timestamp of event creation")
    livemode: bool = False
    api_version: str | None = None
    data: StripeEventData

    @property
    def data_object(self) -> dict[str, Any]:
        return self.data.object_


class HandlerResult(BaseModel):
    """What a handler did with an event."""

    status: WebhookOutcome
    detail: str | None = None


class StripeWebhookAck(BaseModel):
    """Acknowledgement returned to Stripe."""

    model_config = ConfigDict(populate_by_name=True)

    received: bool = True
    event_type: str = Field(..., alias="eventType")
    event_id: str = Field(..., alias="eventId")
    handler_result: HandlerResult = Field(..., alias="handlerResult")


class WebhookRejection(BaseModel):
    """Body of a 400 answer to an unauthenticated delivery."""

    error: str
    details: str
    timestamp: datetime


class WebhookCriticalFailure(BaseModel):
    """Body of a 500 answer asking the provider to retry."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    event_type: str = Field(..., alias="eventType")
    event_id: str = Field(..., alias="eventId")
