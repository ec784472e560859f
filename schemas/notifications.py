"""Notification schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationResponse(BaseModel):
    """A dashboard notification."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    type: str
    title: str
    message: str
    patient_id: int | None = None
    programme_id: int | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias="notification_metadata"
    )
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse] = Field(default_factory=list)
    unread_count: int = 0


class MarkReadResponse(BaseModel):
    success: bool = True
    updated: int = Field(1, description="Number of notifications marked as read")
