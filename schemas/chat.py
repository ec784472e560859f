"""Kiné assistant chat schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ChatMessageRequest(BaseModel):
    """Message sent to the assistant."""

    message: str = Field(
        ...,
        description="Question for the assistant",
        min_length=1,
        max_length=4000,
    )


class ChatMessageResponse(BaseModel):
    """A stored chat message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    role: str = Field(..., description="user or assistant")
    content: str
    created_at: datetime


class ChatHistoryResponse(BaseModel):
    """Conversation of a kiné, oldest first."""

    messages: list[ChatMessageResponse] = Field(default_factory=list)
    total: int = 0


class ClearHistoryResponse(BaseModel):
    deleted: int
