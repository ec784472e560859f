"""Programme delivery schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SendWhatsAppRequest(BaseModel):
    """Link to send to the patient of a programme."""

    model_config = ConfigDict(populate_by_name=True)

    chat_link: str = Field(
        ...,
        alias="chatLink",
        description="Patient chat URL; its last path segment is the access token",
        min_length=1,
        max_length=2048,
    )


class SendWhatsAppResponse(BaseModel):
    """Outcome of a WhatsApp delivery."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    phone: str = Field(..., description="Normalized recipient number")
    sent_at: datetime = Field(..., alias="sentAt")
