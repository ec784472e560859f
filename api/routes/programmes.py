"""Programme delivery routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import MessageMethod
from core.rate_limit import WhatsAppSendRateLimited
from core.subscription import get_current_kine
from database.connection import get_db_session
from database.models import Kine
from database.service import DatabaseService
from schemas.programmes import SendWhatsAppRequest, SendWhatsAppResponse
from services.messaging_service import MessagingService, get_messaging_service
from utils.log_sanitizer import sanitize_id
from utils.timestamps import ensure_utc, utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/{programme_id}/send-whatsapp",
    response_model=SendWhatsAppResponse,
    response_model_by_alias=True,
)
async def send_programme_link(
    programme_id: int,
    send_request: SendWhatsAppRequest,
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    messaging: MessagingService = Depends(get_messaging_service),  # noqa: B008
    _: WhatsAppSendRateLimited = None,
) -> SendWhatsAppResponse:
    """
    Send the patient chat link of a programme by WhatsApp.

    Limited to one send per programme per hour. The send is recorded in the
    message history only once WhatsApp has accepted it.
    """
    db_service = DatabaseService(db_session)
    programme = await db_service.get_programme_for_kine(programme_id, kine.id)
    if programme is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Programme not found")

    if ensure_utc(programme.date_fin) < utc_now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Programme has expired"
        )

    patient = programme.patient
    if not patient.phone:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Patient has no phone number",
        )
    if not patient.whatsapp_consent:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Patient has not consented to WhatsApp messages",
        )

    result = await messaging.send(
        patient.phone, message=patient.first_name, deep_link=send_request.chat_link
    )
    if not result.success and "phone" in result.error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=result.error["phone"]
        )
    if not result.success:
        logger.error(
            f"WhatsApp send failed for programme {sanitize_id(programme.id)}: {result.error}"
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "whatsapp_send_failed", "details": result.error},
        )

    entry = await db_service.record_message_sent(
        kine_id=kine.id,
        recipient=result.data["recipient"],
        method=MessageMethod.WHATSAPP,
        patient_id=patient.id,
        programme_id=programme.id,
        template_name=result.data.get("template"),
        provider_message_id=result.data.get("messageId"),
    )
    await db_session.commit()

    logger.info(f"Programme {sanitize_id(programme.id)} link sent by WhatsApp")
    return SendWhatsAppResponse(
        success=True,
        message="Lien envoyé par WhatsApp",
        phone=result.data["recipient"],
        sent_at=entry.sent_at,
    )
