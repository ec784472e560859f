"""Stripe webhook endpoint."""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import CriticalWebhookError, WebhookSignatureError
from core.rate_limit import StripeWebhookRateLimited
from core.webhook_security import verify_stripe_event
from database.connection import get_db_session
from schemas.webhooks import StripeWebhookAck, WebhookCriticalFailure, WebhookRejection
from services.webhook_dispatcher import StripeWebhookDispatcher, get_stripe_dispatcher
from utils.timestamps import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe", response_model=StripeWebhookAck)
async def stripe_webhook(
    request: Request,
    dispatcher: StripeWebhookDispatcher = Depends(get_stripe_dispatcher),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: StripeWebhookRateLimited = None,
) -> JSONResponse:
    """
    Receive a Stripe event.

    - 400 when the signature cannot be verified; nothing is processed.
    - 500 on a critical failure, so Stripe redelivers the event.
    - 200 otherwise, including recoverable handler failures, duplicates
      and event types without a handler.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = verify_stripe_event(payload, sig_header)
    except WebhookSignatureError as e:
        logger.warning(f"Stripe webhook rejected: {e.message}")
        rejection = WebhookRejection(
            error="Webhook signature verification failed",
            details=e.message,
            timestamp=utc_now(),
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=rejection.model_dump(mode="json"),
        )

    logger.info(f"Stripe event received: {event.type} ({event.id})")

    try:
        result = await dispatcher.dispatch(event, db_session)
    except CriticalWebhookError as e:
        logger.error(f"Stripe event {event.id} will be retried: {e.message}")
        failure = WebhookCriticalFailure(
            error="Webhook handler failed", event_type=event.type, event_id=event.id
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=failure.model_dump(by_alias=True, mode="json"),
        )

    ack = StripeWebhookAck(event_type=event.type, event_id=event.id, handler_result=result)
    return JSONResponse(content=ack.model_dump(by_alias=True, mode="json"))
