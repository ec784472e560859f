"""Kiné assistant chat routes."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.rate_limit import GptRateLimited, RateLimited
from core.subscription import get_current_kine, require_active_subscription
from database.connection import get_db_session
from database.models import Kine
from schemas.chat import (
    ChatHistoryResponse,
    ChatMessageRequest,
    ChatMessageResponse,
    ClearHistoryResponse,
)
from services.chat_service import KineChatService, get_chat_service

router = APIRouter()


@router.post("/message", response_model=ChatMessageResponse)
async def send_message(
    request: Request,
    chat_request: ChatMessageRequest,
    kine: Kine = Depends(require_active_subscription),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    chat_service: KineChatService = Depends(get_chat_service),  # noqa: B008
    _: GptRateLimited = None,
) -> ChatMessageResponse:
    """
    Ask the assistant a question.

    The recent conversation is sent along as context. Both the question
    and the answer are stored.
    """
    reply = await chat_service.send_message(db_session, kine.id, chat_request.message)
    return ChatMessageResponse.model_validate(reply)


@router.get("/history", response_model=ChatHistoryResponse)
async def get_history(
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    chat_service: KineChatService = Depends(get_chat_service),  # noqa: B008
    days: int | None = Query(default=None, ge=1, le=365),
    limit: int = Query(default=100, ge=1, le=500),
) -> ChatHistoryResponse:
    messages = await chat_service.history(db_session, kine.id, days=days, limit=limit)
    return ChatHistoryResponse(
        messages=[ChatMessageResponse.model_validate(m) for m in messages],
        total=len(messages),
    )


@router.delete("/history", response_model=ClearHistoryResponse)
async def clear_history(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    chat_service: KineChatService = Depends(get_chat_service),  # noqa: B008
    _: RateLimited = None,
) -> ClearHistoryResponse:
    deleted = await chat_service.clear_history(db_session, kine.id)
    return ClearHistoryResponse(deleted=deleted)
