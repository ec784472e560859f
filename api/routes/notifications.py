"""Dashboard notification routes."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.rate_limit import RateLimited
from core.subscription import get_current_kine
from database.connection import get_db_session
from database.models import Kine
from schemas.notifications import (
    MarkReadResponse,
    NotificationListResponse,
    NotificationResponse,
)
from services.notification_service import NotificationService

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    unread_only: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    _: RateLimited = None,
) -> NotificationListResponse:
    """Newest notifications first, with the total unread count."""
    notifications, unread_count = await NotificationService(db_session).list_for_kine(
        kine.id, unread_only=unread_only, limit=limit, offset=offset
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        unread_count=unread_count,
    )


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: int,
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> MarkReadResponse:
    await NotificationService(db_session).mark_read(kine.id, notification_id)
    return MarkReadResponse(updated=1)


@router.post("/read-all", response_model=MarkReadResponse)
async def mark_all_read(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> MarkReadResponse:
    updated = await NotificationService(db_session).mark_all_read(kine.id)
    return MarkReadResponse(updated=updated)
