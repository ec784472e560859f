"""Kiné resolution and subscription checks for routes."""

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_user
from core.constants import ACTIVE_SUBSCRIPTION_STATUSES
from database.connection import get_db_session
from database.models import Kine
from database.service import DatabaseService
from schemas.auth import AuthenticatedUser


async def get_current_kine(
    current_user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
) -> Kine:
    """
    Dependency returning the kiné record of the authenticated user.

    The record is created on first use so that a freshly signed-up account
    can reach the subscription routes.
    """
    db_service = DatabaseService(db_session)
    return await db_service.get_or_create_kine(
        uid=current_user.user_id,
        email=current_user.email,
        name=current_user.name,
    )


async def require_active_subscription(
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
) -> Kine:
    """
    Dependency that requires an active or trialing subscription.

    Raises:
        HTTPException: 403 if the kiné has no paid access

    Usage:
        @router.post("/paid-feature")
        async def paid_feature(kine: Kine = Depends(require_active_subscription)):
            ...
    """
    subscription = await DatabaseService(db_session).get_subscription_for_kine(kine.id)
    if not subscription or subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This feature requires an active subscription",
        )
    return kine
