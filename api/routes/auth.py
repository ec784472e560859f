"""Authentication and profile routes."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_user
from core.rate_limit import RateLimited
from core.subscription import get_current_kine
from database.connection import get_db_session
from database.models import Kine
from database.service import DatabaseService
from schemas.auth import AuthenticatedUser, KineProfileResponse

router = APIRouter()


@router.get("/me", response_model=KineProfileResponse)
async def get_profile(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> KineProfileResponse:
    """
    Get the authenticated kiné.

    The record is created on the first call after signup.
    """
    subscription = await DatabaseService(db_session).get_subscription_for_kine(kine.id)

    return KineProfileResponse(
        id=kine.id,
        uid=kine.uid,
        email=kine.email,
        first_name=kine.first_name,
        last_name=kine.last_name,
        plan_type=subscription.plan_type if subscription else None,
        subscription_status=subscription.status if subscription else None,
    )


@router.post("/verify")
async def verify_token(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),  # noqa: B008
    _: RateLimited = None,
) -> dict[str, str | bool]:
    """Verify ID token validity."""
    return {
        "valid": True,
        "user_id": current_user.user_id,
        "message": "Token is valid",
    }
