"""Referral program routes."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AuthorizationError
from core.rate_limit import RateLimited
from core.subscription import get_current_kine
from database.connection import get_db_session
from database.models import Kine
from schemas.referral import (
    GenerateCodeResponse,
    MyReferralResponse,
    ReferralStatsResponse,
    ValidateCodeResponse,
)
from services.referral_service import ReferralService, referral_link

router = APIRouter()


@router.post("/generate-code", response_model=GenerateCodeResponse)
async def generate_code(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> GenerateCodeResponse:
    """
    Get or create the kiné's referral code.

    Only kinés with an active subscription can refer colleagues.
    """
    try:
        code, is_new = await ReferralService(db_session).generate_code(kine)
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message) from e

    return GenerateCodeResponse(code=code, link=referral_link(code), is_new=is_new)


@router.get("/stats", response_model=ReferralStatsResponse)
async def get_stats(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> ReferralStatsResponse:
    """Referral counts, earned credits and this month's usage."""
    stats = await ReferralService(db_session).stats(kine)
    return ReferralStatsResponse.model_validate(stats)


@router.get("/validate/{code}", response_model=ValidateCodeResponse)
async def validate_code(
    code: str,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> ValidateCodeResponse:
    """Public check of a referral code, used on the signup page."""
    referrer = await ReferralService(db_session).validate_code(code)
    if referrer is None:
        return ValidateCodeResponse(valid=False, error="Code de parrainage invalide")

    return ValidateCodeResponse(
        valid=True,
        referrer_first_name=referrer.first_name,
        message="Code valide : un mois offert après votre premier renouvellement",
    )


@router.get("/my-referral", response_model=MyReferralResponse)
async def my_referral(
    request: Request,
    kine: Kine = Depends(get_current_kine),  # noqa: B008
    db_session: AsyncSession = Depends(get_db_session),  # noqa: B008
    _: RateLimited = None,
) -> MyReferralResponse:
    referral = await ReferralService(db_session).referral_of(kine)
    if referral is None:
        return MyReferralResponse(referred=False)

    return MyReferralResponse(
        referred=True,
        referrer_name=referral.referrer.first_name,
        status=referral.status,
        credited_at=referral.credited_at,
    )
