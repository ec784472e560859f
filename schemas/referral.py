"""Referral schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class GenerateCodeResponse(BaseModel):
    """The kiné's referral code."""

    code: str = Field(..., description="Referral code")
    link: str = Field(..., description="Signup link carrying the code")
    is_new: bool = Field(..., description="Whether the code was created by this call")


class ReferralCounts(BaseModel):
    total: int = 0
    pending: int = 0
    completed: int = 0
    canceled: int = 0
    total_credits_earned: int = Field(0, description="Credits earned, in cents")


class ReferralLimits(BaseModel):
    monthly_used: int
    monthly_max: int


class ReferralEntry(BaseModel):
    """One referred kiné, anonymized."""

    id: int
    referee_name: str
    plan: str | None = None
    credit: int = 0
    status: str
    date: datetime
    credited_at: datetime | None = None


class ReferralStatsResponse(BaseModel):
    """Referral dashboard of a kiné."""

    code: str | None = None
    link: str | None = None
    stats: ReferralCounts
    limits: ReferralLimits
    referrals: list[ReferralEntry] = Field(default_factory=list)


class ValidateCodeResponse(BaseModel):
    """Result of checking a referral code before signup."""

    valid: bool
    referrer_first_name: str | None = None
    message: str | None = None
    error: str | None = None


class MyReferralResponse(BaseModel):
    """How the current kiné was referred, if at all."""

    referred: bool
    referrer_name: str | None = None
    status: str | None = None
    credited_at: datetime | None = None
