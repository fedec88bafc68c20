"""Storefront-facing referral endpoints."""

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field

from referral_engine.api.deps import get_referral_service
from referral_engine.api.rate_limit import limiter
from referral_engine.logging_config import get_logger
from referral_engine.referral.errors import NotFoundError
from referral_engine.referral.schemas import ClickEvent
from referral_engine.referral.service import ReferralService, referral_url

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class EnrollRequest(BaseModel):
    """Request to join the referral program."""
    shopify_id: int
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)


class EnrollResponse(BaseModel):
    """Referral code of an enrolled customer."""
    referral_code: str
    referral_url: str
    already_enrolled: bool


class RecentReward(BaseModel):
    discount_code: str
    amount: Decimal
    status: str
    expires_at: str | None


class ReferralStatsResponse(BaseModel):
    """Referral statistics for an enrolled customer."""
    referral_code: str
    referral_url: str
    total_referrals: int
    total_earned: Decimal
    breakdown: dict[str, int]
    recent_rewards: list[RecentReward]


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str = Field(..., max_length=20)


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None


class TrackClickRequest(BaseModel):
    """Referral link visit."""
    code: str = Field(..., min_length=1, max_length=20)
    referrer_url: str | None = None


class TrackClickResponse(BaseModel):
    success: bool
    welcome_discount_code: str | None = None


# ==================== ENDPOINTS ====================


@router.post("/enroll", response_model=EnrollResponse)
@limiter.limit("10/minute")
async def enroll(
    request: Request,
    body: EnrollRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Get or create the referral code of a storefront customer."""
    enrollment = service.enroll(body.shopify_id, body.email, body.name)
    code = enrollment.customer.referral_code

    return EnrollResponse(
        referral_code=code,
        referral_url=referral_url(code),
        already_enrolled=enrollment.already_enrolled,
    )


@router.get("/stats/{shopify_id}", response_model=ReferralStatsResponse)
async def get_referral_stats(
    shopify_id: int,
    service: ReferralService = Depends(get_referral_service),
):
    """Referral statistics for a customer.

    Includes:
    - Referral counts per status
    - Total earned from rewards
    - The 10 most recent rewards
    """
    try:
        stats = service.get_stats(shopify_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    return ReferralStatsResponse(**stats)


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(
    request: Request,
    body: ValidateCodeRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Validate a referral code.

    Returns the referrer's first name for personalization.
    """
    referrer = service.validate_code(body.code)
    if referrer is None:
        return ValidateCodeResponse(valid=False)

    referrer_name = referrer.name.split()[0] if referrer.name else None
    return ValidateCodeResponse(valid=True, referrer_name=referrer_name)


@router.post("/track-click", response_model=TrackClickResponse)
@limiter.limit("60/minute")
async def track_referral_click(
    request: Request,
    body: TrackClickRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Track a click on a referral link."""
    event = ClickEvent(
        referral_code=body.code,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referrer_url=body.referrer_url or request.headers.get("referer"),
    )

    try:
        discount = await service.track_click(event)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    return TrackClickResponse(
        success=True,
        welcome_discount_code=discount.code if discount else None,
    )
