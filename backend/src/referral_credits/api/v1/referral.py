"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from referral_credits.accounts.models import Account
from referral_credits.api.rate_limit import limiter
from referral_credits.auth.middleware import require_admin, require_auth
from referral_credits.dashboard.service import dashboard_service, referral_link
from referral_credits.logging_config import get_logger
from referral_credits.referral.codes import code_generator
from referral_credits.referral.models import ReferralStatus
from referral_credits.referral.service import referral_service

logger = get_logger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


# ==================== MODELS ====================


class GenerateCodeRequest(BaseModel):
    """Request a referral code, optionally with a readable prefix."""
    name_hint: str | None = Field(default=None, max_length=100)


class ReferralCodeResponse(BaseModel):
    """Response with the account's referral code."""
    referral_code: str
    referral_link: str


class ApplyCodeRequest(BaseModel):
    """Apply a referral code to the current account."""
    referral_code: str = Field(..., min_length=1, max_length=20)


class CancelReferralRequest(BaseModel):
    """Operator cancellation of a pending referral."""
    reason: str | None = Field(default=None, max_length=255)


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referrer_name: str | None = None
    reward_credits: int | None = None


# ==================== CODES ====================


@router.post("/generate", response_model=ReferralCodeResponse)
async def generate_referral_code(
    body: GenerateCodeRequest | None = None,
    user: Account = Depends(require_auth),
):
    """Get the current account's referral code, creating it on first call."""
    code = code_generator.generate_code(user.id, name_hint=body.name_hint if body else None)
    return ReferralCodeResponse(referral_code=code, referral_link=referral_link(code))


@router.get("/code", response_model=ReferralCodeResponse)
async def get_referral_code(user: Account = Depends(require_auth)):
    """Get the current account's referral code.

    Creates a code if the account doesn't have one.
    """
    code = code_generator.generate_code(user.id)
    return ReferralCodeResponse(referral_code=code, referral_link=referral_link(code))


@router.post("/apply", status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def apply_referral_code(request: Request, body: ApplyCodeRequest, user: Account = Depends(require_auth)):
    """Apply a referral code to the current account.

    Creates a PENDING referral; both sides are rewarded on the account's
    first completed purchase.
    """
    result = referral_service.apply_referral_code(body.referral_code, user.id)
    return {"success": True, "referral": result.to_dict()}


@router.get("/validate/{code}", response_model=ValidateCodeResponse)
@limiter.limit("30/minute")
async def validate_referral_code(request: Request, code: str, user: Account = Depends(require_auth)):
    """Check whether a code could be applied by the current account."""
    details = referral_service.get_code_details(code)
    if not details or details["referral_code"] == user.referral_code:
        return ValidateCodeResponse(valid=False)

    return ValidateCodeResponse(
        valid=True,
        referrer_name=details["referrer_name"],
        reward_credits=details["reward_credits"],
    )


@router.get("/details/{code}")
@limiter.limit("30/minute")
async def get_referral_code_details(request: Request, code: str):
    """Public details for a referral link (referrer first name, reward)."""
    details = referral_service.get_code_details(code)
    if not details:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid referral code",
        )
    return details


# ==================== REFERRER VIEWS ====================


@router.get("/stats")
async def get_referral_stats(user: Account = Depends(require_auth)):
    """Referral counts by status and credits earned for the current account."""
    return dashboard_service.get_referral_stats(user.id)


@router.get("/list")
async def list_referrals(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: ReferralStatus | None = Query(default=None, alias="status"),
    user: Account = Depends(require_auth),
):
    """Paginated list of accounts the current account referred."""
    return dashboard_service.list_referrals(user.id, page=page, limit=limit, status=status_filter)


# ==================== ADMIN ====================


@router.post("/{referral_id}/confirm")
async def confirm_referral(referral_id: int, admin: Account = Depends(require_admin)):
    """Confirm a pending referral manually and award both sides."""
    referral = referral_service.confirm(referral_id)
    logger.info("referral_confirmed_by_admin", referral_id=referral_id, admin_id=admin.id)
    return {"success": True, "referral": referral.to_dict()}


@router.post("/{referral_id}/cancel")
async def cancel_referral(
    referral_id: int,
    body: CancelReferralRequest | None = None,
    admin: Account = Depends(require_admin),
):
    """Cancel a pending referral. No credits move."""
    referral = referral_service.cancel(referral_id, reason=body.reason if body else None)
    logger.info("referral_cancelled_by_admin", referral_id=referral_id, admin_id=admin.id)
    return {"success": True, "referral": referral.to_dict()}
