"""Authentication API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field

from referral_credits.accounts.models import Account
from referral_credits.api.rate_limit import limiter
from referral_credits.auth.local import EmailAlreadyRegistered, auth_service
from referral_credits.auth.middleware import require_auth
from referral_credits.auth.registration import registration_service
from referral_credits.logging_config import get_logger
from referral_credits.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ==================== MODELS ====================


class RegisterRequest(BaseModel):
    """Account registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    name: str | None = Field(default=None, max_length=100)
    referral_code: str | None = Field(default=None, max_length=20)


class LoginRequest(BaseModel):
    """Account login request."""
    email: EmailStr
    password: str


class AccountResponse(BaseModel):
    """Account as seen by its owner."""
    id: int
    email: str
    name: str | None
    credit_balance: int
    referral_code: str | None
    referred_by_account_id: int | None = None
    is_admin: bool = False
    created_at: datetime | None = None


class TokenResponse(BaseModel):
    """Access token plus the account it was issued to."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: AccountResponse


class RegisterResponse(TokenResponse):
    """Registration response; referral problems are reported as warnings."""
    referral: dict | None = None
    warnings: list[str] = []


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        email=account.email,
        name=account.name,
        credit_balance=account.credit_balance,
        referral_code=account.referral_code,
        referred_by_account_id=account.referred_by_account_id,
        is_admin=bool(account.is_admin),
        created_at=account.created_at,
    )


# ==================== ENDPOINTS ====================


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(request: Request, body: RegisterRequest):
    """Register a new account.

    An invalid referral code does not block registration; it comes back
    in ``warnings``.
    """
    try:
        result = registration_service.register(
            email=body.email,
            password=body.password,
            name=body.name,
            referral_code=body.referral_code,
        )
    except EmailAlreadyRegistered as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )

    token = auth_service.create_access_token(result.account)

    return RegisterResponse(
        access_token=token,
        expires_in=settings.jwt_expire_hours * 3600,
        user=_account_response(result.account),
        referral=result.referral.to_dict() if result.referral else None,
        warnings=result.warnings,
    )


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(request: Request, body: LoginRequest):
    """Login with email and password."""
    account = auth_service.authenticate(body.email, body.password)

    if not account:
        logger.warning(
            "login_failed",
            email=body.email,
            ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    token = auth_service.create_access_token(account)
    logger.info("account_logged_in", account_id=account.id)

    return TokenResponse(
        access_token=token,
        expires_in=settings.jwt_expire_hours * 3600,
        user=_account_response(account),
    )


@router.get("/me", response_model=AccountResponse)
async def get_me(user: Account = Depends(require_auth)):
    """Get the current account."""
    return _account_response(user)


@router.post("/logout")
async def logout(request: Request, user: Account = Depends(require_auth)):
    """Revoke the presented access token."""
    auth_service.revoke_token(request.state.token)
    logger.info("account_logged_out", account_id=user.id)
    return {"success": True}
