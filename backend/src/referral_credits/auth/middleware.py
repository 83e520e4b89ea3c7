"""Authentication dependencies for FastAPI."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from referral_credits.accounts.models import Account
from referral_credits.auth.local import auth_service
from referral_credits.logging_config import get_logger

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Account | None:
    """Get current authenticated account.

    Args:
        request: FastAPI request
        credentials: Bearer token

    Returns:
        Account or None if not authenticated
    """
    if not credentials:
        return None

    token = credentials.credentials
    account = auth_service.get_account_from_token(token)

    if account:
        # Kept for logout, which revokes the presented token
        request.state.user = account
        request.state.token = token

    return account


def require_auth(user: Account | None = Depends(get_current_user)) -> Account:
    """Require authentication - raises 401 if not authenticated.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(user: Account = Depends(require_auth)) -> Account:
    """Require admin privileges.

    Raises:
        HTTPException: 403 if not admin
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
