"""Authentication for the referral credit API (local email/password + JWT)."""

from referral_credits.auth.local import EmailAlreadyRegistered, LocalAuthService, auth_service
from referral_credits.auth.middleware import get_current_user, require_admin, require_auth
from referral_credits.auth.tokens import TokenDenylist

__all__ = [
    "EmailAlreadyRegistered",
    "LocalAuthService",
    "auth_service",
    "TokenDenylist",
    "get_current_user",
    "require_auth",
    "require_admin",
]
