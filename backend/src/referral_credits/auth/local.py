"""Local authentication service (email/password)."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from referral_credits.accounts.models import Account
from referral_credits.auth.tokens import TokenDenylist
from referral_credits.logging_config import get_logger
from referral_credits.settings import settings
from referral_credits.storage.db import db
from referral_credits.storage.models import utcnow

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class EmailAlreadyRegistered(ValueError):
    """Raised when registering an email that already has an account."""


class LocalAuthService:
    """Authentication service for local (email/password) accounts."""

    def __init__(self, denylist: TokenDenylist | None = None):
        """Initialize auth service.

        Args:
            denylist: Revoked token store (a private one by default)
        """
        self.denylist = denylist or TokenDenylist()
        self.logger = get_logger(__name__)

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit)."""
        return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")

    def hash_password(self, password: str) -> str:
        """Hash a password."""
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        """Verify a password against hash."""
        return pwd_context.verify(self._truncate_password(password), hashed)

    # ==================== ACCOUNTS ====================

    def create_account(
        self,
        email: str,
        password: str | None = None,
        name: str | None = None,
        is_admin: bool = False,
    ) -> Account:
        """Create a new local account.

        Args:
            email: Account email
            password: Plain password (None for accounts created by operators)
            name: Optional name
            is_admin: Grant admin rights

        Returns:
            Created account

        Raises:
            EmailAlreadyRegistered: If email already exists
        """
        email = email.strip().lower()

        password_hash = self.hash_password(password) if password else None

        # The unique index on email decides concurrent registrations
        try:
            with db.session() as session:
                account = Account(
                    email=email,
                    name=name,
                    password_hash=password_hash,
                    credit_balance=0,
                    is_admin=is_admin,
                )
                session.add(account)
                session.flush()
        except IntegrityError:
            self.logger.info("account_email_taken", email=email)
            raise EmailAlreadyRegistered("Email already registered") from None

        self.logger.info("account_created", account_id=account.id, email=email)
        return account

    def authenticate(self, email: str, password: str) -> Account | None:
        """Authenticate an account.

        Returns:
            Account if credentials are valid, None otherwise
        """
        with db.session() as session:
            account = session.scalar(
                select(Account).where(
                    Account.email == email.strip().lower(),
                    Account.is_active == True,  # noqa: E712
                )
            )

            if not account or not account.password_hash:
                return None

            if not self.verify_password(password, account.password_hash):
                return None

            account.last_login_at = utcnow()

        self.logger.info("account_authenticated", account_id=account.id)
        return account

    def get_account_by_id(self, account_id: int) -> Account | None:
        """Get an active account by ID."""
        with db.session() as session:
            return session.scalar(
                select(Account).where(
                    Account.id == account_id,
                    Account.is_active == True,  # noqa: E712
                )
            )

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        account: Account,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Args:
            account: Account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=settings.jwt_expire_hours)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(account.id),
            "email": account.email,
            "admin": bool(account.is_admin),
            "exp": now + expires_delta,
            "iat": now,
            "jti": uuid.uuid4().hex,  # Unique per issued token
        }
        return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Returns:
            Token payload or None if invalid, expired or revoked
        """
        if self.denylist.is_revoked(token):
            self.logger.debug("token_revoked_rejected")
            return None

        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def revoke_token(self, token: str) -> bool:
        """Revoke a token until it expires.

        Returns:
            True if the token was valid and is now revoked
        """
        payload = self.verify_token(token)
        if not payload:
            return False

        self.denylist.revoke(token, float(payload["exp"]))
        self.logger.info("token_revoked", account_id=payload.get("sub"))
        return True

    def get_account_from_token(self, token: str) -> Account | None:
        """Get the account a token was issued to."""
        payload = self.verify_token(token)
        if not payload:
            return None

        account_id = payload.get("sub")
        if not account_id:
            return None

        return self.get_account_by_id(int(account_id))


# Singleton instance
auth_service = LocalAuthService()
