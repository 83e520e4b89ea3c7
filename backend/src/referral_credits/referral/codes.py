"""Referral code generation and resolution."""

import re
import secrets

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from referral_credits.accounts.models import Account
from referral_credits.errors import CodeGenerationExhausted, NotFound
from referral_credits.logging_config import get_logger
from referral_credits.settings import settings
from referral_credits.storage.db import db
from referral_credits.storage.models import utcnow

logger = get_logger(__name__)

# Exclude confusing characters: 0, O, I, L, 1
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_PATTERN = re.compile(r"^[A-Z0-9]{6,10}$")
MIN_CODE_LENGTH = 6
MAX_CODE_LENGTH = 10
NAME_PREFIX_LENGTH = 4


def normalize_code(code: str | None) -> str:
    """Normalize user input to the stored code form."""
    if not code:
        return ""
    return code.strip().upper()


def is_valid_format(code: str | None) -> bool:
    """Check that a code is 6-10 uppercase letters or digits."""
    return bool(CODE_PATTERN.match(normalize_code(code)))


def build_candidate(name_hint: str | None = None, length: int | None = None) -> str:
    """Build a candidate referral code.

    Format: up to 4 characters from the name hint followed by a random
    suffix, e.g. ``LINA7KQ2``. Hints with fewer than 2 usable characters
    produce a fully random code.

    Args:
        name_hint: Optional name to derive a readable prefix from
        length: Total code length (clamped to 6-10)

    Returns:
        Candidate code
    """
    length = min(max(length or settings.code_length, MIN_CODE_LENGTH), MAX_CODE_LENGTH)

    prefix = ""
    if name_hint:
        cleaned = re.sub(r"[^A-Z0-9]", "", name_hint.upper())
        if len(cleaned) >= 2:
            prefix = cleaned[:NAME_PREFIX_LENGTH]

    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length - len(prefix)))
    return prefix + suffix


class ReferralCodeGenerator:
    """Assigns unique referral codes and resolves them back to accounts."""

    def __init__(self, max_attempts: int | None = None):
        """Initialize code generator.

        Args:
            max_attempts: Collision retry bound (defaults to settings)
        """
        if max_attempts is None:
            max_attempts = settings.code_generation_max_attempts
        self.max_attempts = max_attempts
        self.logger = get_logger(__name__)

    def generate_code(self, account_id: int, name_hint: str | None = None) -> str:
        """Get the account's referral code, assigning one if it has none.

        Uniqueness is enforced by the unique index on accounts.referral_code:
        a colliding candidate fails the UPDATE and a fresh one is tried. The
        UPDATE only applies while referral_code IS NULL, so a code is
        persisted at most once even if two requests race.

        Args:
            account_id: Account ID
            name_hint: Optional name for a readable prefix (defaults to the account name)

        Returns:
            The account's referral code

        Raises:
            NotFound: If the account does not exist
            CodeGenerationExhausted: If every attempt collided
        """
        with db.session() as session:
            account = session.get(Account, account_id)
            if not account:
                raise NotFound("account", account_id)
            if account.referral_code:
                return account.referral_code
            hint = name_hint or account.name

        for attempt in range(1, self.max_attempts + 1):
            candidate = build_candidate(hint)
            try:
                with db.session() as session:
                    result = session.execute(
                        update(Account)
                        .where(Account.id == account_id, Account.referral_code.is_(None))
                        .values(referral_code=candidate, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    assigned = result.rowcount == 1
            except IntegrityError:
                self.logger.debug(
                    "referral_code_collision",
                    account_id=account_id,
                    attempt=attempt,
                )
                continue

            if assigned:
                self.logger.info(
                    "referral_code_created",
                    account_id=account_id,
                    code=candidate,
                    attempts=attempt,
                )
                return candidate

            # Another request assigned a code first
            with db.session() as session:
                return session.scalar(
                    select(Account.referral_code).where(Account.id == account_id)
                )

        self.logger.error(
            "referral_code_generation_exhausted",
            account_id=account_id,
            attempts=self.max_attempts,
        )
        raise CodeGenerationExhausted(account_id, self.max_attempts)

    def resolve_code(self, code: str | None) -> Account | None:
        """Resolve a referral code to its owning account.

        Args:
            code: Referral code (case and surrounding whitespace ignored)

        Returns:
            Owning account, or None if the code is malformed or unknown
        """
        normalized = normalize_code(code)
        if not CODE_PATTERN.match(normalized):
            return None

        with db.session() as session:
            return session.scalar(
                select(Account).where(
                    Account.referral_code == normalized,
                    Account.is_active == True,  # noqa: E712
                )
            )


# Singleton instance
code_generator = ReferralCodeGenerator()
