"""Referral lifecycle: creation at signup, confirmation and cancellation."""

from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from referral_credits.accounts.credits import AccountManager, account_manager
from referral_credits.accounts.models import Account, CreditOperation
from referral_credits.errors import (
    AlreadyReferred,
    InvalidCode,
    NotEligible,
    NotFound,
    NotPending,
    ReferralCreditError,
    SelfReferral,
)
from referral_credits.logging_config import get_logger
from referral_credits.purchases.models import Purchase, PurchaseStatus
from referral_credits.referral.codes import ReferralCodeGenerator, code_generator, normalize_code
from referral_credits.referral.models import Referral, ReferralStatus
from referral_credits.settings import settings
from referral_credits.storage.db import db
from referral_credits.storage.models import utcnow

logger = get_logger(__name__)


@dataclass
class ApplyResult:
    """Outcome of applying a referral code at signup."""
    referral_id: int
    status: ReferralStatus
    credits_earned: int

    def to_dict(self) -> dict:
        return {
            "referral_id": self.referral_id,
            "status": self.status.value,
            "credits_earned": self.credits_earned,
        }


class ReferralService:
    """State machine for referral records.

    PENDING -> CONFIRMED awards the reward to both sides;
    PENDING -> CANCELLED has no credit effect. Each transition is a single
    conditional UPDATE on the current status, so of two concurrent callers
    exactly one wins and the other gets NotPending.
    """

    def __init__(
        self,
        codes: ReferralCodeGenerator | None = None,
        accounts: AccountManager | None = None,
        reward_credits: int | None = None,
    ):
        """Initialize referral service.

        Args:
            codes: Code generator used to resolve referral codes
            accounts: Account manager used to award credits
            reward_credits: Credits per side on confirmation (defaults to settings)
        """
        self.codes = codes or code_generator
        self.accounts = accounts or account_manager
        if reward_credits is None:
            reward_credits = settings.referral_reward_credits
        self.reward_credits = reward_credits
        self.logger = get_logger(__name__)

    # ==================== CREATION ====================

    def create_referral(self, code: str, new_account_id: int) -> Referral:
        """Create a PENDING referral for a newly registered account.

        Args:
            code: Referral code entered at signup
            new_account_id: ID of the account applying the code

        Returns:
            The PENDING referral

        Raises:
            InvalidCode: If the code does not resolve to an account
            SelfReferral: If the code belongs to the applying account
            NotFound: If the applying account does not exist
            AlreadyReferred: If the applying account already has a referral
            NotEligible: If the applying account already completed a purchase
        """
        referrer = self.codes.resolve_code(code)
        if not referrer:
            self.logger.warning("referral_code_invalid", code=code, account_id=new_account_id)
            raise InvalidCode(code)

        if referrer.id == new_account_id:
            self.logger.warning("referral_self_attempt", account_id=new_account_id, code=code)
            raise SelfReferral(new_account_id)

        with db.session() as session:
            if session.get(Account, new_account_id) is None:
                raise NotFound("account", new_account_id)

        # The unique index on referred_account_id decides concurrent applies
        try:
            with db.session() as session:
                referral = Referral(
                    referrer_account_id=referrer.id,
                    referred_account_id=new_account_id,
                    referral_code=normalize_code(code),
                    status=ReferralStatus.PENDING,
                    credits_earned=0,
                )
                session.add(referral)
                session.flush()

                result = session.execute(
                    update(Account)
                    .where(
                        Account.id == new_account_id,
                        Account.referred_by_account_id.is_(None),
                    )
                    .values(referred_by_account_id=referrer.id, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise AlreadyReferred(new_account_id)

                # Checked under the write lock taken above: a purchase that
                # commits after this point still sees the PENDING referral
                purchased = session.scalar(
                    select(Purchase.id)
                    .where(
                        Purchase.account_id == new_account_id,
                        Purchase.status == PurchaseStatus.COMPLETED,
                    )
                    .limit(1)
                )
                if purchased is not None:
                    self.logger.warning("referral_after_purchase", account_id=new_account_id, code=code)
                    raise NotEligible(new_account_id)
        except IntegrityError:
            self.logger.info(
                "referral_already_exists",
                account_id=new_account_id,
                attempted_code=code,
            )
            raise AlreadyReferred(new_account_id) from None

        self.logger.info(
            "referral_created",
            referral_id=referral.id,
            referrer_id=referrer.id,
            referred_id=new_account_id,
            code=referral.referral_code,
        )
        return referral

    def apply_referral_code(self, code: str, new_account_id: int) -> ApplyResult:
        """Apply a referral code on behalf of a signing-up account.

        Same failures as create_referral.
        """
        referral = self.create_referral(code, new_account_id)
        return ApplyResult(
            referral_id=referral.id,
            status=ReferralStatus(referral.status),
            credits_earned=referral.credits_earned,
        )

    # ==================== TRANSITIONS ====================

    def confirm(self, referral_id: int) -> Referral:
        """Confirm a PENDING referral and award both sides.

        The status check and the write are one conditional UPDATE. Credits
        are awarded afterwards as two independent increments; a failed
        increment is logged and left for an audit, and never reopens the
        referral.

        Args:
            referral_id: Referral ID

        Returns:
            The CONFIRMED referral

        Raises:
            NotFound: If the referral does not exist
            NotPending: If the referral is already CONFIRMED or CANCELLED
        """
        with db.session() as session:
            result = session.execute(
                update(Referral)
                .where(
                    Referral.id == referral_id,
                    Referral.status == ReferralStatus.PENDING,
                )
                .values(
                    status=ReferralStatus.CONFIRMED,
                    confirmed_at=utcnow(),
                    credits_earned=self.reward_credits,
                )
                .execution_options(synchronize_session=False)
            )
            transitioned = result.rowcount == 1
            referral = session.get(Referral, referral_id)

        if not transitioned:
            self._raise_transition_failure(referral_id, referral, "confirm")

        self.logger.info(
            "referral_confirmed",
            referral_id=referral.id,
            referrer_id=referral.referrer_account_id,
            referred_id=referral.referred_account_id,
            credits_earned=referral.credits_earned,
        )

        self._award_credits(referral)
        return referral

    def cancel(self, referral_id: int, reason: str | None = None) -> Referral:
        """Cancel a PENDING referral. No credits move.

        Args:
            referral_id: Referral ID
            reason: Optional cancellation reason

        Returns:
            The CANCELLED referral

        Raises:
            NotFound: If the referral does not exist
            NotPending: If the referral is already CONFIRMED or CANCELLED
        """
        with db.session() as session:
            result = session.execute(
                update(Referral)
                .where(
                    Referral.id == referral_id,
                    Referral.status == ReferralStatus.PENDING,
                )
                .values(
                    status=ReferralStatus.CANCELLED,
                    cancelled_at=utcnow(),
                    cancellation_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            transitioned = result.rowcount == 1
            referral = session.get(Referral, referral_id)

        if not transitioned:
            self._raise_transition_failure(referral_id, referral, "cancel")

        self.logger.info("referral_cancelled", referral_id=referral_id, reason=reason)
        return referral

    def _raise_transition_failure(self, referral_id: int, referral: Referral | None, action: str) -> None:
        if referral is None:
            self.logger.warning(f"referral_{action}_not_found", referral_id=referral_id)
            raise NotFound("referral", referral_id)

        status = ReferralStatus(referral.status).value
        self.logger.info(f"referral_{action}_not_pending", referral_id=referral_id, status=status)
        raise NotPending(referral_id, status)

    def _award_credits(self, referral: Referral) -> None:
        awards = (
            (referral.referrer_account_id, CreditOperation.REFERRAL_REWARD,
             f"Referral reward for account #{referral.referred_account_id}"),
            (referral.referred_account_id, CreditOperation.REFERRAL_BONUS,
             "Referral bonus for first purchase"),
        )
        for account_id, operation, description in awards:
            try:
                self.accounts.increment_credits(
                    account_id,
                    referral.credits_earned,
                    operation=operation,
                    referral_id=referral.id,
                    description=description,
                )
            except ReferralCreditError as e:
                # Referral stays CONFIRMED; the integrity check reports the gap
                self.logger.error(
                    "referral_credit_award_failed",
                    referral_id=referral.id,
                    account_id=account_id,
                    operation=operation,
                    error=e.code,
                )

    # ==================== QUERIES ====================

    def get_code_details(self, code: str) -> dict | None:
        """Public details for a referral code, shown on the signup page.

        Only the referrer's first name is exposed.

        Returns:
            Dict with code, referrer name and reward, or None if the code is invalid
        """
        referrer = self.codes.resolve_code(code)
        if not referrer:
            return None

        return {
            "referral_code": referrer.referral_code,
            "referrer_name": referrer.first_name or "A friend",
            "reward_credits": self.reward_credits,
            "message": (
                f"You and {referrer.first_name or 'your friend'} will each earn "
                f"{self.reward_credits} credits after your first purchase!"
            ),
        }

    def get_referral(self, referral_id: int) -> Referral:
        """Get a referral by ID.

        Raises:
            NotFound: If the referral does not exist
        """
        with db.session() as session:
            referral = session.get(Referral, referral_id)
            if not referral:
                raise NotFound("referral", referral_id)
            return referral

    def get_referral_for_account(self, account_id: int) -> Referral | None:
        """Get the referral (any status) through which an account signed up."""
        with db.session() as session:
            return session.scalar(
                select(Referral).where(Referral.referred_account_id == account_id)
            )

    def get_pending_for_account(self, account_id: int) -> Referral | None:
        """Get the PENDING referral for a referred account, if any."""
        with db.session() as session:
            return session.scalar(
                select(Referral).where(
                    Referral.referred_account_id == account_id,
                    Referral.status == ReferralStatus.PENDING,
                )
            )


# Singleton instance
referral_service = ReferralService()
