"""First-purchase referral conversion."""

from dataclasses import dataclass
from typing import Protocol

from referral_credits.errors import NotFound, NotPending
from referral_credits.logging_config import get_logger
from referral_credits.purchases.service import purchase_service
from referral_credits.referral.service import ReferralService, referral_service

logger = get_logger(__name__)


class FirstPurchaseChecker(Protocol):
    """Answers whether an account has just made its first completed purchase."""

    def is_first_completed_purchase(self, account_id: int, purchase_id: int | None = None) -> bool:
        ...


@dataclass
class ConversionResult:
    """Outcome of a first-purchase notification."""
    converted: bool
    credits_earned: int | None = None
    referral_id: int | None = None

    def to_dict(self) -> dict:
        if not self.converted:
            return {"converted": False}
        return {
            "converted": True,
            "credits_earned": self.credits_earned,
            "referral_id": self.referral_id,
        }


class ConversionOrchestrator:
    """Turns an account's first completed purchase into a referral conversion.

    Having nothing to convert is a normal outcome, not an error. NotFound and
    NotPending from the confirm step (e.g. a webhook retry racing an admin
    confirmation) are logged and reported as converted=False.
    StoreUnavailable propagates so the caller may retry; a retried call is
    safe because confirmation happens at most once.
    """

    def __init__(
        self,
        referrals: ReferralService | None = None,
        purchases: FirstPurchaseChecker | None = None,
    ):
        self.referrals = referrals or referral_service
        self.purchases = purchases or purchase_service
        self.logger = get_logger(__name__)

    def on_first_qualifying_purchase(self, account_id: int, purchase_id: int | None = None) -> ConversionResult:
        """Confirm the account's PENDING referral if this is its first purchase.

        Args:
            account_id: Account that completed a purchase
            purchase_id: The purchase that completed (judged against earlier ones)

        Returns:
            Conversion result
        """
        if not self.purchases.is_first_completed_purchase(account_id, purchase_id=purchase_id):
            self.logger.debug(
                "referral_conversion_not_first_purchase",
                account_id=account_id,
                purchase_id=purchase_id,
            )
            return ConversionResult(converted=False)

        pending = self.referrals.get_pending_for_account(account_id)
        if not pending:
            self.logger.debug("referral_conversion_no_pending_referral", account_id=account_id)
            return ConversionResult(converted=False)

        try:
            referral = self.referrals.confirm(pending.id)
        except (NotFound, NotPending) as e:
            self.logger.warning(
                "referral_conversion_skipped",
                account_id=account_id,
                referral_id=pending.id,
                reason=e.code,
            )
            return ConversionResult(converted=False, referral_id=pending.id)

        self.logger.info(
            "referral_converted",
            account_id=account_id,
            referral_id=referral.id,
            credits_earned=referral.credits_earned,
        )
        return ConversionResult(
            converted=True,
            credits_earned=referral.credits_earned,
            referral_id=referral.id,
        )

    def notify_first_purchase(self, account_id: int, purchase_id: int | None = None) -> ConversionResult:
        """Entry point for the purchase flow. Never raises for "nothing to convert"."""
        return self.on_first_qualifying_purchase(account_id, purchase_id=purchase_id)


# Singleton instance
conversion_orchestrator = ConversionOrchestrator()
