"""Account registration with optional referral code."""

from dataclasses import dataclass, field

from referral_credits.accounts.models import Account
from referral_credits.auth.local import LocalAuthService, auth_service
from referral_credits.errors import ReferralCreditError
from referral_credits.logging_config import get_logger
from referral_credits.referral.codes import ReferralCodeGenerator, code_generator
from referral_credits.referral.service import ApplyResult, ReferralService, referral_service

logger = get_logger(__name__)


@dataclass
class RegistrationResult:
    """New account plus what happened to its referral code."""
    account: Account
    referral: ApplyResult | None = None
    warnings: list[str] = field(default_factory=list)


class RegistrationService:
    """Creates accounts. A bad referral code never blocks registration;
    it is reported back as a warning instead.
    """

    def __init__(
        self,
        auth: LocalAuthService | None = None,
        codes: ReferralCodeGenerator | None = None,
        referrals: ReferralService | None = None,
    ):
        self.auth = auth or auth_service
        self.codes = codes or code_generator
        self.referrals = referrals or referral_service
        self.logger = get_logger(__name__)

    def register(
        self,
        email: str,
        password: str | None = None,
        name: str | None = None,
        referral_code: str | None = None,
    ) -> RegistrationResult:
        """Register a new account.

        Args:
            email: Account email
            password: Plain password
            name: Optional name, also used as the referral code prefix
            referral_code: Optional code of the referring account

        Returns:
            Registration result with warnings for referral problems

        Raises:
            EmailAlreadyRegistered: If email already exists
        """
        account = self.auth.create_account(email=email, password=password, name=name)
        result = RegistrationResult(account=account)

        try:
            account.referral_code = self.codes.generate_code(account.id, name_hint=name)
        except ReferralCreditError as e:
            # The code is assigned lazily on first request instead
            self.logger.warning("registration_code_generation_failed", account_id=account.id, error=e.code)
            result.warnings.append("Your referral code will be available shortly")

        if referral_code:
            try:
                result.referral = self.referrals.apply_referral_code(referral_code, account.id)
                result.account = self.auth.get_account_by_id(account.id) or account
            except ReferralCreditError as e:
                self.logger.warning(
                    "registration_referral_not_applied",
                    account_id=account.id,
                    referral_code=referral_code,
                    reason=e.code,
                )
                result.warnings.append(f"Referral code not applied: {e}")

        self.logger.info(
            "account_registered",
            account_id=account.id,
            referred=result.referral is not None,
            warnings=len(result.warnings),
        )
        return result


# Singleton instance
registration_service = RegistrationService()
