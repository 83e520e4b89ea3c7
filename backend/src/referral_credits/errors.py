"""Typed failures raised by the referral credit engine.

Every failure carries a machine-readable ``code`` and a ``retryable`` flag.
Only ``StoreUnavailable`` is retryable; retrying any other failure cannot
change its outcome.
"""


class ReferralCreditError(Exception):
    """Base class for referral credit failures."""

    code = "referral_credit_error"
    retryable = False

    def __init__(self, message: str | None = None, **context):
        self.context = context
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return self.code.replace("_", " ").capitalize()


class InvalidCode(ReferralCreditError):
    """Referral code does not resolve to an account."""

    code = "invalid_code"

    def __init__(self, referral_code: str | None = None):
        self.referral_code = referral_code
        super().__init__("Invalid referral code", referral_code=referral_code)


class SelfReferral(ReferralCreditError):
    """An account tried to apply its own referral code."""

    code = "self_referral"

    def __init__(self, account_id: int | None = None):
        self.account_id = account_id
        super().__init__("Cannot refer yourself", account_id=account_id)


class AlreadyReferred(ReferralCreditError):
    """The account already has a referral."""

    code = "already_referred"

    def __init__(self, account_id: int | None = None):
        self.account_id = account_id
        super().__init__("Account is already referred", account_id=account_id)


class NotEligible(ReferralCreditError):
    """The account already completed a purchase, so it can no longer be referred."""

    code = "not_eligible"

    def __init__(self, account_id: int | None = None):
        self.account_id = account_id
        super().__init__("Referral codes can only be applied before the first purchase", account_id=account_id)


class NotFound(ReferralCreditError):
    """Requested account or referral does not exist."""

    code = "not_found"

    def __init__(self, entity: str = "record", entity_id: int | str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found", entity=entity, entity_id=entity_id)


class NotPending(ReferralCreditError):
    """Referral has already left the PENDING state."""

    code = "not_pending"

    def __init__(self, referral_id: int | None = None, status: str | None = None):
        self.referral_id = referral_id
        self.status = status
        super().__init__(
            f"Referral {referral_id} is not pending (status: {status})",
            referral_id=referral_id,
            status=status,
        )


class CodeGenerationExhausted(ReferralCreditError):
    """Every candidate referral code collided with an existing one."""

    code = "code_generation_exhausted"

    def __init__(self, account_id: int | None = None, attempts: int = 0):
        self.account_id = account_id
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique referral code after {attempts} attempts",
            account_id=account_id,
            attempts=attempts,
        )


class InvalidAmount(ReferralCreditError):
    """Credit amount is not a positive integer."""

    code = "invalid_amount"

    def __init__(self, amount=None):
        self.amount = amount
        super().__init__(f"Amount must be a positive integer, got {amount!r}", amount=amount)


class StoreUnavailable(ReferralCreditError):
    """Ledger store timed out or could not be reached."""

    code = "store_unavailable"
    retryable = True
