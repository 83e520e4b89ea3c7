"""Referral program.

Both the referrer and the referred account earn credits once the referred
account completes its first purchase:
- PENDING at signup
- CONFIRMED on first completed purchase (credits awarded to both sides)
- CANCELLED by an operator (no credits)
"""

from referral_credits.referral.codes import ReferralCodeGenerator, code_generator
from referral_credits.referral.models import Referral, ReferralStatus
from referral_credits.referral.service import ApplyResult, ReferralService, referral_service

__all__ = [
    "Referral",
    "ReferralStatus",
    "ReferralCodeGenerator",
    "code_generator",
    "ApplyResult",
    "ReferralService",
    "referral_service",
]
