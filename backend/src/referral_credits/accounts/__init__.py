"""Accounts and their credit ledger."""

from referral_credits.accounts.credits import AccountManager, account_manager
from referral_credits.accounts.models import Account, CreditOperation, CreditTransaction

__all__ = ["Account", "CreditOperation", "CreditTransaction", "AccountManager", "account_manager"]
