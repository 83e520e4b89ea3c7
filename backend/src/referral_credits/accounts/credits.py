"""Credit balance management."""

from sqlalchemy import select, update

from referral_credits.accounts.models import Account, CreditOperation, CreditTransaction
from referral_credits.errors import InvalidAmount, NotFound
from referral_credits.logging_config import get_logger
from referral_credits.storage.db import db
from referral_credits.storage.models import utcnow

logger = get_logger(__name__)


class AccountManager:
    """Owns account credit balances.

    Balances only ever grow through ``increment_credits``; there is no debit
    path, so a balance can never become negative.
    """

    def __init__(self):
        """Initialize account manager."""
        self.logger = get_logger(__name__)

    @staticmethod
    def _check_amount(amount) -> None:
        # bool is an int subclass; True must not count as one credit
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(amount)

    def increment_credits(
        self,
        account_id: int,
        amount: int,
        operation: str = CreditOperation.MANUAL,
        referral_id: int | None = None,
        description: str | None = None,
    ) -> int:
        """Atomically add credits to an account.

        The balance is incremented in the UPDATE statement itself, so
        concurrent increments on the same account never lose an update.

        Args:
            account_id: Account ID
            amount: Credits to add (positive integer)
            operation: Operation label for the ledger row
            referral_id: Referral that caused the increment, if any
            description: Optional description

        Returns:
            New balance

        Raises:
            InvalidAmount: If amount is not a positive integer
            NotFound: If the account does not exist
        """
        self._check_amount(amount)

        with db.session() as session:
            result = session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(credit_balance=Account.credit_balance + amount, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFound("account", account_id)

            new_balance = session.scalar(
                select(Account.credit_balance).where(Account.id == account_id)
            )

            session.add(CreditTransaction(
                account_id=account_id,
                amount=amount,
                balance_after=new_balance,
                operation=operation,
                referral_id=referral_id,
                description=description,
            ))

        self.logger.info(
            "credits_added",
            account_id=account_id,
            amount=amount,
            operation=operation,
            referral_id=referral_id,
            new_balance=new_balance,
        )
        return new_balance

    def get_balance(self, account_id: int) -> int:
        """Get an account's credit balance.

        Raises:
            NotFound: If the account does not exist
        """
        with db.session() as session:
            balance = session.scalar(
                select(Account.credit_balance).where(Account.id == account_id)
            )
            if balance is None:
                raise NotFound("account", account_id)
            return balance

    def get_transaction_history(
        self,
        account_id: int,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CreditTransaction]:
        """Get an account's credit transactions, newest first.

        Args:
            account_id: Account ID
            limit: Max records
            offset: Offset for pagination

        Returns:
            List of transactions
        """
        with db.session() as session:
            return list(session.scalars(
                select(CreditTransaction)
                .where(CreditTransaction.account_id == account_id)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .offset(offset)
                .limit(limit)
            ))


# Singleton instance
account_manager = AccountManager()
