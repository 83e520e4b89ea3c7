"""Account and credit ledger models."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from referral_credits.storage.models import Base, utcnow


class CreditOperation:
    """Operation labels stored on credit transactions."""
    REFERRAL_REWARD = "referral_reward"  # Referrer side of a conversion
    REFERRAL_BONUS = "referral_bonus"    # Referred side of a conversion
    MANUAL = "manual"                    # Operator adjustment


class Account(Base):
    """User account holding a credit balance and a referral code."""
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_accounts_credit_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)

    # Credits
    credit_balance = Column(Integer, nullable=False, default=0)

    # Referral program
    referral_code = Column(String(10), unique=True, nullable=True, index=True)  # Immutable once set
    referred_by_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)

    # Status
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_login_at = Column(DateTime, nullable=True)

    # Relationships
    credit_transactions = relationship("CreditTransaction", back_populates="account")
    referred_by = relationship("Account", remote_side=[id])

    def __repr__(self):
        return f"<Account(id={self.id}, email={self.email}, code={self.referral_code})>"

    @property
    def first_name(self) -> str | None:
        """First word of the name, used where only a short name may be shown."""
        if not self.name:
            return None
        return self.name.split()[0]


class CreditTransaction(Base):
    """One row per successful credit increment."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    # Transaction details
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    operation = Column(String(50), nullable=False)

    # Reference
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=True, index=True)
    description = Column(String(500), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    account = relationship("Account", back_populates="credit_transactions")

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, account={self.account_id}, amount={self.amount})>"
