"""Referral system database models."""

from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from referral_credits.storage.models import Base, utcnow


class ReferralStatus(str, Enum):
    """Referral lifecycle states.

    PENDING moves to CONFIRMED or CANCELLED exactly once; both are terminal.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Referral(Base):
    """Individual referral record.

    One row per referred account; the unique index on referred_account_id
    is what rejects a second referral for the same account.
    """
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    referrer_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    referred_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, unique=True)
    referral_code = Column(String(10), nullable=False)  # Code applied at signup

    # Status
    status = Column(
        SQLEnum(ReferralStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=ReferralStatus.PENDING,
        index=True,
    )
    credits_earned = Column(Integer, nullable=False, default=0)
    cancellation_reason = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Relationships
    referrer = relationship("Account", foreign_keys=[referrer_account_id])
    referred = relationship("Account", foreign_keys=[referred_account_id])

    def __repr__(self):
        return (
            f"<Referral(id={self.id}, referrer={self.referrer_account_id}, "
            f"referred={self.referred_account_id}, status={self.status})>"
        )

    def to_dict(self) -> dict:
        """Serialize for API responses and CLI output."""
        return {
            "id": self.id,
            "referrer_account_id": self.referrer_account_id,
            "referred_account_id": self.referred_account_id,
            "referral_code": self.referral_code,
            "status": ReferralStatus(self.status).value,
            "credits_earned": self.credits_earned,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
        }
