"""Purchase records and webhook idempotency models."""

import json
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from referral_credits.storage.models import Base, utcnow


class PurchaseStatus(str, Enum):
    """Purchase lifecycle states."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Purchase(Base):
    """A purchase made by an account.

    Only COMPLETED purchases count towards the first-purchase referral
    conversion.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        Index("ix_purchases_account_status", "account_id", "status"),
    )

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(500), nullable=False)
    product_id = Column(String(100), nullable=True)
    metadata_json = Column(Text, nullable=True)

    status = Column(
        SQLEnum(PurchaseStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=16),
        nullable=False,
        default=PurchaseStatus.PENDING,
    )

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    account = relationship("Account")

    def __repr__(self):
        return f"<Purchase(id={self.id}, account={self.account_id}, status={self.status})>"

    @property
    def metadata_dict(self) -> dict:
        """Get parsed metadata."""
        if self.metadata_json:
            return json.loads(self.metadata_json)
        return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "amount": float(self.amount),
            "description": self.description,
            "product_id": self.product_id,
            "metadata": self.metadata_dict,
            "status": PurchaseStatus(self.status).value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    A redelivered event id is acknowledged without being handled again.
    """
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    source = Column(String(50), nullable=False)
    processed_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"
