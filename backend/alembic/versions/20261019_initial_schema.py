"""Initial referral credits schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates:
- accounts: credit balance, immutable referral code, referring account
- referrals: one row per referred account (pending/confirmed/cancelled)
- credit_transactions: one row per credit increment
- purchases: completed purchases drive the referral conversion
- processed_webhook_events: webhook idempotency
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

REFERRAL_STATUS = sa.Enum(
    "pending", "confirmed", "cancelled",
    name="referralstatus", native_enum=False, length=16,
)
PURCHASE_STATUS = sa.Enum(
    "pending", "completed", "failed", "refunded",
    name="purchasestatus", native_enum=False, length=16,
)


def upgrade() -> None:
    """Create referral credits tables."""

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("credit_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("referral_code", sa.String(10), nullable=True),
        sa.Column("referred_by_account_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("credit_balance >= 0", name="ck_accounts_credit_balance_non_negative"),
        sa.ForeignKeyConstraint(["referred_by_account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
    op.create_index("ix_accounts_referral_code", "accounts", ["referral_code"], unique=True)
    op.create_index("ix_accounts_referred_by_account_id", "accounts", ["referred_by_account_id"])

    op.create_table(
        "referrals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referrer_account_id", sa.Integer(), nullable=False),
        sa.Column("referred_account_id", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(10), nullable=False),
        sa.Column("status", REFERRAL_STATUS, nullable=False),
        sa.Column("credits_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referrer_account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["referred_account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referred_account_id"),
    )
    op.create_index("ix_referrals_referrer_account_id", "referrals", ["referrer_account_id"])
    op.create_index("ix_referrals_status", "referrals", ["status"])

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(50), nullable=False),
        sa.Column("referral_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["referral_id"], ["referrals.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_transactions_account_id", "credit_transactions", ["account_id"])
    op.create_index("ix_credit_transactions_referral_id", "credit_transactions", ["referral_id"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("product_id", sa.String(100), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("status", PURCHASE_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_purchases_account_id", "purchases", ["account_id"])
    op.create_index("ix_purchases_account_status", "purchases", ["account_id", "status"])

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=True)


def downgrade() -> None:
    """Drop referral credits tables."""
    op.drop_table("processed_webhook_events")
    op.drop_table("purchases")
    op.drop_table("credit_transactions")
    op.drop_table("referrals")
    op.drop_table("accounts")
