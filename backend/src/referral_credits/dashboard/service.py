"""Read-only dashboard projections over accounts, referrals and purchases."""

import math
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from referral_credits.accounts.models import Account, CreditOperation, CreditTransaction
from referral_credits.errors import NotFound
from referral_credits.logging_config import get_logger
from referral_credits.purchases.models import Purchase, PurchaseStatus
from referral_credits.referral.models import Referral, ReferralStatus
from referral_credits.settings import settings
from referral_credits.storage.db import db

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def referral_link(code: str | None) -> str | None:
    """Build the public signup link for a referral code."""
    if not code:
        return None
    return f"{settings.public_base_url.rstrip('/')}/register?ref={code}"


def _referral_item(referral: Referral) -> dict[str, Any]:
    referred = referral.referred
    return {
        "id": referral.id,
        "referred_account_id": referral.referred_account_id,
        "referred_name": (referred.name if referred and referred.name else "Unknown User"),
        "status": ReferralStatus(referral.status).value,
        "credits_earned": referral.credits_earned,
        "created_at": referral.created_at.isoformat() if referral.created_at else None,
        "confirmed_at": referral.confirmed_at.isoformat() if referral.confirmed_at else None,
    }


def _purchase_item(purchase: Purchase) -> dict[str, Any]:
    return {
        "id": purchase.id,
        "amount": float(purchase.amount),
        "description": purchase.description,
        "status": PurchaseStatus(purchase.status).value,
        "created_at": purchase.created_at.isoformat() if purchase.created_at else None,
    }


class DashboardService:
    """Aggregations for dashboards and audits. Never writes."""

    def __init__(self):
        self.logger = get_logger(__name__)

    def _get_account(self, session: Session, account_id: int) -> Account:
        account = session.get(Account, account_id)
        if not account:
            raise NotFound("account", account_id)
        return account

    def _referral_counts(self, session: Session, *criteria) -> dict[str, int]:
        rows = session.execute(
            select(
                Referral.status,
                func.count(Referral.id),
                func.coalesce(func.sum(Referral.credits_earned), 0),
            )
            .where(*criteria)
            .group_by(Referral.status)
        ).all()

        counts = {status.value: 0 for status in ReferralStatus}
        credits = 0
        for status, count, earned in rows:
            counts[ReferralStatus(status).value] = count
            credits += int(earned)

        return {
            "total": sum(counts.values()),
            "pending": counts[ReferralStatus.PENDING.value],
            "confirmed": counts[ReferralStatus.CONFIRMED.value],
            "cancelled": counts[ReferralStatus.CANCELLED.value],
            "credits": credits,
        }

    def _recent_referrals(self, session: Session, account_id: int, limit: int) -> list[Referral]:
        return list(session.scalars(
            select(Referral)
            .where(Referral.referrer_account_id == account_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
            .limit(limit)
        ))

    def _recent_purchases(self, session: Session, account_id: int, limit: int) -> list[Purchase]:
        return list(session.scalars(
            select(Purchase)
            .where(Purchase.account_id == account_id)
            .order_by(Purchase.created_at.desc(), Purchase.id.desc())
            .limit(limit)
        ))

    # ==================== REFERRER VIEWS ====================

    def get_referral_stats(self, account_id: int) -> dict[str, Any]:
        """Count a referrer's referrals by status and sum their credits.

        Args:
            account_id: Referrer account ID

        Returns:
            Dict with referral counts and credits earned
        """
        with db.session() as session:
            account = self._get_account(session, account_id)
            counts = self._referral_counts(session, Referral.referrer_account_id == account_id)

        return {
            "referral_code": account.referral_code,
            "referral_link": referral_link(account.referral_code),
            "total_referrals": counts["total"],
            "pending_referrals": counts["pending"],
            "confirmed_referrals": counts["confirmed"],
            "cancelled_referrals": counts["cancelled"],
            "total_credits_earned": counts["credits"],
        }

    def list_referrals(
        self,
        account_id: int,
        page: int = 1,
        limit: int = 10,
        status: ReferralStatus | None = None,
    ) -> dict[str, Any]:
        """Paginated listing of a referrer's referrals, newest first.

        Args:
            account_id: Referrer account ID
            page: Page number (min 1)
            limit: Page size (clamped to 1-100)
            status: Optional status filter

        Returns:
            Dict with referrals and pagination
        """
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))

        criteria = [Referral.referrer_account_id == account_id]
        if status is not None:
            criteria.append(Referral.status == status)

        with db.session() as session:
            total = session.scalar(select(func.count(Referral.id)).where(*criteria)) or 0
            referrals = list(session.scalars(
                select(Referral)
                .where(*criteria)
                .order_by(Referral.created_at.desc(), Referral.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ))
            items = [_referral_item(r) for r in referrals]

        return {
            "referrals": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    def get_dashboard_stats(self, account_id: int) -> dict[str, Any]:
        """Full dashboard: account info, referral totals, recent activity."""
        with db.session() as session:
            account = self._get_account(session, account_id)
            counts = self._referral_counts(session, Referral.referrer_account_id == account_id)
            recent_referrals = [_referral_item(r) for r in self._recent_referrals(session, account_id, 10)]
            recent_purchases = [_purchase_item(p) for p in self._recent_purchases(session, account_id, 10)]

        return {
            "total_referred_users": counts["total"],
            "referred_users_who_purchased": counts["confirmed"],
            "total_credits_earned": counts["credits"],
            "referral_code": account.referral_code,
            "referral_link": referral_link(account.referral_code),
            "account": {
                "email": account.email,
                "name": account.name,
                "credit_balance": account.credit_balance,
                "joined_at": account.created_at.isoformat() if account.created_at else None,
            },
            "recent_referrals": recent_referrals,
            "recent_purchases": recent_purchases,
        }

    def get_dashboard_summary(self, account_id: int) -> dict[str, Any]:
        """Lighter dashboard with a shareable message and the 5 latest items."""
        with db.session() as session:
            account = self._get_account(session, account_id)
            counts = self._referral_counts(session, Referral.referrer_account_id == account_id)
            recent_referrals = [_referral_item(r) for r in self._recent_referrals(session, account_id, 5)]
            recent_purchases = [_purchase_item(p) for p in self._recent_purchases(session, account_id, 5)]

        link = referral_link(account.referral_code)
        return {
            "overview": {
                "total_referred_users": counts["total"],
                "referred_users_who_purchased": counts["confirmed"],
                "pending_referrals": counts["pending"],
                "total_credits_earned": counts["credits"],
            },
            "referral_info": {
                "referral_code": account.referral_code,
                "referral_link": link,
                "shareable_message": (
                    f"Join using my referral code: {account.referral_code} and we both earn credits! {link}"
                    if account.referral_code else None
                ),
            },
            "activity": {
                "recent_referrals": recent_referrals,
                "recent_purchases": recent_purchases,
            },
        }

    # ==================== CREDITS ====================

    def get_credit_history(self, account_id: int) -> dict[str, Any]:
        """Credits earned through confirmed referrals, on either side.

        Returns:
            Current balance, total earned and one entry per confirmed referral
        """
        with db.session() as session:
            account = self._get_account(session, account_id)
            referrals = list(session.scalars(
                select(Referral)
                .where(
                    or_(
                        Referral.referrer_account_id == account_id,
                        Referral.referred_account_id == account_id,
                    ),
                    Referral.status == ReferralStatus.CONFIRMED,
                )
                .order_by(Referral.confirmed_at.desc(), Referral.id.desc())
            ))

        history = []
        for r in referrals:
            as_referrer = r.referrer_account_id == account_id
            history.append({
                "source": CreditOperation.REFERRAL_REWARD if as_referrer else CreditOperation.REFERRAL_BONUS,
                "amount": r.credits_earned,
                "description": (
                    "Earned from referring an account" if as_referrer
                    else "Earned as a referral bonus on first purchase"
                ),
                "date": (r.confirmed_at or r.created_at).isoformat(),
                "referral_id": r.id,
            })

        return {
            "current_balance": account.credit_balance,
            "total_earned": sum(item["amount"] for item in history),
            "history": history,
        }

    # ==================== AUDIT ====================

    def verify_data_integrity(self, account_id: int) -> dict[str, Any]:
        """Look for inconsistencies around an account's referrals.

        Reports duplicate referral relationships, confirmed referrals whose
        referred account has no completed purchase, and confirmed referrals
        missing a credit transaction on either side (an award that failed
        after the referral was confirmed).
        """
        with db.session() as session:
            account = self._get_account(session, account_id)
            referrals = list(session.scalars(
                select(Referral).where(Referral.referrer_account_id == account_id)
            ))
            confirmed = [r for r in referrals if ReferralStatus(r.status) == ReferralStatus.CONFIRMED]

            issues: list[str] = []

            referred_ids = [r.referred_account_id for r in referrals]
            if len(referred_ids) != len(set(referred_ids)):
                issues.append("Duplicate referral relationships detected")

            for referral in confirmed:
                has_purchase = session.scalar(
                    select(func.count(Purchase.id)).where(
                        Purchase.account_id == referral.referred_account_id,
                        Purchase.status == PurchaseStatus.COMPLETED,
                    )
                )
                if not has_purchase:
                    issues.append(f"Confirmed referral {referral.id} has no associated purchase")

                awarded = set(session.scalars(
                    select(CreditTransaction.account_id).where(CreditTransaction.referral_id == referral.id)
                ))
                for side, side_account_id in (
                    ("referrer", referral.referrer_account_id),
                    ("referred", referral.referred_account_id),
                ):
                    if side_account_id not in awarded:
                        issues.append(
                            f"Confirmed referral {referral.id} is missing the {side} credit award"
                        )

            awarded_total = session.scalar(
                select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                    CreditTransaction.account_id == account_id,
                    CreditTransaction.operation == CreditOperation.REFERRAL_REWARD,
                )
            )
            purchases = session.execute(
                select(Purchase.status, func.count(Purchase.id))
                .where(Purchase.account_id == account_id)
                .group_by(Purchase.status)
            ).all()

        expected = sum(r.credits_earned for r in confirmed)
        if int(awarded_total) != expected:
            issues.append(
                f"Referral rewards credited ({int(awarded_total)}) differ from confirmed referral credits ({expected})"
            )

        purchase_counts = {PurchaseStatus(status).value: count for status, count in purchases}
        result = {
            "is_valid": not issues,
            "current_credits": account.credit_balance,
            "expected_credits_from_referrals": expected,
            "issues": issues,
            "stats": {
                "total_referrals": len(referrals),
                "confirmed_referrals": len(confirmed),
                "total_purchases": sum(purchase_counts.values()),
                "completed_purchases": purchase_counts.get(PurchaseStatus.COMPLETED.value, 0),
            },
        }

        if issues:
            self.logger.warning("data_integrity_issues", account_id=account_id, issues=issues)
        else:
            self.logger.debug("data_integrity_verified", account_id=account_id)
        return result

    def get_admin_overview(self) -> dict[str, Any]:
        """Program-wide totals across all accounts."""
        with db.session() as session:
            counts = self._referral_counts(session)
            accounts = session.scalar(select(func.count(Account.id))) or 0
            credits_awarded = session.scalar(
                select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                    CreditTransaction.referral_id.is_not(None)
                )
            )

        return {
            "total_accounts": accounts,
            "referrals_by_status": {
                ReferralStatus.PENDING.value: counts["pending"],
                ReferralStatus.CONFIRMED.value: counts["confirmed"],
                ReferralStatus.CANCELLED.value: counts["cancelled"],
            },
            "total_referrals": counts["total"],
            "total_credits_earned": counts["credits"],
            "total_credits_awarded": int(credits_awarded),
        }


# Singleton instance
dashboard_service = DashboardService()
