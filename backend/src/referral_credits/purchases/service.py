"""Purchase recording and first-purchase detection."""

import json
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select, update
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from referral_credits.accounts.models import Account
from referral_credits.errors import NotFound, StoreUnavailable
from referral_credits.logging_config import get_logger
from referral_credits.purchases.models import Purchase, PurchaseStatus
from referral_credits.settings import settings
from referral_credits.storage.db import db
from referral_credits.storage.models import utcnow

if TYPE_CHECKING:
    from referral_credits.conversion.orchestrator import ConversionOrchestrator, ConversionResult

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


@dataclass
class PurchaseResult:
    """A recorded purchase and the referral reward it triggered, if any."""
    purchase: Purchase
    referral_reward: "ConversionResult | None" = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"purchase": self.purchase.to_dict()}
        if self.referral_reward and self.referral_reward.converted:
            credits = self.referral_reward.credits_earned
            data["referral_reward"] = {
                "awarded": True,
                "credits_earned": credits,
                "message": f"Congratulations! You and your referrer each earned {credits} credits!",
            }
        return data


class PurchaseService:
    """Records purchases and hands first completed purchases to the
    referral conversion.

    A conversion failure never fails or rolls back the purchase that
    triggered it.
    """

    def __init__(self, orchestrator: "ConversionOrchestrator | None" = None):
        """Initialize purchase service.

        Args:
            orchestrator: Conversion orchestrator (defaults to the shared instance)
        """
        self._orchestrator = orchestrator
        self.logger = get_logger(__name__)

    @property
    def orchestrator(self) -> "ConversionOrchestrator":
        if self._orchestrator is None:
            from referral_credits.conversion.orchestrator import conversion_orchestrator
            self._orchestrator = conversion_orchestrator
        return self._orchestrator

    # ==================== RECORDING ====================

    def create_purchase(
        self,
        account_id: int,
        amount: float | Decimal,
        description: str,
        product_id: str | None = None,
        metadata: dict | None = None,
        status: PurchaseStatus = PurchaseStatus.COMPLETED,
    ) -> PurchaseResult:
        """Record a purchase.

        A COMPLETED purchase immediately notifies the referral conversion.

        Args:
            account_id: Purchasing account
            amount: Purchase amount (positive)
            description: Description
            product_id: Optional product reference
            metadata: Optional metadata
            status: Initial status (PENDING for payments confirmed later by webhook)

        Returns:
            Purchase result

        Raises:
            ValueError: If amount is out of range
            NotFound: If the account does not exist
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("Amount must be positive")
        if amount > Decimal(str(settings.purchase_max_amount)):
            raise ValueError(f"Amount cannot exceed {settings.purchase_max_amount:,.0f}")

        with db.session() as session:
            if session.get(Account, account_id) is None:
                raise NotFound("account", account_id)

            purchase = Purchase(
                account_id=account_id,
                amount=amount,
                description=description.strip(),
                product_id=product_id,
                metadata_json=json.dumps(metadata) if metadata else None,
                status=status,
                completed_at=utcnow() if status == PurchaseStatus.COMPLETED else None,
            )
            session.add(purchase)
            session.flush()

        self.logger.info(
            "purchase_created",
            purchase_id=purchase.id,
            account_id=account_id,
            amount=float(amount),
            status=PurchaseStatus(status).value,
        )

        referral_reward = None
        if status == PurchaseStatus.COMPLETED:
            referral_reward = self._notify_conversion(account_id, purchase.id)

        return PurchaseResult(purchase=purchase, referral_reward=referral_reward)

    def complete_purchase(self, purchase_id: int) -> PurchaseResult:
        """Mark a PENDING purchase COMPLETED and notify the referral conversion.

        Completing an already completed purchase is a no-op, so redelivered
        payment notifications do nothing.

        Raises:
            NotFound: If the purchase does not exist
        """
        with db.session() as session:
            result = session.execute(
                update(Purchase)
                .where(Purchase.id == purchase_id, Purchase.status == PurchaseStatus.PENDING)
                .values(status=PurchaseStatus.COMPLETED, completed_at=utcnow(), updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            completed_now = result.rowcount == 1
            purchase = session.get(Purchase, purchase_id)

        if purchase is None:
            raise NotFound("purchase", purchase_id)

        if not completed_now:
            self.logger.info(
                "purchase_complete_skipped",
                purchase_id=purchase_id,
                status=PurchaseStatus(purchase.status).value,
            )
            return PurchaseResult(purchase=purchase)

        self.logger.info("purchase_completed", purchase_id=purchase_id, account_id=purchase.account_id)
        return PurchaseResult(
            purchase=purchase,
            referral_reward=self._notify_conversion(purchase.account_id, purchase.id),
        )

    def _notify_conversion(self, account_id: int, purchase_id: int) -> "ConversionResult | None":
        try:
            return self._notify_with_retry(account_id, purchase_id)
        except Exception as e:
            # The purchase is already stored; conversion problems only get logged
            self.logger.warning(
                "referral_conversion_failed",
                account_id=account_id,
                purchase_id=purchase_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    @retry(
        retry=retry_if_exception_type(StoreUnavailable),
        stop=stop_after_attempt(settings.conversion_retry_attempts),
        wait=wait_exponential(multiplier=0.1, max=2),
        reraise=True,
    )
    def _notify_with_retry(self, account_id: int, purchase_id: int) -> "ConversionResult":
        return self.orchestrator.notify_first_purchase(account_id, purchase_id=purchase_id)

    # ==================== FIRST PURCHASE ====================

    def count_completed(self, account_id: int) -> int:
        """Count an account's completed purchases."""
        with db.session() as session:
            return session.scalar(
                select(func.count(Purchase.id)).where(
                    Purchase.account_id == account_id,
                    Purchase.status == PurchaseStatus.COMPLETED,
                )
            ) or 0

    def is_first_completed_purchase(self, account_id: int, purchase_id: int | None = None) -> bool:
        """Check whether a purchase is the account's first completed one.

        Completed purchases are ordered by (completed_at, id). The purchase
        is first when no other completed purchase of the account comes before
        it. Of several purchases completed concurrently, the earliest one
        always answers True, whichever order they are checked in.

        Without a purchase_id, the account's only completed purchase (if
        exactly one) is taken as the purchase being processed.

        Args:
            account_id: Purchasing account
            purchase_id: The purchase that just completed

        Returns:
            True if the purchase is the account's first completed purchase
        """
        if purchase_id is None:
            return self.count_completed(account_id) <= 1

        with db.session() as session:
            purchase = session.get(Purchase, purchase_id)
            if (
                purchase is None
                or purchase.account_id != account_id
                or purchase.status != PurchaseStatus.COMPLETED
            ):
                return False

            earlier = session.scalar(
                select(func.count(Purchase.id)).where(
                    Purchase.account_id == account_id,
                    Purchase.status == PurchaseStatus.COMPLETED,
                    Purchase.id != purchase.id,
                    or_(
                        Purchase.completed_at < purchase.completed_at,
                        and_(Purchase.completed_at == purchase.completed_at, Purchase.id < purchase.id),
                    ),
                )
            ) or 0

        return earlier == 0

    # ==================== QUERIES ====================

    def get_purchase(self, purchase_id: int, account_id: int | None = None) -> Purchase:
        """Get a purchase, optionally restricted to its owner.

        Raises:
            NotFound: If missing or owned by another account
        """
        with db.session() as session:
            purchase = session.get(Purchase, purchase_id)
            if not purchase or (account_id is not None and purchase.account_id != account_id):
                raise NotFound("purchase", purchase_id)
            return purchase

    def list_purchases(self, account_id: int, page: int = 1, limit: int = 10) -> dict[str, Any]:
        """Get an account's purchases, newest first, with pagination info.

        Args:
            account_id: Account ID
            page: Page number (min 1)
            limit: Page size (clamped to 1-100)

        Returns:
            Dict with purchases and pagination
        """
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))

        with db.session() as session:
            total = session.scalar(
                select(func.count(Purchase.id)).where(Purchase.account_id == account_id)
            ) or 0
            purchases = list(session.scalars(
                select(Purchase)
                .where(Purchase.account_id == account_id)
                .order_by(Purchase.created_at.desc(), Purchase.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ))

        return {
            "purchases": [p.to_dict() for p in purchases],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    def get_purchase_stats(self, account_id: int) -> dict[str, Any]:
        """Get purchase statistics for an account."""
        with db.session() as session:
            rows = session.execute(
                select(Purchase.status, func.count(Purchase.id), func.coalesce(func.sum(Purchase.amount), 0))
                .where(Purchase.account_id == account_id)
                .group_by(Purchase.status)
            ).all()

        counts = {PurchaseStatus(status).value: count for status, count, _ in rows}
        total_purchases = sum(counts.values())
        total_amount = float(sum(Decimal(str(amount)) for _, _, amount in rows))

        return {
            "total_purchases": total_purchases,
            "total_amount": total_amount,
            "completed_purchases": counts.get(PurchaseStatus.COMPLETED.value, 0),
            "pending_purchases": counts.get(PurchaseStatus.PENDING.value, 0),
            "average_amount": round(total_amount / total_purchases, 2) if total_purchases else 0.0,
        }


# Singleton instance
purchase_service = PurchaseService()
