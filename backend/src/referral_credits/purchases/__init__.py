"""Purchase recording."""

from referral_credits.purchases.models import ProcessedWebhookEvent, Purchase, PurchaseStatus
from referral_credits.purchases.service import PurchaseResult, PurchaseService, purchase_service

__all__ = [
    "Purchase",
    "PurchaseStatus",
    "ProcessedWebhookEvent",
    "PurchaseResult",
    "PurchaseService",
    "purchase_service",
]
