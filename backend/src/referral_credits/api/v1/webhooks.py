"""Webhook endpoints for the payment provider."""

import hashlib
import hmac

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from referral_credits.logging_config import get_logger
from referral_credits.purchases.models import ProcessedWebhookEvent
from referral_credits.purchases.service import purchase_service
from referral_credits.settings import settings
from referral_credits.storage.db import db
from referral_credits.storage.models import utcnow

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SOURCE = "payments"
PURCHASE_COMPLETED = "purchase.completed"


class PurchaseCompletedEvent(BaseModel):
    """Payment provider notification that a pending purchase was paid."""
    event_id: str
    event_type: str = PURCHASE_COMPLETED
    purchase_id: int


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 signature of a webhook body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str) -> bool:
    """Check a webhook signature against the configured secret."""
    expected = sign_payload(payload, settings.webhook_secret)
    return hmac.compare_digest(expected, signature)


def is_event_processed(event_id: str, source: str) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        event_id: The unique event ID from the webhook source
        source: The webhook source

    Returns:
        True if already processed, False otherwise
    """
    with db.session() as session:
        existing = session.scalar(
            select(ProcessedWebhookEvent.id).where(
                ProcessedWebhookEvent.event_id == event_id,
                ProcessedWebhookEvent.source == source,
            )
        )
        return existing is not None


def mark_event_processed(event_id: str, event_type: str, source: str) -> bool:
    """Mark a webhook event as processed.

    Returns:
        False if a concurrent delivery already recorded the event
    """
    try:
        with db.session() as session:
            session.add(ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                source=source,
                processed_at=utcnow(),
            ))
    except IntegrityError:
        logger.info("webhook_event_already_recorded", event_id=event_id)
        return False
    return True


@router.post("/purchases/completed")
async def purchase_completed_webhook(request: Request):
    """Handle a purchase-completed notification.

    Verifies the signature, completes the pending purchase and runs the
    referral conversion. Redelivered events are acknowledged without being
    handled again; completing a purchase twice is a no-op as well.
    """
    if not settings.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    payload = await request.body()
    signature = request.headers.get("X-Webhook-Signature", "")
    if not verify_signature(payload, signature):
        logger.warning("webhook_signature_invalid")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        )

    try:
        event = PurchaseCompletedEvent.model_validate_json(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payload: {e.error_count()} errors",
        )

    if event.event_type != PURCHASE_COMPLETED:
        logger.info("webhook_event_ignored", event_id=event.event_id, event_type=event.event_type)
        return {"received": True, "ignored": True}

    if is_event_processed(event.event_id, SOURCE):
        logger.info("webhook_duplicate", event_id=event.event_id)
        return {"received": True, "duplicate": True}

    result = purchase_service.complete_purchase(event.purchase_id)

    # Mark as processed AFTER successful handling
    mark_event_processed(event.event_id, event.event_type, SOURCE)
    logger.info("webhook_purchase_completed", event_id=event.event_id, purchase_id=event.purchase_id)

    reward = result.referral_reward
    return {
        "received": True,
        "purchase_id": event.purchase_id,
        "referral_reward": reward.to_dict() if reward else None,
    }
