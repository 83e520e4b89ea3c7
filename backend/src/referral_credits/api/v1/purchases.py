"""Purchase API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from referral_credits.accounts.models import Account
from referral_credits.auth.middleware import require_auth
from referral_credits.logging_config import get_logger
from referral_credits.purchases.service import purchase_service

logger = get_logger(__name__)

router = APIRouter(prefix="/purchases", tags=["purchases"])


class CreatePurchaseRequest(BaseModel):
    """Record a completed purchase for the current account."""
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=500)
    product_id: str | None = Field(default=None, max_length=100)
    metadata: dict | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_purchase(body: CreatePurchaseRequest, user: Account = Depends(require_auth)):
    """Record a completed purchase.

    The account's first completed purchase converts its pending referral;
    the response then includes ``referral_reward``.
    """
    try:
        result = purchase_service.create_purchase(
            account_id=user.id,
            amount=body.amount,
            description=body.description,
            product_id=body.product_id,
            metadata=body.metadata,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    return {"success": True, **result.to_dict()}


@router.get("")
async def list_purchases(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: Account = Depends(require_auth),
):
    """Paginated list of the current account's purchases."""
    return purchase_service.list_purchases(user.id, page=page, limit=limit)


@router.get("/stats")
async def get_purchase_stats(user: Account = Depends(require_auth)):
    """Purchase totals for the current account."""
    return purchase_service.get_purchase_stats(user.id)


@router.get("/{purchase_id}")
async def get_purchase(purchase_id: int, user: Account = Depends(require_auth)):
    """Get one of the current account's purchases."""
    return purchase_service.get_purchase(purchase_id, account_id=user.id).to_dict()
