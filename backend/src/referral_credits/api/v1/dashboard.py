"""Dashboard API v1 endpoints."""

from fastapi import APIRouter, Depends

from referral_credits.accounts.models import Account
from referral_credits.auth.middleware import require_admin, require_auth
from referral_credits.dashboard.service import dashboard_service

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
async def get_dashboard_stats(user: Account = Depends(require_auth)):
    """Get dashboard statistics for the current account."""
    return dashboard_service.get_dashboard_stats(user.id)


@router.get("/summary")
async def get_dashboard_summary(user: Account = Depends(require_auth)):
    """Overview, referral link and latest activity."""
    return dashboard_service.get_dashboard_summary(user.id)


@router.get("/credits/history")
async def get_credit_history(user: Account = Depends(require_auth)):
    """Credits earned through referrals, as referrer or referred."""
    return dashboard_service.get_credit_history(user.id)


@router.get("/integrity")
async def verify_data_integrity(user: Account = Depends(require_auth)):
    """Audit the current account's referral data."""
    return dashboard_service.verify_data_integrity(user.id)


@router.get("/admin/overview")
async def get_admin_overview(admin: Account = Depends(require_admin)):
    """Program-wide referral totals."""
    return dashboard_service.get_admin_overview()
