"""Dashboard and audit projections."""

from referral_credits.dashboard.service import DashboardService, dashboard_service, referral_link

__all__ = ["DashboardService", "dashboard_service", "referral_link"]
