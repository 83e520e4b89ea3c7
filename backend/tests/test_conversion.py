"""
Tests for the first-purchase conversion.
"""
import pytest

from referral_credits.accounts.credits import account_manager
from referral_credits.conversion.orchestrator import ConversionOrchestrator, conversion_orchestrator
from referral_credits.errors import StoreUnavailable
from referral_credits.purchases.service import PurchaseService, purchase_service
from referral_credits.referral.models import ReferralStatus
from referral_credits.referral.service import ReferralService, referral_service


class StubPurchases:
    """First-purchase checker with a fixed answer"""

    def __init__(self, first: bool):
        self.first = first

    def is_first_completed_purchase(self, account_id: int, purchase_id: int | None = None) -> bool:
        return self.first


class SilentOrchestrator:
    """Drops notifications so purchases can be stored without converting"""

    def notify_first_purchase(self, account_id, purchase_id=None):
        return None


@pytest.fixture
def lina(make_account):
    return make_account(name="Lina", referral_code="LINA01")


@pytest.fixture
def rolf(make_account):
    return make_account(name="Rolf")


class TestReferralLifecycle:
    """Signup with LINA01 through two purchases"""

    def test_first_purchase_converts_second_does_not(self, lina, rolf):
        referral = referral_service.create_referral("LINA01", rolf.id)
        assert ReferralStatus(referral.status) == ReferralStatus.PENDING
        assert referral.credits_earned == 0

        first = purchase_service.create_purchase(rolf.id, 19.99, "Starter pack")
        assert first.referral_reward.converted is True
        assert first.referral_reward.credits_earned == 2

        confirmed = referral_service.get_referral(referral.id)
        assert ReferralStatus(confirmed.status) == ReferralStatus.CONFIRMED
        assert confirmed.credits_earned == 2
        assert account_manager.get_balance(lina.id) == 2
        assert account_manager.get_balance(rolf.id) == 2

        second = purchase_service.create_purchase(rolf.id, 5, "Refill")
        assert second.referral_reward.converted is False
        assert account_manager.get_balance(lina.id) == 2
        assert account_manager.get_balance(rolf.id) == 2

    def test_purchases_stored_before_notification(self, lina, rolf):
        """Two completed purchases stored before either notifies still convert"""
        referral = referral_service.create_referral("LINA01", rolf.id)
        silent = PurchaseService(orchestrator=SilentOrchestrator())
        first = silent.create_purchase(rolf.id, 10, "Starter pack").purchase
        second = silent.create_purchase(rolf.id, 10, "Refill").purchase

        assert conversion_orchestrator.notify_first_purchase(rolf.id, purchase_id=second.id).converted is False
        assert conversion_orchestrator.notify_first_purchase(rolf.id, purchase_id=first.id).converted is True

        assert ReferralStatus(referral_service.get_referral(referral.id).status) == ReferralStatus.CONFIRMED
        assert account_manager.get_balance(lina.id) == 2

        third = purchase_service.create_purchase(rolf.id, 5, "Top-up")
        assert third.referral_reward.converted is False
        assert account_manager.get_balance(lina.id) == 2

    def test_notify_again_after_conversion(self, lina, rolf):
        """Redelivered notifications find no pending referral"""
        referral_service.create_referral("LINA01", rolf.id)
        purchase_service.create_purchase(rolf.id, 10, "Starter pack")

        result = conversion_orchestrator.notify_first_purchase(rolf.id)
        assert result.converted is False
        assert result.to_dict() == {"converted": False}


class TestOrchestrator:
    """Tests for ConversionOrchestrator"""

    def test_no_pending_referral(self, rolf):
        orchestrator = ConversionOrchestrator(purchases=StubPurchases(first=True))
        assert orchestrator.notify_first_purchase(rolf.id).converted is False

    def test_not_first_purchase(self, lina, rolf):
        referral = referral_service.create_referral("LINA01", rolf.id)
        orchestrator = ConversionOrchestrator(purchases=StubPurchases(first=False))

        assert orchestrator.notify_first_purchase(rolf.id).converted is False
        assert ReferralStatus(referral_service.get_referral(referral.id).status) == ReferralStatus.PENDING

    def test_converts_pending_referral(self, lina, rolf):
        referral = referral_service.create_referral("LINA01", rolf.id)
        orchestrator = ConversionOrchestrator(purchases=StubPurchases(first=True))

        result = orchestrator.notify_first_purchase(rolf.id)
        assert result.to_dict() == {"converted": True, "credits_earned": 2, "referral_id": referral.id}

    def test_lost_race_reports_not_converted(self, lina, rolf):
        """Another caller confirming in between is not an error"""
        referral = referral_service.create_referral("LINA01", rolf.id)

        class RacingReferrals(ReferralService):
            def get_pending_for_account(self, account_id):
                pending = super().get_pending_for_account(account_id)
                referral_service.cancel(pending.id)
                return pending

        orchestrator = ConversionOrchestrator(
            referrals=RacingReferrals(),
            purchases=StubPurchases(first=True),
        )
        result = orchestrator.notify_first_purchase(rolf.id)

        assert result.converted is False
        assert result.referral_id == referral.id
        assert account_manager.get_balance(rolf.id) == 0

    def test_store_unavailable_propagates(self, rolf):
        class DownReferrals(ReferralService):
            def get_pending_for_account(self, account_id):
                raise StoreUnavailable("ledger down")

        orchestrator = ConversionOrchestrator(
            referrals=DownReferrals(),
            purchases=StubPurchases(first=True),
        )
        with pytest.raises(StoreUnavailable):
            orchestrator.notify_first_purchase(rolf.id)
