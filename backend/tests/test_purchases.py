"""
Tests for purchase recording.
"""
import pytest

from referral_credits.conversion.orchestrator import ConversionResult
from referral_credits.errors import NotFound, StoreUnavailable
from referral_credits.purchases.models import PurchaseStatus
from referral_credits.purchases.service import PurchaseService, purchase_service


class FakeOrchestrator:
    """Records notifications; optionally fails the first few"""

    def __init__(self, failures=0, error=StoreUnavailable):
        self.calls = []
        self.failures = failures
        self.error = error

    def notify_first_purchase(self, account_id, purchase_id=None):
        self.calls.append(account_id)
        if len(self.calls) <= self.failures:
            raise self.error("ledger busy")
        return ConversionResult(converted=True, credits_earned=2, referral_id=7)


class TestCreatePurchase:
    """Tests for PurchaseService.create_purchase"""

    def test_records_completed_purchase(self, make_account):
        account = make_account()
        result = purchase_service.create_purchase(
            account.id, 49.5, "  Pro plan ", product_id="pro", metadata={"seats": 3}
        )

        purchase = result.purchase
        assert PurchaseStatus(purchase.status) == PurchaseStatus.COMPLETED
        assert purchase.description == "Pro plan"
        assert purchase.completed_at is not None
        assert purchase.to_dict()["metadata"] == {"seats": 3}
        assert purchase.to_dict()["amount"] == 49.5

    @pytest.mark.parametrize("amount", [0, -5, 1_000_000.01])
    def test_amount_out_of_range(self, make_account, amount):
        account = make_account()
        with pytest.raises(ValueError):
            purchase_service.create_purchase(account.id, amount, "Bad")
        assert purchase_service.count_completed(account.id) == 0

    def test_unknown_account(self):
        with pytest.raises(NotFound):
            purchase_service.create_purchase(404, 10, "Ghost")

    def test_completed_purchase_notifies_conversion(self, make_account):
        account = make_account()
        orchestrator = FakeOrchestrator()
        result = PurchaseService(orchestrator=orchestrator).create_purchase(account.id, 10, "Pack")

        assert orchestrator.calls == [account.id]
        assert result.to_dict()["referral_reward"]["credits_earned"] == 2

    def test_pending_purchase_does_not_notify(self, make_account):
        account = make_account()
        orchestrator = FakeOrchestrator()
        result = PurchaseService(orchestrator=orchestrator).create_purchase(
            account.id, 10, "Pack", status=PurchaseStatus.PENDING
        )

        assert orchestrator.calls == []
        assert "referral_reward" not in result.to_dict()


class TestConversionFailures:
    """Conversion problems never fail the purchase"""

    def test_store_unavailable_is_retried(self, make_account):
        account = make_account()
        orchestrator = FakeOrchestrator(failures=2)
        result = PurchaseService(orchestrator=orchestrator).create_purchase(account.id, 10, "Pack")

        assert len(orchestrator.calls) == 3
        assert result.referral_reward.converted is True

    def test_persistent_failure_keeps_purchase(self, make_account):
        account = make_account()
        orchestrator = FakeOrchestrator(failures=99)
        service = PurchaseService(orchestrator=orchestrator)

        result = service.create_purchase(account.id, 10, "Pack")

        assert result.referral_reward is None
        assert service.count_completed(account.id) == 1

    def test_unexpected_error_is_not_retried(self, make_account):
        account = make_account()
        orchestrator = FakeOrchestrator(failures=1, error=RuntimeError)
        result = PurchaseService(orchestrator=orchestrator).create_purchase(account.id, 10, "Pack")

        assert len(orchestrator.calls) == 1
        assert result.referral_reward is None


class TestCompletePurchase:
    """Tests for PurchaseService.complete_purchase"""

    def test_completes_pending_purchase_once(self, make_account):
        account = make_account()
        orchestrator = FakeOrchestrator()
        service = PurchaseService(orchestrator=orchestrator)
        pending = service.create_purchase(account.id, 10, "Pack", status=PurchaseStatus.PENDING).purchase

        first = service.complete_purchase(pending.id)
        second = service.complete_purchase(pending.id)

        assert PurchaseStatus(first.purchase.status) == PurchaseStatus.COMPLETED
        assert first.referral_reward.converted is True
        assert second.referral_reward is None
        assert orchestrator.calls == [account.id]

    def test_unknown_purchase(self):
        with pytest.raises(NotFound):
            purchase_service.complete_purchase(404)


class TestFirstPurchase:
    """Tests for first-purchase detection"""

    def test_first_and_later_purchases(self, make_account):
        account = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())

        assert service.is_first_completed_purchase(account.id)
        service.create_purchase(account.id, 10, "One")
        assert service.is_first_completed_purchase(account.id)
        service.create_purchase(account.id, 10, "Two")
        assert not service.is_first_completed_purchase(account.id)

    def test_judged_against_earlier_purchases(self, make_account):
        """Only the earliest completed purchase is first, whenever it is checked"""
        account = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())
        one = service.create_purchase(account.id, 10, "One").purchase
        two = service.create_purchase(account.id, 10, "Two").purchase

        assert service.is_first_completed_purchase(account.id, purchase_id=two.id) is False
        assert service.is_first_completed_purchase(account.id, purchase_id=one.id) is True

    def test_completion_order_decides(self, make_account):
        """A purchase created earlier but completed later is not first"""
        account = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())
        early = service.create_purchase(account.id, 10, "Invoice", status=PurchaseStatus.PENDING).purchase
        paid = service.create_purchase(account.id, 10, "Card").purchase
        service.complete_purchase(early.id)

        assert service.is_first_completed_purchase(account.id, purchase_id=paid.id) is True
        assert service.is_first_completed_purchase(account.id, purchase_id=early.id) is False

    def test_unknown_or_foreign_purchase_is_not_first(self, make_account):
        account = make_account()
        other = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())
        purchase = service.create_purchase(other.id, 10, "Pack").purchase
        pending = service.create_purchase(account.id, 10, "Pack", status=PurchaseStatus.PENDING).purchase

        assert service.is_first_completed_purchase(account.id, purchase_id=purchase.id) is False
        assert service.is_first_completed_purchase(account.id, purchase_id=pending.id) is False
        assert service.is_first_completed_purchase(account.id, purchase_id=404) is False

    def test_notification_carries_purchase_id(self, make_account):
        account = make_account()
        seen = []

        class RecordingOrchestrator:
            def notify_first_purchase(self, account_id, purchase_id=None):
                seen.append((account_id, purchase_id))
                return None

        purchase = PurchaseService(orchestrator=RecordingOrchestrator()).create_purchase(
            account.id, 10, "Pack"
        ).purchase

        assert seen == [(account.id, purchase.id)]

    def test_pending_purchases_do_not_count(self, make_account):
        account = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())
        service.create_purchase(account.id, 10, "One", status=PurchaseStatus.PENDING)
        service.create_purchase(account.id, 10, "Two")

        assert service.count_completed(account.id) == 1
        assert service.is_first_completed_purchase(account.id)


class TestQueries:
    """Tests for purchase listing and stats"""

    def test_list_paginates_newest_first(self, make_account):
        account = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())
        for i in range(12):
            service.create_purchase(account.id, i + 1, f"Purchase {i}")

        page = service.list_purchases(account.id, page=2, limit=5)
        assert page["pagination"] == {"page": 2, "limit": 5, "total": 12, "total_pages": 3}
        assert [p["description"] for p in page["purchases"]] == [f"Purchase {i}" for i in (6, 5, 4, 3, 2)]

    def test_list_clamps_limit(self, make_account):
        account = make_account()
        assert purchase_service.list_purchases(account.id, page=0, limit=500)["pagination"] == {
            "page": 1, "limit": 100, "total": 0, "total_pages": 0,
        }

    def test_get_purchase_checks_owner(self, make_account):
        owner = make_account()
        other = make_account()
        purchase = PurchaseService(orchestrator=FakeOrchestrator()).create_purchase(owner.id, 10, "Pack").purchase

        assert purchase_service.get_purchase(purchase.id, account_id=owner.id).id == purchase.id
        with pytest.raises(NotFound):
            purchase_service.get_purchase(purchase.id, account_id=other.id)

    def test_stats(self, make_account):
        account = make_account()
        service = PurchaseService(orchestrator=FakeOrchestrator())
        service.create_purchase(account.id, 10, "One")
        service.create_purchase(account.id, 30, "Two")
        service.create_purchase(account.id, 20, "Three", status=PurchaseStatus.PENDING)

        stats = service.get_purchase_stats(account.id)
        assert stats == {
            "total_purchases": 3,
            "total_amount": 60.0,
            "completed_purchases": 2,
            "pending_purchases": 1,
            "average_amount": 20.0,
        }
