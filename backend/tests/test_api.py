"""
HTTP API tests through FastAPI's TestClient.
"""
import json

import pytest
from fastapi.testclient import TestClient

from referral_credits.api.main import create_app
from referral_credits.api.v1.webhooks import sign_payload
from referral_credits.auth.local import auth_service
from referral_credits.errors import StoreUnavailable
from referral_credits.purchases.models import PurchaseStatus
from referral_credits.purchases.service import purchase_service
from referral_credits.referral.service import referral_service
from referral_credits.settings import settings

PASSWORD = "Secret123!"


@pytest.fixture
def client():
    return TestClient(create_app())


@pytest.fixture
def headers_for():
    def _headers(account):
        return {"Authorization": f"Bearer {auth_service.create_access_token(account)}"}
    return _headers


def register(client, email, name=None, referral_code=None):
    response = client.post("/api/v1/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "name": name,
        "referral_code": referral_code,
    })
    assert response.status_code == 201, response.text
    body = response.json()
    return body, {"Authorization": f"Bearer {body['access_token']}"}


class TestAuthEndpoints:
    """Tests for /auth"""

    def test_register_login_me(self, client):
        body, headers = register(client, "lina@example.com", name="Lina")
        assert body["user"]["referral_code"].startswith("LINA")
        assert body["warnings"] == []

        login = client.post("/api/v1/auth/login", json={"email": "lina@example.com", "password": PASSWORD})
        assert login.status_code == 200

        me = client.get("/api/v1/auth/me", headers=headers)
        assert me.json()["email"] == "lina@example.com"

    def test_register_with_invalid_code_warns(self, client):
        body, _ = register(client, "rolf@example.com", referral_code="NOPE99")
        assert body["referral"] is None
        assert body["warnings"]

    def test_register_duplicate_email(self, client):
        register(client, "lina@example.com")
        response = client.post("/api/v1/auth/register", json={"email": "lina@example.com", "password": PASSWORD})
        assert response.status_code == 409

    def test_bad_login(self, client):
        response = client.post("/api/v1/auth/login", json={"email": "x@example.com", "password": "nope"})
        assert response.status_code == 401

    def test_me_requires_auth(self, client):
        response = client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_logout_revokes_token(self, client):
        _, headers = register(client, "lina@example.com")
        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401


class TestReferralFlow:
    """Signup with a code through conversion, over HTTP"""

    def test_full_flow(self, client):
        lina, lina_headers = register(client, "lina@example.com", name="Lina")
        code = lina["user"]["referral_code"]

        details = client.get(f"/api/v1/referrals/details/{code}")
        assert details.json()["referrer_name"] == "Lina"

        rolf, rolf_headers = register(client, "rolf@example.com", name="Rolf", referral_code=code)
        assert rolf["referral"]["status"] == "pending"

        purchase = client.post(
            "/api/v1/purchases", json={"amount": 19.99, "description": "Starter"}, headers=rolf_headers
        )
        assert purchase.status_code == 201
        assert purchase.json()["referral_reward"]["credits_earned"] == 2

        stats = client.get("/api/v1/referrals/stats", headers=lina_headers).json()
        assert stats["confirmed_referrals"] == 1
        assert stats["total_credits_earned"] == 2

        assert client.get("/api/v1/auth/me", headers=lina_headers).json()["credit_balance"] == 2
        assert client.get("/api/v1/auth/me", headers=rolf_headers).json()["credit_balance"] == 2

        second = client.post(
            "/api/v1/purchases", json={"amount": 5, "description": "Refill"}, headers=rolf_headers
        )
        assert "referral_reward" not in second.json()

        history = client.get("/api/v1/dashboard/credits/history", headers=rolf_headers).json()
        assert history["total_earned"] == 2

    def test_generate_code_with_hint(self, client, make_account, headers_for):
        account = make_account()
        response = client.post("/api/v1/referrals/generate", json={"name_hint": "Maya"}, headers=headers_for(account))
        assert response.json()["referral_code"].startswith("MAYA")

        again = client.get("/api/v1/referrals/code", headers=headers_for(account))
        assert again.json()["referral_code"] == response.json()["referral_code"]


class TestErrorMapping:
    """Typed failures map to HTTP statuses"""

    def test_invalid_code(self, client, make_account, headers_for):
        account = make_account()
        response = client.post(
            "/api/v1/referrals/apply", json={"referral_code": "NOPE99"}, headers=headers_for(account)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_code"

    def test_self_referral(self, client, make_account, headers_for):
        account = make_account(referral_code="LINA01")
        response = client.post(
            "/api/v1/referrals/apply", json={"referral_code": "LINA01"}, headers=headers_for(account)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "self_referral"

    def test_already_referred(self, client, make_account, headers_for):
        make_account(referral_code="LINA01")
        make_account(referral_code="OTHER1")
        account = make_account()
        client.post("/api/v1/referrals/apply", json={"referral_code": "LINA01"}, headers=headers_for(account))

        response = client.post(
            "/api/v1/referrals/apply", json={"referral_code": "OTHER1"}, headers=headers_for(account)
        )
        assert response.status_code == 409
        assert response.json()["error"] == "already_referred"

    def test_apply_after_purchase(self, client, make_account, headers_for):
        make_account(referral_code="LINA01")
        account = make_account()
        headers = headers_for(account)
        client.post("/api/v1/purchases", json={"amount": 10, "description": "Pack"}, headers=headers)

        response = client.post("/api/v1/referrals/apply", json={"referral_code": "LINA01"}, headers=headers)
        assert response.status_code == 409
        assert response.json()["error"] == "not_eligible"

    def test_admin_confirm_and_not_pending(self, client, make_account, headers_for):
        admin = make_account(is_admin=True)
        make_account(referral_code="LINA01")
        referred = make_account()
        pending = referral_service.create_referral("LINA01", referred.id)

        first = client.post(f"/api/v1/referrals/{pending.id}/confirm", headers=headers_for(admin))
        assert first.status_code == 200
        assert first.json()["referral"]["status"] == "confirmed"

        second = client.post(f"/api/v1/referrals/{pending.id}/cancel", headers=headers_for(admin))
        assert second.status_code == 409
        assert second.json()["error"] == "not_pending"

    def test_not_found(self, client, make_account, headers_for):
        admin = make_account(is_admin=True)
        response = client.post("/api/v1/referrals/999/confirm", headers=headers_for(admin))
        assert response.status_code == 404

    def test_admin_required(self, client, make_account, headers_for):
        account = make_account()
        response = client.post("/api/v1/referrals/1/confirm", headers=headers_for(account))
        assert response.status_code == 403

    def test_store_unavailable(self, client, make_account, headers_for, monkeypatch):
        admin = make_account(is_admin=True)

        def down(referral_id):
            raise StoreUnavailable("ledger down")

        monkeypatch.setattr(referral_service, "confirm", down)
        response = client.post("/api/v1/referrals/1/confirm", headers=headers_for(admin))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["retryable"] is True


class TestPurchaseEndpoints:
    """Tests for /purchases"""

    def test_list_and_get(self, client, make_account, headers_for):
        account = make_account()
        headers = headers_for(account)
        created = client.post("/api/v1/purchases", json={"amount": 10, "description": "Pack"}, headers=headers)
        purchase_id = created.json()["purchase"]["id"]

        listing = client.get("/api/v1/purchases?page=1&limit=5", headers=headers).json()
        assert listing["pagination"]["total"] == 1

        assert client.get(f"/api/v1/purchases/{purchase_id}", headers=headers).status_code == 200
        assert client.get("/api/v1/purchases/stats", headers=headers).json()["completed_purchases"] == 1

    def test_other_accounts_purchase_is_hidden(self, client, make_account, headers_for):
        owner = make_account()
        other = make_account()
        purchase = purchase_service.create_purchase(owner.id, 10, "Pack").purchase

        response = client.get(f"/api/v1/purchases/{purchase.id}", headers=headers_for(other))
        assert response.status_code == 404

    def test_amount_above_maximum(self, client, make_account, headers_for):
        account = make_account()
        response = client.post(
            "/api/v1/purchases", json={"amount": 2_000_000, "description": "Yacht"}, headers=headers_for(account)
        )
        assert response.status_code == 400


class TestWebhooks:
    """Tests for /webhooks/purchases/completed"""

    @pytest.fixture(autouse=True)
    def secret(self, monkeypatch):
        monkeypatch.setattr(settings, "webhook_secret", "whsec_test")

    def post_event(self, client, event):
        payload = json.dumps(event).encode()
        return client.post(
            "/api/v1/webhooks/purchases/completed",
            content=payload,
            headers={
                "Content-Type": "application/json",
                "X-Webhook-Signature": sign_payload(payload, "whsec_test"),
            },
        )

    def test_completes_purchase_and_converts_once(self, client, make_account):
        lina = make_account(referral_code="LINA01")
        rolf = make_account()
        referral_service.create_referral("LINA01", rolf.id)
        purchase = purchase_service.create_purchase(
            rolf.id, 10, "Pack", status=PurchaseStatus.PENDING
        ).purchase
        event = {"event_id": "evt_1", "event_type": "purchase.completed", "purchase_id": purchase.id}

        first = self.post_event(client, event)
        assert first.status_code == 200
        assert first.json()["referral_reward"]["converted"] is True

        again = self.post_event(client, event)
        assert again.json()["duplicate"] is True

        assert auth_service.get_account_by_id(lina.id).credit_balance == 2

    def test_bad_signature(self, client):
        response = client.post(
            "/api/v1/webhooks/purchases/completed",
            content=b"{}",
            headers={"X-Webhook-Signature": "bad"},
        )
        assert response.status_code == 400

    def test_unknown_purchase(self, client):
        response = self.post_event(client, {"event_id": "evt_2", "purchase_id": 404})
        assert response.status_code == 404


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["store"] == "ok"

    def test_security_headers(self, client):
        response = client.get("/")
        assert response.headers["X-Frame-Options"] == "DENY"
