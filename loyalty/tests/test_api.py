"""
Tests for the HTTP surface of the loyalty ledger
"""

import pytest
from fastapi.testclient import TestClient

from loyalty import api


@pytest.fixture
def client(monkeypatch, service):
    monkeypatch.setattr(api, "loyalty_service", service)
    return TestClient(api.app)


class TestAccountsEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_open_and_get_account(self, client):
        response = client.post("/accounts/u-1")
        assert response.status_code == 201
        assert response.json()["available_points"] == 100

        response = client.get("/accounts/u-1")
        assert response.status_code == 200
        assert response.json()["current_tier"] == "bronze"

    def test_missing_account_is_404(self, client):
        response = client.get("/accounts/ghost")

        assert response.status_code == 404
        assert response.json()["kind"] == "account_not_found"

    def test_earn_and_progress(self, client):
        response = client.post("/accounts/u-1/earn", json={
            "amount": 1200,
            "source": "purchase",
            "description": "Order 1",
            "metadata": {"order_id": "1"},
        })
        assert response.status_code == 201
        assert response.json()["amount"] == 1200
        assert response.json()["reference_id"] == "1"

        progress = client.get("/accounts/u-1/tier-progress").json()
        assert progress["current"]["id"] == "silver"
        assert progress["next"]["id"] == "gold"

        expiring = client.get("/accounts/u-1/expiring-points", params={"days": 400}).json()
        assert expiring["points"] == 1200

    def test_invalid_amount_is_400(self, client):
        response = client.post("/accounts/u-1/earn", json={"amount": 0, "source": "signup", "description": "x"})

        assert response.status_code == 400
        assert response.json()["kind"] == "invalid_amount"
        assert response.json()["retryable"] is False

    def test_storage_outage_is_503(self, client, service):
        service.storage.available = False

        response = client.get("/accounts/u-1")

        assert response.status_code == 503
        assert response.json()["retryable"] is True
        assert response.headers["Retry-After"] == "1"


class TestRedemptionEndpoints:
    def test_redeem_and_use(self, client):
        client.post("/accounts/u-1/earn", json={"amount": 600, "source": "signup", "description": "Seed"})

        response = client.post("/accounts/u-1/redemptions", json={"reward_id": "discount_5"})
        assert response.status_code == 201
        redemption = response.json()
        assert redemption["status"] == "approved"

        response = client.post(f"/redemptions/{redemption['id']}/use", json={"order_id": "o-9"})
        assert response.status_code == 200
        assert response.json()["status"] == "redeemed"

        response = client.post(f"/redemptions/{redemption['id']}/use", json={})
        assert response.status_code == 409
        assert response.json()["kind"] == "invalid_state"

    def test_insufficient_points_is_409(self, client):
        client.post("/accounts/u-1")

        response = client.post("/accounts/u-1/redemptions", json={"reward_id": "discount_5"})

        assert response.status_code == 409
        assert response.json()["kind"] == "insufficient_points"

    def test_catalog(self, client):
        rewards = client.get("/rewards").json()
        tiers = client.get("/tiers").json()

        assert [r["id"] for r in rewards][0] == "free_shipping"
        assert len(tiers) == 4


class TestReferralEndpoints:
    def test_referral_flow(self, client):
        code = client.post("/accounts/alice/referral-code").json()["code"]

        response = client.post("/referrals", json={"code": code, "referee_id": "bob"})
        assert response.status_code == 201
        assert response.json()["status"] == "completed"

        response = client.post("/referrals", json={"code": code, "referee_id": "bob"})
        assert response.status_code == 409
        assert response.json()["kind"] == "duplicate_referral"

        assert client.get("/accounts/alice").json()["available_points"] == 500
        assert len(client.get("/accounts/alice/referrals").json()) == 1

    def test_share(self, client):
        response = client.post("/accounts/alice/referral-code/share", json={"method": "email"})

        assert response.status_code == 200
        assert response.json()["points_awarded"] == 25
