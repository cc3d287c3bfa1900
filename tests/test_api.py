"""Tests for the REST API."""

import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from api import create_app
from conftest import TEST_EMAIL, TEST_PASSWORD, sub_payload
from providers import MockScanProvider


class TestAuthAPI:
    """Test authentication endpoints."""

    def test_register_success(self, client: TestClient):
        """Test successful user registration."""
        response = client.post("/api/auth/register", json={"email": "new@example.com", "password": "secret1"})
        assert response.status_code == 200
        assert response.json() == {"email": "new@example.com"}

    def test_register_duplicate_email(self, client: TestClient, tokens):
        response = client.post("/api/auth/register", json={"email": TEST_EMAIL, "password": "another1"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "email_taken"

    def test_register_short_password(self, client: TestClient):
        response = client.post("/api/auth/register", json={"email": "a@example.com", "password": "123"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_register_invalid_email(self, client: TestClient):
        response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "secret1"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_login_returns_token_pair(self, tokens):
        assert tokens["accessToken"]
        assert tokens["refreshToken"]
        assert tokens["accessToken"] != tokens["refreshToken"]

    def test_login_wrong_password(self, client: TestClient, tokens):
        response = client.post("/api/auth/login", json={"email": TEST_EMAIL, "password": "wrong-pass"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_credentials"

    def test_protected_route_requires_token(self, client: TestClient):
        response = client.get("/api/subscriptions")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": {"code": "unauthorized", "message": "Missing or invalid access token."},
        }

    def test_refresh_rotates_pair(self, client: TestClient, tokens):
        response = client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
        assert response.status_code == 200
        fresh = response.json()
        old = client.get("/api/subscriptions", headers={"Authorization": f"Bearer {tokens['accessToken']}"})
        assert old.status_code == 401
        new = client.get("/api/subscriptions", headers={"Authorization": f"Bearer {fresh['accessToken']}"})
        assert new.status_code == 200

    def test_refresh_with_access_token_rejected(self, client: TestClient, tokens):
        response = client.post("/api/auth/refresh", json={"refreshToken": tokens["accessToken"]})
        assert response.status_code == 401

    def test_logout_revokes_token(self, client: TestClient, auth_headers):
        response = client.post("/api/auth/logout", headers=auth_headers)
        assert response.json() == {"success": True, "message": "User logged out successfully"}
        assert client.get("/api/subscriptions", headers=auth_headers).status_code == 401


class TestSubscriptionsAPI:
    """Test subscription CRUD endpoints."""

    def test_add_subscription_scenario(self, client: TestClient, auth_headers):
        """A new subscription gets an id, status active and createdAt."""
        payload = {
            "name": "Test",
            "cost": 10,
            "billingFrequency": "monthly",
            "nextPaymentDate": "2024-06-01",
            "category": "Other",
        }
        response = client.post("/api/subscriptions", json=payload, headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        sub = data["subscription"]
        assert sub["id"]
        assert sub["status"] == "active"
        assert sub["createdAt"]
        assert sub["nextPaymentDate"] == "2024-06-01"

    @pytest.mark.parametrize("field, value", [
        ("name", ""),
        ("cost", 0),
        ("cost", -5),
        ("billingFrequency", "daily"),
        ("nextPaymentDate", "not-a-date"),
        ("category", "   "),
    ])
    def test_add_validation(self, client: TestClient, auth_headers, field, value):
        response = client.post("/api/subscriptions", json=sub_payload(**{field: value}), headers=auth_headers)
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"][0]["field"] == field

    def test_list_reports_effective_status(self, client: TestClient, auth_headers):
        client.post("/api/subscriptions", json=sub_payload("Late", days_ahead=-2), headers=auth_headers)
        client.post("/api/subscriptions", json=sub_payload("Soon", days_ahead=1), headers=auth_headers)
        client.post("/api/subscriptions", json=sub_payload("Later", days_ahead=20), headers=auth_headers)

        subs = client.get("/api/subscriptions", headers=auth_headers).json()["subscriptions"]
        by_name = {s["name"]: s for s in subs}
        assert by_name["Late"]["status"] == "overdue"
        assert by_name["Late"]["paymentLabel"] == "2 days overdue"
        assert by_name["Soon"]["status"] == "due_soon"
        assert by_name["Later"]["status"] == "active"
        assert [s["name"] for s in subs] == ["Late", "Soon", "Later"]

    def test_users_are_isolated(self, client: TestClient, auth_headers):
        client.post("/api/subscriptions", json=sub_payload(), headers=auth_headers)
        client.post("/api/auth/register", json={"email": "other@example.com", "password": "secret1"})
        other = client.post("/api/auth/login", json={"email": "other@example.com", "password": "secret1"}).json()
        headers = {"Authorization": f"Bearer {other['accessToken']}"}
        assert client.get("/api/subscriptions", headers=headers).json()["subscriptions"] == []

    def test_update_partial(self, client: TestClient, auth_headers):
        sub = client.post("/api/subscriptions", json=sub_payload(), headers=auth_headers).json()["subscription"]
        response = client.put(f"/api/subscriptions/{sub['id']}", json={"status": "paused"}, headers=auth_headers)
        assert response.status_code == 200
        updated = response.json()["subscription"]
        assert updated["status"] == "paused"
        assert updated["name"] == "Test"

    def test_update_cannot_change_identity(self, client: TestClient, auth_headers):
        sub = client.post("/api/subscriptions", json=sub_payload(), headers=auth_headers).json()["subscription"]
        response = client.put(
            f"/api/subscriptions/{sub['id']}",
            json={"id": "hijack", "createdAt": "2000-01-01T00:00:00", "cost": 12},
            headers=auth_headers,
        )
        updated = response.json()["subscription"]
        assert updated["id"] == sub["id"]
        assert updated["createdAt"] == sub["createdAt"]
        assert updated["cost"] == 12

    def test_update_unknown(self, client: TestClient, auth_headers):
        response = client.put("/api/subscriptions/missing", json={"cost": 5}, headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_delete(self, client: TestClient, auth_headers):
        sub = client.post("/api/subscriptions", json=sub_payload(), headers=auth_headers).json()["subscription"]
        response = client.delete(f"/api/subscriptions/{sub['id']}", headers=auth_headers)
        assert response.json() == {"success": True, "message": "Subscription deleted successfully"}
        assert client.delete(f"/api/subscriptions/{sub['id']}", headers=auth_headers).status_code == 404

    def test_stats(self, client: TestClient, auth_headers):
        client.post("/api/subscriptions", json=sub_payload("A", cost=10, days_ahead=0, category="Music"),
                    headers=auth_headers)
        client.post("/api/subscriptions", json=sub_payload("B", cost=120, days_ahead=20, category="Software",
                                                             billingFrequency="yearly"), headers=auth_headers)
        stats = client.get("/api/subscriptions/stats", headers=auth_headers).json()["stats"]
        assert stats["totalMonthlySpending"] == 20
        assert stats["totalYearlySpending"] == 240
        assert stats["activeSubscriptions"] == 2
        assert stats["upcomingPayments"] == 1
        assert stats["categoryBreakdown"] == [
            {"category": "Music", "amount": 10, "count": 1},
            {"category": "Software", "amount": 10, "count": 1},
        ]

    def test_stats_empty(self, client: TestClient, auth_headers):
        stats = client.get("/api/subscriptions/stats", headers=auth_headers).json()["stats"]
        assert stats["totalMonthlySpending"] == 0
        assert stats["categoryBreakdown"] == []


class TestScanAndCancelAPI:
    """Test the scan and AI-cancel endpoints."""

    def test_scan_returns_candidates(self, client: TestClient, auth_headers):
        response = client.post("/api/subscriptions/scan", headers=auth_headers)
        assert response.status_code == 200
        found = response.json()["foundSubscriptions"]
        assert [f["confidence"] for f in found] == [0.95, 0.87, 0.92]

    def test_scan_quota_enforced(self, client: TestClient, auth_headers):
        """A free user gets one scan a day."""
        client.post("/api/subscriptions/scan", headers=auth_headers)
        profile = client.get("/api/user/profile", headers=auth_headers).json()["user"]
        assert profile["dailyScansUsed"] == profile["maxDailyScans"] == 1

        response = client.post("/api/subscriptions/scan", headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "scan_quota_exceeded"

    def test_premium_scans_past_free_quota(self, client: TestClient, store, test_user, auth_headers):
        store.set_premium(test_user["id"], True)
        for _ in range(2):
            assert client.post("/api/subscriptions/scan", headers=auth_headers).status_code == 200

    def test_parallel_scans_share_one_quota(self, store):
        """Concurrent scans from a free user cannot exceed the daily quota."""
        class SlowScanner(MockScanProvider):
            def find_subscriptions(self, user):
                time.sleep(0.5)
                return super().find_subscriptions(user)

        app = create_app(store=store, scan_provider=SlowScanner())
        with TestClient(app) as client:
            client.post("/api/auth/register", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
            token = client.post("/api/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD}).json()
            headers = {"Authorization": f"Bearer {token['accessToken']}"}
            with ThreadPoolExecutor(max_workers=3) as pool:
                responses = list(pool.map(
                    lambda _: client.post("/api/subscriptions/scan", headers=headers), range(3)
                ))

        assert sorted(r.status_code for r in responses) == [200, 403, 403]
        assert store.find_user_by_email(TEST_EMAIL)["daily_scans_used"] == 1

    def test_ai_cancel(self, client: TestClient, auth_headers):
        sub = client.post("/api/subscriptions", json=sub_payload("Netflix"), headers=auth_headers).json()["subscription"]
        response = client.post(f"/api/subscriptions/{sub['id']}/cancel-ai", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert len(data["cancellationSteps"]) == 5
        assert data["estimatedTime"] == "2-5 minutes"
        assert data["cancellationUrl"] == "https://www.netflix.com/cancel"

        subs = client.get("/api/subscriptions", headers=auth_headers).json()["subscriptions"]
        assert subs[0]["status"] == "cancelled"

    def test_ai_cancel_unknown(self, client: TestClient, auth_headers):
        response = client.post("/api/subscriptions/nope/cancel-ai", headers=auth_headers)
        assert response.status_code == 404


class TestUserAPI:
    """Test profile, preferences and upgrade endpoints."""

    def test_profile(self, client: TestClient, auth_headers):
        user = client.get("/api/user/profile", headers=auth_headers).json()["user"]
        assert user["email"] == TEST_EMAIL
        assert user["isPremium"] is False
        assert user["preferences"] == {"emailNotifications": True, "smsNotifications": False, "reminderDays": 3}

    def test_update_preferences(self, client: TestClient, auth_headers):
        response = client.put("/api/user/preferences", json={"reminderDays": 5}, headers=auth_headers)
        assert response.json() == {
            "success": True,
            "preferences": {"emailNotifications": True, "smsNotifications": False, "reminderDays": 5},
        }

    def test_reminder_days_range(self, client: TestClient, auth_headers):
        response = client.put("/api/user/preferences", json={"reminderDays": 8}, headers=auth_headers)
        assert response.status_code == 422

    def test_sms_requires_premium(self, client: TestClient, auth_headers):
        response = client.put("/api/user/preferences", json={"smsNotifications": True}, headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "premium_required"

    def test_sms_allowed_for_premium(self, client: TestClient, store, test_user, auth_headers):
        store.set_premium(test_user["id"], True)
        response = client.put("/api/user/preferences", json={"smsNotifications": True}, headers=auth_headers)
        assert response.json()["preferences"]["smsNotifications"] is True

    def test_upgrade(self, client: TestClient, auth_headers):
        response = client.post("/api/user/upgrade", json={"planType": "yearly"}, headers=auth_headers)
        data = response.json()
        assert data["success"] is True
        assert data["checkoutUrl"].endswith("?plan=yearly")

    def test_upgrade_invalid_plan(self, client: TestClient, auth_headers):
        response = client.post("/api/user/upgrade", json={"planType": "lifetime"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_plan"


class TestErrorHandling:
    """Test the structured error responses."""

    def test_unknown_route(self, client: TestClient):
        response = client.get("/nowhere")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_unhandled_exception_is_500(self, store):
        class BrokenScanner:
            def find_subscriptions(self, user):
                raise RuntimeError("boom")

        app = create_app(store=store, scan_provider=BrokenScanner())
        with TestClient(app, raise_server_exceptions=False) as client:
            client.post("/api/auth/register", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
            token = client.post("/api/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD}).json()
            response = client.post("/api/subscriptions/scan",
                                   headers={"Authorization": f"Bearer {token['accessToken']}"})
        assert response.status_code == 500
        # the failed scan does not count against the quota
        assert store.find_user_by_email(TEST_EMAIL)["daily_scans_used"] == 0
        assert response.json() == {
            "success": False,
            "error": {"code": "internal_error", "message": "There was an error serving your request."},
        }
