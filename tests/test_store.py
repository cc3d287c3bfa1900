"""Tests for JSON-file persistence."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from models import PreferencesUpdate, SubscriptionCreate, SubscriptionStatus, SubscriptionUpdate
from store import EmailTaken, ScanQuotaExceeded, Store


def create(**overrides) -> SubscriptionCreate:
    data = {
        "name": "Netflix",
        "cost": 15.99,
        "billing_frequency": "monthly",
        "next_payment_date": date(2024, 6, 15),
        "category": "Entertainment",
    }
    data.update(overrides)
    return SubscriptionCreate(**data)


class TestUsers:
    """Test user records and scan quota bookkeeping."""

    def test_create_and_find(self, store: Store):
        user = store.create_user("New@Example.com", "hash")
        assert user["email"] == "new@example.com"
        assert store.find_user_by_email("NEW@example.com")["id"] == user["id"]

    def test_duplicate_email(self, store: Store):
        store.create_user("a@example.com", "hash")
        with pytest.raises(EmailTaken):
            store.create_user("A@example.com", "hash")

    def test_profile_defaults(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        profile = store.profile(user["id"])
        assert profile.is_premium is False
        assert profile.daily_scans_used == 0
        assert profile.max_daily_scans == 1
        assert profile.preferences.reminder_days == 3

    def test_scan_counter_rolls_over(self, store: Store):
        """A new calendar day resets the scan counter."""
        user = store.create_user("a@example.com", "hash")
        store.consume_scan(user["id"], date(2024, 6, 1))
        assert store.profile(user["id"], date(2024, 6, 1)).daily_scans_used == 1
        assert store.profile(user["id"], date(2024, 6, 2)).daily_scans_used == 0

    def test_consume_scan_stops_at_free_quota(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        assert store.consume_scan(user["id"], date(2024, 6, 1)).daily_scans_used == 1
        with pytest.raises(ScanQuotaExceeded):
            store.consume_scan(user["id"], date(2024, 6, 1))
        assert store.profile(user["id"], date(2024, 6, 1)).daily_scans_used == 1
        assert store.consume_scan(user["id"], date(2024, 6, 2)).daily_scans_used == 1

    def test_consume_scan_is_atomic_across_threads(self, store: Store):
        user = store.create_user("a@example.com", "hash")

        def attempt(_):
            try:
                store.consume_scan(user["id"])
                return True
            except ScanQuotaExceeded:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))
        assert results.count(True) == 1
        assert store.profile(user["id"]).daily_scans_used == 1

    def test_refund_scan(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        store.consume_scan(user["id"], date(2024, 6, 1))
        store.refund_scan(user["id"], date(2024, 6, 1))
        store.refund_scan(user["id"], date(2024, 6, 1))
        assert store.profile(user["id"], date(2024, 6, 1)).daily_scans_used == 0

    def test_premium_is_not_gated(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        store.set_premium(user["id"], True)
        for _ in range(3):
            store.consume_scan(user["id"])
        assert store.profile(user["id"]).daily_scans_used == 3

    def test_reset_all(self, store: Store):
        ids = [store.create_user(f"u{i}@example.com", "hash")["id"] for i in range(2)]
        for user_id in ids:
            store.consume_scan(user_id)
        assert store.reset_all_scan_quotas() == 2
        assert all(store.profile(i).daily_scans_used == 0 for i in ids)

    def test_premium_raises_quota(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        store.set_premium(user["id"], True)
        assert store.profile(user["id"]).max_daily_scans == 5

    def test_losing_premium_turns_off_sms(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        store.set_premium(user["id"], True)
        store.update_preferences(user["id"], PreferencesUpdate(sms_notifications=True))
        store.set_premium(user["id"], False)
        assert store.profile(user["id"]).preferences.sms_notifications is False

    def test_partial_preferences(self, store: Store):
        user = store.create_user("a@example.com", "hash")
        prefs = store.update_preferences(user["id"], PreferencesUpdate(reminder_days=7))
        assert prefs.reminder_days == 7
        assert prefs.email_notifications is True


class TestTokens:
    """Test token records."""

    def test_purge_expired(self, store: Store):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        store.save_token("old", {"user_id": "u", "kind": "access", "expires_at": (now - timedelta(minutes=1)).isoformat()})
        store.save_token("new", {"user_id": "u", "kind": "access", "expires_at": (now + timedelta(minutes=1)).isoformat()})
        assert store.purge_expired_tokens(now) == 1
        assert store.get_token("old") is None
        assert store.get_token("new") is not None


class TestSubscriptions:
    """Test subscription CRUD."""

    def test_add_assigns_identity(self, store: Store):
        sub = store.add_subscription("u1", create())
        assert sub.id
        assert sub.status is SubscriptionStatus.ACTIVE
        assert sub.created_at is not None

    def test_scoped_per_user(self, store: Store):
        sub = store.add_subscription("u1", create())
        assert store.list_subscriptions("u2") == []
        assert store.get_subscription("u2", sub.id) is None
        assert store.delete_subscription("u2", sub.id) is False
        assert store.update_subscription("u2", sub.id, SubscriptionUpdate(cost=1)) is None

    def test_partial_update(self, store: Store):
        sub = store.add_subscription("u1", create())
        updated = store.update_subscription("u1", sub.id, SubscriptionUpdate(cost=17.99))
        assert updated.cost == 17.99
        assert updated.name == "Netflix"
        assert updated.created_at == sub.created_at

    def test_derived_status_stored_as_active(self, store: Store):
        sub = store.add_subscription("u1", create())
        updated = store.update_subscription("u1", sub.id, SubscriptionUpdate(status="overdue"))
        assert updated.status is SubscriptionStatus.ACTIVE

    def test_null_required_field_ignored(self, store: Store):
        sub = store.add_subscription("u1", create())
        updated = store.update_subscription("u1", sub.id, SubscriptionUpdate(name=None, description=None))
        assert updated.name == "Netflix"

    def test_survives_reload(self, store: Store):
        sub = store.add_subscription("u1", create(logo="🎬"))
        reopened = Store(store.data_dir)
        assert reopened.get_subscription("u1", sub.id).logo == "🎬"

    def test_delete(self, store: Store):
        sub = store.add_subscription("u1", create())
        assert store.delete_subscription("u1", sub.id) is True
        assert store.list_subscriptions("u1") == []
        assert store.delete_subscription("u1", sub.id) is False

    def test_no_files_until_first_write(self, tmp_path):
        store = Store(tmp_path / "lazy")
        assert store.list_users() == []
        assert not (tmp_path / "lazy").exists()
