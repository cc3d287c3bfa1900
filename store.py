"""
store.py — JSON-file persistence

Users, auth tokens and subscriptions each live in one JSON document under
DATA_DIR. Every public method takes the store lock, re-reads the document it
needs and writes it back atomically, so the API and the scheduler thread can
share one Store instance.
"""

import json
import logging
import os
import threading
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

import config
from analyzer import base_status
from models import (
    Preferences,
    PreferencesUpdate,
    Subscription,
    SubscriptionCreate,
    SubscriptionStatus,
    SubscriptionUpdate,
    UserProfile,
)

log = logging.getLogger(__name__)

# Explicit nulls for these are ignored on update; optional fields may be cleared.
REQUIRED_FIELDS = ("name", "cost", "billing_frequency", "next_payment_date", "category", "status")


class EmailTaken(Exception):
    pass


class ScanQuotaExceeded(Exception):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Store:
    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir or config.DATA_DIR)
        self.users_file = self.data_dir / "users.json"
        self.subscriptions_file = self.data_dir / "subscriptions.json"
        self.tokens_file = self.data_dir / "tokens.json"
        self._lock = threading.RLock()

    # ── File helpers ──────────────────────────────────────────────────────────
    def _load(self, path: Path) -> dict:
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError:
            log.warning(f"Corrupt data file {path}, starting empty.")
            return {}

    def _save(self, path: Path, data: dict):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, path)

    # ── Users ─────────────────────────────────────────────────────────────────
    def create_user(self, email: str, password_hash: str, name: Optional[str] = None) -> dict:
        email = email.strip().lower()
        with self._lock:
            users = self._load(self.users_file)
            if any(u["email"] == email for u in users.values()):
                raise EmailTaken(email)
            user = {
                "id": uuid.uuid4().hex,
                "email": email,
                "name": name,
                "password_hash": password_hash,
                "is_premium": False,
                "daily_scans_used": 0,
                "scans_date": date.today().isoformat(),
                "preferences": Preferences().model_dump(),
                "created_at": _utcnow().isoformat(),
            }
            users[user["id"]] = user
            self._save(self.users_file, users)
        log.info(f"User registered: {email}")
        return user

    def get_user(self, user_id: str) -> Optional[dict]:
        with self._lock:
            return self._load(self.users_file).get(user_id)

    def find_user_by_email(self, email: str) -> Optional[dict]:
        email = email.strip().lower()
        with self._lock:
            for user in self._load(self.users_file).values():
                if user["email"] == email:
                    return user
        return None

    def list_users(self) -> list[dict]:
        with self._lock:
            return list(self._load(self.users_file).values())

    def _update_user(self, user_id: str, mutate) -> Optional[dict]:
        with self._lock:
            users = self._load(self.users_file)
            user = users.get(user_id)
            if user is None:
                return None
            mutate(user)
            self._save(self.users_file, users)
            return user

    @staticmethod
    def _roll_quota(user: dict, today: date):
        if user.get("scans_date") != today.isoformat():
            user["daily_scans_used"] = 0
            user["scans_date"] = today.isoformat()

    def profile(self, user_id: str, today: Optional[date] = None) -> Optional[UserProfile]:
        """Return the user's profile, resetting the scan counter on a new day."""
        today = today or date.today()
        user = self._update_user(user_id, lambda u: self._roll_quota(u, today))
        if user is None:
            return None
        return UserProfile(
            id=user["id"],
            email=user["email"],
            name=user.get("name"),
            is_premium=user["is_premium"],
            daily_scans_used=user["daily_scans_used"],
            max_daily_scans=config.PREMIUM_DAILY_SCANS if user["is_premium"] else config.FREE_DAILY_SCANS,
            preferences=Preferences(**user["preferences"]),
        )

    def consume_scan(self, user_id: str, today: Optional[date] = None) -> Optional[UserProfile]:
        """
        Take one scan from today's quota, raising ScanQuotaExceeded when a
        free user has none left. The check and the increment happen in a
        single locked update.
        """
        today = today or date.today()

        def take(user):
            self._roll_quota(user, today)
            if not user["is_premium"] and user["daily_scans_used"] >= config.FREE_DAILY_SCANS:
                raise ScanQuotaExceeded(user["email"])
            user["daily_scans_used"] += 1

        if self._update_user(user_id, take) is None:
            return None
        return self.profile(user_id, today)

    def refund_scan(self, user_id: str, today: Optional[date] = None):
        """Give back a scan whose provider call failed."""
        today = today or date.today()

        def give_back(user):
            if user.get("scans_date") == today.isoformat():
                user["daily_scans_used"] = max(0, user["daily_scans_used"] - 1)

        self._update_user(user_id, give_back)

    def reset_all_scan_quotas(self, today: Optional[date] = None) -> int:
        today = today or date.today()
        with self._lock:
            users = self._load(self.users_file)
            for user in users.values():
                user["daily_scans_used"] = 0
                user["scans_date"] = today.isoformat()
            self._save(self.users_file, users)
        return len(users)

    def update_preferences(self, user_id: str, changes: PreferencesUpdate) -> Optional[Preferences]:
        patch = changes.model_dump(exclude_none=True)
        user = self._update_user(user_id, lambda u: u["preferences"].update(patch))
        if user is None:
            return None
        return Preferences(**user["preferences"])

    def set_premium(self, user_id: str, is_premium: bool) -> Optional[dict]:
        """
        Flip the premium flag and drop SMS when premium is lost.

        The checkout flow only hands out a payment URL, so nothing in the API
        settles a plan yet; the payment webhook is expected to call this.
        seed_test_data.py --premium calls it to set up premium demo accounts.
        """
        def apply(user):
            user["is_premium"] = is_premium
            if not is_premium:
                user["preferences"]["sms_notifications"] = False

        return self._update_user(user_id, apply)

    # ── Tokens ────────────────────────────────────────────────────────────────
    def save_token(self, token: str, record: dict):
        with self._lock:
            tokens = self._load(self.tokens_file)
            tokens[token] = record
            self._save(self.tokens_file, tokens)

    def get_token(self, token: str) -> Optional[dict]:
        with self._lock:
            return self._load(self.tokens_file).get(token)

    def delete_tokens(self, *tokens: str):
        with self._lock:
            data = self._load(self.tokens_file)
            for token in tokens:
                data.pop(token, None)
            self._save(self.tokens_file, data)

    def purge_expired_tokens(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        with self._lock:
            data = self._load(self.tokens_file)
            expired = [t for t, r in data.items() if datetime.fromisoformat(r["expires_at"]) <= now]
            for token in expired:
                del data[token]
            if expired:
                self._save(self.tokens_file, data)
        return len(expired)

    # ── Subscriptions ─────────────────────────────────────────────────────────
    @staticmethod
    def _to_model(record: dict) -> Subscription:
        return Subscription.model_validate({k: v for k, v in record.items() if k != "user_id"})

    def list_subscriptions(self, user_id: str) -> list[Subscription]:
        with self._lock:
            records = self._load(self.subscriptions_file).values()
            return [self._to_model(r) for r in records if r["user_id"] == user_id]

    def get_subscription(self, user_id: str, sub_id: str) -> Optional[Subscription]:
        with self._lock:
            record = self._load(self.subscriptions_file).get(sub_id)
        if record is None or record["user_id"] != user_id:
            return None
        return self._to_model(record)

    def add_subscription(self, user_id: str, data: SubscriptionCreate) -> Subscription:
        sub = Subscription(
            **data.model_dump(),
            id=uuid.uuid4().hex,
            status=SubscriptionStatus.ACTIVE,
            created_at=_utcnow(),
        )
        record = sub.model_dump(mode="json", exclude={"days_until_payment", "payment_label"})
        record["user_id"] = user_id
        with self._lock:
            subs = self._load(self.subscriptions_file)
            subs[sub.id] = record
            self._save(self.subscriptions_file, subs)
        log.info(f"Subscription added: {sub.name} ({sub.id})")
        return sub

    def update_subscription(self, user_id: str, sub_id: str,
                            changes: SubscriptionUpdate) -> Optional[Subscription]:
        patch = changes.model_dump(mode="json", exclude_unset=True)
        for key in REQUIRED_FIELDS:
            if key in patch and patch[key] is None:
                del patch[key]
        if "status" in patch:
            patch["status"] = base_status(patch["status"]).value
        with self._lock:
            subs = self._load(self.subscriptions_file)
            record = subs.get(sub_id)
            if record is None or record["user_id"] != user_id:
                return None
            merged = {**record, **patch}
            # validate before persisting so a bad merge never reaches disk
            sub = self._to_model(merged)
            subs[sub_id] = merged
            self._save(self.subscriptions_file, subs)
        return sub

    def delete_subscription(self, user_id: str, sub_id: str) -> bool:
        with self._lock:
            subs = self._load(self.subscriptions_file)
            record = subs.get(sub_id)
            if record is None or record["user_id"] != user_id:
                return False
            del subs[sub_id]
            self._save(self.subscriptions_file, subs)
        log.info(f"Subscription deleted: {sub_id}")
        return True
