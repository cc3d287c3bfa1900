"""
client.py — SubTrack REST client

Thin httpx wrapper over the API. Every failure surfaces as one of three
errors: the server could not be reached, the request failed validation, or
the action itself was refused. Nothing is retried.
"""

import logging
from typing import Optional, Union

import httpx
from pydantic import ValidationError

import config
from models import (
    AiCancelResult,
    FoundSubscription,
    Preferences,
    PreferencesUpdate,
    Subscription,
    SubscriptionCreate,
    SubscriptionStats,
    SubscriptionUpdate,
    TokenPair,
    UserProfile,
)

log = logging.getLogger(__name__)

UNREACHABLE_MESSAGE = "Unable to connect to server. Please check if the server is running."


class SubTrackError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ServerUnreachable(SubTrackError):
    pass


class ValidationFailed(SubTrackError):
    def __init__(self, message: str, field_errors: Optional[list] = None):
        super().__init__(message)
        self.field_errors = field_errors or []


class ActionFailed(SubTrackError):
    def __init__(self, message: str, status_code: int, code: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class SubTrackClient:
    def __init__(self, base_url: Optional[str] = None, http: Optional[httpx.Client] = None,
                 timeout: float = 10.0):
        self.http = http or httpx.Client(base_url=base_url or config.API_URL, timeout=timeout)
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    # ── Transport ─────────────────────────────────────────────────────────────
    def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        try:
            resp = self.http.request(method, path, json=json, headers=headers)
        except httpx.TransportError as exc:
            log.warning(f"{method} {path} failed: {exc}")
            raise ServerUnreachable(UNREACHABLE_MESSAGE) from exc

        if resp.is_success:
            return resp.json()

        try:
            error = resp.json().get("error", {})
        except ValueError:
            error = {}
        message = error.get("message") or resp.reason_phrase or "Request failed"
        if resp.status_code == 422:
            raise ValidationFailed(message, error.get("details"))
        raise ActionFailed(message, resp.status_code, error.get("code", ""))

    @staticmethod
    def _validate(model_cls, data):
        """Check a form dict locally, reporting errors in the same shape as a 422."""
        if not isinstance(data, dict):
            return data
        try:
            return model_cls.model_validate(data)
        except ValidationError as exc:
            details = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            raise ValidationFailed("Request validation failed.", details) from exc

    @staticmethod
    def _body(model) -> dict:
        return model.model_dump(mode="json", by_alias=True, exclude_unset=True)

    # ── Auth ──────────────────────────────────────────────────────────────────
    def register(self, email: str, password: str) -> str:
        return self._request("POST", "/api/auth/register", {"email": email, "password": password})["email"]

    def login(self, email: str, password: str) -> TokenPair:
        pair = TokenPair.model_validate(
            self._request("POST", "/api/auth/login", {"email": email, "password": password})
        )
        self.access_token, self.refresh_token = pair.access_token, pair.refresh_token
        return pair

    def refresh(self) -> TokenPair:
        pair = TokenPair.model_validate(
            self._request("POST", "/api/auth/refresh", {"refreshToken": self.refresh_token or ""})
        )
        self.access_token, self.refresh_token = pair.access_token, pair.refresh_token
        return pair

    def logout(self) -> str:
        try:
            return self._request("POST", "/api/auth/logout")["message"]
        finally:
            self.access_token = self.refresh_token = None

    # ── Subscriptions ─────────────────────────────────────────────────────────
    def get_subscriptions(self) -> list[Subscription]:
        data = self._request("GET", "/api/subscriptions")
        return [Subscription.model_validate(s) for s in data["subscriptions"]]

    def get_stats(self) -> SubscriptionStats:
        return SubscriptionStats.model_validate(self._request("GET", "/api/subscriptions/stats")["stats"])

    def add_subscription(self, data: Union[SubscriptionCreate, dict]) -> Subscription:
        data = self._validate(SubscriptionCreate, data)
        result = self._request("POST", "/api/subscriptions", self._body(data))
        return Subscription.model_validate(result["subscription"])

    def update_subscription(self, sub_id: str, changes: Union[SubscriptionUpdate, dict]) -> Subscription:
        changes = self._validate(SubscriptionUpdate, changes)
        result = self._request("PUT", f"/api/subscriptions/{sub_id}", self._body(changes))
        return Subscription.model_validate(result["subscription"])

    def delete_subscription(self, sub_id: str) -> str:
        return self._request("DELETE", f"/api/subscriptions/{sub_id}")["message"]

    def scan(self) -> list[FoundSubscription]:
        data = self._request("POST", "/api/subscriptions/scan")
        return [FoundSubscription.model_validate(f) for f in data["foundSubscriptions"]]

    def ai_cancel(self, sub_id: str) -> AiCancelResult:
        return AiCancelResult.model_validate(self._request("POST", f"/api/subscriptions/{sub_id}/cancel-ai"))

    # ── User ──────────────────────────────────────────────────────────────────
    def get_profile(self) -> UserProfile:
        return UserProfile.model_validate(self._request("GET", "/api/user/profile")["user"])

    def update_preferences(self, changes: Union[PreferencesUpdate, dict]) -> Preferences:
        changes = self._validate(PreferencesUpdate, changes)
        data = self._request("PUT", "/api/user/preferences", self._body(changes))
        return Preferences.model_validate(data["preferences"])

    def upgrade(self, plan_type: str) -> str:
        return self._request("POST", "/api/user/upgrade", {"planType": plan_type})["checkoutUrl"]

