"""
dashboard.py — SubTrack dashboard state

The dashboard is always in exactly one of three states:

    Loading  →  Ready(subscriptions, stats, profile)
             →  Failed(message)

`load()` fetches the three slices concurrently and only moves to Ready when
all of them arrive; the first failure moves it to Failed with one generic
notification. Every successful mutation is followed by a full reload.
"""

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional, Union

import analyzer
from client import ActionFailed, SubTrackError
from models import (
    Preferences,
    Subscription,
    SubscriptionCreate,
    SubscriptionStats,
    SubscriptionStatus,
    UserProfile,
)
from simulators import AiCancelSession, CancelToken, ScanSession, SimulationCancelled

log = logging.getLogger(__name__)

LOAD_FAILED = "Failed to load dashboard data"

MODALS = ("add", "edit", "scan", "ai_cancel", "upgrade", "settings")


# ── States ────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Ready:
    subscriptions: list[Subscription]
    stats: SubscriptionStats
    profile: UserProfile


@dataclass(frozen=True)
class Failed:
    message: str


DashboardState = Union[Loading, Ready, Failed]


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    variant: str = "default"  # or "destructive"


@dataclass
class Modal:
    name: str
    subscription_id: Optional[str] = None
    token: CancelToken = field(default_factory=CancelToken)


class Dashboard:
    """Owns the dashboard state and routes every user action through the API."""

    def __init__(self, api, now: Optional[Callable[[], datetime]] = None,
                 wait: Optional[Callable[[float], bool]] = None):
        self.api = api
        self.now = now or datetime.now
        self.wait = wait
        self.state: DashboardState = Loading()
        self.modal: Optional[Modal] = None
        self.notifications: list[Notification] = []

    # ── Loading ───────────────────────────────────────────────────────────────
    def load(self) -> DashboardState:
        self.state = Loading()
        with ThreadPoolExecutor(max_workers=3) as pool:
            futures = {
                "subscriptions": pool.submit(self.api.get_subscriptions),
                "stats": pool.submit(self.api.get_stats),
                "profile": pool.submit(self.api.get_profile),
            }
            done, _ = wait_futures(futures.values(), return_when=FIRST_EXCEPTION)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    log.error(f"Dashboard load failed: {exc}")
                    self.state = Failed(LOAD_FAILED)
                    self.notify("Error", LOAD_FAILED, "destructive")
                    return self.state

        self.state = Ready(
            subscriptions=futures["subscriptions"].result(),
            stats=futures["stats"].result(),
            profile=futures["profile"].result(),
        )
        log.info(f"Dashboard loaded: {len(self.state.subscriptions)} subscription(s)")
        return self.state

    def notify(self, title: str, description: str = "", variant: str = "default"):
        self.notifications.append(Notification(title, description, variant))

    def _ready(self) -> Ready:
        if not isinstance(self.state, Ready):
            raise RuntimeError("Dashboard data is not loaded.")
        return self.state

    # ── Views ─────────────────────────────────────────────────────────────────
    @property
    def subscriptions(self) -> list[Subscription]:
        return self.state.subscriptions if isinstance(self.state, Ready) else []

    def visible(self, tab: str = "all") -> list[Subscription]:
        return analyzer.filter_by_tab(self.subscriptions, tab)

    def counts(self) -> dict[str, int]:
        return analyzer.tab_counts(self.subscriptions)

    def upcoming(self) -> list[Subscription]:
        return analyzer.upcoming_payments(self.subscriptions, self.now())

    def top_category(self) -> Optional[str]:
        breakdown = self._ready().stats.category_breakdown
        return breakdown[0].category if breakdown else None

    def scan_usage(self) -> tuple[int, int]:
        profile = self._ready().profile
        return profile.daily_scans_used, profile.max_daily_scans

    # ── Scan gate ─────────────────────────────────────────────────────────────
    def can_scan(self) -> bool:
        profile = self._ready().profile
        return profile.is_premium or profile.daily_scans_used < profile.max_daily_scans

    def request_scan(self) -> str:
        """Open the scan modal, or the upgrade modal when the free quota is spent."""
        if self.can_scan():
            self.open_modal("scan")
            return "scan"
        self.open_modal("upgrade")
        return "upgrade"

    # ── Modals ────────────────────────────────────────────────────────────────
    def open_modal(self, name: str, subscription_id: Optional[str] = None) -> Modal:
        if name not in MODALS:
            raise ValueError(f"Unknown modal: {name}")
        self.close_modal()
        self.modal = Modal(name, subscription_id)
        return self.modal

    def close_modal(self):
        """Closing a modal halts whatever simulation it was running."""
        if self.modal is not None:
            self.modal.token.cancel()
            self.modal = None

    def _token(self) -> CancelToken:
        return self.modal.token if self.modal else CancelToken()

    # ── Mutations ─────────────────────────────────────────────────────────────
    def _mutate(self, action, success: str, failure: str, *args):
        try:
            result = action(*args)
        except ActionFailed as exc:
            if exc.code == "scan_quota_exceeded":
                self.open_modal("upgrade")
            self.notify("Error", exc.message or failure, "destructive")
            return None
        except SubTrackError as exc:
            self.notify("Error", exc.message or failure, "destructive")
            return None
        if success:
            self.notify("Success", success)
        self.load()
        return result

    def add(self, data: Union[SubscriptionCreate, dict]) -> Optional[Subscription]:
        added = self._mutate(self.api.add_subscription, "Subscription added successfully",
                             "Failed to add subscription", data)
        if added is not None:
            self.close_modal()
        return added

    def update(self, sub_id: str, changes: dict) -> Optional[Subscription]:
        updated = self._mutate(self.api.update_subscription, "Subscription updated successfully",
                               "Failed to update subscription", sub_id, changes)
        if updated is not None:
            self.close_modal()
        return updated

    def pause(self, sub_id: str) -> Optional[Subscription]:
        return self._mutate(self.api.update_subscription, "Subscription paused",
                            "Failed to update subscription", sub_id, {"status": SubscriptionStatus.PAUSED})

    def resume(self, sub_id: str) -> Optional[Subscription]:
        return self._mutate(self.api.update_subscription, "Subscription resumed",
                            "Failed to update subscription", sub_id, {"status": SubscriptionStatus.ACTIVE})

    def toggle_pause(self, sub: Subscription) -> Optional[Subscription]:
        if sub.status is SubscriptionStatus.PAUSED:
            return self.resume(sub.id)
        return self.pause(sub.id)

    def delete(self, sub_id: str) -> Optional[str]:
        return self._mutate(self.api.delete_subscription, "Subscription deleted successfully",
                            "Failed to delete subscription", sub_id)

    def upgrade(self, plan_type: str) -> Optional[str]:
        url = self._mutate(self.api.upgrade, "", "Failed to start checkout", plan_type)
        if url is not None:
            self.close_modal()
        return url

    def update_preferences(self, changes: dict) -> Optional[Preferences]:
        return self._mutate(self.api.update_preferences, "Settings saved",
                            "Failed to save settings", changes)

    # ── Simulated flows ───────────────────────────────────────────────────────
    def run_scan(self, on_progress=None) -> Optional[ScanSession]:
        """Run the scan inside the open scan modal; None when it never finished."""
        if self.modal is None or self.modal.name != "scan":
            if self.request_scan() != "scan":
                return None
        session = ScanSession(self.api, token=self._token(), wait=self.wait, on_progress=on_progress)
        try:
            session.start()
        except SimulationCancelled:
            return None
        except ActionFailed as exc:
            if exc.code == "scan_quota_exceeded":
                self.open_modal("upgrade")
            self.notify("Error", exc.message, "destructive")
            return None
        except SubTrackError as exc:
            self.notify("Error", exc.message, "destructive")
            return None
        return session

    def add_scanned(self, session: ScanSession, today: Optional[date] = None) -> list[Subscription]:
        """Add every selected scan candidate, then reload once."""
        try:
            added = session.add_selected(today or self.now().date())
        except SubTrackError as exc:
            self.notify("Error", exc.message, "destructive")
            self.load()
            return []
        self.notify("Success", f"Added {len(added)} subscription(s) from scan")
        self.close_modal()
        self.load()
        return added

    def ai_cancel(self, sub_id: str, on_progress=None) -> Optional[AiCancelSession]:
        """
        Walk the AI cancellation for `sub_id` inside its own modal.

        The modal closes on its own after the last step. If the user closes
        it first, the walk stops, but the dashboard still reloads when the
        server already accepted the cancellation.
        """
        modal = self.open_modal("ai_cancel", sub_id)
        session = AiCancelSession(self.api, sub_id, token=modal.token, wait=self.wait,
                                  on_progress=on_progress)
        try:
            session.start()
        except SimulationCancelled:
            pass
        except SubTrackError as exc:
            self.notify("Error", exc.message, "destructive")
            return session
        if session.requested:
            if self.modal is modal:
                self.close_modal()
                self.notify("Success", "Subscription cancellation completed")
            self.load()
        return session
