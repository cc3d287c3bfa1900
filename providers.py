"""
providers.py — external collaborators for inbox scanning and cancellation

The API only talks to the two interfaces below. The mock implementations
return fixed results so the whole flow can run end to end; a real inbox
parser or cancellation agent plugs in by subclassing and passing an instance
to `api.create_app`.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from models import FoundSubscription, Subscription

log = logging.getLogger(__name__)


@dataclass
class CancellationPlan:
    steps: list[str]
    estimated_time: str
    cancellation_url: Optional[str] = None
    message: str = "AI cancellation process initiated"


# ── Interfaces ────────────────────────────────────────────────────────────────
class ScanProvider:
    """Finds candidate subscriptions in a user's mailbox."""

    def find_subscriptions(self, user: dict) -> list[FoundSubscription]:
        raise NotImplementedError


class CancellationAgent:
    """Plans (and eventually performs) the cancellation of one subscription."""

    def plan(self, subscription: Subscription) -> CancellationPlan:
        raise NotImplementedError


# ── Cancellation links ────────────────────────────────────────────────────────
CANCELLATION_LINKS = {
    "netflix": "https://www.netflix.com/cancel",
    "spotify": "https://www.spotify.com/account/subscription/",
    "hulu": "https://secure.hulu.com/account/cancel",
    "disney": "https://www.disneyplus.com/account",
    "youtube": "https://youtube.com/paid_memberships",
    "amazon": "https://www.amazon.com/mc/pipelines/cancellation",
    "apple": "https://appleid.apple.com/account/manage",
    "adobe": "https://account.adobe.com/plans",
    "github": "https://github.com/settings/billing",
    "dropbox": "https://www.dropbox.com/account/plan",
    "microsoft": "https://account.microsoft.com/services/",
    "google one": "https://one.google.com/about",
    "notion": "https://www.notion.so/profile/plans",
    "duolingo": "https://www.duolingo.com/settings",
    "linkedin": "https://www.linkedin.com/premium/manage/cancel",
    "nordvpn": "https://my.nordaccount.com/subscription/",
}


def get_cancellation_link(name: str) -> str:
    """Longest keyword contained in `name` wins; empty string when nothing matches."""
    lower = name.lower()
    best_kw, best_url = "", ""
    for kw, url in CANCELLATION_LINKS.items():
        if kw in lower and len(kw) > len(best_kw):
            best_kw, best_url = kw, url
    return best_url


# ── Mocks ─────────────────────────────────────────────────────────────────────
@dataclass
class MockScanProvider(ScanProvider):
    results: list[FoundSubscription] = field(default_factory=lambda: [
        FoundSubscription(name="Amazon Prime", cost=14.99, confidence=0.95),
        FoundSubscription(name="Dropbox", cost=9.99, confidence=0.87),
        FoundSubscription(name="Microsoft 365", cost=6.99, confidence=0.92),
    ])

    def find_subscriptions(self, user: dict) -> list[FoundSubscription]:
        log.info(f"Mock inbox scan for {user['email']}: {len(self.results)} candidates")
        return list(self.results)


CANCELLATION_STEPS = [
    "Analyzing subscription terms and conditions",
    "Identifying optimal cancellation timing",
    "Preparing cancellation request",
    "Submitting cancellation request",
    "Monitoring confirmation",
]


class MockCancellationAgent(CancellationAgent):
    def plan(self, subscription: Subscription) -> CancellationPlan:
        return CancellationPlan(
            steps=list(CANCELLATION_STEPS),
            estimated_time="2-5 minutes",
            cancellation_url=subscription.cancellation_url or get_cancellation_link(subscription.name) or None,
        )
