"""
analyzer.py — Subscription Analyzer

Pure functions over a collection of subscriptions: due-date arithmetic,
derived status, spending aggregation, the upcoming-payments view, tab
filtering and reminder selection. Nothing here does I/O; callers pass
`now` explicitly when they need a fixed clock.
"""

import math
from collections import defaultdict
from datetime import date, datetime, time
from typing import Iterable, Optional, Union

import config
from models import (
    BillingFrequency,
    CategorySpend,
    Subscription,
    SubscriptionStats,
    SubscriptionStatus,
)

Clock = Union[date, datetime, None]

SECONDS_PER_DAY = 24 * 60 * 60

# Tabs shown on the dashboard. "all" is the identity filter.
TABS = ("all", "active", "due_soon", "overdue", "paused", "cancelled")

# Effective statuses that still bill the user.
BILLABLE = (SubscriptionStatus.ACTIVE, SubscriptionStatus.DUE_SOON, SubscriptionStatus.OVERDUE)


def _as_datetime(now: Clock) -> datetime:
    if now is None:
        return datetime.now()
    if isinstance(now, datetime):
        return now
    return datetime.combine(now, time.min)


# ── Due dates ─────────────────────────────────────────────────────────────────
def days_until_payment(payment_date: date, now: Clock = None) -> int:
    """
    Whole days until `payment_date`, rounded up.

    The payment is taken to fall at midnight on its date, so any payment
    dated today reads as 0 once the day has started, tomorrow as 1 and
    yesterday as -1.
    """
    current = _as_datetime(now)
    due = datetime.combine(payment_date, time.min, tzinfo=current.tzinfo)
    return math.ceil((due - current).total_seconds() / SECONDS_PER_DAY)


def payment_label(days: int) -> str:
    if days > 0:
        return f"in {days} days"
    if days == 0:
        return "due today"
    return f"{abs(days)} days overdue"


def base_status(status: Union[SubscriptionStatus, str]) -> SubscriptionStatus:
    """Collapse a status to what gets persisted; date-derived values become active."""
    status = SubscriptionStatus(status)
    if status in (SubscriptionStatus.DUE_SOON, SubscriptionStatus.OVERDUE):
        return SubscriptionStatus.ACTIVE
    return status


def effective_status(stored: Union[SubscriptionStatus, str], days: int,
                     due_soon_days: Optional[int] = None) -> SubscriptionStatus:
    """Derive the displayed status from the stored one and the days left."""
    stored = base_status(stored)
    if stored is not SubscriptionStatus.ACTIVE:
        return stored
    if due_soon_days is None:
        due_soon_days = config.DUE_SOON_DAYS
    if days < 0:
        return SubscriptionStatus.OVERDUE
    if days <= due_soon_days:
        return SubscriptionStatus.DUE_SOON
    return SubscriptionStatus.ACTIVE


def present(sub: Subscription, now: Clock = None, derive_status: bool = True) -> Subscription:
    """Return a copy of `sub` carrying its payment label and, unless told otherwise, its effective status."""
    days = days_until_payment(sub.next_payment_date, now)
    return sub.model_copy(update={
        "status": effective_status(sub.status, days) if derive_status else base_status(sub.status),
        "days_until_payment": days,
        "payment_label": payment_label(days),
    })


# ── Aggregation ───────────────────────────────────────────────────────────────
def monthly_equivalent(cost: float, frequency: Union[BillingFrequency, str]) -> float:
    frequency = BillingFrequency(frequency)
    if frequency is BillingFrequency.WEEKLY:
        return cost * config.WEEKS_PER_MONTH
    if frequency is BillingFrequency.YEARLY:
        return cost / 12
    return cost


def is_billable(sub: Subscription) -> bool:
    return sub.status in BILLABLE


def compute_stats(subscriptions: Iterable[Subscription], now: Clock = None) -> SubscriptionStats:
    """
    Aggregate a subscription collection into dashboard stats.

    Spending totals and the category breakdown cover billable subscriptions
    only, normalised to a monthly basis. `upcoming_payments` counts anything
    not cancelled that falls due within UPCOMING_WINDOW_DAYS.
    """
    monthly_total = 0.0
    active = 0
    upcoming = 0
    by_category: dict[str, list] = defaultdict(lambda: [0.0, 0])

    for sub in subscriptions:
        if sub.status is not SubscriptionStatus.CANCELLED:
            days = days_until_payment(sub.next_payment_date, now)
            if 0 <= days <= config.UPCOMING_WINDOW_DAYS:
                upcoming += 1
        if not is_billable(sub):
            continue
        active += 1
        monthly = monthly_equivalent(sub.cost, sub.billing_frequency)
        monthly_total += monthly
        bucket = by_category[sub.category]
        bucket[0] += monthly
        bucket[1] += 1

    breakdown = sorted(
        (CategorySpend(category=cat, amount=round(amount, 2), count=count)
         for cat, (amount, count) in by_category.items()),
        key=lambda c: (-c.amount, c.category),
    )
    return SubscriptionStats(
        total_monthly_spending=round(monthly_total, 2),
        total_yearly_spending=round(monthly_total * 12, 2),
        active_subscriptions=active,
        upcoming_payments=upcoming,
        category_breakdown=breakdown,
    )


# ── Upcoming payments ─────────────────────────────────────────────────────────
def upcoming_payments(subscriptions: Iterable[Subscription], now: Clock = None,
                      days: Optional[int] = None, limit: Optional[int] = None) -> list[Subscription]:
    """Non-cancelled subscriptions due within `days`, soonest first, at most `limit`."""
    days = config.UPCOMING_VIEW_DAYS if days is None else days
    limit = config.UPCOMING_VIEW_LIMIT if limit is None else limit
    due = [
        s for s in subscriptions
        if s.status is not SubscriptionStatus.CANCELLED
        and days_until_payment(s.next_payment_date, now) <= days
    ]
    due.sort(key=lambda s: (s.next_payment_date, s.name))
    return due[:limit]


# ── Tabs ──────────────────────────────────────────────────────────────────────
def filter_by_tab(subscriptions: Iterable[Subscription], tab: str = "all") -> list[Subscription]:
    if tab not in TABS:
        raise ValueError(f"Unknown tab: {tab}")
    if tab == "all":
        return list(subscriptions)
    return [s for s in subscriptions if s.status.value == tab]


def tab_counts(subscriptions: Iterable[Subscription]) -> dict[str, int]:
    subs = list(subscriptions)
    counts = {tab: 0 for tab in TABS}
    counts["all"] = len(subs)
    for s in subs:
        counts[s.status.value] += 1
    return counts


# ── Reminders ─────────────────────────────────────────────────────────────────
def due_reminders(subscriptions: Iterable[Subscription], reminder_days: int,
                  now: Clock = None) -> list[dict]:
    """
    Billable subscriptions falling due in 1..reminder_days days.

    Each entry carries a `key` unique per (subscription, payment date, days)
    so a daily job can deduplicate what it already sent.
    """
    reminders = []
    for sub in subscriptions:
        if not is_billable(sub):
            continue
        days = days_until_payment(sub.next_payment_date, now)
        if 1 <= days <= reminder_days:
            reminders.append({
                "key": f"{sub.id}_{sub.next_payment_date.isoformat()}_{days}",
                "subscription_id": sub.id,
                "name": sub.name,
                "cost": sub.cost,
                "payment_date": sub.next_payment_date.isoformat(),
                "days_until": days,
            })
    reminders.sort(key=lambda r: r["days_until"])
    return reminders

