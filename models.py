"""
models.py — SubTrack data shapes

Wire format is camelCase (what the dashboard expects); Python attributes are
snake_case. Everything is a pydantic model so FastAPI validates requests and
serialises responses with the same definitions.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BillingFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


# Only these are ever persisted; due_soon/overdue are derived from the date.
BASE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELLED)


def _not_blank(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


# ── Subscriptions ─────────────────────────────────────────────────────────────
class SubscriptionFields(CamelModel):
    name: str
    cost: float = Field(gt=0)
    billing_frequency: BillingFrequency
    next_payment_date: date
    category: str
    logo: Optional[str] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    last_payment_date: Optional[date] = None
    cancellation_url: Optional[str] = None
    support_email: Optional[str] = None

    @field_validator("name", "category")
    @classmethod
    def check_text(cls, value):
        return _not_blank(value)


class SubscriptionCreate(SubscriptionFields):
    pass


class SubscriptionUpdate(CamelModel):
    """Partial update. Unknown keys (id, createdAt, ...) are dropped."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    cost: Optional[float] = Field(default=None, gt=0)
    billing_frequency: Optional[BillingFrequency] = None
    next_payment_date: Optional[date] = None
    category: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    logo: Optional[str] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    last_payment_date: Optional[date] = None
    cancellation_url: Optional[str] = None
    support_email: Optional[str] = None

    @field_validator("name", "category")
    @classmethod
    def check_text(cls, value):
        return _not_blank(value)


class Subscription(SubscriptionFields):
    id: str
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime
    days_until_payment: Optional[int] = None
    payment_label: Optional[str] = None


class CategorySpend(CamelModel):
    category: str
    amount: float
    count: int


class SubscriptionStats(CamelModel):
    total_monthly_spending: float = 0.0
    total_yearly_spending: float = 0.0
    active_subscriptions: int = 0
    upcoming_payments: int = 0
    category_breakdown: list[CategorySpend] = Field(default_factory=list)


class FoundSubscription(CamelModel):
    name: str
    cost: float = Field(gt=0)
    confidence: float = Field(ge=0, le=1)


# ── Users ─────────────────────────────────────────────────────────────────────
class Preferences(CamelModel):
    email_notifications: bool = True
    sms_notifications: bool = False
    reminder_days: int = Field(default=3, ge=1, le=7)


class PreferencesUpdate(CamelModel):
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None
    reminder_days: Optional[int] = Field(default=None, ge=1, le=7)


class UserProfile(CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    is_premium: bool = False
    daily_scans_used: int = 0
    max_daily_scans: int = 1
    preferences: Preferences = Field(default_factory=Preferences)


# ── Request bodies ────────────────────────────────────────────────────────────
class Credentials(CamelModel):
    email: EmailStr
    password: str


class RefreshRequest(CamelModel):
    refresh_token: str


class UpgradeRequest(CamelModel):
    plan_type: str


# ── Response envelopes ────────────────────────────────────────────────────────
class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class RegisterResult(CamelModel):
    email: str


class MessageResult(CamelModel):
    success: bool = True
    message: str


class SubscriptionList(CamelModel):
    subscriptions: list[Subscription]


class StatsResult(CamelModel):
    stats: SubscriptionStats


class SubscriptionResult(CamelModel):
    success: bool = True
    subscription: Subscription


class ScanResult(CamelModel):
    success: bool = True
    found_subscriptions: list[FoundSubscription]


class AiCancelResult(CamelModel):
    success: bool = True
    message: str
    cancellation_steps: list[str] = Field(default_factory=list)
    estimated_time: Optional[str] = None
    cancellation_url: Optional[str] = None


class ProfileResult(CamelModel):
    user: UserProfile


class PreferencesResult(CamelModel):
    success: bool = True
    preferences: Preferences


class UpgradeResult(CamelModel):
    success: bool = True
    checkout_url: str
