"""
Subscription request/response models
"""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, field_validator


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"
    LIFETIME = "lifetime"


# Provider membership states that grant access (grace period and trial count as active)
QUALIFYING_MEMBERSHIP_STATUSES = ("active", "past_due", "trialing")

_INTERVAL_ALIASES = {
    "month": BillingInterval.MONTH,
    "monthly": BillingInterval.MONTH,
    "months": BillingInterval.MONTH,
    "year": BillingInterval.YEAR,
    "yearly": BillingInterval.YEAR,
    "years": BillingInterval.YEAR,
    "annual": BillingInterval.YEAR,
    "annually": BillingInterval.YEAR,
    "lifetime": BillingInterval.LIFETIME,
    "one_time": BillingInterval.LIFETIME,
}


def normalize_interval(raw: Any) -> BillingInterval:
    """Map a provider billing period onto month/year/lifetime, defaulting to month."""
    if isinstance(raw, BillingInterval):
        return raw
    if raw is None:
        return BillingInterval.MONTH
    # Whop reports billing_period as a day count on some plans
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        if raw >= 365:
            return BillingInterval.YEAR
        return BillingInterval.MONTH
    return _INTERVAL_ALIASES.get(str(raw).strip().lower(), BillingInterval.MONTH)


class SubscriptionRecord(BaseModel):
    """Snapshot of a stored subscription row."""
    id: str
    user_id: str
    email: str
    status: SubscriptionStatus
    plan: str
    interval: BillingInterval
    end_date: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class MembershipInfo(BaseModel):
    """Active membership as resolved from the billing provider."""
    status: str = "active"
    plan: str = "pro"
    interval: BillingInterval = BillingInterval.MONTH
    end_date: datetime


class SubscriptionPlan(BaseModel):
    id: str
    name: str
    interval: BillingInterval


class SubscriptionWithPrice(BaseModel):
    """View returned to callers asking for the current subscription."""
    id: str
    status: str
    current_period_end: int
    plan: SubscriptionPlan


class WhopWebhookData(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    email: str
    status: Optional[str] = None
    plan_id: Optional[str] = None
    billing_period: Optional[Any] = None
    current_period_end: Optional[int] = None
    quantity: Optional[int] = None

    model_config = {"extra": "allow"}

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("email must not be empty")
        return value


class WhopWebhookEvent(BaseModel):
    action: str
    data: WhopWebhookData

    model_config = {"extra": "allow"}
