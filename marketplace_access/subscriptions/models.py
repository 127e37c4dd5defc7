from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from ..config import default_duration_months


class PlanType(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    PENDING = "pending"       # Awaiting payment confirmation
    ACTIVE = "active"         # Paid, within period, slots left
    CANCELLED = "cancelled"   # Ended by user/admin, failed payment or spent quota
    EXPIRED = "expired"       # End date passed


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED})


class CancelReason(str, Enum):
    USER = "user"
    ADMIN = "admin"
    QUOTA_EXHAUSTED = "quota_exhausted"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_TIMEOUT = "payment_timeout"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value


def add_months(value: datetime, months: int) -> datetime:
    """Shift a timestamp by whole months, clamping to the last day of month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class SubscriptionPlan:
    """A purchasable bundle of premium listing slots."""

    id: str
    name: str
    plan_type: PlanType
    price: Decimal
    post_count: int
    features: Tuple[str, ...] = ()
    is_active: bool = True
    duration_months: Optional[int] = None

    def __post_init__(self) -> None:
        plan_id = str(self.id).strip()
        if not plan_id:
            raise ValueError("plan id is required")
        plan_type = PlanType(self.plan_type)
        price = Decimal(str(self.price))
        if price < 0:
            raise ValueError("price must be non-negative")
        if int(self.post_count) <= 0:
            raise ValueError("post_count must be positive")
        duration = self.duration_months
        if duration is None:
            duration = default_duration_months(plan_type.value)
        if plan_type is PlanType.CUSTOM:
            duration = None
        elif duration is None or int(duration) <= 0:
            raise ValueError("duration_months must be positive")
        object.__setattr__(self, "id", plan_id)
        object.__setattr__(self, "plan_type", plan_type)
        object.__setattr__(self, "price", price)
        object.__setattr__(self, "post_count", int(self.post_count))
        object.__setattr__(self, "features", tuple(self.features))
        object.__setattr__(self, "duration_months", int(duration) if duration is not None else None)

    def end_date_from(self, start: datetime, end_date: Optional[datetime] = None) -> datetime:
        """
        Compute the period end for a purchase starting at `start`.

        Custom plans require the caller-supplied end date; other plans ignore it.
        """
        if self.plan_type is PlanType.CUSTOM:
            if end_date is None:
                raise ValueError("custom plans require an explicit end_date")
            computed = require_aware(end_date, "end_date")
        else:
            computed = add_months(start, self.duration_months)
        if computed <= start:
            raise ValueError("end_date must be after start_date")
        return computed


@dataclass(frozen=True)
class Subscription:
    """One purchase of a plan by a user. Persisted by the caller."""

    id: str
    user_id: str
    plan_id: str
    plan_type: PlanType
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    price: Decimal
    post_quota: int
    consumed_slots: int = 0
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    cancel_reason: Optional[CancelReason] = None

    def __post_init__(self) -> None:
        for name in ("id", "user_id", "plan_id"):
            value = str(getattr(self, name)).strip()
            if not value:
                raise ValueError(f"{name} is required")
            object.__setattr__(self, name, value)
        require_aware(self.start_date, "start_date")
        require_aware(self.end_date, "end_date")
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        if int(self.post_quota) <= 0:
            raise ValueError("post_quota must be positive")
        if not 0 <= int(self.consumed_slots) <= int(self.post_quota):
            raise ValueError("consumed_slots must be between 0 and post_quota")
        object.__setattr__(self, "plan_type", PlanType(self.plan_type))
        object.__setattr__(self, "status", SubscriptionStatus(self.status))
        object.__setattr__(self, "price", Decimal(str(self.price)))
        object.__setattr__(self, "post_quota", int(self.post_quota))
        object.__setattr__(self, "consumed_slots", int(self.consumed_slots))
        if self.cancel_reason is not None:
            object.__setattr__(self, "cancel_reason", CancelReason(self.cancel_reason))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def slots_remaining(self) -> int:
        return self.post_quota - self.consumed_slots

    @property
    def auto_cancelled(self) -> bool:
        return self.cancel_reason is CancelReason.QUOTA_EXHAUSTED

    def is_past_end(self, now: datetime) -> bool:
        return now > self.end_date

    def is_effectively_active(self, now: datetime) -> bool:
        """Stored status is active and the period has not ended."""
        return self.status is SubscriptionStatus.ACTIVE and not self.is_past_end(now)
