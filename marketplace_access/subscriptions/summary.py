"""
Read-side reporting for subscriptions.

Summaries always evaluate expiry against `now`, so a record whose stored
status lags the clock is reported the way the lifecycle would treat it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .lifecycle import tick
from .models import CancelReason, PlanType, Subscription, SubscriptionStatus, require_aware, utcnow

SECONDS_PER_DAY = 86400

UNPAID_CANCEL_REASONS = frozenset({CancelReason.PAYMENT_FAILED, CancelReason.PAYMENT_TIMEOUT})


@dataclass(frozen=True)
class SubscriptionSummary:
    """What the dashboard shows for one subscription."""
    subscription_id: str
    status: SubscriptionStatus
    display_status: str
    days_remaining: int
    duration_days: int
    duration_months: int
    slots_used: int
    slots_remaining: int
    auto_cancelled: bool


@dataclass(frozen=True)
class SubscriptionStats:
    """Aggregates for the admin subscriptions console."""
    total_subscriptions: int = 0
    active_subscriptions: int = 0
    pending_subscriptions: int = 0
    cancelled_subscriptions: int = 0
    expired_subscriptions: int = 0
    total_revenue: Decimal = Decimal("0")
    monthly_revenue: Decimal = Decimal("0")
    yearly_revenue: Decimal = Decimal("0")
    average_subscription_value: Decimal = Decimal("0")


def _whole_days(seconds: float) -> int:
    return int(seconds // SECONDS_PER_DAY)


def _months_between(start: datetime, end: datetime) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


def summarize(subscription: Subscription, now: Optional[datetime] = None) -> SubscriptionSummary:
    now = require_aware(now or utcnow(), "now")
    current = tick(subscription, now)

    if current.status is SubscriptionStatus.ACTIVE:
        days_remaining = max(_whole_days((current.end_date - now).total_seconds()), 0)
    else:
        days_remaining = 0

    return SubscriptionSummary(
        subscription_id=current.id,
        status=current.status,
        display_status=current.status.value.capitalize(),
        days_remaining=days_remaining,
        duration_days=_whole_days((current.end_date - current.start_date).total_seconds()),
        duration_months=_months_between(current.start_date, current.end_date),
        slots_used=current.consumed_slots,
        slots_remaining=current.slots_remaining,
        auto_cancelled=current.auto_cancelled,
    )


def subscription_stats(
    subscriptions: Iterable[Subscription],
    now: Optional[datetime] = None,
) -> SubscriptionStats:
    """
    Aggregate counts per effective status and revenue.

    Revenue counts every subscription that was paid for: pending purchases
    and failed payments are excluded.
    """
    now = require_aware(now or utcnow(), "now")
    counts = {status: 0 for status in SubscriptionStatus}
    total = monthly = yearly = Decimal("0")
    paid = 0

    for subscription in subscriptions:
        current = tick(subscription, now)
        counts[current.status] += 1
        if current.status is SubscriptionStatus.PENDING or current.cancel_reason in UNPAID_CANCEL_REASONS:
            continue
        paid += 1
        total += current.price
        if current.plan_type is PlanType.MONTHLY:
            monthly += current.price
        elif current.plan_type is PlanType.YEARLY:
            yearly += current.price

    average = (total / paid).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if paid else Decimal("0")
    return SubscriptionStats(
        total_subscriptions=sum(counts.values()),
        active_subscriptions=counts[SubscriptionStatus.ACTIVE],
        pending_subscriptions=counts[SubscriptionStatus.PENDING],
        cancelled_subscriptions=counts[SubscriptionStatus.CANCELLED],
        expired_subscriptions=counts[SubscriptionStatus.EXPIRED],
        total_revenue=total,
        monthly_revenue=monthly,
        yearly_revenue=yearly,
        average_subscription_value=average,
    )
