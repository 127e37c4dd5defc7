"""
Subscription entitlements for premium vehicle listings.

This module provides:
- SubscriptionPlan / Subscription domain records
- Pure lifecycle operations (purchase, mark_premium, tick, cancel, ...)
- EntitlementLifecycle: clock-bound lifecycle with audit logging
- PlanCatalogLoader: plan catalog from config/plans.json
- SubscriptionService: id-addressed operations over SQLAlchemy storage
- summarize / subscription_stats: dashboard and admin reporting

Expiry is lazy: no scheduler marks subscriptions expired, every read path
re-checks end_date instead.
"""

from .lifecycle import (
    EntitlementLifecycle,
    can_cancel,
    cancel,
    confirm_payment,
    expire_pending,
    fail_payment,
    has_active_entitlement,
    mark_premium,
    purchase,
    tick,
)
from .loader import PlanCatalogLoader
from .models import (
    TERMINAL_STATUSES,
    CancelReason,
    PlanType,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .results import LifecycleResult, MarkPremiumResult
from .store import SubscriptionService
from .summary import SubscriptionStats, SubscriptionSummary, subscription_stats, summarize

__all__ = [
    # Models
    "CancelReason",
    "PlanType",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    # Results
    "LifecycleResult",
    "MarkPremiumResult",
    # Lifecycle
    "EntitlementLifecycle",
    "can_cancel",
    "cancel",
    "confirm_payment",
    "expire_pending",
    "fail_payment",
    "has_active_entitlement",
    "mark_premium",
    "purchase",
    "tick",
    # Catalog
    "PlanCatalogLoader",
    # Storage
    "SubscriptionService",
    # Reporting
    "SubscriptionStats",
    "SubscriptionSummary",
    "subscription_stats",
    "summarize",
]
