"""
Access decisions for a vehicle marketplace.

Two independent concerns:
- permissions: which administrative actions an admin may perform
- subscriptions: whether a user may publish premium listings

Both are pure decision logic over explicit records; the SQLAlchemy tables in
`tables` are an optional persistence adapter.
"""

from .errors import AppError, ErrorKind
from .permissions import Action, Actor, Feature, FeatureGrant, PermissionResolver, Role, authorize
from .subscriptions import EntitlementLifecycle, Subscription, SubscriptionPlan, SubscriptionStatus

__all__ = [
    "Action",
    "Actor",
    "AppError",
    "EntitlementLifecycle",
    "ErrorKind",
    "Feature",
    "FeatureGrant",
    "PermissionResolver",
    "Role",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "authorize",
]
