"""
Audit logging for permission and subscription decisions.

Emits structured log events for denials and lifecycle transitions. The caller
persists state; this module only records what was decided.
"""

import logging
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """
    Enumeration of all auditable actions.

    Add new actions here as features are developed.
    """
    PERMISSION_DENIED = "permission.denied"
    GRANT_UPDATED = "grant.updated"

    SUBSCRIPTION_PURCHASED = "subscription.purchased"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_EXPIRED = "subscription.expired"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_AUTO_CANCELLED = "subscription.auto_cancelled"
    SUBSCRIPTION_SLOT_CONSUMED = "subscription.slot_consumed"
    SUBSCRIPTION_PREMIUM_DENIED = "subscription.premium_denied"


_WARNING_ACTIONS = {
    AuditAction.PERMISSION_DENIED,
    AuditAction.SUBSCRIPTION_PREMIUM_DENIED,
}


def log_audit_event(
    action: AuditAction,
    *,
    resource_type: str,
    resource_id: Optional[str],
    actor_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    correlation_id: Optional[str] = None,
) -> None:
    """
    Log an audit event.

    Never raises: a failure to emit is itself logged at error level.

    Args:
        action: What happened
        resource_type: subscription, feature_grant, feature
        resource_id: Identifier of the affected record
        actor_id: Who triggered it, if known
        metadata: Extra structured context
        correlation_id: Optional correlation ID for tracing
    """
    try:
        level = logging.WARNING if action in _WARNING_ACTIONS else logging.INFO
        logger.log(
            level,
            "Audit event: %s",
            action.value,
            extra={
                "action": action.value,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "actor_id": actor_id,
                "metadata": dict(metadata or {}),
                "correlation_id": correlation_id,
            },
        )
    except Exception as e:
        logger.error(
            "Failed to log audit event",
            extra={
                "error": str(e),
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
