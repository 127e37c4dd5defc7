"""
Grant updates for the admin permission matrix.

A grant is created lazily the first time any bit is toggled for an
(admin, feature) pair. Revoking access clears every sub-bit, and no sub-bit
can be enabled while access is off.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

from ..audit import AuditAction, log_audit_event
from ..errors import PermissionDeniedError, ValidationError
from .catalog import Feature, is_access_only, parse_feature
from .models import Action, Actor, FeatureGrant, parse_action
from .resolver import find_grant


def update_grant(
    editor: Actor,
    *,
    admin_id: str,
    feature: Union[Feature, str],
    action: Union[Action, str],
    value: bool,
    existing: Iterable[FeatureGrant] = (),
    correlation_id: Optional[str] = None,
) -> FeatureGrant:
    """
    Apply one permission toggle and return the grant to persist.

    Args:
        editor: Actor performing the change (must be superadmin)
        admin_id: Admin whose grant changes
        feature: Catalog feature
        action: Bit to toggle
        value: New bit value
        existing: Current grants for the admin

    Returns:
        The updated (or newly created) FeatureGrant

    Raises:
        PermissionDeniedError: editor is not a superadmin
        ValidationError: unknown feature, or a sub-bit the grant cannot hold
    """
    if not editor.is_superadmin:
        raise PermissionDeniedError()

    resolved_feature = parse_feature(feature)
    if resolved_feature is None:
        raise ValidationError("Unknown feature", details={"feature": str(feature)})
    requested_action = parse_action(action)

    current = find_grant(existing, str(admin_id).strip(), resolved_feature)
    if current is None:
        current = FeatureGrant(admin_id=admin_id, feature=resolved_feature)

    if requested_action is Action.ACCESS:
        updated = current.with_bit(Action.ACCESS, value)
        if not value:
            updated = FeatureGrant(admin_id=updated.admin_id, feature=resolved_feature)
    else:
        if value and is_access_only(resolved_feature):
            raise ValidationError(
                f"{resolved_feature.value} only supports the access permission",
                details={"feature": resolved_feature.value, "action": requested_action.value},
            )
        if value and not current.can_access:
            raise ValidationError(
                "Access must be granted before other permissions",
                details={"feature": resolved_feature.value, "action": requested_action.value},
            )
        updated = current.with_bit(requested_action, value)

    log_audit_event(
        AuditAction.GRANT_UPDATED,
        resource_type="feature_grant",
        resource_id=f"{updated.admin_id}:{resolved_feature.value}",
        actor_id=editor.id,
        metadata={"action": requested_action.value, "value": bool(value)},
        correlation_id=correlation_id,
    )
    return updated
