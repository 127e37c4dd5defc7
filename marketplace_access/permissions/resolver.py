"""
Administrative permission resolution.

Resolution order:
1. superadmin -> allow everything, no grant lookup
2. any non-admin role -> deny
3. blocked admin -> deny
4. grant for (admin, feature) -> access bit, or access AND the action bit

Unknown features and missing grants both deny. Grant fetch failures deny
(fail-closed).
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Optional, Union

from ..audit import AuditAction, log_audit_event
from ..errors import PermissionDeniedError
from .catalog import FEATURE_CATALOG, Feature, parse_feature
from .models import Action, Actor, FeatureGrant, Role, parse_action

logger = logging.getLogger(__name__)

GrantFetcher = Callable[[str], Iterable[FeatureGrant]]


def find_grant(
    grants: Iterable[FeatureGrant],
    admin_id: str,
    feature: Feature,
) -> Optional[FeatureGrant]:
    for grant in grants:
        if grant.admin_id == admin_id and grant.feature is feature:
            return grant
    return None


def authorize(
    actor: Actor,
    feature: Union[Feature, str],
    action: Union[Action, str],
    grants: Iterable[FeatureGrant] = (),
) -> bool:
    """
    Decide whether an actor may perform an administrative action.

    Args:
        actor: Current user
        feature: Catalog feature or raw feature name
        action: access, create, edit or delete
        grants: Pre-fetched grants for the actor

    Returns:
        True if allowed
    """
    requested_action = parse_action(action)

    if actor.role is Role.SUPERADMIN:
        return True
    if actor.role is not Role.ADMIN:
        return False
    if actor.is_blocked:
        return False

    resolved_feature = parse_feature(feature)
    if resolved_feature is None:
        return False

    grant = find_grant(grants, actor.id, resolved_feature)
    if grant is None:
        return False

    if requested_action is Action.ACCESS:
        return grant.can_access
    return grant.can_access and grant.bit(requested_action)


def effective_permissions(
    actor: Actor,
    grants: Iterable[FeatureGrant] = (),
) -> Dict[Feature, Dict[Action, bool]]:
    """
    Resolve the full capability matrix for an actor.

    Access-only features surface just the access bit.
    """
    grant_list = list(grants)
    matrix: Dict[Feature, Dict[Action, bool]] = {}
    for feature, info in FEATURE_CATALOG.items():
        actions = (Action.ACCESS,) if info.access_only else tuple(Action)
        matrix[feature] = {
            action: authorize(actor, feature, action, grant_list)
            for action in actions
        }
    return matrix


class PermissionResolver:
    """Authorizes actors against grants fetched on demand from the store."""

    def __init__(
        self,
        *,
        grant_fetcher: Optional[GrantFetcher] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        self._grant_fetcher = grant_fetcher or (lambda admin_id: [])
        self.correlation_id = correlation_id

    def grants_for(self, actor: Actor) -> list[FeatureGrant]:
        """Fetch grants for an admin; any failure yields no grants."""
        if actor.role is not Role.ADMIN:
            return []
        try:
            return list(self._grant_fetcher(actor.id))
        except Exception as exc:  # fail-closed: a failed fetch means no permissions
            logger.error(
                "Failed to fetch admin grants, denying",
                extra={
                    "actor_id": actor.id,
                    "error": str(exc),
                    "correlation_id": self.correlation_id,
                },
            )
            return []

    def authorize(
        self,
        actor: Actor,
        feature: Union[Feature, str],
        action: Union[Action, str],
    ) -> bool:
        return authorize(actor, feature, action, self.grants_for(actor))

    def require(
        self,
        actor: Actor,
        feature: Union[Feature, str],
        action: Union[Action, str],
    ) -> None:
        """Raise PermissionDeniedError unless authorized."""
        if self.authorize(actor, feature, action):
            return
        log_audit_event(
            AuditAction.PERMISSION_DENIED,
            resource_type="feature",
            resource_id=str(getattr(feature, "value", feature)),
            actor_id=actor.id,
            metadata={"action": parse_action(action).value, "role": actor.role.value},
            correlation_id=self.correlation_id,
        )
        raise PermissionDeniedError()

    def effective_permissions(self, actor: Actor) -> Dict[Feature, Dict[Action, bool]]:
        return effective_permissions(actor, self.grants_for(actor))
