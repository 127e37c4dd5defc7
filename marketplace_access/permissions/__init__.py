"""
Role/permission resolution for the administrative console.

This module provides:
- Feature catalog (closed enumeration with display metadata)
- Actor / FeatureGrant domain records
- authorize(): pure allow/deny decision
- PermissionResolver: fail-closed resolver over a grant fetcher
- update_grant(): permission-matrix edits
- GrantRepository: SQLAlchemy storage for grants
"""

from .catalog import FEATURE_CATALOG, Feature, FeatureInfo, is_access_only, parse_feature
from .grants import update_grant
from .models import Action, Actor, FeatureGrant, Role, parse_action
from .repository import GrantRepository
from .resolver import PermissionResolver, authorize, effective_permissions, find_grant

__all__ = [
    # Catalog
    "FEATURE_CATALOG",
    "Feature",
    "FeatureInfo",
    "is_access_only",
    "parse_feature",
    # Models
    "Action",
    "Actor",
    "FeatureGrant",
    "Role",
    "parse_action",
    # Resolution
    "PermissionResolver",
    "authorize",
    "effective_permissions",
    "find_grant",
    # Updates
    "update_grant",
    # Storage
    "GrantRepository",
]
