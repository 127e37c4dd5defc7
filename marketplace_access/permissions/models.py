from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

from .catalog import Feature, parse_feature


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class Action(str, Enum):
    ACCESS = "access"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


def parse_action(value: Union[Action, str]) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return Action(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"unknown action: {value!r}") from None


@dataclass(frozen=True)
class Actor:
    """The current user as seen by the authorization path."""

    id: str
    role: Role
    is_blocked: bool = False

    def __post_init__(self) -> None:
        actor_id = str(self.id).strip()
        if not actor_id:
            raise ValueError("actor id is required")
        try:
            role = Role(self.role)
        except ValueError:
            raise ValueError(f"unknown role: {self.role!r}") from None
        object.__setattr__(self, "id", actor_id)
        object.__setattr__(self, "role", role)

    @property
    def is_superadmin(self) -> bool:
        return self.role is Role.SUPERADMIN

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class FeatureGrant:
    """Stored permission bits for one (admin, feature) pair."""

    admin_id: str
    feature: Feature
    can_access: bool = False
    can_create: bool = False
    can_edit: bool = False
    can_delete: bool = False

    def __post_init__(self) -> None:
        admin_id = str(self.admin_id).strip()
        if not admin_id:
            raise ValueError("admin_id is required")
        feature = parse_feature(self.feature)
        if feature is None:
            raise ValueError(f"unknown feature: {self.feature!r}")
        object.__setattr__(self, "admin_id", admin_id)
        object.__setattr__(self, "feature", feature)

    def bit(self, action: Action) -> bool:
        """Raw stored bit for an action, ignoring the access gate."""
        return {
            Action.ACCESS: self.can_access,
            Action.CREATE: self.can_create,
            Action.EDIT: self.can_edit,
            Action.DELETE: self.can_delete,
        }[action]

    def with_bit(self, action: Action, value: bool) -> FeatureGrant:
        field_name = f"can_{action.value}"
        return replace(self, **{field_name: bool(value)})
