"""
Administrative feature catalog.

Features are a closed enumeration. Names arriving from outside the enum
(persisted grants written by an older version, request input) are parsed
with `parse_feature`, which yields None instead of raising so that an unknown
feature is indistinguishable from an ungranted one.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class Feature(str, Enum):
    """Administrative features an admin can be granted."""
    USER_MANAGEMENT = "user_management"
    VEHICLE_MANAGEMENT = "vehicle_management"
    SETTINGS_MANAGEMENT = "settings_management"
    PAYMENT_MANAGEMENT = "payment_management"


@dataclass(frozen=True)
class FeatureInfo:
    """Display metadata for a catalog entry."""

    feature: Feature
    label: str
    description: str
    access_only: bool = False


FEATURE_CATALOG: dict[Feature, FeatureInfo] = {
    Feature.USER_MANAGEMENT: FeatureInfo(
        Feature.USER_MANAGEMENT,
        "User Management",
        "Manage users and their accounts",
    ),
    Feature.VEHICLE_MANAGEMENT: FeatureInfo(
        Feature.VEHICLE_MANAGEMENT,
        "Vehicle Management",
        "Manage vehicle listings and approvals",
    ),
    Feature.SETTINGS_MANAGEMENT: FeatureInfo(
        Feature.SETTINGS_MANAGEMENT,
        "Settings Management",
        "Manage website settings",
        access_only=True,
    ),
    Feature.PAYMENT_MANAGEMENT: FeatureInfo(
        Feature.PAYMENT_MANAGEMENT,
        "Payment Management",
        "Manage payments and subscriptions",
        access_only=True,
    ),
}


def parse_feature(value: Union[Feature, str, None]) -> Optional[Feature]:
    """
    Parse a feature name leniently.

    Args:
        value: Feature member or raw name

    Returns:
        Feature, or None if the name is not in the catalog
    """
    if isinstance(value, Feature):
        return value
    if value is None:
        return None
    normalized = str(value).strip().lower()
    try:
        return Feature(normalized)
    except ValueError:
        return None


def is_access_only(feature: Feature) -> bool:
    return FEATURE_CATALOG[feature].access_only
