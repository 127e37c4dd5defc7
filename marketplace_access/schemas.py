"""
Pydantic schemas for records arriving from the data store or request layer.

Field aliases accept the camelCase keys written by the web client
(`canAccess`, `planType`, `consumedSlots`, ...); snake_case names are also
accepted. Each record converts to its frozen domain counterpart with
`to_domain()`. A malformed shape raises pydantic.ValidationError.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .permissions import Actor, FeatureGrant, Role, parse_feature
from .subscriptions.models import (
    CancelReason,
    PlanType,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)


class ActorRecord(BaseModel):
    """Current user as loaded from the user store."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="User identifier")
    role: Role = Field(..., description="user, admin or superadmin")
    is_blocked: bool = Field(False, alias="isBlocked", description="Blocked accounts are denied")

    def to_domain(self) -> Actor:
        return Actor(id=self.id, role=self.role, is_blocked=self.is_blocked)


class FeatureGrantRecord(BaseModel):
    """Stored permission bits for one admin and feature."""

    model_config = ConfigDict(populate_by_name=True)

    admin_id: str = Field(..., min_length=1, alias="adminId")
    feature: str = Field(..., description="Feature name; unknown names are denied")
    can_access: bool = Field(False, alias="canAccess")
    can_create: bool = Field(False, alias="canCreate")
    can_edit: bool = Field(False, alias="canEdit")
    can_delete: bool = Field(False, alias="canDelete")

    def to_domain(self) -> Optional[FeatureGrant]:
        """Domain grant, or None when the feature is not in the catalog."""
        feature = parse_feature(self.feature)
        if feature is None:
            return None
        return FeatureGrant(
            admin_id=self.admin_id,
            feature=feature,
            can_access=self.can_access,
            can_create=self.can_create,
            can_edit=self.can_edit,
            can_delete=self.can_delete,
        )


def grants_from_records(records: Iterable[FeatureGrantRecord]) -> List[FeatureGrant]:
    """Convert grant records, dropping those that name an unknown feature."""
    grants = []
    for record in records:
        grant = record.to_domain()
        if grant is not None:
            grants.append(grant)
    return grants


class SubscriptionPlanRecord(BaseModel):
    """Catalog plan as stored by the admin console."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    plan_type: PlanType = Field(..., alias="planType")
    price: Decimal = Field(..., ge=0)
    post_count: int = Field(..., gt=0, alias="postCount")
    features: List[str] = Field(default_factory=list)
    is_active: bool = Field(True, alias="isActive")
    duration_months: Optional[int] = Field(None, gt=0, alias="durationMonths")

    def to_domain(self) -> SubscriptionPlan:
        return SubscriptionPlan(
            id=self.id,
            name=self.name,
            plan_type=self.plan_type,
            price=self.price,
            post_count=self.post_count,
            features=tuple(self.features),
            is_active=self.is_active,
            duration_months=self.duration_months,
        )


class SubscriptionRecord(BaseModel):
    """One stored subscription document."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, alias="userId")
    plan_id: str = Field(..., min_length=1, alias="planId")
    plan_type: PlanType = Field(..., alias="planType")
    status: SubscriptionStatus
    start_date: datetime = Field(..., alias="startDate")
    end_date: datetime = Field(..., alias="endDate")
    price: Decimal = Field(..., ge=0)
    post_quota: int = Field(..., gt=0, alias="postQuota")
    consumed_slots: int = Field(0, ge=0, alias="consumedSlots")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    transaction_id: Optional[str] = Field(None, alias="transactionId")
    cancel_reason: Optional[CancelReason] = Field(None, alias="cancelReason")

    def to_domain(self) -> Subscription:
        """
        Build the domain record.

        Raises:
            ValueError: naive dates, end before start, or slots above quota
        """
        return Subscription(
            id=self.id,
            user_id=self.user_id,
            plan_id=self.plan_id,
            plan_type=self.plan_type,
            status=self.status,
            start_date=self.start_date,
            end_date=self.end_date,
            price=self.price,
            post_quota=self.post_quota,
            consumed_slots=self.consumed_slots,
            payment_method=self.payment_method,
            transaction_id=self.transaction_id,
            cancel_reason=self.cancel_reason,
        )
