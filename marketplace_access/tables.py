"""
SQLAlchemy tables for plans, subscriptions and admin permission grants.

Rows are converted to and from the frozen domain records; decision logic
never reads rows directly.

Constraints mirrored from the domain:
- one grant row per (admin_id, feature)
- consumed_slots never exceeds post_quota
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from .db_base import Base, TimestampMixin


class SubscriptionPlanRow(Base, TimestampMixin):
    """Catalog entry for a purchasable plan."""

    __tablename__ = "subscription_plans"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    plan_type = Column(String(20), nullable=False, comment="monthly | yearly | custom")
    price = Column(Numeric(10, 2), nullable=False)
    post_count = Column(Integer, nullable=False)
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    duration_months = Column(Integer, nullable=True, comment="NULL for custom plans")


class SubscriptionRow(Base, TimestampMixin):
    """
    One purchase of a plan.

    Lifecycle:
    - PENDING: awaiting payment confirmation
    - ACTIVE: paid, within period, slots left
    - CANCELLED: user/admin cancel, failed payment, or quota exhausted
    - EXPIRED: end_date passed
    """

    __tablename__ = "subscriptions"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)
    plan_id = Column(String(255), nullable=False)
    plan_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, comment="Snapshot at purchase time")
    post_quota = Column(Integer, nullable=False, comment="Snapshot of plan post_count")
    consumed_slots = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(50), nullable=True)
    transaction_id = Column(String(255), nullable=True, index=True)
    cancel_reason = Column(String(50), nullable=True)

    __table_args__ = (
        CheckConstraint("consumed_slots >= 0 AND consumed_slots <= post_quota", name="ck_subscriptions_slots"),
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )


class AdminPermissionRow(Base, TimestampMixin):
    """Permission bits of one admin for one feature."""

    __tablename__ = "admin_permissions"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    admin_id = Column(String(255), nullable=False, index=True)
    feature = Column(String(100), nullable=False)
    can_access = Column(Boolean, nullable=False, default=False)
    can_create = Column(Boolean, nullable=False, default=False)
    can_edit = Column(Boolean, nullable=False, default=False)
    can_delete = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("admin_id", "feature", name="uq_admin_permissions_admin_feature"),
    )
