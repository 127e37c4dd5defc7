"""
SubscriptionService: lifecycle operations by id over SQLAlchemy storage.

Every read path ticks the record and persists a lazily observed expiry, so
callers never act on a stale stored status.

Premium slot consumption is a single conditional UPDATE:

    UPDATE subscriptions
       SET status = CASE WHEN consumed_slots + 1 >= post_quota THEN 'cancelled' ELSE status END,
           cancel_reason = CASE WHEN consumed_slots + 1 >= post_quota THEN 'quota_exhausted' ELSE cancel_reason END,
           consumed_slots = consumed_slots + 1
     WHERE id = :id AND status = 'active'
       AND consumed_slots < post_quota AND end_date >= :now

so concurrent callers can never consume more than post_quota slots. The
losing side re-reads the row and reports why it lost. The counter is assigned
last so the CASE expressions read the pre-update count whether the backend
evaluates SET against old values (PostgreSQL, SQLite) or left to right
(MySQL).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from ..db_base import as_utc
from ..errors import ErrorKind
from ..permissions import Actor, FeatureGrant
from ..tables import SubscriptionPlanRow, SubscriptionRow
from . import lifecycle as lifecycle_ops
from .lifecycle import EntitlementLifecycle
from .models import (
    CancelReason,
    PlanType,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from .results import LifecycleResult, MarkPremiumResult
from .summary import SubscriptionStats, SubscriptionSummary, subscription_stats, summarize

logger = logging.getLogger(__name__)


def plan_from_row(row: SubscriptionPlanRow) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=row.id,
        name=row.name,
        plan_type=PlanType(row.plan_type),
        price=row.price,
        post_count=row.post_count,
        features=tuple(row.features or ()),
        is_active=bool(row.is_active),
        duration_months=row.duration_months,
    )


def subscription_from_row(row: SubscriptionRow) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        plan_type=PlanType(row.plan_type),
        status=SubscriptionStatus(row.status),
        start_date=as_utc(row.start_date),
        end_date=as_utc(row.end_date),
        price=row.price,
        post_quota=row.post_quota,
        consumed_slots=row.consumed_slots,
        payment_method=row.payment_method,
        transaction_id=row.transaction_id,
        cancel_reason=CancelReason(row.cancel_reason) if row.cancel_reason else None,
    )


def _apply_to_row(row: SubscriptionRow, subscription: Subscription) -> SubscriptionRow:
    row.user_id = subscription.user_id
    row.plan_id = subscription.plan_id
    row.plan_type = subscription.plan_type.value
    row.status = subscription.status.value
    row.start_date = as_utc(subscription.start_date)
    row.end_date = as_utc(subscription.end_date)
    row.price = subscription.price
    row.post_quota = subscription.post_quota
    row.consumed_slots = subscription.consumed_slots
    row.payment_method = subscription.payment_method
    row.transaction_id = subscription.transaction_id
    row.cancel_reason = subscription.cancel_reason.value if subscription.cancel_reason else None
    return row


class SubscriptionService:
    """Subscription operations addressed by id, persisted through a Session."""

    def __init__(
        self,
        session: Session,
        lifecycle: Optional[EntitlementLifecycle] = None,
        correlation_id: Optional[str] = None,
    ):
        self.session = session
        self.correlation_id = correlation_id
        self.lifecycle = lifecycle or EntitlementLifecycle(correlation_id=correlation_id)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        row = self.session.query(SubscriptionPlanRow).filter(SubscriptionPlanRow.id == plan_id).one_or_none()
        return plan_from_row(row) if row is not None else None

    def save_plans(self, plans: Iterable[SubscriptionPlan]) -> int:
        """Upsert catalog plans (e.g. from PlanCatalogLoader). Returns count written."""
        written = 0
        try:
            for plan in plans:
                row = self.session.get(SubscriptionPlanRow, plan.id)
                if row is None:
                    row = SubscriptionPlanRow(id=plan.id)
                    self.session.add(row)
                row.name = plan.name
                row.plan_type = plan.plan_type.value
                row.price = plan.price
                row.post_count = plan.post_count
                row.features = list(plan.features)
                row.is_active = plan.is_active
                row.duration_months = plan.duration_months
                written += 1
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return written

    # ------------------------------------------------------------------
    # Reads (always ticked)
    # ------------------------------------------------------------------

    def get(self, subscription_id: str) -> Optional[Subscription]:
        row = self._get_row(subscription_id)
        if row is None:
            return None
        return self._refresh(row)

    def list_for_user(self, user_id: str) -> List[Subscription]:
        rows = (
            self.session.query(SubscriptionRow)
            .filter(SubscriptionRow.user_id == str(user_id).strip())
            .order_by(SubscriptionRow.start_date.desc())
            .all()
        )
        return [self._refresh(row) for row in rows]

    def has_active_entitlement(self, user_id: str) -> bool:
        return self.lifecycle.has_active_entitlement(user_id, self.list_for_user(user_id))

    def summary(self, subscription_id: str) -> Optional[SubscriptionSummary]:
        subscription = self.get(subscription_id)
        if subscription is None:
            return None
        return summarize(subscription, self.lifecycle.now())

    def stats(self) -> SubscriptionStats:
        rows = self.session.query(SubscriptionRow).all()
        return subscription_stats(
            (subscription_from_row(row) for row in rows),
            self.lifecycle.now(),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def purchase(
        self,
        user_id: str,
        plan_id: str,
        transaction_id: Optional[str],
        *,
        payment_method: Optional[str] = None,
        payment_confirmed: bool = True,
        end_date: Optional[datetime] = None,
    ) -> LifecycleResult:
        plan = self.get_plan(plan_id)
        if plan is None:
            return LifecycleResult(subscription=None, error=ErrorKind.NOT_FOUND)

        result = self.lifecycle.purchase(
            user_id,
            plan,
            transaction_id,
            self.list_for_user(user_id),
            payment_method=payment_method,
            payment_confirmed=payment_confirmed,
            end_date=end_date,
        )
        if result.changed:
            self._save(result.subscription)
        return result

    def confirm_payment(self, subscription_id: str, transaction_id: Optional[str]) -> LifecycleResult:
        subscription = self.get(subscription_id)
        if subscription is None:
            return LifecycleResult(subscription=None, error=ErrorKind.NOT_FOUND)
        plan = self.get_plan(subscription.plan_id)
        if plan is None:
            return LifecycleResult(subscription=subscription, error=ErrorKind.NOT_FOUND)

        result = self.lifecycle.confirm_payment(
            subscription, plan, transaction_id, self.list_for_user(subscription.user_id)
        )
        if result.changed:
            self._save(result.subscription)
        return result

    def fail_payment(self, subscription_id: str, *, timed_out: bool = False) -> LifecycleResult:
        subscription = self.get(subscription_id)
        if subscription is None:
            return LifecycleResult(subscription=None, error=ErrorKind.NOT_FOUND)
        result = self.lifecycle.fail_payment(subscription, timed_out=timed_out)
        if result.changed:
            self._save(result.subscription)
        return result

    def cancel(
        self,
        subscription_id: str,
        actor: Actor,
        grants: Iterable[FeatureGrant] = (),
    ) -> LifecycleResult:
        subscription = self.get(subscription_id)
        if subscription is None:
            return LifecycleResult(subscription=None, error=ErrorKind.NOT_FOUND)
        result = self.lifecycle.cancel(subscription, actor, grants)
        if result.ok:
            self._save(result.subscription)
        return result

    def mark_premium(self, subscription_id: str) -> MarkPremiumResult:
        """
        Consume one premium slot; safe to call concurrently.

        At most post_quota calls ever succeed for a subscription.
        """
        result = MarkPremiumResult(subscription=None, error=ErrorKind.NOT_FOUND)

        for attempt in range(max(config.PREMIUM_CONSUME_MAX_ATTEMPTS, 1)):
            now = self.lifecycle.now()
            try:
                consumed = self._try_consume_slot(subscription_id, now)
                row = self._get_row(subscription_id)
                # read inside the same transaction that made the update
                current = subscription_from_row(row) if row is not None else None
                self.session.commit()
            except SQLAlchemyError:
                self.session.rollback()
                raise

            if current is None:
                return MarkPremiumResult(subscription=None, error=ErrorKind.NOT_FOUND)

            if consumed:
                # our increment was the one that reached the quota iff it cancelled
                auto_cancelled = current.status is SubscriptionStatus.CANCELLED
                result = MarkPremiumResult(subscription=current, changed=True, auto_cancelled=auto_cancelled)
                self.lifecycle.record_premium(result)
                return result

            result = lifecycle_ops.mark_premium(current, now)
            if not result.allowed:
                if result.changed:
                    self._save(result.subscription)
                self.lifecycle.record_premium(result)
                return result

            logger.info(
                "Premium slot update lost a race, retrying",
                extra={
                    "subscription_id": subscription_id,
                    "attempt": attempt + 1,
                    "correlation_id": self.correlation_id,
                },
            )

        logger.warning(
            "Premium slot update retries exhausted",
            extra={"subscription_id": subscription_id, "correlation_id": self.correlation_id},
        )
        return MarkPremiumResult(subscription=result.subscription, error=ErrorKind.QUOTA_EXHAUSTED)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_row(self, subscription_id: str) -> Optional[SubscriptionRow]:
        return (
            self.session.query(SubscriptionRow)
            .filter(SubscriptionRow.id == str(subscription_id).strip())
            .populate_existing()
            .one_or_none()
        )

    def _try_consume_slot(self, subscription_id: str, now: datetime) -> bool:
        next_count = SubscriptionRow.consumed_slots + 1
        fills_quota = next_count >= SubscriptionRow.post_quota
        updated = (
            self.session.query(SubscriptionRow)
            .filter(
                SubscriptionRow.id == str(subscription_id).strip(),
                SubscriptionRow.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionRow.consumed_slots < SubscriptionRow.post_quota,
                SubscriptionRow.end_date >= as_utc(now),
            )
            .update(
                # counter last: MySQL evaluates SET left to right against new values
                [
                    (
                        SubscriptionRow.status,
                        case((fills_quota, SubscriptionStatus.CANCELLED.value), else_=SubscriptionRow.status),
                    ),
                    (
                        SubscriptionRow.cancel_reason,
                        case((fills_quota, CancelReason.QUOTA_EXHAUSTED.value), else_=SubscriptionRow.cancel_reason),
                    ),
                    (SubscriptionRow.consumed_slots, next_count),
                ],
                synchronize_session=False,
                update_args={"preserve_parameter_order": True},
            )
        )
        return updated == 1

    def _refresh(self, row: SubscriptionRow) -> Subscription:
        stored = subscription_from_row(row)
        current = self.lifecycle.expire_pending(self.lifecycle.tick(stored))
        if current is not stored:
            self._save(current)
        return current

    def _save(self, subscription: Subscription) -> None:
        try:
            row = self.session.get(SubscriptionRow, subscription.id)
            if row is None:
                row = SubscriptionRow(id=subscription.id)
                self.session.add(row)
            _apply_to_row(row, subscription)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
