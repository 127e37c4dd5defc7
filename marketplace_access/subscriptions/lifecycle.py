"""
Subscription entitlement lifecycle.

State machine:

    (none)   --purchase, paid-->          active
    (none)   --purchase, unpaid-->        pending
    pending  --payment confirmed-->       active
    pending  --payment failed/timeout-->  cancelled
    active   --tick, now > end_date-->    expired
    active   --cancel-->                  cancelled
    active   --mark_premium fills quota-> cancelled (auto-cancel)

cancelled and expired are terminal. A new purchase always creates a new
record. Expiry is evaluated lazily: every decision re-checks `end_date`
instead of trusting the stored status.

The module-level functions are pure. EntitlementLifecycle wraps them with a
clock and audit logging.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .. import config
from ..audit import AuditAction, log_audit_event
from ..errors import ErrorKind
from ..permissions import Action, Actor, Feature, FeatureGrant, authorize
from .models import (
    CancelReason,
    PlanType,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    add_months,
    require_aware,
    utcnow,
)
from .results import LifecycleResult, MarkPremiumResult

logger = logging.getLogger(__name__)


def _user_subscriptions(user_id: str, subscriptions: Iterable[Subscription]) -> list[Subscription]:
    normalized = str(user_id).strip()
    return [s for s in subscriptions if s.user_id == normalized]


def purchase(
    user_id: str,
    plan: SubscriptionPlan,
    transaction_id: Optional[str],
    existing: Iterable[Subscription] = (),
    *,
    payment_method: Optional[str] = None,
    payment_confirmed: bool = True,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
    subscription_id: Optional[str] = None,
) -> LifecycleResult:
    """
    Create a subscription for a user.

    Args:
        user_id: Purchasing user
        plan: Plan being bought
        transaction_id: Payment reference from the (external) gateway
        existing: The user's current subscriptions
        payment_method: Payment method label to snapshot
        payment_confirmed: Whether payment already succeeded
        end_date: Required for custom plans, ignored otherwise
        now: Purchase time

    Returns:
        LifecycleResult with the new record, or CONFLICT / PLAN_INACTIVE

    Raises:
        ValueError: malformed input (custom plan without end_date, bad dates)
    """
    now = require_aware(now or utcnow(), "now")
    normalized_user_id = str(user_id).strip()
    if not normalized_user_id:
        raise ValueError("user_id is required")

    for current in _user_subscriptions(normalized_user_id, existing):
        if current.is_effectively_active(now):
            return LifecycleResult(subscription=current, error=ErrorKind.CONFLICT)

    if not plan.is_active:
        return LifecycleResult(subscription=None, error=ErrorKind.PLAN_INACTIVE)

    subscription = Subscription(
        id=subscription_id or str(uuid.uuid4()),
        user_id=normalized_user_id,
        plan_id=plan.id,
        plan_type=plan.plan_type,
        status=SubscriptionStatus.ACTIVE if payment_confirmed else SubscriptionStatus.PENDING,
        start_date=now,
        end_date=plan.end_date_from(now, end_date),
        price=plan.price,
        post_quota=plan.post_count,
        consumed_slots=0,
        payment_method=payment_method,
        transaction_id=transaction_id,
    )
    return LifecycleResult(subscription=subscription, changed=True)


def confirm_payment(
    subscription: Subscription,
    plan: SubscriptionPlan,
    transaction_id: Optional[str],
    existing: Iterable[Subscription] = (),
    *,
    now: Optional[datetime] = None,
    timeout: timedelta = config.PENDING_PAYMENT_TIMEOUT,
) -> LifecycleResult:
    """
    Activate a pending subscription once its payment succeeded.

    Idempotent for an already-active subscription. A pending subscription
    older than `timeout` is cancelled instead and reported ALREADY_TERMINAL.
    Monthly and yearly periods restart at confirmation time; custom periods
    keep their dates.
    """
    now = require_aware(now or utcnow(), "now")

    if subscription.status is SubscriptionStatus.ACTIVE:
        return LifecycleResult(subscription=subscription)
    if subscription.is_terminal:
        return LifecycleResult(subscription=subscription, error=ErrorKind.ALREADY_TERMINAL)

    timed_out = expire_pending(subscription, now=now, timeout=timeout)
    if timed_out is not subscription:
        return LifecycleResult(subscription=timed_out, error=ErrorKind.ALREADY_TERMINAL, changed=True)

    for other in _user_subscriptions(subscription.user_id, existing):
        if other.id != subscription.id and other.is_effectively_active(now):
            return LifecycleResult(subscription=subscription, error=ErrorKind.CONFLICT)

    start_date, end_date = subscription.start_date, subscription.end_date
    if plan.plan_type is not PlanType.CUSTOM:
        start_date, end_date = now, add_months(now, plan.duration_months)

    activated = replace(
        subscription,
        status=SubscriptionStatus.ACTIVE,
        start_date=start_date,
        end_date=end_date,
        transaction_id=transaction_id or subscription.transaction_id,
    )
    return LifecycleResult(subscription=activated, changed=True)


def fail_payment(subscription: Subscription, *, timed_out: bool = False) -> LifecycleResult:
    """
    Cancel a pending subscription whose payment failed or timed out.

    Confirmed or ended subscriptions are returned unchanged.
    """
    if subscription.status is not SubscriptionStatus.PENDING:
        return LifecycleResult(subscription=subscription)

    reason = CancelReason.PAYMENT_TIMEOUT if timed_out else CancelReason.PAYMENT_FAILED
    cancelled = replace(subscription, status=SubscriptionStatus.CANCELLED, cancel_reason=reason)
    return LifecycleResult(subscription=cancelled, changed=True)


def expire_pending(
    subscription: Subscription,
    *,
    now: Optional[datetime] = None,
    timeout: timedelta = config.PENDING_PAYMENT_TIMEOUT,
) -> Subscription:
    """Cancel a pending subscription left unconfirmed longer than `timeout`."""
    now = require_aware(now or utcnow(), "now")
    if subscription.status is SubscriptionStatus.PENDING and now - subscription.start_date > timeout:
        return fail_payment(subscription, timed_out=True).subscription
    return subscription


def tick(subscription: Subscription, now: Optional[datetime] = None) -> Subscription:
    """Time-driven transition: active past its end date becomes expired."""
    now = require_aware(now or utcnow(), "now")
    if subscription.status is SubscriptionStatus.ACTIVE and subscription.is_past_end(now):
        return replace(subscription, status=SubscriptionStatus.EXPIRED)
    return subscription


def mark_premium(subscription: Subscription, now: Optional[datetime] = None) -> MarkPremiumResult:
    """
    Consume one premium slot.

    Denied with QUOTA_EXHAUSTED when no slot is left (including after an
    auto-cancel), and with NOT_ACTIVE when the subscription is not active or
    its period has ended (the returned record is then the expired one).
    Filling the last slot cancels the subscription in the same step.
    """
    now = require_aware(now or utcnow(), "now")

    if subscription.consumed_slots >= subscription.post_quota:
        return MarkPremiumResult(subscription=subscription, error=ErrorKind.QUOTA_EXHAUSTED)

    if subscription.status is not SubscriptionStatus.ACTIVE:
        return MarkPremiumResult(subscription=subscription, error=ErrorKind.NOT_ACTIVE)

    if subscription.is_past_end(now):
        return MarkPremiumResult(
            subscription=tick(subscription, now),
            error=ErrorKind.NOT_ACTIVE,
            changed=True,
        )

    consumed = subscription.consumed_slots + 1
    if consumed == subscription.post_quota:
        updated = replace(
            subscription,
            consumed_slots=consumed,
            status=SubscriptionStatus.CANCELLED,
            cancel_reason=CancelReason.QUOTA_EXHAUSTED,
        )
        return MarkPremiumResult(subscription=updated, changed=True, auto_cancelled=True)

    updated = replace(subscription, consumed_slots=consumed)
    return MarkPremiumResult(subscription=updated, changed=True)


def can_cancel(actor: Actor, subscription: Subscription, grants: Iterable[FeatureGrant] = ()) -> bool:
    """Owners cancel their own subscriptions; staff need payment_management access."""
    if actor.id == subscription.user_id:
        return True
    return authorize(actor, Feature.PAYMENT_MANAGEMENT, Action.ACCESS, grants)


def cancel(
    subscription: Subscription,
    actor: Actor,
    now: Optional[datetime] = None,
    grants: Iterable[FeatureGrant] = (),
) -> LifecycleResult:
    """
    Explicitly cancel an active subscription.

    Cancelling an already-ended subscription reports ALREADY_TERMINAL; a
    pending one reports NOT_ACTIVE (fail its payment instead).
    """
    now = require_aware(now or utcnow(), "now")

    if not can_cancel(actor, subscription, grants):
        return LifecycleResult(subscription=subscription, error=ErrorKind.PERMISSION_DENIED)

    current = tick(subscription, now)
    if current.is_terminal:
        return LifecycleResult(
            subscription=current,
            error=ErrorKind.ALREADY_TERMINAL,
            changed=current is not subscription,
        )
    if current.status is not SubscriptionStatus.ACTIVE:
        return LifecycleResult(subscription=current, error=ErrorKind.NOT_ACTIVE)

    reason = CancelReason.USER if actor.id == subscription.user_id else CancelReason.ADMIN
    cancelled = replace(current, status=SubscriptionStatus.CANCELLED, cancel_reason=reason)
    return LifecycleResult(subscription=cancelled, changed=True)


def has_active_entitlement(
    user_id: str,
    subscriptions: Iterable[Subscription],
    now: Optional[datetime] = None,
) -> bool:
    """True iff exactly one of the user's subscriptions is active right now."""
    now = require_aware(now or utcnow(), "now")
    active = [s for s in _user_subscriptions(user_id, subscriptions) if s.is_effectively_active(now)]
    return len(active) == 1


class EntitlementLifecycle:
    """Lifecycle operations bound to a clock, with audit logging."""

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        self._clock = clock or utcnow
        self.correlation_id = correlation_id

    def now(self) -> datetime:
        return self._clock()

    def purchase(
        self,
        user_id: str,
        plan: SubscriptionPlan,
        transaction_id: Optional[str],
        existing: Iterable[Subscription] = (),
        **kwargs,
    ) -> LifecycleResult:
        result = purchase(user_id, plan, transaction_id, existing, now=self.now(), **kwargs)
        if result.ok:
            self._emit(AuditAction.SUBSCRIPTION_PURCHASED, result.subscription, actor_id=user_id,
                       metadata={"plan_id": plan.id, "status": result.subscription.status.value})
        else:
            logger.info(
                "Subscription purchase rejected",
                extra={"user_id": user_id, "plan_id": plan.id, "error_kind": result.error.value},
            )
        return result

    def confirm_payment(
        self,
        subscription: Subscription,
        plan: SubscriptionPlan,
        transaction_id: Optional[str],
        existing: Iterable[Subscription] = (),
    ) -> LifecycleResult:
        result = confirm_payment(subscription, plan, transaction_id, existing, now=self.now())
        if result.ok and result.changed:
            self._emit(AuditAction.SUBSCRIPTION_ACTIVATED, result.subscription)
        elif result.changed:
            self._emit(AuditAction.SUBSCRIPTION_CANCELLED, result.subscription,
                       metadata={"reason": result.subscription.cancel_reason.value})
        return result

    def fail_payment(self, subscription: Subscription, *, timed_out: bool = False) -> LifecycleResult:
        result = fail_payment(subscription, timed_out=timed_out)
        if result.changed:
            self._emit(AuditAction.SUBSCRIPTION_CANCELLED, result.subscription,
                       metadata={"reason": result.subscription.cancel_reason.value})
        return result

    def expire_pending(self, subscription: Subscription) -> Subscription:
        updated = expire_pending(subscription, now=self.now())
        if updated is not subscription:
            self._emit(AuditAction.SUBSCRIPTION_CANCELLED, updated,
                       metadata={"reason": updated.cancel_reason.value})
        return updated

    def tick(self, subscription: Subscription) -> Subscription:
        updated = tick(subscription, self.now())
        if updated is not subscription:
            self._emit(AuditAction.SUBSCRIPTION_EXPIRED, updated)
        return updated

    def mark_premium(self, subscription: Subscription) -> MarkPremiumResult:
        result = mark_premium(subscription, self.now())
        self.record_premium(result)
        return result

    def record_premium(self, result: MarkPremiumResult) -> None:
        """Audit the outcome of a premium-slot attempt."""
        if result.allowed:
            self._emit(AuditAction.SUBSCRIPTION_SLOT_CONSUMED, result.subscription,
                       metadata={"consumed_slots": result.subscription.consumed_slots,
                                 "post_quota": result.subscription.post_quota})
            if result.auto_cancelled:
                self._emit(AuditAction.SUBSCRIPTION_AUTO_CANCELLED, result.subscription)
        else:
            self._emit(AuditAction.SUBSCRIPTION_PREMIUM_DENIED, result.subscription,
                       metadata={"error_kind": result.error.value})

    def cancel(
        self,
        subscription: Subscription,
        actor: Actor,
        grants: Iterable[FeatureGrant] = (),
    ) -> LifecycleResult:
        result = cancel(subscription, actor, self.now(), grants)
        if result.ok:
            self._emit(AuditAction.SUBSCRIPTION_CANCELLED, result.subscription, actor_id=actor.id,
                       metadata={"reason": result.subscription.cancel_reason.value})
        elif result.error is ErrorKind.PERMISSION_DENIED:
            self._emit(AuditAction.PERMISSION_DENIED, subscription, actor_id=actor.id,
                       metadata={"operation": "cancel"})
        return result

    def has_active_entitlement(self, user_id: str, subscriptions: Iterable[Subscription]) -> bool:
        return has_active_entitlement(user_id, subscriptions, self.now())

    def _emit(self, action, subscription, *, actor_id=None, metadata=None) -> None:
        log_audit_event(
            action,
            resource_type="subscription",
            resource_id=subscription.id if subscription is not None else None,
            actor_id=actor_id,
            metadata=metadata,
            correlation_id=self.correlation_id,
        )
