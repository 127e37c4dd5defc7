from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from marketplace_access.errors import (
    AlreadyTerminalError,
    ConflictError,
    ErrorKind,
    NotActiveError,
    QuotaExhaustedError,
)
from marketplace_access.permissions import Actor, Feature, FeatureGrant, Role
from marketplace_access.subscriptions import (
    CancelReason,
    EntitlementLifecycle,
    SubscriptionPlan,
    SubscriptionStatus,
    cancel,
    confirm_payment,
    expire_pending,
    fail_payment,
    has_active_entitlement,
    mark_premium,
    purchase,
    tick,
)


class TestPurchase:
    def test_creates_active_subscription(self, monthly_plan, now):
        result = purchase("user-1", monthly_plan, "txn-1", now=now, payment_method="card")

        sub = result.subscription
        assert result.ok and result.changed
        assert sub.status is SubscriptionStatus.ACTIVE
        assert sub.consumed_slots == 0
        assert sub.post_quota == 3
        assert sub.price == Decimal("29.99")
        assert sub.start_date == now
        assert sub.end_date == datetime(2025, 4, 10, 12, 0, tzinfo=timezone.utc)
        assert sub.payment_method == "card"
        assert sub.transaction_id == "txn-1"

    def test_yearly_period(self, yearly_plan, now):
        sub = purchase("user-1", yearly_plan, "txn-1", now=now).subscription
        assert sub.end_date == datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

    def test_month_end_is_clamped(self, monthly_plan):
        jan_31 = datetime(2025, 1, 31, 9, 0, tzinfo=timezone.utc)
        sub = purchase("user-1", monthly_plan, "txn-1", now=jan_31).subscription
        assert sub.end_date == datetime(2025, 2, 28, 9, 0, tzinfo=timezone.utc)

    def test_custom_plan_uses_given_end_date(self, custom_plan, now):
        end = now + timedelta(days=45)
        sub = purchase("user-1", custom_plan, "txn-1", now=now, end_date=end).subscription
        assert sub.end_date == end

    def test_custom_plan_requires_end_date(self, custom_plan, now):
        with pytest.raises(ValueError, match="explicit end_date"):
            purchase("user-1", custom_plan, "txn-1", now=now)

    def test_custom_plan_end_date_must_follow_start(self, custom_plan, now):
        with pytest.raises(ValueError, match="after start_date"):
            purchase("user-1", custom_plan, "txn-1", now=now, end_date=now - timedelta(days=1))

    def test_second_purchase_conflicts(self, monthly_plan, now):
        first = purchase("user-1", monthly_plan, "txn-1", now=now).subscription

        result = purchase("user-1", monthly_plan, "txn-2", [first], now=now + timedelta(days=1))

        assert result.error is ErrorKind.CONFLICT
        assert result.subscription is first
        with pytest.raises(ConflictError):
            result.raise_for_error()

    def test_other_users_subscription_does_not_conflict(self, monthly_plan, now, subscription_factory):
        other = subscription_factory(user_id="user-2")
        assert purchase("user-1", monthly_plan, "txn-1", [other], now=now).ok

    def test_purchase_allowed_after_cancel(self, monthly_plan, now, subscription_factory):
        cancelled = subscription_factory(status=SubscriptionStatus.CANCELLED, cancel_reason=CancelReason.USER)
        result = purchase("user-1", monthly_plan, "txn-2", [cancelled], now=now)
        assert result.ok
        assert result.subscription.id != cancelled.id

    def test_stale_active_record_does_not_block(self, monthly_plan, now, subscription_factory):
        stale = subscription_factory(start_date=now - timedelta(days=40), end_date=now - timedelta(days=10))
        assert purchase("user-1", monthly_plan, "txn-2", [stale], now=now).ok

    def test_inactive_plan_rejected(self, now):
        retired = SubscriptionPlan(id="old", name="Old", plan_type="monthly", price="9.99",
                                   post_count=1, is_active=False)
        result = purchase("user-1", retired, "txn-1", now=now)
        assert result.error is ErrorKind.PLAN_INACTIVE
        assert result.subscription is None

    def test_unpaid_purchase_is_pending(self, monthly_plan, now):
        sub = purchase("user-1", monthly_plan, None, now=now, payment_confirmed=False).subscription
        assert sub.status is SubscriptionStatus.PENDING

    def test_naive_now_rejected(self, monthly_plan):
        with pytest.raises(ValueError, match="timezone-aware"):
            purchase("user-1", monthly_plan, "txn-1", now=datetime(2025, 3, 10))


class TestPayment:
    def test_confirm_activates_and_restarts_period(self, monthly_plan, now):
        pending = purchase("user-1", monthly_plan, None, now=now, payment_confirmed=False).subscription
        later = now + timedelta(minutes=5)

        result = confirm_payment(pending, monthly_plan, "txn-9", [pending], now=later)

        assert result.ok and result.changed
        assert result.subscription.status is SubscriptionStatus.ACTIVE
        assert result.subscription.start_date == later
        assert result.subscription.transaction_id == "txn-9"

    def test_confirm_is_idempotent(self, monthly_plan, now, subscription_factory):
        active = subscription_factory()
        result = confirm_payment(active, monthly_plan, "txn-9", now=now)
        assert result.ok and not result.changed
        assert result.subscription is active

    def test_confirm_terminal_rejected(self, monthly_plan, now, subscription_factory):
        cancelled = subscription_factory(status=SubscriptionStatus.CANCELLED)
        result = confirm_payment(cancelled, monthly_plan, "txn-9", now=now)
        assert result.error is ErrorKind.ALREADY_TERMINAL

    def test_confirm_conflicts_with_other_active(self, monthly_plan, now, subscription_factory):
        active = subscription_factory(id="sub-active")
        pending = subscription_factory(id="sub-pending", status=SubscriptionStatus.PENDING,
                                       start_date=now - timedelta(minutes=5))
        result = confirm_payment(pending, monthly_plan, "txn-9", [active, pending], now=now)
        assert result.error is ErrorKind.CONFLICT

    def test_confirm_after_timeout_cancels(self, monthly_plan, now, subscription_factory):
        stale = subscription_factory(status=SubscriptionStatus.PENDING, start_date=now - timedelta(hours=1))

        result = confirm_payment(stale, monthly_plan, "txn-9", [stale], now=now, timeout=timedelta(minutes=30))

        assert result.error is ErrorKind.ALREADY_TERMINAL
        assert result.changed
        assert result.subscription.status is SubscriptionStatus.CANCELLED
        assert result.subscription.cancel_reason is CancelReason.PAYMENT_TIMEOUT

    def test_fail_payment_cancels_pending(self, subscription_factory):
        pending = subscription_factory(status=SubscriptionStatus.PENDING)
        result = fail_payment(pending)
        assert result.subscription.status is SubscriptionStatus.CANCELLED
        assert result.subscription.cancel_reason is CancelReason.PAYMENT_FAILED

    def test_fail_payment_ignores_active(self, subscription_factory):
        active = subscription_factory()
        result = fail_payment(active)
        assert result.subscription is active and not result.changed

    def test_pending_times_out(self, subscription_factory, now):
        pending = subscription_factory(status=SubscriptionStatus.PENDING, start_date=now - timedelta(hours=1))
        expired = expire_pending(pending, now=now, timeout=timedelta(minutes=30))
        assert expired.status is SubscriptionStatus.CANCELLED
        assert expired.cancel_reason is CancelReason.PAYMENT_TIMEOUT

    def test_recent_pending_kept(self, subscription_factory, now):
        pending = subscription_factory(status=SubscriptionStatus.PENDING, start_date=now - timedelta(minutes=5))
        assert expire_pending(pending, now=now, timeout=timedelta(minutes=30)) is pending


class TestMarkPremium:
    def test_three_slots_then_exhausted(self, monthly_plan, now):
        sub = purchase("user-1", monthly_plan, "txn-1", now=now).subscription

        first = mark_premium(sub, now)
        second = mark_premium(first.subscription, now)
        third = mark_premium(second.subscription, now)
        fourth = mark_premium(third.subscription, now)

        assert first.allowed and not first.auto_cancelled
        assert second.allowed and second.subscription.consumed_slots == 2
        assert second.subscription.status is SubscriptionStatus.ACTIVE
        assert third.allowed and third.auto_cancelled
        assert third.subscription.status is SubscriptionStatus.CANCELLED
        assert third.subscription.cancel_reason is CancelReason.QUOTA_EXHAUSTED
        assert fourth.error is ErrorKind.QUOTA_EXHAUSTED
        assert fourth.subscription.consumed_slots == 3

    def test_exhausted_call_leaves_count_unchanged(self, subscription_factory, now):
        full = subscription_factory(consumed_slots=3, status=SubscriptionStatus.CANCELLED,
                                    cancel_reason=CancelReason.QUOTA_EXHAUSTED)
        result = mark_premium(full, now)
        assert result.subscription is full
        assert not result.changed
        with pytest.raises(QuotaExhaustedError) as exc:
            result.raise_for_error()
        assert exc.value.status_code == 402
        assert exc.value.code == "SUBSCRIPTION_EXCEEDED"

    def test_pending_not_active(self, subscription_factory, now):
        result = mark_premium(subscription_factory(status=SubscriptionStatus.PENDING), now)
        assert result.error is ErrorKind.NOT_ACTIVE

    def test_past_end_returns_expired_record(self, subscription_factory, now):
        stale = subscription_factory(start_date=now - timedelta(days=40), end_date=now - timedelta(seconds=1))
        result = mark_premium(stale, now)
        assert result.error is ErrorKind.NOT_ACTIVE
        assert result.changed
        assert result.subscription.status is SubscriptionStatus.EXPIRED
        assert result.subscription.consumed_slots == 0
        with pytest.raises(NotActiveError):
            result.raise_for_error()

    def test_allowed_exactly_at_end_date(self, subscription_factory, now):
        sub = subscription_factory(start_date=now - timedelta(days=30), end_date=now)
        assert mark_premium(sub, now).allowed


class TestTick:
    def test_expires_past_end(self, subscription_factory, now):
        stale = subscription_factory(start_date=now - timedelta(days=40), end_date=now - timedelta(days=1))
        assert tick(stale, now).status is SubscriptionStatus.EXPIRED

    def test_idempotent(self, subscription_factory, now):
        sub = subscription_factory()
        assert tick(sub, now) is sub
        expired = tick(subscription_factory(end_date=now - timedelta(days=1)), now)
        assert tick(expired, now) is expired

    @pytest.mark.parametrize("status", [SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED])
    def test_terminal_states_are_sinks(self, subscription_factory, now, status):
        ended = subscription_factory(status=status, end_date=now - timedelta(days=1),
                                     start_date=now - timedelta(days=30))
        owner = Actor(id="user-1", role=Role.USER)

        assert tick(ended, now).status is status
        assert mark_premium(ended, now).subscription.status is status
        assert cancel(ended, owner, now).subscription.status is status


class TestCancel:
    def test_owner_cancels(self, subscription_factory, now):
        result = cancel(subscription_factory(), Actor(id="user-1", role=Role.USER), now)
        assert result.ok
        assert result.subscription.status is SubscriptionStatus.CANCELLED
        assert result.subscription.cancel_reason is CancelReason.USER

    def test_superadmin_cancels(self, subscription_factory, now):
        result = cancel(subscription_factory(), Actor(id="root", role=Role.SUPERADMIN), now)
        assert result.subscription.cancel_reason is CancelReason.ADMIN

    def test_admin_needs_payment_access(self, subscription_factory, now):
        admin = Actor(id="admin-1", role=Role.ADMIN)
        grant = FeatureGrant(admin_id="admin-1", feature=Feature.PAYMENT_MANAGEMENT, can_access=True)

        assert cancel(subscription_factory(), admin, now).error is ErrorKind.PERMISSION_DENIED
        assert cancel(subscription_factory(), admin, now, [grant]).ok

    def test_other_user_denied(self, subscription_factory, now):
        result = cancel(subscription_factory(), Actor(id="user-2", role=Role.USER), now)
        assert result.error is ErrorKind.PERMISSION_DENIED
        assert result.subscription.status is SubscriptionStatus.ACTIVE

    def test_cancel_twice_is_already_terminal(self, subscription_factory, now):
        owner = Actor(id="user-1", role=Role.USER)
        first = cancel(subscription_factory(), owner, now)
        second = cancel(first.subscription, owner, now)
        assert second.error is ErrorKind.ALREADY_TERMINAL
        with pytest.raises(AlreadyTerminalError):
            second.raise_for_error()

    def test_cancel_after_end_reports_expired(self, subscription_factory, now):
        stale = subscription_factory(end_date=now - timedelta(days=1), start_date=now - timedelta(days=31))
        result = cancel(stale, Actor(id="user-1", role=Role.USER), now)
        assert result.error is ErrorKind.ALREADY_TERMINAL
        assert result.changed
        assert result.subscription.status is SubscriptionStatus.EXPIRED

    def test_cancel_pending_not_active(self, subscription_factory, now):
        result = cancel(subscription_factory(status=SubscriptionStatus.PENDING),
                        Actor(id="user-1", role=Role.USER), now)
        assert result.error is ErrorKind.NOT_ACTIVE


class TestHasActiveEntitlement:
    def test_active_subscription(self, subscription_factory, now):
        assert has_active_entitlement("user-1", [subscription_factory()], now) is True

    def test_lazy_expiry_without_tick(self, subscription_factory, now):
        yesterday = now - timedelta(days=1)
        stale = subscription_factory(start_date=yesterday - timedelta(days=30), end_date=yesterday)
        assert stale.status is SubscriptionStatus.ACTIVE
        assert has_active_entitlement("user-1", [stale], now) is False

    def test_no_subscriptions(self, now):
        assert has_active_entitlement("user-1", [], now) is False

    def test_pending_does_not_count(self, subscription_factory, now):
        assert has_active_entitlement("user-1", [subscription_factory(status=SubscriptionStatus.PENDING)], now) is False

    def test_other_user_ignored(self, subscription_factory, now):
        assert has_active_entitlement("user-2", [subscription_factory()], now) is False


class TestEntitlementLifecycle:
    def test_uses_clock(self, monthly_plan, clock):
        lifecycle = EntitlementLifecycle(clock=clock)
        sub = lifecycle.purchase("user-1", monthly_plan, "txn-1").subscription

        clock.advance(days=40)

        assert lifecycle.has_active_entitlement("user-1", [sub]) is False
        assert lifecycle.tick(sub).status is SubscriptionStatus.EXPIRED

    def test_audits_auto_cancel(self, subscription_factory, clock, caplog):
        lifecycle = EntitlementLifecycle(clock=clock, correlation_id="req-1")
        sub = subscription_factory(consumed_slots=2)

        with caplog.at_level(logging.INFO):
            result = lifecycle.mark_premium(sub)

        assert result.auto_cancelled
        assert "subscription.slot_consumed" in caplog.text
        assert "subscription.auto_cancelled" in caplog.text

    def test_audits_denied_cancel(self, subscription_factory, clock, caplog):
        lifecycle = EntitlementLifecycle(clock=clock)

        with caplog.at_level(logging.WARNING):
            result = lifecycle.cancel(subscription_factory(), Actor(id="user-2", role=Role.USER))

        assert result.error is ErrorKind.PERMISSION_DENIED
        assert "permission.denied" in caplog.text
