"""Tests for the Subscription aggregate's cancellation modes and proration."""

from datetime import UTC, datetime, timedelta

import pytest
from commerce.entitlement.subscription import Subscription, SubscriptionStatus
from commerce.errors import StateError
from protean.exceptions import ValidationError


def _subscription(days=30, elapsed=0):
    starts_at = datetime.now(UTC) - timedelta(days=elapsed)
    return Subscription.start(
        customer_id="cust-1",
        plan_id="plan-1",
        order_id="ord-1",
        payment_id="pay-1",
        transaction_id="PAY_1",
        starts_at=starts_at,
        ends_at=starts_at + timedelta(days=days),
    )


class TestCancellationModes:
    def test_immediate_ends_access_now(self):
        subscription = _subscription()
        subscription.cancel("immediate", "No longer needed")
        assert subscription.status == SubscriptionStatus.CANCELLED.value
        assert subscription.auto_renew is False
        assert not subscription.is_active()

    def test_end_of_period_keeps_access(self):
        subscription = _subscription()
        ends_at = subscription.ends_at
        subscription.cancel("end_of_period", "Switching plans")
        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.auto_renew is False
        assert subscription.ends_at == ends_at
        assert subscription.is_active()

    def test_scheduled_sets_end_date(self):
        subscription = _subscription()
        scheduled = datetime.now(UTC) + timedelta(days=10)
        subscription.cancel("scheduled", "Project ends", scheduled_at=scheduled)
        assert subscription.ends_at == scheduled
        assert subscription.cancellation_mode == "scheduled"

    def test_scheduled_needs_future_date(self):
        subscription = _subscription()
        with pytest.raises(ValidationError):
            subscription.cancel("scheduled", "Oops", scheduled_at=datetime.now(UTC) - timedelta(days=1))

    def test_cancelled_subscription_cannot_cancel_again(self):
        subscription = _subscription()
        subscription.cancel("immediate", "Done")
        with pytest.raises(StateError):
            subscription.cancel("immediate", "Again")


class TestProration:
    def test_unused_share_is_refunded(self):
        subscription = _subscription(days=30, elapsed=15)
        # just under 15 days remain, counted as 14 whole days
        assert subscription.prorated_refund(30.0) == 14.0

    def test_nothing_after_window(self):
        subscription = _subscription(days=30, elapsed=40)
        assert subscription.prorated_refund(30.0) == 0.0

    def test_end_of_period_cancellation_refunds_nothing(self):
        subscription = _subscription(days=30, elapsed=10)
        assert subscription.cancellation_refund(30.0, "end_of_period") == 0.0

    def test_scheduled_cancellation_refunds_from_new_end_date(self):
        subscription = _subscription(days=30, elapsed=0)
        scheduled = subscription.starts_at + timedelta(days=20)
        assert subscription.cancellation_refund(30.0, "scheduled", scheduled_at=scheduled) == 10.0

    def test_immediate_cancellation_refunds_from_now(self):
        subscription = _subscription(days=30, elapsed=15)
        assert subscription.cancellation_refund(30.0, "immediate") == subscription.prorated_refund(30.0)
