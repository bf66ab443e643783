"""Subscription aggregate (CQRS) — a customer's running access to a plan.

Created by fulfillment for each subscription line, one per
(transaction, plan). Cancellation has three modes:

    immediate      access ends now, subscription deactivated
    end_of_period  auto-renew off, access kept until the current end date
    scheduled      auto-renew off, access ends on a chosen future date
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, String

from commerce.domain import commerce
from commerce.entitlement.events import SubscriptionCancellationApplied, SubscriptionStarted
from commerce.errors import StateError


class SubscriptionStatus(Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CancellationMode(Enum):
    IMMEDIATE = "immediate"
    END_OF_PERIOD = "end_of_period"
    SCHEDULED = "scheduled"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@commerce.aggregate
class Subscription:
    customer_id = Identifier(required=True)
    plan_id = Identifier(required=True)
    order_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    transaction_id = String(max_length=64, required=True)
    status = String(choices=SubscriptionStatus, default=SubscriptionStatus.ACTIVE.value)
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)
    auto_renew = Boolean(default=True)
    cancellation_mode = String(choices=CancellationMode)
    cancellation_reason = String(max_length=500)
    cancelled_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def start(cls, customer_id, plan_id, order_id, payment_id, transaction_id, starts_at, ends_at):
        now = datetime.now(UTC)
        subscription = cls(
            customer_id=customer_id,
            plan_id=plan_id,
            order_id=order_id,
            payment_id=payment_id,
            transaction_id=transaction_id,
            status=SubscriptionStatus.ACTIVE.value,
            starts_at=starts_at,
            ends_at=ends_at,
            auto_renew=True,
            created_at=now,
            updated_at=now,
        )
        subscription.raise_(
            SubscriptionStarted(
                subscription_id=str(subscription.id),
                customer_id=str(customer_id),
                plan_id=str(plan_id),
                order_id=str(order_id),
                starts_at=starts_at,
                ends_at=ends_at,
            )
        )
        return subscription

    def is_active(self, now=None) -> bool:
        now = now or datetime.now(UTC)
        return self.status == SubscriptionStatus.ACTIVE.value and _aware(now) <= _aware(self.ends_at)

    def reset_window(self, starts_at, ends_at):
        self.starts_at = starts_at
        self.ends_at = ends_at
        self.updated_at = datetime.now(UTC)

    def prorated_refund(self, price: float, now=None) -> float:
        """Share of ``price`` covering the days left in the current window."""
        now = _aware(now or datetime.now(UTC))
        starts_at, ends_at = _aware(self.starts_at), _aware(self.ends_at)
        total_days = max(1, (ends_at - starts_at).days)
        remaining_days = max(0, (ends_at - now).days)
        return round(price * min(remaining_days, total_days) / total_days, 2)

    def cancellation_refund(self, price: float, mode, scheduled_at=None, now=None) -> float:
        """Prorated refund for access given up by a cancellation in ``mode``.

        Access ends now for ``immediate`` and at ``scheduled_at`` for
        ``scheduled``; ``end_of_period`` gives nothing up and refunds nothing.
        """
        mode = CancellationMode(mode)
        if mode is CancellationMode.END_OF_PERIOD:
            return 0.0
        if mode is CancellationMode.SCHEDULED:
            return self.prorated_refund(price, now=scheduled_at)
        return self.prorated_refund(price, now=now)

    def _assert_active(self):
        if self.status != SubscriptionStatus.ACTIVE.value:
            raise StateError(f"Subscription is {self.status}")

    def cancel(self, mode, reason, scheduled_at=None, now=None):
        """Apply a cancellation in one of the three modes."""
        self._assert_active()
        mode = CancellationMode(mode)
        now = now or datetime.now(UTC)

        # end_of_period keeps the current end date; only renewal stops
        if mode is CancellationMode.IMMEDIATE:
            self.status = SubscriptionStatus.CANCELLED.value
            self.ends_at = now
        elif mode is CancellationMode.SCHEDULED:
            if scheduled_at is None or _aware(scheduled_at) <= _aware(now):
                raise ValidationError({"scheduled_date": ["Scheduled cancellation needs a future date"]})
            self.ends_at = scheduled_at

        self.auto_renew = False
        self.cancellation_mode = mode.value
        self.cancellation_reason = reason
        self.cancelled_at = now
        self.updated_at = now

        self.raise_(
            SubscriptionCancellationApplied(
                subscription_id=str(self.id),
                customer_id=str(self.customer_id),
                mode=mode.value,
                ends_at=self.ends_at,
                applied_at=now,
            )
        )


@commerce.repository(part_of=Subscription)
class SubscriptionRepository:
    def for_purchase(self, transaction_id: str, plan_id: str) -> Subscription | None:
        matches = self._dao.query.filter(transaction_id=transaction_id, plan_id=str(plan_id)).all().items
        return matches[0] if matches else None
