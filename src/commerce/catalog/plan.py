"""SubscriptionPlan aggregate (CQRS) — price, billing cycle and subscriber counters."""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Float, Integer, String

from commerce.domain import commerce


class BillingCycle(Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


@commerce.aggregate
class SubscriptionPlan:
    name = String(max_length=255, required=True)
    price = Float(required=True, min_value=0.0)
    billing_cycle = String(choices=BillingCycle, default=BillingCycle.MONTHLY.value)
    is_active = Boolean(default=True)

    total_subscribers = Integer(default=0)
    revenue = Float(default=0.0)

    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, name, price, billing_cycle=BillingCycle.MONTHLY.value, is_active=True):
        now = datetime.now(UTC)
        return cls(
            name=name,
            price=price,
            billing_cycle=billing_cycle,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )

    def unavailability_reason(self, quantity: int) -> str | None:  # noqa: ARG002
        if not self.is_active:
            return f"Subscription plan '{self.name}' is not available"
        return None

    def record_subscription(self, quantity: int, amount: float) -> None:
        self.total_subscribers = (self.total_subscribers or 0) + quantity
        self.revenue = round((self.revenue or 0.0) + amount, 2)
        self.updated_at = datetime.now(UTC)
