"""Domain events for the Subscription aggregate."""

from protean.fields import DateTime, Identifier, String

from commerce.domain import commerce


@commerce.event(part_of="Subscription")
class SubscriptionStarted:
    __version__ = 1

    subscription_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    plan_id = Identifier(required=True)
    order_id = Identifier(required=True)
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)


@commerce.event(part_of="Subscription")
class SubscriptionCancellationApplied:
    __version__ = 1

    subscription_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    mode = String(required=True)
    ends_at = DateTime(required=True)
    applied_at = DateTime(required=True)
