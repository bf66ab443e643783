"""Subscription access grant, embedded on the Payment that bought it."""

from protean.fields import DateTime, Identifier

from commerce.domain import commerce


@commerce.entity(part_of="Payment")
class SubscriptionAccess:
    plan_id = Identifier(required=True)
    subscription_id = Identifier(required=True)
    starts_at = DateTime(required=True)
    ends_at = DateTime(required=True)
