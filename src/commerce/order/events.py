"""Domain events for the Order aggregate.

OrderCreated, OrderPaid and OrderStatusChanged also feed the automation
rules (order_created, payment_received and status_changed triggers).
"""

from protean.fields import DateTime, Float, Identifier, Integer, String

from commerce.domain import commerce


@commerce.event(part_of="Order")
class OrderCreated:
    """An order snapshot was taken at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    total = Float(required=True)
    currency = String(required=True)
    line_count = Integer(required=True)
    created_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderPaid:
    """The order's payment was verified and fulfillment ran."""

    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    status = String(required=True)
    paid_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderStatusChanged:
    """The order moved to a new status; mirrors one status history entry."""

    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    note = String()
    actor = String()
    changed_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderPriorityChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_priority = String(required=True)
    new_priority = String(required=True)
    changed_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderTrackingAssigned:
    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    tracking_number = String(required=True)
    carrier = String()
    assigned_at = DateTime(required=True)


@commerce.event(part_of="Order")
class DownloadLinkIssued:
    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    product_id = Identifier(required=True)
    max_downloads = Integer(required=True)
    expires_at = DateTime(required=True)


@commerce.event(part_of="Order")
class LicenseKeyIssued:
    __version__ = 1

    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    product_id = Identifier(required=True)
    license_key = String(required=True)
    max_activations = Integer(required=True)
    expires_at = DateTime(required=True)
