"""Domain events for refund requests and cancellations."""

from protean.fields import Boolean, DateTime, Float, Identifier, String

from commerce.domain import commerce


@commerce.event(part_of="RefundRequest")
class RefundRequested:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    refund_type = String(required=True)
    amount = Float(required=True)
    status = String(required=True)
    requested_at = DateTime(required=True)


@commerce.event(part_of="RefundRequest")
class RefundApproved:
    """A refund may now be executed. ``auto_execute`` requests run without an operator."""

    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    amount = Float(required=True)
    reviewed_by = String()
    auto_execute = Boolean(default=False)
    approved_at = DateTime(required=True)


@commerce.event(part_of="RefundRequest")
class RefundRejected:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    reason = String(required=True)
    reviewed_by = String()
    rejected_at = DateTime(required=True)


@commerce.event(part_of="RefundRequest")
class RefundCompleted:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    amount = Float(required=True)
    gateway_refund_id = String()
    completed_at = DateTime(required=True)


@commerce.event(part_of="RefundRequest")
class RefundFailed:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)


@commerce.event(part_of="RefundRequest")
class RefundReconciliationRequired:
    """The gateway did not answer; the refund may or may not have happened."""

    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(required=True)
    flagged_at = DateTime(required=True)


@commerce.event(part_of="Cancellation")
class CancellationRequested:
    __version__ = 1

    cancellation_id = Identifier(required=True)
    target = String(required=True)
    target_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    cancellation_type = String(required=True)
    refund_eligible = Boolean(default=False)
    refund_amount = Float(default=0.0)
    requested_at = DateTime(required=True)


@commerce.event(part_of="Cancellation")
class CancellationProcessed:
    __version__ = 1

    cancellation_id = Identifier(required=True)
    target = String(required=True)
    target_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    refund_request_id = Identifier()
    processed_by = String()
    processed_at = DateTime(required=True)


@commerce.event(part_of="Cancellation")
class CancellationRejected:
    __version__ = 1

    cancellation_id = Identifier(required=True)
    target = String(required=True)
    target_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    reason = String(required=True)
    rejected_at = DateTime(required=True)
