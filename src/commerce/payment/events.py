"""Domain events for the Payment aggregate.

PaymentCompleted is the fact the rest of the system reacts to after
fulfillment commits (notifications); the fulfillment writes themselves run
in the same unit of work as the completion.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, String

from commerce.domain import commerce


@commerce.event(part_of="Payment")
class PaymentInitiated:
    """A payment was created for an order."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    kind = String(required=True)
    initiated_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentSessionOpened:
    """The gateway returned a hosted checkout session."""

    __version__ = 1

    payment_id = Identifier(required=True)
    transaction_id = String(required=True)
    session_id = String(required=True)
    gateway_url = String(required=True)
    expires_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentCompleted:
    """The gateway (or a reviewer, for manual payments) confirmed the money."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    provider_txn_id = String()
    completed_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentFailed:
    """The gateway definitively rejected the payment."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    reason = String(required=True)
    failed_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentCancelled:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentRejected:
    """A manual payment was rejected by a reviewer."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    reason = String(required=True)
    reviewed_by = String()
    rejected_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentReconciliationRequired:
    """The gateway outcome is unknown (timeout or unreachable gateway)."""

    __version__ = 1

    payment_id = Identifier(required=True)
    transaction_id = String(required=True)
    reason = String(required=True)
    flagged_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentRetried:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    previous_transaction_id = String(required=True)
    transaction_id = String(required=True)
    retried_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class ManualPaymentSubmitted:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    method = String(required=True)
    reference_number = String()
    submitted_at = DateTime(required=True)


@commerce.event(part_of="Payment")
class PaymentRefunded:
    """Money went back to the customer; cumulative amounts included."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    transaction_id = String(required=True)
    amount = Float(required=True)
    total_refunded = Float(required=True)
    fully_refunded = Boolean(required=True)
    refunded_at = DateTime(required=True)
