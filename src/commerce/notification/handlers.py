"""Customer notifications for payment, refund and cancellation outcomes.

Handlers run after the originating unit of work has committed. A notifier
failure is logged and dropped; it never reaches the caller.
"""

import structlog
from protean import handle

from commerce.domain import commerce
from commerce.payment.events import PaymentCompleted, PaymentFailed
from commerce.payment.payment import Payment
from commerce.refund.cancellation import Cancellation
from commerce.refund.events import (
    CancellationProcessed,
    CancellationRejected,
    RefundCompleted,
    RefundFailed,
    RefundRejected,
)
from commerce.refund.refund_request import RefundRequest
from commerce.services import collaborators

logger = structlog.get_logger(__name__)


def send(user_id: str, event_type: str, payload: dict) -> None:
    try:
        result = collaborators().notifier.notify(user_id, event_type, payload)
    except Exception as exc:
        logger.error("Notification failed", user_id=user_id, event_type=event_type, error=str(exc))
        return
    if result.get("status") != "sent":
        logger.warning(
            "Notification not delivered",
            user_id=user_id,
            event_type=event_type,
            error=result.get("error"),
        )


@commerce.event_handler(part_of=Payment)
class PaymentNotifications:
    @handle(PaymentCompleted)
    def on_payment_completed(self, event: PaymentCompleted) -> None:
        send(
            str(event.customer_id),
            "payment_completed",
            {
                "order_id": str(event.order_id),
                "transaction_id": event.transaction_id,
                "amount": event.amount,
                "currency": event.currency,
            },
        )

    @handle(PaymentFailed)
    def on_payment_failed(self, event: PaymentFailed) -> None:
        send(
            str(event.customer_id),
            "payment_failed",
            {"order_id": str(event.order_id), "transaction_id": event.transaction_id, "reason": event.reason},
        )


@commerce.event_handler(part_of=RefundRequest)
class RefundNotifications:
    @handle(RefundCompleted)
    def on_refund_completed(self, event: RefundCompleted) -> None:
        send(
            str(event.customer_id),
            "refund_completed",
            {"refund_id": str(event.refund_id), "order_id": str(event.order_id), "amount": event.amount},
        )

    @handle(RefundRejected)
    def on_refund_rejected(self, event: RefundRejected) -> None:
        send(
            str(event.customer_id),
            "refund_rejected",
            {"refund_id": str(event.refund_id), "order_id": str(event.order_id), "reason": event.reason},
        )

    @handle(RefundFailed)
    def on_refund_failed(self, event: RefundFailed) -> None:
        send(
            str(event.customer_id),
            "refund_failed",
            {"refund_id": str(event.refund_id), "order_id": str(event.order_id), "reason": event.reason},
        )


@commerce.event_handler(part_of=Cancellation)
class CancellationNotifications:
    @handle(CancellationProcessed)
    def on_cancellation_processed(self, event: CancellationProcessed) -> None:
        send(
            str(event.customer_id),
            "cancellation_processed",
            {
                "cancellation_id": str(event.cancellation_id),
                "target": event.target,
                "target_id": str(event.target_id),
                "refund_request_id": event.refund_request_id,
            },
        )

    @handle(CancellationRejected)
    def on_cancellation_rejected(self, event: CancellationRejected) -> None:
        send(
            str(event.customer_id),
            "cancellation_rejected",
            {"cancellation_id": str(event.cancellation_id), "reason": event.reason},
        )
