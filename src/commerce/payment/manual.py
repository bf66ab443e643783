"""Manual (offline) payments — submission and review.

A customer who paid by bank transfer or mobile wallet reports the payment
against a pending order. A reviewer then approves it, which runs the same
fulfillment as a verified gateway payment, or rejects it, which cancels the
order.
"""

from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import ConflictError, StateError
from commerce.fulfillment.service import FulfillmentService
from commerce.order.order import Order, OrderPaymentStatus, OrderStatus
from commerce.payment.payment import ManualPaymentMethod, Payment, PaymentKind
from commerce.payment.transaction import unique_transaction_id
from commerce.services import collaborators

logger = structlog.get_logger(__name__)


class ReviewAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


@commerce.command(part_of="Payment")
class SubmitManualPayment:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    method = String(choices=ManualPaymentMethod, required=True)
    sender_account = String(max_length=100)
    reference_number = String(max_length=100)
    note = String(max_length=500)


@commerce.command(part_of="Payment")
class ReviewManualPayment:
    payment_id = Identifier(required=True)
    action = String(choices=ReviewAction, required=True)
    reviewed_by = String(max_length=100, required=True)
    reason = String(max_length=500)


@commerce.command_handler(part_of=Payment)
class ManualPaymentHandler:
    @handle(SubmitManualPayment)
    def submit(self, command):
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)

        order = order_repo.get(command.order_id)
        if str(order.customer_id) != str(command.customer_id):
            raise ValidationError({"order_id": ["Order belongs to another customer"]})
        if order.status != OrderStatus.PENDING.value:
            raise StateError(f"Order {order.id} is {order.status} and cannot be paid")
        if payment_repo.for_order(order.id) is not None:
            raise ConflictError(f"A payment already exists for order {order.id}")

        payment = Payment.create_manual(
            order_id=str(order.id),
            customer_id=command.customer_id,
            amount=order.total,
            currency=order.pricing.currency,
            transaction_id=unique_transaction_id(payment_repo),
            method=command.method,
            sender_account=command.sender_account,
            reference_number=command.reference_number,
            note=command.note,
        )
        order.mirror_payment_status(
            OrderPaymentStatus.PENDING_VERIFICATION.value,
            payment_id=str(payment.id),
            transaction_id=payment.transaction_id,
        )

        order_repo.add(order)
        payment_repo.add(payment)
        logger.info("Manual payment submitted", transaction_id=payment.transaction_id, method=command.method)
        return {"payment_id": str(payment.id), "transaction_id": payment.transaction_id, "status": payment.status}

    @handle(ReviewManualPayment)
    def review(self, command):
        payment_repo = current_domain.repository_for(Payment)
        payment = payment_repo.get(command.payment_id)
        if payment.kind != PaymentKind.MANUAL.value:
            raise StateError("Only manual payments are reviewed")

        if ReviewAction(command.action) is ReviewAction.APPROVE:
            services = collaborators()
            payment.mark_reviewed(command.reviewed_by)
            order = FulfillmentService(services.settings, PaymentKind.MANUAL.value).fulfill(
                payment,
                {"payment_method": payment.manual_details.method},
                actor=command.reviewed_by,
            )
        else:
            if not command.reason:
                raise ValidationError({"reason": ["A reason is required to reject a payment"]})
            order_repo = current_domain.repository_for(Order)
            order = order_repo.get(payment.order_id)
            payment.reject(command.reason, reviewed_by=command.reviewed_by)
            order.cancel(f"Manual payment rejected: {command.reason}", actor=command.reviewed_by)
            order.mirror_payment_status(OrderPaymentStatus.FAILED.value)
            order_repo.add(order)
            payment_repo.add(payment)

        logger.info(
            "Manual payment reviewed",
            transaction_id=payment.transaction_id,
            action=command.action,
            reviewed_by=command.reviewed_by,
        )
        return {"payment_id": str(payment.id), "status": payment.status, "order_status": order.status}
