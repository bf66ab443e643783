"""Cancellations of orders and subscriptions.

A customer requests a cancellation; an operator approves or rejects it.
Approval applies the cancellation immediately and, when the customer had
paid, opens an approved refund request linked to the cancellation, all in
the same unit of work.

State Machine:
    REQUESTED → APPROVED → PROCESSED
    REQUESTED → REJECTED
"""

from datetime import UTC, datetime
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.entitlement.subscription import CancellationMode, Subscription
from commerce.errors import ConflictError, StateError
from commerce.order.order import Order
from commerce.payment.payment import Payment
from commerce.refund.events import CancellationProcessed, CancellationRejected, CancellationRequested
from commerce.refund.refund_request import RefundRequest, RefundType
from commerce.refund.requests import open_refund_request

logger = structlog.get_logger(__name__)


class CancellationTarget(Enum):
    ORDER = "order"
    SUBSCRIPTION = "subscription"


class CancellationStatus(Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"


class ReviewAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@commerce.aggregate
class Cancellation:
    target = String(choices=CancellationTarget, required=True)
    target_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    reason = String(max_length=1000, required=True)
    status = String(choices=CancellationStatus, default=CancellationStatus.REQUESTED.value)
    cancellation_type = String(choices=CancellationMode, default=CancellationMode.IMMEDIATE.value)
    scheduled_date = DateTime()
    refund_eligible = Boolean(default=False)
    refund_amount = Float(default=0.0, min_value=0.0)
    refund_request_id = Identifier()
    rejection_reason = String(max_length=1000)
    reviewed_by = String(max_length=100)
    requested_at = DateTime()
    processed_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def request(
        cls,
        target,
        target_id,
        customer_id,
        reason,
        cancellation_type=CancellationMode.IMMEDIATE.value,
        scheduled_date=None,
        refund_eligible=False,
        refund_amount=0.0,
    ):
        now = datetime.now(UTC)
        cancellation = cls(
            target=target,
            target_id=target_id,
            customer_id=customer_id,
            reason=reason,
            status=CancellationStatus.REQUESTED.value,
            cancellation_type=cancellation_type,
            scheduled_date=scheduled_date,
            refund_eligible=refund_eligible,
            refund_amount=round(refund_amount, 2) if refund_eligible else 0.0,
            requested_at=now,
            updated_at=now,
        )
        cancellation.raise_(
            CancellationRequested(
                cancellation_id=str(cancellation.id),
                target=target,
                target_id=str(target_id),
                customer_id=str(customer_id),
                cancellation_type=cancellation_type,
                refund_eligible=refund_eligible,
                refund_amount=cancellation.refund_amount,
                requested_at=now,
            )
        )
        return cancellation

    def _assert_requested(self):
        if self.status != CancellationStatus.REQUESTED.value:
            raise StateError(f"Cancellation is already {self.status}")

    def approve(self, reviewed_by):
        self._assert_requested()
        self.status = CancellationStatus.APPROVED.value
        self.reviewed_by = reviewed_by
        self.updated_at = datetime.now(UTC)

    def mark_processed(self, refund_request_id=None, refund_amount=None):
        if self.status != CancellationStatus.APPROVED.value:
            raise StateError(f"Only approved cancellations can be processed, cancellation is {self.status}")
        now = datetime.now(UTC)
        self.status = CancellationStatus.PROCESSED.value
        self.refund_request_id = refund_request_id
        if refund_amount is not None:
            self.refund_amount = refund_amount
        self.processed_at = now
        self.updated_at = now
        self.raise_(
            CancellationProcessed(
                cancellation_id=str(self.id),
                target=self.target,
                target_id=str(self.target_id),
                customer_id=str(self.customer_id),
                refund_request_id=refund_request_id,
                processed_by=self.reviewed_by,
                processed_at=now,
            )
        )

    def reject(self, reason, reviewed_by):
        if not reason:
            raise ValidationError({"reason": ["A reason is required to reject a cancellation"]})
        self._assert_requested()
        now = datetime.now(UTC)
        self.status = CancellationStatus.REJECTED.value
        self.rejection_reason = reason
        self.reviewed_by = reviewed_by
        self.updated_at = now
        self.raise_(
            CancellationRejected(
                cancellation_id=str(self.id),
                target=self.target,
                target_id=str(self.target_id),
                customer_id=str(self.customer_id),
                reason=reason,
                rejected_at=now,
            )
        )


@commerce.repository(part_of=Cancellation)
class CancellationRepository:
    def open_for(self, target_id) -> Cancellation | None:
        matches = (
            self._dao.query.filter(target_id=str(target_id), status=CancellationStatus.REQUESTED.value).all().items
        )
        return matches[0] if matches else None


@commerce.command(part_of="Cancellation")
class RequestCancellation:
    target = String(choices=CancellationTarget, required=True)
    target_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    reason = String(max_length=1000, required=True)
    cancellation_type = String(choices=CancellationMode, default=CancellationMode.IMMEDIATE.value)
    scheduled_date = DateTime()


@commerce.command(part_of="Cancellation")
class ReviewCancellation:
    cancellation_id = Identifier(required=True)
    action = String(choices=ReviewAction, required=True)
    reviewed_by = String(max_length=100, required=True)
    reason = String(max_length=1000)


def _paid_payment(order):
    if not order.is_paid or not order.payment_id:
        return None
    return current_domain.repository_for(Payment).get(order.payment_id)


def _subscription_refund(subscription, mode, scheduled_at=None) -> tuple[bool, float]:
    """Prorated refund for the part of the window the cancellation takes away."""
    order = current_domain.repository_for(Order).get(subscription.order_id)
    payment = _paid_payment(order)
    line = next((line for line in order.lines if str(line.plan_id) == str(subscription.plan_id)), None)
    if payment is None or line is None or payment.refundable_amount <= 0:
        return False, 0.0
    amount = min(subscription.cancellation_refund(line.unit_price, mode, scheduled_at), payment.refundable_amount)
    return amount > 0, amount


@commerce.command_handler(part_of=Cancellation)
class CancellationHandler:
    @handle(RequestCancellation)
    def request_cancellation(self, command):
        repo = current_domain.repository_for(Cancellation)
        if repo.open_for(command.target_id) is not None:
            raise ConflictError(f"A cancellation request for {command.target_id} is already open")

        mode = CancellationMode(command.cancellation_type or CancellationMode.IMMEDIATE.value)
        target = CancellationTarget(command.target)

        if target is CancellationTarget.ORDER:
            order = current_domain.repository_for(Order).get(command.target_id)
            if str(order.customer_id) != str(command.customer_id):
                raise ObjectNotFoundError(f"Order {command.target_id} does not exist")
            if order.is_terminal:
                raise StateError(f"Cannot cancel an order that is {order.status}")
            payment = _paid_payment(order)
            refund_eligible = payment is not None and payment.refundable_amount > 0
            refund_amount = payment.refundable_amount if refund_eligible else 0.0
        else:
            subscription = current_domain.repository_for(Subscription).get(command.target_id)
            if str(subscription.customer_id) != str(command.customer_id):
                raise ObjectNotFoundError(f"Subscription {command.target_id} does not exist")
            if not subscription.is_active():
                raise StateError(f"Subscription is {subscription.status} and cannot be cancelled")
            if mode is CancellationMode.SCHEDULED and (
                command.scheduled_date is None or _aware(command.scheduled_date) <= datetime.now(UTC)
            ):
                raise ValidationError({"scheduled_date": ["Scheduled cancellation needs a future date"]})
            refund_eligible, refund_amount = _subscription_refund(subscription, mode, command.scheduled_date)

        cancellation = Cancellation.request(
            target=target.value,
            target_id=command.target_id,
            customer_id=command.customer_id,
            reason=command.reason,
            cancellation_type=mode.value,
            scheduled_date=command.scheduled_date,
            refund_eligible=refund_eligible,
            refund_amount=refund_amount,
        )
        repo.add(cancellation)
        logger.info(
            "Cancellation requested",
            cancellation_id=str(cancellation.id),
            target=target.value,
            target_id=command.target_id,
            refund_eligible=refund_eligible,
        )
        return {
            "cancellation_id": str(cancellation.id),
            "status": cancellation.status,
            "refund_eligible": cancellation.refund_eligible,
            "refund_amount": cancellation.refund_amount,
        }

    @handle(ReviewCancellation)
    def review_cancellation(self, command):
        repo = current_domain.repository_for(Cancellation)
        cancellation = repo.get(command.cancellation_id)

        if ReviewAction(command.action) is ReviewAction.REJECT:
            cancellation.reject(command.reason, command.reviewed_by)
            repo.add(cancellation)
            return {"cancellation_id": str(cancellation.id), "status": cancellation.status}

        cancellation.approve(command.reviewed_by)
        if cancellation.target == CancellationTarget.ORDER.value:
            refund = self._cancel_order(cancellation, command.reviewed_by)
        else:
            refund = self._cancel_subscription(cancellation, command.reviewed_by)

        if refund is not None:
            current_domain.repository_for(RefundRequest).add(refund)
        cancellation.mark_processed(
            refund_request_id=str(refund.id) if refund else None,
            refund_amount=refund.amount if refund else None,
        )
        repo.add(cancellation)

        logger.info(
            "Cancellation processed",
            cancellation_id=str(cancellation.id),
            target=cancellation.target,
            refund_request_id=cancellation.refund_request_id,
        )
        return {
            "cancellation_id": str(cancellation.id),
            "status": cancellation.status,
            "refund_request_id": cancellation.refund_request_id,
        }

    @staticmethod
    def _cancel_order(cancellation, reviewed_by):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(cancellation.target_id)
        order.cancel(f"Cancelled: {cancellation.reason}", actor=reviewed_by)
        order_repo.add(order)

        if not cancellation.refund_eligible:
            return None
        return open_refund_request(
            order,
            RefundType.FULL.value,
            f"Order cancelled: {cancellation.reason}",
            approved_by=reviewed_by,
            cancellation_id=str(cancellation.id),
        )

    @staticmethod
    def _cancel_subscription(cancellation, reviewed_by):
        subscription_repo = current_domain.repository_for(Subscription)
        subscription = subscription_repo.get(cancellation.target_id)
        subscription.cancel(cancellation.cancellation_type, cancellation.reason, cancellation.scheduled_date)
        subscription_repo.add(subscription)

        if not cancellation.refund_eligible:
            return None
        order = current_domain.repository_for(Order).get(subscription.order_id)
        return open_refund_request(
            order,
            RefundType.PARTIAL.value,
            f"Subscription cancelled: {cancellation.reason}",
            items=[{"ref": str(subscription.plan_id), "amount": cancellation.refund_amount}],
            approved_by=reviewed_by,
            cancellation_id=str(cancellation.id),
        )
