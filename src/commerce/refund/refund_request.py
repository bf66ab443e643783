"""RefundRequest aggregate (CQRS).

State Machine:
    PENDING → APPROVED | REJECTED
    APPROVED → PROCESSING → COMPLETED | FAILED
    PROCESSING → RECONCILING → COMPLETED | FAILED

RECONCILING means the gateway was asked to refund and did not answer; the
request is re-submitted later under the same idempotency key, so the money
moves at most once.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String, Text

from commerce.domain import commerce
from commerce.errors import StateError
from commerce.refund.events import (
    RefundApproved,
    RefundCompleted,
    RefundFailed,
    RefundReconciliationRequired,
    RefundRejected,
    RefundRequested,
)


class RefundStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RECONCILING = "reconciling"


class RefundType(Enum):
    FULL = "full"
    PARTIAL = "partial"


class RefundMethod(Enum):
    ORIGINAL_PAYMENT = "original_payment"
    BANK_TRANSFER = "bank_transfer"
    STORE_CREDIT = "store_credit"
    OTHER = "other"


_VALID_TRANSITIONS = {
    RefundStatus.PENDING: {RefundStatus.APPROVED, RefundStatus.REJECTED},
    RefundStatus.APPROVED: {RefundStatus.PROCESSING},
    RefundStatus.PROCESSING: {RefundStatus.COMPLETED, RefundStatus.FAILED, RefundStatus.RECONCILING},
    RefundStatus.RECONCILING: {RefundStatus.COMPLETED, RefundStatus.FAILED},
    RefundStatus.REJECTED: set(),
    RefundStatus.COMPLETED: set(),
    RefundStatus.FAILED: set(),
}

# A request in one of these blocks any new request for the same order
OPEN_STATUSES = {RefundStatus.PENDING, RefundStatus.APPROVED, RefundStatus.PROCESSING, RefundStatus.RECONCILING}


@commerce.entity(part_of="RefundRequest")
class RefundLine:
    ref = Identifier(required=True)
    line_type = String(max_length=20, required=True)
    category = String(max_length=20, required=True)
    title = String(max_length=255)
    quantity = Integer(min_value=1, default=1)
    amount = Float(required=True, min_value=0.0)


@commerce.aggregate
class RefundRequest:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    payment_id = Identifier(required=True)
    refund_type = String(choices=RefundType, required=True)
    amount = Float(required=True)
    reason = String(max_length=1000, required=True)
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    lines = HasMany(RefundLine)
    refund_method = String(choices=RefundMethod, default=RefundMethod.ORIGINAL_PAYMENT.value)

    gateway_refund_id = String(max_length=255)
    gateway_response = Text()  # JSON
    rejection_reason = String(max_length=1000)
    failure_reason = String(max_length=1000)
    cancellation_id = Identifier()
    auto_execute = Boolean(default=False)

    reviewed_by = String(max_length=100)
    reviewed_at = DateTime()
    processed_at = DateTime()
    completed_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def amount_is_positive(self):
        if self.amount is not None and self.amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be greater than zero"]})

    @classmethod
    def open(
        cls,
        order_id,
        customer_id,
        payment_id,
        refund_type,
        amount,
        reason,
        lines,
        approved=False,
        refund_method=RefundMethod.ORIGINAL_PAYMENT.value,
        cancellation_id=None,
        auto_execute=False,
        approved_by=None,
    ):
        now = datetime.now(UTC)
        status = RefundStatus.APPROVED if approved else RefundStatus.PENDING
        request = cls(
            order_id=order_id,
            customer_id=customer_id,
            payment_id=payment_id,
            refund_type=refund_type,
            amount=round(amount, 2),
            reason=reason,
            status=status.value,
            refund_method=refund_method or RefundMethod.ORIGINAL_PAYMENT.value,
            cancellation_id=cancellation_id,
            auto_execute=auto_execute,
            reviewed_by=approved_by if approved else None,
            reviewed_at=now if approved and approved_by else None,
            created_at=now,
            updated_at=now,
        )
        for line in lines:
            request.add_lines(RefundLine(**line))

        request.raise_(
            RefundRequested(
                refund_id=str(request.id),
                order_id=str(order_id),
                customer_id=str(customer_id),
                refund_type=refund_type,
                amount=request.amount,
                status=status.value,
                requested_at=now,
            )
        )
        if approved:
            request._raise_approved(approved_by, now)
        return request

    @property
    def is_open(self) -> bool:
        return RefundStatus(self.status) in OPEN_STATUSES

    @property
    def idempotency_key(self) -> str:
        return str(self.id)

    def _assert_can_transition(self, target: RefundStatus) -> None:
        current = RefundStatus(self.status)
        if target not in _VALID_TRANSITIONS[current]:
            raise StateError(f"Cannot move refund request from {current.value} to {target.value}")

    def _raise_approved(self, reviewed_by, now):
        self.raise_(
            RefundApproved(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                amount=self.amount,
                reviewed_by=reviewed_by,
                auto_execute=self.auto_execute,
                approved_at=now,
            )
        )

    def approve(self, reviewed_by):
        self._assert_can_transition(RefundStatus.APPROVED)
        now = datetime.now(UTC)
        self.status = RefundStatus.APPROVED.value
        self.reviewed_by = reviewed_by
        self.reviewed_at = now
        self.updated_at = now
        self._raise_approved(reviewed_by, now)

    def reject(self, reason, reviewed_by):
        if not reason:
            raise ValidationError({"reason": ["A reason is required to reject a refund"]})
        self._assert_can_transition(RefundStatus.REJECTED)
        now = datetime.now(UTC)
        self.status = RefundStatus.REJECTED.value
        self.rejection_reason = reason
        self.reviewed_by = reviewed_by
        self.reviewed_at = now
        self.updated_at = now
        self.raise_(
            RefundRejected(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                reason=reason,
                reviewed_by=reviewed_by,
                rejected_at=now,
            )
        )

    def start_processing(self):
        self._assert_can_transition(RefundStatus.PROCESSING)
        now = datetime.now(UTC)
        self.status = RefundStatus.PROCESSING.value
        self.processed_at = now
        self.updated_at = now

    def complete(self, gateway_refund_id, gateway_response=None):
        self._assert_can_transition(RefundStatus.COMPLETED)
        now = datetime.now(UTC)
        self.status = RefundStatus.COMPLETED.value
        self.gateway_refund_id = gateway_refund_id
        self.gateway_response = json.dumps(gateway_response or {}, default=str)
        self.failure_reason = None
        self.completed_at = now
        self.updated_at = now
        self.raise_(
            RefundCompleted(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                payment_id=str(self.payment_id),
                amount=self.amount,
                gateway_refund_id=gateway_refund_id,
                completed_at=now,
            )
        )

    def fail(self, reason, gateway_response=None):
        self._assert_can_transition(RefundStatus.FAILED)
        now = datetime.now(UTC)
        self.status = RefundStatus.FAILED.value
        self.failure_reason = reason
        if gateway_response:
            self.gateway_response = json.dumps(gateway_response, default=str)
        self.updated_at = now
        self.raise_(
            RefundFailed(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                amount=self.amount,
                reason=reason,
                failed_at=now,
            )
        )

    def await_reconciliation(self, reason):
        self._assert_can_transition(RefundStatus.RECONCILING)
        now = datetime.now(UTC)
        self.status = RefundStatus.RECONCILING.value
        self.failure_reason = reason
        self.updated_at = now
        self.raise_(
            RefundReconciliationRequired(
                refund_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount,
                reason=reason,
                flagged_at=now,
            )
        )


@commerce.repository(part_of=RefundRequest)
class RefundRequestRepository:
    def for_order(self, order_id) -> list[RefundRequest]:
        return self._dao.query.filter(order_id=str(order_id)).all().items

    def open_for_order(self, order_id) -> RefundRequest | None:
        return next((request for request in self.for_order(order_id) if request.is_open), None)

    def reconciling(self) -> list[RefundRequest]:
        return self._dao.query.filter(status=RefundStatus.RECONCILING.value).all().items
