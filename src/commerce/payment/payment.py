"""Payment aggregate (CQRS) — one payment per order, keyed by transaction id.

The transaction id is generated at checkout and is the key every gateway
callback carries. Completion is guarded twice: ``complete()`` refuses any
status other than pending, and the repository's optimistic version check
rejects a second writer that read the payment while it was still pending.

State Machine:
    PENDING → COMPLETED | FAILED | CANCELLED
    FAILED / CANCELLED → PENDING (retry with a new transaction id)
    PENDING_VERIFICATION → COMPLETED | REJECTED (manual payments)
    COMPLETED → PARTIALLY_REFUNDED → REFUNDED
    COMPLETED → REFUNDED
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, String, Text, ValueObject

from commerce.domain import commerce
from commerce.entitlement.subscription_access import SubscriptionAccess
from commerce.errors import StateError
from commerce.payment.events import (
    ManualPaymentSubmitted,
    PaymentCancelled,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentReconciliationRequired,
    PaymentRefunded,
    PaymentRejected,
    PaymentRetried,
    PaymentSessionOpened,
)

# Sub-cent remainders count as fully refunded
_REFUND_TOLERANCE = 0.005


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class PaymentKind(Enum):
    GATEWAY = "gateway"
    MANUAL = "manual"


class ManualPaymentMethod(Enum):
    BANK_TRANSFER = "bank_transfer"
    BKASH = "bkash"
    NAGAD = "nagad"
    ROCKET = "rocket"
    UPAY = "upay"
    OTHER = "other"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.PENDING_VERIFICATION: {PaymentStatus.COMPLETED, PaymentStatus.REJECTED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},  # retry
    PaymentStatus.CANCELLED: {PaymentStatus.PENDING},  # retry
    PaymentStatus.COMPLETED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.REJECTED: set(),  # Terminal
    PaymentStatus.REFUNDED: set(),  # Terminal
}

# Statuses reached only after the money was captured
CAPTURED_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@commerce.value_object(part_of="Payment")
class GatewaySession:
    """Hosted checkout session returned by the gateway."""

    session_id = String(max_length=255)
    gateway_url = String(max_length=1000)
    provider_txn_id = String(max_length=255)
    expires_at = DateTime()


@commerce.value_object(part_of="Payment")
class GatewayInfo:
    """Provider metadata captured when the payment was verified."""

    gateway_name = String(max_length=50)
    provider_txn_id = String(max_length=255)
    payment_method = String(max_length=50)
    card_type = String(max_length=50)
    bank_transaction_id = String(max_length=255)
    validated_at = DateTime()


@commerce.value_object(part_of="Payment")
class ManualPaymentDetails:
    """What the customer reported for an offline payment."""

    method = String(choices=ManualPaymentMethod, required=True)
    sender_account = String(max_length=100)
    reference_number = String(max_length=100)
    note = String(max_length=500)
    reviewed_by = String(max_length=100)
    reviewed_at = DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@commerce.aggregate
class Payment:
    transaction_id = String(max_length=64, required=True, unique=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    kind = String(choices=PaymentKind, default=PaymentKind.GATEWAY.value)
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)

    session = ValueObject(GatewaySession)
    gateway_info = ValueObject(GatewayInfo)
    manual_details = ValueObject(ManualPaymentDetails)

    refund_amount = Float(default=0.0, min_value=0.0)
    failure_reason = String(max_length=500)

    # Outcome-unknown bookkeeping
    needs_reconciliation = Boolean(default=False)
    reconciliation_reason = String(max_length=500)
    last_verification_payload = Text()  # JSON

    previous_transaction_ids = Text()  # JSON array, filled on retry
    subscription_access = HasMany(SubscriptionAccess)

    completed_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def refunds_never_exceed_amount(self):
        if (self.refund_amount or 0.0) - (self.amount or 0.0) > _REFUND_TOLERANCE:
            raise ValidationError({"refund_amount": ["Refunded amount cannot exceed the payment amount"]})

    # -------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, order_id, customer_id, amount, currency, transaction_id):
        """Create a pending gateway payment."""
        now = datetime.now(UTC)
        payment = cls(
            transaction_id=transaction_id,
            order_id=order_id,
            customer_id=customer_id,
            amount=amount,
            currency=currency or "USD",
            kind=PaymentKind.GATEWAY.value,
            status=PaymentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=str(order_id),
                customer_id=str(customer_id),
                transaction_id=transaction_id,
                amount=amount,
                currency=payment.currency,
                kind=PaymentKind.GATEWAY.value,
                initiated_at=now,
            )
        )
        return payment

    @classmethod
    def create_manual(
        cls,
        order_id,
        customer_id,
        amount,
        currency,
        transaction_id,
        method,
        sender_account=None,
        reference_number=None,
        note=None,
    ):
        """Record an offline payment awaiting review."""
        now = datetime.now(UTC)
        payment = cls(
            transaction_id=transaction_id,
            order_id=order_id,
            customer_id=customer_id,
            amount=amount,
            currency=currency or "USD",
            kind=PaymentKind.MANUAL.value,
            status=PaymentStatus.PENDING_VERIFICATION.value,
            manual_details=ManualPaymentDetails(
                method=method,
                sender_account=sender_account,
                reference_number=reference_number,
                note=note,
            ),
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            ManualPaymentSubmitted(
                payment_id=str(payment.id),
                order_id=str(order_id),
                customer_id=str(customer_id),
                transaction_id=transaction_id,
                amount=amount,
                method=method,
                reference_number=reference_number,
                submitted_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def refundable_amount(self) -> float:
        return max(0.0, round((self.amount or 0.0) - (self.refund_amount or 0.0), 2))

    @property
    def is_captured(self) -> bool:
        return PaymentStatus(self.status) in CAPTURED_STATUSES

    def is_session_expired(self, now=None) -> bool:
        if self.session is None or self.session.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        expires_at = self.session.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now > expires_at

    def access_for_plan(self, plan_id):
        return next((grant for grant in self.subscription_access if str(grant.plan_id) == str(plan_id)), None)

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        current = PaymentStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise StateError(f"Cannot transition payment from {current.value} to {target_status.value}")

    def open_session(self, session_id, gateway_url, provider_txn_id, expires_at):
        self.session = GatewaySession(
            session_id=session_id,
            gateway_url=gateway_url,
            provider_txn_id=provider_txn_id,
            expires_at=expires_at,
        )
        self.updated_at = datetime.now(UTC)
        self.raise_(
            PaymentSessionOpened(
                payment_id=str(self.id),
                transaction_id=self.transaction_id,
                session_id=session_id,
                gateway_url=gateway_url,
                expires_at=expires_at,
            )
        )

    def complete(self, gateway_name, normalized_fields=None, now=None):
        """Capture confirmed. Only a pending (or manually submitted) payment completes."""
        self._assert_can_transition(PaymentStatus.COMPLETED)
        fields = normalized_fields or {}
        now = now or datetime.now(UTC)

        with atomic_change(self):
            self.status = PaymentStatus.COMPLETED.value
            self.gateway_info = GatewayInfo(
                gateway_name=gateway_name,
                provider_txn_id=fields.get("provider_txn_id")
                or (self.session.provider_txn_id if self.session else None),
                payment_method=fields.get("payment_method"),
                card_type=fields.get("card_type"),
                bank_transaction_id=fields.get("bank_transaction_id"),
                validated_at=now,
            )
            self.failure_reason = None
            self.needs_reconciliation = False
            self.reconciliation_reason = None
            self.completed_at = now
            self.updated_at = now

        self.raise_(
            PaymentCompleted(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                transaction_id=self.transaction_id,
                amount=self.amount,
                currency=self.currency,
                provider_txn_id=self.gateway_info.provider_txn_id,
                completed_at=now,
            )
        )

    def fail(self, reason):
        self._assert_can_transition(PaymentStatus.FAILED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason
        self.needs_reconciliation = False
        self.reconciliation_reason = None
        self.updated_at = now
        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                transaction_id=self.transaction_id,
                reason=reason,
                failed_at=now,
            )
        )

    def cancel(self, reason=None):
        self._assert_can_transition(PaymentStatus.CANCELLED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.CANCELLED.value
        self.failure_reason = reason
        self.needs_reconciliation = False
        self.updated_at = now
        self.raise_(
            PaymentCancelled(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                transaction_id=self.transaction_id,
                reason=reason,
                cancelled_at=now,
            )
        )

    def reject(self, reason, reviewed_by=None):
        """Reject a manual payment after review."""
        self._assert_can_transition(PaymentStatus.REJECTED)
        now = datetime.now(UTC)
        self.status = PaymentStatus.REJECTED.value
        self.failure_reason = reason
        self.manual_details = ManualPaymentDetails(
            method=self.manual_details.method,
            sender_account=self.manual_details.sender_account,
            reference_number=self.manual_details.reference_number,
            note=self.manual_details.note,
            reviewed_by=reviewed_by,
            reviewed_at=now,
        )
        self.updated_at = now
        self.raise_(
            PaymentRejected(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                transaction_id=self.transaction_id,
                reason=reason,
                reviewed_by=reviewed_by,
                rejected_at=now,
            )
        )

    def mark_reviewed(self, reviewed_by):
        if self.manual_details is None:
            return
        self.manual_details = ManualPaymentDetails(
            method=self.manual_details.method,
            sender_account=self.manual_details.sender_account,
            reference_number=self.manual_details.reference_number,
            note=self.manual_details.note,
            reviewed_by=reviewed_by,
            reviewed_at=datetime.now(UTC),
        )

    def flag_for_reconciliation(self, reason, provider_payload=None):
        """Gateway outcome unknown: keep the payment pending and queue it for another look."""
        if PaymentStatus(self.status) is not PaymentStatus.PENDING:
            raise StateError(f"Only pending payments can await reconciliation, payment is {self.status}")
        now = datetime.now(UTC)
        self.needs_reconciliation = True
        self.reconciliation_reason = reason
        if provider_payload is not None:
            self.last_verification_payload = json.dumps(provider_payload, default=str)
        self.updated_at = now
        self.raise_(
            PaymentReconciliationRequired(
                payment_id=str(self.id),
                transaction_id=self.transaction_id,
                reason=reason,
                flagged_at=now,
            )
        )

    def retry(self, new_transaction_id):
        """Reopen a failed or cancelled payment under a fresh transaction id."""
        self._assert_can_transition(PaymentStatus.PENDING)
        now = datetime.now(UTC)
        previous = self.transaction_id
        history = json.loads(self.previous_transaction_ids) if self.previous_transaction_ids else []
        history.append(previous)

        with atomic_change(self):
            self.previous_transaction_ids = json.dumps(history)
            self.transaction_id = new_transaction_id
            self.status = PaymentStatus.PENDING.value
            self.failure_reason = None
            self.session = None
            self.updated_at = now

        self.raise_(
            PaymentRetried(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                previous_transaction_id=previous,
                transaction_id=new_transaction_id,
                retried_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def record_refund(self, amount, full=False) -> bool:
        """Add a completed refund. Returns True when the payment is now fully refunded."""
        if amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if amount - self.refundable_amount > _REFUND_TOLERANCE:
            raise ValidationError(
                {"amount": [f"Refund amount {amount:.2f} exceeds refundable amount {self.refundable_amount:.2f}"]}
            )

        new_total = round((self.refund_amount or 0.0) + amount, 2)
        fully_refunded = full or (self.amount - new_total) <= _REFUND_TOLERANCE
        target = PaymentStatus.REFUNDED if fully_refunded else PaymentStatus.PARTIALLY_REFUNDED
        self._assert_can_transition(target)

        now = datetime.now(UTC)
        self.refund_amount = new_total
        self.status = target.value
        self.updated_at = now

        self.raise_(
            PaymentRefunded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                customer_id=str(self.customer_id),
                transaction_id=self.transaction_id,
                amount=amount,
                total_refunded=new_total,
                fully_refunded=fully_refunded,
                refunded_at=now,
            )
        )
        return fully_refunded

    # -------------------------------------------------------------------
    # Entitlements
    # -------------------------------------------------------------------
    def grant_subscription_access(self, plan_id, subscription_id, starts_at, ends_at):
        """Record subscription access for a plan; re-granting updates the window."""
        grant = self.access_for_plan(plan_id)
        if grant is not None:
            grant.subscription_id = subscription_id
            grant.starts_at = starts_at
            grant.ends_at = ends_at
            return grant

        grant = SubscriptionAccess(
            plan_id=plan_id,
            subscription_id=subscription_id,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        self.add_subscription_access(grant)
        return grant


@commerce.repository(part_of=Payment)
class PaymentRepository:
    """Lookups by transaction id and order, plus the reconciliation queue."""

    def by_transaction_id(self, transaction_id: str) -> Payment | None:
        payments = self._dao.query.filter(transaction_id=transaction_id).all().items
        return payments[0] if payments else None

    def for_order(self, order_id: str) -> Payment | None:
        payments = self._dao.query.filter(order_id=str(order_id)).all().items
        return payments[0] if payments else None

    def awaiting_reconciliation(self) -> list[Payment]:
        return (
            self._dao.query.filter(
                status=PaymentStatus.PENDING.value,
                needs_reconciliation=True,
            )
            .all()
            .items
        )
