"""Payment verification — callback handling, cancellation and reconciliation.

A gateway callback names a transaction id. The handler asks the gateway
whether the transaction was really paid and acts on the answer:

- already captured: nothing to do, the earlier fulfillment stands
- valid: the payment is completed and the order fulfilled in one unit of work
- definitively invalid: the payment fails, the order stays pending
- unknown (timeout, gateway down): the payment stays pending and is flagged
  for reconciliation

Two callbacks for the same transaction are serialized twice over: within a
process by a per-transaction lock, and across processes by the Payment's
optimistic version check. The loser of a version race is re-run once and
takes the "already captured" path.
"""

import json
import threading
from weakref import WeakValueDictionary

import structlog
from protean import handle
from protean.exceptions import ExpectedVersionError, InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import StateError
from commerce.fulfillment.service import FulfillmentService
from commerce.gateway.port import GatewayError
from commerce.order.order import Order, OrderPaymentStatus
from commerce.payment.payment import Payment, PaymentStatus
from commerce.services import collaborators
from commerce.utils.logging import log_context

logger = structlog.get_logger(__name__)


@commerce.command(part_of="Payment")
class VerifyPayment:
    """Gateway callback (redirect or IPN) for a transaction."""

    transaction_id = String(required=True, max_length=64)
    provider_payload = Text()  # JSON object as posted by the gateway


@commerce.command(part_of="Payment")
class CancelPayment:
    """Gateway reported that the customer abandoned the checkout."""

    transaction_id = String(required=True, max_length=64)
    reason = String(max_length=500)


@commerce.command(part_of="Payment")
class ReconcilePayments:
    """Re-verify every pending payment whose gateway outcome is unknown."""

    requested_by = Identifier()


def _result(payment, **extra) -> dict:
    return {
        "transaction_id": payment.transaction_id,
        "payment_id": str(payment.id),
        "order_id": str(payment.order_id),
        "status": payment.status,
        **extra,
    }


@commerce.command_handler(part_of=Payment)
class PaymentVerificationHandler:
    @handle(VerifyPayment)
    def verify(self, command):
        services = collaborators()
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)

        payment = payment_repo.by_transaction_id(command.transaction_id)
        if payment is None:
            raise ObjectNotFoundError(f"No payment with transaction id {command.transaction_id}")

        if payment.is_captured:
            logger.info("Duplicate verification ignored", transaction_id=payment.transaction_id)
            return _result(payment, already_processed=True)
        if payment.status != PaymentStatus.PENDING.value:
            raise StateError(f"Payment {payment.transaction_id} is {payment.status} and cannot be verified")

        payload = json.loads(command.provider_payload) if command.provider_payload else {}

        try:
            verification = services.gateway.verify(payment.transaction_id, payload)
        except GatewayError as exc:
            order = order_repo.get(payment.order_id)
            if exc.definitive:
                self._fail(payment, order, exc.message)
            else:
                payment.flag_for_reconciliation(exc.message, payload)
                logger.warning(
                    "Gateway outcome unknown, payment queued for reconciliation",
                    transaction_id=payment.transaction_id,
                    reason=exc.message,
                )
            order_repo.add(order)
            payment_repo.add(payment)
            return _result(payment, needs_reconciliation=payment.needs_reconciliation)

        if not verification.is_valid:
            order = order_repo.get(payment.order_id)
            self._fail(payment, order, verification.failure_reason or "Payment verification failed")
            order_repo.add(order)
            payment_repo.add(payment)
            return _result(payment, failure_reason=payment.failure_reason)

        fulfillment = FulfillmentService(services.settings, services.gateway.name)
        order = fulfillment.fulfill(payment, verification.normalized_fields, actor="gateway")
        return _result(payment, order_status=order.status)

    @staticmethod
    def _fail(payment, order, reason):
        payment.fail(reason)
        order.mirror_payment_status(OrderPaymentStatus.FAILED.value)
        logger.info("Payment failed", transaction_id=payment.transaction_id, reason=reason)

    @handle(CancelPayment)
    def cancel(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)

        payment = payment_repo.by_transaction_id(command.transaction_id)
        if payment is None:
            raise ObjectNotFoundError(f"No payment with transaction id {command.transaction_id}")
        order = order_repo.get(payment.order_id)

        payment.cancel(command.reason or "Cancelled at gateway")
        order.mirror_payment_status(OrderPaymentStatus.CANCELLED.value)

        order_repo.add(order)
        payment_repo.add(payment)
        return _result(payment)

    @handle(ReconcilePayments)
    def reconcile(self, command):  # noqa: ARG002
        flagged = current_domain.repository_for(Payment).awaiting_reconciliation()
        summary = {"checked": len(flagged), "completed": 0, "failed": 0, "still_unknown": 0, "errors": 0}

        for payment in flagged:
            try:
                result = verify_payment(
                    payment.transaction_id,
                    json.loads(payment.last_verification_payload) if payment.last_verification_payload else {},
                )
            except (ValidationError, InvalidOperationError) as exc:
                summary["errors"] += 1
                logger.warning("Reconciliation failed", transaction_id=payment.transaction_id, error=str(exc))
                continue

            if result["status"] == PaymentStatus.COMPLETED.value:
                summary["completed"] += 1
            elif result["status"] == PaymentStatus.FAILED.value:
                summary["failed"] += 1
            else:
                summary["still_unknown"] += 1

        logger.info("Payment reconciliation finished", **summary)
        return summary


class _TransactionLock:
    """Weak-referenceable lock, kept alive only while someone holds it."""

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


_locks: WeakValueDictionary = WeakValueDictionary()
_locks_guard = threading.Lock()


def _lock_for(transaction_id: str) -> _TransactionLock:
    with _locks_guard:
        lock = _locks.get(transaction_id)
        if lock is None:
            lock = _TransactionLock()
            _locks[transaction_id] = lock
        return lock


def verify_payment(transaction_id: str, provider_payload: dict | None = None) -> dict:
    """Process a verification callback; safe to call any number of times."""
    command = VerifyPayment(
        transaction_id=transaction_id,
        provider_payload=json.dumps(provider_payload or {}, default=str),
    )
    with log_context(transaction_id=transaction_id), _lock_for(transaction_id):
        try:
            return current_domain.process(command, asynchronous=False)
        except ExpectedVersionError:
            logger.info("Concurrent verification detected, re-reading payment")
            return current_domain.process(command, asynchronous=False)
