"""Refund execution — sending approved refunds to the gateway.

The refund id is the gateway idempotency key, so re-submitting a refund
whose outcome is unknown cannot pay the customer twice. A completed refund
updates the RefundRequest, the Payment and the Order in one unit of work; a
failed or unanswered one leaves the Payment and the Order untouched.

Refunds with a method other than the original payment (bank transfer,
store credit) and refunds of manual payments are settled outside the
gateway and complete without a gateway call.
"""

import structlog
from protean import handle
from protean.exceptions import InvalidOperationError, ValidationError
from protean.fields import Identifier
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import StateError
from commerce.gateway.port import GatewayError
from commerce.order.order import Order
from commerce.payment.payment import Payment, PaymentKind
from commerce.refund.events import RefundApproved
from commerce.refund.refund_request import RefundMethod, RefundRequest, RefundStatus, RefundType
from commerce.services import collaborators
from commerce.utils.logging import log_context

logger = structlog.get_logger(__name__)


@commerce.command(part_of="RefundRequest")
class ExecuteRefund:
    refund_id = Identifier(required=True)


@commerce.command(part_of="RefundRequest")
class ResubmitRefund:
    """Ask the gateway again about a refund whose outcome is unknown."""

    refund_id = Identifier(required=True)


@commerce.command(part_of="RefundRequest")
class ReconcileRefunds:
    requested_by = Identifier()


def _through_gateway(request, payment) -> bool:
    return (
        request.refund_method == RefundMethod.ORIGINAL_PAYMENT.value
        and payment.kind == PaymentKind.GATEWAY.value
    )


def _settle(request, payment):
    """Reflect a completed refund on the payment and its order."""
    order_repo = current_domain.repository_for(Order)
    order = order_repo.get(request.order_id)

    fully_refunded = payment.record_refund(request.amount, full=request.refund_type == RefundType.FULL.value)
    order.record_refund(
        fully_refunded,
        note=f"Refund of {request.amount:.2f} completed",
        actor=request.reviewed_by or "system",
    )

    order_repo.add(order)
    current_domain.repository_for(Payment).add(payment)
    return fully_refunded


def _submit(request) -> dict:
    repo = current_domain.repository_for(RefundRequest)
    payment = current_domain.repository_for(Payment).get(request.payment_id)

    if not _through_gateway(request, payment):
        request.complete(None, {"settled": request.refund_method})
    else:
        provider_txn_id = (
            payment.gateway_info.provider_txn_id
            if payment.gateway_info and payment.gateway_info.provider_txn_id
            else payment.transaction_id
        )
        try:
            with log_context(refund_id=str(request.id), transaction_id=payment.transaction_id):
                result = collaborators().gateway.refund(provider_txn_id, request.amount, request.idempotency_key)
        except GatewayError as exc:
            if exc.definitive:
                request.fail(exc.message, exc.gateway_response)
                logger.warning("Refund declined by gateway", refund_id=str(request.id), reason=exc.message)
            elif request.status == RefundStatus.RECONCILING.value:
                logger.warning("Refund outcome still unknown", refund_id=str(request.id), reason=exc.message)
            else:
                request.await_reconciliation(exc.message)
                logger.warning("Refund outcome unknown, queued for reconciliation", refund_id=str(request.id))
            repo.add(request)
            return {"refund_id": str(request.id), "status": request.status, "failure_reason": request.failure_reason}

        request.complete(result.provider_refund_id, result.normalized_response)

    fully_refunded = _settle(request, payment)
    repo.add(request)
    logger.info(
        "Refund completed",
        refund_id=str(request.id),
        order_id=str(request.order_id),
        amount=request.amount,
        fully_refunded=fully_refunded,
    )
    return {
        "refund_id": str(request.id),
        "status": request.status,
        "gateway_refund_id": request.gateway_refund_id,
        "fully_refunded": fully_refunded,
    }


@commerce.command_handler(part_of=RefundRequest)
class RefundExecutionHandler:
    @handle(ExecuteRefund)
    def execute(self, command):
        request = current_domain.repository_for(RefundRequest).get(command.refund_id)
        if request.status != RefundStatus.APPROVED.value:
            raise StateError(f"Only approved refunds can be executed, refund is {request.status}")
        request.start_processing()
        return _submit(request)

    @handle(ResubmitRefund)
    def resubmit(self, command):
        request = current_domain.repository_for(RefundRequest).get(command.refund_id)
        if request.status != RefundStatus.RECONCILING.value:
            raise StateError(f"Only refunds awaiting reconciliation can be resubmitted, refund is {request.status}")
        return _submit(request)

    @handle(ReconcileRefunds)
    def reconcile(self, command):  # noqa: ARG002
        pending = current_domain.repository_for(RefundRequest).reconciling()
        summary = {"checked": len(pending), "completed": 0, "failed": 0, "still_unknown": 0, "errors": 0}

        for request in pending:
            try:
                result = current_domain.process(ResubmitRefund(refund_id=str(request.id)), asynchronous=False)
            except (ValidationError, InvalidOperationError) as exc:
                summary["errors"] += 1
                logger.warning("Refund reconciliation failed", refund_id=str(request.id), error=str(exc))
                continue

            if result["status"] == RefundStatus.COMPLETED.value:
                summary["completed"] += 1
            elif result["status"] == RefundStatus.FAILED.value:
                summary["failed"] += 1
            else:
                summary["still_unknown"] += 1

        logger.info("Refund reconciliation finished", **summary)
        return summary


@commerce.event_handler(part_of=RefundRequest)
class AutoExecuteRefundHandler:
    """Executes refunds opened by operator actions once they are committed."""

    @handle(RefundApproved)
    def on_refund_approved(self, event: RefundApproved) -> None:
        if not event.auto_execute:
            return
        try:
            current_domain.process(ExecuteRefund(refund_id=str(event.refund_id)), asynchronous=False)
        except (ValidationError, InvalidOperationError) as exc:
            logger.warning("Automatic refund execution failed", refund_id=str(event.refund_id), error=str(exc))
