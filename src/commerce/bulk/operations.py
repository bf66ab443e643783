"""Bulk operations — one administrative action over a batch of orders.

The batch is all or nothing: every order must exist and accept the change,
otherwise the whole operation is rejected with the reason for each order
that refused, and nothing is written. Refund requests opened by a bulk
cancel or bulk refund are approved up front and executed by the refund
engine once the batch has committed.
"""

import json
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.order.order import Order, OrderPriority, OrderStatus
from commerce.refund.refund_request import RefundRequest, RefundType
from commerce.refund.requests import open_refund_request

logger = structlog.get_logger(__name__)


class BulkOperationType(Enum):
    UPDATE_STATUS = "update_status"
    ASSIGN_PRIORITY = "assign_priority"
    BULK_CANCEL = "bulk_cancel"
    BULK_REFUND = "bulk_refund"


@commerce.command(part_of="Order")
class RunBulkOperation:
    operation = String(choices=BulkOperationType, required=True)
    order_ids = Text(required=True)  # JSON list
    params = Text()  # JSON object
    performed_by = String(max_length=100, default="admin")


# ---------------------------------------------------------------------------
# One function per operation. Each applies the change to a loaded order and
# returns a refund request to persist, or None.
# ---------------------------------------------------------------------------
def _update_status(order, params, actor):
    order.change_status(params["status"], note=params.get("note") or "Bulk status update", actor=actor)


def _assign_priority(order, params, actor):  # noqa: ARG001
    order.assign_priority(params["priority"])


def _bulk_cancel(order, params, actor):
    reason = params.get("reason") or "Cancelled by bulk operation"
    order.cancel(reason, actor=actor)
    if params.get("process_refund") and order.is_paid:
        return open_refund_request(
            order,
            RefundType.FULL.value,
            reason,
            approved_by=actor,
            auto_execute=True,
        )
    return None


def _bulk_refund(order, params, actor):
    return open_refund_request(
        order,
        RefundType.FULL.value,
        params.get("reason") or "Refunded by bulk operation",
        approved_by=actor,
        auto_execute=True,
    )


_HANDLERS = {
    BulkOperationType.UPDATE_STATUS: _update_status,
    BulkOperationType.ASSIGN_PRIORITY: _assign_priority,
    BulkOperationType.BULK_CANCEL: _bulk_cancel,
    BulkOperationType.BULK_REFUND: _bulk_refund,
}

if set(_HANDLERS) != set(BulkOperationType):
    raise RuntimeError("Every bulk operation type needs a handler")


def _validate_params(operation: BulkOperationType, params: dict) -> None:
    if operation is BulkOperationType.UPDATE_STATUS:
        if params.get("status") not in {status.value for status in OrderStatus}:
            raise ValidationError({"params": ["A valid target status is required"]})
    elif operation is BulkOperationType.ASSIGN_PRIORITY:
        if params.get("priority") not in {priority.value for priority in OrderPriority}:
            raise ValidationError({"params": ["A valid priority is required"]})


def _parse(command) -> tuple[list[str], dict]:
    try:
        order_ids = json.loads(command.order_ids)
        params = json.loads(command.params) if command.params else {}
    except json.JSONDecodeError:
        raise ValidationError({"order_ids": ["Order ids and params must be JSON"]}) from None
    if not isinstance(order_ids, list) or not order_ids:
        raise ValidationError({"order_ids": ["At least one order id is required"]})
    return list(dict.fromkeys(str(order_id) for order_id in order_ids)), params


@commerce.command_handler(part_of=Order)
class BulkOperationHandler:
    @handle(RunBulkOperation)
    def run(self, command):
        operation = BulkOperationType(command.operation)
        order_ids, params = _parse(command)
        _validate_params(operation, params)
        actor = command.performed_by or "admin"

        order_repo = current_domain.repository_for(Order)
        orders, missing = [], []
        for order_id in order_ids:
            try:
                orders.append(order_repo.get(order_id))
            except ObjectNotFoundError:
                missing.append(order_id)
        if missing:
            raise ValidationError({"order_ids": [f"Orders not found: {', '.join(missing)}"]})

        apply = _HANDLERS[operation]
        refunds, refusals = [], []
        for order in orders:
            try:
                refund = apply(order, params, actor)
            except (ValidationError, InvalidOperationError) as exc:
                refusals.append(f"{order.order_number}: {exc}")
                continue
            if refund is not None:
                refunds.append(refund)

        if refusals:
            logger.warning("Bulk operation rejected", operation=operation.value, refusals=refusals)
            raise ValidationError({"order_ids": refusals})

        for order in orders:
            order_repo.add(order)
        refund_repo = current_domain.repository_for(RefundRequest)
        for refund in refunds:
            refund_repo.add(refund)

        logger.info(
            "Bulk operation applied",
            operation=operation.value,
            orders=len(orders),
            refund_requests=len(refunds),
            performed_by=actor,
        )
        return {
            "operation": operation.value,
            "processed": len(orders),
            "order_ids": [str(order.id) for order in orders],
            "refund_request_ids": [str(refund.id) for refund in refunds],
        }
