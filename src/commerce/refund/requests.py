"""Refund requests — opening and reviewing them.

A full refund asks for whatever is still refundable on the payment and
covers every line. A partial refund names the lines and the amount for each;
the request amount is their sum. Only one request per order may be open at
a time.
"""

import json
from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import ConflictError, StateError
from commerce.order.order import Order
from commerce.payment.payment import Payment
from commerce.refund.policy import evaluate_refund
from commerce.refund.refund_request import RefundMethod, RefundRequest, RefundType

logger = structlog.get_logger(__name__)

_TOLERANCE = 0.005


class ReviewAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


@commerce.command(part_of="RefundRequest")
class RequestRefund:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    refund_type = String(choices=RefundType, required=True)
    reason = String(max_length=1000, required=True)
    items = Text()  # JSON list of {ref | product_id | plan_id, quantity?, amount?}
    refund_method = String(choices=RefundMethod, default=RefundMethod.ORIGINAL_PAYMENT.value)


@commerce.command(part_of="RefundRequest")
class ReviewRefund:
    refund_id = Identifier(required=True)
    action = String(choices=ReviewAction, required=True)
    reviewed_by = String(max_length=100, required=True)
    reason = String(max_length=1000)


def _full_breakdown(order) -> list[dict]:
    return [
        {
            "ref": line.ref,
            "line_type": line.line_type,
            "category": line.refund_category,
            "title": line.title,
            "quantity": line.quantity,
            "amount": line.line_total,
        }
        for line in order.lines
    ]


def _partial_breakdown(order, items) -> list[dict]:
    if not items:
        raise ValidationError({"items": ["A partial refund must name the items being refunded"]})

    breakdown = []
    for item in items:
        ref = str(item.get("ref") or item.get("product_id") or item.get("plan_id") or "")
        line = next((line for line in order.lines if line.ref == ref), None)
        if line is None:
            raise ValidationError({"items": [f"Item {ref} is not part of order {order.order_number}"]})

        quantity = int(item.get("quantity", line.quantity))
        if quantity < 1 or quantity > line.quantity:
            raise ValidationError({"items": [f"Quantity for item {ref} must be between 1 and {line.quantity}"]})

        amount = item.get("amount")
        amount = round(float(amount), 2) if amount is not None else round(line.unit_price * quantity, 2)
        if amount <= 0 or amount - line.line_total > _TOLERANCE:
            raise ValidationError(
                {"items": [f"Refund amount for item {ref} must be between 0 and {line.line_total:.2f}"]}
            )

        breakdown.append(
            {
                "ref": line.ref,
                "line_type": line.line_type,
                "category": line.refund_category,
                "title": line.title,
                "quantity": quantity,
                "amount": amount,
            }
        )
    return breakdown


def open_refund_request(
    order,
    refund_type,
    reason,
    items=None,
    refund_method=None,
    approved_by=None,
    cancellation_id=None,
    auto_execute=False,
):
    """Validate and build a refund request for ``order``.

    With ``approved_by`` the request is opened already approved and the
    refund policies are not consulted (operator actions: bulk refunds,
    approved cancellations). Otherwise the policies decide between pending
    and auto-approved.
    """
    if not order.is_paid:
        raise StateError(f"Order {order.order_number} has not been paid and cannot be refunded")

    repo = current_domain.repository_for(RefundRequest)
    if repo.open_for_order(order.id) is not None:
        raise ConflictError(f"Order {order.order_number} already has a refund request in progress")

    payment = current_domain.repository_for(Payment).get(order.payment_id)
    refundable = payment.refundable_amount
    kind = RefundType(refund_type)

    if kind is RefundType.FULL:
        lines = _full_breakdown(order)
        amount = refundable
    else:
        lines = _partial_breakdown(order, items)
        amount = round(sum(line["amount"] for line in lines), 2)

    if amount <= 0:
        raise ValidationError({"amount": ["Nothing left to refund on this order"]})
    if amount - refundable > _TOLERANCE:
        raise ValidationError(
            {"amount": [f"Refund amount {amount:.2f} exceeds refundable amount {refundable:.2f}"]}
        )

    if approved_by is not None:
        approved = True
    else:
        decision = evaluate_refund(
            order.created_at,
            {line["category"] for line in lines},
            amount,
            partial=kind is RefundType.PARTIAL,
        )
        approved = decision.auto_approve

    request = RefundRequest.open(
        order_id=str(order.id),
        customer_id=str(order.customer_id),
        payment_id=str(payment.id),
        refund_type=kind.value,
        amount=amount,
        reason=reason,
        lines=lines,
        approved=approved,
        refund_method=refund_method,
        cancellation_id=cancellation_id,
        auto_execute=auto_execute,
        approved_by=approved_by or ("policy" if approved else None),
    )
    logger.info(
        "Refund requested",
        refund_id=str(request.id),
        order_id=str(order.id),
        amount=amount,
        status=request.status,
    )
    return request


@commerce.command_handler(part_of=RefundRequest)
class RefundRequestHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        if str(order.customer_id) != str(command.customer_id):
            raise ObjectNotFoundError(f"Order {command.order_id} does not exist")

        try:
            items = json.loads(command.items) if command.items else None
        except json.JSONDecodeError:
            raise ValidationError({"items": ["Items must be a JSON list"]}) from None

        request = open_refund_request(
            order,
            command.refund_type,
            command.reason,
            items=items,
            refund_method=command.refund_method,
        )
        current_domain.repository_for(RefundRequest).add(request)
        return {"refund_id": str(request.id), "status": request.status, "amount": request.amount}

    @handle(ReviewRefund)
    def review_refund(self, command):
        repo = current_domain.repository_for(RefundRequest)
        request = repo.get(command.refund_id)

        if ReviewAction(command.action) is ReviewAction.APPROVE:
            request.approve(command.reviewed_by)
        else:
            request.reject(command.reason, command.reviewed_by)

        repo.add(request)
        logger.info(
            "Refund reviewed",
            refund_id=str(request.id),
            status=request.status,
            reviewed_by=command.reviewed_by,
        )
        return {"refund_id": str(request.id), "status": request.status}


def refund_summary(order_id) -> dict:
    """Refund history and what is still refundable for an order."""
    order = current_domain.repository_for(Order).get(order_id)
    requests = current_domain.repository_for(RefundRequest).for_order(order_id)
    refundable = 0.0
    if order.payment_id:
        refundable = current_domain.repository_for(Payment).get(order.payment_id).refundable_amount
    return {
        "order_id": str(order.id),
        "total": order.total,
        "refundable_amount": refundable,
        "requests": [
            {"refund_id": str(request.id), "status": request.status, "amount": request.amount}
            for request in sorted(requests, key=lambda request: request.created_at)
        ],
    }
