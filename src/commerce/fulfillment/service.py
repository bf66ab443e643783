"""Fulfillment — everything that commits together with a completed payment.

``FulfillmentService.fulfill`` is called from inside a command handler, so
all of its writes share the handler's unit of work:

1. the Payment moves to completed
2. the Order is marked paid and moves to processing or completed
3. download links, license keys and subscriptions are issued
4. catalog counters are incremented (once per transaction id)
5. the customer's cart is cleared

If any step raises, none of it is persisted.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from commerce.cart.cart import Cart
from commerce.entitlement.issuer import EntitlementIssuer
from commerce.fulfillment.counters import apply_sales_counters
from commerce.order.order import Order
from commerce.payment.payment import Payment

logger = structlog.get_logger(__name__)


class FulfillmentService:
    def __init__(self, settings, gateway_name: str):
        self.settings = settings
        self.gateway_name = gateway_name

    def fulfill(self, payment, normalized_fields=None, actor="system", now=None):
        """Complete ``payment`` and fulfill its order. Returns the order."""
        now = now or datetime.now(UTC)
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(payment.order_id)

        payment.complete(self.gateway_name, normalized_fields, now=now)
        order.record_payment(str(payment.id), payment.transaction_id, payment.amount, actor=actor, now=now)

        issued = EntitlementIssuer(self.settings).issue(order, payment, now=now)
        applied = apply_sales_counters(order, payment.transaction_id)
        self._clear_cart(order)

        order_repo.add(order)
        current_domain.repository_for(Payment).add(payment)

        logger.info(
            "Payment fulfilled",
            transaction_id=payment.transaction_id,
            order_id=str(order.id),
            order_status=order.status,
            counters_applied=applied,
            **issued,
        )
        return order

    @staticmethod
    def _clear_cart(order) -> None:
        if not order.cart_id:
            return
        repo = current_domain.repository_for(Cart)
        try:
            cart = repo.get(order.cart_id)
        except ObjectNotFoundError:
            return
        cart.clear(reason=f"Checked out as {order.order_number}")
        repo.add(cart)
