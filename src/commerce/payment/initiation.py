"""Payment session initiation — commands and handler.

Turns a cart (or an explicit item list) into a pending Order and Payment and
opens a hosted checkout session at the gateway. Both aggregates and the
session details commit together; when the gateway refuses to open a
session nothing is persisted.
"""

import json
from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.cart.cart import Cart
from commerce.catalog.plan import SubscriptionPlan
from commerce.catalog.product import Product
from commerce.domain import commerce
from commerce.errors import ConflictError, StateError
from commerce.gateway.port import OrderContext
from commerce.order.lines import LineType, parse_lines
from commerce.order.order import Order, OrderPaymentStatus, OrderPricing, OrderStatus
from commerce.payment.payment import Payment
from commerce.payment.transaction import unique_transaction_id
from commerce.services import collaborators

logger = structlog.get_logger(__name__)


@commerce.command(part_of="Payment")
class InitiatePaymentSession:
    """Start checkout for a cart, an explicit item list, or an existing order."""

    customer_id = Identifier(required=True)
    cart_id = Identifier()
    items = Text()  # JSON list of {product_id | plan_id, quantity}
    order_id = Identifier()
    customer_name = String(max_length=255)
    customer_email = String(max_length=255)
    customer_phone = String(max_length=50)
    coupon_code = String(max_length=50)
    coupon_discount = Float(min_value=0.0)
    tax = Float(default=0.0, min_value=0.0)
    shipping = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="USD")


@commerce.command(part_of="Payment")
class RetryPaymentSession:
    """Reopen a failed or cancelled payment with a new transaction id."""

    payment_id = Identifier(required=True)


def _resolve_lines(specs) -> list[dict]:
    """Look every item up in the catalog; returns OrderLine field dicts."""
    merged = {}
    for spec in specs:
        key = (spec.line_type, spec.ref)
        if key in merged:
            merged[key] = (merged[key][0], merged[key][1] + spec.quantity)
        else:
            merged[key] = (spec, spec.quantity)

    lines = []
    for (line_type, ref), (spec, quantity) in merged.items():
        catalog_cls = Product if line_type is LineType.PRODUCT else SubscriptionPlan
        try:
            item = current_domain.repository_for(catalog_cls).get(ref)
        except ObjectNotFoundError:
            raise ValidationError({"items": [f"{line_type.value.capitalize()} {ref} does not exist"]}) from None

        reason = item.unavailability_reason(quantity)
        if reason:
            raise ValidationError({"items": [reason]})

        price = spec.price if spec.price is not None else item.price
        line = {
            "line_type": line_type.value,
            "title": item.name,
            "quantity": quantity,
            "unit_price": price,
            "original_price": spec.original_price if spec.original_price is not None else item.price,
        }
        if line_type is LineType.PRODUCT:
            line["product_id"] = ref
            line["product_type"] = item.product_type
        else:
            line["plan_id"] = ref
        lines.append(line)
    return lines


def _open_session(payment, order, settings, gateway, now) -> dict:
    """Ask the gateway for a checkout session and store it on the payment."""
    context = OrderContext(
        transaction_id=payment.transaction_id,
        order_id=str(order.id),
        amount=payment.amount,
        currency=payment.currency,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        product_names=tuple(line.title for line in order.lines),
        callback_base_url=settings.gateway_callback_base_url,
    )
    session = gateway.initiate(context)
    expires_at = now + timedelta(minutes=settings.session_expiry_minutes)
    payment.open_session(session.session_id, session.redirect_url, session.provider_txn_id, expires_at)

    return {
        "session_id": session.session_id,
        "gateway_url": session.redirect_url,
        "transaction_id": payment.transaction_id,
        "expires_at": expires_at.isoformat(),
        "order_id": str(order.id),
        "payment_id": str(payment.id),
    }


@commerce.command_handler(part_of=Payment)
class PaymentSessionHandler:
    @handle(InitiatePaymentSession)
    def initiate_session(self, command):
        services = collaborators()
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        now = datetime.now(UTC)

        if command.order_id:
            order = order_repo.get(command.order_id)
            if payment_repo.for_order(order.id) is not None:
                raise ConflictError(f"A payment already exists for order {order.id}")
            if order.status != OrderStatus.PENDING.value:
                raise StateError(f"Order {order.id} is {order.status} and cannot be paid")
        else:
            order = self._create_order(command, now)

        payment = Payment.create(
            order_id=str(order.id),
            customer_id=command.customer_id,
            amount=order.total,
            currency=order.pricing.currency,
            transaction_id=unique_transaction_id(payment_repo),
        )
        result = _open_session(payment, order, services.settings, services.gateway, now)
        order.mirror_payment_status(
            OrderPaymentStatus.PENDING.value,
            payment_id=str(payment.id),
            transaction_id=payment.transaction_id,
        )

        order_repo.add(order)
        payment_repo.add(payment)
        logger.info(
            "Payment session opened",
            transaction_id=payment.transaction_id,
            order_id=str(order.id),
            amount=payment.amount,
        )
        return result

    def _create_order(self, command, now):
        coupon_code = command.coupon_code
        coupon_discount = command.coupon_discount
        cart_id = None

        if command.cart_id:
            cart = current_domain.repository_for(Cart).get(command.cart_id)
            if str(cart.customer_id) != str(command.customer_id):
                raise ValidationError({"cart_id": ["Cart belongs to another customer"]})
            snapshot = cart.snapshot()
            specs = list(snapshot.items)
            cart_id = snapshot.cart_id
            if coupon_code is None and snapshot.coupon_code:
                coupon_code, coupon_discount = snapshot.coupon_code, snapshot.coupon_discount
        elif command.items:
            try:
                raw_items = json.loads(command.items)
            except json.JSONDecodeError:
                raise ValidationError({"items": ["Items must be a JSON list"]}) from None
            specs = parse_lines(raw_items)
        else:
            raise ValidationError({"items": ["Either a cart or a list of items is required"]})

        lines = _resolve_lines(specs)
        subtotal = sum(line["unit_price"] * line["quantity"] for line in lines)
        pricing = OrderPricing.compute(
            subtotal,
            tax=command.tax,
            shipping=command.shipping,
            coupon_discount=coupon_discount,
            coupon_code=coupon_code,
            currency=command.currency,
        )
        return Order.create(
            customer_id=command.customer_id,
            lines=lines,
            pricing=pricing,
            customer_name=command.customer_name,
            customer_email=command.customer_email,
            customer_phone=command.customer_phone,
            cart_id=cart_id,
            created_at=now,
        )

    @handle(RetryPaymentSession)
    def retry_session(self, command):
        services = collaborators()
        order_repo = current_domain.repository_for(Order)
        payment_repo = current_domain.repository_for(Payment)
        now = datetime.now(UTC)

        payment = payment_repo.get(command.payment_id)
        order = order_repo.get(payment.order_id)
        if order.status != OrderStatus.PENDING.value:
            raise StateError(f"Order {order.id} is {order.status} and cannot be paid")

        previous = payment.transaction_id
        payment.retry(unique_transaction_id(payment_repo))
        result = _open_session(payment, order, services.settings, services.gateway, now)
        order.mirror_payment_status(OrderPaymentStatus.PENDING.value, transaction_id=payment.transaction_id)

        order_repo.add(order)
        payment_repo.add(payment)
        logger.info(
            "Payment session reopened",
            previous_transaction_id=previous,
            transaction_id=payment.transaction_id,
        )
        return result
