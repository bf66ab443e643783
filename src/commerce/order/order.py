"""Order aggregate (CQRS) — the durable record of what a customer bought.

An order is a snapshot taken at checkout: line items, prices and the coupon
applied then. After that it is mutated only by the engines: fulfillment
(payment recorded, entitlements issued), refunds and cancellations, and
administrative bulk operations and automation rules. Every status change
appends an entry to the status history; entries are never edited.

State Machine:
    PENDING → PROCESSING → SHIPPED → DELIVERED → COMPLETED
    PENDING → COMPLETED (digital-only orders are fulfilled on payment)
    any non-terminal state → CANCELLED
    COMPLETED / DELIVERED / CANCELLED → REFUNDED
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, ValueObject

from commerce.domain import commerce
from commerce.entitlement.download_link import DownloadLink
from commerce.entitlement.license_key import LicenseKey
from commerce.errors import StateError
from commerce.order.events import (
    DownloadLinkIssued,
    LicenseKeyIssued,
    OrderCreated,
    OrderPaid,
    OrderPriorityChanged,
    OrderStatusChanged,
    OrderTrackingAssigned,
)
from commerce.order.lines import LineType


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderPaymentStatus(Enum):
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


class OrderPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED, OrderStatus.REFUNDED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),  # Terminal
}

TERMINAL_STATUSES = {OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}

PAID_PAYMENT_STATUSES = {OrderPaymentStatus.COMPLETED, OrderPaymentStatus.PARTIALLY_REFUNDED}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@commerce.value_object(part_of="Order")
class OrderPricing:
    """Prices as they stood at checkout. Never recomputed afterwards."""

    subtotal = Float(default=0.0)
    tax = Float(default=0.0)
    shipping = Float(default=0.0)
    coupon_code = String(max_length=50)
    coupon_discount = Float(default=0.0)
    total = Float(default=0.0)
    currency = String(max_length=3, default="USD")

    @invariant.post
    def total_is_never_negative(self):
        if self.total is not None and self.total < 0:
            raise ValidationError({"total": ["Order total cannot be negative"]})

    @classmethod
    def compute(cls, subtotal, tax=0.0, shipping=0.0, coupon_discount=0.0, coupon_code=None, currency="USD"):
        total = max(0.0, round(subtotal + (tax or 0.0) + (shipping or 0.0) - (coupon_discount or 0.0), 2))
        return cls(
            subtotal=round(subtotal, 2),
            tax=tax or 0.0,
            shipping=shipping or 0.0,
            coupon_code=coupon_code,
            coupon_discount=coupon_discount or 0.0,
            total=total,
            currency=currency or "USD",
        )


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@commerce.entity(part_of="Order")
class OrderLine:
    """A purchased product or subscription plan; exactly one reference is set."""

    line_type = String(choices=LineType, required=True)
    product_id = Identifier()
    plan_id = Identifier()
    title = String(max_length=255, required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    original_price = Float()
    product_type = String(max_length=20)  # digital, physical, service; None for plans

    @invariant.post
    def exactly_one_reference(self):
        if bool(self.product_id) == bool(self.plan_id):
            raise ValidationError({"line_type": ["A line item references exactly one of product or subscription plan"]})
        expected = LineType.PRODUCT.value if self.product_id else LineType.SUBSCRIPTION.value
        if self.line_type != expected:
            raise ValidationError({"line_type": [f"Line tagged '{self.line_type}' must reference a {self.line_type}"]})

    @property
    def ref(self) -> str:
        return str(self.product_id or self.plan_id)

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)

    @property
    def refund_category(self) -> str:
        """Refund policy bucket: digital, physical or subscription."""
        if self.line_type == LineType.SUBSCRIPTION.value:
            return "subscription"
        return "physical" if self.product_type == "physical" else "digital"


@commerce.entity(part_of="Order")
class StatusEntry:
    status = String(max_length=20, required=True)
    timestamp = DateTime(required=True)
    note = String(max_length=500)
    actor = String(max_length=100, default="system")


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@commerce.aggregate
class Order:
    order_number = String(max_length=50, required=True)
    customer_id = Identifier(required=True)
    customer_name = String(max_length=255)
    customer_email = String(max_length=255)
    customer_phone = String(max_length=50)
    cart_id = Identifier()

    lines = HasMany(OrderLine)
    pricing = ValueObject(OrderPricing)

    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    payment_status = String(choices=OrderPaymentStatus, default=OrderPaymentStatus.PENDING.value)
    payment_id = Identifier()
    transaction_id = String(max_length=64)
    paid_at = DateTime()

    status_history = HasMany(StatusEntry)
    download_links = HasMany(DownloadLink)
    license_keys = HasMany(LicenseKey)

    priority = String(choices=OrderPriority, default=OrderPriority.MEDIUM.value)
    tracking_number = String(max_length=100)
    carrier = String(max_length=100)

    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        customer_id,
        lines,
        pricing,
        customer_name=None,
        customer_email=None,
        customer_phone=None,
        cart_id=None,
        created_at=None,
    ):
        """Create a pending order from resolved line dicts and a pricing snapshot."""
        if not lines:
            raise ValidationError({"lines": ["An order needs at least one line item"]})

        now = created_at or datetime.now(UTC)
        order = cls(
            order_number=f"ORD-{now:%Y%m%d}-{uuid4().hex[:6].upper()}",
            customer_id=customer_id,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            cart_id=cart_id,
            pricing=pricing,
            status=OrderStatus.PENDING.value,
            payment_status=OrderPaymentStatus.PENDING.value,
            priority=OrderPriority.MEDIUM.value,
            created_at=now,
            updated_at=now,
        )
        for line in lines:
            order.add_lines(OrderLine(**line))
        order.add_status_history(
            StatusEntry(status=OrderStatus.PENDING.value, timestamp=now, note="Order placed", actor="customer")
        )

        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=str(customer_id),
                total=pricing.total,
                currency=pricing.currency,
                line_count=len(lines),
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def total(self) -> float:
        return self.pricing.total if self.pricing else 0.0

    @property
    def is_paid(self) -> bool:
        return OrderPaymentStatus(self.payment_status) in PAID_PAYMENT_STATUSES

    @property
    def is_terminal(self) -> bool:
        return OrderStatus(self.status) in TERMINAL_STATUSES

    @property
    def fulfilled_on_payment(self) -> bool:
        """Digital and subscription orders have nothing left to ship."""
        return all(
            line.line_type == LineType.SUBSCRIPTION.value or line.product_type != "physical" for line in self.lines
        )

    def line_for_product(self, product_id):
        return next((line for line in self.lines if str(line.product_id) == str(product_id)), None)

    def download_link_for(self, product_id):
        return next((link for link in self.download_links if str(link.product_id) == str(product_id)), None)

    def license_key_for(self, product_id):
        return next((key for key in self.license_keys if str(key.product_id) == str(product_id)), None)

    def license_key(self, key):
        return next((license_key for license_key in self.license_keys if license_key.key == key), None)

    def completed_history_entries(self) -> list:
        return [entry for entry in self.status_history if entry.note and entry.note.startswith("Payment completed")]

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise StateError(f"Cannot transition order from {current.value} to {target_status.value}")

    def _append_history(self, status, note, actor, now) -> None:
        self.add_status_history(StatusEntry(status=status, timestamp=now, note=note, actor=actor or "system"))

    def change_status(self, new_status, note=None, actor="system", now=None):
        """Move to ``new_status`` and record it in the status history."""
        target = OrderStatus(new_status)
        self._assert_can_transition(target)
        now = now or datetime.now(UTC)
        previous = self.status

        self.status = target.value
        self.updated_at = now
        self._append_history(target.value, note, actor, now)

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                previous_status=previous,
                new_status=target.value,
                note=note,
                actor=actor,
                changed_at=now,
            )
        )

    def cancel(self, reason, actor="system", now=None):
        if self.is_terminal:
            raise StateError(f"Cannot cancel an order that is {self.status}")
        self.change_status(OrderStatus.CANCELLED.value, note=reason, actor=actor, now=now)

    # -------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------
    def record_payment(self, payment_id, transaction_id, amount, actor="system", now=None):
        """Mark the order paid. The caller updates the Payment in the same unit of work."""
        now = now or datetime.now(UTC)
        target = OrderStatus.COMPLETED if self.fulfilled_on_payment else OrderStatus.PROCESSING
        self._assert_can_transition(target)
        previous = self.status
        note = f"Payment completed ({transaction_id})"

        with atomic_change(self):
            self.payment_status = OrderPaymentStatus.COMPLETED.value
            self.payment_id = payment_id
            self.transaction_id = transaction_id
            self.paid_at = now
            self.status = target.value
            self.updated_at = now
            self._append_history(target.value, note, actor, now)

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                payment_id=str(payment_id),
                transaction_id=transaction_id,
                amount=amount,
                status=target.value,
                paid_at=now,
            )
        )
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                previous_status=previous,
                new_status=target.value,
                note=note,
                actor=actor,
                changed_at=now,
            )
        )

    def mirror_payment_status(self, payment_status, payment_id=None, transaction_id=None):
        """Keep ``payment_status`` in step with a Payment change that leaves the order status alone."""
        self.payment_status = OrderPaymentStatus(payment_status).value
        if payment_id is not None:
            self.payment_id = payment_id
        if transaction_id is not None:
            self.transaction_id = transaction_id
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def record_refund(self, fully_refunded, note=None, actor="system", now=None):
        """Reflect a completed refund. A full refund ends the order as refunded."""
        now = now or datetime.now(UTC)
        if not fully_refunded:
            self.mirror_payment_status(OrderPaymentStatus.PARTIALLY_REFUNDED.value)
            return

        self.payment_status = OrderPaymentStatus.REFUNDED.value
        if OrderStatus(self.status) is OrderStatus.REFUNDED:
            return
        if OrderStatus.REFUNDED not in _VALID_TRANSITIONS[OrderStatus(self.status)]:
            self.cancel(note or "Cancelled for refund", actor=actor, now=now)
        self.change_status(OrderStatus.REFUNDED.value, note=note or "Order refunded", actor=actor, now=now)

    # -------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------
    def assign_priority(self, priority):
        new_priority = OrderPriority(priority).value
        if new_priority == self.priority:
            return
        previous = self.priority
        now = datetime.now(UTC)
        self.priority = new_priority
        self.updated_at = now
        self.raise_(
            OrderPriorityChanged(
                order_id=str(self.id),
                previous_priority=previous,
                new_priority=new_priority,
                changed_at=now,
            )
        )

    def assign_tracking(self, tracking_number, carrier=None, actor="system"):
        if OrderStatus(self.status) in {OrderStatus.CANCELLED, OrderStatus.REFUNDED}:
            raise StateError(f"Cannot assign tracking to an order that is {self.status}")
        now = datetime.now(UTC)
        self.tracking_number = tracking_number
        self.carrier = carrier
        self.updated_at = now
        self._append_history(self.status, f"Tracking assigned: {tracking_number}", actor, now)
        self.raise_(
            OrderTrackingAssigned(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                tracking_number=tracking_number,
                carrier=carrier,
                assigned_at=now,
            )
        )

    def add_note(self, note, actor="system"):
        now = datetime.now(UTC)
        self.updated_at = now
        self._append_history(self.status, note, actor, now)

    # -------------------------------------------------------------------
    # Entitlements
    # -------------------------------------------------------------------
    def issue_download_link(self, product_id, url, max_downloads, valid_days, now=None):
        """Issue the download link for a product, or refresh the one already issued."""
        now = now or datetime.now(UTC)
        expires_at = now + timedelta(days=valid_days)
        link = self.download_link_for(product_id)
        if link is not None:
            link.url = url
            link.max_downloads = max(max_downloads, link.download_count or 0)
            link.expires_at = expires_at
            return link

        link = DownloadLink(
            product_id=product_id,
            url=url,
            expires_at=expires_at,
            download_count=0,
            max_downloads=max_downloads,
            issued_at=now,
        )
        self.add_download_links(link)
        self.raise_(
            DownloadLinkIssued(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                product_id=str(product_id),
                max_downloads=max_downloads,
                expires_at=expires_at,
            )
        )
        return link

    def issue_license_key(self, product_id, license_type, max_activations, key, expires_at, now=None):
        """Issue a license key for a product, or refresh the one already issued."""
        existing = self.license_key_for(product_id)
        if existing is not None:
            existing.max_activations = max_activations
            existing.expires_at = expires_at
            return existing

        license_key = LicenseKey(
            product_id=product_id,
            key=key,
            license_type=license_type,
            max_activations=max_activations,
            issued_at=now or datetime.now(UTC),
            expires_at=expires_at,
        )
        self.add_license_keys(license_key)
        self.raise_(
            LicenseKeyIssued(
                order_id=str(self.id),
                customer_id=str(self.customer_id),
                product_id=str(product_id),
                license_key=key,
                max_activations=max_activations,
                expires_at=expires_at,
            )
        )
        return license_key


@commerce.repository(part_of=Order)
class OrderRepository:
    def non_terminal(self) -> list[Order]:
        open_statuses = {status.value for status in OrderStatus} - {status.value for status in TERMINAL_STATUSES}
        return [order for order in self._dao.query.all().items if order.status in open_statuses]
