"""Cart aggregate (CQRS) — the checkout collaborator.

Cart editing is out of scope for the payment engines; they read a snapshot
at checkout and clear the cart once the payment is fulfilled. Clearing an
already empty cart changes nothing.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from commerce.cart.events import CartCleared
from commerce.domain import commerce
from commerce.order.lines import LineSpec, LineType


class CartStatus(Enum):
    ACTIVE = "active"
    CLEARED = "cleared"


@dataclass(frozen=True)
class CartSnapshot:
    cart_id: str
    items: tuple[LineSpec, ...]
    subtotal: float
    coupon_code: str | None
    coupon_discount: float


@commerce.entity(part_of="Cart")
class CartLine:
    ref = Identifier(required=True)
    line_type = String(choices=LineType, default=LineType.PRODUCT.value)
    quantity = Integer(required=True, min_value=1)
    price = Float(required=True, min_value=0.0)
    original_price = Float()


@commerce.aggregate
class Cart:
    customer_id = Identifier(required=True)
    lines = HasMany(CartLine)
    coupon_code = String(max_length=50)
    coupon_discount = Float(default=0.0, min_value=0.0)
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    cleared_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, customer_id):
        now = datetime.now(UTC)
        return cls(customer_id=customer_id, status=CartStatus.ACTIVE.value, created_at=now, updated_at=now)

    def add_line(self, ref, price, quantity=1, line_type=LineType.PRODUCT.value, original_price=None):
        existing = next((line for line in self.lines if str(line.ref) == str(ref)), None)
        if existing:
            existing.quantity += quantity
        else:
            self.add_lines(
                CartLine(
                    ref=ref,
                    line_type=line_type,
                    quantity=quantity,
                    price=price,
                    original_price=original_price if original_price is not None else price,
                )
            )
        self.status = CartStatus.ACTIVE.value
        self.updated_at = datetime.now(UTC)

    def apply_coupon(self, coupon_code, discount):
        if discount < 0:
            raise ValidationError({"coupon_discount": ["Coupon discount cannot be negative"]})
        self.coupon_code = coupon_code
        self.coupon_discount = discount
        self.updated_at = datetime.now(UTC)

    @property
    def subtotal(self) -> float:
        return round(sum(line.price * line.quantity for line in self.lines), 2)

    def snapshot(self) -> CartSnapshot:
        if not self.lines:
            raise ValidationError({"cart": ["Cart is empty"]})
        return CartSnapshot(
            cart_id=str(self.id),
            items=tuple(
                LineSpec(
                    line_type=LineType(line.line_type),
                    ref=str(line.ref),
                    quantity=line.quantity,
                    price=line.price,
                    original_price=line.original_price,
                )
                for line in self.lines
            ),
            subtotal=self.subtotal,
            coupon_code=self.coupon_code,
            coupon_discount=self.coupon_discount or 0.0,
        )

    def clear(self, reason=None):
        """Empty the cart after checkout. No-op when already empty."""
        if not self.lines and not self.coupon_code:
            return

        for line in list(self.lines):
            self.remove_lines(line)
        self.coupon_code = None
        self.coupon_discount = 0.0
        now = datetime.now(UTC)
        self.status = CartStatus.CLEARED.value
        self.cleared_at = now
        self.updated_at = now

        self.raise_(
            CartCleared(
                cart_id=str(self.id),
                customer_id=str(self.customer_id),
                reason=reason,
                cleared_at=now,
            )
        )
