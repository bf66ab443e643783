"""Product aggregate (CQRS) — the catalog view the commerce engines need.

Catalog management lives elsewhere; this aggregate carries only what
checkout and fulfillment read (price, availability, stock, the digital file
and its licensing) and the counters they write back (sales, revenue,
downloads). Counters are only ever incremented.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import Boolean, DateTime, Float, Integer, String

from commerce.domain import commerce


class ProductType(Enum):
    DIGITAL = "digital"
    PHYSICAL = "physical"
    SERVICE = "service"


class LicenseType(Enum):
    NONE = "none"
    SINGLE = "single"
    MULTIPLE = "multiple"
    UNLIMITED = "unlimited"


@commerce.aggregate
class Product:
    name = String(max_length=255, required=True)
    price = Float(required=True, min_value=0.0)
    product_type = String(choices=ProductType, default=ProductType.DIGITAL.value)
    is_active = Boolean(default=True)

    # Stock applies to physical goods that track inventory
    track_inventory = Boolean(default=False)
    stock_quantity = Integer(default=0)

    # Digital delivery
    digital_file_url = String(max_length=1000)
    download_limit = Integer(min_value=1)
    license_type = String(choices=LicenseType, default=LicenseType.NONE.value)

    # Counters
    total_sales = Integer(default=0)
    revenue = Float(default=0.0)
    download_count = Integer(default=0)

    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(
        cls,
        name,
        price,
        product_type=ProductType.DIGITAL.value,
        digital_file_url=None,
        download_limit=None,
        license_type=LicenseType.NONE.value,
        track_inventory=False,
        stock_quantity=0,
        is_active=True,
    ):
        now = datetime.now(UTC)
        return cls(
            name=name,
            price=price,
            product_type=product_type,
            digital_file_url=digital_file_url,
            download_limit=download_limit,
            license_type=license_type,
            track_inventory=track_inventory,
            stock_quantity=stock_quantity,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_digital(self) -> bool:
        return self.product_type == ProductType.DIGITAL.value

    def unavailability_reason(self, quantity: int) -> str | None:
        """Why ``quantity`` units cannot be bought right now, or None."""
        if not self.is_active:
            return f"Product '{self.name}' is not available"
        if self.track_inventory and self.product_type == ProductType.PHYSICAL.value:
            if (self.stock_quantity or 0) < quantity:
                return f"Insufficient stock for '{self.name}'. Available: {self.stock_quantity or 0}"
        return None

    def record_sale(self, quantity: int, amount: float) -> None:
        self.total_sales = (self.total_sales or 0) + quantity
        self.revenue = round((self.revenue or 0.0) + amount, 2)
        self.updated_at = datetime.now(UTC)

    def record_download(self) -> None:
        self.download_count = (self.download_count or 0) + 1
