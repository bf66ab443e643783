"""Line item input — a tagged variant of product or subscription plan.

Checkout input arrives either as cart lines (``ref`` + ``type``) or as an
explicit list naming ``product_id`` or ``plan_id``. Both shapes are parsed
into ``LineSpec``, which carries exactly one reference and the tag saying
what it points at. A dict naming both a product and a plan is rejected.
"""

from dataclasses import dataclass
from enum import Enum

from protean.exceptions import ValidationError


class LineType(Enum):
    PRODUCT = "product"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class LineSpec:
    line_type: LineType
    ref: str
    quantity: int = 1
    price: float | None = None
    original_price: float | None = None

    @property
    def product_id(self) -> str | None:
        return self.ref if self.line_type is LineType.PRODUCT else None

    @property
    def plan_id(self) -> str | None:
        return self.ref if self.line_type is LineType.SUBSCRIPTION else None

    @classmethod
    def from_dict(cls, data: dict) -> "LineSpec":
        product_id = data.get("product_id")
        plan_id = data.get("plan_id")
        if product_id and plan_id:
            raise ValidationError({"items": ["A line item cannot reference both a product and a subscription plan"]})

        if product_id:
            line_type, ref = LineType.PRODUCT, product_id
        elif plan_id:
            line_type, ref = LineType.SUBSCRIPTION, plan_id
        elif data.get("ref") and data.get("type"):
            try:
                line_type = LineType(data["type"])
            except ValueError:
                raise ValidationError({"items": [f"Unknown line item type: {data['type']}"]}) from None
            ref = data["ref"]
        else:
            raise ValidationError({"items": ["Each line item needs a product_id or a plan_id"]})

        quantity = int(data.get("quantity", data.get("qty", 1)))
        if quantity < 1:
            raise ValidationError({"items": ["Quantity must be at least 1"]})

        return cls(
            line_type=line_type,
            ref=str(ref),
            quantity=quantity,
            price=data.get("price"),
            original_price=data.get("original_price"),
        )


def parse_lines(items: list[dict]) -> list[LineSpec]:
    if not items:
        raise ValidationError({"items": ["At least one line item is required"]})
    return [LineSpec.from_dict(item) for item in items]
