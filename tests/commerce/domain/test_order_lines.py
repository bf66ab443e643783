"""Tests for the tagged line item input and the OrderLine entity."""

import pytest
from commerce.order.lines import LineSpec, LineType, parse_lines
from commerce.order.order import OrderLine
from protean.exceptions import ValidationError


class TestLineSpec:
    def test_product_reference(self):
        spec = LineSpec.from_dict({"product_id": "prod-1", "quantity": 2})
        assert spec.line_type is LineType.PRODUCT
        assert spec.product_id == "prod-1"
        assert spec.plan_id is None
        assert spec.quantity == 2

    def test_plan_reference(self):
        spec = LineSpec.from_dict({"plan_id": "plan-1"})
        assert spec.line_type is LineType.SUBSCRIPTION
        assert spec.plan_id == "plan-1"
        assert spec.quantity == 1

    def test_cart_shape_with_type_tag(self):
        spec = LineSpec.from_dict({"ref": "plan-9", "type": "subscription", "qty": 3, "price": 9.0})
        assert spec.line_type is LineType.SUBSCRIPTION
        assert spec.quantity == 3
        assert spec.price == 9.0

    def test_both_references_rejected(self):
        with pytest.raises(ValidationError) as exc:
            LineSpec.from_dict({"product_id": "prod-1", "plan_id": "plan-1"})
        assert "both" in str(exc.value.messages["items"][0])

    def test_missing_reference_rejected(self):
        with pytest.raises(ValidationError):
            LineSpec.from_dict({"quantity": 1})

    def test_unknown_type_tag_rejected(self):
        with pytest.raises(ValidationError):
            LineSpec.from_dict({"ref": "x", "type": "gift_card"})

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValidationError):
            LineSpec.from_dict({"product_id": "prod-1", "quantity": 0})

    def test_empty_list_rejected(self):
        with pytest.raises(ValidationError):
            parse_lines([])


class TestOrderLine:
    def test_product_line(self):
        line = OrderLine(line_type="product", product_id="prod-1", title="Book", quantity=2, unit_price=10.0)
        assert line.ref == "prod-1"
        assert line.line_total == 20.0
        assert line.refund_category == "digital"

    def test_physical_product_category(self):
        line = OrderLine(
            line_type="product",
            product_id="prod-1",
            title="Mug",
            quantity=1,
            unit_price=10.0,
            product_type="physical",
        )
        assert line.refund_category == "physical"

    def test_plan_line_category(self):
        line = OrderLine(line_type="subscription", plan_id="plan-1", title="Pro", quantity=1, unit_price=30.0)
        assert line.refund_category == "subscription"

    def test_line_with_both_references_rejected(self):
        with pytest.raises(ValidationError):
            OrderLine(
                line_type="product",
                product_id="prod-1",
                plan_id="plan-1",
                title="Both",
                quantity=1,
                unit_price=1.0,
            )

    def test_tag_must_match_reference(self):
        with pytest.raises(ValidationError):
            OrderLine(line_type="subscription", product_id="prod-1", title="Wrong", quantity=1, unit_price=1.0)
