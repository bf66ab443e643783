"""Tests for download links, license keys and subscription access windows."""

from datetime import UTC, datetime, timedelta

import pytest
from commerce.entitlement.billing import access_window
from commerce.entitlement.licensing import generate_license_key, max_activations_for
from commerce.errors import DownloadDenied, StateError
from commerce.order.order import Order, OrderPricing


def _paid_order():
    order = Order.create(
        customer_id="cust-1",
        lines=[
            {
                "line_type": "product",
                "product_id": "prod-1",
                "title": "Guide",
                "quantity": 1,
                "unit_price": 20.0,
                "product_type": "digital",
            }
        ],
        pricing=OrderPricing.compute(20.0),
    )
    order.record_payment("pay-1", "PAY_1", 20.0)
    return order


class TestDownloadLink:
    def test_consume_until_limit(self):
        order = _paid_order()
        link = order.issue_download_link("prod-1", "https://files/guide.zip", max_downloads=2, valid_days=30)

        assert link.consume() == "https://files/guide.zip"
        assert link.consume() == "https://files/guide.zip"
        assert link.download_count == 2
        assert link.remaining_downloads == 0

        with pytest.raises(DownloadDenied) as exc:
            link.consume()
        assert exc.value.reason == DownloadDenied.LIMIT_EXCEEDED
        assert link.download_count == 2

    def test_expired_link_denied(self):
        order = _paid_order()
        link = order.issue_download_link("prod-1", "https://files/guide.zip", max_downloads=5, valid_days=30)
        with pytest.raises(DownloadDenied) as exc:
            link.consume(datetime.now(UTC) + timedelta(days=31))
        assert exc.value.reason == DownloadDenied.EXPIRED

    def test_reissue_refreshes_existing_link(self):
        order = _paid_order()
        first = order.issue_download_link("prod-1", "https://files/v1.zip", max_downloads=5, valid_days=30)
        first.consume()
        second = order.issue_download_link("prod-1", "https://files/v2.zip", max_downloads=5, valid_days=30)
        assert len(order.download_links) == 1
        assert second.url == "https://files/v2.zip"
        assert second.download_count == 1


class TestLicenseKey:
    @pytest.mark.parametrize(
        "license_type, expected",
        [("none", None), ("single", 1), ("multiple", 5), ("unlimited", None), (None, None)],
    )
    def test_activation_limits(self, license_type, expected):
        assert max_activations_for(license_type) == expected

    def test_keys_are_unique(self):
        keys = {generate_license_key() for _ in range(50)}
        assert len(keys) == 50
        assert all(key.startswith("LIC-") for key in keys)

    def test_activation_limit_enforced(self):
        order = _paid_order()
        key = order.issue_license_key(
            "prod-1",
            "single",
            max_activations=1,
            key=generate_license_key(),
            expires_at=datetime.now(UTC) + timedelta(days=365),
        )
        key.activate("laptop")
        key.activate("laptop")
        assert key.devices == ["laptop"]
        with pytest.raises(StateError):
            key.activate("desktop")

        key.deactivate("laptop")
        key.activate("desktop")
        assert key.devices == ["desktop"]

    def test_expired_key_cannot_activate(self):
        order = _paid_order()
        key = order.issue_license_key(
            "prod-1",
            "multiple",
            max_activations=5,
            key=generate_license_key(),
            expires_at=datetime.now(UTC) - timedelta(days=1),
        )
        with pytest.raises(StateError):
            key.activate("laptop")


class TestAccessWindow:
    def test_monthly_follows_calendar(self):
        starts_at = datetime(2024, 1, 15, tzinfo=UTC)
        assert access_window("monthly", starts_at) == (starts_at, datetime(2024, 2, 15, tzinfo=UTC))

    def test_month_end_is_clamped(self):
        _, ends_at = access_window("monthly", datetime(2024, 1, 31, tzinfo=UTC))
        assert ends_at == datetime(2024, 2, 29, tzinfo=UTC)

    def test_quarterly_and_yearly(self):
        starts_at = datetime(2024, 1, 15, tzinfo=UTC)
        assert access_window("quarterly", starts_at)[1] == datetime(2024, 4, 15, tzinfo=UTC)
        assert access_window("yearly", starts_at)[1] == datetime(2025, 1, 15, tzinfo=UTC)

    def test_lifetime_is_far_future(self):
        _, ends_at = access_window("lifetime", datetime(2024, 1, 15, tzinfo=UTC))
        assert ends_at.year == 2124
