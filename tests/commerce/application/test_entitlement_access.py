"""Application tests for downloads, license activations and subscription fulfillment."""

from datetime import UTC, datetime

import pytest
from commerce.catalog.plan import SubscriptionPlan
from commerce.catalog.product import Product
from commerce.entitlement.access import ActivateLicense, DeactivateLicense, RequestDownload
from commerce.entitlement.subscription import Subscription
from commerce.errors import DownloadDenied, StateError
from commerce.payment.verification import verify_payment
from dateutil.relativedelta import relativedelta
from protean import current_domain
from protean.exceptions import ObjectNotFoundError


def _download(order_id, product_id, customer_id="cust-1"):
    return current_domain.process(
        RequestDownload(order_id=order_id, product_id=product_id, customer_id=customer_id),
        asynchronous=False,
    )


def _activate(key, device):
    return current_domain.process(ActivateLicense(license_key=key, device_id=device), asynchronous=False)


class TestDownloads:
    def test_limit_is_enforced(self, make_product, paid_order):
        product = make_product(name="Sample Pack", download_limit=2)
        session = paid_order("cust-1", [{"product_id": str(product.id)}])

        first = _download(session["order_id"], str(product.id))
        second = _download(session["order_id"], str(product.id))
        assert first["url"] == product.digital_file_url
        assert (first["remaining_downloads"], second["remaining_downloads"]) == (1, 0)

        with pytest.raises(DownloadDenied) as exc:
            _download(session["order_id"], str(product.id))
        assert exc.value.reason == DownloadDenied.LIMIT_EXCEEDED
        assert current_domain.repository_for(Product).get(product.id).download_count == 2

    def test_unpaid_order_denied(self, make_product, checkout):
        product = make_product()
        session = checkout("cust-1", [{"product_id": str(product.id)}])
        with pytest.raises(DownloadDenied) as exc:
            _download(session["order_id"], str(product.id))
        assert exc.value.reason == DownloadDenied.NOT_PAID

    def test_other_customer_cannot_see_order(self, make_product, paid_order):
        product = make_product()
        session = paid_order("cust-1", [{"product_id": str(product.id)}])
        with pytest.raises(ObjectNotFoundError):
            _download(session["order_id"], str(product.id), customer_id="cust-2")

    def test_product_outside_order(self, make_product, paid_order):
        bought = make_product(name="Bought")
        other = make_product(name="Other")
        session = paid_order("cust-1", [{"product_id": str(bought.id)}])
        with pytest.raises(ObjectNotFoundError):
            _download(session["order_id"], str(other.id))


class TestLicenses:
    def test_activation_limit(self, make_product, paid_order, load_order):
        product = make_product(name="Editor", license_type="single")
        session = paid_order("cust-1", [{"product_id": str(product.id)}])
        key = load_order(session["order_id"]).license_key_for(str(product.id)).key

        result = _activate(key, "laptop")
        assert result == {"license_key": key, "activations": 1, "max_activations": 1}
        with pytest.raises(StateError):
            _activate(key, "desktop")

        current_domain.process(DeactivateLicense(license_key=key, device_id="laptop"), asynchronous=False)
        assert _activate(key, "desktop")["activations"] == 1

    def test_each_purchase_gets_its_own_key(self, make_product, paid_order, load_order):
        product = make_product(name="Editor", license_type="single")
        first = paid_order("cust-1", [{"product_id": str(product.id)}])
        second = paid_order("cust-1", [{"product_id": str(product.id)}])

        first_key = load_order(first["order_id"]).license_key_for(str(product.id))
        second_key = load_order(second["order_id"]).license_key_for(str(product.id))
        assert first_key.key != second_key.key
        assert first_key.max_activations == second_key.max_activations == 1

    def test_unlicensed_product_has_no_key(self, make_product, paid_order, load_order):
        product = make_product(license_type="none")
        session = paid_order("cust-1", [{"product_id": str(product.id)}])
        assert load_order(session["order_id"]).license_keys == []

    def test_unknown_key(self):
        with pytest.raises(ObjectNotFoundError):
            _activate("LIC-NOPE", "laptop")


class TestSubscriptionFulfillment:
    def test_subscription_starts_for_plan(self, make_plan, paid_order, load_payment):
        plan = make_plan(billing_cycle="monthly")
        before = datetime.now(UTC)
        session = paid_order("cust-1", [{"plan_id": str(plan.id)}])

        subscription = current_domain.repository_for(Subscription).for_purchase(
            session["transaction_id"], str(plan.id)
        )
        assert subscription.is_active(before + relativedelta(months=1))
        assert not subscription.is_active(before + relativedelta(months=1, days=1))

        payment = load_payment(session["payment_id"])
        assert len(payment.subscription_access) == 1
        assert payment.subscription_access[0].subscription_id == str(subscription.id)
        assert current_domain.repository_for(SubscriptionPlan).get(plan.id).total_subscribers == 1

    def test_duplicate_callback_keeps_one_subscription(self, make_plan, paid_order):
        plan = make_plan()
        session = paid_order("cust-1", [{"plan_id": str(plan.id)}])
        verify_payment(session["transaction_id"])

        subscriptions = current_domain.repository_for(Subscription)._dao.query.all().items
        assert len(subscriptions) == 1
