"""Application tests for verification callbacks, fulfillment and reconciliation."""

import threading
import time

import pytest
from commerce.catalog.product import Product
from commerce.errors import StateError
from commerce.fulfillment.counters import SalesLedgerEntry
from commerce.order.order import OrderPaymentStatus, OrderStatus
from commerce.payment.payment import PaymentStatus
from commerce.payment.verification import CancelPayment, ReconcilePayments, verify_payment
from protean import current_domain
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError


@pytest.fixture
def session(make_product, checkout):
    product = make_product(name="Guide", price=20.0, license_type="single")
    return checkout("cust-1", [{"product_id": str(product.id)}]) | {"product_id": str(product.id)}


class TestValidCallback:
    def test_completes_payment_and_order(self, session, load_order, load_payment):
        result = verify_payment(session["transaction_id"], {"payment_method": "card"})

        assert result["status"] == PaymentStatus.COMPLETED.value
        assert result["order_status"] == OrderStatus.COMPLETED.value
        assert load_payment(session["payment_id"]).is_captured
        order = load_order(session["order_id"])
        assert order.payment_status == OrderPaymentStatus.COMPLETED.value
        assert order.transaction_id == session["transaction_id"]

    def test_issues_entitlements(self, session, load_order):
        verify_payment(session["transaction_id"])

        order = load_order(session["order_id"])
        link = order.download_link_for(session["product_id"])
        assert link is not None
        assert link.max_downloads == 5
        key = order.license_key_for(session["product_id"])
        assert key.key.startswith("LIC-")
        assert key.max_activations == 1

    def test_updates_catalog_counters(self, session):
        verify_payment(session["transaction_id"])
        product = current_domain.repository_for(Product).get(session["product_id"])
        assert product.total_sales == 1
        assert product.revenue == 20.0

    def test_physical_order_waits_for_shipping(self, make_product, checkout, load_order):
        lamp = make_product(name="Lamp", price=80.0, product_type="physical", digital_file_url=None)
        session = checkout("cust-1", [{"product_id": str(lamp.id)}])
        verify_payment(session["transaction_id"])
        order = load_order(session["order_id"])
        assert order.status == OrderStatus.PROCESSING.value
        assert order.download_links == []

    def test_customer_is_notified(self, session, notifier):
        verify_payment(session["transaction_id"])
        sent = notifier.of_type("payment_completed")
        assert len(sent) == 1
        assert sent[0]["user_id"] == "cust-1"
        assert sent[0]["payload"]["amount"] == 20.0

    def test_notifier_failure_does_not_undo_payment(self, session, notifier, load_payment):
        notifier.configure(raise_error=True)
        verify_payment(session["transaction_id"])
        assert load_payment(session["payment_id"]).status == PaymentStatus.COMPLETED.value


class TestDuplicateCallback:
    def test_second_callback_is_a_no_op(self, session, load_order, gateway):
        verify_payment(session["transaction_id"])
        result = verify_payment(session["transaction_id"])

        assert result["already_processed"] is True
        assert len(gateway.calls_to("verify")) == 1
        order = load_order(session["order_id"])
        assert len(order.completed_history_entries()) == 1
        assert len(order.download_links) == 1

    def test_counters_applied_once(self, session):
        verify_payment(session["transaction_id"])
        verify_payment(session["transaction_id"])
        assert current_domain.repository_for(Product).get(session["product_id"]).total_sales == 1


class TestInvalidCallback:
    def test_payment_fails_and_order_stays_pending(self, session, gateway, load_order, load_payment, notifier):
        gateway.configure(verify_outcome="invalid", failure_reason="Insufficient funds")
        result = verify_payment(session["transaction_id"])

        assert result["status"] == PaymentStatus.FAILED.value
        assert result["failure_reason"] == "Insufficient funds"
        order = load_order(session["order_id"])
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == OrderPaymentStatus.FAILED.value
        assert order.download_links == []
        assert load_payment(session["payment_id"]).failure_reason == "Insufficient funds"
        assert len(notifier.of_type("payment_failed")) == 1

    def test_failed_payment_cannot_be_verified_again(self, session, gateway):
        gateway.configure(verify_outcome="invalid")
        verify_payment(session["transaction_id"])
        gateway.configure(verify_outcome="valid")
        with pytest.raises(StateError):
            verify_payment(session["transaction_id"])


class TestUnknownOutcome:
    @pytest.mark.parametrize("outcome", ["timeout", "unavailable"])
    def test_payment_is_flagged_not_failed(self, session, gateway, load_payment, outcome):
        gateway.configure(verify_outcome=outcome)
        result = verify_payment(session["transaction_id"], {"val_id": "v-1"})

        assert result["status"] == PaymentStatus.PENDING.value
        assert result["needs_reconciliation"] is True
        payment = load_payment(session["payment_id"])
        assert payment.needs_reconciliation is True
        assert payment.failure_reason is None

    def test_reconciliation_completes_flagged_payment(self, session, gateway, load_order):
        gateway.configure(verify_outcome="timeout")
        verify_payment(session["transaction_id"], {"val_id": "v-1"})
        gateway.configure(verify_outcome="valid")

        summary = current_domain.process(ReconcilePayments(requested_by="ops"), asynchronous=False)

        assert summary["checked"] == 1
        assert summary["completed"] == 1
        assert load_order(session["order_id"]).status == OrderStatus.COMPLETED.value
        assert gateway.calls_to("verify")[-1]["provider_payload"] == {"val_id": "v-1"}

    def test_reconciliation_leaves_still_unknown_payments(self, session, gateway):
        gateway.configure(verify_outcome="timeout")
        verify_payment(session["transaction_id"])

        summary = current_domain.process(ReconcilePayments(), asynchronous=False)

        assert summary["still_unknown"] == 1
        assert summary["completed"] == 0


class TestCancelAndUnknown:
    def test_cancel_payment(self, session, load_payment, load_order):
        current_domain.process(
            CancelPayment(transaction_id=session["transaction_id"], reason="Customer closed the page"),
            asynchronous=False,
        )
        assert load_payment(session["payment_id"]).status == PaymentStatus.CANCELLED.value
        assert load_order(session["order_id"]).payment_status == OrderPaymentStatus.CANCELLED.value

    def test_unknown_transaction(self):
        with pytest.raises(ObjectNotFoundError):
            verify_payment("PAY_DOES_NOT_EXIST")


class TestConcurrentCallbacks:
    def test_parallel_callbacks_fulfill_once(self, _commerce_domain, session, gateway, load_order, monkeypatch):
        verify = gateway.verify

        def slow_verify(transaction_id, provider_payload):
            time.sleep(0.05)
            return verify(transaction_id, provider_payload)

        monkeypatch.setattr(gateway, "verify", slow_verify)
        barrier = threading.Barrier(2)
        results, errors = [], []

        def callback():
            ctx = _commerce_domain.domain_context()
            ctx.push()
            try:
                barrier.wait()
                results.append(verify_payment(session["transaction_id"], {"payment_method": "card"}))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                ctx.pop()

        threads = [threading.Thread(target=callback) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []
        assert sorted(bool(result.get("already_processed")) for result in results) == [False, True]
        assert len(gateway.calls_to("verify")) == 1
        order = load_order(session["order_id"])
        assert len(order.completed_history_entries()) == 1
        assert len(order.license_keys) == 1
        assert current_domain.repository_for(SalesLedgerEntry)._dao.query.all().total == 1
        assert current_domain.repository_for(Product).get(session["product_id"]).total_sales == 1

    def test_version_conflict_is_retried_as_duplicate(self, _commerce_domain, session, load_order, monkeypatch):
        process = _commerce_domain.process
        attempts = []

        def conflicting_process(command, asynchronous=True):
            attempts.append(command)
            result = process(command, asynchronous=asynchronous)
            if len(attempts) == 1:
                # another worker committed the same payment first
                raise ExpectedVersionError("Wrong expected version")
            return result

        monkeypatch.setattr(_commerce_domain, "process", conflicting_process)

        result = verify_payment(session["transaction_id"])

        assert len(attempts) == 2
        assert result["already_processed"] is True
        assert len(load_order(session["order_id"]).completed_history_entries()) == 1
