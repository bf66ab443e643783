"""Integration tests for payment and entitlement endpoints via TestClient."""

import pytest
from commerce.api import license_router, order_router, payment_router, register_error_handlers
from commerce.order.order import Order, OrderPricing
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean import current_domain

_SIGNED = {"X-Gateway-Signature": "test-signature"}


@pytest.fixture()
def client():
    app = FastAPI()
    app.include_router(payment_router)
    app.include_router(order_router)
    app.include_router(license_router)
    register_error_handlers(app)
    return TestClient(app)


@pytest.fixture()
def product_id(make_product):
    return str(make_product(name="Editor", price=25.0, license_type="multiple").id)


def _open_session(client, product_id, customer_id="cust-api-1"):
    response = client.post(
        "/payments/sessions",
        json={"customer_id": customer_id, "items": [{"product_id": product_id}]},
    )
    assert response.status_code == 201
    return response.json()


def _callback(client, transaction_id, headers=_SIGNED):
    return client.post(
        "/payments/callback",
        json={"transaction_id": transaction_id, "payload": {"payment_method": "card"}},
        headers=headers,
    )


class TestSessionAPI:
    def test_open_session(self, client, product_id):
        session = _open_session(client, product_id)
        assert session["transaction_id"].startswith("PAY_")
        assert session["gateway_url"]

    def test_unknown_product_returns_400(self, client):
        response = client.post("/payments/sessions", json={"customer_id": "c", "items": [{"product_id": "nope"}]})
        assert response.status_code == 400

    def test_retry_of_pending_payment_returns_409(self, client, product_id):
        session = _open_session(client, product_id)
        response = client.post(f"/payments/{session['payment_id']}/retry")
        assert response.status_code == 409


class TestCallbackAPI:
    def test_signed_callback_completes_payment(self, client, product_id):
        session = _open_session(client, product_id)
        response = _callback(client, session["transaction_id"])
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["order_status"] == "completed"

    def test_unsigned_callback_rejected(self, client, product_id):
        session = _open_session(client, product_id)
        response = _callback(client, session["transaction_id"], headers={"X-Gateway-Signature": "forged"})
        assert response.status_code == 401
        order = current_domain.repository_for(Order).get(session["order_id"])
        assert order.status == "pending"

    def test_duplicate_callback_reports_already_processed(self, client, product_id):
        session = _open_session(client, product_id)
        _callback(client, session["transaction_id"])
        response = _callback(client, session["transaction_id"])
        assert response.status_code == 200
        assert response.json()["already_processed"] is True

    def test_gateway_timeout_flags_payment(self, client, product_id):
        client.post("/payments/gateway/configure", json={"verify_outcome": "timeout"})
        session = _open_session(client, product_id)

        response = _callback(client, session["transaction_id"])
        assert response.json()["needs_reconciliation"] is True

        client.post("/payments/gateway/configure", json={"verify_outcome": "valid"})
        summary = client.post("/payments/reconcile").json()
        assert summary["completed"] == 1

    def test_cancel(self, client, product_id):
        session = _open_session(client, product_id)
        response = client.post("/payments/cancel", json={"transaction_id": session["transaction_id"]})
        assert response.json()["status"] == "cancelled"


class TestGatewayConfigureAPI:
    def test_configure_fake_gateway(self, client, gateway):
        response = client.post(
            "/payments/gateway/configure",
            json={"verify_outcome": "invalid", "failure_reason": "Expired card"},
        )
        assert response.status_code == 200
        assert gateway.verify_outcome == "invalid"
        assert gateway.failure_reason == "Expired card"

    def test_unknown_outcome_returns_422(self, client):
        response = client.post("/payments/gateway/configure", json={"verify_outcome": "maybe"})
        assert response.status_code == 422


class TestManualPaymentAPI:
    def test_submit_and_approve(self, client, product_id):
        order = Order.create(
            customer_id="cust-api-1",
            lines=[
                {
                    "line_type": "product",
                    "product_id": product_id,
                    "title": "Editor",
                    "quantity": 1,
                    "unit_price": 25.0,
                    "product_type": "digital",
                }
            ],
            pricing=OrderPricing.compute(25.0),
        )
        current_domain.repository_for(Order).add(order)

        submitted = client.post(
            "/payments/manual",
            json={
                "order_id": str(order.id),
                "customer_id": "cust-api-1",
                "method": "bkash",
                "sender_account": "01700000000",
                "reference_number": "BK-77",
            },
        )
        assert submitted.status_code == 201
        assert submitted.json()["status"] == "pending_verification"

        reviewed = client.put(
            f"/payments/manual/{submitted.json()['payment_id']}/review",
            json={"action": "approve", "reviewed_by": "finance"},
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["order_status"] == "completed"


class TestEntitlementAPI:
    def test_download_and_license(self, client, product_id):
        session = _open_session(client, product_id)
        _callback(client, session["transaction_id"])

        download = client.post(
            f"/orders/{session['order_id']}/downloads/{product_id}",
            json={"customer_id": "cust-api-1"},
        )
        assert download.status_code == 200
        assert download.json()["download_count"] == 1

        order = current_domain.repository_for(Order).get(session["order_id"])
        key = order.license_key_for(product_id).key
        activated = client.post("/licenses/activate", json={"license_key": key, "device_id": "laptop"})
        assert activated.json() == {"license_key": key, "activations": 1, "max_activations": 5}

    def test_download_of_unpaid_order_returns_403(self, client, product_id):
        session = _open_session(client, product_id)
        response = client.post(
            f"/orders/{session['order_id']}/downloads/{product_id}",
            json={"customer_id": "cust-api-1"},
        )
        assert response.status_code == 403
        assert response.json()["reason"] == "not_paid"
