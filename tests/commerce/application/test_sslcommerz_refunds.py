"""Refund execution through the SSLCommerz adapter when the gateway stalls."""

import httpx
import pytest
from commerce.gateway.sslcommerz_adapter import SSLCommerzGateway
from commerce.payment.payment import PaymentStatus
from commerce.refund.execution import ExecuteRefund, ReconcileRefunds
from commerce.refund.policy import ConfigureRefundPolicy
from commerce.refund.refund_request import RefundStatus
from commerce.refund.requests import RequestRefund
from protean import current_domain


@pytest.fixture
def bank():
    """Scripted refund API: each call pops the next behaviour."""
    state = {"script": [], "refe_ids": []}

    def handler(request):
        state["refe_ids"].append(request.url.params["refe_id"])
        step = state["script"].pop(0)
        if step == "timeout":
            raise httpx.ReadTimeout("read timed out", request=request)
        return httpx.Response(200, json={"APIConnect": "DONE", "status": "success", "refund_ref_id": "RR1"})

    state["handler"] = handler
    return state


@pytest.fixture
def order(make_product, paid_order, services, bank, monkeypatch):
    current_domain.process(
        ConfigureRefundPolicy(product_type="digital", requires_approval=False),
        asynchronous=False,
    )
    product = make_product(name="Course", price=100.0)
    session = paid_order("cust-1", [{"product_id": str(product.id)}])

    client = httpx.Client(base_url="https://sandbox.sslcommerz.com", transport=httpx.MockTransport(bank["handler"]))
    gateway = SSLCommerzGateway("teststore", "secret", timeout_seconds=1.0, client=client)
    monkeypatch.setattr(services, "gateway", gateway)
    return session


def test_timed_out_refund_reconciles_with_same_reference(order, bank, load_payment):
    bank["script"] = ["timeout", "success"]
    refund = current_domain.process(
        RequestRefund(
            order_id=order["order_id"],
            customer_id="cust-1",
            refund_type="full",
            reason="Duplicate purchase",
        ),
        asynchronous=False,
    )

    executed = current_domain.process(ExecuteRefund(refund_id=refund["refund_id"]), asynchronous=False)
    assert executed["status"] == RefundStatus.RECONCILING.value
    assert load_payment(order["payment_id"]).status == PaymentStatus.COMPLETED.value

    summary = current_domain.process(ReconcileRefunds(), asynchronous=False)

    assert summary["completed"] == 1
    assert bank["refe_ids"] == [refund["refund_id"], refund["refund_id"]]
    assert load_payment(order["payment_id"]).status == PaymentStatus.REFUNDED.value
