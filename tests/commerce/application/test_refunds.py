"""Application tests for refund requests, policies, execution and reconciliation."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from commerce.errors import ConflictError, StateError
from commerce.order.order import OrderPaymentStatus, OrderStatus
from commerce.payment.payment import PaymentStatus
from commerce.projections.refund_stats import RefundStats, current_stats
from commerce.refund.execution import ExecuteRefund, ReconcileRefunds, ResubmitRefund
from commerce.refund.policy import ConfigureRefundPolicy, evaluate_refund
from commerce.refund.refund_request import RefundRequest, RefundStatus
from commerce.refund.requests import RequestRefund, ReviewRefund, refund_summary
from protean import current_domain
from protean.exceptions import ValidationError


@pytest.fixture
def order(make_product, paid_order):
    product = make_product(name="Course", price=100.0)
    return paid_order("cust-1", [{"product_id": str(product.id)}]) | {"product_id": str(product.id)}


def _request(order, refund_type="full", amount=None, **kwargs):
    items = None
    if amount is not None:
        items = json.dumps([{"ref": order["product_id"], "amount": amount}])
    return current_domain.process(
        RequestRefund(
            order_id=order["order_id"],
            customer_id="cust-1",
            refund_type=refund_type,
            reason="Not what I expected",
            items=items,
            **kwargs,
        ),
        asynchronous=False,
    )


def _execute(refund_id):
    return current_domain.process(ExecuteRefund(refund_id=refund_id), asynchronous=False)


def _policy(**kwargs):
    return current_domain.process(ConfigureRefundPolicy(product_type="digital", **kwargs), asynchronous=False)


@pytest.fixture
def approving_policy():
    """Digital refunds start approved, so they can be executed straight away."""
    return _policy(requires_approval=False)


class TestRequest:
    def test_without_policy_request_waits_for_review(self, order):
        result = _request(order)
        assert result["status"] == RefundStatus.PENDING.value
        assert result["amount"] == 100.0
        request = current_domain.repository_for(RefundRequest).get(result["refund_id"])
        assert request.reviewed_by is None
        assert len(request.lines) == 1

    def test_policy_without_approval_step_approves(self, order, approving_policy):  # noqa: ARG002
        result = _request(order)
        assert result["status"] == RefundStatus.APPROVED.value
        request = current_domain.repository_for(RefundRequest).get(result["refund_id"])
        assert request.reviewed_by == "policy"

    def test_threshold_without_policy_is_not_applied(self, order):
        assert _request(order, "partial", amount=1.0)["status"] == RefundStatus.PENDING.value

    def test_policy_requiring_approval_keeps_request_pending(self, order):
        _policy(requires_approval=True)
        assert _request(order)["status"] == RefundStatus.PENDING.value

    def test_amount_under_threshold_is_auto_approved(self, order):
        _policy(requires_approval=True, auto_approve_threshold=50.0)
        assert _request(order, "partial", amount=40.0)["status"] == RefundStatus.APPROVED.value

    def test_partial_refund_disallowed_by_policy(self, order):
        _policy(allow_partial_refunds=False)
        with pytest.raises(ValidationError) as exc:
            _request(order, "partial", amount=40.0)
        assert "refund_type" in exc.value.messages

    def test_refund_window(self):
        _policy(refund_window_days=30)
        with pytest.raises(ValidationError):
            evaluate_refund(
                datetime.now(UTC),
                {"digital"},
                40.0,
                partial=False,
                now=datetime.now(UTC) + timedelta(days=31),
            )

    def test_partial_amount_cannot_exceed_line(self, order):
        with pytest.raises(ValidationError) as exc:
            _request(order, "partial", amount=150.0)
        assert "items" in exc.value.messages

    def test_open_request_blocks_another(self, order):
        _policy(requires_approval=True)
        _request(order)
        with pytest.raises(ConflictError):
            _request(order, "partial", amount=10.0)

    def test_unpaid_order_cannot_be_refunded(self, make_product, checkout):
        product = make_product()
        session = checkout("cust-1", [{"product_id": str(product.id)}])
        with pytest.raises(StateError):
            _request(session | {"product_id": str(product.id)})


class TestReview:
    def test_reject_with_reason(self, order, notifier):
        _policy(requires_approval=True)
        refund_id = _request(order)["refund_id"]

        result = current_domain.process(
            ReviewRefund(refund_id=refund_id, action="reject", reviewed_by="support", reason="Course completed"),
            asynchronous=False,
        )

        assert result["status"] == RefundStatus.REJECTED.value
        assert notifier.of_type("refund_rejected")[0]["payload"]["reason"] == "Course completed"
        # a rejected request no longer blocks a new one
        assert _request(order)["status"] == RefundStatus.PENDING.value

    def test_approve_then_execute(self, order):
        _policy(requires_approval=True)
        refund_id = _request(order)["refund_id"]
        current_domain.process(
            ReviewRefund(refund_id=refund_id, action="approve", reviewed_by="support"),
            asynchronous=False,
        )
        assert _execute(refund_id)["status"] == RefundStatus.COMPLETED.value

    def test_pending_request_cannot_execute(self, order):
        _policy(requires_approval=True)
        refund_id = _request(order)["refund_id"]
        with pytest.raises(StateError):
            _execute(refund_id)


@pytest.mark.usefixtures("approving_policy")
class TestExecution:
    def test_partial_refunds_add_up_to_full(self, order, load_order, load_payment, gateway, notifier):
        first = _execute(_request(order, "partial", amount=40.0)["refund_id"])
        assert first["fully_refunded"] is False
        payment = load_payment(order["payment_id"])
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert payment.refundable_amount == 60.0
        assert load_order(order["order_id"]).payment_status == OrderPaymentStatus.PARTIALLY_REFUNDED.value

        second = _execute(_request(order, "partial", amount=60.0)["refund_id"])
        assert second["fully_refunded"] is True
        assert load_payment(order["payment_id"]).status == PaymentStatus.REFUNDED.value
        assert load_order(order["order_id"]).status == OrderStatus.REFUNDED.value

        with pytest.raises(StateError):
            _request(order, "partial", amount=1.0)
        assert [call["amount"] for call in gateway.calls_to("refund")] == [40.0, 60.0]
        assert len(notifier.of_type("refund_completed")) == 2

    def test_full_refund_asks_for_what_is_left(self, order):
        _execute(_request(order, "partial", amount=30.0)["refund_id"])
        assert _request(order)["amount"] == 70.0

    def test_declined_refund_fails_and_leaves_payment(self, order, gateway, load_payment, notifier):
        gateway.configure(refund_outcome="declined", failure_reason="Charge too old")
        result = _execute(_request(order)["refund_id"])

        assert result["status"] == RefundStatus.FAILED.value
        assert result["failure_reason"] == "Charge too old"
        assert load_payment(order["payment_id"]).refundable_amount == 100.0
        assert len(notifier.of_type("refund_failed")) == 1

    def test_store_credit_settles_without_gateway(self, order, gateway, load_order):
        result = _execute(_request(order, refund_method="store_credit")["refund_id"])
        assert result["status"] == RefundStatus.COMPLETED.value
        assert gateway.calls_to("refund") == []
        assert load_order(order["order_id"]).status == OrderStatus.REFUNDED.value


@pytest.mark.usefixtures("approving_policy")
class TestUnknownOutcome:
    def test_timeout_leaves_request_reconciling(self, order, gateway, load_payment):
        gateway.configure(refund_outcome="timeout")
        result = _execute(_request(order)["refund_id"])

        assert result["status"] == RefundStatus.RECONCILING.value
        payment = load_payment(order["payment_id"])
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.refundable_amount == 100.0

    def test_resubmit_uses_same_idempotency_key(self, order, gateway, load_payment):
        gateway.configure(refund_outcome="timeout")
        refund_id = _request(order)["refund_id"]
        _execute(refund_id)
        gateway.configure(refund_outcome="succeeded")

        result = current_domain.process(ResubmitRefund(refund_id=refund_id), asynchronous=False)

        assert result["status"] == RefundStatus.COMPLETED.value
        keys = {call["idempotency_key"] for call in gateway.calls_to("refund")}
        assert keys == {refund_id}
        assert load_payment(order["payment_id"]).status == PaymentStatus.REFUNDED.value

    def test_reconcile_refunds(self, order, gateway):
        gateway.configure(refund_outcome="unavailable")
        _execute(_request(order)["refund_id"])

        still = current_domain.process(ReconcileRefunds(), asynchronous=False)
        assert still["still_unknown"] == 1

        gateway.configure(refund_outcome="succeeded")
        summary = current_domain.process(ReconcileRefunds(requested_by="ops"), asynchronous=False)
        assert summary == {"checked": 1, "completed": 1, "failed": 0, "still_unknown": 0, "errors": 0}

    def test_reconciling_request_blocks_new_request(self, order, gateway):
        gateway.configure(refund_outcome="timeout")
        _execute(_request(order, "partial", amount=20.0)["refund_id"])
        with pytest.raises(ConflictError):
            _request(order, "partial", amount=10.0)


@pytest.mark.usefixtures("approving_policy")
class TestReporting:
    def test_summary_lists_requests(self, order):
        _execute(_request(order, "partial", amount=25.0)["refund_id"])
        summary = refund_summary(order["order_id"])
        assert summary["refundable_amount"] == 75.0
        assert [request["amount"] for request in summary["requests"]] == [25.0]

    def test_stats_follow_requests(self, order, gateway):
        _execute(_request(order, "partial", amount=25.0)["refund_id"])
        gateway.configure(refund_outcome="declined")
        _execute(_request(order, "partial", amount=15.0)["refund_id"])

        stats = current_stats()
        assert stats["total_requests"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["failed"] == 1
        assert stats["total_requested_amount"] == 40.0
        assert stats["average_requested_amount"] == 20.0
        assert stats["total_refunded_amount"] == 25.0

    def test_stats_row_is_updated_in_place(self, order):
        # requested and approved events land in the same unit of work
        _request(order, "partial", amount=30.0)

        stats = current_stats()
        assert stats["total_requests"] == 1
        assert stats["by_status"]["approved"] == 1
        assert current_domain.repository_for(RefundStats)._dao.query.all().total == 1
