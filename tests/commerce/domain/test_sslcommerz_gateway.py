"""Tests for the SSLCommerz adapter against a mocked HTTP transport."""

import hashlib
import json
from urllib.parse import parse_qs

import httpx
import pytest
from commerce.gateway import build_gateway
from commerce.gateway.port import (
    GatewayDeclined,
    GatewayPending,
    GatewayTimeout,
    GatewayUnavailable,
    OrderContext,
)
from commerce.gateway.sslcommerz_adapter import QUERY_PATH, SESSION_PATH, VALIDATION_PATH, SSLCommerzGateway


def _gateway(handler, timeout_seconds=2.0):
    client = httpx.Client(base_url="https://sandbox.sslcommerz.com", transport=httpx.MockTransport(handler))
    return SSLCommerzGateway("teststore", "secret", timeout_seconds=timeout_seconds, client=client)


def _context():
    return OrderContext(
        transaction_id="PAY_1",
        order_id="ord-1",
        amount=20.0,
        currency="BDT",
        customer_name="Rahim",
        customer_email="rahim@example.com",
        product_names=("Guide",),
        callback_base_url="https://shop.example.com/payments",
    )


def _validation(**overrides):
    return {
        "status": "VALID",
        "tran_id": "PAY_1",
        "val_id": "VAL1",
        "bank_tran_id": "BANK1",
        "card_type": "VISA-Dutch Bangla",
        "amount": "20.00",
        "store_amount": "19.50",
        **overrides,
    }


class TestInitiate:
    def test_opens_session(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(
                200,
                json={"status": "SUCCESS", "sessionkey": "SK1", "GatewayPageURL": "https://sandbox/pay/SK1"},
            )

        session = _gateway(handler).initiate(_context())

        assert session.session_id == "SK1"
        assert session.redirect_url == "https://sandbox/pay/SK1"
        assert seen["path"] == SESSION_PATH
        assert seen["form"]["tran_id"] == ["PAY_1"]
        assert seen["form"]["total_amount"] == ["20.00"]
        assert seen["form"]["ipn_url"] == ["https://shop.example.com/payments/callback"]

    def test_refused_session_is_declined(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(200, json={"status": "FAILED", "failedreason": "Store Credential Error"})

        with pytest.raises(GatewayDeclined) as exc:
            _gateway(handler).initiate(_context())
        assert exc.value.message == "Store Credential Error"


class TestVerify:
    def test_valid_callback_by_val_id(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=_validation())

        result = _gateway(handler).verify("PAY_1", {"val_id": "VAL1"})

        assert result.is_valid
        assert result.normalized_fields["provider_txn_id"] == "BANK1"
        assert result.normalized_fields["amount"] == 20.0
        assert seen["path"] == VALIDATION_PATH
        assert seen["params"]["val_id"] == "VAL1"
        assert seen["params"]["store_id"] == "teststore"

    def test_reconciliation_queries_by_transaction_id(self):
        def handler(request):
            assert request.url.path == QUERY_PATH
            assert request.url.params["tran_id"] == "PAY_1"
            return httpx.Response(
                200,
                json={"APIConnect": "DONE", "element": [_validation(status="FAILED"), _validation(status="VALIDATED")]},
            )

        result = _gateway(handler).verify("PAY_1", {})
        assert result.is_valid
        assert result.normalized_fields["status"] == "VALIDATED"

    def test_invalid_status(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(200, json=_validation(status="INVALID_TRANSACTION"))

        result = _gateway(handler).verify("PAY_1", {"val_id": "VAL1"})
        assert not result.is_valid
        assert result.failure_reason == "Payment validation failed: INVALID_TRANSACTION"

    def test_transaction_id_mismatch(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(200, json=_validation(tran_id="PAY_OTHER"))

        result = _gateway(handler).verify("PAY_1", {"val_id": "VAL1"})
        assert not result.is_valid
        assert "PAY_OTHER" in result.failure_reason

    def test_unknown_transaction(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(200, json={"APIConnect": "DONE", "no_of_trans_found": 0, "element": []})

        assert not _gateway(handler).verify("PAY_1", {}).is_valid


class TestTransportErrors:
    def test_timeout_is_outcome_unknown(self):
        seen = {}

        def handler(request):
            seen["timeout"] = request.extensions["timeout"]
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(GatewayTimeout) as exc:
            _gateway(handler, timeout_seconds=1.5).verify("PAY_1", {"val_id": "VAL1"})
        assert exc.value.definitive is False
        assert seen["timeout"]["read"] == 1.5

    def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayUnavailable) as exc:
            _gateway(handler).refund("BANK1", 10.0, "ref-1")
        assert exc.value.definitive is False

    def test_server_error_is_unavailable(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(503, text="Service Unavailable")

        with pytest.raises(GatewayUnavailable):
            _gateway(handler).verify("PAY_1", {"val_id": "VAL1"})


class TestRefund:
    def test_successful_refund_sends_idempotency_key(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json={"APIConnect": "DONE", "bank_tran_id": "BANK1", "status": "success", "refund_ref_id": "RR1"},
            )

        result = _gateway(handler).refund("BANK1", 40.0, "refund-123")

        assert result.provider_refund_id == "RR1"
        assert result.normalized_response["status"] == "success"
        assert seen["params"]["refe_id"] == "refund-123"
        assert seen["params"]["bank_tran_id"] == "BANK1"
        assert seen["params"]["refund_amount"] == "40.00"

    def test_failed_refund_is_declined(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(200, json={"APIConnect": "DONE", "status": "failed", "errorReason": "Too old"})

        with pytest.raises(GatewayDeclined) as exc:
            _gateway(handler).refund("BANK1", 40.0, "refund-123")
        assert exc.value.message == "Too old"
        assert exc.value.definitive is True

    def test_processing_refund_is_pending(self):
        def handler(request):  # noqa: ARG001
            return httpx.Response(200, json={"APIConnect": "DONE", "status": "processing"})

        with pytest.raises(GatewayPending) as exc:
            _gateway(handler).refund("BANK1", 40.0, "refund-123")
        assert exc.value.definitive is False


class TestCallbackSignature:
    def _signed(self, **fields):
        fields = {"tran_id": "PAY_1", "val_id": "VAL1", "amount": "20.00", **fields}
        fields["verify_key"] = "amount,tran_id,val_id"
        password_hash = hashlib.md5(b"secret").hexdigest()  # noqa: S324
        message = f"amount={fields['amount']}&store_passwd={password_hash}&tran_id=PAY_1&val_id=VAL1"
        fields["verify_sign"] = hashlib.md5(message.encode()).hexdigest()  # noqa: S324
        return fields

    def test_valid_signature(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={}))  # noqa: ARG005
        body = json.dumps({"transaction_id": "PAY_1", "payload": self._signed()})
        assert gateway.verify_callback_signature(body, "")

    def test_tampered_amount_is_rejected(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={}))  # noqa: ARG005
        fields = self._signed()
        fields["amount"] = "2.00"
        body = json.dumps({"transaction_id": "PAY_1", "payload": fields})
        assert not gateway.verify_callback_signature(body, "")

    def test_unsigned_payload_is_rejected(self):
        gateway = _gateway(lambda request: httpx.Response(200, json={}))  # noqa: ARG005
        assert not gateway.verify_callback_signature(json.dumps({"transaction_id": "PAY_1", "payload": {}}), "")


def test_build_gateway_defaults_to_sandbox(monkeypatch):
    monkeypatch.setenv("SSLCOMMERZ_STORE_ID", "teststore")
    monkeypatch.delenv("SSLCOMMERZ_LIVE", raising=False)
    gateway = build_gateway("sslcommerz", timeout_seconds=4.0)
    assert isinstance(gateway, SSLCommerzGateway)
    assert gateway.store_id == "teststore"
    assert str(gateway.client.base_url).startswith("https://sandbox.sslcommerz.com")
