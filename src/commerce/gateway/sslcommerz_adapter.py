"""SSLCommerz payment gateway adapter.

Talks to the hosted-checkout APIs over HTTP with ``httpx``:
- sessions through the session API (``/gwprocess/v4/api.php``)
- callbacks through the validator API when the callback carries a
  ``val_id``, otherwise through the transaction query API by ``tran_id``
  (reconciliation has no callback payload to go on)
- refunds through the refund API, sending the idempotency key as
  ``refe_id`` and the bank transaction id captured at verification

Every request uses ``self.timeout_seconds``. A timeout raises GatewayTimeout
and a transport failure or a 5xx raises GatewayUnavailable; neither says
anything about whether the gateway acted. Only an answer that refuses the
operation raises GatewayDeclined.
"""

import hashlib
import hmac
import json

import httpx
import structlog

from commerce.gateway.port import (
    GatewayDeclined,
    GatewayPending,
    GatewayTimeout,
    GatewayUnavailable,
    OrderContext,
    PaymentGateway,
    RefundResult,
    SessionResult,
    VerificationResult,
)

logger = structlog.get_logger(__name__)

SANDBOX_URL = "https://sandbox.sslcommerz.com"
LIVE_URL = "https://securepay.sslcommerz.com"

SESSION_PATH = "/gwprocess/v4/api.php"
VALIDATION_PATH = "/validator/api/validationserverAPI.php"
QUERY_PATH = "/validator/api/merchantTransIDvalidationAPI.php"

PAID_STATUSES = frozenset({"VALID", "VALIDATED"})


class SSLCommerzGateway(PaymentGateway):
    name = "sslcommerz"

    def __init__(
        self,
        store_id: str,
        store_password: str,
        timeout_seconds: float = 10.0,
        sandbox: bool = True,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self.store_id = store_id
        self.store_password = store_password
        self.client = client or httpx.Client(
            base_url=SANDBOX_URL if sandbox else LIVE_URL,
            timeout=timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    @property
    def _credentials(self) -> dict:
        return {"store_id": self.store_id, "store_passwd": self.store_password}

    def _call(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, timeout=self.timeout_seconds, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayTimeout(f"SSLCommerz did not answer within {self.timeout_seconds}s") from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailable(f"SSLCommerz unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayUnavailable(f"SSLCommerz returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayUnavailable("SSLCommerz returned a response that is not JSON") from exc
        if response.status_code >= 400:
            raise GatewayDeclined(data.get("failedreason") or f"SSLCommerz returned HTTP {response.status_code}", data)
        return data

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def initiate(self, context: OrderContext) -> SessionResult:
        base = (context.callback_base_url or "").rstrip("/")
        form = {
            **self._credentials,
            "total_amount": f"{context.amount:.2f}",
            "currency": context.currency,
            "tran_id": context.transaction_id,
            "success_url": f"{base}/success",
            "fail_url": f"{base}/fail",
            "cancel_url": f"{base}/cancel",
            "ipn_url": f"{base}/callback",
            "cus_name": context.customer_name or "Customer",
            "cus_email": context.customer_email or "",
            "cus_phone": context.customer_phone or "",
            "product_name": ", ".join(context.product_names) or "Order",
            "product_category": "general",
            "product_profile": "general",
            "shipping_method": "NO",
            "num_of_item": max(1, len(context.product_names)),
            "value_a": context.order_id,
        }
        data = self._call("POST", SESSION_PATH, data=form)
        if data.get("status") != "SUCCESS" or not data.get("GatewayPageURL"):
            raise GatewayDeclined(data.get("failedreason") or "SSLCommerz refused to open a session", data)

        logger.info("SSLCommerz session opened", transaction_id=context.transaction_id)
        return SessionResult(
            session_id=data["sessionkey"],
            redirect_url=data["GatewayPageURL"],
            provider_txn_id=None,
        )

    def _validation(self, transaction_id: str, provider_payload: dict) -> dict | None:
        val_id = provider_payload.get("val_id")
        if val_id:
            return self._call(
                "GET",
                VALIDATION_PATH,
                params={**self._credentials, "val_id": val_id, "format": "json"},
            )

        data = self._call(
            "GET",
            QUERY_PATH,
            params={**self._credentials, "tran_id": transaction_id, "format": "json"},
        )
        elements = data.get("element") or []
        paid = [element for element in elements if element.get("status") in PAID_STATUSES]
        return (paid or elements or [None])[0]

    def verify(self, transaction_id: str, provider_payload: dict) -> VerificationResult:
        validation = self._validation(transaction_id, provider_payload or {})
        if validation is None:
            return VerificationResult(is_valid=False, failure_reason="SSLCommerz has no record of the transaction")

        status = validation.get("status")
        if status not in PAID_STATUSES:
            return VerificationResult(
                is_valid=False,
                normalized_fields={"status": status},
                failure_reason=f"Payment validation failed: {status}",
            )
        if validation.get("tran_id") != transaction_id:
            return VerificationResult(
                is_valid=False,
                normalized_fields={"status": status},
                failure_reason=f"Transaction id mismatch: expected {transaction_id}, got {validation.get('tran_id')}",
            )

        return VerificationResult(
            is_valid=True,
            normalized_fields={
                "status": status,
                "provider_txn_id": validation.get("bank_tran_id"),
                "val_id": validation.get("val_id"),
                "payment_method": validation.get("card_type"),
                "card_issuer": validation.get("card_issuer"),
                "amount": float(validation.get("amount") or 0.0),
                "store_amount": float(validation.get("store_amount") or 0.0),
                "verified_at": validation.get("tran_date"),
            },
        )

    def refund(self, provider_txn_id: str, amount: float, idempotency_key: str) -> RefundResult:
        data = self._call(
            "GET",
            QUERY_PATH,
            params={
                **self._credentials,
                "bank_tran_id": provider_txn_id,
                "refund_amount": f"{amount:.2f}",
                "refund_remarks": "Refund",
                "refe_id": idempotency_key,
                "format": "json",
            },
        )

        if data.get("APIConnect") not in (None, "DONE"):
            raise GatewayUnavailable(f"SSLCommerz refund API: {data.get('APIConnect')}", data)

        status = (data.get("status") or "").lower()
        if status == "success":
            return RefundResult(
                provider_refund_id=data.get("refund_ref_id") or idempotency_key,
                normalized_response={"status": status, "amount": amount, "bank_tran_id": data.get("bank_tran_id")},
            )
        if status == "processing":
            raise GatewayPending("Refund is still processing at SSLCommerz", data)
        raise GatewayDeclined(data.get("errorReason") or "SSLCommerz declined the refund", data)

    def verify_callback_signature(self, payload: str, signature: str) -> bool:
        """Check an IPN's ``verify_sign`` over the fields named in ``verify_key``."""
        try:
            body = json.loads(payload)
        except ValueError:
            return False
        fields = body.get("payload") if isinstance(body.get("payload"), dict) else body
        verify_key = fields.get("verify_key")
        expected = signature or fields.get("verify_sign")
        if not verify_key or not expected:
            return False

        signed = {key: fields.get(key, "") for key in verify_key.split(",")}
        signed["store_passwd"] = hashlib.md5(self.store_password.encode()).hexdigest()  # noqa: S324
        message = "&".join(f"{key}={signed[key]}" for key in sorted(signed))
        digest = hashlib.md5(message.encode()).hexdigest()  # noqa: S324
        return hmac.compare_digest(digest, expected)
