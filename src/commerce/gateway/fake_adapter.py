"""Configurable fake payment gateway for development and testing.

Simulates a hosted-checkout gateway without any external calls. Each
operation can be configured to succeed, be rejected, or time out, which is
how tests exercise the "outcome unknown" paths. Every call is recorded in
``calls`` for assertions.
"""

from uuid import uuid4

from commerce.gateway.port import (
    GatewayDeclined,
    GatewayTimeout,
    GatewayUnavailable,
    OrderContext,
    PaymentGateway,
    RefundResult,
    SessionResult,
    VerificationResult,
)

VERIFY_OUTCOMES = ("valid", "invalid", "timeout", "unavailable")
REFUND_OUTCOMES = ("succeeded", "declined", "timeout", "unavailable")


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        super().__init__(timeout_seconds=timeout_seconds)
        self.verify_outcome: str = "valid"
        self.refund_outcome: str = "succeeded"
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self._refunds_by_key: dict[str, RefundResult] = {}

    def configure(
        self,
        verify_outcome: str = "valid",
        refund_outcome: str = "succeeded",
        failure_reason: str = "Card declined",
    ) -> None:
        """Configure gateway behavior at runtime."""
        if verify_outcome not in VERIFY_OUTCOMES:
            raise ValueError(f"Unknown verify outcome: {verify_outcome}")
        if refund_outcome not in REFUND_OUTCOMES:
            raise ValueError(f"Unknown refund outcome: {refund_outcome}")
        self.verify_outcome = verify_outcome
        self.refund_outcome = refund_outcome
        self.failure_reason = failure_reason

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def initiate(self, context: OrderContext) -> SessionResult:
        self.calls.append(
            {
                "method": "initiate",
                "transaction_id": context.transaction_id,
                "order_id": context.order_id,
                "amount": context.amount,
                "currency": context.currency,
            }
        )
        session_id = f"fake_sess_{uuid4().hex[:12]}"
        base = context.callback_base_url or "https://gateway.fake/checkout"
        return SessionResult(
            session_id=session_id,
            redirect_url=f"{base}/{session_id}",
            provider_txn_id=f"fake_txn_{uuid4().hex[:12]}",
        )

    def verify(self, transaction_id: str, provider_payload: dict) -> VerificationResult:
        self.calls.append(
            {
                "method": "verify",
                "transaction_id": transaction_id,
                "provider_payload": dict(provider_payload or {}),
            }
        )

        if self.verify_outcome == "timeout":
            raise GatewayTimeout(f"Verification timed out after {self.timeout_seconds}s")
        if self.verify_outcome == "unavailable":
            raise GatewayUnavailable("Gateway unreachable")
        if self.verify_outcome == "invalid":
            return VerificationResult(
                is_valid=False,
                normalized_fields={"status": "FAILED"},
                failure_reason=self.failure_reason,
            )

        payload = provider_payload or {}
        return VerificationResult(
            is_valid=True,
            normalized_fields={
                "status": "VALID",
                "provider_txn_id": payload.get("provider_txn_id") or f"fake_val_{uuid4().hex[:12]}",
                "payment_method": payload.get("payment_method", "card"),
                "card_type": payload.get("card_type", "VISA"),
                "bank_transaction_id": payload.get("bank_transaction_id", f"bank_{uuid4().hex[:8]}"),
            },
        )

    def refund(self, provider_txn_id: str, amount: float, idempotency_key: str) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "provider_txn_id": provider_txn_id,
                "amount": amount,
                "idempotency_key": idempotency_key,
            }
        )

        if idempotency_key in self._refunds_by_key:
            return self._refunds_by_key[idempotency_key]

        if self.refund_outcome == "timeout":
            raise GatewayTimeout(f"Refund timed out after {self.timeout_seconds}s")
        if self.refund_outcome == "unavailable":
            raise GatewayUnavailable("Gateway unreachable")
        if self.refund_outcome == "declined":
            raise GatewayDeclined(self.failure_reason, {"status": "declined"})

        result = RefundResult(
            provider_refund_id=f"fake_ref_{uuid4().hex[:12]}",
            normalized_response={"status": "success", "amount": amount},
        )
        self._refunds_by_key[idempotency_key] = result
        return result

    def verify_callback_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"
