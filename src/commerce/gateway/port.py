"""Payment gateway port (abstract interface).

Every adapter speaks the same three operations: open a hosted checkout
session, verify a callback for a transaction, and refund a captured charge.
Adapters are policy free; deciding what a result means for a Payment or a
RefundRequest is the job of the engines that call them.

Errors carry whether the outcome is known. A declined refund is definitive;
a timeout or a dropped connection is not, and the caller must not treat it as
a failure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class GatewayError(Exception):
    """A gateway call did not succeed."""

    definitive = True

    def __init__(self, message: str, gateway_response: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.gateway_response = gateway_response or {}


class GatewayDeclined(GatewayError):
    """The gateway answered and rejected the operation."""

    definitive = True


class GatewayTimeout(GatewayError):
    """No answer within the adapter's timeout; the outcome is unknown."""

    definitive = False


class GatewayUnavailable(GatewayError):
    """The gateway could not be reached; the outcome is unknown."""

    definitive = False


class GatewayPending(GatewayError):
    """The gateway accepted the operation but has not settled it yet."""

    definitive = False


# ---------------------------------------------------------------------------
# Requests / results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class OrderContext:
    """What the gateway needs to open a checkout session."""

    transaction_id: str
    order_id: str
    amount: float
    currency: str
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    product_names: tuple[str, ...] = ()
    callback_base_url: str | None = None


@dataclass(frozen=True)
class SessionResult:
    session_id: str
    redirect_url: str
    provider_txn_id: str | None = None


@dataclass(frozen=True)
class VerificationResult:
    is_valid: bool
    normalized_fields: dict = field(default_factory=dict)
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    provider_refund_id: str
    normalized_response: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------
class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = "gateway"

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def initiate(self, context: OrderContext) -> SessionResult:
        """Open a hosted checkout session for the order."""
        ...

    @abstractmethod
    def verify(self, transaction_id: str, provider_payload: dict) -> VerificationResult:
        """Confirm with the gateway that a transaction was paid.

        Raises GatewayTimeout / GatewayUnavailable when the answer is unknown.
        """
        ...

    @abstractmethod
    def refund(self, provider_txn_id: str, amount: float, idempotency_key: str) -> RefundResult:
        """Refund part or all of a captured charge.

        Raises GatewayDeclined when refused and GatewayTimeout /
        GatewayUnavailable when the outcome is unknown. Re-sending the same
        idempotency key must not refund twice.
        """
        ...

    @abstractmethod
    def verify_callback_signature(self, payload: str, signature: str) -> bool:
        """Verify that a callback payload is authentically from the gateway."""
        ...
