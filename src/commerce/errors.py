"""Error taxonomy for the commerce engines.

Input and policy violations use Protean's ``ValidationError`` and missing
records surface as ``ObjectNotFoundError``. The classes here cover the
remaining cases: conflicts with existing state, operations that the current
status does not allow, and denied downloads. Gateway failures live with the
gateway port (``commerce.gateway.port``).
"""

from protean.exceptions import InvalidOperationError


class ConflictError(InvalidOperationError):
    """The request collides with existing state (duplicate payment, open refund)."""


class StateError(InvalidOperationError):
    """The operation is not valid for the record's current status."""


class DownloadDenied(StateError):
    """A download request failed one of the access checks."""

    NOT_PAID = "not_paid"
    LIMIT_EXCEEDED = "limit_exceeded"
    EXPIRED = "expired"

    _MESSAGES = {
        NOT_PAID: "Order has not been paid",
        LIMIT_EXCEEDED: "Download limit reached",
        EXPIRED: "Download link has expired",
    }

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self._MESSAGES.get(reason, reason))
