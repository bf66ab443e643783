"""Transaction id generation: ``PAY_<base36 millis>_<8 hex>``, checked against stored payments."""

import structlog

from commerce.errors import ConflictError
from commerce.utils.ids import hex_token, timestamp_token

logger = structlog.get_logger(__name__)

MAX_GENERATION_ATTEMPTS = 5


def generate_transaction_id() -> str:
    return f"PAY_{timestamp_token()}_{hex_token(8)}"


def unique_transaction_id(payment_repo) -> str:
    """A transaction id no stored payment uses yet."""
    for attempt in range(1, MAX_GENERATION_ATTEMPTS + 1):
        candidate = generate_transaction_id()
        if payment_repo.by_transaction_id(candidate) is None:
            return candidate
        logger.warning("Transaction id collision, regenerating", attempt=attempt)
    raise ConflictError("Could not generate a unique transaction id")
