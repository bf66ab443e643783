"""Commerce bounded context — payments, fulfillment, refunds and order automation.

Owns the path from a customer's cart to a completed, entitled order:
payment sessions against an external gateway, idempotent verification and
fulfillment, digital entitlements, policy-driven refunds and cancellations,
and administrative bulk operations and automation rules.
"""

import structlog
from protean.domain import Domain

from commerce.utils.logging import configure_logging

configure_logging()

logger = structlog.get_logger(__name__)

# Domain Composition Root
commerce = Domain(name="commerce")
