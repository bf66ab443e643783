"""Catalog counters written back at fulfillment, deduplicated by transaction id.

Counters are incremented, never recomputed. Each (transaction, line) pair
is recorded in the sales ledger the first time it is applied; a second
application of the same pair is skipped, so a replayed fulfillment cannot
count a sale twice.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from commerce.catalog.plan import SubscriptionPlan
from commerce.catalog.product import Product
from commerce.domain import commerce
from commerce.order.lines import LineType

logger = structlog.get_logger(__name__)


@commerce.projection
class SalesLedgerEntry:
    entry_key = Identifier(identifier=True, required=True)  # "<transaction_id>:<ref>"
    transaction_id = String(max_length=64, required=True)
    order_id = Identifier(required=True)
    ref = Identifier(required=True)
    line_type = String(max_length=20, required=True)
    quantity = Integer(required=True)
    amount = Float(required=True)
    applied_at = DateTime(required=True)


def _already_applied(ledger, entry_key: str) -> bool:
    try:
        ledger.get(entry_key)
        return True
    except ObjectNotFoundError:
        return False


def apply_sales_counters(order, transaction_id: str) -> int:
    """Increment product and plan counters for an order once. Returns lines applied."""
    ledger = current_domain.repository_for(SalesLedgerEntry)
    product_repo = current_domain.repository_for(Product)
    plan_repo = current_domain.repository_for(SubscriptionPlan)
    now = datetime.now(UTC)
    applied = 0

    for line in order.lines:
        entry_key = f"{transaction_id}:{line.ref}"
        if _already_applied(ledger, entry_key):
            logger.info("Counters already applied for line", transaction_id=transaction_id, ref=line.ref)
            continue

        try:
            if line.line_type == LineType.PRODUCT.value:
                product = product_repo.get(line.product_id)
                product.record_sale(line.quantity, line.line_total)
                product_repo.add(product)
            else:
                plan = plan_repo.get(line.plan_id)
                plan.record_subscription(line.quantity, line.line_total)
                plan_repo.add(plan)
        except ObjectNotFoundError:
            logger.warning("Catalog item missing, counters not updated", ref=line.ref, line_type=line.line_type)
            continue

        ledger.add(
            SalesLedgerEntry(
                entry_key=entry_key,
                transaction_id=transaction_id,
                order_id=str(order.id),
                ref=line.ref,
                line_type=line.line_type,
                quantity=line.quantity,
                amount=line.line_total,
                applied_at=now,
            )
        )
        applied += 1

    return applied
