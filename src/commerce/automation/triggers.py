"""Order events feeding automation triggers.

Status changes made by automation itself do not fire ``status_changed``
rules again, so one rule cannot set off a chain of others.
"""

import json

import structlog
from protean import handle
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from commerce.automation.actions import AUTOMATION_ACTOR_PREFIX
from commerce.automation.engine import FireAutomationTrigger
from commerce.automation.rule import TriggerEvent
from commerce.domain import commerce
from commerce.order.events import OrderCreated, OrderPaid, OrderStatusChanged
from commerce.order.order import Order

logger = structlog.get_logger(__name__)


def _fire(trigger_event: TriggerEvent, order_id, trigger_data: str | None = None) -> None:
    try:
        current_domain.process(
            FireAutomationTrigger(
                trigger_event=trigger_event.value,
                order_id=str(order_id),
                trigger_data=trigger_data,
            ),
            asynchronous=False,
        )
    except (ValidationError, InvalidOperationError, ObjectNotFoundError) as exc:
        logger.warning("Automation trigger failed", trigger=trigger_event.value, order_id=str(order_id), error=str(exc))


@commerce.event_handler(part_of=Order)
class OrderAutomationTriggers:
    @handle(OrderCreated)
    def on_order_created(self, event: OrderCreated) -> None:
        _fire(TriggerEvent.ORDER_CREATED, event.order_id)

    @handle(OrderPaid)
    def on_order_paid(self, event: OrderPaid) -> None:
        _fire(TriggerEvent.PAYMENT_RECEIVED, event.order_id, json.dumps({"transaction_id": event.transaction_id}))

    @handle(OrderStatusChanged)
    def on_status_changed(self, event: OrderStatusChanged) -> None:
        if (event.actor or "").startswith(AUTOMATION_ACTOR_PREFIX):
            return
        _fire(
            TriggerEvent.STATUS_CHANGED,
            event.order_id,
            json.dumps({"previous_status": event.previous_status, "new_status": event.new_status}),
        )
