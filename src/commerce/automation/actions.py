"""Automation actions — one function per ActionType, applied to an order."""

from datetime import timedelta

import structlog

from commerce.automation.rule import ActionType
from commerce.automation.scheduled import ScheduledAction
from commerce.services import collaborators

logger = structlog.get_logger(__name__)

AUTOMATION_ACTOR_PREFIX = "automation:"


def _update_status(order, parameters, actor, context):  # noqa: ARG001
    order.change_status(
        parameters["status"],
        note=parameters.get("note") or f"Automated status update ({actor})",
        actor=actor,
    )


def _assign_priority(order, parameters, actor, context):  # noqa: ARG001
    order.assign_priority(parameters["priority"])


def _send_notification(order, parameters, actor, context):
    payload = {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "message": parameters.get("message") or "Order update",
        "channel": parameters.get("channel") or "email",
        "rule": actor,
        "trigger": context.get("trigger_event"),
    }
    try:
        collaborators().notifier.notify(
            parameters.get("user_id") or str(order.customer_id),
            parameters.get("notification_type") or "order_update",
            payload,
        )
    except Exception as exc:
        logger.error("Automation notification failed", order_id=str(order.id), error=str(exc))


def _assign_tracking(order, parameters, actor, context):  # noqa: ARG001
    order.assign_tracking(parameters["tracking_number"], carrier=parameters.get("carrier"), actor=actor)


def _add_note(order, parameters, actor, context):  # noqa: ARG001
    order.add_note(parameters.get("note") or "Automated note", actor=actor)


_ACTIONS = {
    ActionType.UPDATE_STATUS: _update_status,
    ActionType.ASSIGN_PRIORITY: _assign_priority,
    ActionType.SEND_NOTIFICATION: _send_notification,
    ActionType.ASSIGN_TRACKING: _assign_tracking,
    ActionType.ADD_NOTE: _add_note,
}

if set(_ACTIONS) != set(ActionType):
    raise RuntimeError("Every automation action type needs a handler")


def run_steps(rule_id, rule_name, order, steps, context, now) -> tuple[int, ScheduledAction | None]:
    """Run ``steps`` in order until one is delayed.

    Returns the number of actions run and, when a delay was reached, the job
    holding the rest. The delayed step runs first when the job is picked up.
    """
    actor = f"{AUTOMATION_ACTOR_PREFIX}{rule_name}"
    for index, step in enumerate(steps):
        delay = step.get("delay_seconds") or 0
        if delay > 0:
            remaining = [dict(steps[index], delay_seconds=0), *steps[index + 1 :]]
            job = ScheduledAction.defer(
                rule_id=str(rule_id),
                rule_name=rule_name,
                order_id=str(order.id),
                steps=remaining,
                context=context,
                run_at=now + timedelta(seconds=delay),
            )
            logger.info("Automation actions deferred", rule=rule_name, order_id=str(order.id), run_at=job.run_at)
            return index, job

        _ACTIONS[ActionType(step["action_type"])](order, step.get("parameters") or {}, actor, context)
    return len(steps), None
