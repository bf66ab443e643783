"""Automation engine — rule management, firing, deferred jobs and time-based runs."""

import json
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import InvalidOperationError, ValidationError
from protean.fields import Boolean, DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from commerce.automation.actions import run_steps
from commerce.automation.rule import AutomationRule, TriggerEvent
from commerce.automation.scheduled import ScheduledAction
from commerce.domain import commerce
from commerce.order.order import Order

logger = structlog.get_logger(__name__)


@commerce.command(part_of="AutomationRule")
class CreateAutomationRule:
    name = String(max_length=255, required=True)
    description = String(max_length=1000)
    trigger_event = String(choices=TriggerEvent, required=True)
    conditions = Text()  # JSON object
    actions = Text(required=True)  # JSON list of {type, parameters, delay_seconds}
    is_active = Boolean(default=True)


@commerce.command(part_of="AutomationRule")
class ToggleAutomationRule:
    rule_id = Identifier(required=True)
    is_active = Boolean(required=True)


@commerce.command(part_of="AutomationRule")
class FireAutomationTrigger:
    trigger_event = String(choices=TriggerEvent, required=True)
    order_id = Identifier(required=True)
    trigger_data = Text()  # JSON object merged into the match context


@commerce.command(part_of="AutomationRule")
class ProcessDueActions:
    as_of = DateTime()


@commerce.command(part_of="AutomationRule")
class RunScheduledAction:
    job_id = Identifier(required=True)


@commerce.command(part_of="AutomationRule")
class RunTimeBasedRules:
    as_of = DateTime()


def order_context(order, trigger_event: str, trigger_data: dict | None = None) -> dict:
    """What rule conditions are matched against."""
    return {
        "order_id": str(order.id),
        "customer_id": str(order.customer_id),
        "status": order.status,
        "payment_status": order.payment_status,
        "priority": order.priority,
        "total": order.total,
        "trigger_event": trigger_event,
        **(trigger_data or {}),
    }


def _loads(raw, field, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError({field: [f"{field} must be JSON"]}) from None


def _apply_rules(rules, order, context, now) -> dict:
    """Run every matching rule against one order. Returns counts and the jobs to persist."""
    summary = {"rules_matched": 0, "actions_executed": 0, "jobs": [], "rules": []}
    for rule in rules:
        if not rule.matches(context):
            continue
        summary["rules_matched"] += 1
        try:
            executed, job = run_steps(rule.id, rule.name, order, rule.steps(), context, now)
        except (ValidationError, InvalidOperationError, KeyError) as exc:
            logger.warning("Automation rule failed", rule=rule.name, order_id=str(order.id), error=str(exc))
            continue

        summary["actions_executed"] += executed
        if job is not None:
            summary["jobs"].append(job)
        rule.record_execution(now)
        summary["rules"].append(rule)
    return summary


def _persist(order, summary):
    current_domain.repository_for(Order).add(order)
    rule_repo = current_domain.repository_for(AutomationRule)
    for rule in summary["rules"]:
        rule_repo.add(rule)
    job_repo = current_domain.repository_for(ScheduledAction)
    for job in summary["jobs"]:
        job_repo.add(job)


@commerce.command_handler(part_of=AutomationRule)
class AutomationHandler:
    @handle(CreateAutomationRule)
    def create_rule(self, command):
        rule = AutomationRule.create(
            name=command.name,
            trigger_event=command.trigger_event,
            actions=_loads(command.actions, "actions", []),
            conditions=_loads(command.conditions, "conditions", {}),
            description=command.description,
            is_active=command.is_active,
        )
        current_domain.repository_for(AutomationRule).add(rule)
        return str(rule.id)

    @handle(ToggleAutomationRule)
    def toggle_rule(self, command):
        repo = current_domain.repository_for(AutomationRule)
        rule = repo.get(command.rule_id)
        rule.set_active(command.is_active)
        repo.add(rule)
        return {"rule_id": str(rule.id), "is_active": rule.is_active}

    @handle(FireAutomationTrigger)
    def fire(self, command):
        now = datetime.now(UTC)
        order = current_domain.repository_for(Order).get(command.order_id)
        context = order_context(order, command.trigger_event, _loads(command.trigger_data, "trigger_data", {}))
        rules = current_domain.repository_for(AutomationRule).active_for(command.trigger_event)

        summary = _apply_rules(rules, order, context, now)
        if summary["rules_matched"]:
            _persist(order, summary)
        return {
            "rules_matched": summary["rules_matched"],
            "actions_executed": summary["actions_executed"],
            "jobs_scheduled": len(summary["jobs"]),
        }

    @handle(RunScheduledAction)
    def run_job(self, command):
        now = datetime.now(UTC)
        job_repo = current_domain.repository_for(ScheduledAction)
        job = job_repo.get(command.job_id)
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(job.order_id)

        try:
            executed, follow_up = run_steps(job.rule_id, job.rule_name, order, job.step_list, job.context_map, now)
        except (ValidationError, InvalidOperationError, KeyError) as exc:
            job.fail(exc)
            job_repo.add(job)
            logger.warning("Scheduled automation failed", job_id=str(job.id), error=str(exc))
            return {"job_id": str(job.id), "status": job.status}

        job.complete(now)
        job_repo.add(job)
        order_repo.add(order)
        if follow_up is not None:
            job_repo.add(follow_up)
        return {"job_id": str(job.id), "status": job.status, "actions_executed": executed}

    @handle(ProcessDueActions)
    def process_due(self, command):
        as_of = command.as_of or datetime.now(UTC)
        due = current_domain.repository_for(ScheduledAction).due(as_of)
        summary = {"due": len(due), "completed": 0, "failed": 0}

        for job in due:
            try:
                result = current_domain.process(RunScheduledAction(job_id=str(job.id)), asynchronous=False)
            except (ValidationError, InvalidOperationError) as exc:
                summary["failed"] += 1
                logger.warning("Scheduled automation could not run", job_id=str(job.id), error=str(exc))
                continue
            summary["completed" if result["status"] == "completed" else "failed"] += 1

        logger.info("Due automation jobs processed", **summary)
        return summary

    @handle(RunTimeBasedRules)
    def run_time_based(self, command):
        now = command.as_of or datetime.now(UTC)
        rules = current_domain.repository_for(AutomationRule).active_for(TriggerEvent.TIME_BASED.value)
        totals = {"orders_checked": 0, "rules_matched": 0, "actions_executed": 0, "jobs_scheduled": 0}
        if not rules:
            return totals

        for order in current_domain.repository_for(Order).non_terminal():
            totals["orders_checked"] += 1
            context = order_context(order, TriggerEvent.TIME_BASED.value, {"as_of": now.isoformat()})
            summary = _apply_rules(rules, order, context, now)
            if not summary["rules_matched"]:
                continue
            _persist(order, summary)
            totals["rules_matched"] += summary["rules_matched"]
            totals["actions_executed"] += summary["actions_executed"]
            totals["jobs_scheduled"] += len(summary["jobs"])

        logger.info("Time-based automation run finished", **totals)
        return totals
