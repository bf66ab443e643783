"""AutomationRule aggregate (CQRS) — trigger, conditions and ordered actions.

A rule fires when its trigger event happens for an order whose context
matches every condition exactly. Its actions then run one after another in
position order. An action with a delay, and every action after it, is
deferred to a ScheduledAction job.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Integer, String, Text

from commerce.domain import commerce


class TriggerEvent(Enum):
    ORDER_CREATED = "order_created"
    PAYMENT_RECEIVED = "payment_received"
    STATUS_CHANGED = "status_changed"
    TIME_BASED = "time_based"


class ActionType(Enum):
    UPDATE_STATUS = "update_status"
    ASSIGN_PRIORITY = "assign_priority"
    SEND_NOTIFICATION = "send_notification"
    ASSIGN_TRACKING = "assign_tracking"
    ADD_NOTE = "add_note"


@commerce.entity(part_of="AutomationRule")
class RuleAction:
    position = Integer(required=True, min_value=0)
    action_type = String(choices=ActionType, required=True)
    parameters = Text()  # JSON object
    delay_seconds = Integer(default=0, min_value=0)

    def as_step(self) -> dict:
        return {
            "action_type": self.action_type,
            "parameters": json.loads(self.parameters) if self.parameters else {},
            "delay_seconds": self.delay_seconds or 0,
        }


@commerce.aggregate
class AutomationRule:
    name = String(max_length=255, required=True)
    description = String(max_length=1000)
    trigger_event = String(choices=TriggerEvent, required=True)
    conditions = Text()  # JSON object, exact-match
    is_active = Boolean(default=True)
    actions = HasMany(RuleAction)
    execution_count = Integer(default=0, min_value=0)
    last_executed_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, name, trigger_event, actions, conditions=None, description=None, is_active=True):
        if not actions:
            raise ValidationError({"actions": ["A rule needs at least one action"]})
        if conditions is not None and not isinstance(conditions, dict):
            raise ValidationError({"conditions": ["Conditions must be an object"]})

        now = datetime.now(UTC)
        rule = cls(
            name=name,
            description=description,
            trigger_event=trigger_event,
            conditions=json.dumps(conditions or {}),
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        for position, action in enumerate(actions):
            try:
                action_type = ActionType(action.get("type") or action.get("action_type")).value
            except ValueError:
                raise ValidationError({"actions": [f"Unknown action type: {action.get('type')}"]}) from None
            rule.add_actions(
                RuleAction(
                    position=position,
                    action_type=action_type,
                    parameters=json.dumps(action.get("parameters") or {}),
                    delay_seconds=int(action.get("delay_seconds") or action.get("delay") or 0),
                )
            )
        return rule

    @property
    def condition_map(self) -> dict:
        return json.loads(self.conditions) if self.conditions else {}

    def matches(self, context: dict) -> bool:
        return all(context.get(key) == value for key, value in self.condition_map.items())

    def steps(self) -> list[dict]:
        return [action.as_step() for action in sorted(self.actions, key=lambda action: action.position)]

    def set_active(self, is_active: bool):
        self.is_active = is_active
        self.updated_at = datetime.now(UTC)

    def record_execution(self, now=None):
        now = now or datetime.now(UTC)
        self.execution_count = (self.execution_count or 0) + 1
        self.last_executed_at = now
        self.updated_at = now


@commerce.repository(part_of=AutomationRule)
class AutomationRuleRepository:
    def active_for(self, trigger_event: str) -> list[AutomationRule]:
        rules = self._dao.query.filter(trigger_event=trigger_event, is_active=True).all().items
        return sorted(rules, key=lambda rule: rule.created_at)
