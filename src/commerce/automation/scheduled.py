"""ScheduledAction aggregate — a durable job holding the deferred tail of a rule.

Jobs are picked up by ``ProcessDueActions`` once ``run_at`` has passed.
Nothing waits in memory, so a restart loses no scheduled work.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Identifier, Integer, String, Text

from commerce.domain import commerce


class JobStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@commerce.aggregate
class ScheduledAction:
    rule_id = Identifier(required=True)
    rule_name = String(max_length=255, required=True)
    order_id = Identifier(required=True)
    steps = Text(required=True)  # JSON list of {action_type, parameters, delay_seconds}
    context = Text()  # JSON object captured when the rule fired
    run_at = DateTime(required=True)
    status = String(choices=JobStatus, default=JobStatus.PENDING.value)
    attempts = Integer(default=0)
    last_error = String(max_length=1000)
    completed_at = DateTime()
    created_at = DateTime()

    @classmethod
    def defer(cls, rule_id, rule_name, order_id, steps, context, run_at):
        return cls(
            rule_id=rule_id,
            rule_name=rule_name,
            order_id=order_id,
            steps=json.dumps(steps, default=str),
            context=json.dumps(context, default=str),
            run_at=run_at,
            status=JobStatus.PENDING.value,
            created_at=datetime.now(UTC),
        )

    @property
    def step_list(self) -> list[dict]:
        return json.loads(self.steps)

    @property
    def context_map(self) -> dict:
        return json.loads(self.context) if self.context else {}

    def is_due(self, as_of: datetime) -> bool:
        return self.status == JobStatus.PENDING.value and _aware(self.run_at) <= _aware(as_of)

    def complete(self, now=None):
        self.attempts = (self.attempts or 0) + 1
        self.status = JobStatus.COMPLETED.value
        self.completed_at = now or datetime.now(UTC)

    def fail(self, error):
        self.attempts = (self.attempts or 0) + 1
        self.status = JobStatus.FAILED.value
        self.last_error = str(error)[:1000]


@commerce.repository(part_of=ScheduledAction)
class ScheduledActionRepository:
    def due(self, as_of: datetime) -> list[ScheduledAction]:
        pending = self._dao.query.filter(status=JobStatus.PENDING.value).all().items
        return sorted((job for job in pending if job.is_due(as_of)), key=lambda job: _aware(job.run_at))
