"""Refund policies — one per refund category (digital, physical, subscription).

A policy limits how long after purchase a refund may be requested and
whether partial refunds are allowed, and decides whether a request needs a
human: requests at or below the auto-approve threshold, or requests whose
policies do not require approval, start out approved. A category with no
active policy has no window or partial-refund restriction, but with no
policy at all every request waits for review.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Integer, String
from protean.utils.globals import current_domain

from commerce.domain import commerce


class RefundCategory(Enum):
    DIGITAL = "digital"
    PHYSICAL = "physical"
    SUBSCRIPTION = "subscription"


@commerce.aggregate
class RefundPolicy:
    product_type = String(choices=RefundCategory, required=True, unique=True)
    refund_window_days = Integer(default=30, min_value=0)
    allow_partial_refunds = Boolean(default=True)
    auto_approve_threshold = Float(default=0.0, min_value=0.0)
    requires_approval = Boolean(default=True)
    is_active = Boolean(default=True)
    updated_at = DateTime()


@commerce.repository(part_of=RefundPolicy)
class RefundPolicyRepository:
    def for_type(self, product_type: str) -> RefundPolicy | None:
        policies = self._dao.query.filter(product_type=product_type).all().items
        return policies[0] if policies else None

    def active_for(self, product_types) -> list[RefundPolicy]:
        return [
            policy
            for policy in self._dao.query.filter(is_active=True).all().items
            if policy.product_type in set(product_types)
        ]


@dataclass(frozen=True)
class PolicyDecision:
    auto_approve: bool
    policies_applied: tuple[str, ...]


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def evaluate_refund(order_created_at, categories, amount: float, partial: bool, now=None) -> PolicyDecision:
    """Apply the active policies for ``categories``; raises ValidationError when refused."""
    now = _aware(now or datetime.now(UTC))
    policies = current_domain.repository_for(RefundPolicy).active_for(categories)
    age_days = (now - _aware(order_created_at)).days

    for policy in policies:
        if age_days > policy.refund_window_days:
            raise ValidationError(
                {
                    "order_id": [
                        f"Refund window of {policy.refund_window_days} days "
                        f"for {policy.product_type} items has passed"
                    ]
                }
            )
        if partial and not policy.allow_partial_refunds:
            raise ValidationError({"refund_type": [f"Partial refunds are not allowed for {policy.product_type} items"]})

    thresholds = [policy.auto_approve_threshold for policy in policies if policy.auto_approve_threshold]
    under_threshold = bool(thresholds) and amount <= min(thresholds)
    needs_approval = any(policy.requires_approval for policy in policies)

    return PolicyDecision(
        auto_approve=bool(policies) and (under_threshold or not needs_approval),
        policies_applied=tuple(sorted(policy.product_type for policy in policies)),
    )


@commerce.command(part_of=RefundPolicy)
class ConfigureRefundPolicy:
    """Create or replace the policy for a refund category."""

    product_type = String(choices=RefundCategory, required=True)
    refund_window_days = Integer(default=30, min_value=0)
    allow_partial_refunds = Boolean(default=True)
    auto_approve_threshold = Float(default=0.0, min_value=0.0)
    requires_approval = Boolean(default=True)
    is_active = Boolean(default=True)


@commerce.command_handler(part_of=RefundPolicy)
class RefundPolicyHandler:
    @handle(ConfigureRefundPolicy)
    def configure(self, command):
        repo = current_domain.repository_for(RefundPolicy)
        policy = repo.for_type(command.product_type)
        if policy is None:
            policy = RefundPolicy(product_type=command.product_type)

        policy.refund_window_days = command.refund_window_days
        policy.allow_partial_refunds = command.allow_partial_refunds
        policy.auto_approve_threshold = command.auto_approve_threshold
        policy.requires_approval = command.requires_approval
        policy.is_active = command.is_active
        policy.updated_at = datetime.now(UTC)

        repo.add(policy)
        return str(policy.id)
