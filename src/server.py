"""Protean Engine runner for the commerce domain.

Starts the Engine, which processes events asynchronously in production:
- OutboxProcessor: polls the outbox table, publishes events to Redis Streams
- StreamSubscriptions: reads Redis Streams, invokes projectors and event handlers

Alongside it a maintenance loop runs the recurring jobs: due automation
steps, time-based automation rules, and reconciliation of payments and
refunds whose gateway outcome is unknown.

Usage:
    python src/server.py                     # Engine and maintenance loop
    python src/server.py --maintenance-only  # Only the maintenance loop
    python src/server.py --interval 30       # Maintenance every 30 seconds
"""

import argparse
import asyncio

import structlog
from protean.exceptions import InvalidOperationError, ValidationError
from protean.server.engine import Engine

logger = structlog.get_logger(__name__)


def _get_domain():
    from commerce.domain import commerce

    commerce.init()
    return commerce


def run_maintenance(domain) -> dict:
    """Run each recurring job once; returns the summaries by job name."""
    from commerce.automation.engine import ProcessDueActions, RunTimeBasedRules
    from commerce.payment.verification import ReconcilePayments
    from commerce.refund.execution import ReconcileRefunds

    jobs = {
        "due_actions": ProcessDueActions(),
        "time_based_rules": RunTimeBasedRules(),
        "payment_reconciliation": ReconcilePayments(requested_by="scheduler"),
        "refund_reconciliation": ReconcileRefunds(requested_by="scheduler"),
    }
    results = {}
    with domain.domain_context():
        for name, command in jobs.items():
            try:
                results[name] = domain.process(command, asynchronous=False)
            except (ValidationError, InvalidOperationError) as exc:
                logger.error("Maintenance job failed", job=name, error=str(exc))
    return results


async def maintenance_loop(domain, interval: float) -> None:
    while True:
        await asyncio.to_thread(run_maintenance, domain)
        await asyncio.sleep(interval)


async def run(maintenance_only: bool, interval: float):
    domain = _get_domain()
    tasks = [maintenance_loop(domain, interval)]
    if not maintenance_only:
        tasks.append(Engine(domain).run())
    await asyncio.gather(*tasks)


def main():
    parser = argparse.ArgumentParser(description="Commerce Engine runner")
    parser.add_argument(
        "--maintenance-only",
        action="store_true",
        help="Run the maintenance loop without the event Engine",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=60.0,
        help="Seconds between maintenance runs (default: 60)",
    )
    args = parser.parse_args()

    asyncio.run(run(args.maintenance_only, args.interval))


if __name__ == "__main__":
    main()
