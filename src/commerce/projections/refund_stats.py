"""Refund statistics — counts per status and amounts, kept as a single row.

Every refund event rebuilds the row from the refund requests themselves, so
the figures cannot drift from the records they summarize.
"""

import json

from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import Float, Integer, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.refund.events import (
    RefundApproved,
    RefundCompleted,
    RefundFailed,
    RefundReconciliationRequired,
    RefundRejected,
    RefundRequested,
)
from commerce.refund.refund_request import RefundRequest, RefundStatus

STATS_ID = "all"


@commerce.projection
class RefundStats:
    stats_id = String(identifier=True, required=True, max_length=20)
    total_requests = Integer(default=0)
    by_status = Text()  # JSON object, status -> count
    total_requested_amount = Float(default=0.0)
    average_requested_amount = Float(default=0.0)
    total_refunded_amount = Float(default=0.0)

    def as_dict(self) -> dict:
        return {
            "total_requests": self.total_requests or 0,
            "by_status": json.loads(self.by_status) if self.by_status else {},
            "total_requested_amount": self.total_requested_amount or 0.0,
            "average_requested_amount": self.average_requested_amount or 0.0,
            "total_refunded_amount": self.total_refunded_amount or 0.0,
        }


def current_stats() -> dict:
    try:
        return current_domain.repository_for(RefundStats).get(STATS_ID).as_dict()
    except ObjectNotFoundError:
        return RefundStats(stats_id=STATS_ID, by_status=json.dumps({})).as_dict()


@commerce.projector(projector_for=RefundStats, aggregates=[RefundRequest])
class RefundStatsProjector:
    def _rebuild(self):
        requests = current_domain.repository_for(RefundRequest)._dao.query.all().items
        by_status = {status.value: 0 for status in RefundStatus}
        for request in requests:
            by_status[request.status] += 1

        requested = round(sum(request.amount for request in requests), 2)
        refunded = round(
            sum(request.amount for request in requests if request.status == RefundStatus.COMPLETED.value), 2
        )
        repo = current_domain.repository_for(RefundStats)
        try:
            stats = repo.get(STATS_ID)
        except ObjectNotFoundError:
            stats = RefundStats(stats_id=STATS_ID)

        stats.total_requests = len(requests)
        stats.by_status = json.dumps(by_status)
        stats.total_requested_amount = requested
        stats.average_requested_amount = round(requested / len(requests), 2) if requests else 0.0
        stats.total_refunded_amount = refunded
        repo.add(stats)

    @on(RefundRequested)
    def on_refund_requested(self, event):  # noqa: ARG002
        self._rebuild()

    @on(RefundApproved)
    def on_refund_approved(self, event):  # noqa: ARG002
        self._rebuild()

    @on(RefundRejected)
    def on_refund_rejected(self, event):  # noqa: ARG002
        self._rebuild()

    @on(RefundReconciliationRequired)
    def on_refund_reconciling(self, event):  # noqa: ARG002
        self._rebuild()

    @on(RefundCompleted)
    def on_refund_completed(self, event):  # noqa: ARG002
        self._rebuild()

    @on(RefundFailed)
    def on_refund_failed(self, event):  # noqa: ARG002
        self._rebuild()
