"""Subscription access windows per billing cycle.

Month arithmetic follows the calendar: a monthly plan bought on 2024-01-15
runs to 2024-02-15, one bought on 2024-01-31 runs to 2024-02-29.
"""

from datetime import datetime

from dateutil.relativedelta import relativedelta

from commerce.catalog.plan import BillingCycle

# Lifetime access is represented as a far-future end date
LIFETIME_YEARS = 100

_CYCLE_LENGTH: dict[BillingCycle, relativedelta] = {
    BillingCycle.MONTHLY: relativedelta(months=1),
    BillingCycle.QUARTERLY: relativedelta(months=3),
    BillingCycle.YEARLY: relativedelta(years=1),
    BillingCycle.LIFETIME: relativedelta(years=LIFETIME_YEARS),
}

if set(_CYCLE_LENGTH) != set(BillingCycle):
    raise RuntimeError("Every billing cycle needs a length")


def access_window(billing_cycle: str, starts_at: datetime) -> tuple[datetime, datetime]:
    """Start and end of the access granted by one purchase of a plan."""
    return starts_at, starts_at + _CYCLE_LENGTH[BillingCycle(billing_cycle)]
