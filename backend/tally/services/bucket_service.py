"""Bucket classifier: paid / upcoming / due-soon views over recurring bills.

Pure and synchronous. Bills and payments are duck-typed: anything with the
RecurringBill / RecurringBillPayment attributes works.

Rules:
- upcoming: the bill has at least one occurrence in the evaluation window
  ``[start or bill.dtstart, end or now]``.
- due_soon: upcoming, and the next occurrence at/after ``now`` is between 0
  and ``due_soon_days`` days away (rounded up).
- paid: payments of an upcoming bill whose occurrence date falls inside the
  same window. Count is the number of payments, amount is what was paid.

A bill with no occurrence in the window lands in no bucket.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal

from tally.config import settings
from tally.core.clock import to_utc
from tally.core.errors import InvalidRecurrenceRule
from tally.services import recurrence

logger = logging.getLogger("tally.bills")

MIN_DUE_SOON_DAYS = 1
MAX_DUE_SOON_DAYS = 31

BUCKETS = ("paid", "upcoming", "due_soon")


def clamp_due_soon_days(days: int | None) -> int:
    """Clamp to [1, 31]; None falls back to the configured default."""
    if days is None:
        days = settings.due_soon_days_default
    return max(MIN_DUE_SOON_DAYS, min(MAX_DUE_SOON_DAYS, int(days)))


def is_upcoming(
    bill,
    now: datetime,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> bool:
    try:
        return recurrence.is_active_in_range(
            bill.rrule,
            bill.dtstart,
            start,
            end if end is not None else now,
            until=bill.until,
        )
    except InvalidRecurrenceRule:
        logger.warning("Skipping bill %s: stored rule %r does not parse", bill.id, bill.rrule)
        return False


def is_due_soon(
    bill,
    now: datetime,
    due_soon_days: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> bool:
    if not is_upcoming(bill, now, start=start, end=end):
        return False
    return _next_within(bill, now, due_soon_days)


def paid_payments(
    bill,
    payments: Iterable,
    now: datetime,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list:
    """Payments satisfying an occurrence inside the bill's active window."""
    if not is_upcoming(bill, now, start=start, end=end):
        return []
    return _in_window(bill, payments, now, start, end)


def classify(
    bills: Sequence,
    now: datetime,
    due_soon_days: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    payments_by_bill: Mapping | None = None,
) -> dict:
    """Assign every active bill to the buckets and total each bucket.

    ``due_soon_days`` is expected to be clamped by the caller.
    """
    summary = {name: _empty() for name in BUCKETS}
    payments_by_bill = payments_by_bill or {}

    for bill in bills:
        if not is_upcoming(bill, now, start=start, end=end):
            continue

        _add(summary["upcoming"], bill.amount)

        if _next_within(bill, now, due_soon_days):
            _add(summary["due_soon"], bill.amount)

        for payment in _in_window(bill, payments_by_bill.get(bill.id, ()), now, start, end):
            _add(summary["paid"], payment.amount_paid)

    return summary


def _next_within(bill, now: datetime, due_soon_days: int) -> bool:
    upcoming_at = recurrence.next_occurrence_at_or_after(
        bill.rrule, bill.dtstart, now, until=bill.until
    )
    if upcoming_at is None:
        return False
    days = recurrence.days_until(upcoming_at, now)
    return 0 <= days <= due_soon_days


def _in_window(bill, payments: Iterable, now: datetime, start, end) -> list:
    lower = to_utc(start if start is not None else bill.dtstart)
    upper = to_utc(end if end is not None else now)
    return [p for p in payments if lower <= to_utc(p.occurrence_date) <= upper]


def _empty() -> dict:
    return {"count": 0, "amount": Decimal("0.00")}


def _add(bucket: dict, amount) -> None:
    bucket["count"] += 1
    bucket["amount"] += Decimal(str(amount))
