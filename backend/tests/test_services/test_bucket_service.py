"""Bucket classifier: upcoming / due-soon / paid over in-memory bills."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from tally.config import settings
from tally.services import bucket_service

UTC = timezone.utc
NOW = datetime(2024, 1, 28, 12, 0, tzinfo=UTC)


def _bill(
    amount: str = "1500.00",
    rrule: str = "FREQ=MONTHLY",
    dtstart: datetime = datetime(2024, 1, 1, tzinfo=UTC),
    until: datetime | None = None,
):
    return SimpleNamespace(
        id=uuid.uuid4(),
        amount=Decimal(amount),
        rrule=rrule,
        dtstart=dtstart,
        until=until,
    )


def _payment(bill, occurrence: datetime, amount: str):
    return SimpleNamespace(bill_id=bill.id, occurrence_date=occurrence, amount_paid=Decimal(amount))


# --- clamp_due_soon_days ---

@pytest.mark.parametrize("days, expected", [(0, 1), (1, 1), (5, 5), (31, 31), (90, 31), (-3, 1)])
def test_clamp_due_soon_days(days, expected):
    assert bucket_service.clamp_due_soon_days(days) == expected


def test_clamp_due_soon_days_default():
    assert bucket_service.clamp_due_soon_days(None) == settings.due_soon_days_default


# --- classify ---

def test_monthly_bill_due_in_four_days_is_due_soon():
    """Next occurrence 2024-02-01 is 4 days after 2024-01-28."""
    summary = bucket_service.classify([_bill()], NOW, 5)

    assert summary["upcoming"] == {"count": 1, "amount": Decimal("1500.00")}
    assert summary["due_soon"] == {"count": 1, "amount": Decimal("1500.00")}
    assert summary["paid"] == {"count": 0, "amount": Decimal("0.00")}


def test_due_soon_respects_window_size():
    summary = bucket_service.classify([_bill()], NOW, 3)
    assert summary["upcoming"]["count"] == 1
    assert summary["due_soon"]["count"] == 0


def test_bill_starting_in_future_is_in_no_bucket():
    bill = _bill(dtstart=datetime(2024, 2, 1, tzinfo=UTC))
    summary = bucket_service.classify([bill], NOW, 31)
    assert all(summary[name]["count"] == 0 for name in bucket_service.BUCKETS)


def test_ended_bill_is_not_due_soon():
    bill = _bill(rrule="FREQ=WEEKLY", until=datetime(2024, 1, 15, tzinfo=UTC))
    summary = bucket_service.classify([bill], NOW, 31)
    assert summary["upcoming"]["count"] == 1
    assert summary["due_soon"]["count"] == 0


def test_due_soon_is_subset_of_upcoming():
    bills = [
        _bill("10.00", "FREQ=DAILY"),
        _bill("20.00", "FREQ=WEEKLY;BYDAY=MO"),
        _bill("30.00", "FREQ=MONTHLY;BYMONTHDAY=20"),
        _bill("40.00", "FREQ=YEARLY", dtstart=datetime(2023, 3, 1, tzinfo=UTC)),
        _bill("50.00", "FREQ=MONTHLY", dtstart=datetime(2024, 3, 1, tzinfo=UTC)),
    ]
    for days in (1, 2, 7, 31):
        due = {b.id for b in bills if bucket_service.is_due_soon(b, NOW, days)}
        upcoming = {b.id for b in bills if bucket_service.is_upcoming(b, NOW)}
        assert due <= upcoming


def test_offset_limits_upcoming():
    bill = _bill(rrule="FREQ=MONTHLY;BYMONTHDAY=1")
    window = {
        "start": datetime(2024, 1, 2, tzinfo=UTC),
        "end": datetime(2024, 1, 31, tzinfo=UTC),
    }
    assert bucket_service.is_upcoming(bill, NOW, **window) is False
    assert bucket_service.classify([bill], NOW, 5, **window)["upcoming"]["count"] == 0


def test_paid_counts_payments_inside_window():
    bill = _bill(rrule="FREQ=WEEKLY")
    payments = {
        bill.id: [
            _payment(bill, datetime(2024, 1, 1, tzinfo=UTC), "1499.99"),
            _payment(bill, datetime(2024, 1, 8, tzinfo=UTC), "1500.00"),
            # Outside [dtstart, now]
            _payment(bill, datetime(2024, 2, 5, tzinfo=UTC), "1500.00"),
        ]
    }
    summary = bucket_service.classify([bill], NOW, 2, payments_by_bill=payments)
    assert summary["paid"] == {"count": 2, "amount": Decimal("2999.99")}


def test_paid_ignores_payments_of_inactive_bills():
    bill = _bill(dtstart=datetime(2024, 6, 1, tzinfo=UTC))
    payments = {bill.id: [_payment(bill, datetime(2024, 1, 5, tzinfo=UTC), "10.00")]}
    summary = bucket_service.classify([bill], NOW, 2, payments_by_bill=payments)
    assert summary["paid"]["count"] == 0
    assert bucket_service.paid_payments(bill, payments[bill.id], NOW) == []


def test_summary_is_idempotent():
    bills = [_bill(), _bill("12.50", "FREQ=DAILY")]
    first = bucket_service.classify(bills, NOW, 5)
    second = bucket_service.classify(bills, NOW, 5)
    assert first == second


def test_unparseable_stored_rule_is_skipped(caplog):
    broken = _bill(rrule="FREQ=HOURLY")
    with caplog.at_level("WARNING", logger="tally.bills"):
        summary = bucket_service.classify([broken, _bill()], NOW, 5)
    assert summary["upcoming"]["count"] == 1
    assert "does not parse" in caplog.text


def test_amounts_sum_across_bills():
    bills = [_bill("1500.00"), _bill("0.01"), _bill("99.99")]
    summary = bucket_service.classify(bills, NOW, 5)
    assert summary["upcoming"] == {"count": 3, "amount": Decimal("1600.00")}
