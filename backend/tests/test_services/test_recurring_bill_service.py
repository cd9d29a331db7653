"""Recurring bill service: CRUD, listing, summary, buckets, totals."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tally.core.errors import ConflictError, NotFoundError, ValidationError
from tally.models.budget import Budget
from tally.models.user import User
from tally.schemas.pagination import PaginationParams
from tally.services import audit_service, recurring_bill_service

UTC = timezone.utc
NOW = datetime(2024, 1, 28, 12, 0, tzinfo=UTC)


async def _setup(db: AsyncSession, email: str = "bills@example.com") -> tuple[User, Budget]:
    user = User(email=email, password_hash="fakehash")
    db.add(user)
    await db.commit()
    await db.refresh(user)

    budget = Budget(
        user_id=user.id,
        name="Housing",
        color_tag="#277C78",
        maximum_spending=Decimal("2000.00"),
    )
    db.add(budget)
    await db.commit()
    await db.refresh(budget)
    return user, budget


async def _create(db: AsyncSession, user: User, budget: Budget, **overrides):
    fields = {
        "name": "Rent",
        "amount": Decimal("1500.00"),
        "emoji": "🏠",
        "category_id": budget.id,
        "rrule": "FREQ=MONTHLY",
        "dtstart": datetime(2024, 1, 1, tzinfo=UTC),
        "recipient_or_payer": "Landlord",
    }
    fields.update(overrides)
    bill = await recurring_bill_service.create_bill(db, user_id=user.id, **fields)
    await db.commit()
    return bill


# --- Create ---

@pytest.mark.asyncio
async def test_create_bill(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget, name="  Rent  ")

    assert bill.id is not None
    assert bill.name == "Rent"
    assert bill.amount == Decimal("1500.00")
    assert bill.category_id == budget.id
    assert bill.until is None

    events = await audit_service.get_bill_history(db_session, user.id, bill.id)
    assert [e.event_type for e in events] == ["bill.created"]


@pytest.mark.asyncio
async def test_create_bill_until_before_dtstart(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    with pytest.raises(ValidationError) as exc:
        await _create(
            db_session, user, budget,
            dtstart=datetime(2024, 2, 1, tzinfo=UTC),
            until=datetime(2024, 1, 1, tzinfo=UTC),
        )
    assert exc.value.errors == {"until": "Until must be after start date"}


@pytest.mark.asyncio
async def test_create_bill_rejects_unsupported_rule(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    with pytest.raises(ValidationError) as exc:
        await _create(db_session, user, budget, rrule="FREQ=HOURLY")
    assert "rrule" in exc.value.errors


@pytest.mark.asyncio
async def test_create_bill_duplicate_name(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    await _create(db_session, user, budget)
    with pytest.raises(ConflictError):
        await _create(db_session, user, budget, name="Rent ")


@pytest.mark.asyncio
async def test_same_name_allowed_for_other_owner(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    other, other_budget = await _setup(db_session, "other@example.com")
    await _create(db_session, user, budget)
    bill = await _create(db_session, other, other_budget)
    assert bill.user_id == other.id


# --- Get / Update / Delete ---

@pytest.mark.asyncio
async def test_get_bill_scoped_to_owner(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    other, _ = await _setup(db_session, "intruder@example.com")
    bill = await _create(db_session, user, budget)

    assert (await recurring_bill_service.get_bill(db_session, user.id, bill.id)).id == bill.id
    with pytest.raises(NotFoundError):
        await recurring_bill_service.get_bill(db_session, other.id, bill.id)


@pytest.mark.asyncio
async def test_update_bill_partial(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget)

    updated = await recurring_bill_service.update_bill(
        db_session,
        user_id=user.id,
        bill_id=bill.id,
        changes={"amount": "1650", "description": "  New lease  "},
    )
    await db_session.commit()

    assert updated.amount == Decimal("1650.00")
    assert updated.description == "New lease"
    assert updated.name == "Rent"

    events = await audit_service.get_bill_history(db_session, user.id, bill.id)
    update_event = events[-1]
    assert update_event.event_type == "bill.updated"
    assert update_event.detail["changes"]["amount"] == {"old": "1500.00", "new": "1650.00"}
    assert set(update_event.detail["changes"]) == {"amount", "description"}


@pytest.mark.asyncio
async def test_update_bill_without_changes_writes_nothing(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget)

    await recurring_bill_service.update_bill(
        db_session, user_id=user.id, bill_id=bill.id, changes={"name": "Rent"}
    )
    await db_session.commit()

    events = await audit_service.get_bill_history(db_session, user.id, bill.id)
    assert [e.event_type for e in events] == ["bill.created"]


@pytest.mark.asyncio
async def test_update_bill_checks_merged_schedule(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget, until=datetime(2024, 6, 1, tzinfo=UTC))

    with pytest.raises(ValidationError) as exc:
        await recurring_bill_service.update_bill(
            db_session,
            user_id=user.id,
            bill_id=bill.id,
            changes={"dtstart": datetime(2024, 7, 1, tzinfo=UTC)},
        )
    assert "until" in exc.value.errors


@pytest.mark.asyncio
async def test_update_bill_clears_until(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget, until=datetime(2024, 6, 1, tzinfo=UTC))

    updated = await recurring_bill_service.update_bill(
        db_session, user_id=user.id, bill_id=bill.id, changes={"until": None}
    )
    await db_session.commit()
    assert updated.until is None


@pytest.mark.asyncio
async def test_update_bill_rename_conflict(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    await _create(db_session, user, budget)
    power = await _create(db_session, user, budget, name="Power", emoji="💡")

    with pytest.raises(ConflictError):
        await recurring_bill_service.update_bill(
            db_session, user_id=user.id, bill_id=power.id, changes={"name": "Rent"}
        )


@pytest.mark.asyncio
async def test_update_bill_unknown_field(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget)
    with pytest.raises(ValidationError) as exc:
        await recurring_bill_service.update_bill(
            db_session, user_id=user.id, bill_id=bill.id, changes={"user_id": uuid.uuid4()}
        )
    assert exc.value.errors == {"user_id": "Unknown field"}


@pytest.mark.asyncio
async def test_delete_bill(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget)

    await recurring_bill_service.delete_bill(db_session, user_id=user.id, bill_id=bill.id)
    await db_session.commit()

    with pytest.raises(NotFoundError):
        await recurring_bill_service.get_bill(db_session, user.id, bill.id)
    events = await audit_service.get_bill_history(db_session, user.id, bill.id)
    assert events[-1].event_type == "bill.deleted"


@pytest.mark.asyncio
async def test_delete_missing_bill(db_session: AsyncSession):
    user, _ = await _setup(db_session)
    with pytest.raises(NotFoundError):
        await recurring_bill_service.delete_bill(db_session, user_id=user.id, bill_id=uuid.uuid4())


# --- List ---

@pytest.mark.asyncio
async def test_list_bills_search_sort_paginate(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    await _create(db_session, user, budget, name="Rent", amount=Decimal("1500"))
    await _create(db_session, user, budget, name="Car loan", amount=Decimal("300"), emoji="🚗")
    await _create(db_session, user, budget, name="Carwash", amount=Decimal("25"), emoji="🧽")

    page = await recurring_bill_service.list_bills(
        db_session, user.id, PaginationParams(search="CAR", sort="amount", order="desc")
    )
    assert [b.name for b in page["data"]] == ["Car loan", "Carwash"]
    assert page["meta"]["pagination"]["total_items"] == 2

    first = await recurring_bill_service.list_bills(
        db_session, user.id, PaginationParams(per_page=2, sort="name")
    )
    meta = first["meta"]["pagination"]
    assert [b.name for b in first["data"]] == ["Car loan", "Carwash"]
    assert meta["total_pages"] == 2
    assert meta["has_next_page"] is True
    assert meta["next_page"] == 2
    assert meta["previous_page"] is None


@pytest.mark.asyncio
async def test_list_bills_unknown_sort(db_session: AsyncSession):
    user, _ = await _setup(db_session)
    with pytest.raises(ValidationError) as exc:
        await recurring_bill_service.list_bills(
            db_session, user.id, PaginationParams(sort="password")
        )
    assert "sort" in exc.value.errors


# --- Summary / buckets / total ---

@pytest.mark.asyncio
async def test_summary_due_soon(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    await _create(db_session, user, budget)

    summary = await recurring_bill_service.get_summary(
        db_session, user.id, now=NOW, due_soon_days=5
    )
    assert summary["upcoming"] == {"count": 1, "amount": Decimal("1500.00")}
    assert summary["due_soon"] == {"count": 1, "amount": Decimal("1500.00")}
    assert summary["paid"]["count"] == 0


@pytest.mark.asyncio
async def test_summary_counts_recorded_payments(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget, rrule="FREQ=WEEKLY")
    await recurring_bill_service.record_payment(
        db_session,
        user_id=user.id,
        bill_id=bill.id,
        occurrence_date=datetime(2024, 1, 8, tzinfo=UTC),
        amount_paid=Decimal("1450.00"),
    )
    await db_session.commit()

    summary = await recurring_bill_service.get_summary(db_session, user.id, now=NOW)
    assert summary["paid"] == {"count": 1, "amount": Decimal("1450.00")}


@pytest.mark.asyncio
async def test_bucket_totals_match_summary(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    await _create(db_session, user, budget)
    await _create(
        db_session, user, budget, name="Gym", amount=Decimal("45"), emoji="💪",
        rrule="FREQ=MONTHLY;BYMONTHDAY=15",
    )
    await _create(
        db_session, user, budget, name="Insurance", amount=Decimal("90"), emoji="🔒",
        dtstart=datetime(2024, 3, 1, tzinfo=UTC),
    )

    summary = await recurring_bill_service.get_summary(
        db_session, user.id, now=NOW, due_soon_days=5
    )
    for name in ("paid", "upcoming", "due_soon"):
        bucket = await recurring_bill_service.get_bucket(
            name, db_session, user.id, PaginationParams(), now=NOW, due_soon_days=5
        )
        assert bucket["count"] == summary[name]["count"]
        assert bucket["amount"] == summary[name]["amount"]

    upcoming = await recurring_bill_service.get_bucket(
        "upcoming", db_session, user.id, PaginationParams(), now=NOW
    )
    assert {b.name for b in upcoming["list"]["data"]} == {"Rent", "Gym"}
    assert upcoming["list"]["meta"]["pagination"]["total_items"] == 2


@pytest.mark.asyncio
async def test_paid_bucket_counts_payments_and_lists_bills(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    bill = await _create(db_session, user, budget, rrule="FREQ=WEEKLY")
    for day, amount in ((8, "1450.00"), (15, "1500.00")):
        await recurring_bill_service.record_payment(
            db_session,
            user_id=user.id,
            bill_id=bill.id,
            occurrence_date=datetime(2024, 1, day, tzinfo=UTC),
            amount_paid=Decimal(amount),
        )
    await db_session.commit()

    paid = await recurring_bill_service.get_bucket(
        "paid", db_session, user.id, PaginationParams(), now=NOW
    )
    assert paid["count"] == 2
    assert paid["amount"] == Decimal("2950.00")
    assert paid["list"]["meta"]["pagination"]["total_items"] == 1
    assert [b.id for b in paid["list"]["data"]] == [bill.id]


@pytest.mark.asyncio
async def test_bucket_unknown_name(db_session: AsyncSession):
    user, _ = await _setup(db_session)
    with pytest.raises(ValidationError):
        await recurring_bill_service.get_bucket(
            "overdue", db_session, user.id, PaginationParams(), now=NOW
        )


@pytest.mark.asyncio
async def test_total_amount_with_offset(db_session: AsyncSession):
    user, budget = await _setup(db_session)
    await _create(db_session, user, budget)
    await _create(
        db_session, user, budget, name="Streaming", amount=Decimal("15.99"), emoji="📺",
        dtstart=datetime(2024, 2, 1, tzinfo=UTC), until=datetime(2024, 12, 1, tzinfo=UTC),
    )
    await _create(
        db_session, user, budget, name="Phone", amount=Decimal("40"), emoji="📱",
        dtstart=datetime(2024, 2, 1, tzinfo=UTC), until=datetime(2025, 6, 1, tzinfo=UTC),
    )

    total = await recurring_bill_service.get_total_amount(db_session, user.id)
    assert total == Decimal("1555.99")

    windowed = await recurring_bill_service.get_total_amount(
        db_session,
        user.id,
        start=datetime(2024, 1, 15, tzinfo=UTC),
        end=datetime(2024, 12, 31, tzinfo=UTC),
    )
    assert windowed == Decimal("15.99")


@pytest.mark.asyncio
async def test_total_amount_empty(db_session: AsyncSession):
    user, _ = await _setup(db_session)
    assert await recurring_bill_service.get_total_amount(db_session, user.id) == Decimal("0.00")
