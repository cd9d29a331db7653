"""Recurring bill service: the use-case facing API of the bill engine.

Composes the recurrence engine, the bucket classifier and the payment ledger
with persistence. Every operation is scoped to one owner (``user_id``).

- Create / update / delete bills (name unique per owner)
- Paginated listing with name search and sorting
- Summary buckets (paid / upcoming / due soon) and per-bucket listings
- Record payments, or pay an occurrence into the ledger

All writes are audit-logged. Callers commit.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tally.core.clock import to_utc
from tally.core.errors import ConflictError, NotFoundError, ValidationError
from tally.models.recurring_bill import RecurringBill
from tally.schemas.pagination import PaginationParams
from tally.services import (
    audit_service,
    bucket_service,
    pagination,
    payment_service,
    validation,
)

UPDATABLE_FIELDS = (
    "name",
    "amount",
    "recipient_or_payer",
    "description",
    "emoji",
    "category_id",
    "rrule",
    "dtstart",
    "until",
)

SORTABLE_FIELDS = {
    "name": RecurringBill.name,
    "amount": RecurringBill.amount,
    "dtstart": RecurringBill.dtstart,
    "created_at": RecurringBill.created_at,
}


# --- CRUD ---

async def create_bill(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    name: str,
    amount: Decimal,
    emoji: str,
    category_id: uuid.UUID,
    rrule: str,
    dtstart: datetime,
    until: datetime | None = None,
    recipient_or_payer: str | None = None,
    description: str | None = None,
    ip_address: str | None = None,
) -> RecurringBill:
    """Validate and store a new bill. Raises ConflictError on a duplicate name."""
    name = validation.validate_name(name)
    amount = validation.validate_amount(amount)
    emoji = validation.validate_emoji(emoji)
    rrule = validation.validate_rrule(rrule)
    dtstart = validation.validate_instant(dtstart, "dtstart")
    if until is not None:
        until = validation.validate_instant(until, "until")
    validation.validate_schedule(dtstart, until)

    if await get_bill_by_name(db, user_id, name) is not None:
        raise ConflictError("Recurring bill name already exists")

    bill = RecurringBill(
        user_id=user_id,
        name=name,
        amount=amount,
        recipient_or_payer=validation.clean_optional_text(recipient_or_payer),
        description=validation.clean_optional_text(description),
        emoji=emoji,
        category_id=category_id,
        rrule=rrule,
        dtstart=dtstart,
        until=until,
    )
    db.add(bill)
    await db.flush()

    await audit_service.log_bill_event(
        db,
        "bill.created",
        user_id=user_id,
        bill_id=bill.id,
        detail={
            "name": name,
            "amount": str(amount),
            "rrule": rrule,
            "dtstart": dtstart.isoformat(),
            "until": until.isoformat() if until else None,
        },
        ip_address=ip_address,
    )

    return bill


async def get_bill(
    db: AsyncSession,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
) -> RecurringBill:
    """Get a single bill. Raises NotFoundError if it does not belong to the owner."""
    result = await db.execute(
        select(RecurringBill).where(
            RecurringBill.id == bill_id,
            RecurringBill.user_id == user_id,
        )
    )
    bill = result.scalar_one_or_none()
    if bill is None:
        raise NotFoundError("Recurring bill not found")
    return bill


async def get_bill_by_name(
    db: AsyncSession,
    user_id: uuid.UUID,
    name: str,
) -> RecurringBill | None:
    result = await db.execute(
        select(RecurringBill).where(
            RecurringBill.user_id == user_id,
            RecurringBill.name == name.strip(),
        )
    )
    return result.scalars().first()


async def update_bill(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    changes: dict,
    ip_address: str | None = None,
) -> RecurringBill:
    """Apply a partial update. Only fields that actually change are written.

    ``changes`` holds the fields the caller sent; an explicit None clears the
    nullable fields (recipient_or_payer, description, until).
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError({field: "Unknown field" for field in sorted(unknown)})

    bill = await get_bill(db, user_id, bill_id)
    cleaned = _clean_changes(changes)

    dtstart = cleaned.get("dtstart", bill.dtstart)
    until = cleaned["until"] if "until" in cleaned else bill.until
    validation.validate_schedule(dtstart, until)

    new_name = cleaned.get("name")
    if new_name is not None and new_name != bill.name:
        existing = await get_bill_by_name(db, user_id, new_name)
        if existing is not None and existing.id != bill.id:
            raise ConflictError("Recurring bill name already exists")

    diff = {}
    for field, value in cleaned.items():
        old = getattr(bill, field)
        if _same(old, value):
            continue
        diff[field] = {"old": _audit_value(old), "new": _audit_value(value)}
        setattr(bill, field, value)

    if not diff:
        return bill

    await db.flush()
    await db.refresh(bill)

    await audit_service.log_bill_event(
        db,
        "bill.updated",
        user_id=user_id,
        bill_id=bill.id,
        detail={"changes": diff},
        ip_address=ip_address,
    )

    return bill


async def delete_bill(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    ip_address: str | None = None,
) -> None:
    """Hard-delete a bill. Its payments stay as historical records."""
    bill = await get_bill(db, user_id, bill_id)
    name = bill.name
    await db.delete(bill)
    await db.flush()

    await audit_service.log_bill_event(
        db,
        "bill.deleted",
        user_id=user_id,
        bill_id=bill_id,
        detail={"name": name},
        ip_address=ip_address,
    )


async def list_bills(
    db: AsyncSession,
    user_id: uuid.UUID,
    params: PaginationParams,
) -> dict:
    """One page of the owner's bills, filtered by name search."""
    stmt = select(RecurringBill).where(RecurringBill.user_id == user_id)
    if params.search:
        stmt = stmt.where(func.lower(RecurringBill.name).contains(params.search.strip().lower()))
    return await pagination.paginate(
        db,
        stmt,
        params,
        sortable=SORTABLE_FIELDS,
        default_order=(RecurringBill.created_at.desc(), RecurringBill.id),
    )


async def get_all_bills(db: AsyncSession, user_id: uuid.UUID) -> list[RecurringBill]:
    result = await db.execute(
        select(RecurringBill)
        .where(RecurringBill.user_id == user_id)
        .order_by(RecurringBill.dtstart.desc())
    )
    return list(result.scalars().all())


# --- Analytics & buckets ---

async def get_summary(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    now: datetime,
    start: datetime | None = None,
    end: datetime | None = None,
    due_soon_days: int | None = None,
) -> dict:
    """Paid / upcoming / due-soon counts and amounts, evaluated at ``now``."""
    bills = await get_all_bills(db, user_id)
    payments = await payment_service.get_payments_for_bills(
        db, user_id=user_id, bill_ids=[b.id for b in bills]
    )
    return bucket_service.classify(
        bills,
        now,
        bucket_service.clamp_due_soon_days(due_soon_days),
        start=start,
        end=end,
        payments_by_bill=payments,
    )


async def get_total_amount(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Decimal:
    """Sum of bill amounts for bills scheduled inside the offset.

    A bill counts when it starts at or after ``start`` and, if it has an end,
    ends at or before ``end``. Open-ended bills always pass the end check.
    """
    lower = to_utc(start) if start is not None else None
    upper = to_utc(end) if end is not None else None

    total = Decimal("0.00")
    for bill in await get_all_bills(db, user_id):
        if lower is not None and to_utc(bill.dtstart) < lower:
            continue
        if upper is not None and bill.until is not None and to_utc(bill.until) > upper:
            continue
        total += bill.amount
    return total


async def get_bucket(
    bucket: str,
    db: AsyncSession,
    user_id: uuid.UUID,
    params: PaginationParams,
    *,
    now: datetime,
    start: datetime | None = None,
    end: datetime | None = None,
    due_soon_days: int | None = None,
) -> dict:
    """Bills in one bucket with the bucket's totals.

    Returns {"count", "amount", "list"}; count and amount equal the summary
    figures for the same bucket, and list pages through the bucket's bills
    (newest dtstart first). For "paid", count is the number of payments in
    the window while list.meta.pagination.total_items is the number of bills
    that have at least one of them, so the two differ when a bill was paid
    more than once.
    """
    if bucket not in bucket_service.BUCKETS:
        raise ValidationError({"bucket": f"Unknown bucket '{bucket}'"})

    days = bucket_service.clamp_due_soon_days(due_soon_days)
    bills = await get_all_bills(db, user_id)
    payments = await payment_service.get_payments_for_bills(
        db, user_id=user_id, bill_ids=[b.id for b in bills]
    )

    if bucket == "upcoming":
        members = [b for b in bills if bucket_service.is_upcoming(b, now, start=start, end=end)]
    elif bucket == "due_soon":
        members = [
            b for b in bills
            if bucket_service.is_due_soon(b, now, days, start=start, end=end)
        ]
    else:
        members = [
            b for b in bills
            if bucket_service.paid_payments(
                b, payments.get(b.id, ()), now, start=start, end=end
            )
        ]

    totals = bucket_service.classify(
        members, now, days, start=start, end=end, payments_by_bill=payments
    )[bucket]
    listing = pagination.paginate_items(
        members,
        params,
        key=lambda b: to_utc(b.dtstart),
        reverse=True,
    )
    return {"count": totals["count"], "amount": totals["amount"], "list": listing}


# --- Payments ---

async def record_payment(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    occurrence_date: datetime,
    amount_paid: Decimal,
    note: str | None = None,
    ip_address: str | None = None,
):
    bill = await get_bill(db, user_id, bill_id)
    return await payment_service.record_payment(
        db,
        user_id=user_id,
        bill=bill,
        occurrence_date=occurrence_date,
        amount_paid=amount_paid,
        note=note,
        ip_address=ip_address,
    )


async def create_transaction_from_bill(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    occurrence_date: datetime,
    amount_paid: Decimal,
    note: str | None = None,
    ip_address: str | None = None,
) -> dict:
    return await payment_service.create_transaction_from_bill(
        db,
        user_id=user_id,
        bill_id=bill_id,
        occurrence_date=occurrence_date,
        amount_paid=amount_paid,
        note=note,
        ip_address=ip_address,
    )


async def pay_bill(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    occurrence_date: datetime,
    amount_paid: Decimal,
    note: str | None = None,
    ip_address: str | None = None,
) -> dict:
    """Pay an occurrence now. Returns {"bill", "payment", "transaction_id"}."""
    bill = await get_bill(db, user_id, bill_id)
    result = await create_transaction_from_bill(
        db,
        user_id=user_id,
        bill_id=bill.id,
        occurrence_date=occurrence_date,
        amount_paid=amount_paid,
        note=note,
        ip_address=ip_address,
    )
    return {"bill": bill, **result}


async def list_payments(
    db: AsyncSession,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list:
    """Payment history of a bill that still exists."""
    await get_bill(db, user_id, bill_id)
    return await payment_service.get_payments_in_range(
        db, user_id=user_id, bill_id=bill_id, start=start, end=end
    )


# --- Helpers ---

def _clean_changes(changes: dict) -> dict:
    cleaned = {}
    for field, value in changes.items():
        if field == "name":
            cleaned[field] = validation.validate_name(value)
        elif field == "amount":
            cleaned[field] = validation.validate_amount(value)
        elif field == "emoji":
            cleaned[field] = validation.validate_emoji(value)
        elif field == "rrule":
            cleaned[field] = validation.validate_rrule(value)
        elif field == "dtstart":
            if value is None:
                raise ValidationError({"dtstart": "Start date must be a valid date"})
            cleaned[field] = validation.validate_instant(value, "dtstart")
        elif field == "until":
            cleaned[field] = None if value is None else validation.validate_instant(value, "until")
        elif field == "category_id":
            if value is None:
                raise ValidationError({"category_id": "Category ID is required"})
            cleaned[field] = value
        else:
            cleaned[field] = validation.clean_optional_text(value)
    return cleaned


def _same(old, new) -> bool:
    if isinstance(old, datetime) and isinstance(new, datetime):
        return to_utc(old) == to_utc(new)
    return old == new


def _audit_value(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
