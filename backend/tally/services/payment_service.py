"""Payment ledger: record bill payments and turn them into ledger entries.

Per occurrence a bill moves Unbilled -> Recorded (record_payment) or
Unbilled -> Recorded + Ledgered (create_transaction_from_bill). There is no
ledgered-but-unrecorded state.

create_transaction_from_bill writes, in order:
1. the expense ledger entry,
2. the transaction category (first use only),
3. the budget's total_spending, recomputed in a single UPDATE,
4. the payment, linked back to the ledger entry.
All four run in the caller's transaction. When any of them fails the
session is rolled back, which discards the ledger entry, and the failure
surfaces as DatasourceError. A payment that loses a race on the
(bill, occurrence) unique constraint is rolled back the same way and
surfaces as ConflictError.
"""

import logging
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tally.core.errors import ConflictError, DatasourceError, NotFoundError
from tally.models.recurring_bill import RecurringBill, RecurringBillPayment
from tally.services import (
    audit_service,
    budget_service,
    category_service,
    transaction_service,
    validation,
)

logger = logging.getLogger("tally.bills")

DUPLICATE_PAYMENT_MESSAGE = "A payment for this occurrence already exists"


async def record_payment(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill: RecurringBill,
    occurrence_date: datetime,
    amount_paid: Decimal,
    note: str | None = None,
    ip_address: str | None = None,
) -> RecurringBillPayment:
    """Record a payment for one occurrence. Category totals are untouched."""
    amount = validation.validate_amount(amount_paid, "amount_paid")
    occurrence = validation.validate_instant(occurrence_date, "occurrence_date")
    note = validation.clean_optional_text(note)

    await _ensure_unpaid(db, bill.id, occurrence)

    payment = await _write_payment(
        db,
        user_id=user_id,
        bill_id=bill.id,
        occurrence_date=occurrence,
        amount_paid=amount,
        note=note,
    )

    await audit_service.log_bill_event(
        db,
        "bill.payment_recorded",
        user_id=user_id,
        bill_id=bill.id,
        detail={
            "payment_id": str(payment.id),
            "occurrence_date": occurrence.isoformat(),
            "amount_paid": str(amount),
        },
        ip_address=ip_address,
    )

    return payment


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
    """Pay an occurrence: ledger entry + category total + linked payment.

    Returns {"transaction_id", "payment"}. Raises NotFoundError when the bill
    or its budget is missing, ConflictError when the occurrence is already
    paid, DatasourceError when a write fails.
    """
    amount = validation.validate_amount(amount_paid, "amount_paid")
    occurrence = validation.validate_instant(occurrence_date, "occurrence_date")
    note = validation.clean_optional_text(note)

    bill = await _load_bill(db, user_id, bill_id)
    budget = await budget_service.get_budget(db, user_id, bill.category_id)
    if budget is None:
        raise NotFoundError("Category not found for recurring bill")

    await _ensure_unpaid(db, bill.id, occurrence)

    try:
        txn = await transaction_service.create_expense_from_bill(
            db,
            user_id=user_id,
            bill=bill,
            budget=budget,
            amount=amount,
            transaction_date=occurrence,
            note=note,
        )
        await category_service.ensure_category_for_budget(db, user_id=user_id, budget=budget)
        total = await budget_service.refresh_total_spending(
            db, user_id=user_id, budget_id=budget.id
        )
        payment = await _write_payment(
            db,
            user_id=user_id,
            bill_id=bill.id,
            occurrence_date=occurrence,
            amount_paid=amount,
            note=note,
            transaction_id=txn.id,
        )
    except SQLAlchemyError as exc:
        logger.warning(
            "Rolling back payment of bill %s for %s: %s", bill_id, occurrence.isoformat(), exc
        )
        await db.rollback()
        raise DatasourceError("Failed to create transaction from recurring bill") from exc

    await audit_service.log_bill_event(
        db,
        "bill.paid",
        user_id=user_id,
        bill_id=bill.id,
        detail={
            "payment_id": str(payment.id),
            "transaction_id": str(txn.id),
            "occurrence_date": occurrence.isoformat(),
            "amount_paid": str(amount),
            "category_id": str(budget.id),
            "category_total": str(total),
        },
        ip_address=ip_address,
    )
    logger.info("Bill %s paid for %s as transaction %s", bill.id, occurrence.date(), txn.id)

    return {"transaction_id": txn.id, "payment": payment}


async def get_payments_in_range(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[RecurringBillPayment]:
    """A bill's payments ordered by occurrence date, optionally bounded (inclusive)."""
    stmt = (
        select(RecurringBillPayment)
        .where(
            RecurringBillPayment.user_id == user_id,
            RecurringBillPayment.bill_id == bill_id,
        )
        .order_by(RecurringBillPayment.occurrence_date.asc())
    )
    if start is not None:
        lower = validation.validate_instant(start, "start")
        stmt = stmt.where(RecurringBillPayment.occurrence_date >= lower)
    if end is not None:
        upper = validation.validate_instant(end, "end")
        stmt = stmt.where(RecurringBillPayment.occurrence_date <= upper)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_payments_for_bills(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_ids: list[uuid.UUID],
) -> dict[uuid.UUID, list[RecurringBillPayment]]:
    """Payments grouped by bill id, for bucket classification."""
    if not bill_ids:
        return {}
    result = await db.execute(
        select(RecurringBillPayment)
        .where(
            RecurringBillPayment.user_id == user_id,
            RecurringBillPayment.bill_id.in_(bill_ids),
        )
        .order_by(RecurringBillPayment.occurrence_date.asc())
    )
    grouped: dict[uuid.UUID, list[RecurringBillPayment]] = defaultdict(list)
    for payment in result.scalars().all():
        grouped[payment.bill_id].append(payment)
    return grouped


async def _load_bill(db: AsyncSession, user_id: uuid.UUID, bill_id: uuid.UUID) -> RecurringBill:
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


async def _ensure_unpaid(db: AsyncSession, bill_id: uuid.UUID, occurrence: datetime) -> None:
    result = await db.execute(
        select(RecurringBillPayment.id).where(
            RecurringBillPayment.bill_id == bill_id,
            RecurringBillPayment.occurrence_date == occurrence,
        )
    )
    if result.first() is not None:
        raise ConflictError(DUPLICATE_PAYMENT_MESSAGE)


async def _write_payment(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill_id: uuid.UUID,
    occurrence_date: datetime,
    amount_paid: Decimal,
    note: str | None,
    transaction_id: uuid.UUID | None = None,
) -> RecurringBillPayment:
    payment = RecurringBillPayment(
        user_id=user_id,
        bill_id=bill_id,
        occurrence_date=occurrence_date,
        amount_paid=amount_paid,
        note=note,
        transaction_id=transaction_id,
    )
    db.add(payment)
    try:
        await db.flush()
    except IntegrityError as exc:
        # A concurrent request paid the same occurrence after _ensure_unpaid ran.
        logger.warning(
            "Duplicate payment of bill %s for %s: %s", bill_id, occurrence_date.isoformat(), exc
        )
        await db.rollback()
        raise ConflictError(DUPLICATE_PAYMENT_MESSAGE) from exc
    return payment
