"""Ledger entries created on behalf of recurring bills.

General transaction CRUD lives elsewhere; this module only writes the
expense entry for a paid bill occurrence and aggregates per category.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tally.models.budget import Budget
from tally.models.recurring_bill import RecurringBill
from tally.models.transaction import Transaction, TransactionType


async def create_expense_from_bill(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    bill: RecurringBill,
    budget: Budget,
    amount: Decimal,
    transaction_date: datetime,
    note: str | None = None,
) -> Transaction:
    """Write an expense entry for one bill occurrence. Amount is stored positive."""
    txn = Transaction(
        user_id=user_id,
        name=bill.name,
        transaction_type=TransactionType.expense,
        amount=amount,
        signed_amount=-amount,
        recipient_or_payer=bill.recipient_or_payer,
        category_id=budget.id,
        category_name=budget.name,
        category_color_tag=budget.color_tag,
        transaction_date=transaction_date,
        description=note if note is not None else bill.description,
        emoji=bill.emoji,
    )
    db.add(txn)
    await db.flush()
    return txn


def total_by_category_query(user_id: uuid.UUID, category_id: uuid.UUID):
    """Signed sum of a category's transactions, as a scalar subquery."""
    return (
        select(func.coalesce(func.sum(Transaction.signed_amount), 0))
        .where(
            Transaction.user_id == user_id,
            Transaction.category_id == category_id,
        )
        .scalar_subquery()
    )


async def calculate_total_by_category(
    db: AsyncSession,
    user_id: uuid.UUID,
    category_id: uuid.UUID,
) -> Decimal:
    """Full re-aggregation of a category's signed amounts."""
    result = await db.execute(select(total_by_category_query(user_id, category_id)))
    total = result.scalar_one()
    return Decimal(str(total)).quantize(Decimal("0.01"))


async def get_transaction(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_id: uuid.UUID,
) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()
