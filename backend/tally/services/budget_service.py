"""Budget lookups and spending totals used by the bill ledger.

Budget CRUD is owned by the budgets feature; only what the recurring bill
engine needs lives here.
"""

import uuid
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tally.models.budget import Budget
from tally.services import transaction_service


async def get_budget(
    db: AsyncSession,
    user_id: uuid.UUID,
    budget_id: uuid.UUID,
) -> Budget | None:
    result = await db.execute(
        select(Budget).where(
            Budget.id == budget_id,
            Budget.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def refresh_total_spending(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    budget_id: uuid.UUID,
) -> Decimal:
    """Recompute a budget's total from all of its transactions.

    Aggregate and write happen in one UPDATE statement, so concurrent
    recomputes cannot overwrite each other with a stale sum read earlier by
    the application.
    """
    await db.execute(
        update(Budget)
        .where(Budget.id == budget_id, Budget.user_id == user_id)
        .values(total_spending=transaction_service.total_by_category_query(user_id, budget_id))
        .execution_options(synchronize_session=False)
    )
    budget = await db.get(Budget, budget_id, populate_existing=True)
    return Decimal(str(budget.total_spending)).quantize(Decimal("0.01"))
