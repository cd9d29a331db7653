"""Transaction categories: created lazily from the budget they mirror."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tally.models.budget import Budget
from tally.models.category import Category


async def get_category(
    db: AsyncSession,
    user_id: uuid.UUID,
    category_id: uuid.UUID,
) -> Category | None:
    result = await db.execute(
        select(Category).where(
            Category.id == category_id,
            Category.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def ensure_category_for_budget(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    budget: Budget,
) -> Category:
    """Return the category sharing the budget's id, creating it on first use. Idempotent."""
    category = await get_category(db, user_id, budget.id)
    if category is not None:
        return category

    category = Category(
        id=budget.id,
        user_id=user_id,
        name=budget.name,
        color_tag=budget.color_tag,
    )
    db.add(category)
    await db.flush()
    return category
