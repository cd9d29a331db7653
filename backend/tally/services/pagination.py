"""Offset pagination over SQLAlchemy selects and in-memory lists."""

import math
from collections.abc import Callable, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tally.core.errors import ValidationError
from tally.schemas.pagination import PaginationParams, SortOrder


def build_meta(total_items: int, params: PaginationParams) -> dict:
    total_pages = math.ceil(total_items / params.per_page) if total_items else 0
    has_next = params.page < total_pages
    has_prev = params.page > 1
    return {
        "pagination": {
            "total_items": total_items,
            "page": params.page,
            "per_page": params.per_page,
            "total_pages": total_pages,
            "next_page": params.page + 1 if has_next else None,
            "previous_page": params.page - 1 if has_prev else None,
            "has_next_page": has_next,
            "has_prev_page": has_prev,
        },
        "search": params.search,
        "sort": params.sort,
        "order": params.order if params.sort else None,
    }


async def paginate(
    db: AsyncSession,
    stmt: Select,
    params: PaginationParams,
    *,
    sortable: dict,
    default_order: Sequence = (),
) -> dict:
    """Run ``stmt`` for one page. ``sortable`` maps public field names to columns."""
    count_result = await db.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    )
    total_items = count_result.scalar_one()

    if params.sort:
        column = sortable.get(params.sort)
        if column is None:
            allowed = ", ".join(sorted(sortable))
            raise ValidationError({"sort": f"Cannot sort by '{params.sort}'. Allowed: {allowed}"})
        stmt = stmt.order_by(column.desc() if params.order == SortOrder.desc else column.asc())
    stmt = stmt.order_by(*default_order)

    stmt = stmt.offset((params.page - 1) * params.per_page).limit(params.per_page)
    result = await db.execute(stmt)
    return {"data": list(result.scalars().all()), "meta": build_meta(total_items, params)}


def paginate_items(
    items: Sequence,
    params: PaginationParams,
    *,
    key: Callable | None = None,
    reverse: bool = False,
) -> dict:
    ordered = sorted(items, key=key, reverse=reverse) if key is not None else list(items)
    offset = (params.page - 1) * params.per_page
    return {
        "data": ordered[offset:offset + params.per_page],
        "meta": build_meta(len(ordered), params),
    }
