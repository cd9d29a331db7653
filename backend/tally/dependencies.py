from collections.abc import AsyncGenerator

from fastapi import Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tally.config import settings
from tally.core.clock import Clock, utc_now
from tally.schemas.pagination import PaginationParams, SortOrder

engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session. Uncommitted work is discarded on close."""
    async with async_session_factory() as session:
        yield session


def get_clock() -> Clock:
    return utc_now


def get_pagination_params(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=10, ge=1, le=settings.max_per_page),
    search: str | None = Query(default=None, max_length=100),
    sort: str | None = Query(default=None, description="Field to sort by"),
    order: SortOrder = Query(default=SortOrder.asc),
) -> PaginationParams:
    return PaginationParams(page=page, per_page=per_page, search=search, sort=sort, order=order)
