"""Pagination request/response models shared by list endpoints."""

import enum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from tally.config import settings

T = TypeVar("T")


class SortOrder(str, enum.Enum):
    asc = "asc"
    desc = "desc"


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=10, ge=1, le=settings.max_per_page)
    search: str | None = Field(default=None, max_length=100)
    sort: str | None = Field(default=None, description="Field to sort by")
    order: SortOrder = SortOrder.asc


class PaginationMeta(BaseModel):
    total_items: int
    page: int
    per_page: int
    total_pages: int
    next_page: int | None = None
    previous_page: int | None = None
    has_next_page: bool
    has_prev_page: bool


class PageMeta(BaseModel):
    pagination: PaginationMeta
    search: str | None = None
    sort: str | None = None
    order: SortOrder | None = None


class Page(BaseModel, Generic[T]):
    data: list[T]
    meta: PageMeta
