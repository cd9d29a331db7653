"""Recurring bills router.

Endpoints:
- GET /recurring-bills: Paginated list (search, sort)
- POST /recurring-bills: Create a bill
- GET /recurring-bills/summary: Paid / upcoming / due-soon totals
- GET /recurring-bills/total: Sum of bill amounts inside an offset
- GET /recurring-bills/buckets/{bucket}: Bills in one bucket, with totals
- GET /recurring-bills/{bill_id}: Get a single bill
- PATCH /recurring-bills/{bill_id}: Partial update
- DELETE /recurring-bills/{bill_id}: Delete (payments are kept)
- GET /recurring-bills/{bill_id}/payments: Payment history
- POST /recurring-bills/{bill_id}/payments: Record a payment
- POST /recurring-bills/{bill_id}/pay: Pay an occurrence into the ledger
"""

import enum
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tally.core.auth import get_current_user
from tally.core.clock import Clock
from tally.dependencies import get_clock, get_db, get_pagination_params
from tally.models.user import User
from tally.schemas.pagination import Page, PaginationParams
from tally.schemas.recurring_bill import (
    PayBillRead,
    PaymentCreate,
    PaymentRead,
    RecurringBillCreate,
    RecurringBillRead,
    RecurringBillsBucketRead,
    RecurringBillsSummaryRead,
    RecurringBillsTotalRead,
    RecurringBillUpdate,
)
from tally.services import bucket_service, recurring_bill_service

router = APIRouter(prefix="/recurring-bills", tags=["recurring-bills"])


class Bucket(str, enum.Enum):
    paid = "paid"
    upcoming = "upcoming"
    due_soon = "due_soon"


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


DaysBeforeDue = Query(
    default=None,
    ge=bucket_service.MIN_DUE_SOON_DAYS,
    le=bucket_service.MAX_DUE_SOON_DAYS,
    description="Due-soon window in days",
)


@router.get("", response_model=Page[RecurringBillRead])
async def list_bills(
    params: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await recurring_bill_service.list_bills(db, current_user.id, params)


@router.post("", response_model=RecurringBillRead, status_code=201)
async def create_bill(
    body: RecurringBillCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Create a bill. 409 when the owner already has a bill with this name."""
    bill = await recurring_bill_service.create_bill(
        db,
        user_id=current_user.id,
        ip_address=_client_ip(request),
        **body.model_dump(),
    )
    await db.commit()
    return bill


@router.get("/summary", response_model=RecurringBillsSummaryRead)
async def get_summary(
    start: datetime | None = None,
    end: datetime | None = None,
    days_before_due: int | None = DaysBeforeDue,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    """Bucket counts and amounts, evaluated against the current instant."""
    return await recurring_bill_service.get_summary(
        db,
        current_user.id,
        now=clock(),
        start=start,
        end=end,
        due_soon_days=days_before_due,
    )


@router.get("/total", response_model=RecurringBillsTotalRead)
async def get_total_amount(
    start: datetime | None = None,
    end: datetime | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    total = await recurring_bill_service.get_total_amount(
        db, current_user.id, start=start, end=end
    )
    return {"total": total}


@router.get("/buckets/{bucket}", response_model=RecurringBillsBucketRead)
async def get_bucket(
    bucket: Bucket,
    params: PaginationParams = Depends(get_pagination_params),
    start: datetime | None = None,
    end: datetime | None = None,
    days_before_due: int | None = DaysBeforeDue,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user),
):
    return await recurring_bill_service.get_bucket(
        bucket.value,
        db,
        current_user.id,
        params,
        now=clock(),
        start=start,
        end=end,
        due_soon_days=days_before_due,
    )


@router.get("/{bill_id}", response_model=RecurringBillRead)
async def get_bill(
    bill_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await recurring_bill_service.get_bill(db, current_user.id, bill_id)


@router.patch("/{bill_id}", response_model=RecurringBillRead)
async def update_bill(
    bill_id: uuid.UUID,
    body: RecurringBillUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Update only the fields present in the body."""
    bill = await recurring_bill_service.update_bill(
        db,
        user_id=current_user.id,
        bill_id=bill_id,
        changes=body.model_dump(exclude_unset=True),
        ip_address=_client_ip(request),
    )
    await db.commit()
    return bill


@router.delete("/{bill_id}", status_code=204)
async def delete_bill(
    bill_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await recurring_bill_service.delete_bill(
        db,
        user_id=current_user.id,
        bill_id=bill_id,
        ip_address=_client_ip(request),
    )
    await db.commit()


@router.get("/{bill_id}/payments", response_model=list[PaymentRead])
async def list_payments(
    bill_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await recurring_bill_service.list_payments(
        db, current_user.id, bill_id, start=start, end=end
    )


@router.post("/{bill_id}/payments", response_model=PaymentRead, status_code=201)
async def record_payment(
    bill_id: uuid.UUID,
    body: PaymentCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Record a payment for one occurrence without touching the ledger."""
    payment = await recurring_bill_service.record_payment(
        db,
        user_id=current_user.id,
        bill_id=bill_id,
        occurrence_date=body.occurrence_date,
        amount_paid=body.amount_paid,
        note=body.note,
        ip_address=_client_ip(request),
    )
    await db.commit()
    return payment


@router.post("/{bill_id}/pay", response_model=PayBillRead, status_code=201)
async def pay_bill(
    bill_id: uuid.UUID,
    body: PaymentCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Pay an occurrence: creates the expense transaction and the linked payment.

    Ledger entry, category total and payment are committed together.
    """
    result = await recurring_bill_service.pay_bill(
        db,
        user_id=current_user.id,
        bill_id=bill_id,
        occurrence_date=body.occurrence_date,
        amount_paid=body.amount_paid,
        note=body.note,
        ip_address=_client_ip(request),
    )
    await db.commit()
    return result
