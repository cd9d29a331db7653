"""Recurring bill schemas: request/response models for the bills API."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator

from tally.schemas.pagination import Page
from tally.services import validation


class RecurringBillCreate(BaseModel):
    name: str
    amount: Decimal
    recipient_or_payer: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=500)
    emoji: str
    category_id: uuid.UUID
    rrule: str = Field(..., description="RFC 5545 RRULE, e.g. FREQ=MONTHLY;INTERVAL=1")
    dtstart: datetime
    until: datetime | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return validation.validate_name(v)

    @field_validator("amount")
    @classmethod
    def _amount(cls, v: Decimal) -> Decimal:
        return validation.validate_amount(v)

    @field_validator("emoji")
    @classmethod
    def _emoji(cls, v: str) -> str:
        return validation.validate_emoji(v)

    @field_validator("rrule")
    @classmethod
    def _rrule(cls, v: str) -> str:
        return validation.validate_rrule(v)

    @model_validator(mode="after")
    def _schedule(self):
        validation.validate_schedule(self.dtstart, self.until)
        return self


class RecurringBillUpdate(BaseModel):
    """Partial update. Only the fields present in the request are applied."""

    name: str | None = None
    amount: Decimal | None = None
    recipient_or_payer: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=500)
    emoji: str | None = None
    category_id: uuid.UUID | None = None
    rrule: str | None = None
    dtstart: datetime | None = None
    until: datetime | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str | None) -> str | None:
        return None if v is None else validation.validate_name(v)

    @field_validator("amount")
    @classmethod
    def _amount(cls, v: Decimal | None) -> Decimal | None:
        return None if v is None else validation.validate_amount(v)

    @field_validator("emoji")
    @classmethod
    def _emoji(cls, v: str | None) -> str | None:
        return None if v is None else validation.validate_emoji(v)

    @field_validator("rrule")
    @classmethod
    def _rrule(cls, v: str | None) -> str | None:
        return None if v is None else validation.validate_rrule(v)

    @model_validator(mode="after")
    def _schedule(self):
        if self.dtstart is not None:
            validation.validate_schedule(self.dtstart, self.until)
        return self


class RecurringBillRead(BaseModel):
    id: uuid.UUID
    name: str
    amount: Decimal
    recipient_or_payer: str | None = None
    description: str | None = None
    emoji: str
    category_id: uuid.UUID
    rrule: str
    dtstart: datetime
    until: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentCreate(BaseModel):
    occurrence_date: datetime
    amount_paid: Decimal
    note: str | None = Field(default=None, max_length=500)

    @field_validator("amount_paid")
    @classmethod
    def _amount_paid(cls, v: Decimal) -> Decimal:
        return validation.validate_amount(v, "amount_paid")


class PaymentRead(BaseModel):
    id: uuid.UUID
    bill_id: uuid.UUID
    occurrence_date: datetime
    amount_paid: Decimal
    note: str | None = None
    transaction_id: uuid.UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PayBillRead(BaseModel):
    bill: RecurringBillRead
    payment: PaymentRead
    transaction_id: uuid.UUID


class BucketTotals(BaseModel):
    count: int = Field(..., ge=0)
    amount: Decimal = Field(..., ge=0)


class RecurringBillsSummaryRead(BaseModel):
    paid: BucketTotals
    upcoming: BucketTotals
    due_soon: BucketTotals


class RecurringBillsBucketRead(BucketTotals):
    list: Page[RecurringBillRead]


class RecurringBillsTotalRead(BaseModel):
    total: Decimal
