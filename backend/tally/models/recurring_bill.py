import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tally.models.base import Base, TimestampMixin, generate_uuid


class RecurringBill(TimestampMixin, Base):
    """A bill repeating on an RFC 5545 RRULE anchored at ``dtstart``."""

    __tablename__ = "recurring_bills"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    recipient_or_payer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)
    # Budget id; not a foreign key so budgets can go away independently
    category_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    rrule: Mapped[str] = mapped_column(String(500), nullable=False)
    dtstart: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RecurringBillPayment(TimestampMixin, Base):
    """A payment satisfying one occurrence of a bill.

    Payments outlive their bill: ``bill_id`` is a plain column so deleting a
    bill leaves its payment history in place.
    """

    __tablename__ = "recurring_bill_payments"
    __table_args__ = (
        UniqueConstraint("bill_id", "occurrence_date", name="uq_bill_payment_occurrence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    bill_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    occurrence_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("transactions.id"), nullable=True
    )
