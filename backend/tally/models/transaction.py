import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from tally.models.base import Base, TimestampMixin, generate_uuid


class TransactionType(str, enum.Enum):
    expense = "expense"
    income = "income"


class Transaction(TimestampMixin, Base):
    """Ledger entry. Category name and color are snapshotted at write time."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=generate_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, native_enum=False), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )  # Always positive; type indicates direction
    signed_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=2), nullable=False
    )
    recipient_or_payer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    category_name: Mapped[str] = mapped_column(String(100), nullable=False)
    category_color_tag: Mapped[str] = mapped_column(String(7), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)
