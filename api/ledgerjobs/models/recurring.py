import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from ledgerjobs.core.database import Base

SOURCE_DETECTED = "detected"
SOURCE_MANUAL = "manual"


class RecurringTransaction(Base):
    """
    A recurring payment for a bank account.

    Rows with ``source == "detected"`` belong to the detection job and are
    replaced as a set on every run; any other source is user-entered.
    """
    __tablename__ = "recurring_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    bank_account_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("bank_accounts.id"), index=True
    )
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    merchant_name: Mapped[str | None] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    # WEEKLY | BIWEEKLY | MONTHLY | ANNUALLY | IRREGULAR | UNKNOWN
    frequency: Mapped[str] = mapped_column(String(20))
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    next_scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    execution_count: Mapped[int] = mapped_column(Integer, default=0)
    confidence_score: Mapped[float | None] = mapped_column(Float)
    source: Mapped[str] = mapped_column(String(20), default=SOURCE_MANUAL, index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    is_automated: Mapped[bool] = mapped_column(Boolean, default=False)
    transaction_type: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
