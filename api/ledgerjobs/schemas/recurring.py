import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from ledgerjobs.core.config import settings


class DetectRecurringPayload(BaseModel):
    """Input of the recurring-detection task."""
    user_id: uuid.UUID
    bank_account_id: uuid.UUID
    lookback_days: int = Field(default=settings.recurring_default_lookback_days, ge=30, le=365)


class DetectRecurringResult(BaseModel):
    status: str                     # "success"
    patterns_identified: int
    message: str


class EnqueuedTask(BaseModel):
    task_id: str
    status: str = "queued"


class RecurringTransactionResponse(BaseModel):
    id: uuid.UUID
    bank_account_id: uuid.UUID
    title: str
    description: str | None
    merchant_name: str | None
    amount: Decimal
    currency: str
    frequency: str
    start_date: datetime
    next_scheduled_date: datetime | None
    execution_count: int
    confidence_score: float | None
    source: str
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}
