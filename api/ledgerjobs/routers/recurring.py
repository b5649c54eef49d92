import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerjobs.core.database import get_db
from ledgerjobs.models.recurring import RecurringTransaction
from ledgerjobs.schemas.recurring import (
    DetectRecurringPayload,
    EnqueuedTask,
    RecurringTransactionResponse,
)
from ledgerjobs.services.recurring import detect_recurring_transactions

router = APIRouter(prefix="/recurring", tags=["recurring"])


@router.post("/detect", response_model=EnqueuedTask, status_code=202)
async def enqueue_recurring_detection(payload: DetectRecurringPayload):
    """
    Queue a detection run for one bank account. Detected patterns replace the
    account's previous auto-detected set once the task finishes.
    """
    task = detect_recurring_transactions.delay(payload.model_dump(mode="json"))
    return EnqueuedTask(task_id=task.id)


@router.get("/{bank_account_id}", response_model=list[RecurringTransactionResponse])
async def list_recurring(
    bank_account_id: uuid.UUID,
    source: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    """List recurring transactions for an account, optionally only one source."""
    query = select(RecurringTransaction).where(
        RecurringTransaction.bank_account_id == bank_account_id
    )
    if source:
        query = query.where(RecurringTransaction.source == source)
    result = await db.execute(query.order_by(RecurringTransaction.title))
    return result.scalars().all()
