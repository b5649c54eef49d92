"""
Database side of recurring detection.

Fetches the posted transaction window for an account and replaces the
account's auto-detected recurring rows with a freshly computed set.
Uses synchronous SQLAlchemy since it runs inside Celery tasks.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledgerjobs.core.errors import PatternStoreError, TransientStorageError
from ledgerjobs.models.account import Transaction
from ledgerjobs.models.recurring import SOURCE_DETECTED, RecurringTransaction
from ledgerjobs.services.recurring_detector import PatternCandidate, TransactionRecord

logger = logging.getLogger(__name__)

DETECTED_CONFIDENCE = 0.7   # medium confidence for auto-detected patterns
DETECTED_TRANSACTION_TYPE = "subscription"


def _is_disconnect(exc: SQLAlchemyError) -> bool:
    return isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    )


# ─── Transaction Fetcher ─────────────────────────────────────────────────────

def fetch_posted_transactions(
    db: Session,
    account_id: uuid.UUID,
    lookback_days: int,
    now: datetime | None = None,
) -> list[TransactionRecord]:
    """Posted transactions dated on/after now - lookback_days, oldest first."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=lookback_days)
    try:
        rows = db.execute(
            select(Transaction)
            .where(
                Transaction.bank_account_id == account_id,
                Transaction.date >= cutoff,
                Transaction.status == "posted",
            )
            .order_by(Transaction.date)
        ).scalars().all()
    except SQLAlchemyError as exc:
        if _is_disconnect(exc):
            raise TransientStorageError(f"Lost database connection while fetching transactions: {exc}") from exc
        raise

    return [
        TransactionRecord(
            id=t.id,
            account_id=t.bank_account_id,
            date=t.date,
            counterparty_name=t.name,
            amount=t.amount,
            status=t.status,
        )
        for t in rows
    ]


# ─── Pattern Store Synchronizer ──────────────────────────────────────────────

def to_recurring_rows(
    account_id: uuid.UUID,
    candidates: list[PatternCandidate],
    currency: str = "USD",
) -> list[RecurringTransaction]:
    return [
        RecurringTransaction(
            bank_account_id=account_id,
            title=c.merchant_name,
            description=f"Auto-detected recurring payment to {c.merchant_name}",
            merchant_name=c.merchant_name,
            amount=c.average_amount,
            currency=currency,
            frequency=c.stored_frequency.value,
            start_date=c.last_occurrence_date,
            next_scheduled_date=c.next_projected_date,
            execution_count=c.occurrence_count,
            confidence_score=DETECTED_CONFIDENCE,
            source=SOURCE_DETECTED,
            status="active",
            is_automated=False,
            transaction_type=DETECTED_TRANSACTION_TYPE,
        )
        for c in candidates
    ]


def sync_detected_patterns(
    db: Session,
    account_id: uuid.UUID,
    candidates: list[PatternCandidate],
    currency: str = "USD",
) -> int:
    """
    Replace every ``source = "detected"`` row for the account with ``candidates``.

    Delete and insert share one transaction; on failure both are rolled back
    and PatternStoreError is raised so the run is retried. Rows entered by
    users are never selected by the delete.
    """
    try:
        result = db.execute(
            delete(RecurringTransaction).where(
                RecurringTransaction.bank_account_id == account_id,
                RecurringTransaction.source == SOURCE_DETECTED,
            )
        )
        rows = to_recurring_rows(account_id, candidates, currency)
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to store recurring patterns for account %s: %s", account_id, exc)
        if _is_disconnect(exc):
            raise TransientStorageError(f"Lost database connection while storing patterns: {exc}") from exc
        raise PatternStoreError(f"Could not store recurring patterns for account {account_id}") from exc

    logger.info(
        "Replaced %d detected patterns with %d for account %s",
        result.rowcount, len(rows), account_id,
    )
    return len(rows)

