"""
Recurring transaction analysis jobs.

detect_recurring_transactions(payload)  analyse one bank account
schedule_recurring_detection            05:00 UTC daily, fans out one
                                        detection per active account

A detection run fetches the posted history inside the lookback window,
classifies merchant groups and replaces the account's auto-detected
recurring rows. Runs for the same account are serialized by a Redis lock.
"""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgerjobs.core.config import settings
from ledgerjobs.core.database import SessionLocal
from ledgerjobs.core.errors import FatalPreconditionError, LedgerJobError, TaskExecutionError
from ledgerjobs.core.redis import account_lock
from ledgerjobs.core.retry import RetryPolicy, decide_retry
from ledgerjobs.core.tracing import Trace
from ledgerjobs.models.account import BankAccount
from ledgerjobs.schemas.payload import parse_payload
from ledgerjobs.schemas.recurring import DetectRecurringPayload, DetectRecurringResult
from ledgerjobs.services.pattern_store import fetch_posted_transactions, sync_detected_patterns
from ledgerjobs.services.recurring_detector import detect_patterns
from ledgerjobs.worker import celery_app

logger = logging.getLogger(__name__)

RECURRING_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    min_delay=1,
    max_delay=settings.recurring_retry_max_delay,
    randomize=True,
)


def _load_account(db: Session, payload: DetectRecurringPayload) -> BankAccount:
    account = db.get(BankAccount, payload.bank_account_id)
    if account is None:
        raise FatalPreconditionError(f"Bank account {payload.bank_account_id} not found")
    if account.user_id != payload.user_id:
        raise FatalPreconditionError(
            f"Bank account {payload.bank_account_id} does not belong to user {payload.user_id}"
        )
    return account


def analyze_recurring_transactions(
    db: Session,
    payload: DetectRecurringPayload,
    trace: Trace,
    now: datetime | None = None,
) -> DetectRecurringResult:
    """Fetch → detect → replace detected patterns for one account."""
    account_id = payload.bank_account_id

    with trace.span("analyze-recurring-transactions", lookbackDays=payload.lookback_days):
        try:
            account = _load_account(db, payload)

            with trace.span("fetch-transaction-history") as fetch_span:
                transactions = fetch_posted_transactions(db, account_id, payload.lookback_days, now=now)
                fetch_span.set_attribute("transactionCount", len(transactions))
            logger.info("Found %d transactions for analysis (account %s)", len(transactions), account_id)

            with trace.span("identify-patterns") as pattern_span:
                patterns = detect_patterns(transactions)
                pattern_span.set_attribute("identifiedPatternsCount", len(patterns))
            logger.info("Identified %d recurring transaction patterns (account %s)", len(patterns), account_id)

            with trace.span("store-recurring-patterns", patternCount=len(patterns)):
                stored = sync_detected_patterns(db, account_id, patterns, currency=account.currency_code)
        except LedgerJobError:
            raise
        except Exception as exc:
            raise TaskExecutionError("analyze recurring transactions", str(account_id), exc) from exc

    return DetectRecurringResult(
        status="success",
        patterns_identified=stored,
        message=f"Successfully identified {stored} recurring transaction patterns",
    )


# ─── Celery tasks ─────────────────────────────────────────────────────────────

@celery_app.task(
    bind=True,
    name="ledgerjobs.services.recurring.detect_recurring_transactions",
    max_retries=RECURRING_RETRY_POLICY.max_retries,
    time_limit=settings.recurring_max_duration,
)
def detect_recurring_transactions(self, payload: dict) -> dict:
    """Celery task: identify recurring transactions for one bank account."""
    data = parse_payload(DetectRecurringPayload, payload, self.name)
    account_id = str(data.bank_account_id)
    trace = Trace(
        "recurring-transactions", log=logger,
        userId=str(data.user_id), bankAccountId=account_id,
    )
    logger.info(
        "Starting recurring transaction analysis for account %s (lookback %d days)",
        account_id, data.lookback_days,
    )

    try:
        with account_lock(account_id), SessionLocal() as db:
            result = analyze_recurring_transactions(db, data, trace)
    except Exception as exc:
        decision = decide_retry(
            exc, self.request.retries, RECURRING_RETRY_POLICY,
            lock_retry_delay=settings.account_lock_retry_seconds,
        )
        if decision.retry:
            logger.warning(
                "Recurring analysis for account %s failed (%s), retrying in %ss: %s",
                account_id, decision.reason, decision.countdown, exc,
            )
            raise self.retry(exc=exc, countdown=decision.countdown)
        logger.error(
            "Recurring analysis for account %s failed, not retrying (%s): %s",
            account_id, decision.reason, exc,
        )
        raise

    logger.info(
        "Recurring transaction analysis completed for account %s: %d patterns",
        account_id, result.patterns_identified,
    )
    return result.model_dump()


@celery_app.task(name="ledgerjobs.services.recurring.schedule_recurring_detection")
def schedule_recurring_detection() -> int:
    """Celery beat task: queue a detection run for every active bank account."""
    with SessionLocal() as db:
        accounts = db.execute(
            select(BankAccount.id, BankAccount.user_id).where(BankAccount.is_active.is_(True))
        ).all()

    for account_id, user_id in accounts:
        detect_recurring_transactions.delay({
            "user_id": str(user_id),
            "bank_account_id": str(account_id),
            "lookback_days": settings.recurring_default_lookback_days,
        })

    logger.info("Queued recurring detection for %d accounts", len(accounts))
    return len(accounts)
