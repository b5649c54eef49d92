"""
Transaction export with attachments.

process_export(payload)  on-demand; payload {ids: [uuid], locale: "en-US"}

Steps:
  1. fetch the transactions with category, bank account and attachments,
     ``export_fetch_page_size`` ids per query
  2. download attachments in batches of ``export_attachment_batch_size``
     transactions, concurrently inside each batch; a failed or oversized
     download is kept as blob=None with an error and never fails the export
  3. format one row per transaction, oldest first, with locale-aware amounts

Returns {rows, attachments}; blobs are base64 in the serialized result.
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from decimal import Decimal

import httpx
from babel.numbers import format_currency
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from ledgerjobs.core.config import settings
from ledgerjobs.core.database import SessionLocal
from ledgerjobs.core.errors import LedgerJobError, TaskExecutionError, TransientStorageError
from ledgerjobs.core.retry import RetryPolicy, decide_retry
from ledgerjobs.core.tracing import Trace
from ledgerjobs.models.account import Transaction, TransactionAttachment
from ledgerjobs.schemas.export import AttachmentExportData, ExportPayload, ExportResult, normalize_locale
from ledgerjobs.schemas.payload import parse_payload
from ledgerjobs.services.batching import chunked, partition, process_in_batches
from ledgerjobs.services.storage import ObjectStorage
from ledgerjobs.worker import celery_app

logger = logging.getLogger(__name__)

EXPORT_RETRY_POLICY = RetryPolicy(
    max_attempts=3,
    min_delay=1,
    max_delay=settings.export_retry_max_delay,
    randomize=True,
)

HAS_ATTACHMENTS = "✔️"
NO_ATTACHMENTS = "❌"


# ─── Step 1: fetch ───────────────────────────────────────────────────────────

def fetch_transactions_with_relations(
    db: Session, ids: list[uuid.UUID], trace: Trace, page_size: int | None = None
) -> list[Transaction]:
    """Load transactions with category, bank account and attachments, ``page_size`` ids per query."""
    size = page_size or settings.export_fetch_page_size
    rows: list[Transaction] = []
    with trace.span("fetch-transactions", expectedCount=len(ids), pageSize=size) as span:
        pages = 0
        for page in chunked(ids, size):
            pages += 1
            try:
                rows.extend(db.execute(
                    select(Transaction)
                    .where(Transaction.id.in_(page))
                    .options(
                        selectinload(Transaction.category),
                        selectinload(Transaction.bank_account),
                        selectinload(Transaction.attachments),
                    )
                ).scalars().all())
            except OperationalError as exc:
                raise TransientStorageError(f"Lost database connection while fetching export data: {exc}") from exc
            logger.debug("Fetched page %d: %d transactions so far", pages, len(rows))
        span.set_attribute("pageCount", pages)
        span.set_attribute("fetchedCount", len(rows))

    logger.info("Fetched %d of %d transactions for export", len(rows), len(ids))
    return rows


# ─── Step 2: attachments ─────────────────────────────────────────────────────

def attachment_filename(name: str | None, row: int, index: int) -> str:
    """'receipt.pdf' → 'receipt-3.pdf' (first file of row 3), 'receipt-3_1.pdf' (second)."""
    stem, dot, ext = (name or "").rpartition(".")
    if not dot:
        stem, ext = ext, ""
    stem = stem or "file"
    ext = ext or "bin"
    suffix = f"-{row}_{index}" if index > 0 else f"-{row}"
    return f"{stem}{suffix}.{ext}"


def _mb(size: int) -> int:
    return round(size / 1024 / 1024)


async def process_attachment(
    storage: ObjectStorage,
    transaction: Transaction,
    attachment: TransactionAttachment,
    row: int,
    index: int,
) -> AttachmentExportData:
    blob: bytes | None = None
    error: str | None = None
    max_size = settings.max_attachment_size_bytes

    if not attachment.path:
        error = "Empty file path"
    elif (attachment.size or 0) > max_size:
        error = f"File size ({_mb(attachment.size)}MB) exceeds the maximum allowed size ({_mb(max_size)}MB)"
        logger.warning(
            "Attachment %s of transaction %s exceeds the size limit (%d > %d bytes), skipped",
            attachment.id, transaction.id, attachment.size, max_size,
        )
    else:
        if (attachment.size or 0) > settings.attachment_size_warning_threshold:
            logger.warning(
                "Large attachment %s (%d bytes) for transaction %s",
                attachment.id, attachment.size, transaction.id,
            )
        try:
            content = await storage.fetch(attachment.path)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.error(
                "Failed to retrieve attachment %s for transaction %s: %s",
                attachment.id, transaction.id, exc,
            )
        else:
            if len(content) > max_size:
                error = f"Downloaded file size ({_mb(len(content))}MB) exceeds limit"
                logger.warning("Downloaded attachment %s is %d bytes, dropped", attachment.id, len(content))
            else:
                blob = content
                logger.debug(
                    "Retrieved attachment %s (%d bytes) for transaction %s",
                    attachment.id, len(blob), transaction.id,
                )

    return AttachmentExportData(
        id=str(transaction.id),
        name=attachment_filename(attachment.name, row, index),
        blob=blob,
        original_name=attachment.name,
        type=attachment.type,
        error=error,
    )


async def process_attachments(
    storage: ObjectStorage,
    transactions: list[Transaction],
    trace: Trace,
    batch_size: int | None = None,
) -> list[AttachmentExportData]:
    """Download every attachment; rows are numbered by position in ``transactions``."""
    size = batch_size or settings.export_attachment_batch_size

    async def handle(item: tuple[int, Transaction]) -> list[AttachmentExportData]:
        row, txn = item
        return list(await asyncio.gather(*(
            process_attachment(storage, txn, attachment, row, i)
            for i, attachment in enumerate(txn.attachments)
        )))

    with trace.span("process-attachments", batchSize=size) as span:
        results, batches = await process_in_batches(list(enumerate(transactions, start=1)), size, handle)
        values, errors = partition(results)
        attachments = [a for group in values for a in group]
        span.set_attribute("batchCount", batches)
        span.set_attribute("attachmentCount", len(attachments))
        span.set_attribute("failedCount", sum(1 for a in attachments if a.blob is None))
        if errors:
            raise TaskExecutionError("process attachments", None, errors[0]) from errors[0]

    logger.info("Processed %d attachments in %d batches", len(attachments), batches)
    return attachments


# ─── Step 3: rows ────────────────────────────────────────────────────────────

def format_money(amount: Decimal | None, currency: str | None, locale: str) -> str:
    if amount is None or not currency:
        return ""
    return format_currency(amount, currency, locale=normalize_locale(locale))


def _number(value: Decimal | None) -> float | str:
    return float(value) if value is not None else ""


def format_rows(
    transactions: list[Transaction],
    attachments: list[AttachmentExportData],
    locale: str,
) -> list[list]:
    names_by_txn: dict[str, list[str]] = defaultdict(list)
    for a in attachments:
        if a.original_name:
            names_by_txn[a.id].append(a.original_name)

    rows = []
    for txn in sorted(transactions, key=lambda t: t.date):
        category = txn.category
        rows.append([
            str(txn.id),
            txn.date.date().isoformat(),
            txn.name,
            txn.description,
            _number(txn.amount),
            txn.currency,
            format_money(txn.amount, txn.currency, locale),
            format_money(txn.vat_amount, txn.currency or settings.default_currency, locale) if txn.vat_amount else "",
            category.name if category else "",
            (category.description or "") if category else "",
            HAS_ATTACHMENTS if txn.attachments else NO_ATTACHMENTS,
            ", ".join(names_by_txn.get(str(txn.id), [])),
            _number(txn.balance),
            txn.bank_account.name if txn.bank_account else "",
            txn.notes or "",
        ])
    return rows


# ─── Pipeline ────────────────────────────────────────────────────────────────

async def build_export(
    db: Session,
    storage: ObjectStorage,
    payload: ExportPayload,
    trace: Trace,
    batch_size: int | None = None,
) -> ExportResult:
    if not payload.ids:
        logger.info("Export requested with no transactions")
        return ExportResult(rows=[], attachments=[])

    with trace.span("process-export", transactionCount=len(payload.ids), locale=payload.locale):
        try:
            transactions = sorted(
                fetch_transactions_with_relations(db, payload.ids, trace), key=lambda t: t.date
            )
            attachments = await process_attachments(storage, transactions, trace, batch_size)
            with trace.span("format-rows") as span:
                rows = format_rows(transactions, attachments, payload.locale)
                span.set_attribute("rowCount", len(rows))
        except LedgerJobError:
            raise
        except Exception as exc:
            raise TaskExecutionError("process transaction export", None, exc) from exc

    logger.info(
        "Export completed: %d transactions, %d attachments, %d rows",
        len(transactions), len(attachments), len(rows),
    )
    return ExportResult(rows=rows, attachments=attachments)


async def _run_export(db: Session, payload: ExportPayload, trace: Trace) -> ExportResult:
    async with httpx.AsyncClient(follow_redirects=True) as client:
        return await build_export(db, ObjectStorage(client), payload, trace)


@celery_app.task(
    bind=True,
    name="ledgerjobs.services.export.process_export",
    max_retries=EXPORT_RETRY_POLICY.max_retries,
    time_limit=settings.export_max_duration,
)
def process_export(self, payload: dict) -> dict:
    """Celery task: build export rows and attachment blobs for the given transactions."""
    data = parse_payload(ExportPayload, payload, self.name)
    trace = Trace("process-export", log=logger, transactionCount=len(data.ids))
    logger.info("Starting transaction export: %d transactions (%s)", len(data.ids), data.locale)

    try:
        with SessionLocal() as db:
            result = asyncio.run(_run_export(db, data, trace))
    except Exception as exc:
        decision = decide_retry(exc, self.request.retries, EXPORT_RETRY_POLICY)
        if decision.retry:
            logger.warning(
                "Export failed (%s), retrying in %ss: %s", decision.reason, decision.countdown, exc
            )
            raise self.retry(exc=exc, countdown=decision.countdown)
        logger.error("Export failed, not retrying (%s): %s", decision.reason, exc)
        raise

    return result.model_dump(mode="json")
