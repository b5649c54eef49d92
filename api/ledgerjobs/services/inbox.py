"""
Inbox document enrichment.

process_inbox_document(payload)  on-demand after upload; payload {inbox_id}

Downloads the uploaded file, sends it to the document parser and writes the
extracted amount / currency / date back to the inbox item. The item always
ends in "pending" status, even when parsing fails, so it stays visible to
the user for manual matching.
"""
import asyncio
import base64
import logging
import uuid

import httpx
from sqlalchemy.orm import Session

from ledgerjobs.core.config import settings
from ledgerjobs.core.database import SessionLocal
from ledgerjobs.core.errors import DocumentProcessingError, FatalPreconditionError, StorageError
from ledgerjobs.core.retry import RetryPolicy, decide_retry
from ledgerjobs.core.tracing import Trace
from ledgerjobs.models.inbox import INBOX_PENDING, InboxItem
from ledgerjobs.schemas.inbox import InboxDocumentPayload, InboxDocumentResult, ParsedDocument
from ledgerjobs.schemas.payload import parse_payload
from ledgerjobs.services.storage import ObjectStorage
from ledgerjobs.worker import celery_app

logger = logging.getLogger(__name__)

DOCUMENT_RETRY_POLICY = RetryPolicy()


class DocumentParser:
    """Client for the document-parsing service."""

    def __init__(self, client: httpx.AsyncClient, base_url: str | None = None):
        self.client = client
        self.base_url = (base_url or settings.document_parser_url).rstrip("/")

    async def parse(self, content: bytes, content_type: str) -> ParsedDocument | None:
        resp = await self.client.post(
            f"{self.base_url}/v1/documents/parse",
            json={"content": base64.b64encode(content).decode(), "contentType": content_type},
        )
        if resp.status_code != 200:
            raise DocumentProcessingError(f"Document parser returned {resp.status_code}")
        body = resp.json()
        return ParsedDocument.model_validate(body) if body else None


def _mark_pending(db: Session, item: InboxItem, error: str | None = None) -> None:
    item.status = INBOX_PENDING
    if error is not None:
        item.meta = {**(item.meta or {}), "error": error}
    db.commit()


def _apply(item: InboxItem, doc: ParsedDocument) -> None:
    item.amount = doc.amount
    item.currency = doc.currency
    item.display_name = doc.name or item.display_name
    item.website = doc.website
    item.date = doc.date
    item.type = doc.type
    item.description = doc.description


async def enrich_inbox_document(
    db: Session,
    storage: ObjectStorage,
    parser: DocumentParser,
    inbox_id: uuid.UUID,
    trace: Trace,
    processing_timeout: float | None = None,
) -> InboxDocumentResult:
    timeout = processing_timeout or settings.document_processing_timeout

    item = db.get(InboxItem, inbox_id)
    if item is None:
        raise FatalPreconditionError(f"Inbox item {inbox_id} not found")
    if not isinstance(item.file_path, list) or not item.file_path:
        raise FatalPreconditionError(f"Inbox item {inbox_id} has invalid or missing file path")
    if not item.content_type:
        logger.warning("Missing content type for inbox item %s", inbox_id)

    file_path = "/".join(item.file_path)

    # ── Retrieve file ─────────────────────────────────────────────────────────
    try:
        with trace.span("retrieve-file", filePath=file_path) as span:
            content = await storage.fetch(item.file_path)
            span.set_attribute("size", len(content))
    except Exception as exc:
        _mark_pending(db, item, error=str(exc))
        raise StorageError(f"Failed to retrieve file for inbox item {inbox_id}: {exc}") from exc

    if not content:
        _mark_pending(db, item, error="No file data")
        raise FatalPreconditionError(f"No file data for inbox item {inbox_id}")

    # ── Parse document ────────────────────────────────────────────────────────
    try:
        with trace.span("parse-document", contentType=item.content_type):
            if not item.content_type:
                raise FatalPreconditionError("Missing content type for document processing")
            try:
                doc = await asyncio.wait_for(parser.parse(content, item.content_type), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise DocumentProcessingError(f"Document processing timed out after {timeout:g}s") from exc
            if doc is None:
                raise DocumentProcessingError("Document processing returned no results")
    except Exception as exc:
        logger.warning("Failed to parse document for inbox item %s: %s", inbox_id, exc)
        _mark_pending(db, item)
        return InboxDocumentResult(
            success=False,
            inbox_id=inbox_id,
            message="Document processing failed, but inbox record was updated to pending",
        )

    _apply(item, doc)
    _mark_pending(db, item)
    logger.info("Updated inbox item %s with parsed document %r (%s)", inbox_id, doc.name, doc.type)
    if item.amount:
        logger.info("Inbox item %s has amount %s and can be matched", inbox_id, item.amount)

    return InboxDocumentResult(
        success=True,
        inbox_id=inbox_id,
        message="Document processed and inbox record updated",
    )


async def _run_enrichment(db: Session, inbox_id: uuid.UUID, trace: Trace) -> InboxDocumentResult:
    async with httpx.AsyncClient(follow_redirects=True) as client:
        return await enrich_inbox_document(
            db, ObjectStorage(client), DocumentParser(client), inbox_id, trace
        )


@celery_app.task(
    bind=True,
    name="ledgerjobs.services.inbox.process_inbox_document",
    max_retries=DOCUMENT_RETRY_POLICY.max_retries,
    time_limit=settings.document_max_duration,
)
def process_inbox_document(self, payload: dict) -> dict:
    """Celery task: enrich one inbox item from its uploaded document."""
    data = parse_payload(InboxDocumentPayload, payload, self.name)
    trace = Trace("inbox-document", log=logger, inboxId=str(data.inbox_id))
    logger.info("Starting inbox document processing for %s", data.inbox_id)

    try:
        with SessionLocal() as db:
            result = asyncio.run(_run_enrichment(db, data.inbox_id, trace))
    except Exception as exc:
        decision = decide_retry(exc, self.request.retries, DOCUMENT_RETRY_POLICY)
        if decision.retry:
            logger.warning(
                "Inbox document %s failed (%s), retrying in %ss: %s",
                data.inbox_id, decision.reason, decision.countdown, exc,
            )
            raise self.retry(exc=exc, countdown=decision.countdown)
        logger.error("Critical error in inbox document job %s (%s): %s", data.inbox_id, decision.reason, exc)
        raise

    return result.model_dump(mode="json")
