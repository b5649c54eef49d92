import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class InboxDocumentPayload(BaseModel):
    inbox_id: uuid.UUID


class ParsedDocument(BaseModel):
    """Fields the document parser extracts from a receipt or invoice."""
    name: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    website: str | None = None
    date: datetime | None = None
    type: str | None = None         # invoice | expense
    description: str | None = None


class InboxDocumentResult(BaseModel):
    success: bool
    inbox_id: uuid.UUID
    message: str
