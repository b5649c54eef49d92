import base64
import uuid
from typing import Any

from babel import Locale, UnknownLocaleError
from pydantic import BaseModel, field_serializer, field_validator


def normalize_locale(locale: str) -> str:
    """'en-US' → 'en_US' (Babel uses underscores)."""
    return locale.replace("-", "_")


class ExportPayload(BaseModel):
    """Input of the export task."""
    ids: list[uuid.UUID]
    locale: str

    @field_validator("locale")
    @classmethod
    def _known_locale(cls, v: str) -> str:
        try:
            Locale.parse(normalize_locale(v))
        except (ValueError, UnknownLocaleError) as exc:
            raise ValueError(f"unknown locale {v!r}") from exc
        return v


class AttachmentExportData(BaseModel):
    id: str                         # transaction id the attachment belongs to
    name: str                       # export filename, e.g. "receipt-3.pdf"
    blob: bytes | None              # None when the file could not be fetched
    original_name: str | None
    type: str
    error: str | None = None        # why blob is None

    @field_serializer("blob")
    def _encode_blob(self, blob: bytes | None) -> str | None:
        return base64.b64encode(blob).decode() if blob is not None else None


class ExportResult(BaseModel):
    rows: list[list[Any]]
    attachments: list[AttachmentExportData]


class ExportStatus(BaseModel):
    task_id: str
    state: str                      # PENDING | STARTED | RETRY | SUCCESS | FAILURE
    result: dict | None = None
    error: str | None = None
