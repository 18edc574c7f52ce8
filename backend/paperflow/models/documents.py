"""
Domain Records — Documents & Pages

Plain dataclasses handed across the storage port. The store owns
persistence (and any at-rest encryption); the pipeline only ever sees
plaintext bytes and text.

Status machine (one document):

  UPLOADED → OCR_IN_PROGRESS → OCR_COMPLETED → ENRICHING_IN_PROGRESS
           ↘ OCR_FAILED (terminal)            ↘ ENRICHED | ENRICHMENT_FAILED
  → INDEXING_IN_PROGRESS → COMPLETED
                         ↘ INDEXING_FAILED

INDEXING_FAILED documents, and documents whose enrichment degraded to the
fallback, are re-driven by the recovery task once next_retry_at has passed,
until recovery_attempts reaches its limit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, Optional


class DocumentStatus(str, Enum):
    UPLOADED              = "UPLOADED"
    OCR_IN_PROGRESS       = "OCR_IN_PROGRESS"
    OCR_COMPLETED         = "OCR_COMPLETED"
    OCR_FAILED            = "OCR_FAILED"
    ENRICHING_IN_PROGRESS = "ENRICHING_IN_PROGRESS"
    ENRICHED              = "ENRICHED"
    ENRICHMENT_FAILED     = "ENRICHMENT_FAILED"
    INDEXING_IN_PROGRESS  = "INDEXING_IN_PROGRESS"
    INDEXING_FAILED       = "INDEXING_FAILED"
    COMPLETED             = "COMPLETED"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.OCR_FAILED, DocumentStatus.COMPLETED)


# Stable states in which a document with degraded metadata can be re-enriched
_REENRICHABLE_STATUSES = frozenset({
    DocumentStatus.ENRICHED,
    DocumentStatus.ENRICHMENT_FAILED,
    DocumentStatus.COMPLETED,
})

MAX_ERROR_LENGTH = 1000


def sanitize_error(reason: object) -> str:
    text = str(reason) if reason is not None else ""
    if not text.strip():
        return "Unknown error"
    return text[:MAX_ERROR_LENGTH]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Page:
    """
    page_number : 1-based, contiguous within a document
    document_id : back-reference only; the document owns its pages
    """
    page_number: int
    page_text:   str
    document_id: Optional[int] = None
    id:          Optional[int] = None


@dataclass
class Document:
    filename:       str
    owner_username: str
    pdf_content:    bytes = b""
    content_type:   str = "application/pdf"
    size:           int = 0

    id:     Optional[int] = None
    status: DocumentStatus = DocumentStatus.UPLOADED

    # Enrichment output
    title:             Optional[str] = None
    tags:              list[str] = field(default_factory=list)
    date_on_document:  Optional[date] = None
    failed_enrichment: bool = False

    pages:       list[Page] = field(default_factory=list)
    uploaded_at: datetime = field(default_factory=_utcnow)

    # Bookkeeping
    version:           int = 0   # bumped by every successful store.save()
    recovery_attempts: int = 0
    next_retry_at:     Optional[datetime] = None   # None = due now
    last_error:        Optional[str] = None

    def __post_init__(self) -> None:
        if not self.size:
            self.size = len(self.pdf_content)

    @property
    def page_texts(self) -> list[str]:
        return [p.page_text for p in sorted(self.pages, key=lambda p: p.page_number)]

    @property
    def needs_reindex(self) -> bool:
        return self.status is DocumentStatus.INDEXING_FAILED

    @property
    def needs_reenrichment(self) -> bool:
        return self.failed_enrichment and self.status in _REENRICHABLE_STATUSES

    def is_retryable(self, max_attempts: int, now: Optional[datetime] = None) -> bool:
        """Eligible for the recovery task: degraded, stable, due, and under the attempt cap."""
        if self.recovery_attempts >= max_attempts:
            return False
        if self.next_retry_at is not None and self.next_retry_at > (now or _utcnow()):
            return False
        return self.needs_reindex or self.needs_reenrichment


def build_pages(document_id: Optional[int], texts: Iterable[str]) -> list[Page]:
    """Number page texts contiguously from 1 in the order given."""
    return [
        Page(page_number=number, page_text=text or "", document_id=document_id)
        for number, text in enumerate(texts, start=1)
    ]
