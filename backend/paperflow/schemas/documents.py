"""
Pipeline Data Contracts — Pydantic Schemas

Covers every structured payload that crosses a pipeline boundary:
  - EnrichmentResult   : parsed LLM output (or the deterministic fallback)
  - IndexableDocument  : projection written to the search index on every IndexEvent
  - SearchRequest / SearchHit / SearchResult : search port query contract

Design decisions:
  - EnrichmentResult tolerates the shapes local models actually produce
    (tags as objects, extra keys) but requires a title; anything without
    one is treated as "no result" and the fallback is used instead.
  - IndexableDocument carries no identity beyond the source document id,
    which doubles as the search engine's document id (idempotent upsert).
"""

from __future__ import annotations

import math
from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from paperflow.models.documents import Document


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

FALLBACK_TITLE     = "Unknown Title"
FALLBACK_DATE_SENT = "01.01.2000"
DATE_SENT_FORMAT   = "%d.%m.%Y"   # dd.MM.yyyy


class EnrichmentResult(BaseModel):
    """
    Metadata suggested by the LLM for one document.

    Never persisted directly — the coordinator copies the fields onto the
    Document record.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title:     str
    date_sent: Optional[str] = None
    tags:      list[str] = Field(default_factory=list)
    flag_failed_enrichment: bool = Field(False, alias="flagFailedEnrichment")

    @field_validator("date_sent", mode="before")
    @classmethod
    def _date_as_string(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("tags", mode="before")
    @classmethod
    def _flatten_tags(cls, v: Any) -> Any:
        """Accept ["a", "b"], [{"name": "a"}, ...] or a bare string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if not isinstance(v, list):
            return v
        names: list[str] = []
        for item in v:
            if isinstance(item, dict):
                item = item.get("name")
            if item is None:
                continue
            name = str(item).strip()
            if name:
                names.append(name)
        return names

    @classmethod
    def fallback(cls) -> "EnrichmentResult":
        """Deterministic low-confidence result used whenever the LLM output is unusable."""
        return cls(
            title=FALLBACK_TITLE,
            date_sent=FALLBACK_DATE_SENT,
            tags=[],
            flag_failed_enrichment=True,
        )


# ---------------------------------------------------------------------------
# Search index projection
# ---------------------------------------------------------------------------

class IndexableDocument(BaseModel):
    """Flat, search-engine-facing view of a Document. Rebuilt on every IndexEvent."""

    id:           int
    file_name:    Optional[str] = None
    content_type: Optional[str] = None
    tags:         list[str] = Field(default_factory=list)
    year:         int = Field(default_factory=lambda: date.today().year)
    full_text:    str = ""
    username:     Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("full_text", mode="before")
    @classmethod
    def _full_text_default(cls, v: Any) -> Any:
        return "" if v is None else v

    @classmethod
    def from_document(cls, doc: Document) -> "IndexableDocument":
        if doc.id is None:
            raise ValueError("Cannot index a document without an id")

        full_text = "\n".join(
            text for text in doc.page_texts if text and text.strip()
        )
        year = doc.date_on_document.year if doc.date_on_document else date.today().year

        return cls(
            id=doc.id,
            file_name=doc.title or doc.filename,
            content_type=doc.content_type,
            tags=list(doc.tags),
            year=year,
            full_text=full_text,
            username=doc.owner_username,
        )


# ---------------------------------------------------------------------------
# Search query contract
# ---------------------------------------------------------------------------

class SearchRequest(BaseModel):
    query:    str = ""
    username: str
    tags:     Optional[list[str]] = None   # match any
    year:     Optional[int] = None
    page:     int = Field(0, ge=0)         # 0-based
    size:     int = Field(10, ge=1, le=100)


class SearchHit(BaseModel):
    document_id:   str
    document_name: Optional[str] = None
    page_number:   int = 0
    snippet:       str = ""


class SearchResult(BaseModel):
    hits:         list[SearchHit] = Field(default_factory=list)
    total_hits:   int = 0
    total_pages:  int = 0
    current_page: int = 0

    @classmethod
    def paginate(
        cls, hits: list[SearchHit], total_hits: int, page: int, size: int
    ) -> "SearchResult":
        return cls(
            hits=hits,
            total_hits=total_hits,
            total_pages=math.ceil(total_hits / size) if size else 0,
            current_page=page,
        )
