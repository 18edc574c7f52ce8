"""
Pipeline Events

Each event triggers exactly one pipeline stage:

  OcrEvent         → PipelineCoordinator.handle_ocr
  EnrichmentEvent  → PipelineCoordinator.handle_enrichment
  IndexEvent       → PipelineCoordinator.handle_index

Events are immutable and validated at construction: a missing identifier
raises InvalidEvent before anything is published. to_message() /
from_message() give a JSON-safe dict for the Celery transport (the broker
only accepts JSON, so PDF bytes travel base64-encoded).
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from paperflow.core.errors import InvalidEvent
from paperflow.schemas.documents import IndexableDocument


@dataclass(frozen=True)
class OcrEvent:
    document_id: int
    pdf_bytes:   bytes = field(default=b"", repr=False)

    def __post_init__(self) -> None:
        if self.document_id is None:
            raise InvalidEvent("OcrEvent requires a document_id")
        # Own a private copy; the uploader's buffer may be reused
        object.__setattr__(
            self, "pdf_bytes", bytes(self.pdf_bytes) if self.pdf_bytes is not None else b""
        )

    def to_message(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "pdf_bytes":   base64.b64encode(self.pdf_bytes).decode("ascii"),
        }

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "OcrEvent":
        encoded = message.get("pdf_bytes") or ""
        return cls(
            document_id=message.get("document_id"),
            pdf_bytes=base64.b64decode(encoded),
        )


@dataclass(frozen=True)
class EnrichmentEvent:
    document_id: int
    page_texts:  tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.document_id is None:
            raise InvalidEvent("EnrichmentEvent requires a document_id")
        object.__setattr__(self, "page_texts", tuple(self.page_texts or ()))

    def to_message(self) -> dict[str, Any]:
        return {"document_id": self.document_id, "page_texts": list(self.page_texts)}

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "EnrichmentEvent":
        return cls(
            document_id=message.get("document_id"),
            page_texts=tuple(message.get("page_texts") or ()),
        )


@dataclass(frozen=True)
class IndexEvent:
    payload: IndexableDocument

    def __post_init__(self) -> None:
        if self.payload is None:
            raise InvalidEvent("IndexEvent requires a payload")
        if self.payload.id is None:
            raise InvalidEvent("IndexEvent payload requires an id")

    @property
    def document_id(self) -> int:
        return self.payload.id

    def to_message(self) -> dict[str, Any]:
        return {"payload": self.payload.model_dump(mode="json")}

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "IndexEvent":
        raw: Optional[dict[str, Any]] = message.get("payload")
        if raw is None:
            raise InvalidEvent("IndexEvent message has no payload")
        return cls(payload=IndexableDocument.model_validate(raw))


PipelineEvent = Union[OcrEvent, EnrichmentEvent, IndexEvent]
