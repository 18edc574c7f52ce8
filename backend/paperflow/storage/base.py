"""
Document Store — Abstract Port

The pipeline's only view of persistence. Concrete stores (a relational
database, an encrypted blob store, the in-memory reference store) live
behind this interface; encryption at rest, if any, is applied beneath it
and is invisible to the pipeline, which always reads and writes plaintext.

Concurrency contract (enforced by ALL implementations):
  - save() is compare-and-swap on Document.version: the write succeeds only
    if the stored version still equals the caller's copy, then bumps it.
    A lost race raises StaleDocumentError instead of silently overwriting
    another stage's fields.
  - save() of a new document (id is None) assigns the id and version 1.
  - Pages are persisted separately with save_pages(); find_by_id() returns
    the document with its pages attached, ordered by page_number.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from paperflow.models.documents import Document, Page


class DocumentStore(ABC):

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @abstractmethod
    async def save(self, document: Document) -> Document:
        """Insert or compare-and-swap update. Returns the stored copy (new version)."""

    @abstractmethod
    async def find_by_id(self, document_id: int) -> Optional[Document]:
        """Document with pages attached, or None."""

    @abstractmethod
    async def find_by_owner(self, username: str) -> list[Document]:
        """All documents owned by username, ordered by id."""

    @abstractmethod
    async def delete_by_id(self, document_id: int) -> None:
        """Delete the document and its pages. Unknown ids are a no-op."""

    @abstractmethod
    async def exists_by_filename_and_owner(self, filename: str, username: str) -> bool:
        ...

    @abstractmethod
    async def find_retryable(
        self, max_attempts: int, limit: int = 50, now: Optional[datetime] = None,
    ) -> list[Document]:
        """Up to ``limit`` documents for which is_retryable(max_attempts, now) holds, oldest id first."""

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_pages(self, document_id: int, pages: list[Page]) -> list[Page]:
        """Replace the document's pages. Numbers must run 1..n in order."""

    @abstractmethod
    async def find_pages(self, document_id: int) -> list[Page]:
        """Pages ordered by page_number (empty if none)."""
