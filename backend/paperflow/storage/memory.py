"""
In-memory DocumentStore — reference implementation of the storage port.

Used by the test-suite and single-process deployments. Records are
deep-copied on the way in and out, so callers can never mutate stored
state without going through save().
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from datetime import datetime
from typing import Optional

from paperflow.core.errors import DocumentNotFound, InvalidDocument, StaleDocumentError
from paperflow.models.documents import Document, Page
from paperflow.storage.base import DocumentStore

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):

    def __init__(self) -> None:
        self._documents: dict[int, Document] = {}
        self._pages:     dict[int, list[Page]] = {}
        self._document_ids = itertools.count(1)
        self._page_ids     = itertools.count(1)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def save(self, document: Document) -> Document:
        with self._lock:
            stored_copy = copy.deepcopy(document)
            stored_copy.pages = []

            if stored_copy.id is None:
                stored_copy.id = next(self._document_ids)
                stored_copy.version = 1
            else:
                current = self._documents.get(stored_copy.id)
                if current is None:
                    if stored_copy.version != 0:
                        raise DocumentNotFound(stored_copy.id)
                elif current.version != stored_copy.version:
                    raise StaleDocumentError(
                        stored_copy.id, stored_copy.version, current.version,
                    )
                stored_copy.version += 1

            self._documents[stored_copy.id] = stored_copy
            result = self._attach_pages(stored_copy)

        logger.debug(
            "Store | save doc=%s version=%d status=%s",
            result.id, result.version, result.status.value,
        )
        return result

    async def find_by_id(self, document_id: int) -> Optional[Document]:
        with self._lock:
            stored = self._documents.get(document_id)
            return self._attach_pages(stored) if stored else None

    async def find_by_owner(self, username: str) -> list[Document]:
        with self._lock:
            return [
                self._attach_pages(doc)
                for _, doc in sorted(self._documents.items())
                if doc.owner_username == username
            ]

    async def delete_by_id(self, document_id: int) -> None:
        with self._lock:
            self._documents.pop(document_id, None)
            self._pages.pop(document_id, None)

    async def exists_by_filename_and_owner(self, filename: str, username: str) -> bool:
        with self._lock:
            return any(
                doc.filename == filename and doc.owner_username == username
                for doc in self._documents.values()
            )

    async def find_retryable(
        self, max_attempts: int, limit: int = 50, now: Optional[datetime] = None,
    ) -> list[Document]:
        with self._lock:
            matches = [
                doc for _, doc in sorted(self._documents.items())
                if doc.is_retryable(max_attempts, now)
            ]
            return [self._attach_pages(doc) for doc in matches[:limit]]

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def save_pages(self, document_id: int, pages: list[Page]) -> list[Page]:
        numbers = [p.page_number for p in pages]
        if numbers != list(range(1, len(pages) + 1)):
            raise InvalidDocument(
                f"Pages of document {document_id} must be numbered 1..n in order, got {numbers}"
            )

        with self._lock:
            if document_id not in self._documents:
                raise DocumentNotFound(document_id)
            stored = []
            for page in pages:
                page = copy.deepcopy(page)
                page.document_id = document_id
                if page.id is None:
                    page.id = next(self._page_ids)
                stored.append(page)
            self._pages[document_id] = stored
            return copy.deepcopy(stored)

    async def find_pages(self, document_id: int) -> list[Page]:
        with self._lock:
            return copy.deepcopy(self._pages.get(document_id, []))

    # ------------------------------------------------------------------
    # Helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _attach_pages(self, document: Document) -> Document:
        result = copy.deepcopy(document)
        result.pages = copy.deepcopy(self._pages.get(document.id, []))
        return result
