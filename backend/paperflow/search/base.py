"""
Search Index — Abstract Port

Every search backend (the in-process BM25 index, or an Elasticsearch /
OpenSearch adapter) implements this interface. The pipeline only speaks
this protocol, so backends are swappable without touching the coordinator.

Contract (enforced by ALL implementations):
  - index_document() is an upsert keyed by IndexableDocument.id; re-indexing
    an id fully replaces the previous projection.
  - search() only ever returns documents owned by request.username.
  - Relevance ranking is the backend's job (BM25-class); callers do not re-rank.
  - delete_document() of an unknown id is a no-op.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from paperflow.schemas.documents import IndexableDocument, SearchRequest, SearchResult


class SearchIndex(ABC):

    @abstractmethod
    async def index_document(self, document: IndexableDocument) -> None:
        """Insert or fully replace the projection for document.id."""

    @abstractmethod
    async def search(self, request: SearchRequest) -> SearchResult:
        """Ranked, paginated, username-scoped search."""

    @abstractmethod
    async def delete_document(self, document_id: int) -> None:
        """Remove the projection for document_id, if present."""
