"""
BM25 Search Index — in-process implementation of the SearchIndex port.

Good for a single worker, tests and local development; production
deployments point the same port at Elasticsearch/OpenSearch.

Matching vs. ranking:
  A document MATCHES when it shares at least one query token with its
  searchable text (file name + tags + full text), like an OR "match" query.
  Matching documents are RANKED with BM25Plus over the caller's scoped
  corpus, so higher term frequency ranks higher; ties break by id.
  BM25Plus keeps IDF positive on tiny corpora where BM25Okapi goes negative.

Dependencies:
  pip install rank-bm25>=0.2.2
"""

from __future__ import annotations

import logging
import string
import threading

from rank_bm25 import BM25Plus

from paperflow.schemas.documents import (
    IndexableDocument,
    SearchHit,
    SearchRequest,
    SearchResult,
)
from paperflow.search.base import SearchIndex

logger = logging.getLogger(__name__)

DEFAULT_SNIPPET_LENGTH = 200


# ---------------------------------------------------------------------------
# Minimal English stopword list for BM25 tokenisation
# ---------------------------------------------------------------------------

_STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "it", "as", "be", "was", "are",
    "that", "this", "which", "have", "has", "had", "not", "no", "can",
    "will", "would", "could", "should", "may", "might", "do", "does",
    "did", "its", "their", "our", "your", "my", "his", "her",
})

_PUNCT_TABLE = str.maketrans("", "", string.punctuation.replace("-", ""))

# Placeholder for documents with no indexable text; BM25 needs non-empty token lists
_EMPTY_DOC_TOKEN = "<empty>"


def _tokenize(text: str) -> list[str]:
    """
    Lightweight tokeniser: lowercase → strip punctuation → drop stopwords.

    Preserves hyphens (identifiers like "SN-48291"). Returns [] for blank
    input; callers decide what an empty query means.
    """
    text = (text or "").lower().translate(_PUNCT_TABLE)
    return [t for t in text.split() if t and t not in _STOPWORDS]


def _searchable_tokens(document: IndexableDocument) -> list[str]:
    parts = [document.file_name or "", " ".join(document.tags), document.full_text]
    return _tokenize(" ".join(parts))


# ---------------------------------------------------------------------------
# InMemorySearchIndex
# ---------------------------------------------------------------------------

class InMemorySearchIndex(SearchIndex):
    """
    Thread-safe: all reads and writes of the projection map go through one
    lock, so upserts from concurrent indexing tasks never interleave.
    """

    def __init__(self, snippet_length: int = DEFAULT_SNIPPET_LENGTH) -> None:
        self._snippet_length = snippet_length
        self._documents: dict[int, IndexableDocument] = {}
        self._tokens:    dict[int, list[str]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "InMemorySearchIndex":
        return cls(snippet_length=settings.search_snippet_length)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def index_document(self, document: IndexableDocument) -> None:
        tokens = _searchable_tokens(document)
        with self._lock:
            replaced = document.id in self._documents
            self._documents[document.id] = document.model_copy(deep=True)
            self._tokens[document.id] = tokens
        logger.info(
            "Search index | upsert doc=%s replaced=%s tokens=%d",
            document.id, replaced, len(tokens),
        )

    async def delete_document(self, document_id: int) -> None:
        with self._lock:
            removed = self._documents.pop(document_id, None)
            self._tokens.pop(document_id, None)
        logger.info("Search index | delete doc=%s found=%s", document_id, removed is not None)

    # -----------------------------------------------------------------------
    # Search
    # -----------------------------------------------------------------------

    async def search(self, request: SearchRequest) -> SearchResult:
        with self._lock:
            scope = [
                (doc, self._tokens[doc_id])
                for doc_id, doc in sorted(self._documents.items())
                if self._in_scope(doc, request)
            ]

        ranked = self._rank(scope, _tokenize(request.query))

        start = request.page * request.size
        page_docs = ranked[start:start + request.size]
        hits = [
            SearchHit(
                document_id=str(doc.id),
                document_name=doc.file_name,
                page_number=0,
                snippet=doc.full_text[: self._snippet_length],
            )
            for doc in page_docs
        ]

        logger.info(
            "Search | user=%s query=%r total=%d page=%d size=%d",
            request.username, request.query, len(ranked), request.page, request.size,
        )
        return SearchResult.paginate(hits, len(ranked), request.page, request.size)

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _in_scope(doc: IndexableDocument, request: SearchRequest) -> bool:
        if doc.username != request.username:
            return False
        if request.tags and not set(request.tags) & set(doc.tags):
            return False
        if request.year is not None and doc.year != request.year:
            return False
        return True

    @staticmethod
    def _rank(
        scope: list[tuple[IndexableDocument, list[str]]],
        query_tokens: list[str],
    ) -> list[IndexableDocument]:
        # Blank query = match everything in scope, id order
        if not query_tokens:
            return [doc for doc, _ in scope]

        wanted = set(query_tokens)
        if not any(wanted & set(tokens) for _, tokens in scope):
            return []

        bm25 = BM25Plus([tokens or [_EMPTY_DOC_TOKEN] for _, tokens in scope])
        scores = bm25.get_scores(query_tokens)

        matched = [
            (float(score), doc)
            for (doc, tokens), score in zip(scope, scores)
            if wanted & set(tokens)
        ]
        matched.sort(key=lambda pair: (-pair[0], pair[1].id))
        return [doc for _, doc in matched]
