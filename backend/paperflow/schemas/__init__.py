from paperflow.schemas.documents import (
    DATE_SENT_FORMAT,
    EnrichmentResult,
    IndexableDocument,
    SearchHit,
    SearchRequest,
    SearchResult,
)

__all__ = [
    "DATE_SENT_FORMAT",
    "EnrichmentResult",
    "IndexableDocument",
    "SearchHit",
    "SearchRequest",
    "SearchResult",
]
