from paperflow.search.base import SearchIndex
from paperflow.search.bm25 import InMemorySearchIndex

__all__ = ["InMemorySearchIndex", "SearchIndex"]
