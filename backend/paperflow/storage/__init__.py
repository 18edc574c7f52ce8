from paperflow.storage.base import DocumentStore
from paperflow.storage.memory import InMemoryDocumentStore

__all__ = ["DocumentStore", "InMemoryDocumentStore"]
