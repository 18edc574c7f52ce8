"""
Pipeline error hierarchy.

Errors are raised where they are detected and caught only at stage
boundaries (PipelineCoordinator handlers and Celery tasks), where they are
logged and translated into a document status.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the ingestion pipeline."""


class InvalidEvent(PipelineError, ValueError):
    """An event was constructed without its identifier or payload."""


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionError(PipelineError):
    """Text could not be extracted from a PDF."""


class ExtractionUnavailable(ExtractionError):
    """No extraction strategy accepted the document."""


class OcrFailure(ExtractionError):
    """The OCR engine failed on one page; the whole document is aborted."""

    def __init__(self, page_number: int, cause: Exception | None = None) -> None:
        self.page_number = page_number
        self.cause = cause
        super().__init__(f"Tesseract OCR failed on page {page_number}: {cause}")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class DocumentNotFound(PipelineError):
    def __init__(self, document_id: int) -> None:
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class DuplicateDocument(PipelineError):
    def __init__(self, filename: str, owner_username: str) -> None:
        self.filename = filename
        self.owner_username = owner_username
        super().__init__(
            f"Document '{filename}' already exists for user '{owner_username}'"
        )


class StaleDocumentError(PipelineError):
    """Compare-and-swap save lost against a concurrent writer."""

    def __init__(self, document_id: int, expected: int, actual: int) -> None:
        self.document_id = document_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stale write on document {document_id}: "
            f"expected version {expected}, stored version {actual}"
        )


class InvalidDocument(PipelineError):
    """A stored document is not in a state the stage can work with."""


class ConfigurationError(PipelineError):
    """The pipeline was started without a component it cannot default."""
