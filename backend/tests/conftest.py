"""
Root conftest.py — Shared fixtures for ALL tests

Fixture hierarchy:
  session-scoped  : none (everything here is cheap and in-memory)
  function-scoped : make_pdf, native_pdf_bytes, scanned_pdf_bytes, cleaner,
                    store, search_index, mock_orchestrator, mock_selector,
                    mock_publisher, no_sleep, event_bus, make_coordinator

Environment strategy:
  - No broker, no Ollama, no tesseract binary: OCR calls are patched at
    pytesseract.image_to_string, the LLM at the orchestrator or via an
    httpx.MockTransport.
  - PDFs are generated on the fly with PyMuPDF.
  - Celery uses the in-memory broker (CELERY_BROKER_URL=memory://).

How to run:
  pytest                                    # all tests
  pytest -m unit                            # unit tests only
  pytest backend/tests/unit/test_cleaner.py # single file
"""

from __future__ import annotations

import os
import textwrap
from unittest.mock import AsyncMock, MagicMock

import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any paperflow imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("OLLAMA_BASE_URL",       "http://ollama.test:11434")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("DEBUG",                 "true")


INVOICE_PAGE_1 = (
    "Invoice 2024-117 from Northwind Traders to Contoso Ltd. "
    "Payment of 1,250.00 EUR is due within thirty days of receipt. "
    "Please quote the invoice number with every transfer."
)
INVOICE_PAGE_2 = (
    "Terms and conditions: late payments accrue interest at the statutory rate. "
    "Goods remain the property of Northwind Traders until paid in full."
)


# ─────────────────────────────────────────────────────────────────────────────
# PDF fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_pdf():
    """
    Factory fixture: build a PDF with one page per text.
    Long texts are wrapped so every character lands inside the page box.
    """
    import fitz

    def _build(*page_texts: str) -> bytes:
        doc = fitz.open()
        for text in page_texts:
            page = doc.new_page()
            if text:
                page.insert_text((72, 72), "\n".join(textwrap.wrap(text, 70)), fontsize=11)
        data = doc.tobytes()
        doc.close()
        return data

    return _build


@pytest.fixture
def native_pdf_bytes(make_pdf) -> bytes:
    """Two pages with a dense text layer (well over 50 chars per page)."""
    return make_pdf(INVOICE_PAGE_1, INVOICE_PAGE_2)


@pytest.fixture
def scanned_pdf_bytes(make_pdf) -> bytes:
    """Two pages with almost no text layer — what a scan looks like to PyMuPDF."""
    return make_pdf("p1", "")


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline components
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def cleaner():
    from paperflow.processing.cleaner import TextCleaner
    return TextCleaner()


@pytest.fixture
def store():
    from paperflow.storage.memory import InMemoryDocumentStore
    return InMemoryDocumentStore()


@pytest.fixture
def search_index():
    from paperflow.search.bm25 import InMemorySearchIndex
    return InMemorySearchIndex()


@pytest.fixture
def enrichment_result():
    from paperflow.schemas.documents import EnrichmentResult
    return EnrichmentResult(
        title="Northwind Invoice 2024-117",
        date_sent="14.03.2024",
        tags=["invoice", "northwind", "contoso", "payment", "eur"],
    )


@pytest.fixture
def mock_orchestrator(enrichment_result):
    """Mocked EnrichmentOrchestrator — enrich() returns a fixed result."""
    from paperflow.llm.enrichment import EnrichmentOrchestrator
    orchestrator = MagicMock(spec=EnrichmentOrchestrator)
    orchestrator.enrich = AsyncMock(return_value=enrichment_result)
    return orchestrator


@pytest.fixture
def mock_selector():
    """Mocked TextExtractionSelector — aextract() returns two page texts."""
    from paperflow.processing.extractor import TextExtractionSelector
    selector = MagicMock(spec=TextExtractionSelector)
    selector.aextract = AsyncMock(return_value=[INVOICE_PAGE_1, INVOICE_PAGE_2])
    return selector


@pytest.fixture
def mock_publisher():
    """Mocked EventPublisher — records events without dispatching them."""
    from paperflow.pipeline.dispatch import EventPublisher
    publisher = MagicMock(spec=EventPublisher)
    publisher.publish = AsyncMock(return_value=None)
    return publisher


@pytest.fixture
def no_sleep():
    """Stand-in for asyncio.sleep so retry backoff costs nothing."""
    return AsyncMock(return_value=None)


@pytest.fixture
def event_bus():
    from paperflow.pipeline.dispatch import LocalEventBus
    return LocalEventBus()


@pytest.fixture
def make_coordinator(store, mock_selector, cleaner, mock_orchestrator, search_index,
                     mock_publisher, no_sleep):
    """Factory: build a PipelineCoordinator with injected fakes; override any part."""
    from paperflow.pipeline.coordinator import PipelineCoordinator
    from paperflow.pipeline.retry import RetryPolicy

    def _build(**overrides):
        kwargs = dict(
            store=store,
            selector=mock_selector,
            cleaner=cleaner,
            orchestrator=mock_orchestrator,
            index=search_index,
            publisher=mock_publisher,
            retry_policy=RetryPolicy(max_attempts=2, backoff_seconds=5.0, sleep=no_sleep),
        )
        kwargs.update(overrides)
        return PipelineCoordinator(**kwargs)

    return _build


@pytest.fixture
def published(mock_publisher):
    """Return the events passed to mock_publisher.publish, in order."""
    def _events(event_type=None):
        events = [c.args[0] for c in mock_publisher.publish.await_args_list]
        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        return events
    return _events


@pytest.fixture
def invoice_pages() -> tuple[str, str]:
    """The two page texts mock_selector extracts from every PDF."""
    return INVOICE_PAGE_1, INVOICE_PAGE_2
