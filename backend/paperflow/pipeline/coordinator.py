"""
Pipeline Coordinator — OCR → Enrichment → Index
════════════════════════════════════════════════

One handler per event; each handler reads the document, does its work,
persists, and publishes the next event:

  submit_document   save (UPLOADED)                        → OcrEvent
  handle_ocr        OCR_IN_PROGRESS → pages → OCR_COMPLETED → EnrichmentEvent
                    extraction failure → OCR_FAILED (terminal, no event)
  handle_enrichment ENRICHING_IN_PROGRESS → LLM → ENRICHED  → IndexEvent
                    wrapped in RetryPolicy (2 attempts, 5 s backoff); on
                    exhaustion the recovery handler flags failed_enrichment,
                    sets ENRICHMENT_FAILED and still publishes IndexEvent so
                    the document stays searchable with degraded metadata
  handle_index      INDEXING_IN_PROGRESS → upsert → COMPLETED
                    failure → INDEXING_FAILED (logged, never raised)

Failure isolation:
  No handler lets an exception escape to the event bus for expected
  failures; every outcome is recorded on the document instead.

Write safety:
  Every status/field change goes through _mutate(): load → apply → CAS
  save. A StaleDocumentError (another stage wrote in between) reloads and
  re-applies, so concurrent stages never silently drop each other's fields.

Recovery:
  recover_failed_documents() (Celery beat) re-publishes EnrichmentEvent for
  documents whose enrichment degraded and IndexEvent for INDEXING_FAILED
  documents, at most recovery_max_attempts times per document. Every
  failure and every re-drive sets next_retry_at (15 min doubling per
  attempt, capped at 6 h); a document is only picked up once it is due, so
  a re-drive still in flight is never started a second time.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from paperflow.core.errors import (
    DocumentNotFound,
    DuplicateDocument,
    InvalidDocument,
    PipelineError,
    StaleDocumentError,
)
from paperflow.events import EnrichmentEvent, IndexEvent, OcrEvent
from paperflow.llm.enrichment import EnrichmentOrchestrator
from paperflow.models.documents import Document, DocumentStatus, build_pages, sanitize_error
from paperflow.pipeline.dispatch import EventPublisher
from paperflow.pipeline.retry import RetryPolicy, recovery_delay
from paperflow.processing.cleaner import TextCleaner
from paperflow.processing.extractor import TextExtractionSelector
from paperflow.schemas.documents import (
    DATE_SENT_FORMAT,
    IndexableDocument,
    SearchRequest,
    SearchResult,
)
from paperflow.search.base import SearchIndex
from paperflow.storage.base import DocumentStore

logger = logging.getLogger(__name__)

TEXT_MODE_FIRST_PAGE = "first_page"
TEXT_MODE_FULL_TEXT  = "full_text"

# Reload-and-reapply budget for compare-and-swap conflicts
MAX_WRITE_CONFLICTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _set_status(status: DocumentStatus) -> Callable[[Document], None]:
    def apply(doc: Document) -> None:
        doc.status = status
    return apply


def parse_document_date(value: Optional[str]) -> date:
    """dd.MM.yyyy → date; today's date when missing or unparsable."""
    if value:
        try:
            return datetime.strptime(value.strip(), DATE_SENT_FORMAT).date()
        except ValueError:
            pass
    logger.warning("Enrichment | unparsable date_sent=%r, using today", value)
    return date.today()


class PipelineCoordinator:

    def __init__(
        self,
        store: DocumentStore,
        selector: TextExtractionSelector,
        cleaner: TextCleaner,
        orchestrator: EnrichmentOrchestrator,
        index: SearchIndex,
        publisher: EventPublisher,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        enrichment_text_mode: str = TEXT_MODE_FIRST_PAGE,
        indexing_enabled: bool = True,
        recovery_enabled: bool = True,
        recovery_max_attempts: int = 5,
        recovery_batch_size: int = 50,
        retry_backoff_base_minutes: int = 15,
        retry_backoff_max_minutes: int = 360,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if enrichment_text_mode not in (TEXT_MODE_FIRST_PAGE, TEXT_MODE_FULL_TEXT):
            raise ValueError(f"Unknown enrichment_text_mode: {enrichment_text_mode!r}")

        self._store = store
        self._selector = selector
        self._cleaner = cleaner
        self._orchestrator = orchestrator
        self._index = index
        self._publisher = publisher
        self._retry = retry_policy or RetryPolicy()

        self._text_mode = enrichment_text_mode
        self._indexing_enabled = indexing_enabled
        self._recovery_enabled = recovery_enabled
        self._recovery_max_attempts = recovery_max_attempts
        self._recovery_batch_size = recovery_batch_size
        self._backoff_base_minutes = retry_backoff_base_minutes
        self._backoff_max_minutes = retry_backoff_max_minutes
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        store: DocumentStore,
        index: SearchIndex,
        publisher: EventPublisher,
        orchestrator: Optional[EnrichmentOrchestrator] = None,
        selector: Optional[TextExtractionSelector] = None,
    ) -> "PipelineCoordinator":
        cleaner = TextCleaner.from_settings(settings)
        return cls(
            store=store,
            selector=selector or TextExtractionSelector.from_settings(settings, cleaner),
            cleaner=cleaner,
            orchestrator=orchestrator or EnrichmentOrchestrator.from_settings(settings),
            index=index,
            publisher=publisher,
            retry_policy=RetryPolicy.from_settings(settings),
            enrichment_text_mode=settings.enrichment_text_mode,
            indexing_enabled=settings.indexing_enabled,
            recovery_enabled=settings.recovery_enabled,
            recovery_max_attempts=settings.recovery_max_attempts,
            recovery_batch_size=settings.recovery_batch_size,
            retry_backoff_base_minutes=settings.retry_backoff_base_minutes,
            retry_backoff_max_minutes=settings.retry_backoff_max_minutes,
        )

    def handlers(self) -> dict[type, Callable[[Any], Any]]:
        """Event type → stage handler, for LocalEventBus.subscribe_all()."""
        return {
            OcrEvent:        self.handle_ocr,
            EnrichmentEvent: self.handle_enrichment,
            IndexEvent:      self.handle_index,
        }

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    async def submit_document(
        self,
        filename: str,
        owner_username: str,
        pdf_bytes: bytes,
        content_type: str = "application/pdf",
    ) -> Document:
        """Persist an uploaded PDF and start its pipeline. Returns immediately."""
        if await self._store.exists_by_filename_and_owner(filename, owner_username):
            logger.warning(
                "Upload rejected, duplicate | file=%s user=%s", filename, owner_username,
            )
            raise DuplicateDocument(filename, owner_username)

        document = await self._store.save(Document(
            filename=filename,
            owner_username=owner_username,
            pdf_content=bytes(pdf_bytes or b""),
            content_type=content_type,
        ))
        logger.info(
            "Document uploaded | doc=%s file=%s user=%s size=%d",
            document.id, filename, owner_username, document.size,
        )

        await self._publisher.publish(OcrEvent(document.id, document.pdf_content))
        return document

    # -----------------------------------------------------------------------
    # Stage 1: OCR / text extraction
    # -----------------------------------------------------------------------

    async def handle_ocr(self, event: OcrEvent) -> None:
        doc_id = event.document_id
        t0 = time.monotonic()

        try:
            await self._mutate(doc_id, _set_status(DocumentStatus.OCR_IN_PROGRESS))
        except DocumentNotFound:
            logger.error("OCR skipped, document not found | doc=%s", doc_id)
            return

        if not event.pdf_bytes:
            logger.warning("OCR | empty PDF payload | doc=%s", doc_id)
            await self._mark_failed(doc_id, DocumentStatus.OCR_FAILED, "Empty PDF payload")
            return

        try:
            page_texts = await self._selector.aextract(event.pdf_bytes)
        except Exception as exc:
            logger.error("OCR failed | doc=%s error=%s", doc_id, exc, exc_info=True)
            await self._mark_failed(doc_id, DocumentStatus.OCR_FAILED, exc)
            return

        if not page_texts:
            logger.error("OCR produced no pages | doc=%s", doc_id)
            await self._mark_failed(doc_id, DocumentStatus.OCR_FAILED, "PDF has no pages")
            return

        def completed(doc: Document) -> None:
            doc.status = DocumentStatus.OCR_COMPLETED
            doc.last_error = None

        try:
            await self._store.save_pages(doc_id, build_pages(doc_id, page_texts))
            await self._mutate(doc_id, completed)
        except Exception as exc:
            logger.error("OCR result not persisted | doc=%s error=%s", doc_id, exc, exc_info=True)
            await self._mark_failed(doc_id, DocumentStatus.OCR_FAILED, exc)
            return

        logger.info(
            "OCR completed | doc=%s pages=%d elapsed_ms=%.0f",
            doc_id, len(page_texts), (time.monotonic() - t0) * 1000,
        )

        await self._publisher.publish(EnrichmentEvent(doc_id, tuple(page_texts)))

    # -----------------------------------------------------------------------
    # Stage 2: enrichment
    # -----------------------------------------------------------------------

    async def handle_enrichment(self, event: EnrichmentEvent) -> Optional[Document]:
        doc_id = event.document_id
        return await self._retry.run(
            lambda: self._enrich(event),
            recover=lambda exc: self._recover_enrichment(doc_id, exc),
            label=f"enrichment doc={doc_id}",
        )

    async def _enrich(self, event: EnrichmentEvent) -> Document:
        doc_id = event.document_id
        t0 = time.monotonic()

        document = await self._load(doc_id)
        page_texts = document.page_texts or list(event.page_texts)
        if not any(text and text.strip() for text in page_texts):
            raise InvalidDocument(f"Document {doc_id} has no page text to enrich")

        await self._mutate(doc_id, _set_status(DocumentStatus.ENRICHING_IN_PROGRESS))

        text = self._enrichment_text(page_texts)
        result = await self._orchestrator.enrich(text)
        date_on_document = parse_document_date(result.date_sent)

        def enriched(doc: Document) -> None:
            doc.title = result.title
            doc.date_on_document = date_on_document
            doc.tags = list(result.tags)
            doc.failed_enrichment = result.flag_failed_enrichment
            doc.status = DocumentStatus.ENRICHED
            doc.last_error = None
            if doc.failed_enrichment:
                self._schedule_retry(doc)
            else:
                doc.next_retry_at = None

        document = await self._mutate(doc_id, enriched)
        logger.info(
            "Enrichment completed | doc=%s title=%r tags=%d failed=%s elapsed_ms=%.0f",
            doc_id, document.title, len(document.tags), document.failed_enrichment,
            (time.monotonic() - t0) * 1000,
        )

        await self._publish_index(document)
        return document

    async def _recover_enrichment(self, doc_id: int, exc: Exception) -> Optional[Document]:
        """Retries exhausted: record the failure, keep the document searchable."""
        logger.error(
            "Enrichment failed permanently | doc=%s error=%s", doc_id, exc,
        )

        def failed(doc: Document) -> None:
            doc.failed_enrichment = True
            doc.status = DocumentStatus.ENRICHMENT_FAILED
            doc.last_error = sanitize_error(exc)
            self._schedule_retry(doc)

        try:
            document = await self._mutate(doc_id, failed)
        except DocumentNotFound:
            logger.error("Enrichment recovery skipped, document not found | doc=%s", doc_id)
            return None

        await self._publish_index(document)
        return document

    def _enrichment_text(self, page_texts: list[str]) -> str:
        if self._text_mode == TEXT_MODE_FULL_TEXT:
            return self._cleaner.clean("\n".join(page_texts))
        first = next((text for text in page_texts if text and text.strip()), "")
        return self._cleaner.clean(first)

    async def _publish_index(self, document: Document) -> None:
        if not self._indexing_enabled:
            logger.debug("Indexing disabled, not publishing | doc=%s", document.id)
            return
        payload = IndexableDocument.from_document(document)
        await self._publisher.publish(IndexEvent(payload))

    # -----------------------------------------------------------------------
    # Stage 3: indexing
    # -----------------------------------------------------------------------

    async def handle_index(self, event: IndexEvent) -> None:
        doc_id = event.document_id

        try:
            await self._mutate(doc_id, _set_status(DocumentStatus.INDEXING_IN_PROGRESS))
        except DocumentNotFound:
            logger.warning("Indexing skipped, document deleted | doc=%s", doc_id)
            return

        try:
            await self._index.index_document(event.payload)
        except Exception as exc:
            logger.error("Indexing failed | doc=%s error=%s", doc_id, exc, exc_info=True)
            await self._mark_failed(doc_id, DocumentStatus.INDEXING_FAILED, exc)
            return

        def completed(doc: Document) -> None:
            doc.status = DocumentStatus.COMPLETED
            doc.last_error = None
            if not doc.failed_enrichment:
                doc.recovery_attempts = 0
                doc.next_retry_at = None

        try:
            await self._mutate(doc_id, completed)
        except PipelineError as exc:
            logger.error("Indexed but status not recorded | doc=%s error=%s", doc_id, exc)
            return
        logger.info("Indexing completed | doc=%s", doc_id)

    # -----------------------------------------------------------------------
    # Recovery (Celery beat)
    # -----------------------------------------------------------------------

    async def recover_failed_documents(self) -> dict[str, int]:
        dispatched = {"enrichment": 0, "indexing": 0}
        if not self._recovery_enabled:
            logger.debug("Recovery disabled")
            return dispatched

        candidates = await self._store.find_retryable(
            self._recovery_max_attempts, self._recovery_batch_size, now=self._clock(),
        )
        if not candidates:
            logger.debug("Recovery found no eligible documents")
            return dispatched

        def bump(doc: Document) -> None:
            doc.recovery_attempts += 1
            self._schedule_retry(doc)

        for candidate in candidates:
            try:
                document = await self._mutate(candidate.id, bump)
            except PipelineError as exc:
                logger.warning("Recovery skipped | doc=%s error=%s", candidate.id, exc)
                continue

            if document.needs_reindex:
                await self._publisher.publish(
                    IndexEvent(IndexableDocument.from_document(document))
                )
                dispatched["indexing"] += 1
            elif document.needs_reenrichment:
                await self._publisher.publish(
                    EnrichmentEvent(document.id, tuple(document.page_texts))
                )
                dispatched["enrichment"] += 1

        logger.info(
            "Recovery dispatched | enrichment=%d indexing=%d",
            dispatched["enrichment"], dispatched["indexing"],
        )
        return dispatched

    # -----------------------------------------------------------------------
    # Queries / removal
    # -----------------------------------------------------------------------

    async def search(self, request: SearchRequest) -> SearchResult:
        return await self._index.search(request)

    async def remove_document(self, document_id: int) -> None:
        await self._store.delete_by_id(document_id)
        await self._index.delete_document(document_id)
        logger.info("Document removed | doc=%s", document_id)

    # -----------------------------------------------------------------------
    # Persistence helpers
    # -----------------------------------------------------------------------

    async def _load(self, document_id: int) -> Document:
        document = await self._store.find_by_id(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    async def _mutate(self, document_id: int, apply: Callable[[Document], None]) -> Document:
        """Load → apply → compare-and-swap save, reloading on conflict."""
        conflict: Optional[StaleDocumentError] = None
        for attempt in range(1, MAX_WRITE_CONFLICTS + 1):
            document = await self._load(document_id)
            apply(document)
            try:
                return await self._store.save(document)
            except StaleDocumentError as exc:
                conflict = exc
                logger.warning(
                    "Write conflict, reloading | doc=%s attempt=%d/%d",
                    document_id, attempt, MAX_WRITE_CONFLICTS,
                )
        raise conflict

    def _schedule_retry(self, doc: Document) -> None:
        delay = recovery_delay(
            doc.recovery_attempts + 1, self._backoff_base_minutes, self._backoff_max_minutes,
        )
        doc.next_retry_at = self._clock() + delay

    async def _mark_failed(self, document_id: int, status: DocumentStatus, reason: object) -> None:
        def failed(doc: Document) -> None:
            doc.status = status
            doc.last_error = sanitize_error(reason)
            if doc.needs_reindex:
                self._schedule_retry(doc)

        try:
            await self._mutate(document_id, failed)
        except PipelineError as exc:
            logger.error(
                "Could not record %s | doc=%s error=%s", status.value, document_id, exc,
            )
