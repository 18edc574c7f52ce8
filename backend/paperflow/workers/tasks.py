"""
Celery Tasks — one task per pipeline stage

Task: run_ocr_stage         OcrEvent message        → PipelineCoordinator.handle_ocr
Task: run_enrichment_stage  EnrichmentEvent message → PipelineCoordinator.handle_enrichment
Task: run_indexing_stage    IndexEvent message      → PipelineCoordinator.handle_index
Task: recover_failed_documents
  Beat task — re-publishes enrichment/index events for degraded documents.
Task: health_check

Every task receives ``document_id`` (for the signal log lines) and the
event's JSON ``message``; it rebuilds the event and awaits the coordinator.
Stage failures are recorded on the document by the coordinator, so tasks do
not use Celery-level retries; a malformed message is logged and dropped.

Wiring: a deployment installs its coordinator, backed by a shared document
store and search backend, with configure_coordinator() (e.g. from a
worker_process_init hook). Only when app_env is "development" is a default
built lazily from settings; its in-memory store and index are private to
one worker process, so it only works with a single-process worker.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Optional

from paperflow.core.errors import ConfigurationError, InvalidEvent
from paperflow.events import EnrichmentEvent, IndexEvent, OcrEvent
from paperflow.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_coordinator = None
_coordinator_lock = threading.Lock()


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        return asyncio.run(coro)
    if loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(asyncio.run, coro)
            return future.result()
    return loop.run_until_complete(coro)


# ---------------------------------------------------------------------------
# Coordinator wiring
# ---------------------------------------------------------------------------

def configure_coordinator(coordinator) -> None:
    """Install the PipelineCoordinator used by every task in this process."""
    global _coordinator
    with _coordinator_lock:
        _coordinator = coordinator


def get_coordinator():
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            from paperflow.core.config import settings
            from paperflow.pipeline.coordinator import PipelineCoordinator
            from paperflow.pipeline.dispatch import CeleryEventPublisher
            from paperflow.search.bm25 import InMemorySearchIndex
            from paperflow.storage.memory import InMemoryDocumentStore

            if settings.app_env != "development":
                raise ConfigurationError(
                    f"No coordinator configured for app_env={settings.app_env!r}; "
                    "call configure_coordinator() with a shared document store "
                    "and search index before running tasks"
                )
            logger.warning(
                "No coordinator configured; using in-memory store and index "
                "(state is per worker process)"
            )
            _coordinator = PipelineCoordinator.from_settings(
                settings,
                store=InMemoryDocumentStore(),
                index=InMemorySearchIndex.from_settings(settings),
                publisher=CeleryEventPublisher(celery_app),
            )
        return _coordinator


def _decode(event_cls, message: dict[str, Any]):
    try:
        return event_cls.from_message(message or {})
    except (InvalidEvent, ValueError, TypeError) as exc:
        logger.error("Dropping malformed %s message: %s", event_cls.__name__, exc)
        return None


# ---------------------------------------------------------------------------
# Stage tasks
# ---------------------------------------------------------------------------

@celery_app.task(
    name="paperflow.workers.tasks.run_ocr_stage",
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_ocr_stage(*, document_id: Optional[int] = None, message: dict[str, Any]) -> dict[str, Any]:
    event = _decode(OcrEvent, message)
    if event is None:
        return {"status": "invalid_message", "document_id": document_id}
    run_async(get_coordinator().handle_ocr(event))
    return {"status": "done", "document_id": event.document_id}


@celery_app.task(
    name="paperflow.workers.tasks.run_enrichment_stage",
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_enrichment_stage(*, document_id: Optional[int] = None, message: dict[str, Any]) -> dict[str, Any]:
    event = _decode(EnrichmentEvent, message)
    if event is None:
        return {"status": "invalid_message", "document_id": document_id}
    run_async(get_coordinator().handle_enrichment(event))
    return {"status": "done", "document_id": event.document_id}


@celery_app.task(
    name="paperflow.workers.tasks.run_indexing_stage",
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_indexing_stage(*, document_id: Optional[int] = None, message: dict[str, Any]) -> dict[str, Any]:
    event = _decode(IndexEvent, message)
    if event is None:
        return {"status": "invalid_message", "document_id": document_id}
    run_async(get_coordinator().handle_index(event))
    return {"status": "done", "document_id": event.document_id}


# ---------------------------------------------------------------------------
# Recovery scanner: Celery Beat, every recovery_interval_seconds
# ---------------------------------------------------------------------------

@celery_app.task(
    name="paperflow.workers.tasks.recover_failed_documents",
    acks_late=True,
)
def recover_failed_documents() -> dict[str, int]:
    return run_async(get_coordinator().recover_failed_documents())


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="paperflow.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
