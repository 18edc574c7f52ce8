"""
Celery Application Factory

Runs each pipeline stage as its own task type on its own queue.
Broker: RabbitMQ (amqp://) by default; any kombu transport URL works (memory:// in tests).
Result backend: Redis (optional — document state lives in the document store).

Queue topology:
  documents.ocr       — text extraction; run with --concurrency=1, the OCR
                        engine is serialised anyway (one lock per process)
  documents.enrich    — LLM enrichment; long-running (10 min LLM timeout)
  documents.index     — search index upserts
  documents.recovery  — beat-driven re-dispatch of degraded documents
  system.health       — internal health-check tasks

Note: OCR messages carry the PDF itself (base64 in JSON), so task argument
logging must stay off for documents.ocr.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import setup_logging, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from paperflow.core.config import settings
from paperflow.core.logging import configure_logging

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue("documents.ocr",      exchange=DOCUMENTS_EXCHANGE, routing_key="documents.ocr",      durable=True),
    Queue("documents.enrich",   exchange=DOCUMENTS_EXCHANGE, routing_key="documents.enrich",   durable=True),
    Queue("documents.index",    exchange=DOCUMENTS_EXCHANGE, routing_key="documents.index",    durable=True),
    Queue("documents.recovery", exchange=DOCUMENTS_EXCHANGE, routing_key="documents.recovery", durable=True),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "paperflow.workers.tasks.run_ocr_stage":            {"queue": "documents.ocr"},
    "paperflow.workers.tasks.run_enrichment_stage":     {"queue": "documents.enrich"},
    "paperflow.workers.tasks.run_indexing_stage":       {"queue": "documents.index"},
    "paperflow.workers.tasks.recover_failed_documents": {"queue": "documents.recovery"},
    "paperflow.workers.tasks.health_check":             {"queue": "system.health"},
}


def _beat_schedule() -> dict:
    if not settings.recovery_enabled:
        return {}
    return {
        "recover-failed-documents": {
            "task":     "paperflow.workers.tasks.recover_failed_documents",
            "schedule": settings.recovery_interval_seconds,
            "options":  {"queue": "documents.recovery"},
        },
    }


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery(settings.app_name)

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (security: reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.ocr",
        task_default_exchange="documents",
        task_default_routing_key="documents.ocr",

        # --- Reliability ---
        task_acks_late=True,         # ack only after task completes (prevents message loss on crash)
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,  # long tasks: never hoard messages

        # --- Timeouts (enrichment waits up to llm_timeout_seconds per attempt) ---
        task_soft_time_limit=int(settings.llm_timeout_seconds * 2 + 120),
        task_time_limit=int(settings.llm_timeout_seconds * 2 + 180),

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (recovery scanner) ---
        beat_schedule=_beat_schedule(),

        # --- Worker ---
        worker_max_tasks_per_child=200,   # recycle workers to prevent memory bloat
    )

    app.autodiscover_tasks(["paperflow.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: one log line per task lifecycle event
# ---------------------------------------------------------------------------

@setup_logging.connect
def on_setup_logging(**_):
    # Connecting this signal stops Celery from installing its own root handler
    configure_logging()


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "?"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "?"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "?"), exception,
        exc_info=True,
    )
