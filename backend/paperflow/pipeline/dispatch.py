"""
Event Dispatch — how pipeline events reach their stage handlers

Two publishers share one interface:

  LocalEventBus         in-process; each publish() schedules the handler as
                        an asyncio task and returns immediately
                        (fire-and-continue). Used by tests and single-process
                        deployments.

  CeleryEventPublisher  each event becomes a Celery task on its own queue
                        (documents.ocr / documents.enrich / documents.index);
                        the worker decodes it and calls the same handler.

Neither gives exactly-once delivery; handlers tolerate re-delivery
(page saves replace, index writes upsert).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from paperflow.events import EnrichmentEvent, IndexEvent, OcrEvent, PipelineEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class EventPublisher(ABC):

    @abstractmethod
    async def publish(self, event: PipelineEvent) -> None:
        """Hand the event off without waiting for its handler to finish."""


# ---------------------------------------------------------------------------
# In-process bus
# ---------------------------------------------------------------------------

class LocalEventBus(EventPublisher):
    """
    One consumer per event type. Handlers run as independent asyncio tasks,
    so stages for different documents interleave freely while each
    document's stages stay causally ordered (a stage publishes the next
    event only after its own writes are done).
    """

    def __init__(self) -> None:
        self._handlers: dict[type, Handler] = {}
        self._in_flight: set[asyncio.Task] = set()

    def subscribe(self, event_type: type, handler: Handler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"A handler is already registered for {event_type.__name__}")
        self._handlers[event_type] = handler

    def subscribe_all(self, handlers: dict[type, Handler]) -> None:
        for event_type, handler in handlers.items():
            self.subscribe(event_type, handler)

    async def publish(self, event: PipelineEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.error("Event bus | no handler for %s, dropping", type(event).__name__)
            return

        task = asyncio.get_running_loop().create_task(self._run(handler, event))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        logger.debug(
            "Event bus | published %s doc=%s",
            type(event).__name__, getattr(event, "document_id", "?"),
        )

    async def drain(self) -> None:
        """Wait until every handler, including ones scheduled by handlers, has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._in_flight)

    @staticmethod
    async def _run(handler: Handler, event: PipelineEvent) -> None:
        try:
            await handler(event)
        except Exception as exc:
            logger.error(
                "Event bus | handler for %s failed doc=%s: %s",
                type(event).__name__, getattr(event, "document_id", "?"), exc,
                exc_info=True,
            )


# ---------------------------------------------------------------------------
# Celery transport
# ---------------------------------------------------------------------------

# event type → (task name, queue)
CELERY_ROUTES: dict[type, tuple[str, str]] = {
    OcrEvent:        ("paperflow.workers.tasks.run_ocr_stage",        "documents.ocr"),
    EnrichmentEvent: ("paperflow.workers.tasks.run_enrichment_stage", "documents.enrich"),
    IndexEvent:      ("paperflow.workers.tasks.run_indexing_stage",   "documents.index"),
}


class CeleryEventPublisher(EventPublisher):
    """
    Sends each event to the Celery broker as a JSON task.
    The app import is deferred so the broker connection is not required at
    module load time.
    """

    def __init__(self, celery_app=None) -> None:
        self._app = celery_app

    def _celery(self):
        if self._app is None:
            from paperflow.workers.celery_app import celery_app
            self._app = celery_app
        return self._app

    async def publish(self, event: PipelineEvent) -> None:
        route = CELERY_ROUTES.get(type(event))
        if route is None:
            raise TypeError(f"No Celery route for event type {type(event).__name__}")
        task_name, queue = route

        app = self._celery()
        kwargs = {"document_id": event.document_id, "message": event.to_message()}

        # send_task talks to the broker synchronously
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: app.send_task(task_name, kwargs=kwargs, queue=queue),
        )
        logger.info(
            "Stage task published | task=%s queue=%s doc=%s",
            task_name, queue, event.document_id,
        )
