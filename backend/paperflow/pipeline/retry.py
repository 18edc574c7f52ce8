"""
Retry wrapper — attempt counter + fixed backoff + recovery callback.

    policy = RetryPolicy(max_attempts=2, backoff_seconds=5.0)
    result = await policy.run(
        lambda: enrich_document(document_id),
        recover=lambda exc: mark_failed(document_id, exc),
        label=f"enrichment doc={document_id}",
    )

The operation is attempted up to max_attempts times with a fixed sleep
between attempts (the sleep blocks only the awaiting task, never other
documents). When every attempt has raised, recover(last_exc) is awaited
exactly once and its return value is returned — run() itself never raises
for an exception thrown by the operation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
Recovery  = Callable[[Exception], Any]


class RetryPolicy:

    def __init__(
        self,
        max_attempts: int = 2,
        backoff_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.enrichment_max_attempts,
            backoff_seconds=settings.enrichment_backoff_seconds,
        )

    async def run(
        self,
        operation: Operation,
        *,
        recover: Optional[Recovery] = None,
        label: str = "operation",
    ) -> Any:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                logger.info(
                    "Retry | %s attempt=%d/%d delay=%.1fs",
                    label, attempt, self.max_attempts, self.backoff_seconds,
                )
                await self._sleep(self.backoff_seconds)
            try:
                return await operation()
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Retry | %s attempt=%d/%d failed: %s: %s",
                    label, attempt, self.max_attempts, type(exc).__name__, exc,
                )

        logger.error(
            "Retry | %s exhausted after %d attempts: %s",
            label, self.max_attempts, last_error,
        )
        if recover is None:
            return None

        try:
            outcome = recover(last_error)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return outcome
        except Exception as exc:
            logger.error("Retry | %s recovery handler failed: %s", label, exc, exc_info=True)
            return None


def recovery_delay(attempt: int, base_minutes: int = 15, max_minutes: int = 360) -> timedelta:
    """Wait before recovery attempt ``attempt`` (1-based): base doubled per attempt, capped."""
    multiplier = 1 << max(0, attempt - 1)
    return timedelta(minutes=min(base_minutes * multiplier, max_minutes))
