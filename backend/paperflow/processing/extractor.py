"""
Text Extraction Selector
════════════════════════

Picks the extraction strategy for one PDF and runs it.

Selection flow:
  1. Strategies are ordered by STRATEGY_PRIORITY (NATIVE, then OCR),
     regardless of the order they were handed in.
  2. The first strategy whose can_process() returns True extracts the text.
  3. If none accepts (or none is configured) → ExtractionUnavailable.
     With the OCR strategy present this cannot happen: it accepts everything.

This module is the only place that knows about strategy ordering.
The pipeline coordinator only sees a list of page texts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable

from paperflow.core.errors import ExtractionUnavailable
from paperflow.processing.cleaner import TextCleaner
from paperflow.processing.strategies import (
    STRATEGY_PRIORITY,
    NativeTextStrategy,
    OcrTextStrategy,
    TextExtractionStrategy,
)

logger = logging.getLogger(__name__)


class TextExtractionSelector:
    """
    Usage:
        selector = TextExtractionSelector.from_settings(settings)
        page_texts = await selector.aextract(pdf_bytes)
    """

    def __init__(self, strategies: Iterable[TextExtractionStrategy]) -> None:
        rank = {method: i for i, method in enumerate(STRATEGY_PRIORITY)}
        self._strategies = sorted(
            strategies, key=lambda s: rank.get(s.method, len(rank)),
        )

    @classmethod
    def from_settings(cls, settings, cleaner: TextCleaner | None = None) -> "TextExtractionSelector":
        cleaner = cleaner or TextCleaner.from_settings(settings)
        return cls([
            NativeTextStrategy.from_settings(settings),
            OcrTextStrategy.from_settings(settings, cleaner),
        ])

    @property
    def strategies(self) -> list[TextExtractionStrategy]:
        return list(self._strategies)

    def select(self, pdf_bytes: bytes) -> TextExtractionStrategy:
        for strategy in self._strategies:
            if strategy.can_process(pdf_bytes):
                return strategy
        raise ExtractionUnavailable(
            f"No extraction strategy can process this document "
            f"(tried {[s.method.value for s in self._strategies]})"
        )

    def extract(self, pdf_bytes: bytes) -> list[str]:
        """Blocking: select a strategy and return one text per page."""
        t0 = time.monotonic()
        strategy = self.select(pdf_bytes)
        pages = strategy.extract_text(pdf_bytes)
        logger.info(
            "Extraction | strategy=%s pages=%d elapsed_ms=%.0f",
            strategy.method.value, len(pages), (time.monotonic() - t0) * 1000,
        )
        return pages

    async def aextract(self, pdf_bytes: bytes) -> list[str]:
        """Run extract() on the default thread executor so the event loop stays free."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.extract, pdf_bytes)
