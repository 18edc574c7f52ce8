"""
Document Processing Package
════════════════════════════

Turns PDF bytes into clean per-page text for the enrichment stage.

Modules
───────
  strategies.py  Extraction strategies (native text layer → Tesseract OCR)
  extractor.py   Selector that evaluates strategies in fixed priority order
  cleaner.py     Line-oriented text normaliser applied to OCR output and prompts

Design principles
─────────────────
  • Strategies are blocking and stateless apart from the shared OCR lock.
  • The selector is the only component that knows the strategy order.
"""

from paperflow.processing.cleaner import TextCleaner
from paperflow.processing.extractor import TextExtractionSelector
from paperflow.processing.strategies import (
    STRATEGY_PRIORITY,
    ExtractionMethod,
    NativeTextStrategy,
    OcrTextStrategy,
    TextExtractionStrategy,
)

__all__ = [
    "STRATEGY_PRIORITY",
    "ExtractionMethod",
    "NativeTextStrategy",
    "OcrTextStrategy",
    "TextCleaner",
    "TextExtractionSelector",
    "TextExtractionStrategy",
]
