"""
Extraction Strategy Pattern  —  Text Extraction from PDFs
══════════════════════════════════════════════════════════

Design: Strategy, evaluated in a fixed declared priority
─────────────────────────────────────────────────────────
  Strategy 1: NATIVE  (PyMuPDF text layer)
    - Microseconds per page, zero external processes
    - can_process() only when the text layer is dense enough:
        len(full_text.strip()) > page_count × MIN_CHARS_PER_PAGE_THRESHOLD
      which separates text-native PDFs from scans

  Strategy 2: OCR  (PyMuPDF raster → Pillow preprocessing → Tesseract)
    - can_process() is always True — the fallback of last resort
    - Each page: grayscale render at 300 DPI → contrast ×1.5 → binarise →
      tesseract (lang, --oem, --psm, --dpi, --tessdata-dir) → TextCleaner
    - A failure on ANY page aborts the whole document (OcrFailure);
      no partial result, no page-level retry

Concurrency
───────────
The Tesseract engine is treated as one shared, stateful resource:
every OCR call in the process goes through _OCR_ENGINE_LOCK, so OCR
throughput is single-threaded no matter how many documents are in flight.
This is the pipeline's throughput bottleneck; scale by adding worker
processes on the documents.ocr queue, not threads.

Both strategies take raw PDF bytes (never a path) and return one string
per page, in page order.
"""

from __future__ import annotations

import io
import logging
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from paperflow.core.errors import ExtractionError, OcrFailure
from paperflow.processing.cleaner import TextCleaner

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Below this many characters per page on average, the text layer is
# considered missing and the document is routed to OCR.
MIN_CHARS_PER_PAGE_THRESHOLD = 50

OCR_DPI            = 300
OCR_PAGE_SEG_MODE  = 6
OCR_ENGINE_MODE    = 1
CONTRAST_FACTOR    = 1.5
BINARIZE_THRESHOLD = 128

# One Tesseract "engine" per process
_OCR_ENGINE_LOCK = threading.Lock()


class ExtractionMethod(str, Enum):
    NATIVE = "native"
    OCR    = "ocr"


# Evaluation order used by TextExtractionSelector; OCR must stay last.
STRATEGY_PRIORITY: tuple[ExtractionMethod, ...] = (
    ExtractionMethod.NATIVE,
    ExtractionMethod.OCR,
)


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class TextExtractionStrategy(ABC):
    """
    Abstract base for text extraction strategies.

    Implementations are blocking; TextExtractionSelector.aextract() moves
    them onto a thread executor.
    """

    @property
    @abstractmethod
    def method(self) -> ExtractionMethod:
        """Which variant this is — decides its slot in STRATEGY_PRIORITY."""

    @abstractmethod
    def can_process(self, pdf_bytes: bytes) -> bool:
        """Capability check. Must not raise."""

    @abstractmethod
    def extract_text(self, pdf_bytes: bytes) -> list[str]:
        """Return one text string per page, in page order."""


def _open_pdf(pdf_bytes: bytes):
    import fitz  # PyMuPDF

    try:
        return fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise ExtractionError(f"Unreadable PDF: {exc}") from exc


# ---------------------------------------------------------------------------
# Strategy 1: native text layer
# ---------------------------------------------------------------------------

class NativeTextStrategy(TextExtractionStrategy):
    """
    Reads the embedded PDF text layer with PyMuPDF.

    Thread-safety: fitz.open() returns an independent document object
    per call — safe for concurrent use.
    """

    def __init__(self, min_chars_per_page: int = MIN_CHARS_PER_PAGE_THRESHOLD) -> None:
        self._min_chars_per_page = min_chars_per_page

    @classmethod
    def from_settings(cls, settings) -> "NativeTextStrategy":
        return cls(min_chars_per_page=settings.native_min_chars_per_page)

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.NATIVE

    def can_process(self, pdf_bytes: bytes) -> bool:
        if not pdf_bytes:
            return False
        try:
            with _open_pdf(pdf_bytes) as doc:
                page_count = doc.page_count
                full_text = "".join(page.get_text("text") or "" for page in doc)
        except Exception as exc:
            logger.warning("Native | unreadable PDF, deferring to next strategy: %s", exc)
            return False

        chars = len(full_text.strip())
        threshold = page_count * self._min_chars_per_page
        logger.debug(
            "Native | pages=%d chars=%d threshold=%d", page_count, chars, threshold,
        )
        return chars > threshold

    def extract_text(self, pdf_bytes: bytes) -> list[str]:
        with _open_pdf(pdf_bytes) as doc:
            # One page per get_text() call keeps per-page granularity
            return [page.get_text("text") or "" for page in doc]


# ---------------------------------------------------------------------------
# Strategy 2: Tesseract OCR
# ---------------------------------------------------------------------------

class OcrTextStrategy(TextExtractionStrategy):
    """
    OCR fallback: render each page, preprocess it, run Tesseract, clean.

    Requires the tesseract binary (and the configured language pack) on
    the worker image; pytesseract shells out to it.
    """

    def __init__(
        self,
        cleaner: TextCleaner,
        language: str = "eng",
        datapath: Optional[str] = None,
        dpi: int = OCR_DPI,
        page_seg_mode: int = OCR_PAGE_SEG_MODE,
        engine_mode: int = OCR_ENGINE_MODE,
        contrast_factor: float = CONTRAST_FACTOR,
        binarize_threshold: int = BINARIZE_THRESHOLD,
    ) -> None:
        self._cleaner = cleaner
        self._language = language
        self._datapath = datapath
        self._dpi = dpi
        self._page_seg_mode = page_seg_mode
        self._engine_mode = engine_mode
        self._contrast_factor = contrast_factor
        self._binarize_threshold = binarize_threshold

    @classmethod
    def from_settings(cls, settings, cleaner: TextCleaner) -> "OcrTextStrategy":
        return cls(
            cleaner=cleaner,
            language=settings.tesseract_language,
            datapath=settings.tesseract_datapath,
            dpi=settings.ocr_dpi,
            page_seg_mode=settings.ocr_page_seg_mode,
            engine_mode=settings.ocr_engine_mode,
            contrast_factor=settings.ocr_contrast_factor,
            binarize_threshold=settings.ocr_binarize_threshold,
        )

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.OCR

    @property
    def tesseract_config(self) -> str:
        config = f"--oem {self._engine_mode} --psm {self._page_seg_mode} --dpi {self._dpi}"
        if self._datapath:
            config += f' --tessdata-dir "{self._datapath}"'
        return config

    def can_process(self, pdf_bytes: bytes) -> bool:
        return True

    def extract_text(self, pdf_bytes: bytes) -> list[str]:
        t0 = time.monotonic()
        pages: list[str] = []

        with _open_pdf(pdf_bytes) as doc:
            for page_number, page in enumerate(doc, start=1):
                try:
                    image = self._preprocess(self._render(page))
                    raw = self._run_tesseract(image)
                except Exception as exc:
                    logger.error(
                        "OCR | page=%d failed, aborting document: %s", page_number, exc,
                    )
                    raise OcrFailure(page_number, exc) from exc
                pages.append(self._cleaner.clean(raw))

        logger.info(
            "OCR | pages=%d lang=%s elapsed_ms=%.0f",
            len(pages), self._language, (time.monotonic() - t0) * 1000,
        )
        return pages

    # ------------------------------------------------------------------
    # Image pipeline
    # ------------------------------------------------------------------

    def _render(self, page):
        """Rasterise one page to an 8-bit grayscale PIL image."""
        import fitz
        from PIL import Image

        pix = page.get_pixmap(dpi=self._dpi, colorspace=fitz.csGRAY, alpha=False)
        return Image.open(io.BytesIO(pix.tobytes("png"))).convert("L")

    def _preprocess(self, image):
        """Contrast rescale (clipped at white), then a hard threshold to 1-bit."""
        factor = self._contrast_factor
        threshold = self._binarize_threshold
        contrasted = image.point(lambda v: min(255, int(v * factor)))
        return contrasted.point(lambda v: 255 if v >= threshold else 0, mode="1")

    def _run_tesseract(self, image) -> str:
        import pytesseract

        with _OCR_ENGINE_LOCK:
            return pytesseract.image_to_string(
                image, lang=self._language, config=self.tesseract_config,
            )
