"""
Text Cleaner — OCR / native text normalisation
═══════════════════════════════════════════════

Turns raw page text into a single line of clean, prompt-ready text:

  1. split on newlines, trim each line
  2. drop empty lines, lines shorter than min_line_length, and separator
     lines (3+ repeated symbol characters such as "-----", "|||", "~~~")
  3. strip characters outside Unicode letters / numbers / punctuation /
     separators (OCR noise: box-drawing, control chars, stray symbols)
  4. collapse runs of whitespace to a single space
  5. join the surviving lines with a single space

The separator and length checks run again after normalisation, so
clean(clean(x)) == clean(x) for every input.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Optional

DEFAULT_SEPARATOR_PATTERN       = r".*[|/\\_~^*]{3,}.*"
DEFAULT_MULTIPLE_SPACES_PATTERN = r"\s{2,}"
DEFAULT_MIN_LINE_LENGTH         = 3

# Unicode major categories kept by the cleaner: Letter, Number, Punctuation, Separator
_ALLOWED_CATEGORIES = frozenset({"L", "N", "P", "Z"})


class TextCleaner:
    """Pure, stateless text normaliser. Safe to share between threads."""

    def __init__(
        self,
        separator_pattern: str = DEFAULT_SEPARATOR_PATTERN,
        min_line_length: int = DEFAULT_MIN_LINE_LENGTH,
        multiple_spaces_pattern: str = DEFAULT_MULTIPLE_SPACES_PATTERN,
    ) -> None:
        self._separator = re.compile(separator_pattern)
        self._multiple_spaces = re.compile(multiple_spaces_pattern)
        self._min_line_length = min_line_length

    @classmethod
    def from_settings(cls, settings) -> "TextCleaner":
        return cls(
            separator_pattern=settings.cleaner_separator_pattern,
            min_line_length=settings.cleaner_min_line_length,
            multiple_spaces_pattern=settings.cleaner_multiple_spaces_pattern,
        )

    def clean(self, raw_text: Optional[str]) -> str:
        if not raw_text or not raw_text.strip():
            return ""

        lines: list[str] = []
        for line in raw_text.split("\n"):
            line = line.strip()
            if not self._is_valid_line(line):
                continue
            line = self._normalize(line)
            # Stripping characters can shorten a line or glue symbols into a separator
            if self._is_valid_line(line):
                lines.append(line)

        return " ".join(lines)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_valid_line(self, line: str) -> bool:
        return (
            bool(line)
            and len(line) >= self._min_line_length
            and self._separator.fullmatch(line) is None
        )

    def _normalize(self, line: str) -> str:
        kept = "".join(
            ch for ch in line if unicodedata.category(ch)[0] in _ALLOWED_CATEGORIES
        )
        return self._multiple_spaces.sub(" ", kept).strip()
