"""
Page Segmenter
==============
Splits raw extracted text into an ordered list of logical pages.

Separator patterns are tried in order; the first one that yields more than
one non-empty segment wins. When none does, the text is cut into
proportional chunks assuming a fixed page count. That fallback is a coarse
approximation and its page boundaries carry no layout meaning.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

# ─── Separator Patterns ───────────────────────────────────────────────────────

DEFAULT_SEPARATORS = (
    re.compile(r"\f"),
    re.compile(r"\n\s*第\s*\d+\s*页\s*\n"),
    re.compile(r"\n\s*Page\s*\d+\s*\n", re.IGNORECASE),
    re.compile(r"\n\s*-\s*\d+\s*-\s*\n"),
)

# Split before the command so the heading stays with its page
LATEX_SEPARATORS = (
    re.compile(r"(?=\\chapter\{)"),
    re.compile(r"(?=\\section\{)"),
    re.compile(r"\\(?:newpage|clearpage|pagebreak)\b"),
)

BLANK_LINE = re.compile(r"\n\s*\n")

ASSUMED_PAGE_COUNT = 3


class PageSegmenter:
    """
    Heuristic page splitter.

    Args:
        separators: Ordered separator patterns to try.
        fallback_unit: ``"line"`` or ``"paragraph"`` chunks for the
            proportional fallback.
        assumed_pages: Page count assumed by the fallback.
    """

    def __init__(
        self,
        separators: Sequence[re.Pattern] = DEFAULT_SEPARATORS,
        fallback_unit: str = "line",
        assumed_pages: int = ASSUMED_PAGE_COUNT,
    ):
        if fallback_unit not in ("line", "paragraph"):
            raise ValueError(f"Unknown fallback unit: {fallback_unit}")
        self.separators = tuple(separators)
        self.fallback_unit = fallback_unit
        self.assumed_pages = max(1, assumed_pages)

    @classmethod
    def for_latex(cls) -> "PageSegmenter":
        return cls(separators=LATEX_SEPARATORS)

    @classmethod
    def for_word(cls) -> "PageSegmenter":
        return cls(fallback_unit="paragraph")

    def split(self, text: str) -> list[str]:
        """Return the non-empty pages of ``text`` in document order."""
        if not text or not text.strip():
            return []

        for pattern in self.separators:
            pages = self._split_on(pattern, text)
            if pages is not None:
                logger.debug(
                    f"Split into {len(pages)} pages on /{pattern.pattern}/"
                )
                return pages

        pages = self._proportional_split(text)
        logger.debug(
            f"No page separator found, assumed {len(pages)} proportional pages"
        )
        return pages

    def _split_on(self, pattern: re.Pattern, text: str) -> Optional[list[str]]:
        segments = [s for s in pattern.split(text) if s.strip()]
        if len(segments) > 1:
            return segments
        return None

    def _proportional_split(self, text: str) -> list[str]:
        if self.fallback_unit == "paragraph":
            units = [p for p in BLANK_LINE.split(text) if p.strip()]
            joiner = "\n\n"
        else:
            units = text.split("\n")
            joiner = "\n"

        per_page = max(1, math.ceil(len(units) / self.assumed_pages))
        pages = []
        for start in range(0, len(units), per_page):
            chunk = joiner.join(units[start:start + per_page])
            if chunk.strip():
                pages.append(chunk)
        return pages


def estimate_page_count(text: str, chars_per_page: int = 2000) -> int:
    """Page estimate used when the extractor cannot report one."""
    return max(1, math.ceil(len(text) / chars_per_page))
