"""
Area Mapper
===========
Maps a canvas rectangle onto a substring of one page's text.

There is no real page geometry at this stage, only an assumed reference
canvas (800 x 1000). A region's vertical extent selects a proportional
slice of the page's non-empty lines; narrow regions additionally crop each
line by a proportional character range. Results are approximations.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from pydantic import BaseModel

from .models import Area

logger = logging.getLogger(__name__)

REFERENCE_WIDTH = 800
REFERENCE_HEIGHT = 1000

# Regions narrower than this fraction of the canvas get a column crop
NARROW_WIDTH_RATIO = 0.3


def _clamp01(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


class AreaText(BaseModel):
    """Text resolved for one area, plus why it may be empty."""
    area_id: str
    page_number: int
    text: str = ""
    out_of_range: bool = False
    message: Optional[str] = None


class AreaMapper:
    """Proportional region-to-text mapping over already segmented pages."""

    def __init__(
        self,
        reference_width: float = REFERENCE_WIDTH,
        reference_height: float = REFERENCE_HEIGHT,
    ):
        self.reference_width = reference_width
        self.reference_height = reference_height

    def map_area(self, pages: list[str], area: Area) -> AreaText:
        """
        Resolve ``area`` against ``pages``. Never raises.

        An out-of-range page number returns empty text with
        ``out_of_range`` set so the caller can record it.
        """
        page_count = len(pages)
        if not 1 <= area.page_number <= page_count:
            message = (
                f"area {area.id} page index out of range "
                f"({area.page_number} not in 1..{page_count})"
            )
            logger.debug(message)
            return AreaText(
                area_id=area.id,
                page_number=area.page_number,
                out_of_range=True,
                message=message,
            )

        text = self.crop_page(pages[area.page_number - 1], area)
        return AreaText(
            area_id=area.id,
            page_number=area.page_number,
            text=text,
            message=None if text.strip() else f"area {area.id} content is empty",
        )

    def crop_page(self, page_text: str, area: Area) -> str:
        """Select the proportional line range (and column crop) of one page."""
        lines = [line for line in page_text.split("\n") if line.strip()]
        n = len(lines)
        if n == 0:
            return ""

        rel_x = _clamp01(area.x / self.reference_width)
        rel_w = _clamp01(area.width / self.reference_width)
        rel_y = _clamp01(area.y / self.reference_height)
        rel_h = _clamp01(area.height / self.reference_height)

        start = math.floor(rel_y * n)
        end = math.floor((rel_y + rel_h) * n)
        safe_start = max(0, min(start, n - 1))
        safe_end = max(safe_start, min(end, n))
        selected = lines[safe_start:safe_end]

        if rel_w < NARROW_WIDTH_RATIO:
            selected = [self._crop_line(line, rel_x, rel_w) for line in selected]

        return "\n".join(selected)

    @staticmethod
    def _crop_line(line: str, rel_x: float, rel_w: float) -> str:
        length = len(line)
        start = math.floor(rel_x * length)
        end = math.floor((rel_x + rel_w) * length)
        return line[start:end]
