"""
Sub-question Parser
===================
Recovers labeled sub-items from one LaTeX question environment.

Five marker families are scanned independently over the same content:

    numeric      \\item[(1)]               order = 1
    circled      \\item[\\textcircled{2}]   order = 2   (also \\item[②])
    roman        \\item[\\roman*]           order = position in family (0-based)
    alphabetic   \\item[\\alph*]            order = position in family (0-based)
    custom       \\item[<anything else>]   order = position in family (0-based)

Roman, alphabetic and custom orders are scan positions, not the value of
the label. When families are mixed in one environment the merged order can
therefore disagree with the printed sequence.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from .content import ContentExtractor
from .models import SubQuestionKind, SubQuestionUnit

logger = logging.getLogger(__name__)

# ─── Marker Families ──────────────────────────────────────────────────────────

NUMERIC_MARKER = re.compile(r"\\item\s*\[\s*[（(]\s*(\d+)\s*[）)]\s*\]")
CIRCLED_MARKER = re.compile(
    r"\\item\s*\[\s*(?:\\textcircled\s*\{\s*(\d+)\s*\}|([\u2460-\u2473]))\s*\]"
)
ROMAN_MARKER = re.compile(r"\\item\s*\[\s*\\[Rr]oman\*?\s*\]")
ALPHABETIC_MARKER = re.compile(r"\\item\s*\[\s*\\[Aa]lph\*?\s*\]")
CUSTOM_MARKER = re.compile(r"\\item\s*\[([^\]]+)\]")

# A sub-item runs until the next item or the end of the enclosing list
ITEM_END = re.compile(r"\\item\b|\\end\s*\{")

LIST_WRAPPER = re.compile(
    r"\\(?:begin|end)\s*\{(?:enumerate|itemize|description)\}(?:\[[^\]]*\])?"
)

_ROMAN_NUMERALS = [
    (1000, "m"), (900, "cm"), (500, "d"), (400, "cd"),
    (100, "c"), (90, "xc"), (50, "l"), (40, "xl"),
    (10, "x"), (9, "ix"), (5, "v"), (4, "iv"), (1, "i"),
]


def to_roman(number: int) -> str:
    result = []
    for value, numeral in _ROMAN_NUMERALS:
        while number >= value:
            result.append(numeral)
            number -= value
    return "".join(result)


def to_alphabetic(index: int) -> str:
    """0 -> a, 25 -> z, 26 -> aa."""
    label = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        label = chr(97 + remainder) + label
    return label


class SubQuestionResult(BaseModel):
    units: list[SubQuestionUnit] = Field(default_factory=list)
    main_content: str = ""


class SubQuestionParser:
    """Scans one environment's raw content for labeled sub-items."""

    def __init__(self, extractor: Optional[ContentExtractor] = None):
        self.extractor = extractor or ContentExtractor()

    def parse(self, content: str) -> SubQuestionResult:
        units: list[SubQuestionUnit] = []
        spans: list[tuple[int, int]] = []
        claimed: set[int] = set()

        # Fixed families first so the catch-all can skip their markers
        for match in NUMERIC_MARKER.finditer(content):
            number = int(match.group(1))
            unit = self._build(
                content, match, SubQuestionKind.NUMERIC, str(number), number,
                spans,
            )
            claimed.add(match.start())
            if unit:
                units.append(unit)

        for match in CIRCLED_MARKER.finditer(content):
            if match.group(1):
                number = int(match.group(1))
            else:
                number = ord(match.group(2)) - 0x2460 + 1
            unit = self._build(
                content, match, SubQuestionKind.CIRCLED, str(number), number,
                spans,
            )
            claimed.add(match.start())
            if unit:
                units.append(unit)

        for index, match in enumerate(ROMAN_MARKER.finditer(content)):
            unit = self._build(
                content, match, SubQuestionKind.ROMAN, to_roman(index + 1),
                index, spans,
            )
            claimed.add(match.start())
            if unit:
                units.append(unit)

        for index, match in enumerate(ALPHABETIC_MARKER.finditer(content)):
            unit = self._build(
                content, match, SubQuestionKind.ALPHABETIC,
                to_alphabetic(index), index, spans,
            )
            claimed.add(match.start())
            if unit:
                units.append(unit)

        custom_matches = [
            m for m in CUSTOM_MARKER.finditer(content)
            if m.start() not in claimed
        ]
        for index, match in enumerate(custom_matches):
            unit = self._build(
                content, match, SubQuestionKind.CUSTOM,
                match.group(1).strip(), index, spans,
            )
            if unit:
                units.append(unit)

        # sorted() is stable: equal orders keep family then scan order
        units = sorted(units, key=lambda u: u.order)

        if units:
            logger.debug(
                f"Found {len(units)} sub-questions: "
                f"{[u.id for u in units]}"
            )

        return SubQuestionResult(
            units=units,
            main_content=self._remove_spans(content, spans),
        )

    def _build(
        self,
        content: str,
        match: re.Match,
        kind: SubQuestionKind,
        unit_id: str,
        order: int,
        spans: list[tuple[int, int]],
    ) -> Optional[SubQuestionUnit]:
        end_match = ITEM_END.search(content, match.end())
        end = end_match.start() if end_match else len(content)
        spans.append((match.start(), end))

        raw = content[match.end():end].strip()
        body = self.extractor.body_of(raw).strip()
        if not body:
            return None

        return SubQuestionUnit(
            id=unit_id,
            kind=kind,
            order=order,
            content=body,
            answer=self.extractor.extract_answer(raw),
            analysis=self.extractor.extract_analysis(raw),
        )

    @staticmethod
    def _remove_spans(content: str, spans: list[tuple[int, int]]) -> str:
        if not spans:
            return content.strip()
        pieces = []
        cursor = 0
        for start, end in sorted(spans):
            if start < cursor:
                continue
            pieces.append(content[cursor:start])
            cursor = end
        pieces.append(content[cursor:])
        main = LIST_WRAPPER.sub("", "".join(pieces))
        return "\n".join(
            line.rstrip() for line in main.split("\n") if line.strip()
        )
