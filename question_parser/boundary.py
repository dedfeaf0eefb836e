"""
Question Boundary Detector
==========================
Groups paragraphs (or OCR lines) into candidate question blocks based on
numbering anchors at the start of a unit.

Anchors:
    - "12." / "12、"                 (all paths)
    - "(3)" / "（3）"                (all paths)
    - "三、" / "十二."               (all paths)
    - "B." / "第4题" / "题目4" / "Question 4"   (OCR path only)

Units before the next anchor accumulate into the current block. Blocks
shorter than ``min_length`` characters are dropped as noise.

On the OCR path a letter anchor only opens a question when nothing numbered
is open. Under a numbered question, or inside a fragment the recognizer
labeled as a choice group, "A." lines are that question's options.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .classifier import TypeClassifier
from .models import QuestionBlock, WarningKind
from .report import ParseReport

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

NUMBER_PATTERN = re.compile(r"^\s*(\d+)\s*[.、．]")
PAREN_NUMBER_PATTERN = re.compile(r"^\s*[（(]\s*(\d+)\s*[）)]")
CHINESE_NUMBER_PATTERN = re.compile(r"^\s*([一二三四五六七八九十]+)\s*[.、．]")

# OCR output loses paragraph structure, so more anchor styles are trusted
LETTER_PATTERN = re.compile(r"^\s*([A-Z])\s*[.、．]")
ORDINAL_PATTERN = re.compile(r"^\s*第\s*(\d+)\s*题")
TITLED_PATTERN = re.compile(r"^\s*题目\s*(\d+)")
QUESTION_PATTERN = re.compile(r"^\s*Question\s*:?\s*(\d+)", re.IGNORECASE)

DOCUMENT_ANCHORS = (NUMBER_PATTERN, PAREN_NUMBER_PATTERN, CHINESE_NUMBER_PATTERN)
OCR_ANCHORS = DOCUMENT_ANCHORS + (
    ORDINAL_PATTERN,
    TITLED_PATTERN,
    QUESTION_PATTERN,
    LETTER_PATTERN,
)

# Headers, footers and page counters
IGNORE_PATTERNS = [
    re.compile(r"^\s*(Page\s*)?\d+\s*(/|of)\s*\d+\s*$", re.IGNORECASE),
    re.compile(r"^\s*第\s*\d+\s*页(\s*[,，]?\s*共\s*\d+\s*页)?\s*$"),
    re.compile(r"^\s*-\s*\d+\s*-\s*$"),
]

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")

MIN_BLOCK_LENGTH = 10

_CHINESE_DIGITS = {
    "一": 1, "二": 2, "三": 3, "四": 4, "五": 5,
    "六": 6, "七": 7, "八": 8, "九": 9,
}


def parse_chinese_numeral(text: str) -> Optional[int]:
    """Convert 一..九十九 to an int; None for anything else."""
    if not text:
        return None
    if "十" not in text:
        if len(text) == 1 and text in _CHINESE_DIGITS:
            return _CHINESE_DIGITS[text]
        return None
    tens, _, ones = text.partition("十")
    if tens and tens not in _CHINESE_DIGITS:
        return None
    if ones and ones not in _CHINESE_DIGITS:
        return None
    return _CHINESE_DIGITS.get(tens, 1) * 10 + _CHINESE_DIGITS.get(ones, 0)


def match_anchor(
    line: str, ocr_mode: bool = False
) -> Optional[tuple[re.Match, Optional[int]]]:
    """
    Return (match, order hint) when ``line`` opens a new question.

    Letter anchors match but carry no numeric hint.
    """
    anchors = OCR_ANCHORS if ocr_mode else DOCUMENT_ANCHORS
    for pattern in anchors:
        match = pattern.match(line)
        if not match:
            continue
        value = match.group(1)
        if pattern is CHINESE_NUMBER_PATTERN:
            return match, parse_chinese_numeral(value)
        if pattern is LETTER_PATTERN:
            return match, None
        return match, int(value)
    return None


def strip_numbering(text: str, ocr_mode: bool = False) -> str:
    """Remove one leading anchor from ``text``."""
    found = match_anchor(text, ocr_mode=ocr_mode)
    if not found:
        return text.strip()
    match, _ = found
    return text[match.end():].strip()


class QuestionBoundaryDetector:
    """
    Splits text into QuestionBlocks.

    Args:
        min_length: Blocks shorter than this are discarded.
        ocr_mode: Work on lines and trust the extra OCR anchor styles.
        keep_preamble: Keep text before the first anchor as its own block.
            Used where the input is expected to be one question without
            numbering (a selected area, an OCR fragment).
        split_lines: Work on lines instead of paragraphs without trusting
            the OCR anchors (LaTeX environment bodies).
        choice_group: Letter lines never open a new block (OCR fragments
            the recognizer labeled as multiple choice).
    """

    def __init__(
        self,
        min_length: int = MIN_BLOCK_LENGTH,
        ocr_mode: bool = False,
        keep_preamble: bool = False,
        classifier: Optional[TypeClassifier] = None,
        split_lines: bool = False,
        choice_group: bool = False,
    ):
        self.min_length = min_length
        self.ocr_mode = ocr_mode
        self.keep_preamble = keep_preamble
        self.split_lines = split_lines or ocr_mode
        self.choice_group = choice_group
        self.classifier = classifier or TypeClassifier()

    def split_units(self, text: str) -> list[str]:
        """Paragraphs for documents, lines for OCR text and LaTeX bodies."""
        if self.split_lines:
            units = text.split("\n")
        else:
            units = PARAGRAPH_SPLIT.split(text)
        return [u.strip() for u in units if u.strip()]

    def _is_option_line(self, unit: str, current) -> bool:
        if not self.ocr_mode or not LETTER_PATTERN.match(unit):
            return False
        if self.choice_group:
            return True
        return current is not None and current[1] is not None

    def detect_text(
        self, text: str, report: Optional[ParseReport] = None
    ) -> list[QuestionBlock]:
        return self.detect(self.split_units(text), report=report)

    def detect(
        self,
        units: list[str],
        report: Optional[ParseReport] = None,
    ) -> list[QuestionBlock]:
        """Group ``units`` into blocks in document order."""
        groups: list[tuple[Optional[str], Optional[int], list[str]]] = []
        current: Optional[tuple[Optional[str], Optional[int], list[str]]] = None

        for unit in units:
            unit = unit.strip()
            if not unit:
                continue
            if any(p.match(unit) for p in IGNORE_PATTERNS):
                continue

            found = match_anchor(unit, ocr_mode=self.ocr_mode)
            if found and self._is_option_line(unit, current):
                found = None
            if found:
                match, hint = found
                current = (match.group(0).strip(), hint, [unit])
                groups.append(current)
                continue

            if current is None:
                if not self.keep_preamble:
                    logger.debug(f"Skipping preamble text: {unit[:40]!r}")
                    continue
                current = (None, None, [])
                groups.append(current)

            current[2].append(unit)

        blocks: list[QuestionBlock] = []
        for index, (marker, hint, parts) in enumerate(groups):
            raw_text = "\n".join(parts)
            if len(raw_text.strip()) < self.min_length:
                if report is not None:
                    report.add_warning(
                        WarningKind.CONTENT,
                        f"Block {index + 1} discarded: shorter than "
                        f"{self.min_length} characters",
                        suggestion="Check that the numbering is not split "
                                   "away from the question text",
                    )
                continue

            blocks.append(QuestionBlock(
                raw_text=raw_text,
                candidate_type=self.classifier.classify(raw_text),
                order_hint=hint,
                marker=marker,
                index=index,
            ))

        logger.debug(f"Detected {len(blocks)} question blocks")
        return blocks
