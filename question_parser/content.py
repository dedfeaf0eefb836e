"""
Content Extractor
=================
Pulls the stem, options, answer and analysis out of one question block
using labeled-prefix patterns.

This is textual extraction only: an answer is whatever follows an answer
label, whether or not it names one of the extracted options.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from .boundary import strip_numbering
from .models import QuestionOption, QuestionType

logger = logging.getLogger(__name__)

# ─── Label Patterns ───────────────────────────────────────────────────────────

_ANSWER_LABEL = (
    r"(?:参考答案|答案|解答|(?<![A-Za-z])(?:answer|ans|solution)|答|解)"
)
_ANALYSIS_LABEL = (
    r"(?:解析|分析|说明|详解|(?<![A-Za-z])(?:analysis|explanation|rationale))"
)

# Rest of the line, stopping early at an inline analysis label
ANSWER_PATTERN = re.compile(
    _ANSWER_LABEL + r"\s*[:：][ \t]*(.+?)[ \t]*(?=" + _ANALYSIS_LABEL
    + r"\s*[:：]|$)",
    re.IGNORECASE | re.MULTILINE,
)

# Everything up to the next answer label or the end of the block
ANALYSIS_PATTERN = re.compile(
    _ANALYSIS_LABEL + r"\s*[:：]\s*(.+?)\s*(?=" + _ANSWER_LABEL
    + r"\s*[:：]|\Z)",
    re.IGNORECASE | re.DOTALL,
)

ANY_LABEL_PATTERN = re.compile(
    r"(?:" + _ANSWER_LABEL + r"|" + _ANALYSIS_LABEL + r")\s*[:：]",
    re.IGNORECASE,
)

# "A." "B、" "C)" or "(D)"
OPTION_MARKER_PATTERN = re.compile(
    r"(?<![A-Za-z0-9])([A-D])\s*[.、．)）]|[（(]\s*([A-D])\s*[）)]"
)

# Answer made only of option letters: "B", "A、C", "A, B, D"
LETTER_ANSWER_PATTERN = re.compile(r"^[A-D](?:\s*[,，、/\s]\s*[A-D])*$")


class ExtractedContent(BaseModel):
    stem: str = ""
    options: list[QuestionOption] = Field(default_factory=list)
    answer: Optional[str] = None
    analysis: Optional[str] = None


class ContentExtractor:
    """
    Splits one block into its labeled parts.

    Args:
        ocr_mode: Strip OCR-style numbering ("第3题", "Question 3") from stems.
    """

    def __init__(self, ocr_mode: bool = False):
        self.ocr_mode = ocr_mode

    def extract(
        self, text: str, question_type: QuestionType
    ) -> ExtractedContent:
        body = self.body_of(text)

        options: list[QuestionOption] = []
        if question_type == QuestionType.CHOICE:
            options = self.extract_options(body)

        answer = self.extract_answer(text)
        if answer and options:
            self.mark_correct(options, answer)

        return ExtractedContent(
            stem=self.clean_stem(body, question_type),
            options=options,
            answer=answer,
            analysis=self.extract_analysis(text),
        )

    def extract_answer(self, text: str) -> Optional[str]:
        match = ANSWER_PATTERN.search(text)
        if not match:
            return None
        return match.group(1).strip() or None

    def extract_analysis(self, text: str) -> Optional[str]:
        match = ANALYSIS_PATTERN.search(text)
        if not match:
            return None
        return match.group(1).strip() or None

    def extract_options(self, text: str) -> list[QuestionOption]:
        """Option texts between consecutive A-D markers, in order."""
        markers = list(OPTION_MARKER_PATTERN.finditer(text))
        options: list[QuestionOption] = []

        for i, marker in enumerate(markers):
            key = marker.group(1) or marker.group(2)
            end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
            segment = text[marker.end():end]
            if i + 1 == len(markers):
                segment = segment.split("\n", 1)[0]
            option_text = " ".join(segment.split())
            if not option_text:
                continue
            options.append(QuestionOption(key=key, text=option_text))

        return options

    def clean_stem(self, text: str, question_type: QuestionType) -> str:
        stem = strip_numbering(text, ocr_mode=self.ocr_mode)
        if question_type == QuestionType.CHOICE:
            first = OPTION_MARKER_PATTERN.search(stem)
            if first and stem[:first.start()].strip():
                stem = stem[:first.start()]
        return stem.strip()

    @staticmethod
    def body_of(text: str) -> str:
        """The block without its answer/analysis sections."""
        label = ANY_LABEL_PATTERN.search(text)
        if label:
            return text[:label.start()]
        return text

    @staticmethod
    def mark_correct(options: list[QuestionOption], answer: str):
        compact = answer.strip().rstrip("。.")
        if not LETTER_ANSWER_PATTERN.match(compact):
            return
        keys = set(re.findall(r"[A-D]", compact))
        for option in options:
            if option.key in keys:
                option.is_correct = True
