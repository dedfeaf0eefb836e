"""
OCR Group Merger
================
Re-assembles question fragments that the recognizer emitted separately
(typically one fragment per numbered sub-item) into logical questions.

Algorithm:
    1. Sort fragments by leading numeral (missing numeral sorts as 0).
    2. Walk adjacent pairs and open a new group when any boundary rule
       fires: missing numeral, numeral gap > 1, a solution/fill fragment
       followed by a choice fragment, or stem similarity below 0.3.
    3. Collapse each multi-member group into one ExtractedQuestion.

Merged records carry ``fragment_ids`` and are never merged again, so
running the merger over its own output changes nothing.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import DEFAULT_CATEGORY, ExtractedQuestion, QuestionType

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.3

# Only CJK ideographs and ASCII alphanumerics count towards similarity
_NON_CONTENT = re.compile(r"[^0-9A-Za-z\u4e00-\u9fff]")

_INCOMPATIBLE_FOLLOWERS = {
    QuestionType.SOLUTION: QuestionType.CHOICE,
    QuestionType.FILL: QuestionType.CHOICE,
}


def content_similarity(first: str, second: str) -> float:
    """Jaccard ratio of the two stems' character sets."""
    a = set(_NON_CONTENT.sub("", first or ""))
    b = set(_NON_CONTENT.sub("", second or ""))
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def _sort_key(question: ExtractedQuestion) -> int:
    return question.question_number if question.question_number is not None else 0


def _unique(items) -> list:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class OCRGroupMerger:
    """Groups and merges OCR fragments. Holds no per-call state."""

    def __init__(self, similarity_threshold: float = SIMILARITY_THRESHOLD):
        self.similarity_threshold = similarity_threshold

    def merge(self, fragments: list[ExtractedQuestion]) -> list[ExtractedQuestion]:
        if not fragments:
            return []

        ordered = sorted(fragments, key=_sort_key)
        groups: list[list[ExtractedQuestion]] = [[ordered[0]]]

        for current, following in zip(ordered, ordered[1:]):
            reason = self.boundary_reason(current, following)
            if reason:
                logger.debug(
                    f"Boundary between #{current.question_number} and "
                    f"#{following.question_number}: {reason}"
                )
                groups.append([following])
            else:
                groups[-1].append(following)

        merged = [
            group[0] if len(group) == 1 else self.merge_group(group)
            for group in groups
        ]
        logger.info(
            f"Merged {len(fragments)} fragments into {len(merged)} questions"
        )
        return merged

    def boundary_reason(
        self, current: ExtractedQuestion, following: ExtractedQuestion
    ) -> Optional[str]:
        """Name of the first rule that separates the pair, or None to merge."""
        if current.fragment_ids or following.fragment_ids:
            return "already merged"

        if current.question_number is None or following.question_number is None:
            return "missing numeral"

        if following.question_number - current.question_number > 1:
            return "numeral gap"

        if _INCOMPATIBLE_FOLLOWERS.get(current.type) == following.type:
            return "type discontinuity"

        similarity = content_similarity(current.stem, following.stem)
        if similarity < self.similarity_threshold:
            return f"low similarity ({similarity:.2f})"

        return None

    def merge_group(self, group: list[ExtractedQuestion]) -> ExtractedQuestion:
        numbers = [q.question_number for q in group]

        stem = "\n".join(
            f"({q.question_number}) {q.stem.strip()}"
            for q in group
        )

        types = {q.type for q in group}
        question_type = types.pop() if len(types) == 1 else QuestionType.SOLUTION

        options = [opt for q in group for opt in (q.options or [])]
        answers = [q.answer.strip() for q in group if q.answer and q.answer.strip()]
        analyses = [
            q.analysis.strip() for q in group if q.analysis and q.analysis.strip()
        ]
        sub_questions = [sq for q in group for sq in (q.sub_questions or [])]

        category = next(
            (q.category for q in group if q.category and q.category != DEFAULT_CATEGORY),
            DEFAULT_CATEGORY,
        )
        source = next((q.source for q in group if q.source), "")

        return ExtractedQuestion(
            id="merged_" + "_".join(str(n) for n in numbers),
            type=question_type,
            stem=stem,
            options=options or None,
            answer="\n".join(answers) or None,
            analysis="\n".join(analyses) or None,
            sub_questions=sub_questions or None,
            difficulty=max(q.difficulty for q in group),
            category=category,
            tags=set().union(*(q.tags for q in group)),
            source=source,
            confidence=min(q.confidence for q in group),
            question_number=numbers[0],
            page_number=next(
                (q.page_number for q in group if q.page_number is not None), None
            ),
            knowledge_points=_unique(
                kp for q in group for kp in q.knowledge_points
            ),
            coordinates=[c for q in group for c in q.coordinates],
            fragment_ids=[q.id for q in group],
        )
