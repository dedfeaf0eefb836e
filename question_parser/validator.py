"""
Validation Engine
=================
Post-parse quality checks.

After a document is assembled, records warnings for:
    - No questions detected
    - Questions missing an answer
    - Choice questions with fewer than two options
    - Duplicate question numbers
    - Missing question numbers (gaps in sequence)

and logs a summary report. Nothing is dropped or rewritten here.
"""

from __future__ import annotations

import logging
from collections import Counter

from .models import ExtractedQuestion, QuestionType, WarningKind
from .report import ParseReport

logger = logging.getLogger(__name__)

# Numbering spread wider than this many times the question count is not a
# sequence with gaps (a year such as "2023." was read as a number)
MAX_GAP_SPREAD = 3


class ValidationEngine:
    """Inspects extracted questions and reports problems as warnings."""

    def validate(
        self,
        questions: list[ExtractedQuestion],
        report: ParseReport,
    ) -> ParseReport:
        """
        Run all checks on ``questions``.

        Args:
            questions: Final question list of one parse call.
            report: The call's accumulator; warnings are appended to it.

        Returns:
            The same report, for chaining.
        """
        if not questions:
            report.add_warning(
                WarningKind.QUALITY,
                "No questions detected",
                suggestion="Check that questions are numbered (1. / (1) / 一、) "
                           "or wrapped in a question environment",
                entry_id="no_questions",
            )
            logger.warning("No questions to validate")
            return report

        missing_answer = []
        few_options = []
        for position, q in enumerate(questions, start=1):
            label = q.question_number if q.question_number is not None else position
            if not q.has_answer:
                missing_answer.append(label)
            if q.type == QuestionType.CHOICE and len(q.options or []) < 2:
                few_options.append(label)

        if missing_answer:
            report.add_warning(
                WarningKind.CONTENT,
                f"{len(missing_answer)} question(s) have no answer: "
                f"{missing_answer}",
                suggestion="Label answers with 答案： or Answer:",
                entry_id="missing_answer",
            )

        if few_options:
            report.add_warning(
                WarningKind.FORMAT,
                f"{len(few_options)} choice question(s) have fewer than two "
                f"options: {few_options}",
                suggestion="Options should start with A. / B、 / (C)",
                entry_id="few_options",
            )

        numbers = [
            q.question_number for q in questions
            if q.question_number is not None
        ]
        counts = Counter(numbers)
        duplicates = sorted(n for n, c in counts.items() if c > 1)
        missing_numbers: list[int] = []
        if numbers:
            spread = max(numbers) - min(numbers) + 1
            if spread <= MAX_GAP_SPREAD * len(counts):
                expected = set(range(min(numbers), max(numbers) + 1))
                missing_numbers = sorted(expected - set(numbers))
            else:
                logger.debug(
                    f"Skipping gap check: numbers span {spread} values "
                    f"for {len(counts)} questions"
                )

        if duplicates:
            report.add_warning(
                WarningKind.QUALITY,
                f"Duplicate question numbers: {duplicates}",
                suggestion="Sections may restart numbering; review the order",
                entry_id="duplicate_numbers",
            )
        if missing_numbers:
            report.add_warning(
                WarningKind.QUALITY,
                f"Missing question numbers: {missing_numbers}",
                suggestion="Some questions may have been merged or dropped",
                entry_id="missing_numbers",
            )

        # Log summary
        logger.info("=" * 60)
        logger.info("VALIDATION REPORT")
        logger.info("=" * 60)
        logger.info(f"Total Questions Detected: {len(questions)}")
        logger.info(f"Questions Missing Answer: {len(missing_answer)}")
        logger.info(f"Choice Questions With <2 Options: {len(few_options)}")
        logger.info(f"Duplicate Question Numbers: {len(duplicates)}")
        logger.info(f"Missing Question Numbers: {len(missing_numbers)}")
        logger.info(f"Errors Recorded: {len(report.errors)}")
        logger.info("=" * 60)

        return report
