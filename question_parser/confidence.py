"""
Confidence Estimator
====================
Heuristic 0-100 trust score from question count and text volume.

    confidence = round((min(95, count * 10) + min(100, length / 1000)) / 2)

This is an ordinal signal for sorting and triage, not a probability that
the extraction is correct.
"""

from __future__ import annotations

import math

MAX_COUNT_SCORE = 95
COUNT_WEIGHT = 10
MAX_LENGTH_SCORE = 100
CHARS_PER_POINT = 1000


class ConfidenceEstimator:

    def estimate(self, question_count: int, text_length: int) -> int:
        if question_count <= 0:
            return 0
        count_score = min(MAX_COUNT_SCORE, question_count * COUNT_WEIGHT)
        length_score = min(MAX_LENGTH_SCORE, max(0, text_length) / CHARS_PER_POINT)
        # Half-up rounding; round() would round 0.5 to even
        return int(math.floor((count_score + length_score) / 2 + 0.5))
