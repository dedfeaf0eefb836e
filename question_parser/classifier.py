"""
Type Classifier
===============
Lexical classification of question blocks plus the cheap per-question
heuristics (difficulty, category, knowledge points, tags).

Rule order matters: option markers are checked before blank markers
because choice questions frequently contain an empty "（ ）" for the
answer letter.
"""

from __future__ import annotations

import re

from .models import DEFAULT_CATEGORY, QuestionType

# ─── Marker Patterns ──────────────────────────────────────────────────────────

CHOICE_PATTERNS = [
    re.compile(r"(?<![A-Za-z0-9])[A-D]\s*[.、．)）]"),  # A.  B、  C)
    re.compile(r"[（(]\s*[A-D]\s*[）)]"),                 # (A)  （B）
    re.compile(r"[①②③④]"),
    re.compile(r"\\choice\b"),
    re.compile(r"选择"),
]

FILL_PATTERNS = [
    re.compile(r"_{2,}|＿{2,}"),
    re.compile(r"[（(]\s*[）)]"),
    re.compile(r"\\(?:fill|blank)\b"),
    re.compile(r"\\(?:underline|boxed)\s*\{"),
    re.compile(r"填空"),
]

# ─── Heuristic Vocabularies ───────────────────────────────────────────────────

CATEGORY_KEYWORDS = [
    ("函数", "函数"),
    ("导数", "导数"),
    ("积分", "积分"),
    ("极限", "极限"),
    ("方程", "方程"),
    ("不等式", "不等式"),
    ("几何", "几何"),
    ("代数", "代数"),
]

KNOWLEDGE_POINTS = [
    "函数", "导数", "积分", "极限", "数列", "概率",
    "统计", "几何", "代数", "三角", "解析几何",
]

KIND_TAGS = [
    (re.compile(r"计算|求值|求解"), "计算题"),
    (re.compile(r"证明|求证"), "证明题"),
    (re.compile(r"应用|实际"), "应用题"),
]


class TypeClassifier:
    """Pure function of text: same block, same type."""

    def classify(self, text: str) -> QuestionType:
        if any(p.search(text) for p in CHOICE_PATTERNS):
            return QuestionType.CHOICE
        if any(p.search(text) for p in FILL_PATTERNS):
            return QuestionType.FILL
        return QuestionType.SOLUTION


def estimate_difficulty(text: str) -> int:
    """Keyword/length score around 3, rounded half up and clamped to [1,5]."""
    score = 3.0
    if re.search(r"简单|基础", text):
        score -= 1
    if re.search(r"困难|复杂|综合", text):
        score += 1
    if re.search(r"证明|推导", text):
        score += 1
    if re.search(r"计算|运算", text):
        score += 0.5
    if len(text) > 200:
        score += 0.5
    if len(text) > 500:
        score += 0.5
    return max(1, min(5, int(score + 0.5)))


def classify_category(text: str) -> str:
    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in text:
            return category
    return DEFAULT_CATEGORY


def extract_knowledge_points(text: str) -> list[str]:
    return [point for point in KNOWLEDGE_POINTS if point in text]


def difficulty_tag(difficulty: int) -> str:
    if difficulty <= 2:
        return "简单"
    if difficulty >= 4:
        return "困难"
    return "中等"


def extract_tags(text: str, difficulty: int) -> set[str]:
    tags = set(extract_knowledge_points(text))
    tags.add(difficulty_tag(difficulty))
    for pattern, tag in KIND_TAGS:
        if pattern.search(text):
            tags.add(tag)
    return tags
