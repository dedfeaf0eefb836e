"""
LaTeX Helpers
=============
Preprocessing and question-environment detection for marked-up documents.

    1. strip_structural_noise: comments, preamble, title metadata, page breaks
    2. count_math_formulas / count_images / count_tables: statistics only
    3. find_question_environments: named environments in document order,
       falling back to list-item segmentation when none exist
    4. split_inline_numbering: puts "2." that follows a finished sentence on
       its own line so boundary detection sees it
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# ─── Noise Patterns ───────────────────────────────────────────────────────────

NOISE_PATTERNS = [
    re.compile(r"(?<!\\)%.*$", re.MULTILINE),
    re.compile(r"\\documentclass\s*(?:\[[^\]]*\])?\s*\{[^}]*\}"),
    re.compile(r"\\usepackage\s*(?:\[[^\]]*\])?\s*\{[^}]*\}"),
    re.compile(r"\\(?:begin|end)\s*\{document\}"),
    re.compile(r"\\(?:title|author|date)\s*\{[^}]*\}"),
    re.compile(r"\\(?:maketitle|tableofcontents|newpage|clearpage|pagebreak)\b"),
]

EXCESS_BLANK_LINES = re.compile(r"\n\s*\n(\s*\n)+")

# ─── Statistics Patterns ──────────────────────────────────────────────────────

# Order matters: each pattern's matches are removed before the next runs
MATH_PATTERNS = [
    re.compile(
        r"\\begin\{(equation|align|gather)(\*?)\}.*?\\end\{\1\2\}", re.DOTALL
    ),
    re.compile(r"\$\$.+?\$\$", re.DOTALL),
    re.compile(r"\\\[.*?\\\]", re.DOTALL),
    re.compile(r"\\\(.*?\\\)", re.DOTALL),
    re.compile(r"(?<![\\$])\$[^$]+\$"),
]

IMAGE_PATTERN = re.compile(r"\\includegraphics\b")
TABLE_PATTERN = re.compile(r"\\begin\{(?:tabular|tabularx|longtable)\*?\}")

# ─── Question Environments ────────────────────────────────────────────────────

QUESTION_ENVIRONMENTS = (
    "exercise", "question", "problem", "task", "assignment",
    "homework", "quiz", "test", "exam",
)

ENVIRONMENT_PATTERN = re.compile(
    r"\\begin\{(" + "|".join(QUESTION_ENVIRONMENTS) + r")\}"
    r"(?:\[[^\]]*\])?(.*?)\\end\{\1\}",
    re.DOTALL,
)

PLAIN_ITEM = re.compile(r"\\item\b(?!\s*\[)")
ANY_ITEM = re.compile(r"\\item\b")
LEADING_ITEM = re.compile(r"^\s*\\item\b\s*(?:\[[^\]]*\])?\s*")
TRAILING_END = re.compile(r"\s*\\end\s*\{[^}]*\}\s*$")

# "。 2. " or "? 3. ", never a decimal like "2.5"
INLINE_NUMBERING = re.compile(
    r"(?:(?<=[。？！；])[ \t]*|(?<=[.?!;])[ \t]+)(?=\d{1,3}\s*[.、．](?!\d))"
)


def strip_structural_noise(content: str) -> str:
    for pattern in NOISE_PATTERNS:
        content = pattern.sub("", content)
    return EXCESS_BLANK_LINES.sub("\n\n", content).strip()


def count_math_formulas(content: str) -> int:
    remaining = content
    total = 0
    for pattern in MATH_PATTERNS:
        total += len(pattern.findall(remaining))
        remaining = pattern.sub(" ", remaining)
    return total


def count_images(content: str) -> int:
    return len(IMAGE_PATTERN.findall(content))


def count_tables(content: str) -> int:
    return len(TABLE_PATTERN.findall(content))


def clean_environment(content: str, strip_label: bool = False) -> str:
    """Drop a leading ``\\item`` and any trailing ``\\end{...}`` lines."""
    if strip_label:
        content = LEADING_ITEM.sub("", content, count=1)
    else:
        content = re.sub(r"^\s*\\item\b(?!\s*\[)\s*", "", content, count=1)
    previous = None
    while previous != content:
        previous = content
        content = TRAILING_END.sub("", content)
    return content.strip()


def find_question_environments(content: str) -> tuple[list[str], bool]:
    """
    Question bodies in document order.

    Returns:
        (bodies, used_fallback). The fallback splits on top-level list items:
        plain ``\\item`` markers when any exist (bracketed items then stay
        with their parent as sub-questions), otherwise every ``\\item``.
    """
    bodies = [
        clean_environment(match.group(2))
        for match in ENVIRONMENT_PATTERN.finditer(content)
    ]
    if bodies:
        logger.debug(f"Found {len(bodies)} named question environments")
        return bodies, False

    markers = list(PLAIN_ITEM.finditer(content))
    strip_label = False
    if not markers:
        markers = list(ANY_ITEM.finditer(content))
        strip_label = True

    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(content)
        bodies.append(
            clean_environment(content[marker.start():end], strip_label=strip_label)
        )

    logger.debug(f"No named environments, split {len(bodies)} list items")
    return bodies, True


def split_inline_numbering(content: str) -> str:
    """Start every numbered question that follows a sentence on a new line."""
    return INLINE_NUMBERING.sub("\n", content)
