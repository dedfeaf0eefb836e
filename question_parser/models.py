"""
Data Models
===========
Pydantic models for the extraction pipeline.

Attributes are snake_case in Python; ``to_dict()`` / ``model_dump(by_alias=True)``
emits the camelCase keys consumed downstream (``pageCount``,
``mathFormulaCount``, ``subQuestions``, ``isCorrect``...).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

DEFAULT_CATEGORY = "数学"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Enums ────────────────────────────────────────────────────────────────────


class QuestionType(str, Enum):
    """Question formats recognized by the classifier."""
    CHOICE = "choice"
    FILL = "fill"
    SOLUTION = "solution"


class SubQuestionKind(str, Enum):
    """Marker family a sub-question was recovered from."""
    NUMERIC = "numeric"
    CIRCLED = "circled"
    ROMAN = "roman"
    ALPHABETIC = "alphabetic"
    CUSTOM = "custom"


class DocumentFormat(str, Enum):
    """Declared input formats, each with its own pipeline."""
    PDF = "pdf"
    WORD = "word"
    LATEX = "latex"
    TEXT = "text"
    IMAGE = "image"

    @classmethod
    def from_path(cls, path: str) -> Optional["DocumentFormat"]:
        """Guess the format from a file extension."""
        return _SUFFIX_FORMATS.get(Path(path).suffix.lower())


_SUFFIX_FORMATS = {
    ".pdf": DocumentFormat.PDF,
    ".docx": DocumentFormat.WORD,
    ".tex": DocumentFormat.LATEX,
    ".latex": DocumentFormat.LATEX,
    ".txt": DocumentFormat.TEXT,
    ".md": DocumentFormat.TEXT,
    ".png": DocumentFormat.IMAGE,
    ".jpg": DocumentFormat.IMAGE,
    ".jpeg": DocumentFormat.IMAGE,
    ".bmp": DocumentFormat.IMAGE,
    ".webp": DocumentFormat.IMAGE,
}


class ErrorKind(str, Enum):
    PARSING = "parsing"
    FORMAT = "format"
    CONTENT = "content"
    OCR = "ocr"
    AI = "ai"


class WarningKind(str, Enum):
    FORMAT = "format"
    CONTENT = "content"
    QUALITY = "quality"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Input Models ─────────────────────────────────────────────────────────────


class Point(CamelModel):
    x: float
    y: float


class Area(CamelModel):
    """
    A rectangular region of one page.

    Coordinates live on a fixed reference canvas (800 x 1000), not in the
    document's real units.
    """
    id: str
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    page_number: int = Field(default=1, description="1-based page index")
    label: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


# ─── Pipeline Models ──────────────────────────────────────────────────────────


class QuestionBlock(BaseModel):
    """Paragraphs/lines between two boundary markers. Never leaves a call."""
    raw_text: str
    candidate_type: QuestionType = QuestionType.SOLUTION
    order_hint: Optional[int] = None
    marker: Optional[str] = None
    index: int = 0


class SubQuestionUnit(CamelModel):
    """A labeled part nested inside one logical question."""
    id: str
    kind: SubQuestionKind
    order: int
    content: str
    answer: Optional[str] = None
    analysis: Optional[str] = None


class QuestionOption(CamelModel):
    key: Optional[str] = None
    text: str
    is_correct: bool = False


class ExtractedQuestion(CamelModel):
    """
    A fully extracted question record.

    ``options`` only survives validation for choice questions, and
    ``difficulty`` / ``confidence`` are clamped into [1,5] / [0,100].
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: QuestionType = QuestionType.SOLUTION
    stem: str = ""
    options: Optional[list[QuestionOption]] = None
    answer: Optional[str] = None
    analysis: Optional[str] = None
    sub_questions: Optional[list[SubQuestionUnit]] = None
    difficulty: int = 3
    category: str = DEFAULT_CATEGORY
    tags: set[str] = Field(default_factory=set)
    source: str = ""
    confidence: float = 0.0
    question_number: Optional[int] = None
    page_number: Optional[int] = None
    knowledge_points: list[str] = Field(default_factory=list)
    coordinates: list[Point] = Field(default_factory=list)
    fragment_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _clamp_difficulty(cls, value: Any) -> int:
        if value is None:
            return 3
        return max(1, min(5, int(round(float(value)))))

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value is None:
            return 0.0
        return max(0.0, min(100.0, float(value)))

    @model_validator(mode="after")
    def _options_only_for_choice(self) -> "ExtractedQuestion":
        if self.type != QuestionType.CHOICE or not self.options:
            self.options = None
        return self

    @field_serializer("tags")
    def _serialize_tags(self, tags: set[str]) -> list[str]:
        return sorted(tags)

    @computed_field(alias="hasAnswer")
    @property
    def has_answer(self) -> bool:
        return bool(self.answer and self.answer.strip())


# ─── Result Models ────────────────────────────────────────────────────────────


class ErrorEntry(CamelModel):
    id: str
    kind: ErrorKind
    message: str
    severity: Severity = Severity.ERROR


class WarningEntry(CamelModel):
    id: str
    kind: WarningKind
    message: str
    suggestion: str = ""


class SourceMetadata(CamelModel):
    """Where a result came from and which parser produced it."""
    source: str = ""
    format: Optional[DocumentFormat] = None
    parser_version: str = "1.0.0"
    parse_timestamp: str = Field(
        default_factory=lambda: _utcnow().isoformat()
    )
    file_hash: str = ""


class ParseResult(CamelModel):
    """
    Complete output of one engine call.
    ``to_dict()`` is the stable, JSON-ready shape handed to callers.
    """
    questions: list[ExtractedQuestion] = Field(default_factory=list)
    page_count: int = 0
    math_formula_count: int = 0
    image_count: int = 0
    table_count: int = 0
    confidence: float = 0.0
    errors: list[ErrorEntry] = Field(default_factory=list)
    warnings: list[WarningEntry] = Field(default_factory=list)
    metadata: SourceMetadata = Field(default_factory=SourceMetadata)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
