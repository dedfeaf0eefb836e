"""
OCR Collaborator
================
Port, HTTP client and response flattening for the question-splitting OCR
service.

The service answers with nested groups:

    {"QuestionInfo": [
        {"ResultList": [
            {"Question": [{"Text": ..., "GroupType": ...}],
             "Option":   [{"Text": ...}],
             "Answer":   [{"Text": ...}],
             "Coord":    {"LeftTop": {"X": .., "Y": ..}, ...},
             "Text":     "flat text of the whole result",
             "ResultList": [ ...one nested level... ]}
        ]}
    ]}

``flatten_ocr_response`` turns that into a flat list of OCRFragmentText,
which the engine feeds through boundary detection, classification and
extraction before merging.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
from pydantic import BaseModel, Field

from .exceptions import RecognitionError
from .models import Point, QuestionType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Primary question text shorter than this falls back to the flat "Text" field
SPARSE_TEXT_THRESHOLD = 20

DEFAULT_FRAGMENT_CONFIDENCE = 80.0

GROUP_TYPES = {
    "multiple-choice": QuestionType.CHOICE,
    "fill-in-the-blank": QuestionType.FILL,
    "problem-solving": QuestionType.SOLUTION,
}

_CORNERS = ("LeftTop", "RightTop", "RightBottom", "LeftBottom")


# ─── Port ─────────────────────────────────────────────────────────────────────


class OCRPort(ABC):
    @abstractmethod
    def recognize(self, image_bytes: bytes) -> dict[str, Any]:
        """Return the raw nested OCR payload for one image."""


class HttpOCRClient(OCRPort):
    """Blocking JSON-over-HTTP client with an explicit timeout."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout

    def recognize(self, image_bytes: bytes) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            resp = requests.post(
                self.endpoint,
                json={"ImageBase64": base64.b64encode(image_bytes).decode("ascii")},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            raise RecognitionError(f"OCR request failed: {e}") from e
        except ValueError as e:
            raise RecognitionError(f"OCR returned invalid JSON: {e}") from e

        if isinstance(data, dict) and isinstance(data.get("Response"), dict):
            data = data["Response"]
        if not isinstance(data, dict):
            raise RecognitionError("OCR returned an unexpected payload")

        error = data.get("Error")
        if error:
            message = error.get("Message") if isinstance(error, dict) else error
            raise RecognitionError(f"OCR service error: {message}")

        return data


class MockOCRClient(OCRPort):
    """Returns canned payloads in order, repeating the last one."""

    def __init__(self, responses: Optional[list[dict[str, Any]]] = None):
        self.responses = responses or [{
            "QuestionInfo": [{
                "ResultList": [{
                    "Question": [{
                        "Text": "1. [mock] 已知函数f(x)=x^2，求f(2)的值。",
                        "GroupType": "problem-solving",
                    }],
                    "Option": [],
                    "Answer": [],
                }],
            }],
        }]
        self.calls = 0

    def recognize(self, image_bytes: bytes) -> dict[str, Any]:
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        return response


# ─── Flattening ───────────────────────────────────────────────────────────────


class OCRFragmentText(BaseModel):
    """One recognized question-like unit before extraction."""
    text: str
    options: list[str] = Field(default_factory=list)
    answers: list[str] = Field(default_factory=list)
    group_type: Optional[QuestionType] = None
    confidence: float = DEFAULT_FRAGMENT_CONFIDENCE
    coordinates: list[Point] = Field(default_factory=list)
    used_fallback_text: bool = False


def _texts(items: Any) -> list[str]:
    """Texts from a list of {"Text": ...} dicts or plain strings."""
    texts = []
    for item in items or []:
        if isinstance(item, dict):
            value = item.get("Text") or item.get("text") or ""
        else:
            value = str(item or "")
        if value.strip():
            texts.append(value.strip())
    return texts


def _coordinates(coord: Any) -> list[Point]:
    if not isinstance(coord, dict):
        return []
    points = []
    for corner in _CORNERS:
        point = coord.get(corner)
        if isinstance(point, dict) and "X" in point and "Y" in point:
            points.append(Point(x=point["X"], y=point["Y"]))
    return points


def _confidence(value: Any) -> float:
    if value is None:
        return DEFAULT_FRAGMENT_CONFIDENCE
    try:
        score = float(value)
    except (TypeError, ValueError):
        return DEFAULT_FRAGMENT_CONFIDENCE
    # Services report either 0-1 or 0-100
    return score * 100 if score <= 1 else score


def _fragment(result: dict[str, Any]) -> Optional[OCRFragmentText]:
    questions = result.get("Question") or []
    primary = "\n".join(_texts(questions))
    secondary = (result.get("Text") or "").strip()

    text = primary
    used_fallback = False
    if len(primary) < SPARSE_TEXT_THRESHOLD and len(secondary) > len(primary):
        text = secondary
        used_fallback = True

    options = _texts(result.get("Option"))
    answers = _texts(result.get("Answer"))
    if not text and not options:
        return None

    group_type = None
    for question in questions:
        if isinstance(question, dict) and question.get("GroupType"):
            group_type = GROUP_TYPES.get(str(question["GroupType"]).lower())
            break

    coordinates = _coordinates(result.get("Coord"))
    if not coordinates:
        for question in questions:
            if isinstance(question, dict):
                coordinates.extend(_coordinates(question.get("Coord")))

    return OCRFragmentText(
        text=text,
        options=options,
        answers=answers,
        group_type=group_type,
        confidence=_confidence(result.get("Confidence")),
        coordinates=coordinates,
        used_fallback_text=used_fallback,
    )


def flatten_ocr_response(payload: dict[str, Any]) -> list[OCRFragmentText]:
    """
    Flatten groups -> results (-> one nested result level) into fragments.

    A payload without groups but with a top-level ``Text`` yields a single
    fragment from that text.
    """
    if isinstance(payload.get("Response"), dict):
        payload = payload["Response"]

    fragments: list[OCRFragmentText] = []
    groups = payload.get("QuestionInfo") or []

    for group in groups:
        for result in group.get("ResultList") or []:
            fragment = _fragment(result)
            if fragment:
                fragments.append(fragment)
            for nested in result.get("ResultList") or []:
                nested_fragment = _fragment(nested)
                if nested_fragment:
                    fragments.append(nested_fragment)

    if not groups and (payload.get("Text") or "").strip():
        fragments.append(OCRFragmentText(
            text=payload["Text"].strip(),
            confidence=_confidence(payload.get("Confidence")),
            used_fallback_text=True,
        ))

    logger.debug(f"Flattened OCR payload into {len(fragments)} fragments")
    return fragments


def fragment_text_for_crop(payload: dict[str, Any]) -> str:
    """All recognized text of a payload, for area crops."""
    parts = []
    for fragment in flatten_ocr_response(payload):
        parts.append(fragment.text)
        parts.extend(fragment.options)
        parts.extend(f"答案：{answer}" for answer in fragment.answers)
    return "\n".join(p for p in parts if p)
