"""
LLM Collaborator
================
Chat-completions client used to clean up OCR text into LaTeX and,
optionally, to recognize choice questions.

Every public LatexCorrector method fails soft: on timeout, HTTP error or
an unusable answer it returns the input text (or None) instead of raising.

Structured answers are parsed strictly with ``json.loads`` first. The
pattern-based ``extract_choice_fields_leniently`` fallback only runs when
the caller enables it, and is importable on its own for testing.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
from pydantic import BaseModel, Field

from .exceptions import CorrectionError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.deepseek.com/v1"
DEFAULT_MODEL = "deepseek-chat"
DEFAULT_TIMEOUT = 180
DEFAULT_TEMPERATURE = 0.1

CORRECTION_PROMPT = """You convert OCR output of math exam questions into clean LaTeX.
Keep the wording and numbering exactly; only fix recognition errors and
wrap formulas in $...$. Return the corrected text only, without comments.

Text:
{text}"""

CHOICE_PROMPT = """Decide whether the following math question is a multiple-choice question.
Answer with a single JSON object and nothing else:
{{"isChoiceQuestion": true/false, "questionContent": "...", "options": ["...", "..."]}}
If it is not a choice question, questionContent is the full text and options is [].

Question:
{text}"""

FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


# ─── Port ─────────────────────────────────────────────────────────────────────


class LLMPort(ABC):
    @abstractmethod
    def complete(self, prompt: str) -> str:
        """Return the model's text answer for ``prompt``."""


class HttpLLMClient(LLMPort):
    """OpenAI-compatible ``/chat/completions`` client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

    def complete(self, prompt: str) -> str:
        try:
            resp = requests.post(
                f"{self.base_url}/chat/completions",
                json={
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self.temperature,
                },
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]["content"].strip()
        except requests.exceptions.RequestException as e:
            raise CorrectionError(f"LLM request failed: {e}") from e
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise CorrectionError(f"LLM returned an unexpected payload: {e}") from e


# ─── Structured Answers ───────────────────────────────────────────────────────


class ChoiceRecognition(BaseModel):
    is_choice_question: bool = False
    question_content: str = ""
    options: list[str] = Field(default_factory=list)
    lenient: bool = False


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except ValueError:
        return value.replace('\\"', '"').replace("\\\\", "\\")


def extract_choice_fields_leniently(content: str) -> dict[str, Any]:
    """
    Recover choice-recognition fields from malformed JSON-ish text.

    Typical breakage is unescaped LaTeX backslashes, which ``json.loads``
    rejects. Only keys that are actually found end up in the result.
    """
    result: dict[str, Any] = {}

    flag = re.search(r'"isChoiceQuestion"\s*:\s*(true|false)', content, re.IGNORECASE)
    if flag:
        result["isChoiceQuestion"] = flag.group(1).lower() == "true"

    text = re.search(r'"questionContent"\s*:\s*"((?:[^"\\]|\\.)*)"', content, re.DOTALL)
    if text:
        result["questionContent"] = _unescape(text.group(1))

    options = re.search(r'"options"\s*:\s*\[(.*?)\]', content, re.DOTALL)
    if options:
        result["options"] = [
            _unescape(item)
            for item in re.findall(r'"((?:[^"\\]|\\.)*)"', options.group(1))
        ]

    return result


def _strict_load(content: str) -> dict[str, Any]:
    fenced = FENCED_JSON.search(content)
    candidate = fenced.group(1) if fenced else content
    data = json.loads(candidate.strip())
    if not isinstance(data, dict):
        raise ValueError("top-level JSON value is not an object")
    return data


def parse_choice_payload(content: str, lenient: bool = False) -> ChoiceRecognition:
    """
    Parse the model's answer to CHOICE_PROMPT.

    Raises:
        CorrectionError: If strict parsing fails and ``lenient`` is off,
            or the lenient extractor finds nothing either.
    """
    used_fallback = False
    try:
        data = _strict_load(content)
    except ValueError as e:
        if not lenient:
            raise CorrectionError(f"LLM answer is not valid JSON: {e}") from e
        logger.warning("LLM answer is not valid JSON, using lenient extraction")
        data = extract_choice_fields_leniently(content)
        used_fallback = True
        if not data:
            raise CorrectionError("No choice fields found in LLM answer") from e

    options = data.get("options") or []
    return ChoiceRecognition(
        is_choice_question=bool(data.get("isChoiceQuestion", False)),
        question_content=str(data.get("questionContent") or ""),
        options=[str(o).strip() for o in options if str(o).strip()],
        lenient=used_fallback,
    )


# ─── Corrector ────────────────────────────────────────────────────────────────


class LatexCorrector:
    """
    Fail-soft wrapper around an LLMPort.

    Args:
        client: The LLM backend.
        lenient_json: Enable the pattern-based fallback for malformed JSON.
    """

    def __init__(self, client: LLMPort, lenient_json: bool = False):
        self.client = client
        self.lenient_json = lenient_json

    def correct(self, text: str) -> str:
        """Return corrected text, or ``text`` unchanged on any failure."""
        if not text or not text.strip():
            return text
        try:
            corrected = self.client.complete(CORRECTION_PROMPT.format(text=text))
        except Exception as e:
            logger.warning(f"LaTeX correction failed, keeping OCR text: {e}")
            return text
        if not corrected or not corrected.strip():
            logger.warning("LaTeX correction returned nothing, keeping OCR text")
            return text
        return corrected.strip()

    def recognize_choice(self, text: str) -> Optional[ChoiceRecognition]:
        """Choice recognition for ``text``, or None when the model is unusable."""
        try:
            content = self.client.complete(CHOICE_PROMPT.format(text=text))
            return parse_choice_payload(content, lenient=self.lenient_json)
        except Exception as e:
            logger.warning(f"Choice recognition failed: {e}")
            return None
