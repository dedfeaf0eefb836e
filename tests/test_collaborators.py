"""
Test Suite for Collaborators
============================
Tests for document readers, region rendering and the OCR / LLM clients.
HTTP calls are patched; PDF and DOCX fixtures are generated per test.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import fitz  # PyMuPDF
import pytest
import requests
from docx import Document

from question_parser.exceptions import (
    CorrectionError,
    FormatError,
    ParsingError,
    RecognitionError,
)
from question_parser.llm import (
    ChoiceRecognition,
    HttpLLMClient,
    LatexCorrector,
    LLMPort,
    extract_choice_fields_leniently,
    parse_choice_payload,
)
from question_parser.models import Area, DocumentFormat, QuestionType
from question_parser.ocr import (
    HttpOCRClient,
    MockOCRClient,
    flatten_ocr_response,
    fragment_text_for_crop,
)
from question_parser.sources import (
    PAGE_BREAK,
    DocumentTextExtractor,
    RegionRenderer,
    describe_pdf,
)


def make_pdf(path: Path, pages: list[str]) -> Path:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=11)
    doc.save(str(path))
    doc.close()
    return path


def make_docx(path: Path, paragraphs: list[str], tables: int = 0) -> Path:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    for _ in range(tables):
        document.add_table(rows=1, cols=2)
    document.save(str(path))
    return path


def ocr_result(text, group_type="problem-solving", **extra):
    result = {"Question": [{"Text": text, "GroupType": group_type}]}
    result.update(extra)
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT READER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDocumentTextExtractor:
    """Test text extraction per format."""

    def setup_method(self):
        self.extractor = DocumentTextExtractor()

    def test_pdf_pages_are_form_feed_separated(self, tmp_path):
        pdf = make_pdf(tmp_path / "exam.pdf", [
            "1. What is the capital of France?",
            "2. What is the capital of Italy?",
        ])
        extracted = self.extractor.extract(str(pdf))

        assert extracted.declared_page_count == 2
        pages = extracted.raw_text.split(PAGE_BREAK)
        assert len(pages) == 2
        assert "France" in pages[0]
        assert "Italy" in pages[1]
        assert extracted.image_count == 0

    def test_pdf_blank_page_is_kept(self, tmp_path):
        pdf = make_pdf(tmp_path / "exam.pdf", ["first page", "", "third page"])
        extracted = self.extractor.extract(str(pdf))

        pages = extracted.raw_text.split(PAGE_BREAK)
        assert len(pages) == 3
        assert pages[1] == ""

    def test_docx_paragraphs_and_tables(self, tmp_path):
        docx = make_docx(
            tmp_path / "exam.docx",
            ["1. 第一题题干", "", "答案：A"],
            tables=1,
        )
        extracted = self.extractor.extract(str(docx))

        assert extracted.raw_text == "1. 第一题题干\n\n答案：A"
        assert extracted.table_count == 1
        assert extracted.image_count == 0
        assert extracted.declared_page_count is None

    def test_plain_text(self, tmp_path):
        path = tmp_path / "exam.tex"
        path.write_text("\\begin{question}x\\end{question}", encoding="utf-8")
        extracted = self.extractor.extract(str(path))
        assert extracted.raw_text == "\\begin{question}x\\end{question}"

    def test_declared_format_overrides_suffix(self, tmp_path):
        path = tmp_path / "notes.dat"
        path.write_text("plain", encoding="utf-8")
        assert self.extractor.extract(str(path), DocumentFormat.TEXT).raw_text == "plain"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParsingError):
            self.extractor.extract(str(tmp_path / "nope.pdf"))

    def test_unknown_format(self, tmp_path):
        path = tmp_path / "exam.xyz"
        path.write_text("x", encoding="utf-8")
        with pytest.raises(FormatError):
            self.extractor.extract(str(path))

    def test_image_has_no_text_reader(self, tmp_path):
        path = tmp_path / "scan.png"
        path.write_bytes(b"\x89PNG")
        with pytest.raises(FormatError):
            self.extractor.extract(str(path))

    def test_corrupt_pdf(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")
        with pytest.raises(ParsingError):
            self.extractor.extract(str(path))

    def test_describe_pdf(self, tmp_path):
        path = tmp_path / "exam.pdf"
        doc = fitz.open()
        for _ in range(3):
            doc.new_page()
        doc.set_metadata({"title": "Midterm", "author": ""})
        doc.save(str(path))
        doc.close()

        info = describe_pdf(str(path))

        assert info.page_count == 3
        assert info.metadata["title"] == "Midterm"
        assert "author" not in info.metadata
        assert info.image_count == 0


# ═══════════════════════════════════════════════════════════════════════════════
# REGION RENDERER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestRegionRenderer:
    """Test temporary crop rendering and cleanup."""

    def test_crop_exists_only_inside_block(self, tmp_path):
        pdf = make_pdf(tmp_path / "exam.pdf", ["1. Question text on page one"])
        renderer = RegionRenderer(dpi=72, temp_dir=str(tmp_path))
        area = Area(id="r1", x=0, y=0, width=400, height=200)

        with renderer.render(str(pdf), area) as crop:
            assert crop.exists()
            assert crop.suffix == ".png"
            assert crop.stat().st_size > 0
            saved = crop

        assert not saved.exists()

    def test_crop_removed_when_body_raises(self, tmp_path):
        pdf = make_pdf(tmp_path / "exam.pdf", ["text"])
        renderer = RegionRenderer(temp_dir=str(tmp_path))
        seen = []

        with pytest.raises(RuntimeError):
            with renderer.render(str(pdf), Area(id="r2", width=800, height=1000)) as crop:
                seen.append(crop)
                raise RuntimeError("OCR exploded")

        assert seen and not seen[0].exists()

    def test_crop_removed_when_page_missing(self, tmp_path):
        pdf = make_pdf(tmp_path / "exam.pdf", ["text"])
        renderer = RegionRenderer(temp_dir=str(tmp_path))

        with pytest.raises(ParsingError):
            with renderer.render(str(pdf), Area(id="r3", page_number=4, width=100, height=100)):
                pass

        assert list(tmp_path.glob("area_*")) == []


# ═══════════════════════════════════════════════════════════════════════════════
# OCR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestFlattenOCRResponse:
    """Test nested payload flattening."""

    def test_groups_and_nested_results(self):
        payload = {"QuestionInfo": [{"ResultList": [
            ocr_result(
                "1. 下列函数中为奇函数的是哪一个选项",
                "multiple-choice",
                Option=[{"Text": "A. y=x^2"}, {"Text": "B. y=x^3"}],
                Answer=[{"Text": "B"}],
                ResultList=[ocr_result("2. 函数y=2x+1的斜率为多少呢", "fill-in-the-blank")],
            ),
            ocr_result("3. 证明函数f(x)=x^3在R上单调递增"),
        ]}]}
        fragments = flatten_ocr_response(payload)

        assert len(fragments) == 3
        assert fragments[0].group_type == QuestionType.CHOICE
        assert fragments[0].options == ["A. y=x^2", "B. y=x^3"]
        assert fragments[0].answers == ["B"]
        assert fragments[1].group_type == QuestionType.FILL
        assert fragments[2].group_type == QuestionType.SOLUTION

    def test_sparse_primary_falls_back_to_flat_text(self):
        payload = {"QuestionInfo": [{"ResultList": [
            ocr_result("1. 求值", Text="1. 已知函数f(x)=2x+1，求f(3)的值"),
        ]}]}
        fragment = flatten_ocr_response(payload)[0]

        assert fragment.text == "1. 已知函数f(x)=2x+1，求f(3)的值"
        assert fragment.used_fallback_text is True

    def test_rich_primary_is_kept(self):
        primary = "1. 已知函数f(x)=2x+1，求f(3)的值是多少"
        payload = {"QuestionInfo": [{"ResultList": [
            ocr_result(primary, Text=primary + " 以及更多的杂项文字内容"),
        ]}]}
        fragment = flatten_ocr_response(payload)[0]

        assert fragment.text == primary
        assert fragment.used_fallback_text is False

    def test_flat_text_without_groups(self):
        fragments = flatten_ocr_response({"Text": "1. 计算 1+1 的值"})
        assert len(fragments) == 1
        assert fragments[0].text == "1. 计算 1+1 的值"

    def test_response_wrapper(self):
        payload = {"Response": {"QuestionInfo": [{"ResultList": [
            ocr_result("1. 计算1+2+3+4+5的值是多少"),
        ]}]}}
        assert len(flatten_ocr_response(payload)) == 1

    def test_empty_results_are_skipped(self):
        payload = {"QuestionInfo": [{"ResultList": [{"Question": [], "Option": []}]}]}
        assert flatten_ocr_response(payload) == []
        assert flatten_ocr_response({}) == []

    def test_coordinates_and_confidence(self):
        coord = {
            "LeftTop": {"X": 1, "Y": 2}, "RightTop": {"X": 3, "Y": 2},
            "RightBottom": {"X": 3, "Y": 4}, "LeftBottom": {"X": 1, "Y": 4},
        }
        payload = {"QuestionInfo": [{"ResultList": [
            ocr_result("1. 计算1+2+3+4+5的值是多少", Coord=coord, Confidence=0.9),
            ocr_result("2. 计算2+3+4+5+6的值是多少", Confidence=85),
        ]}]}
        first, second = flatten_ocr_response(payload)

        assert [(p.x, p.y) for p in first.coordinates] == [(1, 2), (3, 2), (3, 4), (1, 4)]
        assert first.confidence == pytest.approx(90.0)
        assert second.confidence == 85.0
        assert second.coordinates == []

    def test_fragment_text_for_crop(self):
        payload = {"QuestionInfo": [{"ResultList": [
            ocr_result("1. Which is prime?", Option=["A. 4", "B. 5"], Answer=["B"]),
        ]}]}
        text = fragment_text_for_crop(payload)
        assert text.split("\n") == ["1. Which is prime?", "A. 4", "B. 5", "答案：B"]


class TestHttpOCRClient:
    """Test the HTTP OCR client with requests patched."""

    @patch("question_parser.ocr.requests.post")
    def test_recognize(self, mock_post):
        mock_post.return_value.json.return_value = {
            "Response": {"QuestionInfo": [], "RequestId": "abc"}
        }
        client = HttpOCRClient("https://ocr.example/api", api_key="k", timeout=12)

        payload = client.recognize(b"img")

        assert payload == {"QuestionInfo": [], "RequestId": "abc"}
        args, kwargs = mock_post.call_args
        assert args[0] == "https://ocr.example/api"
        assert kwargs["timeout"] == 12
        assert kwargs["headers"]["Authorization"] == "Bearer k"
        assert kwargs["json"] == {"ImageBase64": "aW1n"}

    @patch("question_parser.ocr.requests.post")
    def test_service_error(self, mock_post):
        mock_post.return_value.json.return_value = {
            "Response": {"Error": {"Code": "FailedOperation", "Message": "bad image"}}
        }
        with pytest.raises(RecognitionError, match="bad image"):
            HttpOCRClient("https://ocr.example/api").recognize(b"img")

    @patch("question_parser.ocr.requests.post")
    def test_network_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(RecognitionError):
            HttpOCRClient("https://ocr.example/api").recognize(b"img")

    @patch("question_parser.ocr.requests.post")
    def test_invalid_json(self, mock_post):
        mock_post.return_value.json.side_effect = ValueError("not json")
        with pytest.raises(RecognitionError):
            HttpOCRClient("https://ocr.example/api").recognize(b"img")

    def test_mock_client_repeats_last_response(self):
        client = MockOCRClient([{"Text": "one"}, {"Text": "two"}])
        assert [client.recognize(b"") for _ in range(3)] == [
            {"Text": "one"}, {"Text": "two"}, {"Text": "two"},
        ]
        assert client.calls == 3


# ═══════════════════════════════════════════════════════════════════════════════
# LLM TESTS
# ═══════════════════════════════════════════════════════════════════════════════


MALFORMED_CHOICE = (
    r'{"isChoiceQuestion": true, "questionContent": "化简 \sqrt{4}", '
    r'"options": ["A. \sqrt{2}", "B. 2"]}'
)


class TestChoicePayloadParsing:
    """Test strict-first JSON parsing with the opt-in lenient fallback."""

    def test_strict_json(self):
        content = json.dumps({
            "isChoiceQuestion": True,
            "questionContent": "下列数中最大的是",
            "options": ["A. 1", "B. 2", " "],
        })
        result = parse_choice_payload(content)

        assert result.is_choice_question is True
        assert result.question_content == "下列数中最大的是"
        assert result.options == ["A. 1", "B. 2"]
        assert result.lenient is False

    def test_fenced_json(self):
        content = 'Sure:\n```json\n{"isChoiceQuestion": false, "questionContent": "x", "options": []}\n```'
        result = parse_choice_payload(content)
        assert result.is_choice_question is False
        assert result.question_content == "x"

    def test_malformed_json_is_rejected_by_default(self):
        with pytest.raises(CorrectionError):
            parse_choice_payload(MALFORMED_CHOICE)

    def test_malformed_json_with_lenient_fallback(self):
        result = parse_choice_payload(MALFORMED_CHOICE, lenient=True)

        assert result.is_choice_question is True
        assert result.question_content == r"化简 \sqrt{4}"
        assert result.options == [r"A. \sqrt{2}", "B. 2"]
        assert result.lenient is True

    def test_lenient_fallback_finds_nothing(self):
        with pytest.raises(CorrectionError):
            parse_choice_payload("no json here", lenient=True)

    def test_top_level_array_is_rejected(self):
        with pytest.raises(CorrectionError):
            parse_choice_payload("[1, 2]")

    def test_lenient_extractor_in_isolation(self):
        fields = extract_choice_fields_leniently(
            r'{"isChoiceQuestion": FALSE, "questionContent": "say \"hi\""}'
        )
        assert fields == {"isChoiceQuestion": False, "questionContent": 'say "hi"'}


class TestLatexCorrector:
    """Test the fail-soft wrapper."""

    def test_correct_returns_model_answer(self):
        client = MagicMock(spec=LLMPort)
        client.complete.return_value = "  1. 计算 $x^2$  "
        assert LatexCorrector(client).correct("1. 计算 x2") == "1. 计算 $x^2$"

    def test_correct_keeps_input_on_failure(self):
        client = MagicMock(spec=LLMPort)
        client.complete.side_effect = CorrectionError("timeout")
        assert LatexCorrector(client).correct("1. 计算 x2") == "1. 计算 x2"

    def test_correct_keeps_input_on_empty_answer(self):
        client = MagicMock(spec=LLMPort)
        client.complete.return_value = "   "
        assert LatexCorrector(client).correct("original") == "original"

    def test_correct_skips_blank_input(self):
        client = MagicMock(spec=LLMPort)
        assert LatexCorrector(client).correct("  ") == "  "
        client.complete.assert_not_called()

    def test_recognize_choice(self):
        client = MagicMock(spec=LLMPort)
        client.complete.return_value = (
            '{"isChoiceQuestion": true, "questionContent": "q", "options": ["A. 1"]}'
        )
        result = LatexCorrector(client).recognize_choice("q A. 1")
        assert isinstance(result, ChoiceRecognition)
        assert result.options == ["A. 1"]

    def test_recognize_choice_failure_returns_none(self):
        client = MagicMock(spec=LLMPort)
        client.complete.return_value = MALFORMED_CHOICE
        assert LatexCorrector(client).recognize_choice("q") is None
        assert LatexCorrector(client, lenient_json=True).recognize_choice("q") is not None


class TestHttpLLMClient:
    """Test the chat-completions client with requests patched."""

    @patch("question_parser.llm.requests.post")
    def test_complete(self, mock_post):
        mock_post.return_value.json.return_value = {
            "choices": [{"message": {"content": " corrected "}}]
        }
        client = HttpLLMClient("key", base_url="https://llm.example/v1/", timeout=5)

        assert client.complete("prompt") == "corrected"
        args, kwargs = mock_post.call_args
        assert args[0] == "https://llm.example/v1/chat/completions"
        assert kwargs["json"]["messages"] == [{"role": "user", "content": "prompt"}]
        assert kwargs["headers"]["Authorization"] == "Bearer key"
        assert kwargs["timeout"] == 5

    @patch("question_parser.llm.requests.post")
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(CorrectionError):
            HttpLLMClient("key").complete("prompt")

    @patch("question_parser.llm.requests.post")
    def test_unexpected_payload(self, mock_post):
        mock_post.return_value.json.return_value = {"error": "quota"}
        with pytest.raises(CorrectionError):
            HttpLLMClient("key").complete("prompt")
