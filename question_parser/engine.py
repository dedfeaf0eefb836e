"""
Parser Engine
=============
Top-level orchestrator: picks the pipeline for the declared input format,
drives the components and assembles the final ParseResult.

Usage:
    engine = ParserEngine(config)
    result = engine.parse("path/to/exam.docx")
    payload = result.to_dict()

Pipelines:
    Word / PDF / text:  extractor -> paragraphs -> blocks -> classify/extract
    LaTeX:              strip noise -> count math -> environments ->
                        blocks -> sub-questions per block -> classify/extract
    Areas:              extractor -> pages -> AreaMapper (or crop + OCR) ->
                        blocks -> classify/extract, tagged with the area id
    OCR:                recognizer -> flatten -> per-fragment blocks ->
                        classify/extract -> OCRGroupMerger

Only unreadable input (ParsingError) and unsupported formats (FormatError)
escape a call. Everything else becomes an ``errors[]`` / ``warnings[]``
entry on a ParseReport created fresh for that call.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from . import __version__
from .area_mapper import AreaMapper
from .boundary import QuestionBoundaryDetector, strip_numbering
from .classifier import (
    TypeClassifier,
    classify_category,
    estimate_difficulty,
    extract_knowledge_points,
    extract_tags,
)
from .confidence import ConfidenceEstimator
from .content import ContentExtractor
from .exceptions import ContentError, FormatError, ParsingError, RecognitionError
from .latex import (
    count_images,
    count_math_formulas,
    count_tables,
    find_question_environments,
    split_inline_numbering,
    strip_structural_noise,
)
from .llm import HttpLLMClient, LatexCorrector, LLMPort
from .merger import OCRGroupMerger
from .models import (
    Area,
    DocumentFormat,
    ErrorKind,
    ExtractedQuestion,
    ParseResult,
    Point,
    QuestionBlock,
    QuestionOption,
    QuestionType,
    Severity,
    SourceMetadata,
    WarningKind,
)
from .ocr import (
    HttpOCRClient,
    OCRFragmentText,
    OCRPort,
    flatten_ocr_response,
    fragment_text_for_crop,
)
from .pages import PageSegmenter, estimate_page_count
from .report import ParseReport
from .sources import PAGE_BREAK, DocumentTextExtractor, ExtractedText, RegionRenderer
from .subquestions import SubQuestionParser
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

RECOGNIZED_OPTION = re.compile(r"^\s*[（(]?\s*([A-Z])\s*[.、．)）]\s*(.*)$", re.DOTALL)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(environ: dict, name: str, default: bool = False) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class ParserConfig:
    """Configuration for the parser engine."""

    # Thresholds
    min_block_length: int = 10
    assumed_page_count: int = 3
    chars_per_page: int = 2000
    similarity_threshold: float = 0.3

    # OCR service
    ocr_endpoint: Optional[str] = None
    ocr_api_key: Optional[str] = None
    ocr_timeout: float = 30

    # LLM correction service
    llm_api_key: Optional[str] = None
    llm_base_url: str = "https://api.deepseek.com/v1"
    llm_model: str = "deepseek-chat"
    llm_timeout: float = 180
    llm_temperature: float = 0.1
    enable_llm_correction: bool = False
    enable_llm_choice_recognition: bool = False
    lenient_llm_json: bool = False

    # Area extraction
    area_ocr: bool = False
    render_dpi: int = 150
    max_workers: int = 1

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "ParserConfig":
        """Build a config from ``QP_*`` environment variables."""
        env = dict(os.environ if environ is None else environ)
        config = cls()
        config.ocr_endpoint = env.get("QP_OCR_ENDPOINT") or None
        config.ocr_api_key = env.get("QP_OCR_API_KEY") or None
        config.llm_api_key = env.get("QP_LLM_API_KEY") or None
        config.llm_base_url = env.get("QP_LLM_BASE_URL", config.llm_base_url)
        config.llm_model = env.get("QP_LLM_MODEL", config.llm_model)
        config.enable_llm_correction = _env_flag(env, "QP_ENABLE_LLM_CORRECTION")
        config.enable_llm_choice_recognition = _env_flag(
            env, "QP_ENABLE_LLM_CHOICE_RECOGNITION"
        )
        config.lenient_llm_json = _env_flag(env, "QP_LENIENT_LLM_JSON")
        config.area_ocr = _env_flag(env, "QP_AREA_OCR")
        config.log_level = env.get("QP_LOG_LEVEL", config.log_level)
        config.log_file = env.get("QP_LOG_FILE") or None
        if env.get("QP_OCR_TIMEOUT"):
            config.ocr_timeout = float(env["QP_OCR_TIMEOUT"])
        if env.get("QP_LLM_TIMEOUT"):
            config.llm_timeout = float(env["QP_LLM_TIMEOUT"])
        if env.get("QP_MAX_WORKERS"):
            config.max_workers = int(env["QP_MAX_WORKERS"])
        return config


@dataclass
class _AreaOutcome:
    """Everything one area produced; folded into the call in input order."""
    report: ParseReport
    questions: list[ExtractedQuestion] = field(default_factory=list)
    confidence: float = 0.0


class ParserEngine:
    """
    Main extraction engine.

    Holds configuration, collaborators and stateless components only, so
    one instance can serve concurrent calls.
    """

    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        text_extractor: Optional[DocumentTextExtractor] = None,
        ocr_client: Optional[OCRPort] = None,
        llm_client: Optional[LLMPort] = None,
        region_renderer: Optional[RegionRenderer] = None,
    ):
        self.config = config or ParserConfig()
        self._setup_logging()

        self.text_extractor = text_extractor or DocumentTextExtractor()
        self.region_renderer = region_renderer or RegionRenderer(
            dpi=self.config.render_dpi
        )

        if ocr_client is None and self.config.ocr_endpoint:
            ocr_client = HttpOCRClient(
                self.config.ocr_endpoint,
                api_key=self.config.ocr_api_key,
                timeout=self.config.ocr_timeout,
            )
        self.ocr_client = ocr_client

        if llm_client is None and self.config.llm_api_key:
            llm_client = HttpLLMClient(
                self.config.llm_api_key,
                base_url=self.config.llm_base_url,
                model=self.config.llm_model,
                timeout=self.config.llm_timeout,
                temperature=self.config.llm_temperature,
            )
        self.corrector = (
            LatexCorrector(llm_client, lenient_json=self.config.lenient_llm_json)
            if llm_client else None
        )

        self.classifier = TypeClassifier()
        self.document_extractor = ContentExtractor()
        self.ocr_extractor = ContentExtractor(ocr_mode=True)
        self.subquestion_parser = SubQuestionParser(self.document_extractor)
        self.area_mapper = AreaMapper()
        self.confidence_estimator = ConfidenceEstimator()
        self.merger = OCRGroupMerger(self.config.similarity_threshold)
        self.validator = ValidationEngine()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        formatter = logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        package_logger = logging.getLogger("question_parser")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(formatter)
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_path = Path(self.config.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            already_attached = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_path.resolve()
                for h in package_logger.handlers
            )
            if not already_attached:
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(formatter)
                package_logger.addHandler(file_handler)

    # ─── Public Entry Points ──────────────────────────────────────────────────

    def parse(
        self,
        file_path: str,
        fmt: Optional[Union[DocumentFormat, str]] = None,
    ) -> ParseResult:
        """
        Parse one file with the pipeline for its (declared or guessed) format.

        Raises:
            ParsingError: If the file doesn't exist or cannot be read.
            FormatError: If the format has no pipeline.
        """
        file_path = os.path.abspath(file_path)
        if not os.path.exists(file_path):
            raise ParsingError(f"File not found: {file_path}")

        fmt = self._resolve_format(file_path, fmt)
        start_time = time.time()
        logger.info(f"Starting {fmt.value} parse of: {file_path}")

        source = os.path.basename(file_path)
        file_hash = self._compute_file_hash(file_path)

        if fmt == DocumentFormat.IMAGE:
            with open(file_path, "rb") as f:
                result = self.parse_images([f.read()], source=source)
        else:
            extracted = self.text_extractor.extract(file_path, fmt)
            if fmt == DocumentFormat.LATEX:
                result = self.parse_latex(extracted.raw_text, source=source)
            else:
                result = self._parse_extracted(extracted, source, fmt)

        result.metadata.file_hash = file_hash

        elapsed = time.time() - start_time
        logger.info(
            f"Parse complete in {elapsed:.2f}s, "
            f"{len(result.questions)} questions extracted"
        )
        return result

    def parse_text(
        self,
        text: str,
        source: str = "text",
        declared_page_count: Optional[int] = None,
    ) -> ParseResult:
        """Run the Word/PDF paragraph pipeline over already extracted text."""
        extracted = ExtractedText(
            raw_text=text or "", declared_page_count=declared_page_count
        )
        return self._parse_extracted(extracted, source, DocumentFormat.TEXT)

    def parse_latex(self, content: str, source: str = "latex") -> ParseResult:
        """Marked-up document pipeline."""
        report = ParseReport()

        # ── Step 1: Strip structural noise ────────────────────────────
        cleaned = strip_structural_noise(content or "")

        # ── Step 2: Statistics ────────────────────────────────────────
        report.math_formula_count = count_math_formulas(cleaned)
        report.image_count = count_images(cleaned)
        report.table_count = count_tables(cleaned)

        # ── Step 3: Question environments ─────────────────────────────
        bodies, used_fallback = find_question_environments(cleaned)
        if used_fallback:
            report.add_warning(
                WarningKind.FORMAT,
                "No question environments found, split on list items",
                suggestion="Wrap questions in \\begin{question}...\\end{question}",
                entry_id="latex_fallback",
            )

        # ── Step 4: Per-environment extraction ────────────────────────
        questions: list[ExtractedQuestion] = []
        for index, body in enumerate(bodies, start=1):
            entry_id = f"env_{index}"
            if not body.strip():
                report.add_warning(
                    WarningKind.CONTENT,
                    f"Environment {index} is empty",
                    entry_id=entry_id,
                )
                continue

            env_report = ParseReport(prefix=entry_id)
            try:
                found = self._questions_from_environment(
                    body, index, source, env_report
                )
            except Exception as e:
                logger.exception(f"Environment {index} failed")
                env_report.add_error(
                    ErrorKind.PARSING,
                    f"Environment {index} could not be parsed: {e}",
                    entry_id=entry_id,
                )
                found = []
            report.extend(env_report)

            if not found and not env_report.errors:
                report.add_warning(
                    WarningKind.CONTENT,
                    f"Environment {index} yielded no question",
                    suggestion=f"Questions need at least "
                               f"{self.config.min_block_length} characters",
                    entry_id=entry_id,
                )
            questions.extend(found)

        # ── Step 5: Assemble ──────────────────────────────────────────
        confidence = self.confidence_estimator.estimate(len(questions), len(content or ""))
        for question in questions:
            question.confidence = float(confidence)

        return self._assemble(
            questions,
            report,
            page_count=estimate_page_count(cleaned, self.config.chars_per_page),
            confidence=confidence,
            metadata=SourceMetadata(
                source=source,
                format=DocumentFormat.LATEX,
                parser_version=__version__,
            ),
        )

    def parse_areas(
        self,
        file_path: str,
        areas: list[Area],
        fmt: Optional[Union[DocumentFormat, str]] = None,
    ) -> ParseResult:
        """
        Extract questions from caller-selected regions of a document.

        Areas whose page is out of range, or that yield nothing, are recorded
        and skipped. Results keep the order of ``areas`` even when they are
        processed in parallel.
        """
        file_path = os.path.abspath(file_path)
        if not os.path.exists(file_path):
            raise ParsingError(f"File not found: {file_path}")

        fmt = self._resolve_format(file_path, fmt)
        if fmt == DocumentFormat.IMAGE:
            raise FormatError("Area extraction needs a document, not an image")

        report = ParseReport()
        source = os.path.basename(file_path)
        extracted = self.text_extractor.extract(file_path, fmt)
        pages = self._split_pages(extracted, fmt)
        logger.info(f"Resolving {len(areas)} areas against {len(pages)} pages")

        def run(area: Area) -> _AreaOutcome:
            return self._process_area(file_path, fmt, pages, area, source)

        if self.config.max_workers > 1 and len(areas) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
                # map() yields in submission order
                outcomes = list(pool.map(run, areas))
        else:
            outcomes = [run(area) for area in areas]

        questions: list[ExtractedQuestion] = []
        for outcome in outcomes:
            questions.extend(outcome.questions)
            report.extend(outcome.report)

        confidence = 0.0
        if areas:
            confidence = round(sum(o.confidence for o in outcomes) / len(areas), 2)

        report.image_count += extracted.image_count
        report.table_count += extracted.table_count

        return self._assemble(
            questions,
            report,
            page_count=len(pages),
            confidence=confidence,
            metadata=SourceMetadata(
                source=source,
                format=fmt,
                parser_version=__version__,
                file_hash=self._compute_file_hash(file_path),
            ),
        )

    def parse_images(
        self,
        images: list[Union[bytes, str, Path]],
        source: str = "ocr",
    ) -> ParseResult:
        """
        OCR pipeline over image payloads (bytes or file paths).

        Raises:
            FormatError: If no OCR client is configured.
        """
        if self.ocr_client is None:
            raise FormatError("OCR input requires an OCR client or ocr_endpoint")

        report = ParseReport()
        fragments: list[ExtractedQuestion] = []

        for index, image in enumerate(images, start=1):
            entry_id = f"image_{index}"
            try:
                data = image if isinstance(image, bytes) else Path(image).read_bytes()
                payload = self.ocr_client.recognize(data)
            except (RecognitionError, OSError) as e:
                report.add_error(
                    ErrorKind.OCR,
                    f"OCR recognition failed for image {index}: {e}",
                    entry_id=entry_id,
                )
                continue
            fragments.extend(
                self._questions_from_payload(payload, index, source, report)
            )

        return self._assemble_ocr(fragments, report, len(images), source)

    def parse_ocr_payloads(
        self,
        payloads: list[dict],
        source: str = "ocr",
    ) -> ParseResult:
        """OCR pipeline over responses that were already fetched."""
        report = ParseReport()
        fragments: list[ExtractedQuestion] = []
        for index, payload in enumerate(payloads, start=1):
            fragments.extend(
                self._questions_from_payload(payload, index, source, report)
            )
        return self._assemble_ocr(fragments, report, len(payloads), source)

    # ─── Word / PDF Path ──────────────────────────────────────────────────────

    def _parse_extracted(
        self,
        extracted: ExtractedText,
        source: str,
        fmt: DocumentFormat,
    ) -> ParseResult:
        report = ParseReport()
        text = extracted.raw_text

        report.math_formula_count = count_math_formulas(text)
        report.image_count = extracted.image_count
        report.table_count = extracted.table_count

        # Page breaks separate paragraphs too
        paragraph_text = text.replace(PAGE_BREAK, "\n\n")
        questions = self._questions_from_text(
            paragraph_text,
            report,
            source=source,
            ocr_mode=False,
            keep_preamble=False,
        )

        confidence = self.confidence_estimator.estimate(len(questions), len(text))
        for question in questions:
            question.confidence = float(confidence)

        page_count = extracted.declared_page_count
        if not page_count:
            page_count = estimate_page_count(text, self.config.chars_per_page)

        return self._assemble(
            questions,
            report,
            page_count=page_count,
            confidence=confidence,
            metadata=SourceMetadata(
                source=source, format=fmt, parser_version=__version__
            ),
        )

    # ─── Area Path ────────────────────────────────────────────────────────────

    def _split_pages(self, extracted: ExtractedText, fmt: DocumentFormat) -> list[str]:
        text = extracted.raw_text
        if fmt == DocumentFormat.PDF and extracted.declared_page_count:
            # Real pages, including blank ones, keep their numbers
            return text.split(PAGE_BREAK)
        if fmt == DocumentFormat.LATEX:
            segmenter = PageSegmenter.for_latex()
        elif fmt == DocumentFormat.WORD:
            segmenter = PageSegmenter.for_word()
        else:
            segmenter = PageSegmenter(assumed_pages=self.config.assumed_page_count)
        return segmenter.split(text)

    def _process_area(
        self,
        file_path: str,
        fmt: DocumentFormat,
        pages: list[str],
        area: Area,
        source: str,
    ) -> _AreaOutcome:
        entry_id = f"area_{area.id}"
        outcome = _AreaOutcome(report=ParseReport(prefix=entry_id))

        try:
            mapped = self.area_mapper.map_area(pages, area)
            if mapped.out_of_range:
                outcome.report.add_error(
                    ErrorKind.CONTENT, mapped.message, entry_id=entry_id
                )
                return outcome

            if self._uses_area_ocr(fmt):
                text = self._recognize_area(file_path, area)
            else:
                text = mapped.text

            if not text.strip():
                raise ContentError(f"area {area.id} content is empty")

            questions = self._questions_from_text(
                text,
                outcome.report,
                source=f"{source}, area {area.id}",
                ocr_mode=False,
                keep_preamble=True,
                page_number=area.page_number,
            )
            confidence = self.confidence_estimator.estimate(len(questions), len(text))
            for question in questions:
                question.confidence = float(confidence)

            outcome.questions = questions
            outcome.confidence = confidence

        except ContentError as e:
            outcome.report.add_error(
                ErrorKind.CONTENT,
                str(e),
                severity=Severity.WARNING,
                entry_id=entry_id,
            )
        except RecognitionError as e:
            outcome.report.add_error(
                ErrorKind.OCR,
                f"OCR recognition failed for area {area.id}: {e}",
                entry_id=entry_id,
            )
        except Exception as e:
            logger.exception(f"Area {area.id} failed")
            outcome.report.add_error(
                ErrorKind.PARSING,
                f"area {area.id} could not be processed: {e}",
                entry_id=entry_id,
            )

        return outcome

    def _uses_area_ocr(self, fmt: DocumentFormat) -> bool:
        return (
            self.config.area_ocr
            and self.ocr_client is not None
            and fmt == DocumentFormat.PDF
        )

    def _recognize_area(self, file_path: str, area: Area) -> str:
        with self.region_renderer.render(file_path, area) as crop_path:
            payload = self.ocr_client.recognize(crop_path.read_bytes())
        text = fragment_text_for_crop(payload)
        if self.corrector and self.config.enable_llm_correction:
            text = self.corrector.correct(text)
        return text

    # ─── OCR Path ─────────────────────────────────────────────────────────────

    def _questions_from_payload(
        self,
        payload: dict,
        image_index: int,
        source: str,
        report: ParseReport,
    ) -> list[ExtractedQuestion]:
        fragments = flatten_ocr_response(payload or {})
        if not fragments:
            report.add_warning(
                WarningKind.CONTENT,
                f"OCR recognized no content for image {image_index}",
                suggestion="Check the image quality and orientation",
                entry_id=f"image_{image_index}",
            )
            return []

        questions: list[ExtractedQuestion] = []
        for index, fragment in enumerate(fragments, start=1):
            try:
                questions.extend(self._questions_from_fragment(
                    fragment, f"{source}#{image_index}", report
                ))
            except Exception as e:
                logger.exception(f"Fragment {index} of image {image_index} failed")
                report.add_error(
                    ErrorKind.PARSING,
                    f"Fragment {index} of image {image_index} could not be "
                    f"parsed: {e}",
                    entry_id=f"image_{image_index}_fragment_{index}",
                )
        return questions

    def _questions_from_fragment(
        self,
        fragment: OCRFragmentText,
        source: str,
        report: ParseReport,
    ) -> list[ExtractedQuestion]:
        text = fragment.text
        if self.corrector and self.config.enable_llm_correction:
            text = self.corrector.correct(text)

        detector = QuestionBoundaryDetector(
            min_length=self.config.min_block_length,
            ocr_mode=True,
            keep_preamble=True,
            classifier=self.classifier,
            choice_group=fragment.group_type == QuestionType.CHOICE,
        )
        blocks = detector.detect_text(text, report)
        if not blocks:
            return []

        recognition = None
        if (
            len(blocks) == 1
            and self.corrector
            and self.config.enable_llm_choice_recognition
        ):
            recognition = self.corrector.recognize_choice(text)

        questions = []
        for index, block in enumerate(blocks):
            # Recognizer fields describe the fragment's first question
            first = index == 0
            question_type = fragment.group_type if first else None
            options = fragment.options if first else []
            stem = None

            if first and recognition and recognition.is_choice_question and recognition.options:
                question_type = QuestionType.CHOICE
                options = recognition.options
                stem = strip_numbering(recognition.question_content, ocr_mode=True) or None

            questions.append(self._build_question(
                block,
                source=source,
                ocr_mode=True,
                confidence=fragment.confidence,
                question_type=question_type,
                recognized_options=options,
                recognized_answer="\n".join(fragment.answers) if first else None,
                stem_override=stem,
                coordinates=fragment.coordinates if first else None,
                report=report,
            ))
        return [q for q in questions if q is not None]

    def _assemble_ocr(
        self,
        fragments: list[ExtractedQuestion],
        report: ParseReport,
        page_count: int,
        source: str,
    ) -> ParseResult:
        questions = self.merger.merge(fragments)
        confidence = 0.0
        if questions:
            confidence = round(
                sum(q.confidence for q in questions) / len(questions), 2
            )
        return self._assemble(
            questions,
            report,
            page_count=page_count,
            confidence=confidence,
            metadata=SourceMetadata(
                source=source,
                format=DocumentFormat.IMAGE,
                parser_version=__version__,
            ),
        )

    # ─── Shared Steps ─────────────────────────────────────────────────────────

    def _questions_from_text(
        self,
        text: str,
        report: ParseReport,
        source: str,
        ocr_mode: bool,
        keep_preamble: bool,
        page_number: Optional[int] = None,
    ) -> list[ExtractedQuestion]:
        detector = QuestionBoundaryDetector(
            min_length=self.config.min_block_length,
            ocr_mode=ocr_mode,
            keep_preamble=keep_preamble,
            classifier=self.classifier,
        )
        questions = []
        for block in detector.detect_text(text, report):
            try:
                question = self._build_question(
                    block,
                    source=source,
                    ocr_mode=ocr_mode,
                    page_number=page_number,
                    report=report,
                )
            except Exception as e:
                logger.exception(f"Block {block.index + 1} failed")
                report.add_error(
                    ErrorKind.PARSING,
                    f"Block {block.index + 1} could not be parsed: {e}",
                    entry_id=report.scoped_id(f"block_{block.index + 1}"),
                )
                continue
            if question is not None:
                questions.append(question)
        return questions

    def _build_question(
        self,
        block: QuestionBlock,
        source: str,
        ocr_mode: bool,
        confidence: float = 0.0,
        page_number: Optional[int] = None,
        question_type: Optional[QuestionType] = None,
        recognized_options: Optional[list[str]] = None,
        recognized_answer: Optional[str] = None,
        stem_override: Optional[str] = None,
        coordinates: Optional[list[Point]] = None,
        report: Optional[ParseReport] = None,
    ) -> Optional[ExtractedQuestion]:
        raw_text = block.raw_text
        if question_type is None:
            question_type = (
                QuestionType.CHOICE if recognized_options else block.candidate_type
            )

        extractor = self.ocr_extractor if ocr_mode else self.document_extractor
        content = extractor.extract(raw_text, question_type)

        options = content.options
        if recognized_options:
            options = [
                self._recognized_option(text, i)
                for i, text in enumerate(recognized_options)
            ]
        answer = content.answer or (recognized_answer or None)
        if answer and options:
            extractor.mark_correct(options, answer)

        stem = stem_override or content.stem
        if not stem and not options:
            if report is not None:
                report.add_warning(
                    WarningKind.CONTENT,
                    f"Block {block.index + 1} yielded no question text",
                )
            return None

        difficulty = estimate_difficulty(raw_text)
        return ExtractedQuestion(
            type=question_type,
            stem=stem,
            options=options or None,
            answer=answer,
            analysis=content.analysis,
            difficulty=difficulty,
            category=classify_category(raw_text),
            tags=extract_tags(raw_text, difficulty),
            source=source,
            confidence=confidence,
            question_number=block.order_hint,
            page_number=page_number,
            knowledge_points=extract_knowledge_points(raw_text),
            coordinates=coordinates or [],
        )

    def _questions_from_environment(
        self, body: str, index: int, source: str, report: ParseReport
    ) -> list[ExtractedQuestion]:
        """Split one environment into numbered blocks, each with its own sub-items."""
        detector = QuestionBoundaryDetector(
            min_length=self.config.min_block_length,
            keep_preamble=True,
            split_lines=True,
            classifier=self.classifier,
        )
        blocks = detector.detect_text(split_inline_numbering(body), report)

        # An unnumbered environment is numbered by its position in the document
        fallback_number = index if len(blocks) == 1 else None
        questions = []
        for block in blocks:
            question = self._build_latex_question(block, source, fallback_number)
            if question is not None:
                questions.append(question)
        return questions

    def _build_latex_question(
        self,
        block: QuestionBlock,
        source: str,
        fallback_number: Optional[int] = None,
    ) -> Optional[ExtractedQuestion]:
        raw_text = block.raw_text
        sub = self.subquestion_parser.parse(raw_text)
        main = sub.main_content or raw_text
        question_type = self.classifier.classify(main)
        content = self.document_extractor.extract(main, question_type)

        stem = content.stem or main.strip()
        if not stem and not sub.units:
            return None

        number = block.order_hint if block.order_hint is not None else fallback_number
        difficulty = estimate_difficulty(raw_text)
        return ExtractedQuestion(
            type=question_type,
            stem=stem,
            options=content.options or None,
            answer=content.answer,
            analysis=content.analysis,
            sub_questions=sub.units or None,
            difficulty=difficulty,
            category=classify_category(raw_text),
            tags=extract_tags(raw_text, difficulty),
            source=source,
            question_number=number,
            knowledge_points=extract_knowledge_points(raw_text),
        )

    @staticmethod
    def _recognized_option(text: str, index: int) -> QuestionOption:
        match = RECOGNIZED_OPTION.match(text)
        if match and match.group(2).strip():
            return QuestionOption(key=match.group(1), text=match.group(2).strip())
        key = chr(ord("A") + index) if index < 26 else None
        return QuestionOption(key=key, text=text.strip())

    def _assemble(
        self,
        questions: list[ExtractedQuestion],
        report: ParseReport,
        page_count: int,
        confidence: float,
        metadata: SourceMetadata,
    ) -> ParseResult:
        self.validator.validate(questions, report)
        return ParseResult(
            questions=questions,
            page_count=page_count,
            math_formula_count=report.math_formula_count,
            image_count=report.image_count,
            table_count=report.table_count,
            confidence=confidence,
            errors=list(report.errors),
            warnings=list(report.warnings),
            metadata=metadata,
        )

    # ─── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _resolve_format(
        file_path: str, fmt: Optional[Union[DocumentFormat, str]]
    ) -> DocumentFormat:
        if fmt is None:
            resolved = DocumentFormat.from_path(file_path)
            if resolved is None:
                raise FormatError(
                    f"Cannot infer a format for: {os.path.basename(file_path)}"
                )
            return resolved
        if isinstance(fmt, DocumentFormat):
            return fmt
        try:
            return DocumentFormat(str(fmt).lower())
        except ValueError as e:
            raise FormatError(f"Unsupported format: {fmt}") from e

    @staticmethod
    def _compute_file_hash(filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return sha256.hexdigest()
