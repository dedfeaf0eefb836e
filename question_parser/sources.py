"""
Source Readers
==============
Text-extraction and region-rendering collaborators.

    - PDF:  PyMuPDF text blocks, blank line between blocks, form-feed
            between pages (so the page segmenter splits on real pages)
    - DOCX: python-docx paragraphs, blank line between paragraphs
    - TeX / plain text: read as UTF-8

RegionRenderer crops one canvas area out of a PDF page into a temporary
PNG for the OCR service. The file only exists inside the ``with`` block.

PyMuPDF is not thread-safe, even across separate documents, so every call
into it here holds one module-wide lock. Parallel area workers therefore
render one at a time and only overlap on the OCR requests.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import fitz  # PyMuPDF
from docx import Document
from pydantic import BaseModel, Field

from .area_mapper import REFERENCE_HEIGHT, REFERENCE_WIDTH
from .exceptions import FormatError, ParsingError
from .models import Area, DocumentFormat

logger = logging.getLogger(__name__)

PAGE_BREAK = "\f"

_PYMUPDF_LOCK = threading.Lock()


class ExtractedText(BaseModel):
    """Raw text of a document plus whatever counts the reader could see."""
    raw_text: str
    declared_page_count: Optional[int] = None
    image_count: int = 0
    table_count: int = 0


class DocumentTextExtractor:
    """Reads a file into ExtractedText according to its format."""

    def extract(
        self, path: str, fmt: Optional[DocumentFormat] = None
    ) -> ExtractedText:
        """
        Extract the raw text of ``path``.

        Raises:
            ParsingError: If the file is missing or cannot be read.
            FormatError: If the format has no text reader.
        """
        if not os.path.exists(path):
            raise ParsingError(f"File not found: {path}")

        fmt = fmt or DocumentFormat.from_path(path)
        if fmt is None:
            raise FormatError(f"Unsupported file type: {Path(path).suffix}")

        try:
            if fmt == DocumentFormat.PDF:
                return self._extract_pdf(path)
            if fmt == DocumentFormat.WORD:
                return self._extract_docx(path)
            if fmt in (DocumentFormat.LATEX, DocumentFormat.TEXT):
                return self._extract_plain(path)
        except (ParsingError, FormatError):
            raise
        except Exception as e:
            raise ParsingError(f"Cannot read {path}: {e}") from e

        raise FormatError(f"No text reader for format: {fmt.value}")

    def _extract_pdf(self, path: str) -> ExtractedText:
        pages: list[str] = []
        image_count = 0

        with _PYMUPDF_LOCK, fitz.open(path) as doc:
            page_count = doc.page_count
            for page in doc:
                blocks = page.get_text("blocks")
                # (x0, y0, x1, y1, text, block_no, block_type); type 0 is text
                texts = [
                    b[4].strip() for b in blocks
                    if b[6] == 0 and b[4].strip()
                ]
                pages.append("\n\n".join(texts))
                image_count += len(page.get_images(full=True))

        logger.info(
            f"Extracted {page_count} PDF pages, {image_count} images from {path}"
        )
        return ExtractedText(
            raw_text=PAGE_BREAK.join(pages),
            declared_page_count=page_count,
            image_count=image_count,
        )

    def _extract_docx(self, path: str) -> ExtractedText:
        document = Document(path)
        paragraphs = [p.text for p in document.paragraphs if p.text.strip()]
        logger.info(f"Extracted {len(paragraphs)} paragraphs from {path}")
        return ExtractedText(
            raw_text="\n\n".join(paragraphs),
            image_count=len(document.inline_shapes),
            table_count=len(document.tables),
        )

    def _extract_plain(self, path: str) -> ExtractedText:
        with open(path, "r", encoding="utf-8") as f:
            return ExtractedText(raw_text=f.read())


class PdfInfo(BaseModel):
    page_count: int
    metadata: dict[str, str] = Field(default_factory=dict)
    image_count: int = 0


def describe_pdf(path: str) -> PdfInfo:
    """Page count, non-empty metadata and embedded image count of a PDF."""
    with _PYMUPDF_LOCK, fitz.open(path) as doc:
        metadata = {
            key: value for key, value in (doc.metadata or {}).items()
            if isinstance(value, str) and value
        }
        return PdfInfo(
            page_count=doc.page_count,
            metadata=metadata,
            image_count=sum(len(page.get_images(full=True)) for page in doc),
        )


class RegionRenderer:
    """Renders canvas areas of PDF pages to temporary PNG crops."""

    def __init__(self, dpi: int = 150, temp_dir: Optional[str] = None):
        self.dpi = dpi
        self.temp_dir = temp_dir

    @contextmanager
    def render(self, pdf_path: str, area: Area) -> Iterator[Path]:
        """
        Yield the path of a PNG crop of ``area``; deleted on exit.

        Raises:
            ParsingError: If the PDF cannot be opened or the page is missing.
        """
        fd, name = tempfile.mkstemp(
            prefix=f"area_{area.id}_", suffix=".png", dir=self.temp_dir
        )
        os.close(fd)
        crop_path = Path(name)
        try:
            with _PYMUPDF_LOCK:
                self._write_crop(pdf_path, area, crop_path)
            yield crop_path
        finally:
            try:
                crop_path.unlink()
            except FileNotFoundError:
                pass
            logger.debug(f"Removed temporary crop {crop_path}")

    def _write_crop(self, pdf_path: str, area: Area, target: Path):
        try:
            doc = fitz.open(pdf_path)
        except Exception as e:
            raise ParsingError(f"Cannot open {pdf_path}: {e}") from e

        with doc:
            if not 1 <= area.page_number <= doc.page_count:
                raise ParsingError(
                    f"area {area.id} page index out of range "
                    f"({area.page_number} not in 1..{doc.page_count})"
                )
            page = doc[area.page_number - 1]
            rect = page.rect
            scale_x = rect.width / REFERENCE_WIDTH
            scale_y = rect.height / REFERENCE_HEIGHT
            clip = fitz.Rect(
                rect.x0 + area.x * scale_x,
                rect.y0 + area.y * scale_y,
                rect.x0 + (area.x + area.width) * scale_x,
                rect.y0 + (area.y + area.height) * scale_y,
            ) & rect
            if clip.is_empty:
                raise ParsingError(f"area {area.id} does not overlap the page")

            pix = page.get_pixmap(clip=clip, dpi=self.dpi)
            pix.save(str(target))
