"""
PDF documents.

Extraction walks each page's content stream and yields one TextBlock per
text object. Pages whose stream cannot be parsed fall back to PyMuPDF's own
text extraction so their text is still translated, but they cannot be
rewritten at operator level.

Rebuild prefers operator-level regeneration and degrades to a full
text-only rebuild when no page can be rewritten.
"""

import logging
import os
from typing import List, Optional

import fitz

from doctranslate.core.exceptions import (
    ContentStreamError,
    DocumentValidationError,
    ExtractionError,
    RebuildError,
)
from ..base import GenerateMode, RebuildResult, TranslatableDocument
from ..text_block import TextBlock
from ..writers import write_markup, write_plain_text
from .content_stream import parse_content_stream
from .fallback import build_fallback_document
from .fonts import load_page_decoders
from .regenerator import OperatorRegenerator, read_page_contents
from .text_runs import clean_run_text, find_text_runs

logger = logging.getLogger(__name__)


def open_pdf(path) -> fitz.Document:
    """
    Open a PDF that can actually be translated.

    Raises:
        DocumentValidationError: If the file is corrupt, encrypted, empty
            or not a PDF at all
    """
    name = os.path.basename(str(path))
    try:
        doc = fitz.open(str(path))
    except (RuntimeError, ValueError) as e:
        raise DocumentValidationError(f"Cannot open PDF: {e}", {'file': name})
    problem = None
    if not doc.is_pdf:
        problem = "Not a PDF document"
    elif doc.needs_pass:
        problem = "PDF is password protected"
    elif doc.page_count == 0:
        problem = "PDF has no pages"
    if problem:
        doc.close()
        raise DocumentValidationError(problem, {'file': name})
    return doc


class PdfDocument(TranslatableDocument):
    """Page-description documents handled through PyMuPDF"""

    def __init__(self, input_path: str, target_language: str = ""):
        super().__init__(input_path)
        self.target_language = target_language
        self.output_format = 'pdf'
        self.unparsed_pages: List[int] = []
        self.notes: List[str] = []
        self.degraded = False
        self._doc: Optional[fitz.Document] = None
        self._fallback_doc: Optional[fitz.Document] = None

    @property
    def format_name(self) -> str:
        return "pdf"

    def _open(self) -> None:
        self._doc = open_pdf(self.input_path)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract(self) -> List[TextBlock]:
        blocks: List[TextBlock] = []
        for page in self._doc:
            try:
                blocks.extend(self._extract_runs(page))
            except ContentStreamError as e:
                logger.warning(f"Page {page.number + 1}: content stream unreadable ({e.message}), "
                               f"using layout text extraction")
                self.unparsed_pages.append(page.number)
                blocks.extend(self._extract_layout_blocks(page))

        if not blocks:
            raise ExtractionError("no translatable text", {'file': self.input_path.name})
        logger.info(f"Extracted {len(blocks)} text block(s) from {self._doc.page_count} page(s)")
        return blocks

    def _extract_runs(self, page: fitz.Page) -> List[TextBlock]:
        operations = parse_content_stream(read_page_contents(self._doc, page))
        runs = find_text_runs(operations, load_page_decoders(self._doc, page))
        blocks = []
        for run in runs:
            text = clean_run_text(run.text)
            if text is None:
                continue
            blocks.append(TextBlock(
                block_id=f"pdf:p{page.number}:r{run.run_index}",
                text=text,
                kind='page',
                page_index=page.number,
                metadata={
                    'run_index': run.run_index,
                    'operator_index': run.operator_indices[0],
                    'operator_indices': run.operator_indices,
                    'font': run.font,
                    'font_size': run.size,
                },
            ))
        return blocks

    def _extract_layout_blocks(self, page: fitz.Page) -> List[TextBlock]:
        blocks = []
        for x0, y0, x1, y1, text, block_no, block_type in page.get_text("blocks"):
            if block_type != 0:
                continue
            cleaned = clean_run_text(text)
            if cleaned is None:
                continue
            blocks.append(TextBlock(
                block_id=f"pdf:p{page.number}:b{block_no}",
                text=cleaned,
                kind='page',
                page_index=page.number,
                bbox=(x0, y0, x1, y1),
            ))
        return blocks

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    def _rebuild(self, mode: GenerateMode, output_format: Optional[str]) -> None:
        self.output_format = output_format or 'pdf'
        if self.output_format != 'pdf':
            return

        translated = [block for block in self.blocks if block.is_translated]
        try:
            report = OperatorRegenerator(self._doc, self.target_language).regenerate(self.blocks, mode)
        except (RuntimeError, ValueError) as e:
            logger.error(f"Operator-level regeneration failed: {e}")
            self._use_fallback(mode, f"operator-level regeneration failed: {e}")
            return

        self.notes.extend(report.notes)
        if translated and not report.pages_rewritten:
            self._use_fallback(mode, "no page could be regenerated at operator level")
        elif mode == GenerateMode.MONOLINGUAL and self.unparsed_pages:
            self.notes.append(f"{len(self.unparsed_pages)} unparsed page(s) kept their original text")

    def _use_fallback(self, mode: GenerateMode, reason: str):
        logger.warning(f"Falling back to full rebuild: {reason}")
        self.notes.append(f"full rebuild: {reason}")
        self._fallback_doc = build_fallback_document(self.blocks, mode, self.target_language)
        self.degraded = True

    def _save(self, output_path: str) -> RebuildResult:
        if self.output_format == 'html':
            write_markup(self.blocks, output_path, self.mode, title=self.input_path.stem)
            return RebuildResult(output_path, 'html', 'markup', notes=list(self.notes))
        if self.output_format == 'txt':
            write_plain_text(self.blocks, output_path, self.mode)
            return RebuildResult(output_path, 'txt', 'text', notes=list(self.notes))

        if self._fallback_doc is None:
            try:
                self._doc.save(output_path, garbage=4, deflate=True)
                return RebuildResult(output_path, 'pdf', 'operator', notes=list(self.notes))
            except (RuntimeError, ValueError) as e:
                self._use_fallback(self.mode, f"saving regenerated document failed: {e}")

        try:
            self._fallback_doc.save(output_path, garbage=4, deflate=True)
        except (RuntimeError, ValueError) as e:
            raise RebuildError(f"Failed to write PDF: {e}", {'output': output_path})
        return RebuildResult(output_path, 'pdf', 'full-rebuild', degraded=True, notes=list(self.notes))

    def close(self) -> None:
        if self._fallback_doc is not None:
            self._fallback_doc.close()
            self._fallback_doc = None
        if self._doc is not None:
            self._doc.close()
            self._doc = None
