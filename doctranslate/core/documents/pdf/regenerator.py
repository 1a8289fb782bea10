"""
Operator-level page regeneration.

Every page's content stream is re-parsed and replayed verbatim, except for
the text-showing operators of translated runs:

- monolingual: the run's first show operator is replaced by the translation
  (shown with a font that can render it, then the original font is
  restored) and the run's other show operators are dropped
- bilingual: the source operators stay untouched and the translation is
  shown under the run's last line, shrunk when needed so it stays clear
  of the next line on the page

Pages that fail to parse are passed through unmodified.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import fitz

from doctranslate.config import PDF_LINE_SPACING, PDF_MIN_TRANSLATION_SIZE
from doctranslate.core.exceptions import ContentStreamError
from ..base import GenerateMode
from ..text_block import TextBlock
from .content_stream import (
    Operation,
    PdfName,
    PdfString,
    parse_content_stream,
    serialize_content_stream,
)
from .fonts import TargetFont, load_page_decoders, select_font
from .text_runs import Matrix, TextRun, find_text_runs, translate_matrix

logger = logging.getLogger(__name__)

# Share of the font size above and below the baseline for an unknown font
ASCENT = 0.8
DESCENT = 0.2


@dataclass
class RegenerationReport:
    pages_rewritten: List[int] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)


def read_page_contents(doc: fitz.Document, page: fitz.Page) -> bytes:
    """All content streams of a page, concatenated"""
    return b'\n'.join(doc.xref_stream(xref) or b'' for xref in page.get_contents())


def write_page_contents(doc: fitz.Document, page: fitz.Page, data: bytes):
    """Replace the page content; multi-stream pages collapse into the first stream"""
    xrefs = page.get_contents()
    if not xrefs:
        raise ContentStreamError("Page has no content stream", page_index=page.number)
    doc.update_stream(xrefs[0], data)
    for xref in xrefs[1:]:
        doc.update_stream(xref, b'')


def _show_translation(font: TargetFont, size: float, text: str) -> List[Operation]:
    return [
        Operation('Tf', [PdfName(font.name), size]),
        Operation('Tj', [PdfString(font.encode(text), hex=True)]),
    ]


def _restore_font(run: TextRun, last_index: int) -> Operation:
    last = next(op for op in run.show_ops if op.index == last_index)
    return Operation('Tf', [PdfName(last.font), last.size])


def _upright(matrix: Matrix) -> bool:
    a, b, c, d, e, f = matrix
    return b == 0 and c == 0 and d > 0


def page_baselines(runs: List[TextRun]) -> List[Tuple[float, float]]:
    """(baseline, glyph height) of every upright line shown on a page"""
    baselines = []
    for run in runs:
        for matrix, size in run.lines:
            if _upright(matrix):
                baselines.append((matrix[5], abs(size) * matrix[3]))
    return baselines


def place_translation(run: TextRun, baselines: List[Tuple[float, float]]) -> Optional[Tuple[Matrix, float]]:
    """
    Line matrix and font size for a translation shown under ``run``.

    The translation takes the next line when that space is free. Otherwise
    it is shrunk to fit between the run's descenders and the ascenders of
    the nearest line below. Rotated and mirrored text keeps the plain
    next-line offset.

    Returns:
        None when not even PDF_MIN_TRANSLATION_SIZE fits
    """
    matrix, size = run.lines[-1]
    if not _upright(matrix):
        return translate_matrix(0.0, -size * PDF_LINE_SPACING, matrix), size

    a, b, c, d, e, f = matrix
    height = abs(size) * d
    top = f - DESCENT * height
    floor = max((line + ASCENT * h for line, h in baselines if line < top), default=None)

    baseline = f - PDF_LINE_SPACING * height
    if floor is None or baseline - DESCENT * height >= floor:
        return (a, b, c, d, e, baseline), size

    fitted = min(height, top - floor)
    if fitted < PDF_MIN_TRANSLATION_SIZE:
        return None
    return (a, b, c, d, e, top - ASCENT * fitted), size * fitted / height


class OperatorRegenerator:
    """Rewrites the content streams of a PyMuPDF document in place"""

    def __init__(self, doc: fitz.Document, target_language: str = ""):
        self.doc = doc
        self.target_language = target_language

    def regenerate(self, blocks: List[TextBlock], mode: GenerateMode) -> RegenerationReport:
        report = RegenerationReport()

        by_page: Dict[int, Dict[int, TextBlock]] = {}
        for block in blocks:
            if block.is_translated and 'run_index' in block.metadata:
                by_page.setdefault(block.page_index, {})[block.metadata['run_index']] = block

        for page_index, page_blocks in sorted(by_page.items()):
            page = self.doc[page_index]
            try:
                skipped = self.regenerate_page(page, page_blocks, mode)
            except ContentStreamError as e:
                logger.warning(f"Page {page_index + 1} passed through unmodified: {e.message}")
                report.notes.append(f"page {page_index + 1} passed through: {e.message}")
                continue
            report.pages_rewritten.append(page_index)
            if skipped:
                report.notes.append(
                    f"page {page_index + 1}: {skipped} translation(s) left out, no room under the source line")

        return report

    def regenerate_page(self, page: fitz.Page, page_blocks: Dict[int, TextBlock], mode: GenerateMode) -> int:
        """
        Rewrite one page.

        Returns:
            Number of bilingual translations left out for lack of room

        Raises:
            ContentStreamError: If the page content cannot be parsed
        """
        operations = parse_content_stream(read_page_contents(self.doc, page))
        runs = find_text_runs(operations, load_page_decoders(self.doc, page))
        baselines = page_baselines(runs)

        fonts: Dict[str, TargetFont] = {}
        replacements: Dict[int, List[Operation]] = {}
        insertions: Dict[int, List[Operation]] = {}
        dropped = set()
        skipped = 0

        for run in runs:
            block = page_blocks.get(run.run_index)
            if block is None:
                continue
            font = select_font(block.translation, self.target_language)
            first = run.show_ops[0]

            if mode == GenerateMode.MONOLINGUAL:
                replacement = []
                if first.operator in ("'", '"'):
                    replacement.extend(self._line_advance(operations[first.index]))
                replacement.extend(_show_translation(font, first.size, block.translation))
                replacement.append(Operation('Tf', [PdfName(first.font), first.size]))
                replacements[first.index] = replacement
                for show in run.show_ops[1:]:
                    if show.operator in ("'", '"'):
                        replacements[show.index] = self._line_advance(operations[show.index])
                    else:
                        dropped.add(show.index)
            else:
                placement = place_translation(run, baselines)
                if placement is None:
                    logger.debug(f"Run {run.run_index} on page {page.number + 1}: no room for its translation")
                    skipped += 1
                    continue
                matrix, size = placement
                last_index = run.show_ops[-1].index
                insertions[last_index] = [
                    Operation('Tm', list(matrix)),
                    *_show_translation(font, size, block.translation),
                    _restore_font(run, last_index),
                ]
            fonts[font.name] = font

        if not replacements and not insertions:
            return skipped

        for font in fonts.values():
            font.insert_into(page)

        rewritten: List[Operation] = []
        for index, op in enumerate(operations):
            if index in dropped:
                continue
            if index in replacements:
                rewritten.extend(replacements[index])
            else:
                rewritten.append(op)
            rewritten.extend(insertions.get(index, []))

        write_page_contents(self.doc, page, serialize_content_stream(rewritten))
        return skipped

    @staticmethod
    def _line_advance(op: Operation) -> List[Operation]:
        """Keep the line move performed by ' and \" without showing text"""
        if op.operator == '"':
            aw, ac = op.operands[0], op.operands[1]
            return [Operation('Tw', [aw]), Operation('Tc', [ac]), Operation('T*')]
        return [Operation('T*')]
