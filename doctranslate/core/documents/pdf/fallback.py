"""
Degraded full rebuild: a new PDF holding only laid-out text.

Used when operator-level regeneration cannot rewrite any page. Original
graphics, images and positions are lost; the result is flagged degraded.
"""

import logging
from typing import Dict, List

import fitz

from doctranslate.config import PDF_FALLBACK_FONT_SIZE, PDF_FALLBACK_MARGIN
from ..base import GenerateMode
from ..text_block import TextBlock
from .fonts import TargetFont, select_font

logger = logging.getLogger(__name__)

A4_WIDTH, A4_HEIGHT = fitz.paper_size('a4')


class TextLayout:
    """Top-to-bottom text flow over A4 pages with word wrapping"""

    def __init__(self, doc: fitz.Document, target_language: str = "",
                 fontsize: float = PDF_FALLBACK_FONT_SIZE, margin: float = PDF_FALLBACK_MARGIN):
        self.doc = doc
        self.target_language = target_language
        self.fontsize = fontsize
        self.margin = margin
        self.line_height = fontsize * 1.4
        self.width = A4_WIDTH - 2 * margin
        self.page = None
        self.y = 0.0
        self._page_fonts = set()

    def new_page(self):
        self.page = self.doc.new_page(width=A4_WIDTH, height=A4_HEIGHT)
        self.y = self.margin + self.fontsize
        self._page_fonts = set()

    def _wrap(self, text: str, font: TargetFont, fontsize: float) -> List[str]:
        lines: List[str] = []
        current = ''
        # Space-separated scripts wrap on words, others on characters
        tokens = text.split(' ') if ' ' in text else list(text)
        joiner = ' ' if ' ' in text else ''
        for token in tokens:
            candidate = f"{current}{joiner}{token}" if current else token
            if font.text_length(candidate, fontsize) <= self.width:
                current = candidate
                continue
            if current:
                lines.append(current)
            current = token
        if current:
            lines.append(current)
        return lines

    def write(self, text: str, fontsize=None, gap_after: float = 0.0):
        fontsize = fontsize or self.fontsize
        font = select_font(text, self.target_language)
        line_height = fontsize * 1.4
        for line in self._wrap(text, font, fontsize):
            if self.page is None or self.y + line_height > A4_HEIGHT - self.margin:
                self.new_page()
            if font.embedded and font.name not in self._page_fonts:
                font.insert_into(self.page)
                self._page_fonts.add(font.name)
            self.page.insert_text((self.margin, self.y), line, fontname=font.name, fontsize=fontsize)
            self.y += line_height
        self.y += gap_after


def build_fallback_document(blocks: List[TextBlock], mode: GenerateMode,
                            target_language: str = "") -> fitz.Document:
    """
    Lay out every block's text page by page.

    Bilingual mode writes the original followed by the translation;
    monolingual mode writes only the translation (or the original where the
    block was not translated).
    """
    doc = fitz.open()
    layout = TextLayout(doc, target_language)

    pages: Dict[int, List[TextBlock]] = {}
    for block in blocks:
        pages.setdefault(block.page_index or 0, []).append(block)

    for page_index in sorted(pages):
        layout.new_page()
        layout.write(f"Page {page_index + 1}", fontsize=layout.fontsize + 3, gap_after=layout.fontsize)
        for block in pages[page_index]:
            if mode == GenerateMode.BILINGUAL:
                layout.write(block.text)
                if block.is_translated:
                    layout.write(block.translation)
            else:
                layout.write(block.output_text())
            layout.y += layout.fontsize * 0.6

    if doc.page_count == 0:
        layout.new_page()

    logger.info(f"Full rebuild produced {doc.page_count} page(s) from {len(blocks)} block(s)")
    return doc
