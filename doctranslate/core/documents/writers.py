"""
Text serializations of translated blocks (styled markup and plain text),
plus output format and file name resolution.
"""

import os
from typing import Dict, List, Tuple

from lxml import etree

from doctranslate.config import OUTPUT_FORMATS
from .base import GenerateMode
from .text_block import TextBlock

HTML_STYLE = """
body { font-family: sans-serif; max-width: 48em; margin: 2em auto; line-height: 1.6; }
section { margin-bottom: 2em; }
p.original { color: #222; margin-bottom: 0.2em; }
p.translation { color: #666; font-style: italic; margin-top: 0; }
"""


def resolve_output_format(requested: str) -> Tuple[str, bool]:
    """
    Map a requested extension (".html", "txt", "report.pdf") to an output format.

    Returns:
        (format, defaulted) where defaulted is True when the request was
        not recognized and the page-description format was chosen instead
    """
    value = (requested or '').strip().lower()
    if '.' in value:
        value = value.rsplit('.', 1)[1]
    if value == 'htm':
        value = 'html'
    if value in OUTPUT_FORMATS:
        return value, False
    return 'pdf', True


def output_filename(source_name: str, mode: GenerateMode, output_format: str) -> str:
    """``<stem>-dual.<ext>`` for bilingual, ``<stem>-mono.<ext>`` for monolingual"""
    stem = os.path.splitext(os.path.basename(source_name))[0] or 'document'
    suffix = 'dual' if mode == GenerateMode.BILINGUAL else 'mono'
    return f"{stem}-{suffix}.{output_format}"


def _group_by_page(blocks: List[TextBlock]) -> Dict[int, List[TextBlock]]:
    pages: Dict[int, List[TextBlock]] = {}
    for block in blocks:
        pages.setdefault(block.page_index or 0, []).append(block)
    return dict(sorted(pages.items()))


def write_markup(blocks: List[TextBlock], output_path: str, mode: GenerateMode, title: str = "") -> None:
    html = etree.Element('html')
    head = etree.SubElement(html, 'head')
    etree.SubElement(head, 'meta', charset='utf-8')
    etree.SubElement(head, 'title').text = title or 'Translation'
    etree.SubElement(head, 'style').text = HTML_STYLE
    body = etree.SubElement(html, 'body')

    for page_index, page_blocks in _group_by_page(blocks).items():
        section = etree.SubElement(body, 'section')
        etree.SubElement(section, 'h2').text = f"Page {page_index + 1}"
        for block in page_blocks:
            if mode == GenerateMode.BILINGUAL:
                etree.SubElement(section, 'p', {'class': 'original'}).text = block.text
                if block.is_translated:
                    etree.SubElement(section, 'p', {'class': 'translation'}).text = block.translation
            else:
                etree.SubElement(section, 'p').text = block.output_text()

    with open(output_path, 'wb') as f:
        f.write(b'<!DOCTYPE html>\n')
        f.write(etree.tostring(html, method='html', encoding='utf-8', pretty_print=True))


def write_plain_text(blocks: List[TextBlock], output_path: str, mode: GenerateMode) -> None:
    lines: List[str] = []
    for page_index, page_blocks in _group_by_page(blocks).items():
        lines.append(f"## Page {page_index + 1}")
        lines.append("")
        for block in page_blocks:
            if mode == GenerateMode.BILINGUAL:
                lines.append(f"**Original:** {block.text}")
                if block.is_translated:
                    lines.append(f"**Translation:** {block.translation}")
            else:
                lines.append(block.output_text())
            lines.append("")

    with open(output_path, 'w', encoding='utf-8') as f:
        f.write("\n".join(lines))
