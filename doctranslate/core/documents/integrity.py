"""
Post-generation integrity check.

Re-reads a written output and verifies that enough of the expected text
actually made it into the file. Failing the check never fails a task; the
report is attached to the task metadata as a warning.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import fitz
from lxml import html as lxml_html

from doctranslate.config import INTEGRITY_THRESHOLD
from .base import GenerateMode
from .epub_document import read_epub_text
from .text_block import TextBlock

logger = logging.getLogger(__name__)

FRAGMENT_LENGTH = 30

_WHITESPACE_RE = re.compile(r'\s+')


def _squash(text: str) -> str:
    return _WHITESPACE_RE.sub('', text or '')


@dataclass
class IntegrityReport:
    passed: bool
    translation_rate: float
    original_rate: float = 1.0
    translations_checked: int = 0
    originals_checked: int = 0
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'passed': self.passed,
            'translation_rate': round(self.translation_rate, 3),
            'original_rate': round(self.original_rate, 3),
            'translations_checked': self.translations_checked,
            'originals_checked': self.originals_checked,
            'missing': self.missing[:10],
        }


def read_output_text(path: str) -> str:
    """Extract the text of a written output file according to its extension"""
    suffix = Path(path).suffix.lower()
    if suffix == '.pdf':
        with fitz.open(path) as doc:
            return '\n'.join(page.get_text() for page in doc)
    if suffix in ('.html', '.htm'):
        with open(path, 'rb') as f:
            return lxml_html.fromstring(f.read()).text_content()
    if suffix == '.epub':
        return read_epub_text(path)
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def _recovery_rate(fragments: List[str], haystack: str, missing: List[str]) -> float:
    if not fragments:
        return 1.0
    found = 0
    for fragment in fragments:
        needle = _squash(fragment)[:FRAGMENT_LENGTH]
        if needle in haystack:
            found += 1
        else:
            missing.append(fragment[:FRAGMENT_LENGTH])
    return found / len(fragments)


def check_output_integrity(path: str, blocks: List[TextBlock], mode: GenerateMode,
                           threshold: float = INTEGRITY_THRESHOLD) -> IntegrityReport:
    """
    Check that translated (and, for bilingual output, original) fragments
    are present in the output at ``path``.

    Only blocks whose translation differs from their source count as
    translated; bilingual output also has to keep the source text.
    """
    haystack = _squash(read_output_text(path))
    translated = [block for block in blocks if block.is_translated]
    missing: List[str] = []

    translation_rate = _recovery_rate([block.translation for block in translated], haystack, missing)
    original_rate = 1.0
    originals_checked = 0
    if mode == GenerateMode.BILINGUAL:
        originals = [block.text for block in blocks if _squash(block.text)]
        originals_checked = len(originals)
        original_rate = _recovery_rate(originals, haystack, missing)

    passed = translation_rate >= threshold
    if mode == GenerateMode.BILINGUAL:
        passed = passed and original_rate >= threshold

    report = IntegrityReport(
        passed=passed,
        translation_rate=translation_rate,
        original_rate=original_rate,
        translations_checked=len(translated),
        originals_checked=originals_checked,
        missing=missing,
    )
    if passed:
        logger.info(f"Integrity check passed: translations {translation_rate:.0%}, originals {original_rate:.0%}")
    else:
        logger.warning(f"Integrity check failed for {Path(path).name}: "
                       f"translations {translation_rate:.0%}, originals {original_rate:.0%}")
    return report
