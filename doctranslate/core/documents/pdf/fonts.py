"""
Font handling for PDF pages.

Two directions:
- decoding: turn the bytes of a text-showing operator back into Unicode,
  through the font's ToUnicode CMap when present
- encoding: pick a font resource able to draw the translated text and
  encode the text for it

Output fonts are PyMuPDF's reserved fonts where they suffice: Base-14
Helvetica for Latin-1 text and the CJK reference fonts (UCS-2 encoded Type0)
for Chinese, Japanese and Korean. Other scripts are drawn with an embedded
font whose glyph coverage is checked first.
"""

import functools
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import fitz

from doctranslate.config import PDF_BUNDLED_FONT, PDF_FONT_FILE

logger = logging.getLogger(__name__)

_HEX = rb'<([0-9A-Fa-f\s]+)>'
_BFCHAR_BLOCK_RE = re.compile(rb'beginbfchar(.*?)endbfchar', re.S)
_BFRANGE_BLOCK_RE = re.compile(rb'beginbfrange(.*?)endbfrange', re.S)
_CODESPACE_RE = re.compile(rb'begincodespacerange\s*<([0-9A-Fa-f]+)>', re.S)
_BFCHAR_RE = re.compile(_HEX + rb'\s*' + _HEX)
_BFRANGE_RE = re.compile(_HEX + rb'\s*' + _HEX + rb'\s*(' + _HEX + rb'|\[[^\]]*\])')
_XREF_RE = re.compile(r'(\d+)\s+0\s+R')


def _hex_int(raw: bytes) -> int:
    return int(re.sub(rb'\s', b'', raw), 16)


def _hex_text(raw: bytes) -> str:
    data = bytes.fromhex(re.sub(rb'\s', b'', raw).decode('ascii'))
    if len(data) % 2:
        return data.decode('latin-1')
    return data.decode('utf-16-be', errors='replace')


def parse_to_unicode(cmap_data: bytes) -> Tuple[Dict[int, str], int]:
    """
    Parse a ToUnicode CMap.

    Returns:
        (code -> text mapping, code width in bytes)
    """
    mapping: Dict[int, str] = {}
    codespace = _CODESPACE_RE.search(cmap_data)
    width = max(1, len(codespace.group(1)) // 2) if codespace else 1

    for block in _BFCHAR_BLOCK_RE.findall(cmap_data):
        for src, dst in _BFCHAR_RE.findall(block):
            mapping[_hex_int(src)] = _hex_text(dst)

    for block in _BFRANGE_BLOCK_RE.findall(cmap_data):
        for match in _BFRANGE_RE.finditer(block):
            low, high = _hex_int(match.group(1)), _hex_int(match.group(2))
            if high - low > 0xFFFF:
                continue
            if match.group(4) is not None:
                start = _hex_text(match.group(4))
                if not start:
                    continue
                prefix, last = start[:-1], ord(start[-1])
                for offset in range(high - low + 1):
                    mapping[low + offset] = prefix + chr(min(last + offset, 0x10FFFF))
            else:
                targets = re.findall(_HEX, match.group(3))
                for offset, dst in enumerate(targets[:high - low + 1]):
                    mapping[low + offset] = _hex_text(dst)

    return mapping, width


class FontDecoder:
    """Decodes string operands shown with one font resource"""

    def __init__(self, mapping: Optional[Dict[int, str]] = None, code_width: int = 1):
        self.mapping = mapping or {}
        self.code_width = code_width

    def decode(self, data: bytes) -> str:
        if not self.mapping:
            if self.code_width == 2:
                # Composite font without ToUnicode: codes are glyph ids
                return ''
            return data.decode('cp1252', errors='replace')

        out: List[str] = []
        width = self.code_width
        for i in range(0, len(data) - width + 1, width):
            code = int.from_bytes(data[i:i + width], 'big')
            if code in self.mapping:
                out.append(self.mapping[code])
            elif width == 1:
                out.append(chr(code))
        return ''.join(out)


def load_page_decoders(doc: fitz.Document, page: fitz.Page) -> Dict[str, FontDecoder]:
    """Build a decoder for every font resource of ``page``, keyed by resource name"""
    decoders: Dict[str, FontDecoder] = {}
    for xref, _ext, font_type, _basefont, name, _encoding, *_ in page.get_fonts(full=True):
        if not xref or name in decoders:
            continue
        mapping: Dict[int, str] = {}
        width = 2 if font_type == 'Type0' else 1
        kind, value = doc.xref_get_key(xref, 'ToUnicode')
        if kind == 'xref':
            match = _XREF_RE.search(value)
            if match:
                try:
                    mapping, cmap_width = parse_to_unicode(doc.xref_stream(int(match.group(1))) or b'')
                    width = cmap_width if mapping else width
                except (ValueError, RuntimeError) as e:
                    logger.debug(f"Unreadable ToUnicode for font {name}: {e}")
        decoders[name] = FontDecoder(mapping, width)
    return decoders


# ============================================================================
# Output fonts
# ============================================================================

@dataclass(frozen=True)
class TargetFont:
    """
    A font resource able to draw translated text on a page.

    Reserved PyMuPDF fonts are referenced by name only; embedded fonts carry
    a font file or a pymupdf-fonts code and are written into the page.
    """
    name: str
    simple: bool
    fontfile: Optional[str] = None
    bundled: Optional[str] = None

    @property
    def embedded(self) -> bool:
        return self.fontfile is not None or self.bundled is not None

    def glyphs(self) -> fitz.Font:
        return _load_font(self.fontfile, self.bundled or self.name)

    def covers(self, text: str) -> bool:
        font = self.glyphs()
        return all(font.has_glyph(ord(c)) for c in text if not c.isspace() and ord(c) not in _FORMAT_CHARS)

    def encode(self, text: str) -> bytes:
        """Encode ``text`` as the string operand this font expects"""
        if self.simple:
            return bytes(ord(c) if ord(c) < 256 else 0xB7 for c in text)
        if self.embedded:
            # Embedded fonts are Identity-H: codes are glyph ids
            font = self.glyphs()
            return b''.join(font.has_glyph(ord(c)).to_bytes(2, 'big') for c in text)
        units = bytearray()
        for c in text:
            code = ord(c)
            # UCS-2 CMaps cover the BMP only
            units += (code if code <= 0xFFFF else 0xFF1F).to_bytes(2, 'big')
        return bytes(units)

    def text_length(self, text: str, fontsize: float) -> float:
        if self.embedded:
            return self.glyphs().text_length(text, fontsize=fontsize)
        return fitz.get_text_length(text, fontname=self.name, fontsize=fontsize)

    def insert_into(self, page: fitz.Page) -> int:
        """Register the font as a resource of ``page``; returns its xref"""
        if self.fontfile:
            return page.insert_font(fontname=self.name, fontfile=self.fontfile)
        if self.bundled:
            return page.insert_font(fontname=self.name, fontbuffer=self.glyphs().buffer)
        return page.insert_font(fontname=self.name)


@functools.lru_cache(maxsize=None)
def _load_font(fontfile: Optional[str], fontname: Optional[str]) -> fitz.Font:
    if fontfile:
        return fitz.Font(fontfile=fontfile)
    return fitz.Font(fontname)


HELVETICA = TargetFont('helv', simple=True)
CHINESE_SIMPLIFIED = TargetFont('china-s', simple=False)
CHINESE_TRADITIONAL = TargetFont('china-t', simple=False)
JAPANESE = TargetFont('japan', simple=False)
KOREAN = TargetFont('korea', simple=False)

# Zero-width joiners and direction marks have no glyph of their own
_FORMAT_CHARS = frozenset((0x200B, 0x200C, 0x200D, 0x200E, 0x200F, 0xFEFF))

_HAN_RANGES = ((0x2E80, 0x2FDF), (0x3000, 0x303F), (0x3100, 0x312F), (0x3400, 0x4DBF),
               (0x4E00, 0x9FFF), (0xF900, 0xFAFF), (0xFF00, 0xFFEF))


def _is_latin1(text: str) -> bool:
    # 0x80-0x9F differ between Latin-1 and WinAnsi
    return all(ord(c) < 0x80 or 0xA0 <= ord(c) < 0x100 for c in text)


def _has_han(text: str) -> bool:
    return any(low <= ord(c) <= high for c in text for low, high in _HAN_RANGES)


def _cjk_font(target_language: str) -> TargetFont:
    language = target_language.lower()
    if 'traditional' in language or language in ('zh-tw', 'zh-hant', 'zt'):
        return CHINESE_TRADITIONAL
    if 'japanese' in language or language == 'ja':
        return JAPANESE
    if 'korean' in language or language == 'ko':
        return KOREAN
    return CHINESE_SIMPLIFIED


def embedded_fonts() -> List[TargetFont]:
    """Embedded font candidates, in order of preference"""
    candidates = []
    if PDF_FONT_FILE and os.path.isfile(PDF_FONT_FILE):
        candidates.append(TargetFont('dtfile', simple=False, fontfile=PDF_FONT_FILE))
    elif PDF_FONT_FILE:
        logger.warning(f"PDF_FONT_FILE {PDF_FONT_FILE} not found, using the bundled font")
    candidates.append(TargetFont(PDF_BUNDLED_FONT, simple=False, bundled=PDF_BUNDLED_FONT))
    return candidates


def select_font(text: str, target_language: str = "") -> TargetFont:
    """
    Pick the output font able to render ``text``.

    Latin-1 text uses Helvetica and CJK text the reserved CJK fonts. Any
    other script (Arabic, Hebrew, Cyrillic, Devanagari, Thai...) gets the
    first embedded font that has a glyph for every character.
    """
    if _is_latin1(text):
        return HELVETICA
    if any(0xAC00 <= ord(c) <= 0xD7AF or 0x1100 <= ord(c) <= 0x11FF for c in text):
        return KOREAN
    if any(0x3040 <= ord(c) <= 0x30FF for c in text):
        return JAPANESE
    if _has_han(text):
        return _cjk_font(target_language)

    for font in embedded_fonts():
        try:
            if font.covers(text):
                return font
        except Exception as e:
            logger.warning(f"Font {font.fontfile or font.bundled} cannot be loaded: {e}")

    fallback = _cjk_font(target_language)
    logger.warning(f"No embedded font covers the translated text, drawing it with {fallback.name}")
    return fallback
