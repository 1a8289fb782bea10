"""PDF extraction and two-tier rebuild (operator-level, then full rebuild)"""

from .content_stream import ContentStreamLexer, Operation, PdfName, PdfString, parse_content_stream, serialize_content_stream
from .document import PdfDocument, open_pdf
from .fallback import build_fallback_document
from .regenerator import OperatorRegenerator, RegenerationReport

__all__ = [
    'ContentStreamLexer',
    'Operation',
    'PdfName',
    'PdfString',
    'parse_content_stream',
    'serialize_content_stream',
    'PdfDocument',
    'open_pdf',
    'build_fallback_document',
    'OperatorRegenerator',
    'RegenerationReport',
]
