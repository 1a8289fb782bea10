"""
Document formats: extraction of text blocks and rebuild of translated output.
"""

import zipfile
from pathlib import Path

from doctranslate.core.exceptions import DocumentValidationError
from .base import DocumentState, GenerateMode, RebuildResult, TranslatableDocument
from .epub_document import EpubDocument
from .integrity import IntegrityReport, check_output_integrity
from .pdf import PdfDocument, open_pdf
from .text_block import TextBlock
from .writers import output_filename, resolve_output_format

SUPPORTED_EXTENSIONS = ('.epub', '.pdf')


def validate_document(path: str) -> str:
    """
    Check that an uploaded file can be opened before a task is queued.

    PDFs are opened for real so encrypted, corrupt and page-less files are
    turned away at submit time.

    Returns:
        The format name ("epub" or "pdf")

    Raises:
        DocumentValidationError: If the file type is unsupported, the
            content does not match its extension, or the PDF is unusable
    """
    file_path = Path(path)
    extension = file_path.suffix.lower()
    context = {'file': file_path.name}

    if extension not in SUPPORTED_EXTENSIONS:
        raise DocumentValidationError(
            f"Unsupported file type '{extension or file_path.name}', expected .epub or .pdf", context)
    if not file_path.is_file() or file_path.stat().st_size == 0:
        raise DocumentValidationError("Uploaded file is empty", context)

    if extension == '.pdf':
        with open(file_path, 'rb') as f:
            if not f.read(1024).lstrip().startswith(b'%PDF-'):
                raise DocumentValidationError("File is not a valid PDF", context)
        open_pdf(file_path).close()
        return 'pdf'

    if not zipfile.is_zipfile(file_path):
        raise DocumentValidationError("File is not a valid EPUB archive", context)
    with zipfile.ZipFile(file_path) as archive:
        names = archive.namelist()
    if 'META-INF/container.xml' not in names and not any(n.lower().endswith('.opf') for n in names):
        raise DocumentValidationError("EPUB has no package document", context)
    return 'epub'


def open_document(path: str, target_language: str = "") -> TranslatableDocument:
    """
    Create and open the document implementation for ``path``.

    Raises:
        DocumentValidationError: For unsupported or unreadable files
    """
    extension = Path(path).suffix.lower()
    if extension == '.epub':
        document = EpubDocument(path)
    elif extension == '.pdf':
        document = PdfDocument(path, target_language=target_language)
    else:
        raise DocumentValidationError(f"Unsupported file type: {extension}", {'file': Path(path).name})
    document.open()
    return document


__all__ = [
    'DocumentState',
    'GenerateMode',
    'RebuildResult',
    'TranslatableDocument',
    'TextBlock',
    'EpubDocument',
    'PdfDocument',
    'IntegrityReport',
    'check_output_integrity',
    'output_filename',
    'resolve_output_format',
    'open_document',
    'validate_document',
    'SUPPORTED_EXTENSIONS',
]
