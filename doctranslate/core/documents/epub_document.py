"""
EPUB documents.

The archive is read fully into memory, the OPF manifest and spine give the
reading order, and every innermost block element of each spine XHTML file
becomes one TextBlock. Book metadata (title, description, subjects) and the
table of contents (NCX labels, EPUB 3 nav anchors) are extracted as well.

Rebuild mutates the parsed trees in place; save writes a fresh archive with
``mimetype`` first and uncompressed, as the OCF container format requires.
"""

import logging
import posixpath
import re
import zipfile
from typing import Dict, List, Optional
from urllib.parse import unquote

from lxml import etree

from doctranslate.config import (
    EPUB_BLOCK_TAGS,
    EPUB_INLINE_TRANSLATION_TAGS,
    EPUB_METADATA_FIELDS,
    EPUB_TRANSLATION_STYLE,
    NAMESPACES,
)
from doctranslate.core.exceptions import DocumentValidationError, ExtractionError, RebuildError
from .base import GenerateMode, RebuildResult, TranslatableDocument
from .text_block import TextBlock

logger = logging.getLogger(__name__)

XHTML_MEDIA_TYPES = ('application/xhtml+xml', 'text/html')
NCX_MEDIA_TYPE = 'application/x-dtbncx+xml'

_WHITESPACE_RE = re.compile(r'\s+')


def _parser() -> etree.XMLParser:
    # XHTML in the wild carries HTML entities without a DTD; recover instead of failing
    return etree.XMLParser(recover=True, resolve_entities=False, no_network=True, remove_blank_text=False)


def local_name(element) -> str:
    if not isinstance(element.tag, str):
        return ''
    return etree.QName(element).localname


def element_text(element) -> str:
    return _WHITESPACE_RE.sub(' ', ''.join(element.itertext())).strip()


def has_meaningful_text(text: str) -> bool:
    """At least one letter, digit or non-ASCII character"""
    return any(ch.isalnum() or ord(ch) > 127 for ch in text)


def _strip_text(element):
    element.text = None
    for descendant in element.iterdescendants():
        descendant.text = None
        descendant.tail = None


class EpubDocument(TranslatableDocument):
    """
    Structural extraction and re-insertion for EPUB 2/3 books.

    Key features:
    - Reads the OPF through META-INF/container.xml (first *.opf as fallback)
    - Walks the spine in reading order
    - Keeps element references for write-back, so bilingual inserts never
      invalidate the locations of later blocks
    """

    def __init__(self, input_path: str):
        super().__init__(input_path)
        self._members: Dict[str, bytes] = {}
        self._member_order: List[zipfile.ZipInfo] = []
        self._trees: Dict[str, etree._Element] = {}
        self._dirty: set = set()
        self._elements: Dict[str, etree._Element] = {}
        self.opf_name: Optional[str] = None
        self.spine: List[str] = []
        self.ncx_name: Optional[str] = None
        self.nav_name: Optional[str] = None

    @property
    def format_name(self) -> str:
        return "epub"

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def _open(self) -> None:
        try:
            with zipfile.ZipFile(self.input_path, 'r') as archive:
                self._member_order = archive.infolist()
                for info in self._member_order:
                    if not info.is_dir():
                        self._members[info.filename] = archive.read(info.filename)
        except (zipfile.BadZipFile, OSError) as e:
            raise DocumentValidationError(f"Not a valid EPUB archive: {e}", {'file': self.input_path.name})

        self.opf_name = self._find_opf()
        if not self.opf_name:
            raise DocumentValidationError("EPUB has no OPF package document", {'file': self.input_path.name})

        opf_root = self._tree(self.opf_name)
        opf_dir = posixpath.dirname(self.opf_name)
        manifest = opf_root.find('.//opf:manifest', namespaces=NAMESPACES)
        spine = opf_root.find('.//opf:spine', namespaces=NAMESPACES)
        if manifest is None or spine is None:
            raise DocumentValidationError("OPF lacks manifest or spine", {'opf': self.opf_name})

        items = {}
        for item in manifest.findall('opf:item', namespaces=NAMESPACES):
            href = item.get('href')
            if not href:
                continue
            member = posixpath.normpath(posixpath.join(opf_dir, unquote(href)))
            items[item.get('id')] = (member, item.get('media-type', ''), item.get('properties', ''))
            if item.get('media-type') == NCX_MEDIA_TYPE:
                self.ncx_name = member
            if 'nav' in item.get('properties', '').split():
                self.nav_name = member

        toc_id = spine.get('toc')
        if toc_id and toc_id in items:
            self.ncx_name = items[toc_id][0]

        for itemref in spine.findall('opf:itemref', namespaces=NAMESPACES):
            entry = items.get(itemref.get('idref'))
            if entry and entry[1] in XHTML_MEDIA_TYPES and entry[0] in self._members:
                self.spine.append(entry[0])

        logger.debug(f"Opened EPUB {self.input_path.name}: {len(self.spine)} spine documents")

    def _find_opf(self) -> Optional[str]:
        container = self._members.get('META-INF/container.xml')
        if container:
            try:
                root = etree.fromstring(container, _parser())
                rootfile = root.find('.//container:rootfile', namespaces=NAMESPACES)
                if rootfile is not None and rootfile.get('full-path') in self._members:
                    return rootfile.get('full-path')
            except etree.XMLSyntaxError:
                logger.warning("Unreadable META-INF/container.xml, searching for OPF")
        for name in self._members:
            if name.lower().endswith('.opf'):
                return name
        return None

    def _tree(self, member: str) -> etree._Element:
        if member not in self._trees:
            root = etree.fromstring(self._members[member], _parser())
            if root is None:
                raise DocumentValidationError("Unparseable XML member", {'member': member})
            self._trees[member] = root
        return self._trees[member]

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _add_block(self, blocks: List[TextBlock], member: str, element, kind: str, text: str):
        block_id = f"epub:{member}:{len(blocks)}"
        path = element.getroottree().getpath(element)
        blocks.append(TextBlock(block_id=block_id, text=text, kind=kind,
                                container_path=(member, path),
                                metadata={'tag': local_name(element)}))
        self._elements[block_id] = element

    def _extract(self) -> List[TextBlock]:
        blocks: List[TextBlock] = []
        self._extract_metadata(blocks)

        for member in self.spine:
            if member == self.nav_name:
                continue
            root = self._tree(member)
            body = next((el for el in root.iter() if local_name(el) == 'body'), None)
            if body is None:
                continue
            for element in body.iter():
                if local_name(element) not in EPUB_BLOCK_TAGS:
                    continue
                if any(local_name(child) in EPUB_BLOCK_TAGS for child in element.iterdescendants()):
                    continue
                text = element_text(element)
                if text and has_meaningful_text(text):
                    self._add_block(blocks, member, element, 'body', text)

        self._extract_toc(blocks)

        if not any(block.kind == 'body' for block in blocks):
            raise ExtractionError("no translatable text", {'file': self.input_path.name})
        return blocks

    def _extract_metadata(self, blocks: List[TextBlock]):
        opf_root = self._tree(self.opf_name)
        metadata = opf_root.find('.//opf:metadata', namespaces=NAMESPACES)
        if metadata is None:
            return
        for field_name in EPUB_METADATA_FIELDS:
            for element in metadata.findall(f'dc:{field_name}', namespaces=NAMESPACES):
                text = element_text(element)
                if text and has_meaningful_text(text):
                    self._add_block(blocks, self.opf_name, element, 'metadata', text)

    def _extract_toc(self, blocks: List[TextBlock]):
        if self.ncx_name and self.ncx_name in self._members:
            ncx_root = self._tree(self.ncx_name)
            for element in ncx_root.iterfind('.//ncx:navLabel/ncx:text', namespaces=NAMESPACES):
                text = element_text(element)
                if text and has_meaningful_text(text):
                    self._add_block(blocks, self.ncx_name, element, 'toc', text)

        if self.nav_name and self.nav_name in self._members:
            nav_root = self._tree(self.nav_name)
            for element in nav_root.iter():
                if local_name(element) != 'a':
                    continue
                if not any(local_name(parent) == 'nav' for parent in element.iterancestors()):
                    continue
                text = element_text(element)
                if text and has_meaningful_text(text):
                    self._add_block(blocks, self.nav_name, element, 'toc', text)

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    def _rebuild(self, mode: GenerateMode, output_format: Optional[str]) -> None:
        bilingual = mode == GenerateMode.BILINGUAL
        for block in self.blocks:
            if not block.is_translated:
                continue
            element = self._elements[block.block_id]
            member = block.container_path[0]

            if block.kind == 'body':
                if bilingual:
                    self._insert_translation(element, block.translation)
                else:
                    self._replace_text(element, block.translation)
            elif bilingual:
                self._replace_text(element, f"{block.text} / {block.translation}")
            else:
                self._replace_text(element, block.translation)
            self._dirty.add(member)

    @staticmethod
    def _replace_text(element, text: str):
        """
        Swap the text of ``element`` for ``text`` and keep what is not text.

        Textless children (images, line breaks, empty anchors) stay in place
        and the translation goes where the original text started. Children
        with text are folded into the translation; links and id targets among
        them survive as empty elements.
        """
        anchor = None
        text_seen = has_meaningful_text(element.text or '')
        for child in list(element):
            if not isinstance(child.tag, str):
                child.tail = None
                continue
            if has_meaningful_text(element_text(child)):
                text_seen = True
                if child.get('href') is None and child.get('id') is None:
                    element.remove(child)
                    continue
                _strip_text(child)
            elif not text_seen:
                anchor = child
            child.tail = None

        if anchor is None:
            element.text = text
        else:
            element.text = None
            anchor.tail = text

    @staticmethod
    def _insert_translation(element, text: str):
        qname = etree.QName(element)
        tag = f"{{{qname.namespace}}}div" if qname.namespace else 'div'
        translation = etree.Element(tag, {'class': 'translation', 'style': EPUB_TRANSLATION_STYLE})
        translation.text = text

        if local_name(element) in EPUB_INLINE_TRANSLATION_TAGS:
            element.append(translation)
        else:
            translation.tail = element.tail
            element.tail = None
            element.addnext(translation)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _serialize(self, member: str) -> bytes:
        root = self._trees[member]
        return etree.tostring(root.getroottree(), xml_declaration=True, encoding='utf-8')

    def _save(self, output_path: str) -> RebuildResult:
        try:
            with zipfile.ZipFile(output_path, 'w') as archive:
                if 'mimetype' in self._members:
                    archive.writestr('mimetype', self._members['mimetype'], compress_type=zipfile.ZIP_STORED)
                for info in self._member_order:
                    name = info.filename
                    if info.is_dir() or name == 'mimetype':
                        continue
                    data = self._serialize(name) if name in self._dirty else self._members[name]
                    archive.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)
        except OSError as e:
            raise RebuildError(f"Failed to write EPUB: {e}", {'output': output_path})

        return RebuildResult(output_path=output_path, output_format='epub', strategy='structural')

    def close(self) -> None:
        self._trees.clear()
        self._elements.clear()
        self._members.clear()


def read_epub_text(path: str) -> str:
    """All text of an EPUB (metadata, spine documents, TOC), for integrity checks"""
    document = EpubDocument(path)
    document.open()
    try:
        parts: List[str] = []
        for member in [document.opf_name] + document.spine + [document.ncx_name]:
            if member and member in document._members:
                parts.append(element_text(document._tree(member)))
        return '\n'.join(parts)
    finally:
        document.close()
