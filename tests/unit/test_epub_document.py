"""
Unit tests for EPUB extraction and structural rebuild, plus upload validation.
"""

import zipfile

import pytest
from lxml import etree

from doctranslate.core.documents import (
    DocumentState,
    EpubDocument,
    GenerateMode,
    open_document,
    validate_document,
)
from doctranslate.core.documents.epub_document import read_epub_text
from doctranslate.core.exceptions import DocumentStateError, DocumentValidationError, ExtractionError
from fixtures.sample_documents import create_epub, paragraphs

XHTML = '{http://www.w3.org/1999/xhtml}'


def opened(path):
    document = EpubDocument(path)
    document.open()
    return document


def numbered_translations(blocks):
    return {block.block_id: f"traduction numero {i}" for i, block in enumerate(blocks)}


def read_member(path, member):
    with zipfile.ZipFile(path) as archive:
        return archive.read(member)


class TestExtraction:
    """Spine order, metadata and table of contents."""

    def test_blocks_in_reading_order(self, epub_path):
        document = opened(epub_path)
        blocks = document.extract_blocks()

        assert [b.kind for b in blocks] == ['metadata', 'metadata', 'body', 'body', 'body', 'toc']
        assert [b.text for b in blocks if b.kind == 'body'] == [
            "Chapter 1",
            "The quick brown fox jumps over the lazy dog.",
            "A second paragraph with enough words to translate.",
        ]
        assert blocks[0].text == "Sample Book"
        assert blocks[1].text == "A short book used in tests."
        assert blocks[-1].text == "Chapter 1"
        assert document.state == DocumentState.BLOCKS_EXTRACTED

    def test_block_ids_are_unique_and_locate_their_element(self, epub_path):
        blocks = opened(epub_path).extract_blocks()
        assert len({b.block_id for b in blocks}) == len(blocks)
        body = [b for b in blocks if b.kind == 'body']
        assert body[1].container_path[0] == "OEBPS/chapter_001.xhtml"
        assert body[1].metadata['tag'] == 'p'

    def test_only_innermost_block_elements(self, tmp_path):
        body = "<div><p>Inside a wrapper division.</p></div>\n<ul><li>List item text here</li></ul>"
        path = create_epub(tmp_path / "nested.epub", chapters=[body])
        texts = [b.text for b in opened(path).extract_blocks() if b.kind == 'body']
        assert texts == ["Chapter 1", "Inside a wrapper division.", "List item text here"]

    def test_multiple_chapters_follow_spine(self, tmp_path):
        path = create_epub(tmp_path / "two.epub",
                           chapters=[paragraphs("First chapter text."), paragraphs("Second chapter text.")],
                           chapter_titles=["One", "Two"])
        texts = [b.text for b in opened(path).extract_blocks() if b.kind == 'body']
        assert texts == ["One", "First chapter text.", "Two", "Second chapter text."]

    def test_punctuation_only_elements_are_skipped(self, tmp_path):
        path = create_epub(tmp_path / "dots.epub", chapters=[paragraphs("* * *", "Real sentence here.")])
        texts = [b.text for b in opened(path).extract_blocks() if b.kind == 'body']
        assert "* * *" not in texts

    def test_no_body_text_raises(self, tmp_path):
        path = create_epub(tmp_path / "empty.epub", chapters=[""], chapter_titles=["..."])
        with pytest.raises(ExtractionError, match="no translatable text"):
            opened(path).extract_blocks()

    def test_archive_without_package_document(self, tmp_path):
        path = tmp_path / "broken.epub"
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('mimetype', 'application/epub+zip')
            archive.writestr('OEBPS/chapter.xhtml', '<html/>')
        with pytest.raises(DocumentValidationError):
            opened(str(path))


class TestRebuild:
    """Bilingual inserts, monolingual replacement and archive layout."""

    def test_bilingual_keeps_original_and_adds_translation(self, epub_path, tmp_path):
        document = opened(epub_path)
        blocks = document.extract_blocks()
        document.apply_translations(numbered_translations(blocks))
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "out" / "book-dual.epub"))

        assert result.strategy == 'structural'
        assert result.degraded is False

        root = etree.fromstring(read_member(result.output_path, "OEBPS/chapter_001.xhtml"))
        translations = [d for d in root.iter(f'{XHTML}div') if d.get('class') == 'translation']
        assert [d.text for d in translations] == [
            "traduction numero 2", "traduction numero 3", "traduction numero 4"]
        paragraphs_text = [p.text for p in root.iter(f'{XHTML}p')]
        assert "The quick brown fox jumps over the lazy dog." in paragraphs_text

        text = read_epub_text(result.output_path)
        assert "Sample Book / traduction numero 0" in text
        assert "Chapter 1 / traduction numero 5" in text

    def test_translation_nests_inside_list_items(self, tmp_path):
        path = create_epub(tmp_path / "list.epub", chapters=["<ul><li>List item text here</li></ul>"])
        document = opened(path)
        blocks = document.extract_blocks()
        document.apply_translations(numbered_translations(blocks))
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "list-dual.epub"))

        root = etree.fromstring(read_member(result.output_path, "OEBPS/chapter_001.xhtml"))
        item = next(root.iter(f'{XHTML}li'))
        assert item.text == "List item text here"
        assert item[0].get('class') == 'translation'

    def test_monolingual_replaces_text(self, epub_path, tmp_path):
        document = opened(epub_path)
        blocks = document.extract_blocks()
        document.apply_translations(numbered_translations(blocks))
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "book-mono.epub"))

        text = read_epub_text(result.output_path)
        assert "traduction numero 3" in text
        assert "quick brown fox" not in text

    def test_monolingual_keeps_images_and_links(self, tmp_path):
        path = create_epub(tmp_path / "figure.epub", chapters=[
            '<p><img src="f.png" alt=""/> Figure one shows the result.</p>\n'
            '<p>See <em>this</em> and <a href="#n1">note one</a> for details.</p>'
        ])
        document = opened(path)
        blocks = document.extract_blocks()
        by_text = {b.text: b.block_id for b in blocks if b.kind == 'body'}
        document.apply_translations({
            by_text["Figure one shows the result."]: "La figure un montre le resultat.",
            by_text["See this and note one for details."]: "Voir ceci et la note un.",
        })
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "figure-mono.epub"))

        root = etree.fromstring(read_member(result.output_path, "OEBPS/chapter_001.xhtml"))
        figure, note = list(root.iter(f'{XHTML}p'))

        image = figure.find(f'{XHTML}img')
        assert image is not None and image.get('src') == "f.png"
        assert image.tail == "La figure un montre le resultat."
        assert not (figure.text or '').strip()

        assert note.text == "Voir ceci et la note un."
        assert note.find(f'{XHTML}em') is None
        link = note.find(f'{XHTML}a')
        assert link is not None and link.get('href') == "#n1"
        assert not link.text and not link.tail
        assert "note one" not in read_epub_text(result.output_path)

    def test_untranslated_blocks_keep_source(self, epub_path, tmp_path):
        document = opened(epub_path)
        blocks = document.extract_blocks()
        body = [b for b in blocks if b.kind == 'body']
        document.apply_translations({body[1].block_id: "Le renard brun rapide."})
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "partial.epub"))

        text = read_epub_text(result.output_path)
        assert "Le renard brun rapide." in text
        assert "A second paragraph with enough words to translate." in text

    def test_mimetype_is_first_and_stored(self, epub_path, tmp_path):
        document = opened(epub_path)
        document.apply_translations(numbered_translations(document.extract_blocks()))
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "layout.epub"))

        with zipfile.ZipFile(epub_path) as source:
            source_names = set(source.namelist())
        with zipfile.ZipFile(result.output_path) as archive:
            first = archive.infolist()[0]
            assert first.filename == 'mimetype'
            assert first.compress_type == zipfile.ZIP_STORED
            assert archive.read('mimetype') == b'application/epub+zip'
            assert set(archive.namelist()) == source_names

    def test_untouched_members_are_copied_verbatim(self, epub_path, tmp_path):
        document = opened(epub_path)
        blocks = document.extract_blocks()
        body = [b for b in blocks if b.kind == 'body']
        document.apply_translations({body[0].block_id: "Chapitre 1"})
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "verbatim.epub"))

        assert read_member(result.output_path, "OEBPS/toc.ncx") == read_member(epub_path, "OEBPS/toc.ncx")


class TestLifecycle:
    """Operations out of order are rejected."""

    def test_extract_before_open(self, epub_path):
        with pytest.raises(DocumentStateError):
            EpubDocument(epub_path).extract_blocks()

    def test_rebuild_before_translations(self, epub_path):
        document = opened(epub_path)
        document.extract_blocks()
        with pytest.raises(DocumentStateError):
            document.rebuild(GenerateMode.BILINGUAL)

    def test_save_before_rebuild(self, epub_path, tmp_path):
        document = opened(epub_path)
        with pytest.raises(DocumentStateError):
            document.save(str(tmp_path / "x.epub"))

    def test_open_twice(self, epub_path):
        document = opened(epub_path)
        with pytest.raises(DocumentStateError):
            document.open()

    def test_generate_mode_parsing(self):
        assert GenerateMode.parse(None) == GenerateMode.BILINGUAL
        assert GenerateMode.parse(" Monolingual ") == GenerateMode.MONOLINGUAL
        with pytest.raises(ValueError):
            GenerateMode.parse("trilingual")


class TestUploadValidation:
    """Content sniffing of uploaded files."""

    def test_valid_files(self, epub_path, pdf_path):
        assert validate_document(epub_path) == 'epub'
        assert validate_document(pdf_path) == 'pdf'

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("plain text")
        with pytest.raises(DocumentValidationError, match="Unsupported file type"):
            validate_document(str(path))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.pdf"
        path.write_bytes(b"")
        with pytest.raises(DocumentValidationError, match="empty"):
            validate_document(str(path))

    def test_pdf_extension_with_other_content(self, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_text("not a pdf at all")
        with pytest.raises(DocumentValidationError, match="not a valid PDF"):
            validate_document(str(path))

    def test_epub_that_is_not_a_zip(self, tmp_path):
        path = tmp_path / "fake.epub"
        path.write_text("not a zip")
        with pytest.raises(DocumentValidationError, match="not a valid EPUB"):
            validate_document(str(path))

    def test_zip_without_package_document(self, tmp_path):
        path = tmp_path / "bare.epub"
        with zipfile.ZipFile(path, 'w') as archive:
            archive.writestr('readme.txt', 'hello')
        with pytest.raises(DocumentValidationError, match="no package document"):
            validate_document(str(path))

    def test_open_document_dispatches_on_extension(self, epub_path, tmp_path):
        document = open_document(epub_path)
        try:
            assert isinstance(document, EpubDocument)
            assert document.state == DocumentState.OPENED
        finally:
            document.close()

        other = tmp_path / "notes.docx"
        other.write_bytes(b"PK")
        with pytest.raises(DocumentValidationError):
            open_document(str(other))
