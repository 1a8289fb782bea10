"""
Unit tests for PDF extraction, operator-level rebuild, the full-rebuild
fallback, text serializations and the output integrity check.
"""

import fitz
import pytest

from doctranslate.core.documents import GenerateMode, PdfDocument, check_output_integrity, validate_document
from doctranslate.core.documents.pdf import OperatorRegenerator
from doctranslate.core.documents.writers import output_filename, resolve_output_format
from doctranslate.core.exceptions import ContentStreamError, DocumentValidationError, ExtractionError
from fixtures.sample_documents import create_pdf, write_encrypted_pdf, write_pageless_pdf, write_raw_pdf

FRENCH = {
    "The quick brown fox jumps over the lazy dog.": "Le vif renard brun saute par-dessus le chien paresseux.",
    "Second line of sample text for translation.": "Seconde ligne de texte d'exemple pour la traduction.",
}


def opened(path, target_language="French"):
    document = PdfDocument(path, target_language=target_language)
    document.open()
    return document


def translate_all(document, table=None):
    table = table or FRENCH
    blocks = document.extract_blocks()
    document.apply_translations({b.block_id: table.get(b.text, f"Traduit: {b.text}") for b in blocks})
    return blocks


def pdf_text(path):
    with fitz.open(path) as doc:
        return " ".join(page.get_text() for page in doc)


def squashed(text):
    return "".join(text.split())


class TestExtraction:
    """One block per text object, with operator positions."""

    def test_runs_become_blocks(self, pdf_path):
        document = opened(pdf_path)
        blocks = document.extract_blocks()
        try:
            assert [b.block_id for b in blocks] == ["pdf:p0:r0", "pdf:p0:r1"]
            assert [b.text for b in blocks] == list(FRENCH)
            assert all(b.page_index == 0 and b.kind == 'page' for b in blocks)
            assert blocks[0].metadata['font'] == 'helv'
            assert blocks[0].metadata['font_size'] == 11
            assert blocks[0].metadata['operator_indices']
            assert document.unparsed_pages == []
        finally:
            document.close()

    def test_blocks_cover_every_page(self, tmp_path):
        path = create_pdf(tmp_path / "pages.pdf", pages=[["First page sentence."], ["Second page sentence."]])
        document = opened(path)
        blocks = document.extract_blocks()
        document.close()
        assert [(b.page_index, b.text) for b in blocks] == [
            (0, "First page sentence."), (1, "Second page sentence.")]

    def test_noise_runs_are_skipped(self, tmp_path):
        path = create_pdf(tmp_path / "noise.pdf", pages=[["12", "Actual sentence to translate.", "..."]])
        document = opened(path)
        blocks = document.extract_blocks()
        document.close()
        assert [b.text for b in blocks] == ["Actual sentence to translate."]

    def test_no_translatable_text(self, tmp_path):
        path = create_pdf(tmp_path / "numbers.pdf", pages=[["12", "345"]])
        document = opened(path)
        with pytest.raises(ExtractionError, match="no translatable text"):
            document.extract_blocks()
        document.close()

    def test_unparseable_stream_uses_layout_extraction(self, tmp_path):
        path = write_raw_pdf(tmp_path / "raw.pdf", b"BT /helv 12 Tf 72 720 Td (Unterminated text object here) Tj")
        document = opened(path)
        blocks = document.extract_blocks()
        document.close()

        assert document.unparsed_pages == [0]
        assert blocks[0].block_id.startswith("pdf:p0:b")
        assert blocks[0].bbox is not None
        assert "Unterminated text object here" in blocks[0].text

    def test_not_a_pdf(self, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_text("this is not a pdf document")
        with pytest.raises(DocumentValidationError):
            opened(str(path))


class TestUploadValidation:
    """Unusable PDFs are refused before any work is queued."""

    def test_valid_pdf(self, pdf_path):
        assert validate_document(pdf_path) == "pdf"

    def test_password_protected(self, tmp_path):
        path = write_encrypted_pdf(tmp_path / "locked.pdf")
        with pytest.raises(DocumentValidationError, match="password protected"):
            validate_document(path)

    def test_no_pages(self, tmp_path):
        path = write_pageless_pdf(tmp_path / "empty.pdf")
        with pytest.raises(DocumentValidationError, match="no pages|Cannot open PDF"):
            validate_document(path)

    def test_corrupt_body(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"%PDF-1.7\n" + bytes(range(256)) * 8)
        with pytest.raises(DocumentValidationError):
            validate_document(str(path))


class TestOperatorRebuild:
    """Content streams are rewritten in place; layout is kept."""

    def test_monolingual_replaces_text(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        translate_all(document)
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "paper-mono.pdf"))
        document.close()

        assert result.strategy == 'operator'
        assert result.degraded is False
        text = squashed(pdf_text(result.output_path))
        assert squashed("Le vif renard brun saute") in text
        assert squashed("The quick brown fox") not in text

    def test_bilingual_keeps_source_and_adds_translation(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        translate_all(document)
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "paper-dual.pdf"))
        document.close()

        text = squashed(pdf_text(result.output_path))
        for original, translation in FRENCH.items():
            assert squashed(original) in text
            assert squashed(translation) in text

    def test_page_count_and_size_are_kept(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        translate_all(document)
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "same.pdf"))
        document.close()

        with fitz.open(pdf_path) as source, fitz.open(result.output_path) as output:
            assert output.page_count == source.page_count
            assert output[0].rect == source[0].rect

    def test_cjk_translation_gets_a_cjk_font(self, pdf_path, tmp_path):
        document = opened(pdf_path, target_language="Chinese")
        translate_all(document, {text: "你好世界" for text in FRENCH})
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "paper-zh.pdf"))
        document.close()

        with fitz.open(result.output_path) as output:
            font_names = [font[4] for font in output[0].get_fonts()]
        assert 'china-s' in font_names

    def test_cyrillic_translation_embeds_a_font(self, pdf_path, tmp_path):
        document = opened(pdf_path, target_language="Russian")
        translate_all(document, {text: "Привет, мир" for text in FRENCH})
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "paper-ru.pdf"))
        document.close()

        with fitz.open(result.output_path) as output:
            font_names = [font[4] for font in output[0].get_fonts()]
        assert 'figo' in font_names
        assert squashed("Привет, мир") in squashed(pdf_text(result.output_path))

    def test_arabic_translation_embeds_a_font(self, pdf_path, tmp_path):
        document = opened(pdf_path, target_language="Arabic")
        translate_all(document, {text: "مرحبا بالعالم" for text in FRENCH})
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "paper-ar.pdf"))
        document.close()

        assert result.degraded is False
        with fitz.open(result.output_path) as output:
            font_names = [font[4] for font in output[0].get_fonts()]
        assert 'figo' in font_names

    def test_bilingual_translation_stays_between_close_lines(self, tmp_path):
        path = write_raw_pdf(tmp_path / "tight.pdf",
                             b"BT /helv 12 Tf 72 700 Td (First line of the tight page) Tj ET\n"
                             b"BT /helv 12 Tf 72 686 Td (Second line of the tight page) Tj ET")
        document = opened(path)
        translate_all(document, {
            "First line of the tight page": "Premiere ligne de la page serree",
            "Second line of the tight page": "Seconde ligne de la page serree",
        })
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "tight-dual.pdf"))
        document.close()

        with fitz.open(result.output_path) as output:
            spans = {span['text'].strip(): span
                     for block in output[0].get_text("dict")['blocks']
                     for line in block.get('lines', [])
                     for span in line['spans'] if span['text'].strip()}

        first = spans["First line of the tight page"]['origin'][1]
        second = spans["Second line of the tight page"]['origin'][1]
        squeezed = spans["Premiere ligne de la page serree"]
        baseline, size = squeezed['origin'][1], squeezed['size']

        # y grows downwards here
        assert first < baseline < second
        assert size < 12
        assert baseline - 0.8 * size >= first + 0.2 * 12 - 0.01
        assert baseline + 0.2 * size <= second - 0.8 * 12 + 0.01

        # nothing below the last line: full size, one line down
        below = spans["Seconde ligne de la page serree"]
        assert below['size'] == pytest.approx(12)
        assert below['origin'][1] == pytest.approx(second + 12 * 1.2)

    def test_translation_without_room_is_left_out(self, tmp_path):
        path = write_raw_pdf(tmp_path / "packed.pdf",
                             b"BT /helv 12 Tf 72 700 Td (First line of the packed page) Tj ET\n"
                             b"BT /helv 12 Tf 72 692 Td (Second line of the packed page) Tj ET")
        document = opened(path)
        translate_all(document, {
            "First line of the packed page": "Premiere ligne",
            "Second line of the packed page": "Seconde ligne",
        })
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "packed-dual.pdf"))
        document.close()

        assert result.degraded is False
        assert any("1 translation(s) left out" in note for note in result.notes)
        text = pdf_text(result.output_path)
        assert "Premiere ligne" not in text
        assert "Seconde ligne" in text

    def test_untranslated_document_is_saved_unchanged(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        document.extract_blocks()
        document.apply_translations({})
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "untouched.pdf"))
        document.close()

        assert result.degraded is False
        assert squashed("The quick brown fox") in squashed(pdf_text(result.output_path))


class TestFallback:
    """Full rebuild when no page can be rewritten at operator level."""

    def test_failing_regeneration_degrades(self, pdf_path, tmp_path, monkeypatch):
        def broken(self, page, page_blocks, mode):
            raise ContentStreamError("unsupported operator sequence", page_index=page.number)

        monkeypatch.setattr(OperatorRegenerator, 'regenerate_page', broken)

        document = opened(pdf_path)
        translate_all(document)
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "degraded.pdf"))
        document.close()

        assert result.strategy == 'full-rebuild'
        assert result.degraded is True
        assert any("full rebuild" in note for note in result.notes)
        assert any("passed through" in note for note in result.notes)

        text = squashed(pdf_text(result.output_path))
        for original, translation in FRENCH.items():
            assert squashed(original) in text
            assert squashed(translation) in text

    def test_layout_blocks_are_rebuilt_as_text(self, tmp_path):
        path = write_raw_pdf(tmp_path / "raw.pdf", b"BT /helv 12 Tf 72 720 Td (Unterminated text object here) Tj")
        document = opened(path)
        blocks = document.extract_blocks()
        document.apply_translations({blocks[0].block_id: "Objet texte non termine ici"})
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "raw-mono.pdf"))
        document.close()

        assert result.degraded is True
        assert "Objet texte non termine ici" in pdf_text(result.output_path)


class TestTextOutputs:
    """html and txt serializations of a PDF's blocks."""

    def test_html_output(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        translate_all(document)
        document.rebuild(GenerateMode.BILINGUAL, 'html')
        result = document.save(str(tmp_path / "paper-dual.html"))
        document.close()

        assert (result.output_format, result.strategy) == ('html', 'markup')
        content = (tmp_path / "paper-dual.html").read_text(encoding='utf-8')
        assert content.startswith("<!DOCTYPE html>")
        assert '<p class="original">The quick brown fox jumps over the lazy dog.</p>' in content
        assert '<p class="translation">Le vif renard brun saute par-dessus le chien paresseux.</p>' in content
        assert "<h2>Page 1</h2>" in content

    def test_txt_output(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        translate_all(document)
        document.rebuild(GenerateMode.MONOLINGUAL, 'txt')
        result = document.save(str(tmp_path / "paper-mono.txt"))
        document.close()

        content = (tmp_path / "paper-mono.txt").read_text(encoding='utf-8')
        assert result.output_format == 'txt'
        assert content.startswith("## Page 1")
        assert "Seconde ligne de texte d'exemple pour la traduction." in content
        assert "Second line of sample text" not in content

    @pytest.mark.parametrize("requested,expected", [
        (".html", ('html', False)),
        ("HTM", ('html', False)),
        ("report.txt", ('txt', False)),
        ("pdf", ('pdf', False)),
        ("docx", ('pdf', True)),
        ("", ('pdf', True)),
    ])
    def test_resolve_output_format(self, requested, expected):
        assert resolve_output_format(requested) == expected

    def test_output_filename(self):
        assert output_filename("my book.pdf", GenerateMode.BILINGUAL, 'html') == "my book-dual.html"
        assert output_filename("/tmp/x/novel.epub", GenerateMode.MONOLINGUAL, 'epub') == "novel-mono.epub"


class TestIntegrity:
    """Fragment recovery from written outputs."""

    def test_bilingual_pdf_passes(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        blocks = translate_all(document)
        document.rebuild(GenerateMode.BILINGUAL)
        result = document.save(str(tmp_path / "check.pdf"))
        document.close()

        report = check_output_integrity(result.output_path, blocks, GenerateMode.BILINGUAL)
        assert report.passed
        assert report.translation_rate == 1.0
        assert report.original_rate == 1.0
        assert report.translations_checked == 2

    def test_missing_originals_fail_bilingual_check(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        blocks = translate_all(document)
        document.rebuild(GenerateMode.MONOLINGUAL)
        result = document.save(str(tmp_path / "mono.pdf"))
        document.close()

        assert check_output_integrity(result.output_path, blocks, GenerateMode.MONOLINGUAL).passed
        report = check_output_integrity(result.output_path, blocks, GenerateMode.BILINGUAL)
        assert not report.passed
        assert report.original_rate == 0.0
        assert report.missing

    def test_missing_translations_fail(self, pdf_path, tmp_path):
        document = opened(pdf_path)
        blocks = translate_all(document)
        document.close()
        output = tmp_path / "wrong.txt"
        output.write_text("nothing relevant here", encoding='utf-8')

        report = check_output_integrity(str(output), blocks, GenerateMode.MONOLINGUAL)
        assert not report.passed
        assert report.translation_rate == 0.0
        assert report.to_dict()['missing']
