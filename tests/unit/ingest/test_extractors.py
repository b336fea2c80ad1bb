"""Tests for text extractors."""

from __future__ import annotations

import zipfile

import pypdf
import pytest

from docent.errors import ExtractionError, ScannedDocumentError, UnsupportedFormatError
from docent.ingest import extractors
from docent.ingest.extractors import (
    DocxExtractor,
    PdfExtractor,
    PlainTextExtractor,
    clean_text,
    extractor_for,
    supported_extensions,
)

_DOCX_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
    "<w:body>"
    "<w:p><w:r><w:t>Getting </w:t></w:r><w:r><w:t>started</w:t></w:r></w:p>"
    "<w:p><w:r><w:t>   </w:t></w:r></w:p>"
    "<w:p><w:r><w:t>Plug in the charger.</w:t></w:r></w:p>"
    "</w:body></w:document>"
)


def _write_docx(path, xml=_DOCX_XML):
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("[Content_Types].xml", "<Types/>")
        if xml is not None:
            zf.writestr("word/document.xml", xml)
    return path


# ------------------------------------------------------------------
# clean_text
# ------------------------------------------------------------------


def test_clean_text_normalizes_newlines_and_blank_runs():
    raw = "  Title  \r\n\r\n\r\n\r\nBody line\rnext  \n\n\n"
    assert clean_text(raw) == "Title\n\nBody line\nnext"


def test_clean_text_empty():
    assert clean_text(" \n \n ") == ""


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    ("name", "cls"),
    [
        ("manual.pdf", PdfExtractor),
        ("Manual.PDF", PdfExtractor),
        ("report.docx", DocxExtractor),
        ("notes.txt", PlainTextExtractor),
        ("README.md", PlainTextExtractor),
        ("guide.rst", PlainTextExtractor),
    ],
)
def test_extractor_for_extension(name, cls):
    assert isinstance(extractor_for(name), cls)


def test_extractor_for_unsupported_extension():
    with pytest.raises(UnsupportedFormatError) as exc_info:
        extractor_for("slides.pptx")
    assert exc_info.value.extension == ".pptx"


def test_extractor_for_no_extension():
    with pytest.raises(UnsupportedFormatError):
        extractor_for("Makefile")


def test_supported_extensions_sorted():
    exts = supported_extensions()
    assert exts == sorted(exts)
    assert {".pdf", ".docx", ".txt", ".md"} <= set(exts)


# ------------------------------------------------------------------
# Plain text
# ------------------------------------------------------------------


def test_plain_text_extraction(tmp_path):
    path = tmp_path / "notes.md"
    path.write_text("# Notes\r\n\r\n\r\n\r\nFirst point.  \n", encoding="utf-8")
    assert PlainTextExtractor().extract_text(path) == "# Notes\n\nFirst point."


def test_plain_text_missing_file(tmp_path):
    with pytest.raises(ExtractionError):
        PlainTextExtractor().extract_text(tmp_path / "missing.txt")


# ------------------------------------------------------------------
# DOCX
# ------------------------------------------------------------------


def test_docx_paragraphs(tmp_path):
    path = _write_docx(tmp_path / "guide.docx")
    assert DocxExtractor().extract_text(path) == "Getting started\n\nPlug in the charger."


def test_docx_without_document_part(tmp_path):
    path = _write_docx(tmp_path / "broken.docx", xml=None)
    with pytest.raises(ExtractionError, match="word/document.xml"):
        DocxExtractor().extract_text(path)


def test_docx_not_a_zip(tmp_path):
    path = tmp_path / "fake.docx"
    path.write_bytes(b"plain bytes, no archive")
    with pytest.raises(ExtractionError):
        DocxExtractor().extract_text(path)


# ------------------------------------------------------------------
# PDF
# ------------------------------------------------------------------


class _FakePage:
    def __init__(self, text):
        self._text = text

    def extract_text(self):
        return self._text


class _FakeReader:
    pages: list[_FakePage] = []

    def __init__(self, path):
        self.path = path


def test_pdf_pages_joined(tmp_path, monkeypatch):
    _FakeReader.pages = [_FakePage("Page one text."), _FakePage(""), _FakePage("Page two.")]
    monkeypatch.setattr(extractors.pypdf, "PdfReader", _FakeReader)
    text = PdfExtractor().extract_text(tmp_path / "any.pdf")
    assert text == "Page one text.\n\nPage two."


def test_blank_pdf_is_reported_as_scanned(tmp_path):
    writer = pypdf.PdfWriter()
    writer.add_blank_page(width=200, height=200)
    path = tmp_path / "scan.pdf"
    with open(path, "wb") as fh:
        writer.write(fh)

    with pytest.raises(ScannedDocumentError):
        PdfExtractor().extract_text(path)


def test_scanned_error_is_an_extraction_error():
    assert issubclass(ScannedDocumentError, ExtractionError)


def test_corrupt_pdf(tmp_path):
    path = tmp_path / "corrupt.pdf"
    path.write_bytes(b"this is not a pdf at all")
    with pytest.raises(ExtractionError):
        PdfExtractor().extract_text(path)


def test_missing_pdf(tmp_path):
    with pytest.raises(ExtractionError):
        PdfExtractor().extract_text(tmp_path / "missing.pdf")
