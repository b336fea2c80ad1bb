"""Text extraction capabilities, one per file family.

Each extractor turns a file on disk into cleaned plain text for the semantic
chunker. ``extractor_for()`` picks the implementation by file extension.
"""

from __future__ import annotations

import re
import warnings
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path

import pypdf
from pypdf.errors import PyPdfError
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from docent.errors import ExtractionError, ScannedDocumentError, UnsupportedFormatError

# word/document.xml is parsed with html.parser; lxml is not a dependency.
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

_BLANK_RUN_RE = re.compile(r"\n{3,}")


def clean_text(text: str) -> str:
    """Normalize newlines, trim every line, keep at most one blank line in a row."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.strip() for line in text.split("\n")]
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip()


class TextExtractor(ABC):
    """Abstract base for text extractors."""

    extensions: tuple[str, ...] = ()
    source_type: str = ""

    @abstractmethod
    def extract_text(self, path: str | Path) -> str:
        """Return the cleaned plain text of the file at *path*.

        Raises:
            ExtractionError: The file could not be read or yielded no text.
        """


class PlainTextExtractor(TextExtractor):
    extensions = (".txt", ".md", ".markdown", ".rst")
    source_type = "text"

    def extract_text(self, path: str | Path) -> str:
        try:
            raw = Path(path).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ExtractionError(f"Cannot read '{path}': {exc}") from exc
        return clean_text(raw)


class PdfExtractor(TextExtractor):
    """Page-by-page extraction via ``pypdf.PdfReader``.

    Pages without a text layer are skipped. A PDF where no page yields text is
    almost always a scan, which is reported as :class:`ScannedDocumentError`.
    """

    extensions = (".pdf",)
    source_type = "pdf"

    def extract_text(self, path: str | Path) -> str:
        try:
            reader = pypdf.PdfReader(str(path))
            parts: list[str] = []
            for page in reader.pages:
                page_text = (page.extract_text() or "").strip()
                if page_text:
                    parts.append(page_text)
        except (OSError, PyPdfError) as exc:
            raise ExtractionError(f"Cannot read PDF '{path}': {exc}") from exc

        text = clean_text("\n\n".join(parts))
        if not text:
            raise ScannedDocumentError(
                f"No text layer found in '{path}'. Scanned PDFs are not supported."
            )
        return text


class DocxExtractor(TextExtractor):
    """Paragraph-per-``<w:p>`` extraction from ``word/document.xml``.

    A DOCX file is a ZIP archive; reading it with ``zipfile`` and BeautifulSoup
    avoids a dedicated Word library.
    """

    extensions = (".docx",)
    source_type = "docx"

    def extract_text(self, path: str | Path) -> str:
        try:
            with zipfile.ZipFile(path, "r") as zf:
                xml = zf.read("word/document.xml").decode("utf-8", errors="replace")
        except KeyError as exc:
            raise ExtractionError(f"'{path}' has no word/document.xml part.") from exc
        except (OSError, zipfile.BadZipFile) as exc:
            raise ExtractionError(f"Cannot read DOCX '{path}': {exc}") from exc

        soup = BeautifulSoup(xml, "html.parser")
        paragraphs: list[str] = []
        for p in soup.find_all("w:p"):
            text = "".join(t.get_text() for t in p.find_all("w:t"))
            if text.strip():
                paragraphs.append(text)
        return clean_text("\n\n".join(paragraphs))


_EXTRACTORS: tuple[TextExtractor, ...] = (
    PdfExtractor(),
    DocxExtractor(),
    PlainTextExtractor(),
)


def supported_extensions() -> list[str]:
    return sorted(ext for e in _EXTRACTORS for ext in e.extensions)


def extractor_for(path: str | Path) -> TextExtractor:
    """Return the extractor for *path*'s extension.

    Raises:
        UnsupportedFormatError: No extractor handles the extension.
    """
    ext = Path(path).suffix.lower()
    for extractor in _EXTRACTORS:
        if ext in extractor.extensions:
            return extractor
    raise UnsupportedFormatError(ext or Path(path).name)
