"""Exception taxonomy for the knowledge engine.

Ingestion-level errors are raised to the caller after the Document record has
been rolled back. Per-chunk and per-query embedding failures are not raised by
the engine; they degrade to a dropped chunk or an empty result list.
"""

from __future__ import annotations


class DocentError(Exception):
    """Base class for all knowledge-engine errors."""


class UnsupportedFormatError(DocentError):
    """No text extractor handles the file's extension."""

    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported file format: {extension or '(none)'!r}")


class ExtractionError(DocentError):
    """Text extraction failed (unreadable, corrupt or unparseable file)."""


class ScannedDocumentError(ExtractionError):
    """The document has no text layer (e.g. a scanned PDF)."""


class EmptyDocumentError(DocentError):
    """The document produced no chunks."""


class ModelLoadError(DocentError):
    """The embedding model could not be resolved or loaded."""


class EmbeddingError(DocentError):
    """A single embedding call failed. Never escapes the embedding provider."""


class StoreError(DocentError):
    """The chunk store rejected an operation."""
