"""Docent ingest pipeline: extractors, semantic chunker, progress tracking."""

from docent.ingest.extractors import (
    DocxExtractor,
    PdfExtractor,
    PlainTextExtractor,
    TextExtractor,
    extractor_for,
)
from docent.ingest.progress import ProgressTracker
from docent.ingest.semantic import ChunkType, SemanticChunk, SemanticChunker
from docent.ingest.pipeline import IngestionPipeline, IngestionReport

__all__ = [
    "ChunkType",
    "DocxExtractor",
    "IngestionPipeline",
    "IngestionReport",
    "PdfExtractor",
    "PlainTextExtractor",
    "ProgressTracker",
    "SemanticChunk",
    "SemanticChunker",
    "TextExtractor",
    "extractor_for",
]
