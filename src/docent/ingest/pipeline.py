"""Ingestion pipeline: file → text → semantic chunks → embeddings → chunk store.

Steps for one document (sequential, not resumable):
  1. Pick the extractor by extension (unsupported: fail, nothing written).
  2. Insert the Document row (not indexed, progress 0).
  3. Extract text                      progress 0.1 → 0.2
  4. Semantic chunking                 progress 0.2 → 0.3
  5. Embed every chunk                 progress 0.3 → 0.9
     A chunk whose embedding fails is dropped and counted.
  6. Insert embedded chunks in batches, mark the document indexed.
  7. Clear the retrieval cache, hold the 100 % marker, drop progress tracking.

Any failure after step 2 deletes the Document row (and, by cascade, chunks
already written) before the error propagates.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from docent.config import IngestCfg
from docent.db.models import Chunk, Document
from docent.db.repository import ChunkStore
from docent.embedding.provider import EmbeddingProvider
from docent.errors import EmptyDocumentError, ExtractionError, StoreError
from docent.ingest.extractors import extractor_for
from docent.ingest.progress import ProgressTracker
from docent.ingest.semantic import SemanticChunk, SemanticChunker, count_tokens
from docent.rag.cache import RetrievalCache

logger = logging.getLogger(__name__)

_EXTRACT_START = 0.1
_EXTRACT_DONE = 0.2
_CHUNK_DONE = 0.3
_EMBED_SPAN = 0.6


@dataclass(frozen=True)
class IngestionReport:
    """Outcome of one successful ingestion."""

    document_id: int
    title: str
    chunks_total: int
    chunks_embedded: int

    @property
    def chunks_dropped(self) -> int:
        return self.chunks_total - self.chunks_embedded


def chunk_metadata(chunk: SemanticChunk) -> str:
    """JSON metadata persisted alongside a chunk's content."""
    return json.dumps(
        {
            "chunk_type": chunk.type.value,
            "section_title": chunk.section_title,
            "context_prefix": chunk.context_prefix,
        },
        ensure_ascii=False,
    )


class IngestionPipeline:
    """Orchestrates extraction, chunking, embedding and persistence.

    Args:
        store: Chunk store the document and its chunks are written to.
        provider: Embedding provider shared with retrieval.
        chunker: Semantic chunker.
        progress: Progress tracker updated as ingestion advances.
        cache: Retrieval cache, cleared once the new chunks are committed.
        config: Batch size and completion hold.
        sleep: Awaitable sleep used for the completion hold (injectable).
    """

    def __init__(
        self,
        store: ChunkStore,
        provider: EmbeddingProvider,
        chunker: SemanticChunker,
        progress: ProgressTracker,
        cache: RetrievalCache,
        config: IngestCfg | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._provider = provider
        self._chunker = chunker
        self._progress = progress
        self._cache = cache
        self._config = config or IngestCfg()
        self._sleep = sleep

    async def ingest(self, path: str | Path, title: str | None = None) -> IngestionReport:
        """Ingest the file at *path*.

        Raises:
            UnsupportedFormatError: No extractor for the extension (nothing written).
            ExtractionError: The file could not be read or has no text layer.
            EmptyDocumentError: The text produced no chunks.
            ModelLoadError: The embedding model could not be loaded.
            StoreError: The chunk store rejected a write.
        """
        path = Path(path)
        extractor = extractor_for(path)
        try:
            file_size = path.stat().st_size
        except OSError as exc:
            raise ExtractionError(f"Cannot read '{path}': {exc}") from exc

        document = Document(
            title=title or path.stem,
            source_type=extractor.source_type,
            source_path=str(path.resolve()),
            file_size=file_size,
        )
        document_id = self._store.insert_document(document)
        logger.info("Ingesting '%s' as document %d", path.name, document_id)

        try:
            self._report(document_id, _EXTRACT_START)
            text = await asyncio.to_thread(extractor.extract_text, path)
            self._report(document_id, _EXTRACT_DONE)

            semantic_chunks = self._chunker.chunk(text)
            if not semantic_chunks:
                raise EmptyDocumentError(f"'{path.name}' contains no text to index.")
            self._report(document_id, _CHUNK_DONE)
            logger.info("Document %d: %d chunks", document_id, len(semantic_chunks))

            records = await self._embed_chunks(document_id, semantic_chunks)
            for start in range(0, len(records), self._config.insert_batch_size):
                self._store.insert_chunks(records[start : start + self._config.insert_batch_size])

            self._store.update_document_index_status(document_id, True, len(records))
            self._report(document_id, 1.0)
        except Exception:
            self._rollback(document_id)
            raise

        self._cache.clear()

        report = IngestionReport(
            document_id=document_id,
            title=document.title,
            chunks_total=len(semantic_chunks),
            chunks_embedded=len(records),
        )
        if report.chunks_dropped:
            logger.warning(
                "Document %d: %d of %d chunks dropped (embedding failed)",
                document_id,
                report.chunks_dropped,
                report.chunks_total,
            )
        logger.info("Document %d indexed with %d chunks", document_id, report.chunks_embedded)

        await self._sleep(self._config.completion_hold_seconds)
        self._progress.remove(document_id)
        return report

    async def _embed_chunks(
        self, document_id: int, semantic_chunks: list[SemanticChunk]
    ) -> list[Chunk]:
        records: list[Chunk] = []
        total = len(semantic_chunks)
        for i, sc in enumerate(semantic_chunks):
            vector = await self._provider.embed(sc.full_content())
            self._report(document_id, _CHUNK_DONE + (i + 1) / total * _EMBED_SPAN)
            if vector is None:
                logger.debug("Document %d: chunk %d has no embedding, skipped", document_id, i)
                continue
            records.append(
                Chunk(
                    document_id=document_id,
                    chunk_index=sc.index,
                    content=sc.content,
                    embedding=vector,
                    token_count=count_tokens(sc.content),
                    metadata=chunk_metadata(sc),
                )
            )
        return records

    def _report(self, document_id: int, progress: float) -> None:
        self._progress.update(document_id, progress)
        self._store.update_document_index_progress(document_id, progress)

    def _rollback(self, document_id: int) -> None:
        self._progress.remove(document_id)
        try:
            self._store.delete_document_by_id(document_id)
        except StoreError:
            logger.exception("Rollback of document %d failed", document_id)
        else:
            logger.info("Rolled back document %d", document_id)
