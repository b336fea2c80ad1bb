"""Knowledge base: the composed RAG engine.

Owns one chunk store, one embedding provider, the retrieval cache and the
progress tracker, and exposes the operations callers need: add, delete and
list documents, search for relevant chunks, and observe indexing progress.
Construct it explicitly (or with :meth:`KnowledgeBase.open`) and shut it down
with :meth:`aclose`.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from pathlib import Path

from docent.config import DocentConfig
from docent.db.connection import Database
from docent.db.models import Document
from docent.db.repository import ChunkStore
from docent.db.schema import initialize
from docent.embedding.backends import EmbeddingBackend, backend_from_config
from docent.embedding.provider import EmbeddingProvider
from docent.errors import ModelLoadError
from docent.ingest.pipeline import IngestionPipeline, IngestionReport
from docent.ingest.progress import ProgressTracker
from docent.ingest.semantic import SemanticChunker
from docent.rag.cache import RetrievalCache
from docent.rag.search import RetrievalResult, SearchConfig, VectorSearch

logger = logging.getLogger(__name__)


class KnowledgeBase:
    """Document knowledge base with semantic retrieval.

    Args:
        store: Chunk store over an initialised database.
        provider: Embedding provider used for ingestion and queries.
        config: Engine configuration; defaults to ``DocentConfig()``.
        chunker: Semantic chunker (built from ``config.chunker`` if omitted).
        cache: Retrieval cache (sized from ``config.retrieval`` if omitted).
        progress: Progress tracker (a fresh one if omitted).
        sleep: Awaitable sleep for the ingestion completion hold.
    """

    def __init__(
        self,
        store: ChunkStore,
        provider: EmbeddingProvider,
        config: DocentConfig | None = None,
        *,
        chunker: SemanticChunker | None = None,
        cache: RetrievalCache | None = None,
        progress: ProgressTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or DocentConfig()
        self._store = store
        self._provider = provider
        self._cache = cache or RetrievalCache(self.config.retrieval.cache_size)
        self._progress = progress or ProgressTracker()
        self._search = VectorSearch(store)
        self._pipeline = IngestionPipeline(
            store,
            provider,
            chunker or SemanticChunker(self.config.chunker),
            self._progress,
            self._cache,
            self.config.ingest,
            sleep=sleep,
        )
        self._owned_conn: sqlite3.Connection | None = None

    @classmethod
    def open(
        cls,
        db_path: Path | str,
        config: DocentConfig | None = None,
        *,
        backend: EmbeddingBackend | None = None,
    ) -> KnowledgeBase:
        """Open (creating if needed) the database at *db_path* and build the engine.

        The returned instance owns the connection and closes it in :meth:`aclose`.
        """
        config = config or DocentConfig()
        conn = Database(db_path).connect()
        initialize(conn)
        provider = EmbeddingProvider(
            backend or backend_from_config(config.embedding), config.embedding
        )
        kb = cls(ChunkStore(conn), provider, config)
        kb._owned_conn = conn
        return kb

    async def aclose(self) -> None:
        """Release the embedding model and close an owned database connection."""
        await self._provider.aclose()
        if self._owned_conn is not None:
            self._owned_conn.close()
            self._owned_conn = None

    async def __aenter__(self) -> KnowledgeBase:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def store(self) -> ChunkStore:
        return self._store

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def cache(self) -> RetrievalCache:
        return self._cache

    @property
    def progress(self) -> ProgressTracker:
        return self._progress

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def add_document(self, path: str | Path, title: str | None = None) -> IngestionReport:
        """Ingest the file at *path*. See IngestionPipeline.ingest for errors."""
        return await self._pipeline.ingest(path, title=title)

    async def delete_document(self, document_id: int) -> int:
        """Delete a document with all of its chunks. Returns the chunk count removed."""
        removed = self._store.delete_document_by_id(document_id)
        self._progress.remove(document_id)
        self._cache.clear()
        logger.info("Deleted document %d (%d chunks)", document_id, removed)
        return removed

    def get_document(self, document_id: int) -> Document | None:
        return self._store.get_document(document_id)

    def list_documents(self) -> list[Document]:
        return self._store.list_documents()

    def has_indexed_documents(self) -> bool:
        return self._store.has_indexed_documents()

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search_relevant_chunks(
        self,
        query: str,
        top_k: int | None = None,
        document_ids: Sequence[int] | None = None,
    ) -> list[RetrievalResult]:
        """Return the chunks most relevant to *query*, best first.

        Never raises for retrieval problems: a blank query, an unavailable
        model or a failed query embedding all yield ``[]``. Check
        ``provider.state`` to tell "nothing relevant" from "engine unavailable".
        """
        if not query.strip():
            return []

        config = SearchConfig.from_retrieval_cfg(self.config.retrieval, top_k)
        key = self._cache_key(query, config.top_k, document_ids)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Retrieval cache hit for %r", query)
            return cached

        try:
            vector = await self._provider.embed(query)
        except ModelLoadError as exc:
            logger.warning("Retrieval unavailable: %s", exc)
            return []
        if vector is None:
            logger.warning("Query embedding failed; returning no results")
            return []

        results = self._search.search(vector, query, config, document_ids)
        self._cache.put(key, results)
        logger.debug("Retrieved %d chunks for %r", len(results), query)
        return results

    def _cache_key(
        self, query: str, top_k: int, document_ids: Sequence[int] | None
    ) -> str:
        # Default-scope queries are keyed by the query string alone.
        if top_k == self.config.retrieval.top_k and document_ids is None:
            return query
        ids = ",".join(str(i) for i in sorted(document_ids)) if document_ids is not None else "*"
        return f"{query}\x00{top_k}\x00{ids}"

    # ------------------------------------------------------------------
    # Indexing progress
    # ------------------------------------------------------------------

    def indexing_progress(self) -> dict[int, float]:
        """Latest progress of every document currently being ingested."""
        return self._progress.snapshot()

    def watch_progress(self, document_id: int) -> AsyncIterator[float]:
        return self._progress.watch(document_id)
