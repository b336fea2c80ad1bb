"""Vector search: cosine-similarity scan with optional keyword re-ranking.

Pipeline:
  1. Load candidate chunks (all chunks, or those of the given documents).
  2. Score each by cosine similarity against the query vector.
  3. Drop candidates below ``similarity_threshold``; keep the best 2 × top_k.
  4. Optionally re-rank:
       score = similarity × (1 − keyword_weight) + overlap × keyword_weight
     where overlap = |query keywords ∩ chunk keywords| / |query keywords|.
  5. Truncate to top_k and join with document titles.

Sorting is stable, so equal scores keep chunk-store order.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from docent.config import RetrievalCfg
from docent.db.models import Chunk
from docent.db.repository import ChunkStore
from docent.db.vectors import cosine_similarity
from docent.ingest.classify import extract_keywords

logger = logging.getLogger(__name__)


@dataclass
class SearchConfig:
    top_k: int = 3
    similarity_threshold: float = 0.15
    use_keyword_reranking: bool = True
    keyword_weight: float = 0.2

    @classmethod
    def from_retrieval_cfg(cls, cfg: RetrievalCfg, top_k: int | None = None) -> SearchConfig:
        return cls(
            top_k=top_k if top_k is not None else cfg.top_k,
            similarity_threshold=cfg.similarity_threshold,
            use_keyword_reranking=cfg.use_keyword_reranking,
            keyword_weight=cfg.keyword_weight,
        )


@dataclass(frozen=True)
class RetrievalResult:
    """A ranked chunk with its document's display metadata.

    Attributes:
        similarity: Cosine similarity between query and chunk.
        score: Ranking score; equals *similarity* unless keyword re-ranking ran.
        section_title: Heading the chunk sits under, when the document has one.
    """

    chunk_id: int
    document_id: int
    document_title: str
    source_path: str
    content: str
    similarity: float
    chunk_index: int
    score: float
    section_title: str | None = None


@dataclass
class _Candidate:
    chunk: Chunk
    similarity: float
    score: float


def keyword_overlap(query_keywords: frozenset[str], content: str) -> float:
    """Fraction of *query_keywords* that occur in *content*'s keyword set."""
    if not query_keywords:
        return 0.0
    return len(query_keywords & extract_keywords(content)) / len(query_keywords)


class VectorSearch:
    """Rank stored chunk vectors against a query vector."""

    def __init__(self, store: ChunkStore) -> None:
        self._store = store

    def search(
        self,
        query_vector: Sequence[float],
        query_text: str,
        config: SearchConfig | None = None,
        document_ids: Sequence[int] | None = None,
    ) -> list[RetrievalResult]:
        """Return at most ``config.top_k`` results, best first.

        Args:
            query_vector: Embedding of the query.
            query_text: Raw query, used for keyword re-ranking.
            config: Ranking parameters (defaults to ``SearchConfig()``).
            document_ids: Restrict candidates to these documents; None means all.

        Returns:
            Results sorted by non-increasing ``score``. Empty when there is no
            query vector, no candidate, or nothing above the threshold.
        """
        config = config or SearchConfig()
        if not query_vector or config.top_k <= 0:
            return []

        if document_ids is None:
            chunks = self._store.get_all_chunks()
        else:
            chunks = self._store.get_chunks_by_document_ids(document_ids)
        if not chunks:
            logger.debug("No candidate chunks to search")
            return []

        candidates: list[_Candidate] = []
        for chunk in chunks:
            similarity = cosine_similarity(query_vector, chunk.embedding)
            if similarity >= config.similarity_threshold:
                candidates.append(_Candidate(chunk, similarity, similarity))

        if not candidates:
            logger.debug(
                "All %d chunks below similarity threshold %.2f",
                len(chunks),
                config.similarity_threshold,
            )
            return []

        candidates.sort(key=lambda c: c.similarity, reverse=True)
        candidates = candidates[: config.top_k * 2]
        logger.debug(
            "Similarity range of %d candidates: %.3f..%.3f",
            len(candidates),
            candidates[-1].similarity,
            candidates[0].similarity,
        )

        if config.use_keyword_reranking and query_text.strip():
            candidates = self._rerank(candidates, query_text, config.keyword_weight)

        top = candidates[: config.top_k]
        return self._attach_documents(top)

    @staticmethod
    def _rerank(
        candidates: list[_Candidate], query_text: str, keyword_weight: float
    ) -> list[_Candidate]:
        query_keywords = extract_keywords(query_text)
        for c in candidates:
            overlap = keyword_overlap(query_keywords, c.chunk.content)
            c.score = c.similarity * (1 - keyword_weight) + overlap * keyword_weight
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    def _attach_documents(self, candidates: list[_Candidate]) -> list[RetrievalResult]:
        joined = {
            row.chunk.id: row
            for row in self._store.get_chunks_with_document_titles(
                [c.chunk.id for c in candidates]
            )
        }
        results: list[RetrievalResult] = []
        for c in candidates:
            row = joined.get(c.chunk.id)
            if row is None:
                # Deleted between the scan and the join.
                continue
            results.append(
                RetrievalResult(
                    chunk_id=c.chunk.id,
                    document_id=c.chunk.document_id,
                    document_title=row.document_title,
                    source_path=row.source_path,
                    content=c.chunk.content,
                    similarity=c.similarity,
                    chunk_index=c.chunk.chunk_index,
                    score=c.score,
                    section_title=c.chunk.metadata_dict.get("section_title"),
                )
            )
        return results
