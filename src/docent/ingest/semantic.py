"""Semantic chunker: structure- and topic-aware splitting.

Strategy:
  1. Split the text into paragraphs on blank lines.
  2. Classify each paragraph (heading / list / table / content) and extract
     its keyword set (see docent.ingest.classify).
  3. Group consecutive paragraphs. A new group starts at a heading, when the
     group would grow past ``target_chunk_size``, or (once the group holds at
     least ``min_chunk_size`` characters) at a topic boundary (low keyword
     Jaccard similarity with the previous paragraph, or an opening discourse
     marker such as "However").
  4. Accumulate groups into a pending buffer and emit a chunk whenever the
     buffer reaches ``target_chunk_size``. Buffers longer than
     ``max_chunk_size`` are cut into in-bounds pieces, preferring sentence
     boundaries and pieces close to ``target_chunk_size``.
  5. A trailing remainder shorter than ``min_chunk_size`` is merged into the
     previous chunk, or re-split with it when the merge would be too long.
     The remainder keeps the type of its paragraphs (a list-only document is
     one LIST chunk).
  6. Every chunk after the first gets the last ``overlap_sentences`` sentences
     of its predecessor as ``context_prefix``.

No input text is ever dropped: joining every chunk's ``content`` in index
order reproduces the input up to whitespace. Lengths are in characters of
``content``; the context prefix is not counted.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from enum import Enum

from docent.config import ChunkerCfg
from docent.ingest.classify import (
    Paragraph,
    ParagraphKind,
    annotate,
    heading_title,
    jaccard_similarity,
    opens_with_topic_change,
)

logger = logging.getLogger(__name__)

_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
# CJK sentence marks end a sentence anywhere; ASCII ones only before whitespace,
# so "3.14" and "e.g.x" stay intact.
_SENTENCE_END_RE = re.compile(r"[。！？]+|[.!?]+(?=\s|$)")


class ChunkType(str, Enum):
    HEADING = "heading"
    CONTENT = "content"
    LIST = "list"
    TABLE = "table"


@dataclass(frozen=True)
class SemanticChunk:
    """An intermediate chunk produced by the chunker (never persisted as-is)."""

    content: str
    index: int
    type: ChunkType = ChunkType.CONTENT
    section_title: str | None = None
    context_prefix: str = ""

    def full_content(self) -> str:
        """Content preceded by its context prefix; this is the text that gets embedded."""
        if self.context_prefix:
            return f"{self.context_prefix}\n\n{self.content}"
        return self.content


def count_tokens(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token."""
    return max(1, len(text) // 4)


def split_paragraphs(text: str) -> list[str]:
    """Split *text* on blank lines; paragraphs are stripped, empties dropped."""
    return [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text.strip()) if p.strip()]


def sentence_boundaries(text: str) -> list[int]:
    """Offsets just past each sentence end in *text*, ascending."""
    return [m.end() for m in _SENTENCE_END_RE.finditer(text)]


def split_sentences(text: str) -> list[str]:
    """Split *text* into sentences, keeping each sentence's punctuation."""
    sentences: list[str] = []
    start = 0
    for end in [*sentence_boundaries(text), len(text)]:
        piece = text[start:end].strip()
        if piece:
            sentences.append(piece)
        start = end
    return sentences


@dataclass
class _Draft:
    content: str
    type: ChunkType
    section_title: str | None


class SemanticChunker:
    """Split plain text into semantically coherent chunks.

    Args:
        config: Size limits and detection switches. Defaults to ``ChunkerCfg()``
            (400 / 600 / 100 characters, one sentence of overlap).
    """

    def __init__(self, config: ChunkerCfg | None = None) -> None:
        self.config = config or ChunkerCfg()

    def chunk(self, text: str) -> list[SemanticChunk]:
        """Return the ordered chunks of *text*; blank input yields ``[]``."""
        if not text or not text.strip():
            return []

        cfg = self.config
        paragraphs = [annotate(p, cfg.detect_headings) for p in split_paragraphs(text)]
        groups = self._group(paragraphs)
        logger.debug("Split into %d paragraphs, %d semantic groups", len(paragraphs), len(groups))

        drafts: list[_Draft] = []
        pending: list[Paragraph] = []
        pending_title: str | None = None
        pending_has_heading = False
        current_title: str | None = None

        for group in groups:
            if not pending:
                pending_title = current_title
                pending_has_heading = False
            for para in group:
                if para.is_heading:
                    current_title = heading_title(para.text)
                    if not pending_has_heading:
                        pending_title = current_title
                        pending_has_heading = True
            pending.extend(group)

            pending_text = _join(pending)
            if len(pending_text) >= cfg.target_chunk_size:
                drafts.extend(self._emit(pending_text, pending, pending_title))
                pending = []

        if pending:
            self._finish(drafts, _join(pending), _chunk_type(pending), pending_title)

        chunks = [
            SemanticChunk(
                content=d.content,
                index=i,
                type=d.type,
                section_title=d.section_title,
            )
            for i, d in enumerate(drafts)
        ]
        chunks = self._add_context_overlap(chunks)
        logger.debug("Final chunk count: %d", len(chunks))
        return chunks

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    def _group(self, paragraphs: list[Paragraph]) -> list[list[Paragraph]]:
        cfg = self.config
        groups: list[list[Paragraph]] = []
        group: list[Paragraph] = []
        group_size = 0

        for i, para in enumerate(paragraphs):
            size = len(para.text)
            if para.is_heading:
                start_new = True
            elif not group:
                start_new = False
            elif group_size + size > cfg.target_chunk_size:
                start_new = True
            elif cfg.detect_topic_boundary and group_size >= cfg.min_chunk_size:
                previous = paragraphs[i - 1]
                similarity = jaccard_similarity(previous.keywords, para.keywords)
                start_new = (
                    similarity < cfg.topic_change_threshold
                    or opens_with_topic_change(para.text)
                )
            else:
                start_new = False

            if start_new and group:
                groups.append(group)
                group = []
                group_size = 0
            group.append(para)
            group_size += size

        if group:
            groups.append(group)
        return groups

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def _emit(
        self, text: str, paragraphs: list[Paragraph], section_title: str | None
    ) -> list[_Draft]:
        chunk_type = _chunk_type(paragraphs)
        if len(text) <= self.config.max_chunk_size:
            return [_Draft(text, chunk_type, section_title)]
        return [_Draft(piece, chunk_type, section_title) for piece in self._split_long(text)]

    def _finish(
        self,
        drafts: list[_Draft],
        remainder: str,
        chunk_type: ChunkType,
        section_title: str | None,
    ) -> None:
        """Append the trailing *remainder* to *drafts* without losing any of it."""
        cfg = self.config
        if len(remainder) > cfg.max_chunk_size:
            drafts.extend(
                _Draft(piece, chunk_type, section_title) for piece in self._split_long(remainder)
            )
            return
        if not drafts or len(remainder) >= cfg.min_chunk_size:
            drafts.append(_Draft(remainder, chunk_type, section_title))
            return

        previous = drafts[-1]
        merged_type = previous.type if previous.type is chunk_type else ChunkType.CONTENT
        merged = f"{previous.content}\n\n{remainder}"
        if len(merged) <= cfg.max_chunk_size:
            drafts[-1] = replace(previous, content=merged, type=merged_type)
            return

        pieces = self._split_long(merged)
        if any(len(piece) < cfg.min_chunk_size for piece in pieces):
            # Limits leave no valid split; keep the short remainder as its own chunk.
            drafts.append(_Draft(remainder, chunk_type, section_title))
            return
        drafts[-1] = replace(previous, content=pieces[0], type=merged_type)
        drafts.extend(_Draft(piece, merged_type, section_title) for piece in pieces[1:])

    # ------------------------------------------------------------------
    # Long-text splitting
    # ------------------------------------------------------------------

    def _split_long(self, text: str) -> list[str]:
        """Split *text* into pieces within ``[min_chunk_size, max_chunk_size]``.

        Cut points are tried in tiers: sentence ends, then any whitespace, then
        any offset. In each tier the layout with the fewest pieces shorter than
        ``min_chunk_size`` wins, then the one whose pieces sit closest to
        ``target_chunk_size``. The first tier with no short pieces is used.
        When the limits admit no such layout at all, the layout with the fewest
        short pieces is kept so that no text is lost.
        """
        text = text.strip()
        spans = _SpanLengths(text)
        best: tuple[int, list[int]] | None = None
        for cuts in self._cut_tiers(text):
            layout = self._layout(text, spans, cuts)
            if layout is not None and (best is None or layout[0] < best[0]):
                best = layout
            if best is not None and best[0] == 0:
                break
        if best is None:
            return [text]
        offsets = best[1]
        return [text[a:b].strip() for a, b in zip(offsets, offsets[1:])]

    @staticmethod
    def _cut_tiers(text: str) -> Iterator[Sequence[int]]:
        sentence_cuts = sentence_boundaries(text)
        yield sentence_cuts
        yield sorted({*sentence_cuts, *(i for i, ch in enumerate(text) if ch.isspace())})
        yield range(1, len(text))

    def _layout(
        self, text: str, spans: _SpanLengths, cuts: Sequence[int]
    ) -> tuple[int, list[int]] | None:
        """Cheapest cut layout over *cuts* as ``(short_piece_count, offsets)``.

        Every piece is non-empty and at most ``max_chunk_size`` long; None if
        *cuts* cannot achieve that.
        """
        cfg = self.config
        points = [0, *(c for c in cuts if 0 < c < len(text)), len(text)]
        costs: list[tuple[int, int] | None] = [None] * len(points)
        back = [0] * len(points)
        costs[0] = (0, 0)

        for j in range(1, len(points)):
            for i in range(j - 1, -1, -1):
                size = spans.length(points[i], points[j])
                if size > cfg.max_chunk_size:
                    break
                prior = costs[i]
                if prior is None or size == 0:
                    continue
                cost = (
                    prior[0] + (size < cfg.min_chunk_size),
                    prior[1] + self._shape_cost(size),
                )
                if costs[j] is None or cost < costs[j]:
                    costs[j] = cost
                    back[j] = i

        final = costs[-1]
        if final is None:
            return None
        offsets = [points[-1]]
        j = len(points) - 1
        while j > 0:
            j = back[j]
            offsets.append(points[j])
        offsets.reverse()
        return final[0], offsets

    def _shape_cost(self, size: int) -> int:
        # Pieces above target are allowed up to max but penalised harder.
        deviation = size - self.config.target_chunk_size
        return deviation * deviation * (4 if deviation > 0 else 1)

    # ------------------------------------------------------------------
    # Context overlap
    # ------------------------------------------------------------------

    def _add_context_overlap(self, chunks: list[SemanticChunk]) -> list[SemanticChunk]:
        n = self.config.overlap_sentences
        if len(chunks) <= 1 or n <= 0:
            return chunks
        result = [chunks[0]]
        for previous, chunk in zip(chunks, chunks[1:]):
            prefix = " ".join(split_sentences(previous.content)[-n:])
            result.append(replace(chunk, context_prefix=prefix))
        return result


class _SpanLengths:
    """Stripped length of any ``text[start:end]`` in constant time."""

    def __init__(self, text: str) -> None:
        n = len(text)
        # First non-space offset at or after i.
        self._first = [n] * (n + 1)
        for i in range(n - 1, -1, -1):
            self._first[i] = self._first[i + 1] if text[i].isspace() else i
        # Last non-space offset before i.
        self._last = [-1] * (n + 1)
        for i in range(1, n + 1):
            self._last[i] = self._last[i - 1] if text[i - 1].isspace() else i - 1

    def length(self, start: int, end: int) -> int:
        first, last = self._first[start], self._last[end]
        return last - first + 1 if last >= first else 0


def _join(paragraphs: list[Paragraph]) -> str:
    return "\n\n".join(p.text for p in paragraphs)


def _chunk_type(paragraphs: list[Paragraph]) -> ChunkType:
    kinds = {p.kind for p in paragraphs}
    if kinds == {ParagraphKind.HEADING}:
        return ChunkType.HEADING
    if kinds == {ParagraphKind.LIST}:
        return ChunkType.LIST
    if kinds == {ParagraphKind.TABLE}:
        return ChunkType.TABLE
    return ChunkType.CONTENT
