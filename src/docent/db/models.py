"""Domain models for the docent chunk store."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class Document:
    title: str
    source_type: str
    source_path: str
    file_size: int = 0
    chunk_count: int = 0
    is_indexed: bool = False
    index_progress: float = 0.0
    created_at: float | None = None
    updated_at: float | None = None
    id: int | None = None  # set after insert; None for unsaved documents


@dataclass
class Chunk:
    document_id: int
    chunk_index: int
    content: str
    embedding: list[float] = field(default_factory=list)
    token_count: int = 0
    metadata: str | None = None
    id: int | None = None  # set after insert; None for unsaved chunks

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata) if self.metadata else {}


@dataclass
class ChunkWithDocument:
    """A chunk joined with its owning document's display metadata."""

    chunk: Chunk
    document_title: str
    source_path: str
