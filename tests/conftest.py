"""Shared pytest fixtures."""

from __future__ import annotations

import re
import threading
import time
import zlib
from pathlib import Path

import pytest

from docent.config import DocentConfig, EmbeddingCfg, IngestCfg
from docent.db.connection import Database
from docent.db.repository import ChunkStore
from docent.db.schema import initialize
from docent.embedding.provider import EmbeddingProvider
from docent.errors import EmbeddingError
from docent.rag.knowledge import KnowledgeBase

_TOKEN_RE = re.compile(r"\w+")


def hashed_vector(text: str, dimension: int) -> list[float]:
    """Deterministic bag-of-words vector: one bucket per token (crc32)."""
    vec = [0.0] * dimension
    for token in _TOKEN_RE.findall(text.lower()):
        vec[zlib.crc32(token.encode()) % dimension] += 1.0
    if not any(vec):
        vec[0] = 1.0
    return vec


class FakeModel:
    def __init__(self, backend: FakeBackend) -> None:
        self._backend = backend
        self.dimension = backend.dimension

    def embed(self, text: str) -> list[float]:
        self._backend.embed_calls.append(text)
        if self._backend.fail_on and self._backend.fail_on in text:
            raise EmbeddingError("forward pass failed")
        if text in self._backend.vectors:
            return list(self._backend.vectors[text])
        return hashed_vector(text, self.dimension)

    def reset(self) -> None:
        self._backend.resets += 1

    def close(self) -> None:
        self._backend.closes += 1


class FakeBackend:
    """In-process embedding backend with load/embed bookkeeping."""

    name = "fake"
    requires_artifact = False

    def __init__(
        self,
        dimension: int = 256,
        vectors: dict[str, list[float]] | None = None,
        fail_on: str | None = None,
        load_delay: float = 0.0,
        load_error: Exception | None = None,
    ) -> None:
        self.dimension = dimension
        self.vectors = vectors or {}
        self.fail_on = fail_on
        self.load_delay = load_delay
        self.load_error = load_error
        self.loads = 0
        self.closes = 0
        self.resets = 0
        self.embed_calls: list[str] = []
        self.max_concurrent_loads = 0
        self._active_loads = 0
        self._guard = threading.Lock()

    def load(self, path: Path | None) -> FakeModel:
        with self._guard:
            self._active_loads += 1
            self.max_concurrent_loads = max(self.max_concurrent_loads, self._active_loads)
        try:
            if self.load_delay:
                time.sleep(self.load_delay)
            if self.load_error is not None:
                raise self.load_error
            self.loads += 1
            return FakeModel(self)
        finally:
            with self._guard:
                self._active_loads -= 1


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".docent.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_db) -> ChunkStore:
    return ChunkStore(tmp_db)


@pytest.fixture
def backend_factory():
    """The FakeBackend class, for tests that need a customised backend."""
    return FakeBackend


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def provider(fake_backend) -> EmbeddingProvider:
    return EmbeddingProvider(fake_backend, EmbeddingCfg(backend="litellm"))


@pytest.fixture
def kb_factory(store):
    """Build a KnowledgeBase over the test store with a given backend."""

    def _make(backend: FakeBackend, config: DocentConfig | None = None) -> KnowledgeBase:
        config = config or DocentConfig(ingest=IngestCfg(completion_hold_seconds=0.0))
        provider = EmbeddingProvider(backend, config.embedding)
        return KnowledgeBase(store, provider, config, sleep=no_sleep)

    return _make


@pytest.fixture
def kb(kb_factory, fake_backend) -> KnowledgeBase:
    return kb_factory(fake_backend)


@pytest.fixture
def write_doc(tmp_path):
    """Write a text document into tmp_path and return its path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
