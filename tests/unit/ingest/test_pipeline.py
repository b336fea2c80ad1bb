"""Tests for the ingestion pipeline."""

from __future__ import annotations

import json
import logging
import zipfile

import pytest

from docent.config import ChunkerCfg, EmbeddingCfg, IngestCfg
from docent.embedding.provider import EmbeddingProvider
from docent.errors import (
    EmptyDocumentError,
    ExtractionError,
    ModelLoadError,
    UnsupportedFormatError,
)
from docent.ingest.pipeline import IngestionPipeline, IngestionReport, chunk_metadata
from docent.ingest.progress import ProgressTracker
from docent.ingest.semantic import ChunkType, SemanticChunk, SemanticChunker
from docent.rag.cache import RetrievalCache

SMALL = ChunkerCfg(target_chunk_size=100, max_chunk_size=150, min_chunk_size=30)

LONG_TEXT = "Zanzibar number 0 is here. " + " ".join(
    f"Sentence number {i} is here." for i in range(1, 20)
)


class _Recorder:
    """Records sleep calls and what the pipeline state looked like at that time."""

    def __init__(self, pipeline_parts):
        self.parts = pipeline_parts
        self.calls = []

    async def __call__(self, seconds):
        progress, cache = self.parts
        self.calls.append((seconds, progress.snapshot(), len(cache)))


@pytest.fixture
def parts():
    return ProgressTracker(), RetrievalCache()


@pytest.fixture
def make_pipeline(store, parts):
    progress, cache = parts

    def _make(backend, ingest_cfg=None, sleep=None):
        provider = EmbeddingProvider(backend, EmbeddingCfg(backend="litellm"))
        recorder = sleep or _Recorder(parts)
        pipeline = IngestionPipeline(
            store,
            provider,
            SemanticChunker(SMALL),
            progress,
            cache,
            ingest_cfg or IngestCfg(completion_hold_seconds=0.0),
            sleep=recorder,
        )
        return pipeline, recorder

    return _make


# ------------------------------------------------------------------
# Happy path
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ingest_text_file(make_pipeline, fake_backend, store, write_doc):
    pipeline, _ = make_pipeline(fake_backend)
    path = write_doc("handbook.txt", LONG_TEXT)

    report = await pipeline.ingest(path)

    assert isinstance(report, IngestionReport)
    assert report.title == "handbook"
    assert report.chunks_total > 1
    assert report.chunks_embedded == report.chunks_total
    assert report.chunks_dropped == 0

    doc = store.get_document(report.document_id)
    assert doc.is_indexed is True
    assert doc.chunk_count == report.chunks_total
    assert doc.source_type == "text"
    assert doc.source_path == str(path.resolve())
    assert doc.file_size == path.stat().st_size
    assert doc.index_progress == pytest.approx(1.0)

    chunks = store.get_chunks_by_document(report.document_id)
    assert [c.chunk_index for c in chunks] == list(range(report.chunks_total))
    assert all(len(c.embedding) == fake_backend.dimension for c in chunks)


@pytest.mark.asyncio
async def test_explicit_title(make_pipeline, fake_backend, store, write_doc):
    pipeline, _ = make_pipeline(fake_backend)
    report = await pipeline.ingest(write_doc("a.md", "Short note."), title="Device manual")
    assert report.title == "Device manual"
    assert store.get_document(report.document_id).title == "Device manual"


@pytest.mark.asyncio
async def test_chunk_metadata_persisted(make_pipeline, fake_backend, store, write_doc):
    pipeline, _ = make_pipeline(fake_backend)
    report = await pipeline.ingest(write_doc("h.md", f"# Setup\n\n{LONG_TEXT}"))
    chunks = store.get_chunks_by_document(report.document_id)
    meta = chunks[0].metadata_dict
    assert meta["section_title"] == "Setup"
    assert meta["chunk_type"] in {t.value for t in ChunkType}
    assert meta["context_prefix"] == ""
    assert chunks[1].metadata_dict["context_prefix"] != ""


@pytest.mark.asyncio
async def test_embedded_text_includes_context_prefix(make_pipeline, fake_backend, store, write_doc):
    pipeline, _ = make_pipeline(fake_backend)
    report = await pipeline.ingest(write_doc("h.txt", LONG_TEXT))
    chunks = store.get_chunks_by_document(report.document_id)
    prefix = chunks[1].metadata_dict["context_prefix"]
    assert fake_backend.embed_calls[1] == f"{prefix}\n\n{chunks[1].content}"
    # Stored content excludes the prefix.
    assert not chunks[1].content.startswith(prefix)


def test_chunk_metadata_json():
    sc = SemanticChunk(
        content="x", index=0, type=ChunkType.LIST, section_title="Größe", context_prefix="p"
    )
    meta = json.loads(chunk_metadata(sc))
    assert meta == {"chunk_type": "list", "section_title": "Größe", "context_prefix": "p"}


# ------------------------------------------------------------------
# Progress, cache and completion hold
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_progress_sequence(make_pipeline, fake_backend, parts, write_doc):
    progress, _ = parts
    seen = []
    progress.add_listener(lambda doc_id, value: seen.append(value))
    pipeline, _ = make_pipeline(fake_backend)

    report = await pipeline.ingest(write_doc("h.txt", LONG_TEXT))

    values = seen[:-1]
    assert values[:3] == [0.1, 0.2, 0.3]
    assert values == sorted(values)
    assert values[-2] == pytest.approx(0.9)
    assert values[-1] == 1.0
    assert len(values) == 3 + report.chunks_total + 1
    assert seen[-1] is None
    assert progress.get(report.document_id) is None


@pytest.mark.asyncio
async def test_cache_cleared_before_completion_hold(make_pipeline, fake_backend, parts, write_doc):
    progress, cache = parts
    cache.put("old query", [])
    pipeline, recorder = make_pipeline(
        fake_backend, IngestCfg(completion_hold_seconds=1.0)
    )

    report = await pipeline.ingest(write_doc("h.txt", "A short document."))

    ((seconds, snapshot, cache_size),) = recorder.calls
    assert seconds == 1.0
    assert snapshot == {report.document_id: 1.0}
    assert cache_size == 0


@pytest.mark.asyncio
async def test_chunks_inserted_in_batches(make_pipeline, fake_backend, store, write_doc, monkeypatch):
    batches = []
    original = store.insert_chunks

    def _spy(chunks):
        batches.append(len(chunks))
        return original(chunks)

    monkeypatch.setattr(store, "insert_chunks", _spy)
    pipeline, _ = make_pipeline(
        fake_backend, IngestCfg(insert_batch_size=2, completion_hold_seconds=0.0)
    )
    report = await pipeline.ingest(write_doc("h.txt", LONG_TEXT))

    assert sum(batches) == report.chunks_total
    assert all(size <= 2 for size in batches)
    assert len(batches) == (report.chunks_total + 1) // 2


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_failed_chunk_is_dropped(
    make_pipeline, backend_factory, store, write_doc, caplog
):
    caplog.set_level(logging.WARNING, logger="docent")
    backend = backend_factory(fail_on="Zanzibar")
    pipeline, _ = make_pipeline(backend)

    report = await pipeline.ingest(write_doc("h.txt", LONG_TEXT))

    assert report.chunks_dropped == 1
    assert report.chunks_embedded == report.chunks_total - 1
    doc = store.get_document(report.document_id)
    assert doc.is_indexed is True
    assert doc.chunk_count == report.chunks_embedded
    indices = [c.chunk_index for c in store.get_chunks_by_document(report.document_id)]
    assert 0 not in indices
    assert "chunks dropped" in caplog.text


@pytest.mark.asyncio
async def test_unsupported_format_writes_nothing(make_pipeline, fake_backend, store, write_doc):
    pipeline, _ = make_pipeline(fake_backend)
    with pytest.raises(UnsupportedFormatError):
        await pipeline.ingest(write_doc("slides.pptx", "not really slides"))
    assert store.count_documents() == 0


@pytest.mark.asyncio
async def test_missing_file(make_pipeline, fake_backend, store, tmp_path):
    pipeline, _ = make_pipeline(fake_backend)
    with pytest.raises(ExtractionError):
        await pipeline.ingest(tmp_path / "missing.txt")
    assert store.count_documents() == 0


@pytest.mark.asyncio
async def test_empty_document_rolled_back(make_pipeline, fake_backend, store, parts, write_doc):
    progress, _ = parts
    pipeline, _ = make_pipeline(fake_backend)
    with pytest.raises(EmptyDocumentError):
        await pipeline.ingest(write_doc("blank.txt", "  \n\n \n"))
    assert store.count_documents() == 0
    assert progress.snapshot() == {}


@pytest.mark.asyncio
async def test_extraction_failure_rolled_back(make_pipeline, fake_backend, store, tmp_path):
    path = tmp_path / "broken.docx"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("other.xml", "<x/>")
    pipeline, _ = make_pipeline(fake_backend)

    with pytest.raises(ExtractionError):
        await pipeline.ingest(path)
    assert store.count_documents() == 0


@pytest.mark.asyncio
async def test_model_load_failure_rolled_back(make_pipeline, backend_factory, store, write_doc):
    backend = backend_factory(load_error=ModelLoadError("model file missing"))
    pipeline, _ = make_pipeline(backend)

    with pytest.raises(ModelLoadError):
        await pipeline.ingest(write_doc("h.txt", LONG_TEXT))
    assert store.count_documents() == 0
    assert store.count_chunks() == 0
