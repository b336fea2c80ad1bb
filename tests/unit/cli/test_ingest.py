"""Tests for docent ingest CLI command."""

from __future__ import annotations

import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from docent.cli.ingest import _expand_sources
from docent.cli.main import app
from docent.db.connection import Database
from docent.db.repository import ChunkStore
from docent.errors import ModelLoadError, StoreError
from docent.rag.knowledge import KnowledgeBase

runner = CliRunner()

NOTE = "Charge the battery before first use. A full charge takes two hours."


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project dir with a docent.yaml that skips the completion hold."""
    (tmp_path / "docent.yaml").write_text(
        "embedding:\n  backend: litellm\ningest:\n  completion_hold_seconds: 0\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def db_path(project: Path) -> Path:
    return project / ".docent.db"


@pytest.fixture
def backend(backend_factory):
    instance = backend_factory()
    with patch("docent.cli.common.backend_from_config", return_value=instance):
        yield instance


def _flat(output: str) -> str:
    return " ".join(output.split())


def _documents(db_path: Path):
    conn = Database(db_path).connect()
    try:
        return ChunkStore(conn).list_documents()
    finally:
        conn.close()


def _ingest(db_path: Path, *args: str):
    return runner.invoke(app, ["ingest", "--db", str(db_path), *args])


# ------------------------------------------------------------------
# Input validation
# ------------------------------------------------------------------


def test_ingest_exits_without_source(db_path):
    result = _ingest(db_path)
    assert result.exit_code == 1
    assert "source" in result.output.lower()


def test_title_requires_single_file(db_path, project, backend):
    docs = project / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text(NOTE, encoding="utf-8")
    (docs / "b.txt").write_text(NOTE, encoding="utf-8")

    result = _ingest(db_path, "--source", str(docs), "--title", "Both")
    assert result.exit_code == 1
    assert "single file" in _flat(result.output)


def test_empty_directory(db_path, project, backend):
    empty = project / "empty"
    empty.mkdir()
    result = _ingest(db_path, "--source", str(empty))
    assert result.exit_code == 0
    assert "No documents found" in _flat(result.output)


# ------------------------------------------------------------------
# Ingestion
# ------------------------------------------------------------------


def test_ingest_single_file(db_path, project, backend):
    note = project / "note.txt"
    note.write_text(NOTE, encoding="utf-8")

    result = _ingest(db_path, "--source", str(note))

    assert result.exit_code == 0, result.output
    assert "indexed as document 1" in _flat(result.output)
    (doc,) = _documents(db_path)
    assert doc.title == "note"
    assert doc.is_indexed is True
    assert doc.chunk_count == 1


def test_ingest_with_title(db_path, project, backend):
    note = project / "note.md"
    note.write_text(NOTE, encoding="utf-8")

    result = _ingest(db_path, "--source", str(note), "--title", "Quick start")

    assert result.exit_code == 0, result.output
    assert _documents(db_path)[0].title == "Quick start"


def test_ingest_creates_database(db_path, project, backend):
    note = project / "note.txt"
    note.write_text(NOTE, encoding="utf-8")
    assert not db_path.exists()
    _ingest(db_path, "--source", str(note))
    assert db_path.exists()


def test_ingest_multiple_sources(db_path, project, backend):
    a, b = project / "a.txt", project / "b.md"
    a.write_text(NOTE, encoding="utf-8")
    b.write_text("# Cleaning\n\nWipe with a dry cloth.", encoding="utf-8")

    result = _ingest(db_path, "--source", str(a), "-s", str(b))

    assert result.exit_code == 0, result.output
    assert sorted(d.title for d in _documents(db_path)) == ["a", "b"]


def test_unsupported_file_exits_1(db_path, project, backend):
    deck = project / "deck.pptx"
    deck.write_bytes(b"PK")
    good = project / "good.txt"
    good.write_text(NOTE, encoding="utf-8")

    result = _ingest(db_path, "--source", str(deck), "--source", str(good))

    assert result.exit_code == 1
    assert "Unsupported file type" in _flat(result.output)
    assert [d.title for d in _documents(db_path)] == ["good"]


def test_empty_document_exits_1(db_path, project, backend):
    blank = project / "blank.txt"
    blank.write_text("\n\n  \n", encoding="utf-8")

    result = _ingest(db_path, "--source", str(blank))

    assert result.exit_code == 1
    assert "no text to index" in _flat(result.output)
    assert _documents(db_path) == []


def test_extraction_failure_exits_1(db_path, project, backend):
    broken = project / "broken.docx"
    with zipfile.ZipFile(broken, "w") as zf:
        zf.writestr("other.xml", "<x/>")
    good = project / "good.txt"
    good.write_text(NOTE, encoding="utf-8")

    result = _ingest(db_path, "--source", str(broken), "--source", str(good))

    assert result.exit_code == 1
    assert "Could not extract text" in _flat(result.output)
    # The failure does not stop the remaining files.
    assert [d.title for d in _documents(db_path)] == ["good"]


def test_model_load_failure_exits_1(db_path, project, backend_factory):
    note = project / "note.txt"
    note.write_text(NOTE, encoding="utf-8")
    failing = backend_factory(load_error=ModelLoadError("model file not found"))

    with patch("docent.cli.common.backend_from_config", return_value=failing):
        result = _ingest(db_path, "--source", str(note))

    assert result.exit_code == 1
    assert "Embedding model unavailable" in _flat(result.output)
    assert _documents(db_path) == []


def test_store_failure_exits_1(db_path, project, backend):
    note = project / "note.txt"
    note.write_text(NOTE, encoding="utf-8")

    async def _locked(self, path, title=None):
        raise StoreError("insert_document failed: database is locked")

    with patch.object(KnowledgeBase, "add_document", _locked):
        result = _ingest(db_path, "--source", str(note))

    assert result.exit_code == 1
    output = _flat(result.output)
    assert "could not be updated" in output
    assert "database is locked" in output


def test_dropped_chunks_reported(db_path, project, backend_factory):
    note = project / "note.txt"
    note.write_text("Poisoned text that cannot be embedded.", encoding="utf-8")
    failing = backend_factory(fail_on="Poisoned")

    with patch("docent.cli.common.backend_from_config", return_value=failing):
        result = _ingest(db_path, "--source", str(note))

    assert result.exit_code == 0, result.output
    assert "1 of 1 chunks could not be embedded" in _flat(result.output)


def test_invalid_config_exits_1(db_path, project, backend):
    (project / "docent.yaml").write_text("retrieval:\n  top_k: 0\n", encoding="utf-8")
    note = project / "note.txt"
    note.write_text(NOTE, encoding="utf-8")

    result = _ingest(db_path, "--source", str(note))

    assert result.exit_code == 1
    assert "Invalid configuration" in _flat(result.output)


# ------------------------------------------------------------------
# Directory expansion
# ------------------------------------------------------------------


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("a", encoding="utf-8")
    (root / "b.md").write_text("b", encoding="utf-8")
    (root / "c.pptx").write_text("c", encoding="utf-8")
    (root / "sub" / "d.pdf").write_text("d", encoding="utf-8")
    return root


def test_expand_directory_non_recursive(tree):
    files = _expand_sources([tree], recursive=False, exclude=[])
    assert [f.name for f in files] == ["a.txt", "b.md"]


def test_expand_directory_recursive(tree):
    files = _expand_sources([tree], recursive=True, exclude=[])
    assert [f.name for f in files] == ["a.txt", "b.md", "d.pdf"]


def test_expand_directory_exclude(tree):
    files = _expand_sources([tree], recursive=True, exclude=["b.*", "sub"])
    assert [f.name for f in files] == ["a.txt"]


def test_expand_keeps_explicit_files(tree):
    explicit = tree / "c.pptx"
    assert _expand_sources([explicit], recursive=False, exclude=[]) == [explicit]
