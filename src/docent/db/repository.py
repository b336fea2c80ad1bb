"""Chunk store: repository for documents, chunks and their embeddings.

Single interface for every persistence operation the engine needs. Chunks
belong to exactly one document; deleting the document cascades to its chunks
through the foreign key (``PRAGMA foreign_keys = ON`` is set by Database).
"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from docent.db.models import Chunk, ChunkWithDocument, Document
from docent.db.vectors import decode_embedding, encode_embedding
from docent.errors import StoreError

_DOCUMENT_COLUMNS = (
    "id, title, source_type, source_path, file_size, chunk_count, "
    "is_indexed, index_progress, created_at, updated_at"
)
_CHUNK_COLUMNS = "id, document_id, content, chunk_index, embedding, token_count, metadata"


class ChunkStore:
    """Data access layer for documents and chunks.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. Every sqlite3 failure surfaces as
    :class:`~docent.errors.StoreError` with the original error chained.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see docent.db.schema.initialize).
        """
        self._conn = conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(self, document: Document) -> int:
        """Insert a new document record and return its id.

        The id, created_at and updated_at fields of *document* are set in place.
        """
        now = time.time()
        with self._guard("insert document"):
            cur = self._conn.execute(
                """
                INSERT INTO documents (title, source_type, source_path, file_size,
                                       chunk_count, is_indexed, index_progress,
                                       created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    document.title,
                    document.source_type,
                    document.source_path,
                    document.file_size,
                    document.chunk_count,
                    int(document.is_indexed),
                    document.index_progress,
                    now,
                    now,
                ),
            )
            self._conn.commit()
        document.id = cur.lastrowid
        document.created_at = document.updated_at = now
        return document.id

    def get_document(self, document_id: int) -> Document | None:
        """Return a document by id, or None if not found."""
        with self._guard("get document"):
            row = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self) -> list[Document]:
        """Return all documents, newest first."""
        with self._guard("list documents"):
            rows = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def list_indexed_documents(self) -> list[Document]:
        """Return fully indexed documents, newest first."""
        with self._guard("list indexed documents"):
            rows = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE is_indexed = 1 "
                "ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [_row_to_document(r) for r in rows]

    def has_indexed_documents(self) -> bool:
        with self._guard("check indexed documents"):
            row = self._conn.execute(
                "SELECT EXISTS(SELECT 1 FROM documents WHERE is_indexed = 1 LIMIT 1)"
            ).fetchone()
        return bool(row[0])

    def count_documents(self) -> int:
        with self._guard("count documents"):
            return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def update_document_index_status(
        self, document_id: int, is_indexed: bool, chunk_count: int
    ) -> None:
        """Set the indexed flag and persisted chunk count of a document."""
        with self._guard("update index status"):
            self._conn.execute(
                "UPDATE documents SET is_indexed = ?, chunk_count = ?, updated_at = ? "
                "WHERE id = ?",
                (int(is_indexed), chunk_count, time.time(), document_id),
            )
            self._conn.commit()

    def update_document_index_progress(self, document_id: int, progress: float) -> None:
        """Persist the indexing progress (0.0–1.0) of a document."""
        with self._guard("update index progress"):
            self._conn.execute(
                "UPDATE documents SET index_progress = ?, updated_at = ? WHERE id = ?",
                (progress, time.time(), document_id),
            )
            self._conn.commit()

    def delete_document_by_id(self, document_id: int) -> int:
        """Delete a document and, by cascade, all of its chunks.

        Returns:
            Number of chunks removed with the document.
        """
        with self._guard("delete document"):
            removed = self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchone()[0]
            self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            self._conn.commit()
        return removed

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, chunks: Sequence[Chunk]) -> list[int]:
        """Insert a batch of chunks in one transaction. Returns the new ids.

        The id field of each chunk is set in place.
        """
        if not chunks:
            return []
        ids: list[int] = []
        with self._guard("insert chunks"):
            try:
                for chunk in chunks:
                    cur = self._conn.execute(
                        """
                        INSERT INTO chunks (document_id, content, chunk_index, embedding,
                                            token_count, metadata)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            chunk.document_id,
                            chunk.content,
                            chunk.chunk_index,
                            encode_embedding(chunk.embedding),
                            chunk.token_count,
                            chunk.metadata,
                        ),
                    )
                    ids.append(cur.lastrowid)
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        for chunk, chunk_id in zip(chunks, ids):
            chunk.id = chunk_id
        return ids

    def get_all_chunks(self) -> list[Chunk]:
        """Return every chunk in the store (used for the retrieval scan)."""
        with self._guard("get all chunks"):
            rows = self._conn.execute(f"SELECT {_CHUNK_COLUMNS} FROM chunks ORDER BY id").fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunks_by_document_ids(self, document_ids: Sequence[int]) -> list[Chunk]:
        """Return the chunks owned by any of *document_ids*."""
        if not document_ids:
            return []
        placeholders = ",".join("?" * len(document_ids))
        with self._guard("get chunks by document ids"):
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id IN ({placeholders}) "
                "ORDER BY id",
                list(document_ids),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunks_by_document(self, document_id: int) -> list[Chunk]:
        """Return one document's chunks in chunk_index order."""
        with self._guard("get chunks by document"):
            rows = self._conn.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? "
                "ORDER BY chunk_index ASC",
                (document_id,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunks_with_document_titles(
        self, chunk_ids: Sequence[int]
    ) -> list[ChunkWithDocument]:
        """Join chunks with their owning document's title and source path."""
        if not chunk_ids:
            return []
        placeholders = ",".join("?" * len(chunk_ids))
        with self._guard("get chunks with document titles"):
            rows = self._conn.execute(
                f"""
                SELECT c.id, c.document_id, c.content, c.chunk_index, c.embedding,
                       c.token_count, c.metadata,
                       d.title AS document_title, d.source_path AS source_path
                FROM chunks c
                INNER JOIN documents d ON c.document_id = d.id
                WHERE c.id IN ({placeholders})
                """,
                list(chunk_ids),
            ).fetchall()
        return [
            ChunkWithDocument(
                chunk=_row_to_chunk(r),
                document_title=r["document_title"],
                source_path=r["source_path"],
            )
            for r in rows
        ]

    def count_chunks(self, document_id: int | None = None) -> int:
        """Return the number of chunks, optionally restricted to one document."""
        with self._guard("count chunks"):
            if document_id is None:
                return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchone()[0]

    # ------------------------------------------------------------------
    # Error translation
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StoreError(f"Chunk store failed to {operation}: {exc}") from exc


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        title=row["title"],
        source_type=row["source_type"],
        source_path=row["source_path"],
        file_size=row["file_size"],
        chunk_count=row["chunk_count"],
        is_indexed=bool(row["is_indexed"]),
        index_progress=row["index_progress"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        embedding=decode_embedding(row["embedding"]),
        token_count=row["token_count"],
        metadata=row["metadata"],
    )
