"""Forward-only migration runner for the docent schema."""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    title           TEXT NOT NULL,
    source_type     TEXT NOT NULL,
    source_path     TEXT NOT NULL,
    file_size       INTEGER NOT NULL DEFAULT 0,
    chunk_count     INTEGER NOT NULL DEFAULT 0,
    is_indexed      INTEGER NOT NULL DEFAULT 0,
    index_progress  REAL NOT NULL DEFAULT 0.0,
    created_at      REAL NOT NULL,
    updated_at      REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id     INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    content         TEXT NOT NULL,
    chunk_index     INTEGER NOT NULL,
    embedding       BLOB NOT NULL,
    token_count     INTEGER NOT NULL DEFAULT 0,
    metadata        TEXT
);

CREATE INDEX IF NOT EXISTS idx_chunks_document_id ON chunks(document_id);
"""

# Ordered reads of one document's chunks and the "any document indexed?" probe.
_V2_SQL = """
CREATE INDEX IF NOT EXISTS idx_chunks_document_order ON chunks(document_id, chunk_index);
CREATE INDEX IF NOT EXISTS idx_documents_indexed ON documents(is_indexed);
"""

# Append-only: never edit an applied entry, add a new version instead.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every migration newer than the recorded version, oldest first.

    Safe to call on a database at any version.

    Returns:
        The number of migrations applied.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] or 0

    pending = [(v, sql) for v, sql in MIGRATIONS if v > current]
    for version, sql in pending:
        # executescript() commits any open transaction before it runs.
        conn.executescript(sql)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
        logger.debug("Applied schema migration %d", version)
    return len(pending)
