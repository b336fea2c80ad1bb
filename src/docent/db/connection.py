"""SQLite connection layer for the chunk store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

MEMORY = ":memory:"

# Milliseconds a writer waits on a locked database before SQLITE_BUSY.
BUSY_TIMEOUT_MS = 5000


class Database:
    """Per-project SQLite database holding documents, chunks and embeddings."""

    def __init__(self, db_path: Path | str, *, busy_timeout_ms: int = BUSY_TIMEOUT_MS) -> None:
        """Remember where the database lives; nothing is opened yet.

        Args:
            db_path: Path to the SQLite file (created on first connect) or
                ``":memory:"``.
            busy_timeout_ms: How long a write waits for another process's lock.
        """
        self.db_path = db_path if db_path == MEMORY else Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == MEMORY

    def exists(self) -> bool:
        """True when the database file is already on disk."""
        return not self.in_memory and Path(self.db_path).exists()

    def connect(self) -> sqlite3.Connection:
        """Open a new connection with foreign keys on and WAL for file databases."""
        if not self.in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if not self.in_memory:
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
