"""Docent chunk store."""

from docent.db.connection import Database
from docent.db.migrations import MIGRATIONS, run_migrations
from docent.db.repository import ChunkStore
from docent.db.schema import initialize
from docent.db.vectors import cosine_similarity, decode_embedding, encode_embedding

__all__ = [
    "ChunkStore",
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "cosine_similarity",
    "decode_embedding",
    "encode_embedding",
]
