"""Shared helpers for docent CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from docent.cli.errors import err_config
from docent.config import ConfigError, DocentConfig, load_config
from docent.embedding.backends import backend_from_config
from docent.rag.knowledge import KnowledgeBase

console = Console()

DEFAULT_DB = Path(".docent.db")


def load_config_or_exit(db: Path) -> DocentConfig:
    """Load config for the project that holds *db*; exit 1 on an invalid file."""
    try:
        return load_config(db.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_knowledge_base(db: Path, cfg: DocentConfig) -> KnowledgeBase:
    """Open (creating if needed) the knowledge base at *db*."""
    return KnowledgeBase.open(db, cfg, backend=backend_from_config(cfg.embedding))
