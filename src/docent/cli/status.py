"""docent status: knowledge base overview.

Shows the database, the embedding configuration and every document with
its indexing state.
"""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from docent.cli.common import DEFAULT_DB, console
from docent.config import ConfigError, DocentConfig, load_config
from docent.db.connection import Database
from docent.db.models import Document
from docent.db.repository import ChunkStore
from docent.db.schema import initialize


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .docent.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show knowledge base status: documents, chunks and embedding setup."""
    # Status works even with a broken docent.yaml.
    try:
        cfg = load_config(db.resolve().parent)
    except ConfigError:
        cfg = DocentConfig()

    _show_setup_panel(db, cfg)

    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  docent init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    conn = Database(db).connect()
    try:
        initialize(conn)
        _show_documents(ChunkStore(conn))
    finally:
        conn.close()


def _show_setup_panel(db: Path, cfg: DocentConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"

    emb = cfg.embedding
    model = emb.model_file if emb.backend == "llama_cpp" else emb.model
    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {emb.backend} · {model}",
        f"Retrieval:  top_k={cfg.retrieval.top_k} · "
        f"threshold={cfg.retrieval.similarity_threshold}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Docent[/]", expand=False))


def _show_documents(store: ChunkStore) -> None:
    documents = store.list_documents()
    indexed = store.list_indexed_documents()
    total_chunks = store.count_chunks()
    summary = (
        f"Documents: [bold]{len(documents)}[/]  |  Indexed: [bold]{len(indexed)}[/]  |  "
        f"Chunks: [bold]{total_chunks:,}[/]"
    )

    if not documents:
        console.print(
            Panel(
                f"{summary}\n\n  Run:  docent ingest --source <file>",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    console.print(Panel(summary, title="[bold]Knowledge Base[/]", expand=False))
    table = Table()
    table.add_column("Id", justify="right")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Chunks", justify="right")
    table.add_column("Indexed")
    table.add_column("Added")
    for doc in documents:
        table.add_row(
            str(doc.id),
            doc.title,
            doc.source_type,
            str(doc.chunk_count),
            _indexed_label(doc),
            _format_time(doc.created_at),
        )
    console.print(table)


def _indexed_label(doc: Document) -> str:
    if doc.is_indexed:
        return "[green]✓[/]"
    return f"[yellow]{doc.index_progress:.0%}[/]"


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")
