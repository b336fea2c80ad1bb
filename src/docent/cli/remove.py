"""docent remove: delete a document and all of its chunks.

Usage:
  docent remove 3
  docent remove 3 --yes
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from docent.cli.common import DEFAULT_DB, console, load_config_or_exit, open_knowledge_base
from docent.cli.errors import err_document_not_found, err_no_db
from docent.config import DocentConfig


def remove_cmd(
    document_id: Annotated[int, typer.Argument(help="Id of the document to remove.")],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .docent.db."),
    ] = DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a document and all its chunks from the knowledge base."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_config_or_exit(db)
    asyncio.run(_remove(db, cfg, document_id, yes))


async def _remove(db: Path, cfg: DocentConfig, document_id: int, yes: bool) -> None:
    kb = open_knowledge_base(db, cfg)
    try:
        document = kb.get_document(document_id)
        if document is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(0)

        chunk_count = kb.store.count_chunks(document_id)
        console.print(f"\nRemove document: [bold]{document.title}[/] (id {document_id})")
        console.print(f"  Source: {document.source_path}  |  Chunks: {chunk_count}")

        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        removed = await kb.delete_document(document_id)
        console.print(f"\n[green]✓[/] Removed: {document.title}")
        console.print(f"  {removed} chunks deleted")
    finally:
        await kb.aclose()
