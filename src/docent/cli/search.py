"""docent search: retrieve the chunks most relevant to a query.

Usage:
  docent search "how do I reset the device"
  docent search "warranty terms" --top-k 5 --document 3
  docent search "warranty terms" --context     # print the grounding block
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from docent.cli.common import DEFAULT_DB, console, load_config_or_exit, open_knowledge_base
from docent.cli.errors import err_model_load, err_no_db
from docent.config import DocentConfig
from docent.embedding.provider import ModelStatus
from docent.rag.assembler import assemble_context
from docent.rag.search import RetrievalResult

_PREVIEW_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .docent.db."),
    ] = DEFAULT_DB,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Maximum number of results."),
    ] = None,
    document: Annotated[
        list[int] | None,
        typer.Option("--document", "-d", help="Restrict to a document id (repeatable)."),
    ] = None,
    context: Annotated[
        bool,
        typer.Option("--context", help="Print the assembled reference block instead of a table."),
    ] = False,
) -> None:
    """Search the knowledge base for chunks relevant to QUERY."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    cfg = load_config_or_exit(db)
    results, error = asyncio.run(_search(db, cfg, query, top_k, document or None))
    if error:
        console.print(err_model_load(error))
        raise typer.Exit(1)

    if not results:
        console.print("[yellow]No relevant chunks found.[/]")
        return

    if context:
        console.print(assemble_context(results).text, markup=False, highlight=False)
        return
    _show_results(results)


async def _search(
    db: Path,
    cfg: DocentConfig,
    query: str,
    top_k: int | None,
    document_ids: list[int] | None,
) -> tuple[list[RetrievalResult], str | None]:
    kb = open_knowledge_base(db, cfg)
    try:
        results = await kb.search_relevant_chunks(query, top_k=top_k, document_ids=document_ids)
        state = kb.provider.state
        error = state.message if state.status is ModelStatus.ERROR else None
        return results, error
    finally:
        await kb.aclose()


def _show_results(results: list[RetrievalResult]) -> None:
    table = Table(title="Relevant chunks", show_lines=True)
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Document")
    table.add_column("Chunk", justify="right")
    table.add_column("Content")
    for rank, r in enumerate(results, start=1):
        preview = r.content.replace("\n", " ")
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        document = f"{r.document_title}\n[dim]id {r.document_id}[/]"
        if r.section_title:
            document += f"\n[dim]§ {r.section_title}[/]"
        table.add_row(
            str(rank),
            f"{r.score:.3f}",
            document,
            str(r.chunk_index),
            preview,
        )
    console.print(table)
