"""docent ingest: add documents to the knowledge base.

Supported files: .pdf, .docx, .txt, .md, .markdown, .rst. Directories are
expanded to the supported files they contain (--recursive for subdirs).
"""

from __future__ import annotations

import asyncio
import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from docent.cli.common import DEFAULT_DB, console, load_config_or_exit, open_knowledge_base
from docent.cli.errors import (
    err_empty_document,
    err_extraction,
    err_model_load,
    err_store,
    err_unsupported_format,
    warn_dropped_chunks,
)
from docent.config import DocentConfig
from docent.errors import (
    EmptyDocumentError,
    ExtractionError,
    ModelLoadError,
    StoreError,
    UnsupportedFormatError,
)
from docent.ingest.extractors import supported_extensions
from docent.rag.knowledge import KnowledgeBase

_MAX_DEPTH = 10


def ingest_cmd(
    source: Annotated[
        list[Path] | None,
        typer.Option("--source", "-s", help="File or directory to ingest (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .docent.db (created if missing)."),
    ] = DEFAULT_DB,
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Document title (single file only)."),
    ] = None,
    recursive: Annotated[
        bool,
        typer.Option("--recursive", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
) -> None:
    """Ingest one or more documents into the knowledge base."""
    sources = source or []
    if not sources:
        console.print("[red]Error:[/] No --source specified. Use --source PATH.")
        raise typer.Exit(1)

    files = _expand_sources(sources, recursive=recursive, exclude=exclude or [])
    if not files:
        console.print("[yellow]No documents found to ingest.[/]")
        raise typer.Exit(0)
    if title is not None and len(files) > 1:
        console.print("[red]Error:[/] --title can only be used with a single file.")
        raise typer.Exit(1)

    cfg = load_config_or_exit(db)
    failures = asyncio.run(_ingest_all(files, db, cfg, title))
    if failures:
        raise typer.Exit(1)


async def _ingest_all(
    files: list[Path], db: Path, cfg: DocentConfig, title: str | None
) -> int:
    """Ingest *files* one after another. Returns the number of failed files."""
    kb = open_knowledge_base(db, cfg)
    failures = 0
    try:
        for path in files:
            try:
                await _ingest_one(kb, path, title)
            except UnsupportedFormatError:
                console.print(err_unsupported_format(str(path), supported_extensions()))
                failures += 1
            except EmptyDocumentError:
                console.print(err_empty_document(str(path)))
                failures += 1
            except ExtractionError as exc:
                console.print(err_extraction(str(path), str(exc)))
                failures += 1
            except ModelLoadError as exc:
                console.print(err_model_load(str(exc)))
                return failures + 1
            except StoreError as exc:
                console.print(err_store(str(db), str(exc)))
                return failures + 1
    finally:
        await kb.aclose()
    return failures


async def _ingest_one(kb: KnowledgeBase, path: Path, title: str | None) -> None:
    console.print(f"\n[bold]→ {path}[/]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Indexing…", total=1.0)

        def _on_progress(document_id: int, value: float | None) -> None:
            if value is not None:
                prog.update(task, completed=value)

        kb.progress.add_listener(_on_progress)
        try:
            report = await kb.add_document(path, title=title)
        finally:
            kb.progress.remove_listener(_on_progress)

    console.print(
        f"  [green]✓[/] '{report.title}' indexed as document {report.document_id} "
        f"({report.chunks_embedded} chunks)"
    )
    if report.chunks_dropped:
        console.print(warn_dropped_chunks(report.chunks_dropped, report.chunks_total))


# ------------------------------------------------------------------
# Directory expansion
# ------------------------------------------------------------------


def _expand_sources(sources: list[Path], recursive: bool, exclude: list[str]) -> list[Path]:
    """Expand directories to the supported files inside; leave files as-is."""
    result: list[Path] = []
    for src in sources:
        if src.is_dir():
            files = _scan_dir(src, recursive=recursive, exclude=exclude, depth=0)
            if not files:
                console.print(f"[yellow]No supported files found in directory:[/] {src}")
            result.extend(files)
        else:
            result.append(src)
    return result


def _scan_dir(directory: Path, recursive: bool, exclude: list[str], depth: int) -> list[Path]:
    """Return supported files in *directory* (optionally recursive)."""
    if depth > _MAX_DEPTH:
        return []
    extensions = set(supported_extensions())
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        return []
    for entry in entries:
        if any(fnmatch.fnmatch(entry.name, pat) for pat in exclude):
            continue
        if entry.is_file() and entry.suffix.lower() in extensions:
            files.append(entry)
        elif entry.is_dir() and recursive:
            files.extend(_scan_dir(entry, recursive=True, exclude=exclude, depth=depth + 1))
    return files
