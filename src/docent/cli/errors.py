"""Docent rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from docent.cli.errors import err_no_db
    console.print(err_no_db(".docent.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = ".docent.db") -> str:
    """No knowledge base database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  docent init"
    )


def err_config(message: str) -> str:
    """Configuration file is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix the value in docent.yaml or ~/.docent/config.yaml."
    )


def err_unsupported_format(path: str, supported: list[str]) -> str:
    """No extractor handles the file's extension."""
    return (
        f"[red]Error:[/] Unsupported file type: '{path}'\n"
        f"  Supported extensions: {', '.join(supported)}"
    )


def err_extraction(path: str, reason: str) -> str:
    """Text extraction failed."""
    return (
        f"[red]Error:[/] Could not extract text from '{path}'.\n"
        f"  {reason}\n"
        "  Scanned PDFs need OCR before ingesting; other files may be corrupt."
    )


def err_empty_document(path: str) -> str:
    """The document produced no chunks."""
    return (
        f"[red]Error:[/] '{path}' contains no text to index.\n"
        "  Check that the file is not empty."
    )


def err_model_load(message: str) -> str:
    """Embedding model could not be loaded."""
    return (
        f"[red]Error:[/] Embedding model unavailable.\n"
        f"  {message}\n"
        "  Set embedding.backend / embedding.model_file in docent.yaml, or point\n"
        "  DOCENT_MODEL_DIR at the directory holding the model file."
    )


def err_store(db_path: str, reason: str) -> str:
    """The database rejected a write or read."""
    return (
        f"[red]Error:[/] The knowledge base at '{db_path}' could not be updated.\n"
        f"  {reason}\n"
        "  Check that the file is writable and not locked by another process."
    )


def err_document_not_found(document_id: int) -> str:
    """Document id not in the knowledge base."""
    return (
        f"[yellow]Document not found:[/] id {document_id} is not in the knowledge base.\n"
        "  Run:  docent status  to see all documents."
    )


def warn_dropped_chunks(dropped: int, total: int) -> str:
    """Some chunks could not be embedded and were not stored."""
    return (
        f"  [yellow]⚠[/] {dropped} of {total} chunks could not be embedded and were dropped.\n"
        "  Re-ingest the document to retry them."
    )
