"""docent init: create a knowledge base in a project directory.

Creates:
  .docent.db    knowledge base with schema
  docent.yaml   project config with the default chunker/embedding settings
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from docent.cli.common import DEFAULT_DB, console
from docent.config import write_project_config
from docent.db.connection import Database
from docent.db.schema import initialize

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
) -> None:
    """Initialize a docent knowledge base."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / DEFAULT_DB.name
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists; existing data is preserved.")

    conn = Database(db_path).connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    console.print(f"  [green]✓[/] {db_path.name}")

    cfg_path = write_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    console.print(f"\n[bold green]✓ Knowledge base initialized in {project_dir}.[/]")
    console.print("\nNext steps:")
    console.print("  1. docent ingest --source <file-or-dir>   (index documents)")
    console.print('  2. docent search "<question>"             (retrieve relevant chunks)')
