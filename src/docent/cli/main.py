"""Docent CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from docent.cli.ingest import ingest_cmd
from docent.cli.init import init_cmd
from docent.cli.remove import remove_cmd
from docent.cli.search import search_cmd
from docent.cli.status import status_cmd
from docent.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("docent")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"docent {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="docent",
    help=(
        "Docent: on-device document knowledge base.\n\n"
        "  docent ingest  Chunk, embed and store documents.\n"
        "  docent search  Retrieve the chunks most relevant to a question."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Docent: on-device document knowledge base."""
    configure_logging(verbose=verbose)


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed docent version."""
    typer.echo(f"docent {_installed_version()}")


if __name__ == "__main__":
    app()
