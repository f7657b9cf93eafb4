"""Main CLI application."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from bookreader.commands.chapter import execute_chapter, execute_cover, execute_resolve
from bookreader.commands.info import execute_info, execute_toc
from bookreader.core.parser_factory import ParserFactory
from bookreader.models.options import ReaderOptions

app = typer.Typer(
    name="bookreader",
    help="Inspect EPUB and MOBI books: metadata, table of contents and chapters.",
    add_completion=False,
)

console = Console()

BookPath = Annotated[
    Path,
    typer.Argument(
        help="Path to the book file (EPUB or MOBI)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
]


def _check_supported(book_path: Path) -> None:
    if not ParserFactory.is_supported(book_path):
        console.print(f"[red]Unsupported file format: {book_path.name}[/]")
        console.print("[dim]Supported formats: .epub, .mobi, .azw, .prc[/]")
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Inspect EPUB and MOBI books."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.command()
def info(book_path: BookPath) -> None:
    """Display book metadata and reading order."""
    _check_supported(book_path)
    try:
        execute_info(book_path, console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def toc(book_path: BookPath) -> None:
    """Display the table of contents."""
    _check_supported(book_path)
    try:
        execute_toc(book_path, console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def chapter(
    book_path: BookPath,
    chapter_id: Annotated[
        str,
        typer.Argument(help="Chapter id: manifest id (EPUB) or chapter index (MOBI)"),
    ],
    output_format: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Output format: markdown, text, or html",
        ),
    ] = "markdown",
) -> None:
    """Print a single chapter."""
    _check_supported(book_path)
    if output_format not in ("markdown", "text", "html"):
        console.print(
            f"[red]Invalid format: {output_format}. Use markdown, text, or html.[/]"
        )
        raise typer.Exit(1)

    try:
        execute_chapter(book_path, chapter_id, output_format, console)  # type: ignore
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def resolve(
    book_path: BookPath,
    href: Annotated[str, typer.Argument(help="Link to resolve, e.g. 'filepos:1234' or 'text/ch1.xhtml#note'")],
) -> None:
    """Resolve an in-book link to a chapter and anchor selector."""
    _check_supported(book_path)
    try:
        found = execute_resolve(book_path, href, console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)
    if not found:
        raise typer.Exit(1)


@app.command()
def cover(
    book_path: BookPath,
    output_dir: Annotated[
        Path,
        typer.Option(
            "--output-dir",
            "-o",
            help="Directory the cover is written to",
        ),
    ] = Path(ReaderOptions.RESOURCE_DIR),
) -> None:
    """Extract the cover image."""
    _check_supported(book_path)
    try:
        written = execute_cover(book_path, output_dir, console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)
    if written is None:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
