"""Chapter, resolve and cover command implementations."""

from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from bookreader.core.content_processor import ContentProcessor, OutputFormat
from bookreader.core.parser_factory import ParserFactory
from bookreader.models.options import ReaderOptions


def _chapter_key(book, chapter: str):
    """Chapter ids are manifest ids for EPUB and integers for MOBI."""
    spine = book.get_spine()
    if spine and isinstance(spine[0].id, int):
        return int(chapter)
    return chapter


def execute_chapter(
    book_path: Path,
    chapter: str,
    output_format: OutputFormat,
    console: Console,
) -> None:
    """Print one chapter rendered in the requested format."""
    processor = ContentProcessor()
    with ParserFactory.create(book_path, ReaderOptions(storage="memory")) as book:
        processed = book.load_chapter(_chapter_key(book, chapter))
        content = processor.process(processed, output_format)
        console.print(content, markup=False, highlight=False)


def execute_resolve(book_path: Path, href: str, console: Console) -> bool:
    """Print the chapter and selector an href points to. Returns success."""
    with ParserFactory.create(book_path, ReaderOptions(storage="memory")) as book:
        resolved = book.resolve_href(href)
    if resolved is None:
        console.print(f"[yellow]Could not resolve {href}[/]")
        return False
    console.print(
        Panel(
            f"[dim]Chapter:[/] {resolved.id}\n[dim]Selector:[/] {resolved.selector}",
            title=href,
            border_style="green",
        )
    )
    return True


def execute_cover(book_path: Path, output_dir: Path, console: Console) -> Path | None:
    """Extract the cover image under ``output_dir``. Returns its path."""
    options = ReaderOptions(storage="file", resource_dir=output_dir)
    book = ParserFactory.create(book_path, options)
    # The extracted file is the command's output, so the book is not destroyed
    location = book.get_cover_image()
    if location is None:
        console.print("[yellow]This book has no cover image.[/]")
        return None
    console.print(f"[green]Cover written to[/] {location}")
    return Path(location)
