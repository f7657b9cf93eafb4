"""Info and toc command implementations."""

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from bookreader.core.parser_factory import ParserFactory
from bookreader.models.book import Metadata, TocItem
from bookreader.models.options import ReaderOptions


def _people(metadata: Metadata) -> str:
    return ", ".join(person.name for person in metadata.creator) or "Unknown"


def build_info_panel(book, file_format: str) -> Panel:
    """Panel with the book's metadata and structure counts."""
    metadata = book.get_metadata()
    info_lines = [
        f"[bold]{metadata.title or 'Untitled'}[/]",
        "",
        f"[dim]Author(s):[/] {_people(metadata)}",
        f"[dim]Format:[/] {file_format.upper()}",
        f"[dim]Language:[/] {metadata.language or 'Unknown'}",
    ]
    if metadata.publisher:
        info_lines.append(f"[dim]Publisher:[/] {metadata.publisher}")
    if metadata.package_identifier.id:
        scheme = metadata.package_identifier.scheme
        suffix = f" ({scheme})" if scheme else ""
        info_lines.append(f"[dim]Identifier:[/] {metadata.package_identifier.id}{suffix}")
    for event, value in metadata.date.items():
        info_lines.append(f"[dim]Date ({event}):[/] {value}")

    info_lines.append(f"[dim]Chapters:[/] {len(book.get_spine())}")
    info_lines.append(f"[dim]TOC entries:[/] {count_entries(book.get_toc())}")
    page_targets = len(book.get_page_list().page_targets)
    if page_targets:
        info_lines.append(f"[dim]Pages:[/] {page_targets}")

    return Panel("\n".join(info_lines), title="Book Info", border_style="green")


def count_entries(toc: list[TocItem]) -> int:
    return sum(1 + count_entries(item.children) for item in toc)


def build_toc_tree(toc: list[TocItem], title: str) -> Tree:
    """Rich tree mirroring the TOC hierarchy."""
    tree = Tree(f"[bold cyan]{title}[/]")

    def add(node: Tree, items: list[TocItem]) -> None:
        for item in items:
            label = f"{item.label or 'Untitled'} [dim]{item.href}[/]"
            add(node.add(label), item.children)

    add(tree, toc)
    return tree


def build_spine_table(book) -> Table:
    table = Table(title="Chapters", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Id", style="white")
    table.add_column("Location", style="green")

    for i, item in enumerate(book.get_spine()):
        location = getattr(item, "href", None)
        if location is None:
            location = f"{item.start}-{item.end}"
        table.add_row(str(i + 1), str(item.id), location)
    return table


def execute_info(book_path: Path, console: Console) -> None:
    """Print metadata and the reading order of a book."""
    file_format = ParserFactory.detect_format(book_path)
    with ParserFactory.create(book_path, ReaderOptions(storage="memory")) as book:
        console.print(build_info_panel(book, file_format))
        console.print(build_spine_table(book))


def execute_toc(book_path: Path, console: Console) -> None:
    """Print the table of contents of a book."""
    with ParserFactory.create(book_path, ReaderOptions(storage="memory")) as book:
        toc = book.get_toc()
        if not toc:
            console.print("[yellow]This book has no table of contents.[/]")
            return
        console.print(build_toc_tree(toc, book.get_metadata().title or book_path.name))
