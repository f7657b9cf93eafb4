"""Factory for opening books based on their container format."""

from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from bookreader.core.palmdb import MOBI_TYPES
from bookreader.errors import UnsupportedFormatError
from bookreader.models.book import (
    GuideReference,
    Metadata,
    PageList,
    ProcessedChapter,
    ResolvedHref,
    TocItem,
)
from bookreader.models.options import ReaderOptions

ZIP_SIGNATURE = b"PK\x03\x04"


@runtime_checkable
class Book(Protocol):
    """Reading interface shared by the EPUB and MOBI backends."""

    def get_metadata(self) -> Metadata: ...

    def get_spine(self) -> list: ...

    def get_toc(self) -> list[TocItem]: ...

    def get_page_list(self) -> PageList: ...

    def get_guide(self) -> list[GuideReference]: ...

    def load_chapter(self, chapter_id) -> ProcessedChapter: ...

    def get_cover_image(self) -> str | None: ...

    def resolve_href(self, href: str) -> ResolvedHref | None: ...

    def destroy(self) -> None: ...


class ParserFactory:
    """Factory for creating the backend that matches a file's content."""

    SUPPORTED_FORMATS = {
        ".epub": "epub",
        ".mobi": "mobi",
        ".azw": "mobi",
        ".prc": "mobi",
        ".pdb": "mobi",
    }

    @classmethod
    def sniff(cls, head: bytes) -> str:
        """Detect the format from the first 68 bytes of a file.

        Returns:
            Format string ("epub", "mobi", or "unknown")
        """
        if head.startswith(ZIP_SIGNATURE):
            return "epub"
        if head[60:68] in MOBI_TYPES:
            return "mobi"
        return "unknown"

    @classmethod
    def detect_format(cls, path: Path) -> str:
        """Detect the format of a file, from its content first, then its extension."""
        with open(path, "rb") as f:
            detected = cls.sniff(f.read(68))
        if detected != "unknown":
            return detected
        return cls.SUPPORTED_FORMATS.get(path.suffix.lower(), "unknown")

    @classmethod
    def is_supported(cls, path: Path) -> bool:
        return path.exists() and cls.detect_format(path) != "unknown"

    @classmethod
    def create(
        cls,
        source: Path | str | bytes | BinaryIO,
        options: ReaderOptions | None = None,
    ) -> Book:
        """Open a book, choosing the backend by sniffing the container.

        Args:
            source: Path to the file, its content, or a binary stream
            options: Reader options (resource storage and directory)

        Returns:
            EpubBook or MobiBook instance, fully parsed

        Raises:
            FileNotFoundError: If the path does not exist
            UnsupportedFormatError: If the content is neither EPUB nor MOBI
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise FileNotFoundError(f"File not found: {path}")
            file_format = cls.detect_format(path)
        elif isinstance(source, bytes):
            file_format = cls.sniff(source[:68])
        else:
            position = source.tell()
            file_format = cls.sniff(source.read(68))
            source.seek(position)

        if file_format == "epub":
            from bookreader.core.epub_book import EpubBook

            return EpubBook(source, options)
        elif file_format == "mobi":
            from bookreader.core.mobi_book import MobiBook

            return MobiBook(source, options)

        supported = ", ".join(cls.SUPPORTED_FORMATS.keys())
        raise UnsupportedFormatError(
            f"Unsupported book format. Supported formats: {supported}"
        )


def open_book(
    source: Path | str | bytes | BinaryIO,
    options: ReaderOptions | None = None,
) -> Book:
    """Open an EPUB or MOBI book."""
    return ParserFactory.create(source, options)
