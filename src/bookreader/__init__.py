"""Read EPUB and MOBI books through one navigation model."""

from bookreader.core.epub_book import EpubBook
from bookreader.core.mobi_book import MobiBook
from bookreader.core.parser_factory import Book, ParserFactory, open_book
from bookreader.errors import (
    BookError,
    MalformedStructureError,
    MissingEntryError,
    UnresolvableReferenceError,
    UnsupportedFormatError,
)
from bookreader.models.options import ReaderOptions

__all__ = [
    "Book",
    "EpubBook",
    "MobiBook",
    "ParserFactory",
    "open_book",
    "ReaderOptions",
    "BookError",
    "MissingEntryError",
    "MalformedStructureError",
    "UnresolvableReferenceError",
    "UnsupportedFormatError",
]

__version__ = "0.1.0"
