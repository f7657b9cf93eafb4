"""Error types raised while opening and reading books."""


class BookError(Exception):
    """Base class for every error raised by bookreader."""


class MissingEntryError(BookError, KeyError):
    """A required archive entry, record or chapter does not exist."""

    def __init__(self, name: str, source: str = ""):
        self.name = name
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(f"{name} was not found{where}")

    def __str__(self) -> str:
        # KeyError quotes its argument, keep the plain message instead
        return self.args[0]


class MalformedStructureError(BookError, ValueError):
    """Required structural data is absent or cannot be parsed."""


class UnresolvableReferenceError(BookError):
    """A reference inside chapter markup cannot be mapped to a resource."""


class UnsupportedFormatError(BookError, ValueError):
    """The container is neither an EPUB archive nor a MOBI database."""
