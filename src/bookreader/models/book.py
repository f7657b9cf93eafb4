"""Data models shared by the EPUB and MOBI backends."""

from pydantic import BaseModel, Field


class Contributor(BaseModel):
    """Creator or contributor of a book."""

    name: str
    file_as: str = ""
    role: str = ""


class Subject(BaseModel):
    """Subject heading, optionally tied to a controlled vocabulary."""

    value: str
    authority: str = ""
    term: str = ""


class PackageIdentifier(BaseModel):
    """Unique identifier of the publication."""

    id: str = ""
    scheme: str = ""


class Metadata(BaseModel):
    """Book-level metadata."""

    title: str = ""
    language: str = ""
    description: str = ""
    publisher: str = ""
    rights: str = ""
    source: str = ""
    creator: list[Contributor] = Field(default_factory=list)
    contributor: list[Contributor] = Field(default_factory=list)
    subject: list[Subject] = Field(default_factory=list)
    package_identifier: PackageIdentifier = Field(default_factory=PackageIdentifier)
    identifiers: list[PackageIdentifier] = Field(default_factory=list)
    # event name (publication, conversion, modification, ...) -> date string
    date: dict[str, str] = Field(default_factory=dict)
    metas: dict[str, str] = Field(default_factory=dict)


class GuideReference(BaseModel):
    """Legacy navigation hint such as the cover or the start page."""

    title: str = ""
    type: str
    href: str


class TocItem(BaseModel):
    """Single entry in the table of contents."""

    label: str
    href: str = ""
    id: str | int | None = None
    play_order: int | None = None
    children: list["TocItem"] = Field(default_factory=list)


class PageTarget(BaseModel):
    """Mapping of a print page to a location in the book."""

    label: str = ""
    value: str = ""
    href: str = ""
    play_order: int | None = None
    type: str = ""
    correspond_id: str = ""


class PageList(BaseModel):
    """Flat, ordered print-page index."""

    label: str = ""
    page_targets: list[PageTarget] = Field(default_factory=list)


class NavTarget(BaseModel):
    """Entry of a secondary navigation list (illustrations, tables...)."""

    label: str = ""
    href: str = ""
    correspond_id: str = ""


class NavList(BaseModel):
    """Secondary navigation list."""

    label: str = ""
    nav_targets: list[NavTarget] = Field(default_factory=list)


class CssItem(BaseModel):
    """Stylesheet referenced by a chapter, already materialized."""

    href: str


class ProcessedChapter(BaseModel):
    """Chapter markup rewritten for display."""

    html: str
    css: list[CssItem] = Field(default_factory=list)


class ResolvedHref(BaseModel):
    """Chapter and intra-chapter anchor targeted by a link."""

    id: str | int
    selector: str = ""
