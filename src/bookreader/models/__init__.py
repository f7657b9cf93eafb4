"""Data models."""

from bookreader.models.book import (
    Contributor,
    CssItem,
    GuideReference,
    Metadata,
    NavList,
    NavTarget,
    PackageIdentifier,
    PageList,
    PageTarget,
    ProcessedChapter,
    ResolvedHref,
    Subject,
    TocItem,
)
from bookreader.models.epub import Collection, ManifestItem, SpineItem
from bookreader.models.mobi import MobiChapter, MobiHeader
from bookreader.models.options import ReaderOptions

__all__ = [
    # Shared models
    "Contributor",
    "Subject",
    "PackageIdentifier",
    "Metadata",
    "GuideReference",
    "TocItem",
    "PageTarget",
    "PageList",
    "NavTarget",
    "NavList",
    "CssItem",
    "ProcessedChapter",
    "ResolvedHref",
    # EPUB models
    "ManifestItem",
    "SpineItem",
    "Collection",
    # MOBI models
    "MobiChapter",
    "MobiHeader",
    # Configuration
    "ReaderOptions",
]
