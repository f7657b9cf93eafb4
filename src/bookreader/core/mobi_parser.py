"""Reconstruction of the MOBI text stream and its navigation structure.

All chapter and link addresses of a MOBI book are byte offsets ("filepos")
into one stream: the decompressed text records concatenated in order. The
functions below build that stream, cut it into chapters at page-break markers
and rebuild the table of contents from the book's reference section.
"""

import logging
import re
import struct

from bs4 import BeautifulSoup, Tag

from bookreader.core.compression import (
    HUFF_CDIC,
    NO_COMPRESSION,
    PALMDOC,
    HuffCdicReader,
    palmdoc_decompress,
    strip_trailing_entries,
)
from bookreader.core.palmdb import NULL_INDEX, PalmDatabase
from bookreader.errors import MalformedStructureError
from bookreader.models.book import (
    Contributor,
    GuideReference,
    Metadata,
    PackageIdentifier,
    Subject,
    TocItem,
)
from bookreader.models.mobi import MobiChapter, MobiHeader

log = logging.getLogger(__name__)

PAGEBREAK_TAG = b"<mbp:pagebreak"
FILEPOS_ATTRIBUTE = b"filepos="
FILEPOS_SCHEME = "filepos:"

# Block elements whose nesting encodes TOC depth
BLOCK_TAGS = frozenset({"p", "div", "blockquote", "ul", "ol", "li", "h1", "h2", "h3", "h4", "h5", "h6"})
# Blocks that hold the children of the entry right before them
NESTING_TAGS = frozenset({"blockquote", "ul", "ol"})

_UNQUOTED_FILEPOS = re.compile(r"filepos=(\d+)", re.IGNORECASE)

# EXTH record types
EXTH_CREATOR = 100
EXTH_PUBLISHER = 101
EXTH_DESCRIPTION = 103
EXTH_ISBN = 104
EXTH_SUBJECT = 105
EXTH_PUBLISHED = 106
EXTH_CONTRIBUTOR = 108
EXTH_RIGHTS = 109
EXTH_SOURCE = 112
EXTH_ASIN = 113
EXTH_COVER_OFFSET = 201
EXTH_THUMB_OFFSET = 202
EXTH_TITLE = 503
EXTH_LANGUAGE = 524

# Windows language ids used by the MOBI locale field
LANGUAGE_CODES = {
    1: "ar", 2: "bg", 3: "ca", 4: "zh", 5: "cs", 6: "da", 7: "de", 8: "el",
    9: "en", 10: "es", 11: "fi", 12: "fr", 13: "he", 14: "hu", 15: "is",
    16: "it", 17: "ja", 18: "ko", 19: "nl", 20: "no", 21: "pl", 22: "pt",
    24: "ro", 25: "ru", 26: "hr", 27: "sk", 29: "sv", 30: "th", 31: "tr",
    34: "uk", 42: "vi",
}


# =============================================================================
# Text stream
# =============================================================================


def read_text_stream(db: PalmDatabase, header: MobiHeader) -> bytes:
    """Decompress text records 1..N and concatenate them in record order."""
    if header.compression == NO_COMPRESSION:
        decompress = bytes
    elif header.compression == PALMDOC:
        decompress = palmdoc_decompress
    elif header.compression == HUFF_CDIC:
        decompress = _huff_reader(db, header).unpack
    else:
        raise MalformedStructureError(f"Unknown MOBI compression type {header.compression}")

    parts = []
    for index in range(1, header.num_text_records + 1):
        record = strip_trailing_entries(db.record(index), header.trailing_flags)
        parts.append(decompress(record))
    return b"".join(parts)


def _huff_reader(db: PalmDatabase, header: MobiHeader) -> HuffCdicReader:
    if header.huff_record is None or header.huff_record_count < 1:
        raise MalformedStructureError("HUFF/CDIC book without HUFF record")
    first = header.huff_record
    cdics = [db.record(first + i) for i in range(1, header.huff_record_count)]
    try:
        return HuffCdicReader(db.record(first), cdics)
    except (ValueError, struct.error) as e:
        raise MalformedStructureError(f"Invalid HUFF/CDIC tables: {e}")


# =============================================================================
# Scanning
# =============================================================================


def scan_markers(stream: bytes, tag: bytes = PAGEBREAK_TAG) -> list[tuple[int, int]]:
    """Return ``(start, end)`` of every ``tag`` element in the stream.

    Matching ignores case and requires the tag name to end where the match
    ends, so ``<mbp:pagebreakx>`` is not a marker. ``end`` is one past the
    closing ``>`` (or the stream length for an unterminated tag).
    """
    lowered = stream.lower()
    markers = []
    pos = 0
    while True:
        start = lowered.find(tag, pos)
        if start < 0:
            break
        after = start + len(tag)
        if after < len(stream) and stream[after] not in b" \t\r\n/>":
            pos = after
            continue
        close = stream.find(b">", after)
        end = len(stream) if close < 0 else close + 1
        markers.append((start, end))
        pos = end
    return markers


def scan_filepos(stream: bytes) -> list[int]:
    """Every offset named by a ``filepos=`` attribute, sorted and unique."""
    lowered = stream.lower()
    positions = set()
    pos = 0
    while True:
        found = lowered.find(FILEPOS_ATTRIBUTE, pos)
        if found < 0:
            break
        start = found + len(FILEPOS_ATTRIBUTE)
        while start < len(stream) and stream[start] in b"'\"":
            start += 1
        end = start
        while end < len(stream) and 0x30 <= stream[end] <= 0x39:
            end += 1
        if end > start:
            positions.add(int(stream[start:end]))
        pos = max(end, found + len(FILEPOS_ATTRIBUTE))
    return sorted(positions)


def quote_filepos(markup: str) -> str:
    """Quote bare ``filepos=123`` attribute values."""
    return _UNQUOTED_FILEPOS.sub(r'filepos="\1"', markup)


# =============================================================================
# Chapters
# =============================================================================


def split_chapters(stream: bytes, encoding: str) -> tuple[list[MobiChapter], str]:
    """Cut the stream at page breaks.

    Returns the chapters and the reference section, the markup that precedes
    the opening ``<body>`` tag of the first chapter.
    """
    lowered = stream.lower()
    markers = [(0, 0)] + scan_markers(stream)

    # [start, end, content_start, content_end] per chapter
    bounds = []
    for i, (start, marker_end) in enumerate(markers):
        end = markers[i + 1][0] if i + 1 < len(markers) else len(stream)
        bounds.append([start, end, marker_end, end])

    last = bounds[-1]
    body_close = lowered.find(b"</body>", last[2], last[3])
    if body_close >= 0:
        last[3] = body_close

    first = bounds[0]
    reference_section = b""
    body_open = _find_body_open(lowered, first[2], first[3])
    if body_open is not None:
        tag_start, tag_end = body_open
        reference_section = stream[first[2]:tag_start]
        first[2] = tag_end

    chapters = []
    for chapter_id, (start, end, content_start, content_end) in enumerate(bounds):
        content_end = max(content_start, content_end)
        chapters.append(
            MobiChapter(
                id=chapter_id,
                text=stream[content_start:content_end].decode(encoding, errors="replace"),
                start=start,
                end=end,
                size=content_end - content_start,
                offset=content_start,
            )
        )

    return chapters, reference_section.decode(encoding, errors="replace")


def _find_body_open(lowered: bytes, start: int, end: int) -> tuple[int, int] | None:
    pos = start
    while True:
        found = lowered.find(b"<body", pos, end)
        if found < 0:
            return None
        after = found + len(b"<body")
        if after < end and lowered[after] not in b" \t\r\n/>":
            pos = after
            continue
        close = lowered.find(b">", after, end)
        return found, (end if close < 0 else close + 1)


def find_chapter(chapters: list[MobiChapter], position: int) -> MobiChapter | None:
    """First chapter whose ``[start, end)`` range contains ``position``."""
    for chapter in chapters:
        if chapter.start <= position < chapter.end:
            return chapter
    return None


def parse_filepos(href: str) -> int | None:
    """Offset carried by a ``filepos:N`` link, ``None`` when there is none."""
    found = href.find(FILEPOS_SCHEME)
    if found < 0:
        return None
    digits = ""
    for char in href[found + len(FILEPOS_SCHEME):]:
        if not char.isdigit():
            break
        digits += char
    return int(digits) if digits else None


# =============================================================================
# Reference section and table of contents
# =============================================================================


def parse_references(reference_section: str) -> list[GuideReference]:
    """Read ``<reference>`` entries of the reference section as guide items."""
    if not reference_section:
        return []
    soup = BeautifulSoup(reference_section, "lxml")
    guide = []
    for reference in soup.find_all("reference"):
        filepos = str(reference.get("filepos", "")).strip("'\" ")
        ref_type = str(reference.get("type", "")).strip()
        if not ref_type or not filepos.isdigit():
            continue
        guide.append(
            GuideReference(
                title=str(reference.get("title", "")).strip(),
                type=ref_type,
                href=f"{FILEPOS_SCHEME}{int(filepos)}",
            )
        )
    return guide


def parse_toc(markup: str, chapters: list[MobiChapter]) -> list[TocItem]:
    """Build the TOC tree from the markup of the chapter holding the TOC."""
    soup = BeautifulSoup(quote_filepos(markup), "lxml")
    return _walk_blocks(soup.body if soup.body is not None else soup, chapters)


def _block_children(el: Tag):
    for child in el.children:
        if not isinstance(child, Tag):
            continue
        if child.name in BLOCK_TAGS:
            yield child
        elif child.name != "a":
            # Inline wrappers such as <font> or <span> do not add depth
            yield from _block_children(child)


def _own_anchor(block: Tag) -> Tag | None:
    """First filepos link whose nearest enclosing block is ``block``."""
    for anchor in block.find_all("a", attrs={"filepos": True}):
        parent = anchor.parent
        while parent is not block:
            if parent.name in BLOCK_TAGS:
                break
            parent = parent.parent
        else:
            return anchor
    return None


def _toc_item(anchor: Tag, chapters: list[MobiChapter]) -> TocItem | None:
    value = str(anchor.get("filepos", "")).strip()
    if not value.isdigit():
        return None
    position = int(value)
    chapter = find_chapter(chapters, position)
    if chapter is None:
        log.debug("Dropping TOC entry pointing past the text (filepos %d)", position)
        return None
    return TocItem(
        label=anchor.get_text(" ", strip=True),
        href=f"{FILEPOS_SCHEME}{position}",
        id=chapter.id,
    )


def _walk_blocks(container: Tag, chapters: list[MobiChapter]) -> list[TocItem]:
    items: list[TocItem] = []
    for block in _block_children(container):
        nested = _walk_blocks(block, chapters)
        anchor = _own_anchor(block)
        if anchor is not None:
            item = _toc_item(anchor, chapters)
            if item is None:
                items.extend(nested)
                continue
            item.children = nested
            items.append(item)
        elif block.name in NESTING_TAGS and items:
            items[-1].children.extend(nested)
        else:
            items.extend(nested)
    return items


# =============================================================================
# Metadata
# =============================================================================


def _exth_text(header: MobiHeader, record_type: int) -> list[str]:
    return [
        value.decode(header.encoding, errors="replace").strip()
        for value in header.exth.get(record_type, [])
    ]


def exth_offset(header: MobiHeader, record_type: int) -> int | None:
    """Numeric EXTH value such as the cover record offset."""
    values = header.exth.get(record_type)
    if not values or len(values[0]) != 4:
        return None
    (value,) = struct.unpack(">I", values[0])
    return None if value == NULL_INDEX else value


def parse_metadata(header: MobiHeader) -> Metadata:
    """Metadata from the MOBI header and its EXTH records."""
    titles = _exth_text(header, EXTH_TITLE)
    metadata = Metadata(
        title=titles[0] if titles else header.full_name or header.name,
        creator=[Contributor(name=name) for name in _exth_text(header, EXTH_CREATOR)],
        contributor=[Contributor(name=name) for name in _exth_text(header, EXTH_CONTRIBUTOR)],
        subject=[Subject(value=value) for value in _exth_text(header, EXTH_SUBJECT)],
    )

    for field, record_type in (
        ("publisher", EXTH_PUBLISHER),
        ("description", EXTH_DESCRIPTION),
        ("rights", EXTH_RIGHTS),
        ("source", EXTH_SOURCE),
        ("language", EXTH_LANGUAGE),
    ):
        values = _exth_text(header, record_type)
        if values:
            setattr(metadata, field, values[0])

    if not metadata.language:
        metadata.language = LANGUAGE_CODES.get(header.locale & 0xFF, "")

    for scheme, record_type in (("ISBN", EXTH_ISBN), ("ASIN", EXTH_ASIN)):
        for value in _exth_text(header, record_type):
            metadata.identifiers.append(PackageIdentifier(id=value, scheme=scheme))
    if metadata.identifiers:
        metadata.package_identifier = metadata.identifiers[0]

    published = _exth_text(header, EXTH_PUBLISHED)
    if published:
        metadata.date["publication"] = published[0]

    return metadata
