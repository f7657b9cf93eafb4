"""MOBI backend: chapters, resources and filepos link resolution."""

import bisect
import logging
import struct
from pathlib import Path
from typing import BinaryIO

from bs4 import BeautifulSoup

from bookreader.cache.manager import KeyedCache, ResourceCache
from bookreader.cache.models import Resource
from bookreader.cache.stores import create_store
from bookreader.core.media import extension_for, sniff_media_type
from bookreader.core.mobi_parser import (
    EXTH_COVER_OFFSET,
    FILEPOS_SCHEME,
    find_chapter,
    exth_offset,
    parse_filepos,
    parse_metadata,
    parse_references,
    parse_toc,
    read_text_stream,
    scan_filepos,
    split_chapters,
)
from bookreader.core.palmdb import PalmDatabase, parse_mobi_header
from bookreader.errors import MissingEntryError, UnresolvableReferenceError
from bookreader.models.book import (
    GuideReference,
    Metadata,
    PageList,
    ProcessedChapter,
    ResolvedHref,
    TocItem,
)
from bookreader.models.mobi import MobiChapter, MobiHeader
from bookreader.models.options import ReaderOptions

log = logging.getLogger(__name__)

# Audio and video records wrap their payload: magic, payload offset, length
MEDIA_RECORD_MAGICS = (b"AUDI", b"VIDE")


class MobiBook:
    """An opened MOBI (or plain PalmDOC) file.

    Chapters are the slices of the decompressed text between page-break
    markers and are addressed by their index in the stream.
    """

    def __init__(
        self,
        source: Path | str | bytes | BinaryIO,
        options: ReaderOptions | None = None,
    ):
        self.options = options or ReaderOptions()
        if isinstance(source, bytes):
            data, self.file_name = source, "book"
        elif isinstance(source, (str, Path)):
            data, self.file_name = Path(source).read_bytes(), Path(source).stem
        else:
            data = source.read()
            self.file_name = Path(getattr(source, "name", "") or "book").stem

        self.store = create_store(self.options)
        self._resources = ResourceCache(self.store, self.options.namespace or self.file_name)
        self._chapters: KeyedCache[int, ProcessedChapter] = KeyedCache()

        self.db = PalmDatabase(data, str(source) if isinstance(source, (str, Path)) else "")
        self.header: MobiHeader = parse_mobi_header(self.db)
        self.metadata: Metadata = parse_metadata(self.header)

        self.stream = read_text_stream(self.db, self.header)
        self.chapters, reference_section = split_chapters(self.stream, self.header.encoding)
        self._id_to_chapter = {chapter.id: chapter for chapter in self.chapters}
        self.guide: list[GuideReference] = parse_references(reference_section)
        self._filepos_targets = scan_filepos(self.stream)
        self.toc: list[TocItem] = self._build_toc()

        log.debug(
            "Parsed %s: %d text bytes, %d chapters, %d toc entries",
            self.file_name,
            len(self.stream),
            len(self.chapters),
            len(self.toc),
        )

    def _build_toc(self) -> list[TocItem]:
        reference = next((r for r in self.guide if r.type.lower() == "toc"), None)
        if reference is None:
            return []
        position = parse_filepos(reference.href)
        chapter = find_chapter(self.chapters, position) if position is not None else None
        if chapter is None:
            log.warning("TOC reference points outside the text (%s)", reference.href)
            return []
        return parse_toc(chapter.text, self.chapters)

    def get_file_name(self) -> str:
        return self.file_name

    def get_header(self) -> MobiHeader:
        return self.header

    def get_metadata(self) -> Metadata:
        return self.metadata

    def get_spine(self) -> list[MobiChapter]:
        return self.chapters

    def get_guide(self) -> list[GuideReference]:
        return self.guide

    def get_toc(self) -> list[TocItem]:
        return self.toc

    def get_page_list(self) -> PageList:
        # MOBI files carry no print page index
        return PageList()

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def _read_resource(self, index: int, name: str | None = None) -> Resource:
        """Resource record ``index`` (1-based, as used by ``recindex``)."""
        first = self.header.first_resource_record
        if first is None or index < 1:
            raise UnresolvableReferenceError(f"No resource record {index}")
        try:
            data = self.db.record(first + index - 1)
        except MissingEntryError as e:
            raise UnresolvableReferenceError(str(e))

        if data[:4] in MEDIA_RECORD_MAGICS and len(data) >= 12:
            offset, length = struct.unpack_from(">II", data, 4)
            data = data[offset:offset + length]

        media_type = sniff_media_type(data)
        return Resource(
            data=data,
            media_type=media_type,
            name=(name or str(index)) + extension_for(media_type),
        )

    def load_resource(self, index: int) -> str:
        """Location of resource record ``index``, materialized on first call."""
        return self._resources.resolve(str(index), lambda: self._read_resource(index))

    def _resource_location(self, value: str) -> str | None:
        value = value.strip("'\" ")
        if not value.isdigit():
            return None
        try:
            return self.load_resource(int(value))
        except UnresolvableReferenceError as e:
            log.debug("Unresolved resource reference %s: %s", value, e)
            return None

    def get_cover_image(self) -> str | None:
        """Location of the cover image named by the EXTH cover offset."""
        offset = exth_offset(self.header, EXTH_COVER_OFFSET)
        if offset is None:
            return None
        try:
            return self._resources.resolve(
                "cover", lambda: self._read_resource(offset + 1, name="cover")
            )
        except UnresolvableReferenceError:
            log.warning("Cover record %d is missing from %s", offset, self.file_name)
            return None

    # -------------------------------------------------------------------------
    # Chapters and links
    # -------------------------------------------------------------------------

    def load_chapter(self, chapter_id: int) -> ProcessedChapter:
        """Rewritten markup of a chapter, cached by id."""
        chapter = self._id_to_chapter.get(chapter_id)
        if chapter is None:
            raise MissingEntryError(f"chapter {chapter_id}", self.file_name)
        return self._chapters.get_or_compute(chapter_id, lambda: self._process_chapter(chapter))

    def _process_chapter(self, chapter: MobiChapter) -> ProcessedChapter:
        soup = BeautifulSoup(self._with_anchors(chapter), "lxml")

        for img in soup.find_all("img", attrs={"recindex": True}):
            location = self._resource_location(img["recindex"])
            if location is not None:
                del img["recindex"]
                img["src"] = location

        for media in soup.find_all(["video", "audio"]):
            if media.get("mediarecindex"):
                location = self._resource_location(media["mediarecindex"])
                if location is not None:
                    del media["mediarecindex"]
                    media["src"] = location
            if media.get("recindex"):
                location = self._resource_location(media["recindex"])
                if location is not None:
                    del media["recindex"]
                    media["poster"] = location

        for anchor in soup.find_all("a", attrs={"filepos": True}):
            value = str(anchor["filepos"]).strip("'\" ")
            if value.isdigit():
                del anchor["filepos"]
                anchor["href"] = f"{FILEPOS_SCHEME}{int(value)}"

        body = soup.body if soup.body is not None else soup
        return ProcessedChapter(html=body.decode_contents(), css=[])

    def _with_anchors(self, chapter: MobiChapter) -> str:
        """Chapter text with an ``id="filepos:N"`` anchor at every link target."""
        raw = self.stream[chapter.offset:chapter.offset + chapter.size]
        low = bisect.bisect_left(self._filepos_targets, chapter.start)
        high = bisect.bisect_left(self._filepos_targets, chapter.end)

        parts = []
        cursor = 0
        for position in self._filepos_targets[low:high]:
            # Targets on the marker or in trimmed markup clamp to the text edges
            at = min(max(position - chapter.offset, cursor), len(raw))
            # Never split a tag: move past it
            if raw.rfind(b"<", 0, at) > raw.rfind(b">", 0, at):
                close = raw.find(b">", at)
                at = len(raw) if close < 0 else close + 1
            parts.append(raw[cursor:at])
            parts.append(f'<a id="{FILEPOS_SCHEME}{position}"></a>'.encode("ascii"))
            cursor = at
        parts.append(raw[cursor:])
        return b"".join(parts).decode(self.header.encoding, errors="replace")

    def resolve_href(self, href: str) -> ResolvedHref | None:
        """Map a ``filepos:N`` link to its chapter and anchor selector."""
        position = parse_filepos(href)
        if position is None:
            return None
        chapter = find_chapter(self.chapters, position)
        if chapter is None:
            return None
        return ResolvedHref(id=chapter.id, selector=f'[id="{FILEPOS_SCHEME}{position}"]')

    # -------------------------------------------------------------------------
    # Lifetime
    # -------------------------------------------------------------------------

    def destroy(self) -> None:
        """Release materialized resources and drop cached chapters."""
        self._chapters.clear()
        self._resources.destroy()

    def __enter__(self) -> "MobiBook":
        return self

    def __exit__(self, *exc_info) -> None:
        self.destroy()
