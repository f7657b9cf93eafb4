"""EPUB backend: structure, chapter rewriting and link resolution."""

import logging
import posixpath
import re
import warnings
from pathlib import Path
from typing import BinaryIO

from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from bookreader.cache.manager import KeyedCache, ResourceCache
from bookreader.cache.models import Resource
from bookreader.cache.stores import create_store
from bookreader.core.archive import ZipArchive
from bookreader.core.epub_parser import (
    CONTAINER_PATH,
    attr,
    children,
    first_child,
    local_name,
    parse_collection,
    parse_container,
    parse_guide,
    parse_manifest,
    parse_metadata,
    parse_mimetype,
    parse_nav_document,
    parse_ncx,
    parse_spine,
    parse_xml,
    rebase,
)
from bookreader.core.media import extension_for, media_type_for
from bookreader.errors import (
    MalformedStructureError,
    MissingEntryError,
    UnresolvableReferenceError,
)
from bookreader.models.book import (
    CssItem,
    GuideReference,
    Metadata,
    NavList,
    PageList,
    ProcessedChapter,
    ResolvedHref,
    TocItem,
)
from bookreader.models.epub import Collection, ManifestItem, SpineItem
from bookreader.models.options import ReaderOptions

# Chapters are XHTML read through the lxml HTML parser
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

log = logging.getLogger(__name__)

# Scheme of rewritten in-book links, resolved later by ``resolve_href``
LINK_SCHEME = "epub:"

_CSS_URL = re.compile(r"""url\(\s*(['"]?)([^'")]+)\1\s*\)""")
_URL_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


class EpubBook:
    """An opened EPUB file.

    The package structure is parsed when the instance is created; chapters
    and resources are materialized on first access and cached until
    ``destroy`` is called.
    """

    def __init__(
        self,
        source: Path | str | bytes | BinaryIO,
        options: ReaderOptions | None = None,
    ):
        self.options = options or ReaderOptions()
        if isinstance(source, (str, Path)):
            self.file_name = Path(source).stem
        else:
            self.file_name = Path(getattr(source, "name", "") or "book").stem

        self.zip = ZipArchive(source)
        self.store = create_store(self.options)
        self._resources = ResourceCache(self.store, self.options.namespace or self.file_name)
        self._chapters: KeyedCache[str, ProcessedChapter] = KeyedCache()

        self.mime_type = ""
        self.root_file_path = ""
        self.content_base_dir = ""
        self.metadata = Metadata()
        self.manifest: dict[str, ManifestItem] = {}
        self.spine: list[SpineItem] = []
        self.guide: list[GuideReference] = []
        self.collections: list[Collection] = []
        self.toc: list[TocItem] = []
        self.page_list = PageList()
        self.nav_list: NavList | None = None
        self._href_to_id: dict[str, str] = {}
        # Stylesheets being rewritten, to stop import cycles
        self._materializing: set[str] = set()

        try:
            self._parse()
        except BaseException:
            self.zip.close()
            raise

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    def _parse(self) -> None:
        self.mime_type = parse_mimetype(self.zip.read_text("mimetype"))

        container = parse_xml(self.zip.read_bytes(CONTAINER_PATH), CONTAINER_PATH)
        self.root_file_path = parse_container(container)
        self.content_base_dir = posixpath.dirname(self.root_file_path)

        self._parse_root_file()
        log.debug(
            "Parsed %s: %d manifest items, %d spine items, %d toc entries",
            self.file_name,
            len(self.manifest),
            len(self.spine),
            len(self.toc),
        )

    def _parse_root_file(self) -> None:
        package = parse_xml(self.zip.read_bytes(self.root_file_path), self.root_file_path)
        if local_name(package) != "package":
            raise MalformedStructureError(f"{self.root_file_path} is not a package document")

        required = {}
        for name in ("metadata", "manifest", "spine"):
            el = first_child(package, name)
            if el is None:
                raise MalformedStructureError(
                    f"{self.root_file_path} has no <{name}> element"
                )
            required[name] = el

        self.metadata = parse_metadata(required["metadata"], attr(package, "unique-identifier"))
        self.manifest = parse_manifest(required["manifest"], self.content_base_dir)
        self._href_to_id = {item.href: item.id for item in self.manifest.values()}
        self.spine, toc_path = parse_spine(required["spine"], self.manifest)

        guide = first_child(package, "guide")
        if guide is not None:
            self.guide = parse_guide(guide, self.content_base_dir)
        self.collections = [
            parse_collection(el, self.content_base_dir) for el in children(package, "collection")
        ]

        if toc_path and self.zip.has(toc_path):
            ncx = parse_xml(self.zip.read_bytes(toc_path), toc_path)
            self.toc, page_list, self.nav_list = parse_ncx(ncx, toc_path)
            if page_list is not None:
                self.page_list = page_list
            return
        if toc_path:
            log.warning("Declared NCX %s is missing from %s", toc_path, self.zip.source)

        nav_item = next(
            (item for item in self.manifest.values() if "nav" in item.properties.split()),
            None,
        )
        if nav_item is not None and self.zip.has(nav_item.href):
            nav = parse_xml(self.zip.read_bytes(nav_item.href), nav_item.href)
            self.toc, page_list = parse_nav_document(nav, nav_item.href)
            if page_list is not None:
                self.page_list = page_list

    def get_file_name(self) -> str:
        return self.file_name

    def get_mime_type(self) -> str:
        return self.mime_type

    def get_root_file_path(self) -> str:
        return self.root_file_path

    def get_content_base_dir(self) -> str:
        return self.content_base_dir

    def get_metadata(self) -> Metadata:
        return self.metadata

    def get_manifest(self) -> dict[str, ManifestItem]:
        return self.manifest

    def get_spine(self) -> list[SpineItem]:
        return self.spine

    def get_guide(self) -> list[GuideReference]:
        return self.guide

    def get_collections(self) -> list[Collection]:
        return self.collections

    def get_toc(self) -> list[TocItem]:
        return self.toc

    def get_page_list(self) -> PageList:
        return self.page_list

    def get_nav_list(self) -> NavList | None:
        return self.nav_list

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    def _load_resource(self, path: str) -> Resource:
        try:
            data = self.zip.read_bytes(path)
        except MissingEntryError as e:
            raise UnresolvableReferenceError(str(e))

        item = self.manifest.get(self._href_to_id.get(path, ""))
        media_type = item.media_type if item and item.media_type else media_type_for(path)
        if media_type == "text/css":
            css = data.decode("utf-8", errors="replace")
            self._materializing.add(path)
            try:
                data = self._rewrite_css(css, posixpath.dirname(path)).encode("utf-8")
            finally:
                self._materializing.discard(path)
        return Resource(data=data, media_type=media_type, name=path)

    def _resolve_path(self, path: str) -> str:
        """Location of the resource stored at a container path."""
        key = self._href_to_id.get(path, path)
        return self._resources.resolve(key, lambda: self._load_resource(path))

    def _rewrite_css(self, css: str, base_dir: str) -> str:
        def replace(match: re.Match) -> str:
            url = match.group(2).strip()
            if _URL_SCHEME.match(url) or url.startswith("#"):
                return match.group(0)
            target = rebase(base_dir, url).partition("#")[0]
            if target in self._materializing:
                log.debug("Stylesheet import cycle through %s", target)
                return match.group(0)
            try:
                location = self._resolve_path(target)
            except UnresolvableReferenceError:
                log.debug("Unresolved url(%s) in stylesheet", url)
                return match.group(0)
            return f'url("{location}")'

        return _CSS_URL.sub(replace, css)

    def get_cover_image(self) -> str | None:
        """Location of the cover image, materialized on first call."""
        item = self._find_cover_item()
        if item is None:
            return None

        def load() -> Resource:
            resource = self._load_resource(item.href)
            # Container paths never start with "@", so no real file maps to this name
            resource.name = "@cover" + extension_for(resource.media_type)
            return resource

        try:
            return self._resources.resolve("cover", load)
        except UnresolvableReferenceError:
            log.warning("Cover image %s is missing from %s", item.href, self.zip.source)
            return None

    def _find_cover_item(self) -> ManifestItem | None:
        cover_id = self.metadata.metas.get("cover", "")
        if cover_id in self.manifest:
            return self.manifest[cover_id]
        for item in self.manifest.values():
            if "cover-image" in item.properties.split():
                return item
        for reference in self.guide:
            if reference.type == "cover":
                item_id = self._href_to_id.get(reference.href.partition("#")[0], "")
                item = self.manifest.get(item_id)
                if item is not None and item.media_type.startswith("image"):
                    return item
        return None

    # -------------------------------------------------------------------------
    # Chapters and links
    # -------------------------------------------------------------------------

    def load_chapter(self, chapter_id: str) -> ProcessedChapter:
        """Rewritten markup of a manifest item, cached by id."""
        item = self.manifest.get(chapter_id)
        if item is None:
            raise MissingEntryError(chapter_id, self.zip.source)
        return self._chapters.get_or_compute(chapter_id, lambda: self._process_chapter(item))

    def _process_chapter(self, item: ManifestItem) -> ProcessedChapter:
        soup = BeautifulSoup(self.zip.read_bytes(item.href), "lxml")
        base_dir = posixpath.dirname(item.href)

        css = []
        for link in soup.find_all("link", href=True):
            rel = link.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            if "stylesheet" not in [r.lower() for r in rel]:
                continue
            location = self._rewrite_reference(base_dir, link["href"])
            if location is not None:
                css.append(CssItem(href=location))

        for img in soup.find_all("img", src=True):
            self._rewrite_attribute(img, "src", base_dir)
        for image in soup.find_all("image"):
            for name in ("href", "xlink:href"):
                if image.get(name):
                    self._rewrite_attribute(image, name, base_dir)
        for media in soup.find_all(["video", "audio", "source"]):
            if media.get("src"):
                self._rewrite_attribute(media, "src", base_dir)
            if media.name == "video" and media.get("poster"):
                self._rewrite_attribute(media, "poster", base_dir)

        for anchor in soup.find_all("a", href=True):
            anchor["href"] = self._rewrite_link(anchor["href"], item.href)

        styles = ""
        if soup.head is not None:
            styles = "".join(str(style) for style in soup.head.find_all("style"))
        body = soup.body if soup.body is not None else soup
        return ProcessedChapter(html=styles + body.decode_contents(), css=css)

    def _rewrite_reference(self, base_dir: str, href: str) -> str | None:
        if _URL_SCHEME.match(href):
            return None
        path = rebase(base_dir, href).partition("#")[0]
        try:
            return self._resolve_path(path)
        except UnresolvableReferenceError:
            log.debug("Unresolved reference %s in %s", href, base_dir or "/")
            return None

    def _rewrite_attribute(self, tag, name: str, base_dir: str) -> None:
        location = self._rewrite_reference(base_dir, tag[name])
        if location is not None:
            tag[name] = location

    def _rewrite_link(self, href: str, chapter_href: str) -> str:
        """Turn links into the book into ``epub:`` links, leave others alone."""
        if _URL_SCHEME.match(href):
            return href
        if href.startswith("#"):
            return f"{LINK_SCHEME}{chapter_href}{href}"
        target = rebase(posixpath.dirname(chapter_href), href)
        if target.partition("#")[0] in self._href_to_id:
            return f"{LINK_SCHEME}{target}"
        return href

    def resolve_href(self, href: str) -> ResolvedHref | None:
        """Map an in-book link to its manifest id and an anchor selector."""
        if href.startswith(LINK_SCHEME):
            href = href[len(LINK_SCHEME):]
        path, _, fragment = href.partition("#")
        if not fragment:
            return None
        item_id = self._href_to_id.get(rebase("", path))
        if item_id is None:
            return None
        fragment = fragment.replace("\\", "\\\\").replace('"', '\\"')
        return ResolvedHref(id=item_id, selector=f'[id="{fragment}"]')

    # -------------------------------------------------------------------------
    # Lifetime
    # -------------------------------------------------------------------------

    def destroy(self) -> None:
        """Release materialized resources and drop cached chapters."""
        self._chapters.clear()
        self._resources.destroy()
        self.zip.close()

    def __enter__(self) -> "EpubBook":
        return self

    def __exit__(self, *exc_info) -> None:
        self.destroy()
