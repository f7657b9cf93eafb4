"""Parsing of the EPUB container, package document and navigation files.

Every function takes an already parsed ``lxml`` element and returns models.
Element and attribute names are matched on their local name so that EPUB 2
(``opf:`` prefixed attributes) and EPUB 3 packages go through the same code.
"""

import logging
import posixpath
from collections.abc import Iterator
from urllib.parse import unquote

from lxml import etree

from bookreader.errors import MalformedStructureError
from bookreader.models.book import (
    Contributor,
    GuideReference,
    Metadata,
    NavList,
    NavTarget,
    PackageIdentifier,
    PageList,
    PageTarget,
    Subject,
    TocItem,
)
from bookreader.models.epub import Collection, ManifestItem, SpineItem

log = logging.getLogger(__name__)

EPUB_MIMETYPE = "application/epub+zip"
CONTAINER_PATH = "META-INF/container.xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"


# =============================================================================
# XML helpers
# =============================================================================


def parse_xml(data: bytes, name: str) -> etree._Element:
    """Parse an XML document, tolerating the usual producer mistakes."""
    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError as e:
        raise MalformedStructureError(f"{name} is not well-formed XML: {e}")
    if root is None:
        raise MalformedStructureError(f"{name} is empty or not XML")
    return root


def local_name(el: etree._Element) -> str:
    if not isinstance(el.tag, str):
        return ""
    return etree.QName(el).localname


def children(el: etree._Element, name: str) -> Iterator[etree._Element]:
    """Direct child elements with the given local name."""
    for child in el:
        if local_name(child) == name:
            yield child


def first_child(el: etree._Element, name: str) -> etree._Element | None:
    return next(children(el, name), None)


def descendants(el: etree._Element, name: str) -> Iterator[etree._Element]:
    for child in el.iter():
        if child is not el and local_name(child) == name:
            yield child


def attr(el: etree._Element, name: str, default: str = "") -> str:
    """Attribute value by local name, with or without a namespace prefix."""
    value = el.get(name)
    if value is not None:
        return value.strip()
    for key, value in el.attrib.items():
        if etree.QName(key).localname == name:
            return value.strip()
    return default


def text_of(el: etree._Element | None) -> str:
    if el is None:
        return ""
    return " ".join("".join(el.itertext()).split())


def rebase(base_dir: str, href: str) -> str:
    """Make an href relative to ``base_dir`` relative to the container root.

    Fragments are kept, absolute URLs are returned unchanged.
    """
    href = href.strip()
    if not href or "://" in href or href.startswith(("mailto:", "data:")):
        return href
    path, sep, fragment = href.partition("#")
    path = unquote(path).replace("\\", "/")
    if path:
        if path.startswith("/"):
            path = path.lstrip("/")
        else:
            path = posixpath.join(base_dir, path)
        path = posixpath.normpath(path)
        if path == ".":
            path = ""
    return f"{path}{sep}{fragment}"


def _play_order(el: etree._Element) -> int | None:
    value = attr(el, "playOrder")
    return int(value) if value.isdigit() else None


# =============================================================================
# Container and package document
# =============================================================================


def parse_mimetype(content: str) -> str:
    mimetype = content.strip()
    if mimetype != EPUB_MIMETYPE:
        raise MalformedStructureError(
            f"Unexpected mimetype {mimetype!r}, expected {EPUB_MIMETYPE!r}"
        )
    return mimetype


def parse_container(root: etree._Element) -> str:
    """Return the full path of the package document."""
    rootfiles = list(descendants(root, "rootfile"))
    for rootfile in rootfiles:
        if attr(rootfile, "media-type") == "application/oebps-package+xml":
            path = attr(rootfile, "full-path")
            if path:
                return rebase("", path)
    for rootfile in rootfiles:
        path = attr(rootfile, "full-path")
        if path:
            return rebase("", path)
    raise MalformedStructureError("container.xml declares no rootfile full-path")


def parse_metadata(el: etree._Element, unique_identifier: str = "") -> Metadata:
    """Read Dublin Core elements and meta entries into ``Metadata``."""
    metadata = Metadata()
    by_id: dict[str, Contributor | Subject | PackageIdentifier] = {}
    refinements: list[tuple[str, str, str]] = []

    for child in el:
        name = local_name(child)
        value = text_of(child)
        el_id = attr(child, "id")

        if name in ("creator", "contributor"):
            person = Contributor(
                name=value,
                file_as=attr(child, "file-as"),
                role=attr(child, "role"),
            )
            getattr(metadata, name).append(person)
            if el_id:
                by_id[el_id] = person
        elif name == "subject":
            subject = Subject(
                value=value,
                authority=attr(child, "authority"),
                term=attr(child, "term"),
            )
            metadata.subject.append(subject)
            if el_id:
                by_id[el_id] = subject
        elif name == "identifier":
            identifier = PackageIdentifier(id=value, scheme=attr(child, "scheme"))
            metadata.identifiers.append(identifier)
            if el_id:
                by_id[el_id] = identifier
            if unique_identifier and el_id == unique_identifier:
                metadata.package_identifier = identifier
        elif name == "date":
            event = attr(child, "event") or "publication"
            metadata.date[event] = value
        elif name in ("title", "language", "description", "publisher", "rights", "source"):
            if not getattr(metadata, name):
                setattr(metadata, name, value)
        elif name == "meta":
            meta_name = attr(child, "name")
            refines = attr(child, "refines")
            prop = attr(child, "property")
            if meta_name:
                metadata.metas[meta_name] = attr(child, "content")
            elif refines:
                refinements.append((refines.lstrip("#"), prop, value))
            elif prop == "dcterms:modified":
                metadata.date["modification"] = value
            elif prop:
                metadata.metas[prop] = value

    for target_id, prop, value in refinements:
        target = by_id.get(target_id)
        if target is None:
            continue
        if prop == "file-as" and isinstance(target, Contributor):
            target.file_as = value
        elif prop == "role" and isinstance(target, Contributor):
            target.role = value
        elif prop == "authority" and isinstance(target, Subject):
            target.authority = value
        elif prop == "term" and isinstance(target, Subject):
            target.term = value
        elif prop == "identifier-type" and isinstance(target, PackageIdentifier):
            target.scheme = value

    if not metadata.package_identifier.id and metadata.identifiers:
        metadata.package_identifier = metadata.identifiers[0]

    return metadata


def parse_manifest(el: etree._Element, base_dir: str) -> dict[str, ManifestItem]:
    manifest: dict[str, ManifestItem] = {}
    for item in children(el, "item"):
        item_id = attr(item, "id")
        href = attr(item, "href")
        if not item_id or not href:
            log.debug("Skipping manifest item without id or href")
            continue
        manifest[item_id] = ManifestItem(
            id=item_id,
            href=rebase(base_dir, href),
            media_type=attr(item, "media-type"),
            properties=attr(item, "properties"),
            media_overlay=attr(item, "media-overlay"),
        )
    return manifest


def parse_spine(
    el: etree._Element, manifest: dict[str, ManifestItem]
) -> tuple[list[SpineItem], str]:
    """Return the reading order and the path of the NCX, if any."""
    spine: list[SpineItem] = []
    for itemref in children(el, "itemref"):
        idref = attr(itemref, "idref")
        item = manifest.get(idref)
        if item is None:
            log.warning("Spine references unknown manifest item %r", idref)
            continue
        spine.append(
            SpineItem(
                id=item.id,
                href=item.href,
                media_type=item.media_type,
                media_overlay=item.media_overlay,
                properties=attr(itemref, "properties"),
                linear=attr(itemref, "linear") or "yes",
            )
        )

    toc_path = ""
    toc_id = attr(el, "toc")
    if toc_id and toc_id in manifest:
        toc_path = manifest[toc_id].href
    else:
        for item in manifest.values():
            if item.media_type == NCX_MEDIA_TYPE:
                toc_path = item.href
                break
    return spine, toc_path


def parse_guide(el: etree._Element, base_dir: str) -> list[GuideReference]:
    guide = []
    for reference in children(el, "reference"):
        ref_type = attr(reference, "type")
        href = attr(reference, "href")
        if not ref_type or not href:
            continue
        guide.append(
            GuideReference(
                title=attr(reference, "title"),
                type=ref_type,
                href=rebase(base_dir, href),
            )
        )
    return guide


def parse_collection(el: etree._Element, base_dir: str) -> Collection:
    return Collection(
        role=attr(el, "role"),
        links=[rebase(base_dir, attr(link, "href")) for link in children(el, "link")],
        collections=[parse_collection(c, base_dir) for c in children(el, "collection")],
    )


# =============================================================================
# Navigation: NCX and EPUB 3 navigation document
# =============================================================================


def _walk_nav_points(el: etree._Element, base_dir: str) -> list[TocItem]:
    items = []
    for nav_point in children(el, "navPoint"):
        content = first_child(nav_point, "content")
        items.append(
            TocItem(
                label=text_of(first_child(nav_point, "navLabel")),
                href=rebase(base_dir, attr(content, "src")) if content is not None else "",
                id=attr(nav_point, "id") or None,
                play_order=_play_order(nav_point),
                children=_walk_nav_points(nav_point, base_dir),
            )
        )
    return items


def parse_ncx(
    root: etree._Element, ncx_path: str
) -> tuple[list[TocItem], PageList | None, NavList | None]:
    """Return the TOC tree, the page list and the first nav list of an NCX."""
    base_dir = posixpath.dirname(ncx_path)

    nav_map = first_child(root, "navMap")
    toc = _walk_nav_points(nav_map, base_dir) if nav_map is not None else []
    if nav_map is None:
        log.warning("NCX %s has no navMap", ncx_path)

    page_list = None
    page_list_el = first_child(root, "pageList")
    if page_list_el is not None:
        page_list = PageList(label=text_of(first_child(page_list_el, "navLabel")))
        for target in children(page_list_el, "pageTarget"):
            content = first_child(target, "content")
            page_list.page_targets.append(
                PageTarget(
                    label=text_of(first_child(target, "navLabel")),
                    value=attr(target, "value"),
                    href=rebase(base_dir, attr(content, "src")) if content is not None else "",
                    play_order=_play_order(target),
                    type=attr(target, "type"),
                    correspond_id=attr(target, "id"),
                )
            )

    nav_list = None
    nav_list_el = first_child(root, "navList")
    if nav_list_el is not None:
        nav_list = NavList(label=text_of(first_child(nav_list_el, "navLabel")))
        for target in children(nav_list_el, "navTarget"):
            content = first_child(target, "content")
            nav_list.nav_targets.append(
                NavTarget(
                    label=text_of(first_child(target, "navLabel")),
                    href=rebase(base_dir, attr(content, "src")) if content is not None else "",
                    correspond_id=attr(target, "id"),
                )
            )

    return toc, page_list, nav_list


def _walk_nav_list(ol: etree._Element, base_dir: str) -> list[TocItem]:
    items = []
    for li in children(ol, "li"):
        link = first_child(li, "a")
        if link is None:
            link = first_child(li, "span")
        if link is None:
            continue
        nested = first_child(li, "ol")
        items.append(
            TocItem(
                label=text_of(link),
                href=rebase(base_dir, attr(link, "href")),
                id=attr(li, "id") or None,
                children=_walk_nav_list(nested, base_dir) if nested is not None else [],
            )
        )
    return items


def parse_nav_document(
    root: etree._Element, nav_path: str
) -> tuple[list[TocItem], PageList | None]:
    """Read the ``toc`` and ``page-list`` navs of an EPUB 3 navigation document."""
    base_dir = posixpath.dirname(nav_path)
    toc: list[TocItem] = []
    page_list = None

    for nav in descendants(root, "nav"):
        nav_types = attr(nav, "type").split()
        ol = next(descendants(nav, "ol"), None)
        if ol is None:
            continue
        if "toc" in nav_types and not toc:
            toc = _walk_nav_list(ol, base_dir)
        elif "page-list" in nav_types and page_list is None:
            heading = next(
                (h for h in nav if local_name(h) in ("h1", "h2", "h3", "h4", "h5", "h6")),
                None,
            )
            page_list = PageList(label=text_of(heading))
            for entry in _walk_nav_list(ol, base_dir):
                page_list.page_targets.append(
                    PageTarget(label=entry.label, value=entry.label, href=entry.href)
                )

    return toc, page_list
