from __future__ import annotations

import struct
import zipfile
from pathlib import Path

import pytest

# Smallest files that pass the signature checks
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 17
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00\x10JFIF\x00" + b"\x00" * 16


# =============================================================================
# EPUB
# =============================================================================

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

CONTENT_OPF = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="2.0" unique-identifier="id">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:rights>Public domain in the USA.</dc:rights>
    <dc:identifier opf:scheme="ISBN">9780000000000</dc:identifier>
    <dc:identifier id="id" opf:scheme="URI">http://www.gutenberg.org/ebooks/19033</dc:identifier>
    <dc:creator opf:file-as="Carroll, Lewis" opf:role="aut">Lewis Carroll</dc:creator>
    <dc:contributor opf:file-as="Robinson, Gordon" opf:role="ill">Gordon Robinson</dc:contributor>
    <dc:title>Alice's Adventures in Wonderland</dc:title>
    <dc:language>en</dc:language>
    <dc:subject>Fantasy</dc:subject>
    <dc:subject>Fantasy fiction, English</dc:subject>
    <dc:date opf:event="publication">2006-08-12</dc:date>
    <dc:date opf:event="conversion">2010-02-16T12:34:12</dc:date>
    <dc:source>http://www.gutenberg.org/files/19033/19033-h/19033-h.htm</dc:source>
    <meta name="cover" content="cover"/>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="cover" href="images/cover.jpg" media-type="image/jpeg"/>
    <item id="fig1" href="images/fig%201.png" media-type="image/png"/>
    <item id="css" href="styles/main.css" media-type="text/css"/>
    <item id="ch1" href="text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="text/ch2.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch3" href="text/ch3.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="ch1"/>
    <itemref idref="ch2"/>
    <itemref idref="ch3" linear="no"/>
  </spine>
  <guide>
    <reference type="cover" title="Cover Image" href="images/cover.jpg"/>
  </guide>
</package>
"""

TOC_NCX = """<?xml version="1.0" encoding="utf-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="http://www.gutenberg.org/ebooks/19033"/></head>
  <docTitle><text>Alice's Adventures in Wonderland</text></docTitle>
  <navMap>
    <navPoint id="np-1" playOrder="1">
      <navLabel><text>Down the Rabbit-Hole</text></navLabel>
      <content src="text/ch1.xhtml#start"/>
      <navPoint id="np-2" playOrder="2">
        <navLabel><text>The Fall</text></navLabel>
        <content src="text/ch1.xhtml#fall"/>
      </navPoint>
    </navPoint>
    <navPoint id="np-3" playOrder="3">
      <navLabel><text>The Pool of Tears</text></navLabel>
      <content src="text/ch2.xhtml#pool"/>
    </navPoint>
    <navPoint id="np-4" playOrder="4">
      <navLabel><text>Notes</text></navLabel>
      <content src="text/ch3.xhtml"/>
    </navPoint>
  </navMap>
  <pageList>
    <navLabel><text>Pages</text></navLabel>
    <pageTarget id="p1" type="normal" value="1" playOrder="5">
      <navLabel><text>1</text></navLabel>
      <content src="text/ch1.xhtml#page1"/>
    </pageTarget>
    <pageTarget id="p2" type="normal" value="2" playOrder="6">
      <navLabel><text>2</text></navLabel>
      <content src="text/ch2.xhtml#page2"/>
    </pageTarget>
  </pageList>
  <navList>
    <navLabel><text>Illustrations</text></navLabel>
    <navTarget id="ill-1">
      <navLabel><text>Figure 1</text></navLabel>
      <content src="text/ch1.xhtml#fig1"/>
    </navTarget>
  </navList>
</ncx>
"""

CHAPTER_1 = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head>
  <title>Down the Rabbit-Hole</title>
  <link rel="stylesheet" type="text/css" href="../styles/main.css"/>
  <style>p.note { font-size: small; }</style>
</head>
<body>
  <h1 id="start">Down the Rabbit-Hole</h1>
  <p>Alice was beginning <a href="ch2.xhtml#pool">to get very tired</a>.</p>
  <p id="fall"><img src="../images/fig%201.png" alt="Figure 1"/></p>
  <p><a href="#start">Top</a> <a href="https://example.com/">Web</a> <a href="missing.xhtml#x">Gone</a></p>
  <p><img src="../images/nothere.png" alt="Missing"/></p>
</body>
</html>
"""

CHAPTER_2 = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>The Pool of Tears</title></head>
<body>
  <h1 id="pool">The Pool of Tears</h1>
  <p>Curiouser and curiouser! <a href="ch1.xhtml">Back</a></p>
</body>
</html>
"""

CHAPTER_3 = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Notes</title></head>
<body><p class="note">Transcriber's notes.</p></body>
</html>
"""

MAIN_CSS = """body { margin: 1em; }
.figure { background: url('../images/fig%201.png') no-repeat; }
.remote { background: url(https://example.com/bg.png); }
"""


def write_epub(path: Path, files: dict[str, str | bytes], mimetype: str | None = "application/epub+zip") -> Path:
    """Write an EPUB archive with ``mimetype`` stored first."""
    with zipfile.ZipFile(path, "w") as zf:
        if mimetype is not None:
            zf.writestr("mimetype", mimetype, compress_type=zipfile.ZIP_STORED)
        for name, content in files.items():
            zf.writestr(name, content, compress_type=zipfile.ZIP_DEFLATED)
    return path


def sample_epub_files() -> dict[str, str | bytes]:
    return {
        "META-INF/container.xml": CONTAINER_XML.format(opf_path="OEBPS/content.opf"),
        "OEBPS/content.opf": CONTENT_OPF,
        "OEBPS/toc.ncx": TOC_NCX,
        "OEBPS/text/ch1.xhtml": CHAPTER_1,
        "OEBPS/text/ch2.xhtml": CHAPTER_2,
        "OEBPS/text/ch3.xhtml": CHAPTER_3,
        "OEBPS/styles/main.css": MAIN_CSS,
        "OEBPS/images/cover.jpg": JPEG_BYTES,
        "OEBPS/images/fig 1.png": PNG_BYTES,
    }


PACKAGE_OPF_3 = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:identifier id="uid">urn:uuid:12345678-1234-1234-1234-123456789abc</dc:identifier>
    <meta refines="#uid" property="identifier-type">uuid</meta>
    <dc:title>Modern Book</dc:title>
    <dc:language>fr</dc:language>
    <dc:creator id="author">Jane Doe</dc:creator>
    <meta refines="#author" property="file-as">Doe, Jane</meta>
    <meta refines="#author" property="role">aut</meta>
    <meta property="dcterms:modified">2020-01-01T00:00:00Z</meta>
  </metadata>
  <manifest>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="img" href="cover.png" media-type="image/png" properties="cover-image"/>
    <item id="c1" href="chapter1.xhtml" media-type="application/xhtml+xml"/>
    <item id="c2" href="chapter2.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine>
    <itemref idref="c1"/>
    <itemref idref="c2"/>
  </spine>
  <collection role="index">
    <link href="chapter2.xhtml"/>
  </collection>
</package>
"""

NAV_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<body>
  <nav epub:type="toc"><h1>Contents</h1>
    <ol>
      <li><a href="chapter1.xhtml">One</a>
        <ol><li><a href="chapter1.xhtml#s1">One point one</a></li></ol>
      </li>
      <li><a href="chapter2.xhtml">Two</a></li>
    </ol>
  </nav>
  <nav epub:type="page-list"><h2>Pages</h2>
    <ol>
      <li><a href="chapter1.xhtml#p1">i</a></li>
      <li><a href="chapter2.xhtml#p2">ii</a></li>
    </ol>
  </nav>
</body>
</html>
"""

SIMPLE_CHAPTER = """<html xmlns="http://www.w3.org/1999/xhtml"><head><title>{title}</title></head>
<body><h1 id="s1">{title}</h1><p>Text of {title}.</p></body></html>
"""


def epub3_files() -> dict[str, str | bytes]:
    return {
        "META-INF/container.xml": CONTAINER_XML.format(opf_path="package.opf"),
        "package.opf": PACKAGE_OPF_3,
        "nav.xhtml": NAV_XHTML,
        "cover.png": PNG_BYTES,
        "chapter1.xhtml": SIMPLE_CHAPTER.format(title="One"),
        "chapter2.xhtml": SIMPLE_CHAPTER.format(title="Two"),
    }


@pytest.fixture
def sample_epub(tmp_path: Path) -> Path:
    return write_epub(tmp_path / "alice.epub", sample_epub_files())


@pytest.fixture
def epub3(tmp_path: Path) -> Path:
    return write_epub(tmp_path / "modern.epub", epub3_files())


# =============================================================================
# MOBI
# =============================================================================

NULL = 0xFFFFFFFF


def palmdoc_literal(data: bytes) -> bytes:
    """PalmDOC encoding made only of literals, valid input for the decoder."""
    out = bytearray()
    for byte in data:
        if byte == 0 or 0x09 <= byte <= 0x7F:
            out.append(byte)
        else:
            out += bytes([1, byte])
    return bytes(out)


def build_exth(records: dict[int, list[bytes]]) -> bytes:
    body = b""
    count = 0
    for record_type, values in records.items():
        for value in values:
            body += struct.pack(">II", record_type, len(value) + 8) + value
            count += 1
    block = b"EXTH" + struct.pack(">II", 12 + len(body), count) + body
    return block + b"\x00" * (-len(block) % 4)


def build_mobi(
    text: bytes,
    *,
    resources: list[bytes] = (),
    exth: dict[int, list[bytes]] | None = None,
    title: str = "Sample Book",
    record_size: int = 4096,
    compression: int = 1,
    encoding: int = 65001,
    locale: int = 9,
    trailing: bytes = b"",
    trailing_flags: int = 0,
    encryption: int = 0,
    mobi_header: bool = True,
) -> bytes:
    """Assemble a PalmDB file holding a MOBI book."""
    chunks = [text[i:i + record_size] for i in range(0, len(text), record_size)] or [b""]
    encode = palmdoc_literal if compression == 2 else bytes
    text_records = [encode(chunk) + trailing for chunk in chunks]

    palmdoc = struct.pack(
        ">HHIHHHH", compression, 0, len(text), len(text_records), record_size, encryption, 0
    )
    record0 = palmdoc
    if mobi_header:
        header_length = 232
        exth_block = build_exth(exth) if exth else b""
        full_name = title.encode("utf-8")
        full_name_offset = 16 + header_length + len(exth_block)

        mobi = bytearray(header_length)
        mobi[0:4] = b"MOBI"
        struct.pack_into(">I", mobi, 4, header_length)
        struct.pack_into(">I", mobi, 8, 2)
        struct.pack_into(">I", mobi, 12, encoding)
        struct.pack_into(">I", mobi, 84 - 16, full_name_offset)
        struct.pack_into(">I", mobi, 88 - 16, len(full_name))
        struct.pack_into(">I", mobi, 92 - 16, locale)
        first_resource = 1 + len(text_records) if resources else NULL
        struct.pack_into(">I", mobi, 108 - 16, first_resource)
        struct.pack_into(">I", mobi, 112 - 16, NULL)
        struct.pack_into(">I", mobi, 128 - 16, 0x40 if exth else 0)
        struct.pack_into(">H", mobi, 0xF2 - 16, trailing_flags)
        record0 = palmdoc + bytes(mobi) + exth_block + full_name + b"\x00\x00"

    records = [record0] + text_records + list(resources)

    header = bytearray(78)
    name = title.replace(" ", "_").encode("latin-1")[:31]
    header[0:len(name)] = name
    header[60:68] = b"BOOKMOBI"
    struct.pack_into(">H", header, 76, len(records))

    table = b""
    offset = 78 + 8 * len(records) + 2
    for i, record in enumerate(records):
        table += struct.pack(">II", offset, i * 2)
        offset += len(record)

    return bytes(header) + table + b"\x00\x00" + b"".join(records)


PAGEBREAK = b"<mbp:pagebreak/>"


def sample_mobi_text() -> tuple[bytes, dict[str, int]]:
    """Kindlegen-style markup with fixed-width filepos links.

    Returns the text and the offsets its links point at.
    """
    head = (
        b"<html><head><guide>"
        b'<reference type="toc" title="Table of Contents" filepos=XTOCXXXXXX />'
        b"</guide></head><body>"
    )
    title_page = b"<p>Alice in Wonderland</p>"
    toc = (
        b"<div><p>Contents</p>"
        b"<p><a filepos=XCH1XXXXXX>Chapter One</a></p>"
        b"<blockquote><p><a filepos=XS11XXXXXX>Section 1.1</a></p>"
        b"<p><a filepos=XS12XXXXXX>Section 1.2</a></p></blockquote>"
        b"<p><a filepos=XCH2XXXXXX>Chapter Two</a></p>"
        b"<p><a filepos=9999999999>Lost</a></p>"
        b"</div>"
    )
    chapter_one = (
        b"<h1>Chapter One</h1>"
        b'<p id="s11">Section 1.1 text <img recindex="00001" /></p>'
        b"<p>S12 starts here</p><p>Section 1.2 text</p>"
    )
    chapter_two = b"<h1>Chapter Two</h1><p>Back to <a filepos=XTOCXXXXXX>contents</a>.</p>"
    text = (
        head + title_page + PAGEBREAK + toc + PAGEBREAK + chapter_one
        + PAGEBREAK + chapter_two + b"</body></html>"
    )

    first_break = text.index(PAGEBREAK)
    second_break = text.index(PAGEBREAK, first_break + 1)
    third_break = text.index(PAGEBREAK, second_break + 1)
    targets = {
        "TOC": first_break,
        "CH1": second_break,
        "S11": text.index(b'<p id="s11">'),
        "S12": text.index(b"<p>S12 starts"),
        "CH2": third_break,
    }
    for key, position in targets.items():
        placeholder = f"X{key}".encode("ascii").ljust(10, b"X")
        text = text.replace(placeholder, b"%010d" % position)
    return text, targets


SAMPLE_EXTH = {
    100: [b"Lewis Carroll"],
    101: [b"Macmillan"],
    104: [b"9780000000000"],
    106: [b"1865-11-26"],
    201: [struct.pack(">I", 0)],
    503: [b"Alice's Adventures in Wonderland"],
    524: [b"en"],
}


@pytest.fixture
def mobi_text() -> tuple[bytes, dict[str, int]]:
    return sample_mobi_text()


@pytest.fixture
def sample_mobi(tmp_path: Path, mobi_text) -> Path:
    text, _ = mobi_text
    path = tmp_path / "alice.mobi"
    path.write_bytes(build_mobi(text, resources=[PNG_BYTES], exth=SAMPLE_EXTH, record_size=256))
    return path
