from __future__ import annotations

import struct

import pytest

from bookreader.core.mobi_parser import (
    exth_offset,
    find_chapter,
    parse_filepos,
    parse_metadata,
    parse_references,
    parse_toc,
    quote_filepos,
    read_text_stream,
    scan_filepos,
    scan_markers,
    split_chapters,
)
from bookreader.core.palmdb import PalmDatabase, parse_mobi_header
from bookreader.errors import MalformedStructureError
from bookreader.models.mobi import MobiChapter, MobiHeader
from conftest import NULL, build_mobi


def _chapters(*bounds: tuple[int, int]) -> list[MobiChapter]:
    return [
        MobiChapter(id=i, text="", start=start, end=end, size=end - start, offset=start)
        for i, (start, end) in enumerate(bounds)
    ]


def test_scan_markers():
    stream = b"a<mbp:pagebreak/>b<MBP:PageBreak >c<mbp:pagebreakx>d<mbp:pagebreak"
    first = stream.index(b"<mbp:pagebreak/>")
    second = stream.index(b"<MBP:PageBreak >")
    last = stream.rindex(b"<mbp:pagebreak")

    assert scan_markers(stream) == [
        (first, first + 16),
        (second, second + 16),
        # Unterminated marker runs to the end of the stream
        (last, len(stream)),
    ]


def test_scan_markers_without_markers():
    assert scan_markers(b"<p>no breaks here</p>") == []


def test_scan_filepos():
    stream = b'<a filepos=0000000300>x</a><a FILEPOS="12">y</a><a filepos=300>z</a><a filepos=>w</a>'
    assert scan_filepos(stream) == [12, 300]


def test_quote_filepos():
    assert quote_filepos("<a filepos=0012>x</a>") == '<a filepos="0012">x</a>'


def test_split_chapters_is_contiguous(mobi_text):
    text, _ = mobi_text

    chapters, reference_section = split_chapters(text, "utf-8")

    assert [c.id for c in chapters] == [0, 1, 2, 3]
    assert chapters[0].start == 0
    assert chapters[-1].end == len(text)
    for previous, current in zip(chapters, chapters[1:]):
        assert previous.end == current.start
    for chapter in chapters:
        assert chapter.start <= chapter.offset
        assert chapter.offset + chapter.size <= chapter.end
        assert text[chapter.offset:chapter.offset + chapter.size].decode("utf-8") == chapter.text


def test_split_chapters_trims_body(mobi_text):
    text, _ = mobi_text

    chapters, reference_section = split_chapters(text, "utf-8")

    assert chapters[0].text == "<p>Alice in Wonderland</p>"
    assert chapters[-1].text.endswith("</a>.</p>")
    assert "</body>" not in chapters[-1].text
    assert reference_section.startswith("<html><head><guide>")
    assert reference_section.endswith("</head>")


def test_split_chapters_without_markers_or_body():
    chapters, reference_section = split_chapters(b"<p>a</p><mbp:pagebreak/><p>b</p>", "utf-8")

    assert [c.text for c in chapters] == ["<p>a</p>", "<p>b</p>"]
    assert reference_section == ""

    chapters, _ = split_chapters(b"<html><body class='x'><p>Only</p></body></html>", "utf-8")
    assert len(chapters) == 1
    assert chapters[0].text == "<p>Only</p>"


def test_find_chapter():
    chapters = _chapters((0, 10), (10, 20))

    assert find_chapter(chapters, 0).id == 0
    assert find_chapter(chapters, 10).id == 1
    assert find_chapter(chapters, 19).id == 1
    assert find_chapter(chapters, 20) is None


@pytest.mark.parametrize(
    ("href", "expected"),
    [
        ("filepos:123", 123),
        ("filepos:0000000456", 456),
        ("book#filepos:12abc", 12),
        ("filepos:", None),
        ("chapter.html#intro", None),
    ],
)
def test_parse_filepos(href, expected):
    assert parse_filepos(href) == expected


def test_parse_references():
    guide = parse_references(
        '<guide><reference type="toc" title="Table of Contents" filepos=00012 />'
        '<reference type="text" filepos="x" /></guide>'
    )

    assert len(guide) == 1
    assert guide[0].type == "toc"
    assert guide[0].title == "Table of Contents"
    assert guide[0].href == "filepos:12"
    assert parse_references("") == []


def test_parse_toc_from_nested_lists():
    markup = (
        "<ul><li><a filepos=10>A</a><ul><li><a filepos=20>A.1</a></li></ul></li>"
        "<li><a filepos=30>B</a></li></ul>"
    )

    toc = parse_toc(markup, _chapters((0, 15), (15, 40)))

    assert [item.label for item in toc] == ["A", "B"]
    assert [item.id for item in toc] == [0, 1]
    assert toc[0].children[0].label == "A.1"
    assert toc[0].children[0].href == "filepos:20"
    assert toc[1].children == []


def test_parse_toc_sibling_blockquote_holds_children():
    markup = (
        "<p><a filepos=1>Part</a></p>"
        "<blockquote><p><font size=2><a filepos=2>Chapter</a></font></p></blockquote>"
        "<p><a filepos=3>Appendix</a></p>"
    )

    toc = parse_toc(markup, _chapters((0, 100)))

    assert [item.label for item in toc] == ["Part", "Appendix"]
    assert [child.label for child in toc[0].children] == ["Chapter"]


def test_parse_toc_lifts_children_of_unresolvable_entries():
    markup = (
        "<p><a filepos=999>Lost</a></p>"
        "<blockquote><p><a filepos=10>Child</a></p></blockquote>"
    )

    toc = parse_toc(markup, _chapters((0, 50)))

    assert [item.label for item in toc] == ["Child"]


def test_parse_metadata_from_exth():
    header = MobiHeader(
        encoding="utf-8",
        full_name="Full Name",
        exth={
            503: [b"Title"],
            100: [b"First", b"Second"],
            101: [b"Publisher"],
            104: [b"isbn-1"],
            113: [b"B000ASIN"],
            105: [b"Fiction"],
            524: [b"de"],
        },
    )

    metadata = parse_metadata(header)

    assert metadata.title == "Title"
    assert [c.name for c in metadata.creator] == ["First", "Second"]
    assert metadata.publisher == "Publisher"
    assert metadata.language == "de"
    assert [s.value for s in metadata.subject] == ["Fiction"]
    assert [(i.scheme, i.id) for i in metadata.identifiers] == [("ISBN", "isbn-1"), ("ASIN", "B000ASIN")]
    assert metadata.package_identifier.id == "isbn-1"


def test_parse_metadata_falls_back_to_header():
    metadata = parse_metadata(MobiHeader(full_name="Full Name", locale=0x0C))

    assert metadata.title == "Full Name"
    assert metadata.language == "fr"


def test_exth_offset():
    header = MobiHeader(exth={201: [struct.pack(">I", 3)], 202: [struct.pack(">I", NULL)]})

    assert exth_offset(header, 201) == 3
    assert exth_offset(header, 202) is None
    assert exth_offset(header, 203) is None


def test_read_text_stream_handles_compression_and_trailing_entries():
    text = b"<html><body>" + "Curiouser and curiouser! ".encode("utf-8") * 20 + b"</body></html>"
    db = PalmDatabase(
        build_mobi(text, compression=2, record_size=64, trailing=b"\xaa\xbb\x83", trailing_flags=0b10)
    )

    assert read_text_stream(db, parse_mobi_header(db)) == text


def test_read_text_stream_unknown_compression():
    db = PalmDatabase(build_mobi(b"text", compression=3))

    with pytest.raises(MalformedStructureError):
        read_text_stream(db, parse_mobi_header(db))
