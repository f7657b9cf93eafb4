"""PalmDB container and MOBI record 0 headers."""

import logging
import struct

from bookreader.errors import MalformedStructureError, MissingEntryError
from bookreader.models.mobi import MobiHeader

log = logging.getLogger(__name__)

PALMDB_HEADER_LENGTH = 78
MOBI_TYPES = (b"BOOKMOBI", b"TEXtREAd")
NULL_INDEX = 0xFFFFFFFF

ENCODINGS = {65001: "utf-8", 1252: "cp1252"}

# (name, offset in record 0, struct format)
MOBI_HEADER_FIELDS = (
    ("header_length", 20, ">I"),
    ("mobi_type", 24, ">I"),
    ("encoding", 28, ">I"),
    ("full_name_offset", 84, ">I"),
    ("full_name_length", 88, ">I"),
    ("locale", 92, ">I"),
    ("first_resource_record", 108, ">I"),
    ("huff_record", 112, ">I"),
    ("huff_record_count", 116, ">I"),
    ("exth_flags", 128, ">I"),
)

# Offset of the extra record data flags, present for headers of 0xE4+ bytes
EXTRA_FLAGS_OFFSET = 0xF2


class PalmDatabase:
    """Records of a PalmDB file, addressed by index."""

    def __init__(self, data: bytes, source: str = ""):
        self.data = data
        self.source = source or "<bytes>"
        if len(data) < PALMDB_HEADER_LENGTH:
            raise MalformedStructureError(f"{self.source} is too short for a PalmDB header")

        self.name = data[:32].split(b"\x00")[0].decode("latin-1")
        self.type = data[60:64].decode("latin-1")
        self.creator = data[64:68].decode("latin-1")
        (self.record_count,) = struct.unpack_from(">H", data, 76)

        table_end = PALMDB_HEADER_LENGTH + self.record_count * 8
        if self.record_count == 0 or len(data) < table_end:
            raise MalformedStructureError(f"{self.source} has a truncated record list")

        self.offsets = [
            struct.unpack_from(">I", data, PALMDB_HEADER_LENGTH + i * 8)[0]
            for i in range(self.record_count)
        ]
        if any(b < a for a, b in zip(self.offsets, self.offsets[1:])) or self.offsets[-1] > len(data):
            raise MalformedStructureError(f"{self.source} has inconsistent record offsets")

    def record(self, index: int) -> bytes:
        if not 0 <= index < self.record_count:
            raise MissingEntryError(f"record {index}", self.source)
        start = self.offsets[index]
        end = self.offsets[index + 1] if index + 1 < self.record_count else len(self.data)
        return self.data[start:end]


def parse_exth(record0: bytes, offset: int) -> dict[int, list[bytes]]:
    """Read EXTH records as raw values grouped by record type."""
    exth: dict[int, list[bytes]] = {}
    if record0[offset:offset + 4] != b"EXTH":
        return exth
    (count,) = struct.unpack_from(">I", record0, offset + 8)
    pos = offset + 12
    for _ in range(count):
        if pos + 8 > len(record0):
            log.debug("EXTH block ends early")
            break
        record_type, length = struct.unpack_from(">II", record0, pos)
        if length < 8:
            break
        exth.setdefault(record_type, []).append(record0[pos + 8:pos + length])
        pos += length
    return exth


def parse_mobi_header(db: PalmDatabase) -> MobiHeader:
    """Read the PalmDOC, MOBI and EXTH headers stored in record 0."""
    if db.data[60:68] not in MOBI_TYPES:
        raise MalformedStructureError(f"{db.source} is not a MOBI file ({db.type}{db.creator})")

    record0 = db.record(0)
    if len(record0) < 16:
        raise MalformedStructureError(f"{db.source} has a truncated PalmDOC header")

    compression, text_length, num_text_records, record_size, encryption = struct.unpack_from(
        ">H2xIHHH", record0, 0
    )
    header = MobiHeader(
        name=db.name,
        type=db.type,
        creator=db.creator,
        compression=compression,
        text_length=text_length,
        num_text_records=num_text_records,
        record_size=record_size,
        encryption=encryption,
        full_name=db.name,
    )
    if encryption != 0:
        raise MalformedStructureError(f"{db.source} is encrypted (scheme {encryption})")

    if record0[16:20] != b"MOBI":
        # Plain PalmDOC book
        return header

    fields: dict[str, int] = {}
    for name, offset, fmt in MOBI_HEADER_FIELDS:
        if offset + struct.calcsize(fmt) <= len(record0):
            (fields[name],) = struct.unpack_from(fmt, record0, offset)

    header_length = fields.get("header_length", 0)
    header.encoding = ENCODINGS.get(fields.get("encoding", 1252), "cp1252")
    header.locale = fields.get("locale", 0)

    first_resource = fields.get("first_resource_record", NULL_INDEX)
    if first_resource != NULL_INDEX and first_resource < db.record_count:
        header.first_resource_record = first_resource

    huff_record = fields.get("huff_record", NULL_INDEX)
    if huff_record != NULL_INDEX and huff_record:
        header.huff_record = huff_record
        header.huff_record_count = fields.get("huff_record_count", 0)

    start = fields.get("full_name_offset", 0)
    end = start + fields.get("full_name_length", 0)
    if start and end <= len(record0):
        header.full_name = record0[start:end].decode(header.encoding, errors="replace")

    if header_length >= 0xE4 and EXTRA_FLAGS_OFFSET + 2 <= len(record0):
        (header.trailing_flags,) = struct.unpack_from(">H", record0, EXTRA_FLAGS_OFFSET)

    if fields.get("exth_flags", 0) & 0x40:
        header.exth = parse_exth(record0, 16 + header_length)

    return header
