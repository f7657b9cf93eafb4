"""Decompression of MOBI text records.

Text records are compressed with either PalmDOC LZ77 (type 2) or HUFF/CDIC
(type 17480, ``b"DH"``). Records may also carry trailing entries that have to
be removed before decompressing.
"""

import struct

NO_COMPRESSION = 1
PALMDOC = 2
HUFF_CDIC = 17480


def palmdoc_decompress(data: bytes) -> bytes:
    """Expand a PalmDOC LZ77 compressed record."""
    output = bytearray()
    i = 0
    length = len(data)

    while i < length:
        byte = data[i]
        i += 1

        if 0x01 <= byte <= 0x08:
            # Literal run of the next ``byte`` bytes
            output += data[i:i + byte]
            i += byte
        elif byte <= 0x7F:
            output.append(byte)
        elif byte >= 0xC0:
            # Space followed by a character
            output.append(0x20)
            output.append(byte ^ 0x80)
        else:
            if i >= length:
                break
            pair = (byte << 8) | data[i]
            i += 1
            distance = (pair >> 3) & 0x07FF
            count = (pair & 0x0007) + 3
            if distance == 0 or distance > len(output):
                continue
            for _ in range(count):
                output.append(output[-distance])

    return bytes(output)


def _var_length_from_end(data: bytes) -> int:
    value = 0
    for byte in data[-4:]:
        if byte & 0x80:
            value = 0
        value = (value << 7) | (byte & 0x7F)
    return value


def strip_trailing_entries(data: bytes, flags: int) -> bytes:
    """Remove the extra data appended to a text record.

    Each bit of ``flags`` above bit 0 announces one trailing entry whose size
    is stored backwards at the end of the record; bit 0 announces multibyte
    overlap bytes.
    """
    for _ in range(bin(flags >> 1).count("1")):
        size = _var_length_from_end(data)
        if size <= 0 or size > len(data):
            break
        data = data[:-size]
    if flags & 1 and data:
        data = data[:-((data[-1] & 0x03) + 1)]
    return data


class HuffCdicReader:
    """Decoder for HUFF/CDIC compressed text records."""

    def __init__(self, huff: bytes, cdics: list[bytes]):
        if huff[:4] != b"HUFF":
            raise ValueError("Invalid HUFF record")
        table1_offset, table2_offset = struct.unpack_from(">LL", huff, 8)

        self.dict1 = []
        for value in struct.unpack_from(">256L", huff, table1_offset):
            code_length, terminal, max_code = value & 0x1F, value & 0x80, value >> 8
            if code_length == 0:
                raise ValueError("Invalid HUFF code length")
            max_code = ((max_code + 1) << (32 - code_length)) - 1
            self.dict1.append((code_length, terminal, max_code))

        table2 = struct.unpack_from(">64L", huff, table2_offset)
        self.min_codes = [0]
        self.max_codes = [0xFFFFFFFF]
        for code_length in range(1, 33):
            low, high = table2[(code_length - 1) * 2], table2[(code_length - 1) * 2 + 1]
            self.min_codes.append(low << (32 - code_length))
            self.max_codes.append(((high + 1) << (32 - code_length)) - 1)

        self.dictionary: list[tuple[bytes, bool] | None] = []
        for cdic in cdics:
            self._load_cdic(cdic)

    def _load_cdic(self, cdic: bytes) -> None:
        if cdic[:4] != b"CDIC":
            raise ValueError("Invalid CDIC record")
        header_length, phrases, bits = struct.unpack_from(">LLL", cdic, 4)
        count = min(1 << bits, phrases - len(self.dictionary))
        for offset in struct.unpack_from(f">{count}H", cdic, header_length):
            (entry,) = struct.unpack_from(">H", cdic, header_length + offset)
            start = header_length + offset + 2
            self.dictionary.append((cdic[start:start + (entry & 0x7FFF)], bool(entry & 0x8000)))

    def unpack(self, data: bytes) -> bytes:
        bits_left = len(data) * 8
        data = data + b"\x00" * 8
        pos = 0
        (x,) = struct.unpack_from(">Q", data, pos)
        n = 32
        output = []

        while True:
            if n <= 0:
                pos += 4
                (x,) = struct.unpack_from(">Q", data, pos)
                n += 32
            code = (x >> n) & 0xFFFFFFFF

            code_length, terminal, max_code = self.dict1[code >> 24]
            if not terminal:
                while code < self.min_codes[code_length]:
                    code_length += 1
                max_code = self.max_codes[code_length]

            n -= code_length
            bits_left -= code_length
            if bits_left < 0:
                break

            index = (max_code - code) >> (32 - code_length)
            phrase, expanded = self.dictionary[index]
            if not expanded:
                # Phrases may themselves be compressed, expand them once
                self.dictionary[index] = None
                phrase = self.unpack(phrase)
                self.dictionary[index] = (phrase, True)
            output.append(phrase)

        return b"".join(output)
