"""Data models for MOBI structure."""

from pydantic import BaseModel, Field


class MobiChapter(BaseModel):
    """Slice of the reconstructed text stream between two page breaks.

    ``start``/``end`` bound the chapter in the stream (marker included) and
    ranges of consecutive chapters touch. ``offset``/``size`` locate the
    trimmed ``text`` inside the same stream.
    """

    id: int
    text: str
    start: int
    end: int
    size: int
    offset: int = 0


class MobiHeader(BaseModel):
    """Fields of record 0 needed to read the text and resources."""

    name: str = ""
    type: str = ""
    creator: str = ""
    compression: int = 1
    text_length: int = 0
    num_text_records: int = 0
    record_size: int = 4096
    encryption: int = 0
    encoding: str = "cp1252"
    first_resource_record: int | None = None
    huff_record: int | None = None
    huff_record_count: int = 0
    full_name: str = ""
    locale: int = 0
    trailing_flags: int = 0
    exth: dict[int, list[bytes]] = Field(default_factory=dict)
