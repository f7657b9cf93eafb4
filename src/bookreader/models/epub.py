"""Data models for EPUB package structure."""

from pydantic import BaseModel, Field


class ManifestItem(BaseModel):
    """Resource declared in the package manifest."""

    id: str
    href: str
    media_type: str = ""
    properties: str = ""
    media_overlay: str = ""


class SpineItem(BaseModel):
    """Manifest item placed in the reading order."""

    id: str
    href: str
    media_type: str = ""
    media_overlay: str = ""
    properties: str = ""
    linear: str = "yes"


class Collection(BaseModel):
    """EPUB 3 collection grouping related resources."""

    role: str
    links: list[str] = Field(default_factory=list)
    collections: list["Collection"] = Field(default_factory=list)
