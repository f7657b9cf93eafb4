"""Cache data models."""

from pydantic import BaseModel


class Resource(BaseModel):
    """Raw bytes of an embedded resource before materialization."""

    data: bytes
    media_type: str = "application/octet-stream"
    name: str  # file name used when the resource is written to disk


class CachedResource(BaseModel):
    """Materialized resource and the location handed out for it."""

    key: str
    location: str
    media_type: str = ""
