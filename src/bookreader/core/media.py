"""Media type helpers for embedded resources."""

import mimetypes

# Leading bytes of the resource formats found in MOBI records
_SIGNATURES: list[tuple[bytes, str]] = [
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"BM", "image/bmp"),
    (b"<svg", "image/svg+xml"),
    (b"<?xml", "image/svg+xml"),
    (b"ID3", "audio/mpeg"),
    (b"\xff\xfb", "audio/mpeg"),
    (b"OggS", "audio/ogg"),
]

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
    "image/webp": ".webp",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "video/mp4": ".mp4",
    "text/css": ".css",
    "font/ttf": ".ttf",
    "font/otf": ".otf",
    "font/woff": ".woff",
    "font/woff2": ".woff2",
    "application/xhtml+xml": ".xhtml",
}


def sniff_media_type(data: bytes) -> str:
    """Guess a media type from the first bytes of a resource."""
    for signature, media_type in _SIGNATURES:
        if data.startswith(signature):
            return media_type
    if data[4:8] == b"ftyp":
        return "video/mp4"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def extension_for(media_type: str) -> str:
    """File extension (with dot) for a media type, empty when unknown."""
    if media_type in _EXTENSIONS:
        return _EXTENSIONS[media_type]
    return mimetypes.guess_extension(media_type) or ""


def media_type_for(path: str) -> str:
    """Media type guessed from a file name."""
    media_type, _ = mimetypes.guess_type(path)
    return media_type or "application/octet-stream"
