"""Destinations for materialized resources.

A store turns raw resource bytes into a location a reader can dereference:
a file path when a file system is available, an opaque ``blob:`` token when
it is not.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from contextlib import suppress
from pathlib import Path

from bookreader.cache.models import Resource
from bookreader.models.options import ReaderOptions

log = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w.@-]")


class ResourceStore(ABC):
    """Abstract destination for materialized resources."""

    @abstractmethod
    def save(self, resource: Resource, namespace: str) -> str:
        """Persist or register the resource and return its location."""
        pass

    @abstractmethod
    def release(self, location: str) -> None:
        """Release a location previously returned by ``save``."""
        pass


class FileResourceStore(ResourceStore):
    """Write resources under a directory and hand out absolute paths."""

    def __init__(self, directory: Path):
        self.directory = Path(directory).resolve()

    def save(self, resource: Resource, namespace: str) -> str:
        target_dir = self.directory / safe_name(namespace) if namespace else self.directory
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / safe_name(resource.name)
        path.write_bytes(resource.data)
        log.debug("Wrote %s (%d bytes)", path, len(resource.data))
        return str(path)

    def release(self, location: str) -> None:
        path = Path(location)
        path.unlink(missing_ok=True)
        # Drop the per-book directory once its last file is gone
        if path.parent != self.directory:
            with suppress(OSError):
                path.parent.rmdir()


class MemoryResourceStore(ResourceStore):
    """Keep resources in memory behind ``blob:`` tokens."""

    SCHEME = "blob:bookreader/"

    def __init__(self) -> None:
        self._blobs: dict[str, Resource] = {}

    def save(self, resource: Resource, namespace: str) -> str:
        token = f"{self.SCHEME}{uuid.uuid4()}"
        self._blobs[token] = resource
        return token

    def release(self, location: str) -> None:
        self._blobs.pop(location, None)

    def read(self, location: str) -> bytes:
        """Return the bytes registered under a token."""
        return self._blobs[location].data

    def media_type(self, location: str) -> str:
        return self._blobs[location].media_type

    def __contains__(self, location: str) -> bool:
        return location in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


def safe_name(name: str) -> str:
    """Make a resource or book name usable as a single path component."""
    cleaned = _UNSAFE_CHARS.sub("_", name.replace("/", "@")).strip(".")
    return cleaned or "resource"


def create_store(options: ReaderOptions) -> ResourceStore:
    """Build the store selected by the reader options."""
    if options.storage == "memory":
        return MemoryResourceStore()
    return FileResourceStore(options.resource_dir)
