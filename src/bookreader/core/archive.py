"""Zip container access with case-insensitive entry names."""

import io
import zipfile
from pathlib import Path
from typing import BinaryIO

from bookreader.errors import MalformedStructureError, MissingEntryError


class ZipArchive:
    """Read entries of a zip container by name.

    Entry lookup ignores case because EPUB producers disagree on the case of
    ``META-INF/container.xml`` and friends.
    """

    def __init__(self, source: Path | str | bytes | BinaryIO):
        if isinstance(source, bytes):
            self.source = "<bytes>"
            fileobj: Path | str | BinaryIO = io.BytesIO(source)
        elif isinstance(source, (str, Path)):
            self.source = str(source)
            fileobj = source
        else:
            self.source = getattr(source, "name", "<stream>")
            fileobj = source

        try:
            self._zip = zipfile.ZipFile(fileobj)
        except zipfile.BadZipFile as e:
            raise MalformedStructureError(f"{self.source} is not a zip archive: {e}")

        self._names = {name.lower(): name for name in self._zip.namelist()}

    def names(self) -> list[str]:
        """Entry names in archive order."""
        return list(self._names.values())

    def has(self, name: str) -> bool:
        return name.lower() in self._names

    def read_bytes(self, name: str) -> bytes:
        real_name = self._names.get(name.lower())
        if real_name is None:
            raise MissingEntryError(name, self.source)
        return self._zip.read(real_name)

    def read_text(self, name: str, encoding: str = "utf-8") -> str:
        data = self.read_bytes(name)
        if data.startswith(b"\xef\xbb\xbf"):
            data = data[3:]
        return data.decode(encoding, errors="replace")

    def close(self) -> None:
        self._zip.close()
