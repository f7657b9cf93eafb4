"""Reader configuration."""

from pathlib import Path
from typing import ClassVar, Literal

from pydantic import BaseModel


class ReaderOptions(BaseModel):
    """Options shared by every backend.

    ``storage`` selects where materialized resources live: ``"file"`` writes
    them under ``resource_dir`` and hands out absolute paths, ``"memory"``
    keeps them in process and hands out ``blob:`` tokens.
    """

    RESOURCE_DIR: ClassVar[str] = "images"

    storage: Literal["file", "memory"] = "file"
    resource_dir: Path = Path(RESOURCE_DIR)
    # Subdirectory used for one book's files, defaults to the file stem
    namespace: str | None = None
