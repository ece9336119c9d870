from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class StoredFile:
    """A temporary file inside the reserved directory.

    ``mtime`` is the last-modified time observed when this value was produced
    (creation, write or directory scan); the filesystem stays the owner of the
    real timestamp.
    """

    name: str
    directory: Path
    mtime: float
    size: int = 0

    @property
    def path(self) -> Path:
        return self.directory / self.name


type _ScannedFileEntry = tuple[str, float, int]
