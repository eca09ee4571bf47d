from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field


@dataclass
class Chunk:
    """A bounded slice of an object, tagged with its 0-based position."""

    index: int
    payload: bytes = field(repr=False)
    source_name: str

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass
class FilePart:
    """One downloaded attachment, alive only until reassembly."""

    index: int
    content: bytes = field(repr=False)
    raw_file_name: str


@dataclass
class FileModel:
    file_name: str
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)
