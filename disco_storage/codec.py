"""Chunk codec: split objects into parts and stitch them back together.

Parts are named ``<base name>.part<N>`` with a 1-based ``N`` so that an
attachment listing in the channel reads naturally; the chunk index used for
ordering stays 0-based.
"""

from __future__ import annotations

import re
from typing import Iterable
from typing import List
from typing import Optional

from disco_storage.models import Chunk
from disco_storage.models import FilePart


_PART_SUFFIX = re.compile(r"\.part(\d+)$")


def split(data: bytes, max_chunk_size: int, base_name: str = "") -> List[Chunk]:
    """Split ``data`` into ``ceil(len(data) / max_chunk_size)`` ordered chunks.

    Empty input yields no chunks; callers decide how an empty object is stored.
    """
    if max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")

    view = memoryview(data)
    chunks: List[Chunk] = []
    for index, offset in enumerate(range(0, len(view), max_chunk_size)):
        chunks.append(
            Chunk(
                index=index,
                payload=bytes(view[offset : offset + max_chunk_size]),
                source_name=name_for(base_name, index),
            )
        )
    view.release()
    return chunks


def name_for(base_name: str, index: int) -> str:
    if index < 0:
        raise ValueError(f"chunk index must be >= 0, got {index}")
    return f"{base_name}.part{index + 1}"


def original_name_from(part_name: str) -> str:
    """Strip a trailing ``.part<digits>``; fall back to ``part_name`` if nothing is left."""
    original = _PART_SUFFIX.sub("", part_name)
    if not original:
        return part_name
    return original


def part_number_from(part_name: str) -> Optional[int]:
    """Return the 1-based part number encoded in ``part_name``, if any."""
    match = _PART_SUFFIX.search(part_name)
    if match is None:
        return None
    return int(match.group(1))


def reassemble(parts: Iterable[FilePart]) -> bytes:
    """Concatenate parts in index order.

    Gaps are not detected here; the caller must already know the set is complete.
    """
    ordered = sorted(parts, key=lambda p: p.index)
    return b"".join(p.content for p in ordered)
