"""Metadata catalog contract and two small implementations.

The storage engine does not own object metadata. It only needs to resolve an
object id to its ordered message ids, persist that list for a new object,
forget an object, and flag objects whose deletion stopped half-way.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict
from typing import List
from typing import Optional
from typing import Protocol

from pydantic import BaseModel
from pydantic import Field


logger = logging.getLogger(__name__)


class CatalogConflictError(Exception):
    """An object with this id is already recorded."""


class CatalogEntry(BaseModel):
    object_id: str
    file_name: str
    size_bytes: int
    message_ids: List[int]
    corrupted: bool = False


class CatalogDocument(BaseModel):
    version: int = 1
    entries: Dict[str, CatalogEntry] = Field(default_factory=dict)


class Catalog(Protocol):
    async def resolve_message_ids(self, object_id: str) -> Optional[List[int]]: ...

    async def persist_message_ids(
        self, object_id: str, file_name: str, size_bytes: int, message_ids: List[int]
    ) -> CatalogEntry: ...

    async def remove_object(self, object_id: str) -> bool: ...

    async def mark_corrupted(self, object_id: str) -> bool: ...

    async def list_entries(self) -> List[CatalogEntry]: ...


class InMemoryCatalog:
    def __init__(self) -> None:
        self._doc = CatalogDocument()

    async def resolve_message_ids(self, object_id: str) -> Optional[List[int]]:
        entry = self._doc.entries.get(object_id)
        return list(entry.message_ids) if entry else None

    async def persist_message_ids(
        self, object_id: str, file_name: str, size_bytes: int, message_ids: List[int]
    ) -> CatalogEntry:
        if object_id in self._doc.entries:
            raise CatalogConflictError(f"Object {object_id} already exists")
        entry = CatalogEntry(
            object_id=object_id, file_name=file_name, size_bytes=size_bytes, message_ids=list(message_ids)
        )
        self._doc.entries[object_id] = entry
        return entry

    async def remove_object(self, object_id: str) -> bool:
        return self._doc.entries.pop(object_id, None) is not None

    async def mark_corrupted(self, object_id: str) -> bool:
        entry = self._doc.entries.get(object_id)
        if entry is None:
            return False
        entry.corrupted = True
        logger.warning(f"Marked object {object_id} as corrupted")
        return True

    async def list_entries(self) -> List[CatalogEntry]:
        return sorted(self._doc.entries.values(), key=lambda e: e.object_id)

    async def get_entry(self, object_id: str) -> Optional[CatalogEntry]:
        return self._doc.entries.get(object_id)


class JsonFileCatalog(InMemoryCatalog):
    """Catalog persisted as one JSON document; rewritten atomically after each change."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._lock = asyncio.Lock()
        if self.path.exists():
            self._doc = CatalogDocument.model_validate_json(self.path.read_text(encoding="utf-8"))
            logger.debug(f"Loaded {len(self._doc.entries)} catalog entries from {self.path}")

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(self._doc.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(self.path)

    async def persist_message_ids(
        self, object_id: str, file_name: str, size_bytes: int, message_ids: List[int]
    ) -> CatalogEntry:
        async with self._lock:
            entry = await super().persist_message_ids(object_id, file_name, size_bytes, message_ids)
            self._flush()
            return entry

    async def remove_object(self, object_id: str) -> bool:
        async with self._lock:
            removed = await super().remove_object(object_id)
            if removed:
                self._flush()
            return removed

    async def mark_corrupted(self, object_id: str) -> bool:
        async with self._lock:
            marked = await super().mark_corrupted(object_id)
            if marked:
                self._flush()
            return marked
