import json

import pytest

from disco_storage.metadata.catalog import CatalogConflictError
from disco_storage.metadata.catalog import InMemoryCatalog
from disco_storage.metadata.catalog import JsonFileCatalog


@pytest.mark.asyncio
async def test_in_memory_catalog_lifecycle(catalog: InMemoryCatalog):
    assert await catalog.resolve_message_ids("obj-1") is None

    entry = await catalog.persist_message_ids("obj-1", "a.txt", 12, [5002, 5000, 5001])

    assert entry.message_ids == [5002, 5000, 5001]
    assert await catalog.resolve_message_ids("obj-1") == [5002, 5000, 5001]
    assert await catalog.remove_object("obj-1")
    assert not await catalog.remove_object("obj-1")


@pytest.mark.asyncio
async def test_persist_rejects_duplicate_object(catalog):
    await catalog.persist_message_ids("obj-1", "a.txt", 1, [1])

    with pytest.raises(CatalogConflictError):
        await catalog.persist_message_ids("obj-1", "b.txt", 1, [2])


@pytest.mark.asyncio
async def test_resolve_returns_a_copy(catalog):
    await catalog.persist_message_ids("obj-1", "a.txt", 1, [1, 2])

    ids = await catalog.resolve_message_ids("obj-1")
    ids.append(3)

    assert await catalog.resolve_message_ids("obj-1") == [1, 2]


@pytest.mark.asyncio
async def test_mark_corrupted(catalog):
    await catalog.persist_message_ids("obj-1", "a.txt", 1, [1])

    assert await catalog.mark_corrupted("obj-1")
    assert not await catalog.mark_corrupted("missing")
    assert (await catalog.get_entry("obj-1")).corrupted


@pytest.mark.asyncio
async def test_list_entries_sorted_by_object_id(catalog):
    await catalog.persist_message_ids("b", "b.txt", 1, [2])
    await catalog.persist_message_ids("a", "a.txt", 1, [1])

    assert [e.object_id for e in await catalog.list_entries()] == ["a", "b"]


@pytest.mark.asyncio
async def test_json_catalog_survives_reload(tmp_path):
    path = tmp_path / "state" / "catalog.json"
    catalog = JsonFileCatalog(path)
    await catalog.persist_message_ids("obj-1", "a.txt", 12, [1313525215837294644, 1313525215837294645])
    await catalog.persist_message_ids("obj-2", "b.txt", 3, [7])
    await catalog.mark_corrupted("obj-2")

    reloaded = JsonFileCatalog(path)

    assert await reloaded.resolve_message_ids("obj-1") == [1313525215837294644, 1313525215837294645]
    assert (await reloaded.get_entry("obj-2")).corrupted
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["version"] == 1
    assert not path.with_suffix(".json.tmp").exists()


@pytest.mark.asyncio
async def test_json_catalog_remove_is_persisted(tmp_path):
    path = tmp_path / "catalog.json"
    catalog = JsonFileCatalog(path)
    await catalog.persist_message_ids("obj-1", "a.txt", 1, [1])

    await catalog.remove_object("obj-1")

    assert await JsonFileCatalog(path).list_entries() == []


def test_json_catalog_starts_empty_without_file(tmp_path):
    catalog = JsonFileCatalog(tmp_path / "nope.json")

    assert not catalog.path.exists()
