from datetime import datetime, timedelta, timezone

import pytest

from snippetstore.exceptions import (
    AlreadyExistsError,
    BlobNotFoundError,
    InvalidCursorError,
    RecordNotFoundError,
    VersionMismatchError,
)
from snippetstore.snippet import STATUS_ACTIVE, STATUS_DELETING, SnippetRecord
from snippetstore.storage.memory import MemoryBlobStore, MemoryMetadataStore, MemoryRetiredBlobQueue

_BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(snippet_id: str, *, owner_id: str = "u1", offset: int = 0, status: str = STATUS_ACTIVE) -> SnippetRecord:
    created_at = _BASE_TIME + timedelta(seconds=offset)
    return SnippetRecord(
        id=snippet_id,
        owner_id=owner_id,
        title=f"title {snippet_id}",
        content_key=f"snippets/owner/{snippet_id}/nonce",
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.mark.asyncio
async def test_insert_rejects_duplicate_ids():
    store = MemoryMetadataStore()
    await store.insert(_record("a"))

    with pytest.raises(AlreadyExistsError):
        await store.insert(_record("a"))


@pytest.mark.asyncio
async def test_get_returns_copies():
    store = MemoryMetadataStore()
    await store.insert(_record("a"))

    fetched = await store.get("a")
    fetched.tags.append("mutated")
    fetched.title = "mutated"

    again = await store.get("a")
    assert again.title == "title a"
    assert again.tags == []


@pytest.mark.asyncio
async def test_conditional_update_bumps_version_and_checks_expected():
    store = MemoryMetadataStore()
    await store.insert(_record("a"))

    updated = await store.conditional_update("a", 1, {"title": "new", "tags": ("x",)})
    assert updated.version == 2
    assert updated.title == "new"
    assert updated.tags == ["x"]

    with pytest.raises(VersionMismatchError) as exc_info:
        await store.conditional_update("a", 1, {"title": "stale"})
    assert exc_info.value.actual == 2

    with pytest.raises(RecordNotFoundError):
        await store.conditional_update("missing", 1, {"title": "x"})


@pytest.mark.asyncio
async def test_conditional_update_rejects_store_owned_fields():
    store = MemoryMetadataStore()
    await store.insert(_record("a"))

    with pytest.raises(ValueError):
        await store.conditional_update("a", 1, {"owner_id": "u2"})
    with pytest.raises(ValueError):
        await store.conditional_update("a", 1, {"status": "ARCHIVED"})
    assert (await store.get("a")).version == 1


@pytest.mark.asyncio
async def test_list_by_owner_orders_by_creation_then_id_and_resumes():
    store = MemoryMetadataStore()
    for snippet_id, offset in (("c", 0), ("a", 0), ("b", 1), ("d", 2)):
        await store.insert(_record(snippet_id, offset=offset))
    await store.insert(_record("z", owner_id="u2"))

    seen = []
    cursor = None
    while True:
        page = await store.list_by_owner("u1", cursor, limit=2)
        seen.extend(record.id for record in page.records)
        cursor = page.next_cursor
        if cursor is None:
            break

    assert seen == ["a", "c", "b", "d"]


@pytest.mark.asyncio
async def test_scan_by_status_follows_status_changes():
    store = MemoryMetadataStore()
    await store.insert(_record("a"))
    await store.insert(_record("b", offset=1))
    await store.conditional_update("b", 1, {"status": STATUS_DELETING})

    deleting = await store.scan_by_status(STATUS_DELETING, limit=10)
    active = await store.scan_by_status(STATUS_ACTIVE, limit=10)

    assert [record.id for record in deleting.records] == ["b"]
    assert [record.id for record in active.records] == ["a"]
    assert deleting.next_cursor is None


@pytest.mark.asyncio
async def test_scan_rejects_bad_cursor_and_limit():
    store = MemoryMetadataStore()

    with pytest.raises(InvalidCursorError):
        await store.scan_by_status(STATUS_ACTIVE, "%%%", limit=1)
    with pytest.raises(ValueError):
        await store.scan_by_status(STATUS_ACTIVE, limit=0)


@pytest.mark.asyncio
async def test_blob_store_operations_are_idempotent():
    store = MemoryBlobStore(clock=lambda: _BASE_TIME)

    await store.put("k", b"data")
    await store.put("k", b"data")
    assert await store.get("k") == b"data"

    await store.delete("k")
    with pytest.raises(BlobNotFoundError):
        await store.delete("k")
    with pytest.raises(BlobNotFoundError):
        await store.get("k")


@pytest.mark.asyncio
async def test_blob_store_lists_write_times():
    store = MemoryBlobStore(clock=lambda: _BASE_TIME)
    await store.put("k1", b"1")
    await store.put("k2", b"2")

    infos = [info async for info in store.iter_blobs()]

    assert sorted(info.key for info in infos) == ["k1", "k2"]
    assert all(info.last_modified == _BASE_TIME for info in infos)


@pytest.mark.asyncio
async def test_retired_queue_pops_in_batches_fifo():
    queue = MemoryRetiredBlobQueue()
    for key in ("a", "b", "c"):
        await queue.push(key)

    assert await queue.pop_batch(2) == ["a", "b"]
    assert await queue.pop_batch(2) == ["c"]
    assert await queue.pop_batch(2) == []
