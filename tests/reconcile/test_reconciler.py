import asyncio
from datetime import timedelta

import pytest

from snippetstore.exceptions import StoreUnavailableError
from snippetstore.reconcile import Reconciler
from snippetstore.snippet import STATUS_ACTIVE, STATUS_DELETING, STATUS_TOMBSTONED
from snippetstore.snippet.keys import new_content_key
from snippetstore.storage.memory import MemoryBlobStore, MemoryMetadataStore


class _FlakyDeleteBlobStore(MemoryBlobStore):
    def __init__(self, *, clock):
        super().__init__(clock=clock)
        self.fail_deletes = 0
        self.delete_attempts = 0

    async def delete(self, key):
        self.delete_attempts += 1
        if self.fail_deletes > 0:
            self.fail_deletes -= 1
            raise StoreUnavailableError("blob store unavailable")
        await super().delete(key)


class _YieldingBlobStore(_FlakyDeleteBlobStore):
    async def delete(self, key):
        await asyncio.sleep(0)
        await super().delete(key)


class _YieldingMetadataStore(MemoryMetadataStore):
    async def conditional_update(self, snippet_id, expected_version, changes):
        await asyncio.sleep(0)
        return await super().conditional_update(snippet_id, expected_version, changes)


async def _stuck_in_deleting(repository, blobs, count=1):
    snippet_ids = []
    for index in range(count):
        snippet = await repository.create("u1", f"s{index}", b"body")
        blobs.fail_deletes = 1
        await repository.delete(snippet.id, 1)
        snippet_ids.append(snippet.id)
    return snippet_ids


@pytest.mark.asyncio
async def test_stuck_delete_converges_once_fault_clears(
    build_repository, build_reconciler, metadata_store, clock
):
    blobs = _FlakyDeleteBlobStore(clock=clock)
    repository = build_repository(blobs=blobs)
    reconciler = build_reconciler(blobs=blobs)
    (snippet_id,) = await _stuck_in_deleting(repository, blobs)

    blobs.fail_deletes = 3
    passes = 0
    while (await metadata_store.get(snippet_id)).status == STATUS_DELETING:
        await reconciler.run_pass()
        passes += 1
        clock.advance(reconciler.config.retry_backoff_max)
        assert passes <= 4

    record = await metadata_store.get(snippet_id)
    assert record.status == STATUS_TOMBSTONED
    assert record.content_key is None
    assert passes == 4


@pytest.mark.asyncio
async def test_failed_delete_is_deferred_until_backoff_elapses(
    build_repository, build_reconciler, metadata_store, clock
):
    blobs = _FlakyDeleteBlobStore(clock=clock)
    repository = build_repository(blobs=blobs)
    reconciler = build_reconciler(blobs=blobs)
    (snippet_id,) = await _stuck_in_deleting(repository, blobs)

    blobs.fail_deletes = 1
    first = await reconciler.run_pass()
    assert len(first.failures) == 1
    assert first.failures[0]["context"] == {"stage": "tombstone", "target": snippet_id}

    attempts = blobs.delete_attempts
    second = await reconciler.run_pass()
    assert second.deferred == 1
    assert blobs.delete_attempts == attempts

    clock.advance(10)
    third = await reconciler.run_pass()
    assert third.tombstoned == 1
    assert third.ok
    assert (await metadata_store.get(snippet_id)).status == STATUS_TOMBSTONED


def test_retry_delay_is_exponential_and_capped(build_reconciler):
    reconciler = build_reconciler(retry_backoff_base=10, retry_backoff_max=80)

    delays = [reconciler.retry_delay(attempt) for attempt in range(1, 7)]

    assert delays == [timedelta(seconds=value) for value in (10, 20, 40, 80, 80, 80)]


@pytest.mark.asyncio
async def test_orphan_sweep_respects_grace_and_references(
    repository, reconciler, blob_store, clock
):
    live = await repository.create("u1", "live", b"keep me")
    orphan_key = new_content_key("u1", "no-such-snippet")
    foreign_key = "uploads/avatar.png"
    await blob_store.put(orphan_key, b"orphan")
    await blob_store.put(foreign_key, b"not ours")

    clock.advance(301)
    young_key = new_content_key("u2", "in-flight")
    await blob_store.put(young_key, b"still being created")

    report = await reconciler.sweep_orphans()

    assert report.orphans_deleted == 1
    assert orphan_key not in blob_store
    assert young_key in blob_store
    assert foreign_key in blob_store
    assert (await repository.read(live.id)).content == b"keep me"


@pytest.mark.asyncio
async def test_orphan_sweep_collects_stale_key_of_updated_snippet(
    repository, reconciler, metadata_store, blob_store, retired_queue, clock
):
    snippet = await repository.create("u1", "hello", b"v1")
    old_key = (await metadata_store.get(snippet.id)).content_key
    await repository.update(snippet.id, 1, content=b"v2")
    # Lose the queued key: the sweep must still find it.
    await retired_queue.pop_batch(10)

    clock.advance(301)
    report = await reconciler.run_pass()

    assert report.orphans_deleted == 1
    assert old_key not in blob_store
    assert (await repository.read(snippet.id)).content == b"v2"


@pytest.mark.asyncio
async def test_drain_requeues_keys_when_blob_store_fails(
    build_repository, build_reconciler, retired_queue, clock
):
    blobs = _FlakyDeleteBlobStore(clock=clock)
    repository = build_repository(blobs=blobs)
    reconciler = build_reconciler(blobs=blobs)
    for index in range(3):
        snippet = await repository.create("u1", f"s{index}", b"v1")
        await repository.update(snippet.id, 1, content=b"v2")
    assert len(retired_queue) == 3

    blobs.fail_deletes = 1
    report = await reconciler.drain_retired_blobs()

    assert report.retired_deleted == 0
    assert len(report.failures) == 1
    assert len(retired_queue) == 3

    report = await reconciler.drain_retired_blobs()
    assert report.retired_deleted == 3
    assert len(retired_queue) == 0
    assert len(blobs) == 3


@pytest.mark.asyncio
async def test_drain_skips_blob_still_referenced(repository, reconciler, metadata_store, retired_queue, blob_store):
    snippet = await repository.create("u1", "hello", b"v1")
    live_key = (await metadata_store.get(snippet.id)).content_key
    await retired_queue.push(live_key)

    report = await reconciler.drain_retired_blobs()

    assert report.retired_deleted == 0
    assert live_key in blob_store


@pytest.mark.asyncio
async def test_overlapping_passes_are_harmless(build_repository, config, clock):
    metadata = _YieldingMetadataStore()
    blobs = _YieldingBlobStore(clock=clock)
    repository = build_repository(metadata=metadata, blobs=blobs)
    snippet_ids = await _stuck_in_deleting(repository, blobs, count=3)

    passes = [
        Reconciler(metadata, blobs, retired_blobs=repository.retired_blobs, config=config, clock=clock)
        for _ in range(2)
    ]
    reports = await asyncio.gather(*(reconciler.run_pass() for reconciler in passes))

    assert all(report.ok for report in reports)
    assert sum(report.tombstoned for report in reports) == 3
    for snippet_id in snippet_ids:
        assert (await metadata.get(snippet_id)).status == STATUS_TOMBSTONED
    assert len(blobs) == 0


@pytest.mark.asyncio
async def test_pass_on_consistent_state_changes_nothing(repository, reconciler, metadata_store, blob_store, clock):
    snippet = await repository.create("u1", "hello", b"v1")
    clock.advance(3600)

    report = await reconciler.run_pass()

    assert report.summary() == "tombstoned=0 deferred=0 retired_deleted=0 orphans_deleted=0 failures=0"
    record = await metadata_store.get(snippet.id)
    assert record.status == STATUS_ACTIVE
    assert record.version == 1
    assert len(blob_store) == 1


@pytest.mark.asyncio
async def test_run_forever_stops_when_signalled(build_reconciler):
    reconciler = build_reconciler(reconcile_interval=0.01)
    stop = asyncio.Event()
    passes = []
    original = reconciler.run_pass

    async def _counting_pass():
        report = await original()
        passes.append(report)
        if len(passes) == 2:
            stop.set()
        return report

    reconciler.run_pass = _counting_pass

    await asyncio.wait_for(reconciler.run_forever(stop), timeout=5)

    assert len(passes) == 2


@pytest.mark.asyncio
async def test_retry_state_is_dropped_when_another_process_finishes_the_delete(
    build_repository, build_reconciler, metadata_store, clock
):
    blobs = _FlakyDeleteBlobStore(clock=clock)
    repository = build_repository(blobs=blobs)
    stuck = build_reconciler(blobs=blobs)
    other = build_reconciler(blobs=blobs)
    (snippet_id,) = await _stuck_in_deleting(repository, blobs)

    blobs.fail_deletes = 1
    await stuck.finish_pending_deletes()
    assert snippet_id in stuck._retries

    report = await other.finish_pending_deletes()
    assert report.tombstoned == 1

    report = await stuck.finish_pending_deletes()
    assert report.deferred == 0
    assert stuck._retries == {}
    assert (await metadata_store.get(snippet_id)).status == STATUS_TOMBSTONED
