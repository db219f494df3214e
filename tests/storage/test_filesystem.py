import os
import stat
from pathlib import Path

import pytest

from snippetstore.exceptions import BlobNotFoundError
from snippetstore.storage.filesystem import LocalBlobStore


@pytest.mark.asyncio
async def test_put_get_delete(tmp_path):
    store = LocalBlobStore(tmp_path / "blobs")

    await store.put("snippets/owner/id/nonce", b"print(1)")
    await store.put("snippets/owner/id/nonce", b"print(1)")

    assert await store.get("snippets/owner/id/nonce") == b"print(1)"
    assert (tmp_path / "blobs" / "snippets" / "owner" / "id" / "nonce").read_bytes() == b"print(1)"

    await store.delete("snippets/owner/id/nonce")
    with pytest.raises(BlobNotFoundError):
        await store.delete("snippets/owner/id/nonce")
    with pytest.raises(BlobNotFoundError):
        await store.get("snippets/owner/id/nonce")


@pytest.mark.asyncio
async def test_rejects_keys_escaping_root(tmp_path):
    store = LocalBlobStore(tmp_path)

    for key in ("../outside", "snippets//x", "snippets/./x", ""):
        with pytest.raises(ValueError):
            await store.put(key, b"x")


@pytest.mark.asyncio
async def test_iter_blobs_skips_partial_writes(tmp_path):
    store = LocalBlobStore(tmp_path)
    await store.put("snippets/o/a/n1", b"1")
    await store.put("snippets/o/b/n2", b"2")
    (tmp_path / "snippets" / "o" / "a" / "n3.abc.partial").write_bytes(b"half")

    keys = sorted([info.key async for info in store.iter_blobs()])

    assert keys == ["snippets/o/a/n1", "snippets/o/b/n2"]


@pytest.mark.asyncio
async def test_iter_blobs_on_missing_root_is_empty(tmp_path):
    store = LocalBlobStore(tmp_path / "missing")

    assert [info async for info in store.iter_blobs()] == []


@pytest.mark.asyncio
async def test_put_syncs_file_before_rename_and_directories_after(tmp_path, monkeypatch):
    events = []
    real_fsync = os.fsync
    real_replace = os.replace

    def _recording_fsync(fd):
        events.append(("dir", None) if stat.S_ISDIR(os.fstat(fd).st_mode) else ("file", None))
        real_fsync(fd)

    def _recording_replace(src, dst):
        events.append(("replace", Path(dst).name))
        real_replace(src, dst)

    monkeypatch.setattr(os, "fsync", _recording_fsync)
    monkeypatch.setattr(os, "replace", _recording_replace)
    store = LocalBlobStore(tmp_path / "blobs")

    await store.put("snippets/o/a/n1", b"print(1)")

    assert events[0] == ("file", None)
    assert events[1] == ("replace", "n1")
    # The blob's directory plus the parent of every directory the put created.
    assert events[2:] == [("dir", None)] * 5

    events.clear()
    await store.put("snippets/o/a/n2", b"print(2)")
    assert events == [("file", None), ("replace", "n2"), ("dir", None)]


@pytest.mark.asyncio
async def test_delete_prunes_empty_directories_up_to_root(tmp_path):
    root = tmp_path / "blobs"
    store = LocalBlobStore(root)
    await store.put("snippets/o/a/n1", b"1")
    await store.put("snippets/o/a/n2", b"2")
    await store.put("snippets/o/b/n3", b"3")

    await store.delete("snippets/o/a/n1")
    assert (root / "snippets" / "o" / "a").is_dir()

    await store.delete("snippets/o/a/n2")
    assert not (root / "snippets" / "o" / "a").exists()
    assert (root / "snippets" / "o" / "b").is_dir()

    await store.delete("snippets/o/b/n3")
    assert root.is_dir()
    assert list(root.iterdir()) == []

    await store.put("snippets/o/a/n4", b"4")
    assert await store.get("snippets/o/a/n4") == b"4"
