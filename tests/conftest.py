from datetime import datetime, timedelta, timezone

import pytest

from snippetstore.config import RepositoryConfig
from snippetstore.reconcile import Reconciler
from snippetstore.repository import SnippetRepository
from snippetstore.storage.memory import (
    MemoryBlobStore,
    MemoryMetadataStore,
    MemoryRetiredBlobQueue,
)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_config(**overrides) -> RepositoryConfig:
    values = {
        "page_size": 10,
        "orphan_grace_period": 300,
        "reconcile_interval": 60,
        "retry_backoff_base": 10,
        "retry_backoff_max": 80,
    }
    values.update(overrides)
    return RepositoryConfig(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def metadata_store():
    return MemoryMetadataStore()


@pytest.fixture
def blob_store(clock):
    return MemoryBlobStore(clock=clock)


@pytest.fixture
def retired_queue():
    return MemoryRetiredBlobQueue()


@pytest.fixture
def repository(metadata_store, blob_store, retired_queue, config, clock):
    return SnippetRepository(
        metadata_store,
        blob_store,
        retired_blobs=retired_queue,
        config=config,
        clock=clock,
    )


@pytest.fixture
def reconciler(metadata_store, blob_store, retired_queue, config, clock):
    return Reconciler(
        metadata_store,
        blob_store,
        retired_blobs=retired_queue,
        config=config,
        clock=clock,
    )


@pytest.fixture
def build_repository(metadata_store, blob_store, retired_queue, clock):
    def _build(*, metadata=None, blobs=None, retired=None, **config_overrides):
        return SnippetRepository(
            metadata if metadata is not None else metadata_store,
            blobs if blobs is not None else blob_store,
            retired_blobs=retired if retired is not None else retired_queue,
            config=make_config(**config_overrides),
            clock=clock,
        )

    return _build


@pytest.fixture
def build_reconciler(metadata_store, blob_store, retired_queue, clock):
    def _build(*, metadata=None, blobs=None, retired=None, **config_overrides):
        return Reconciler(
            metadata if metadata is not None else metadata_store,
            blobs if blobs is not None else blob_store,
            retired_blobs=retired if retired is not None else retired_queue,
            config=make_config(**config_overrides),
            clock=clock,
        )

    return _build
