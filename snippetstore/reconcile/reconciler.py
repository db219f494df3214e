"""Background repair of partially applied snippet operations.

A pass has three steps, each safe to repeat or to run concurrently with
another pass:

1. finish deletes: records left in DELETING get their blob removed and are
   tombstoned;
2. drain retired keys: blobs replaced by an update are deleted;
3. sweep orphans: blobs no live record points at, and older than the grace
   period, are deleted.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from ..config import RepositoryConfig
from ..exceptions import BlobNotFoundError, RecordNotFoundError, SnippetStoreError
from ..repository import call_store, tombstone
from ..snippet.keys import snippet_id_from_key
from ..snippet.model import STATUS_ACTIVE, STATUS_DELETING, utcnow
from ..storage.base import ContentBlobStore, MetadataStore, RetiredBlobQueue

logger = logging.getLogger("snippetstore")

_LIVE_STATUSES = (STATUS_ACTIVE, STATUS_DELETING)


@dataclass(slots=True)
class ReconcileReport:
    """Counters and collected failures for one reconciliation pass."""

    tombstoned: int = 0
    deferred: int = 0
    retired_deleted: int = 0
    orphans_deleted: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def record_failure(self, error: Exception, *, stage: str, target: str) -> None:
        failure = {
            "type": type(error).__name__,
            "message": str(error),
            "context": {"stage": stage, "target": target},
            "traceback": traceback.format_exc() if logger.isEnabledFor(logging.DEBUG) else None,
        }
        logger.warning("%s: %s | Context: %s", failure["type"], failure["message"], failure["context"])
        self.failures.append(failure)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        return (
            f"tombstoned={self.tombstoned} deferred={self.deferred} "
            f"retired_deleted={self.retired_deleted} orphans_deleted={self.orphans_deleted} "
            f"failures={len(self.failures)}"
        )


@dataclass(slots=True)
class _RetryState:
    attempts: int
    next_attempt_at: datetime


class Reconciler:
    """Repairs records stuck in DELETING and collects unreferenced blobs.

    Records whose blob deletion keeps failing are retried with exponential
    backoff capped at ``config.retry_backoff_max``, so a record converges at
    most one capped delay after the fault clears.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: ContentBlobStore,
        *,
        retired_blobs: RetiredBlobQueue,
        config: RepositoryConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.metadata = metadata
        self.blobs = blobs
        self.retired_blobs = retired_blobs
        self.config = config
        self._clock = clock
        self._retries: Dict[str, _RetryState] = {}

    async def run_pass(self) -> ReconcileReport:
        report = ReconcileReport()
        await self.finish_pending_deletes(report)
        await self.drain_retired_blobs(report)
        await self.sweep_orphans(report)
        logger.info("Reconciliation pass finished: %s", report.summary())
        return report

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Run passes every ``config.reconcile_interval`` seconds until ``stop`` is set."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            try:
                await self.run_pass()
            except SnippetStoreError:
                logger.exception("Reconciliation pass aborted")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.config.reconcile_interval)
            except asyncio.TimeoutError:
                pass

    async def finish_pending_deletes(self, report: ReconcileReport | None = None) -> ReconcileReport:
        report = report if report is not None else ReconcileReport()
        cursor: str | None = None
        seen: set[str] = set()
        while True:
            try:
                page = await self._call(
                    self.metadata.scan_by_status(STATUS_DELETING, cursor, limit=self.config.page_size),
                    "scan deleting",
                )
            except SnippetStoreError as exc:
                report.record_failure(exc, stage="scan", target=STATUS_DELETING)
                return report

            for record in page.records:
                seen.add(record.id)
                now = self._clock()
                retry = self._retries.get(record.id)
                if retry is not None and retry.next_attempt_at > now:
                    report.deferred += 1
                    continue
                try:
                    finished = await tombstone(
                        self.metadata,
                        self.blobs,
                        record,
                        now=now,
                        timeout=self.config.operation_timeout,
                    )
                except SnippetStoreError as exc:
                    self._schedule_retry(record.id, now)
                    report.record_failure(exc, stage="tombstone", target=record.id)
                    continue
                self._retries.pop(record.id, None)
                if finished is not None:
                    report.tombstoned += 1
                    logger.info("Reconciled snippet %s to TOMBSTONED", record.id)

            cursor = page.next_cursor
            if cursor is None:
                break

        # Records finished elsewhere no longer need a retry slot.
        for snippet_id in set(self._retries) - seen:
            del self._retries[snippet_id]
        return report

    async def drain_retired_blobs(self, report: ReconcileReport | None = None) -> ReconcileReport:
        report = report if report is not None else ReconcileReport()
        while True:
            try:
                keys = await self._call(
                    self.retired_blobs.pop_batch(self.config.page_size), "drain retired blobs"
                )
            except SnippetStoreError as exc:
                report.record_failure(exc, stage="drain", target="retired-blobs")
                return report
            if not keys:
                return report

            for index, key in enumerate(keys):
                try:
                    if await self._is_referenced(key):
                        logger.debug("Retired blob %s is referenced again; keeping it", key)
                        continue
                    await self._delete_blob(key)
                except SnippetStoreError as exc:
                    report.record_failure(exc, stage="retired", target=key)
                    await self._requeue(keys[index:], report)
                    return report
                report.retired_deleted += 1

    async def sweep_orphans(self, report: ReconcileReport | None = None) -> ReconcileReport:
        report = report if report is not None else ReconcileReport()
        cutoff = self._clock() - self.config.orphan_grace
        try:
            async for blob in self.blobs.iter_blobs():
                if blob.last_modified > cutoff:
                    continue
                if snippet_id_from_key(blob.key) is None:
                    continue
                try:
                    if await self._is_referenced(blob.key):
                        continue
                    await self._delete_blob(blob.key)
                except SnippetStoreError as exc:
                    report.record_failure(exc, stage="orphan", target=blob.key)
                    continue
                report.orphans_deleted += 1
                logger.info("Deleted orphaned blob %s", blob.key)
        except SnippetStoreError as exc:
            report.record_failure(exc, stage="orphan-scan", target="blobs")
        return report

    def retry_delay(self, attempts: int) -> timedelta:
        seconds = self.config.retry_backoff_base * (2 ** max(0, attempts - 1))
        return timedelta(seconds=min(seconds, self.config.retry_backoff_max))

    def _schedule_retry(self, snippet_id: str, now: datetime) -> None:
        previous = self._retries.get(snippet_id)
        attempts = previous.attempts + 1 if previous else 1
        self._retries[snippet_id] = _RetryState(
            attempts=attempts,
            next_attempt_at=now + self.retry_delay(attempts),
        )

    async def _is_referenced(self, key: str) -> bool:
        snippet_id = snippet_id_from_key(key)
        if snippet_id is None:
            return False
        try:
            record = await self._call(self.metadata.get(snippet_id), "metadata get")
        except RecordNotFoundError:
            return False
        return record.content_key == key and record.status in _LIVE_STATUSES

    async def _delete_blob(self, key: str) -> None:
        try:
            await self._call(self.blobs.delete(key), "blob delete")
        except BlobNotFoundError:
            logger.debug("Blob %s already removed", key)

    async def _requeue(self, keys: List[str], report: ReconcileReport) -> None:
        for key in keys:
            try:
                await self._call(self.retired_blobs.push(key), "retire blob")
            except SnippetStoreError as exc:
                report.record_failure(exc, stage="requeue", target=key)

    async def _call(self, awaitable, operation: str):
        return await call_store(awaitable, timeout=self.config.operation_timeout, operation=operation)


__all__ = ["ReconcileReport", "Reconciler"]
