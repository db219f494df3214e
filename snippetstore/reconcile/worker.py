"""RQ job and long-running loop entrypoints for reconciliation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from rq import Queue
from rq.job import Job

from ..bootstrap import build_reconciler, build_stores, create_async_redis
from ..config import ServiceSettings
from .reconciler import ReconcileReport

logger = logging.getLogger("snippetstore")


def reconcile_snippets() -> dict[str, Any]:
    """Run one reconciliation pass against the stores configured in the environment."""

    settings = ServiceSettings.from_env()
    report = asyncio.run(run_reconciliation_pass(settings))
    return report_to_dict(report)


async def run_reconciliation_pass(settings: ServiceSettings) -> ReconcileReport:
    redis_client = create_async_redis(settings.redis_url)
    try:
        reconciler = build_reconciler(settings, build_stores(settings, redis_client))
        return await reconciler.run_pass()
    finally:
        await redis_client.aclose()


async def run_reconciliation_loop(
    settings: ServiceSettings,
    stop: asyncio.Event | None = None,
) -> None:
    redis_client = create_async_redis(settings.redis_url)
    try:
        reconciler = build_reconciler(settings, build_stores(settings, redis_client))
        logger.info(
            "Starting reconciliation loop every %.1fs (orphan grace %.1fs)",
            settings.repository.reconcile_interval,
            settings.repository.orphan_grace_period,
        )
        await reconciler.run_forever(stop)
    finally:
        await redis_client.aclose()


def enqueue_reconciliation(
    queue: Queue,
    *,
    job_id: str | None = None,
    result_ttl: int | None = None,
) -> Job:
    """Schedule a reconciliation pass on the RQ queue."""

    options: dict[str, Any] = {"job_id": job_id or f"reconcile-{uuid.uuid4().hex}"}
    if result_ttl is not None:
        options["result_ttl"] = result_ttl
    return queue.enqueue(reconcile_snippets, **options)


def report_to_dict(report: ReconcileReport) -> dict[str, Any]:
    return {
        "tombstoned": report.tombstoned,
        "deferred": report.deferred,
        "retired_deleted": report.retired_deleted,
        "orphans_deleted": report.orphans_deleted,
        "failures": [
            {"type": failure["type"], "message": failure["message"], "context": failure["context"]}
            for failure in report.failures
        ],
    }


__all__ = [
    "enqueue_reconciliation",
    "reconcile_snippets",
    "report_to_dict",
    "run_reconciliation_loop",
    "run_reconciliation_pass",
]
