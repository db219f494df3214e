"""RQ plumbing for scheduling reconciliation passes."""

from __future__ import annotations

from dataclasses import dataclass

import redis
from rq import Queue

from ..config import ServiceSettings


@dataclass(slots=True)
class QueueConfig:
    """Where reconciliation jobs are queued and how long they may run."""

    redis_url: str
    queue_name: str = "snippet-reconcile"
    default_timeout: int = 10 * 60
    result_ttl: int | None = None

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "QueueConfig":
        return cls(
            redis_url=settings.redis_url,
            queue_name=settings.queue_name,
            default_timeout=settings.queue_default_timeout,
            result_ttl=settings.queue_result_ttl,
        )


def create_queue(config: QueueConfig, *, connection: redis.Redis | None = None) -> Queue:
    """Create the reconciliation queue, opening a sync Redis client if none is given."""

    redis_conn = connection if connection is not None else redis.Redis.from_url(config.redis_url)
    return Queue(
        name=config.queue_name,
        connection=redis_conn,
        default_timeout=config.default_timeout,
    )


__all__ = ["QueueConfig", "create_queue"]
