"""Runtime configuration for the repository, the reconciler and their processes."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta

logger = logging.getLogger("snippetstore")

BLOB_BACKEND_REDIS = "redis"
BLOB_BACKEND_FILESYSTEM = "filesystem"


@dataclass(slots=True)
class RepositoryConfig:
    """Tuning knobs consumed by SnippetRepository and Reconciler.

    Every field without a default must be supplied by the caller; the values
    normally come from ``ServiceSettings.from_env``.
    """

    page_size: int
    orphan_grace_period: float
    reconcile_interval: float
    retry_backoff_base: float
    retry_backoff_max: float
    operation_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")
        if self.orphan_grace_period < 0:
            raise ValueError("orphan_grace_period cannot be negative")
        if self.reconcile_interval <= 0:
            raise ValueError("reconcile_interval must be positive")
        if self.retry_backoff_base < 0 or self.retry_backoff_max < self.retry_backoff_base:
            raise ValueError("retry backoff must satisfy 0 <= base <= max")
        if self.operation_timeout is not None and self.operation_timeout <= 0:
            raise ValueError("operation_timeout must be positive when set")

    @property
    def orphan_grace(self) -> timedelta:
        return timedelta(seconds=self.orphan_grace_period)


@dataclass(slots=True)
class ServiceSettings:
    """Process-level configuration read from the environment."""

    redis_url: str
    blob_backend: str
    blob_root: str | None
    queue_name: str
    queue_default_timeout: int
    queue_result_ttl: int | None
    log_level: str
    repository: RepositoryConfig

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        def _int_env(name: str, default: int) -> int:
            raw = os.getenv(name)
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError:
                logger.warning("Invalid integer for %s: %s", name, raw)
                return default

        def _optional_int(name: str) -> int | None:
            raw = os.getenv(name)
            if not raw:
                return None
            try:
                return int(raw)
            except ValueError:
                logger.warning("Invalid integer for %s: %s", name, raw)
                return None

        def _float_env(name: str, default: float) -> float:
            raw = os.getenv(name)
            if not raw:
                return default
            try:
                return float(raw)
            except ValueError:
                logger.warning("Invalid number for %s: %s", name, raw)
                return default

        def _optional_float(name: str) -> float | None:
            raw = os.getenv(name)
            if not raw:
                return None
            try:
                return float(raw)
            except ValueError:
                logger.warning("Invalid number for %s: %s", name, raw)
                return None

        blob_backend = os.getenv("SNIPPETS_BLOB_BACKEND", BLOB_BACKEND_REDIS).strip().lower()
        if blob_backend not in (BLOB_BACKEND_REDIS, BLOB_BACKEND_FILESYSTEM):
            logger.warning("Unknown blob backend %s; using %s", blob_backend, BLOB_BACKEND_REDIS)
            blob_backend = BLOB_BACKEND_REDIS

        repository = RepositoryConfig(
            page_size=_int_env("SNIPPETS_PAGE_SIZE", 50),
            orphan_grace_period=_float_env("SNIPPETS_ORPHAN_GRACE_SECONDS", 15 * 60),
            reconcile_interval=_float_env("SNIPPETS_RECONCILE_INTERVAL", 60),
            retry_backoff_base=_float_env("SNIPPETS_RETRY_BACKOFF_BASE", 30),
            retry_backoff_max=_float_env("SNIPPETS_RETRY_BACKOFF_MAX", 30 * 60),
            operation_timeout=_optional_float("SNIPPETS_OPERATION_TIMEOUT"),
        )

        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0"),
            blob_backend=blob_backend,
            blob_root=os.getenv("SNIPPETS_BLOB_ROOT"),
            queue_name=os.getenv("RQ_QUEUE_NAME", "snippet-reconcile"),
            queue_default_timeout=_int_env("RQ_DEFAULT_TIMEOUT", 10 * 60),
            queue_result_ttl=_optional_int("RQ_RESULT_TTL"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            repository=repository,
        )


__all__ = [
    "BLOB_BACKEND_FILESYSTEM",
    "BLOB_BACKEND_REDIS",
    "RepositoryConfig",
    "ServiceSettings",
]
