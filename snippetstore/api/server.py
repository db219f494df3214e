"""FastAPI application factory for the snippets service."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ..config import ServiceSettings
from ..log import setup_logging
from .route import router


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    async_redis = getattr(app.state, "async_redis", None)
    if async_redis is not None:
        await async_redis.aclose()
    redis_client = getattr(app.state, "redis_client", None)
    if redis_client is not None:
        redis_client.close()


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or ServiceSettings.from_env()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Snippet Store API",
        version="0.1.0",
        lifespan=_lifespan,
    )
    app.state.settings = settings
    app.include_router(router)

    return app


__all__ = ["create_app"]
