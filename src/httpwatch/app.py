"""FastAPI application factory and lifespan management."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.staticfiles import StaticFiles

from httpwatch.config import Settings
from httpwatch.events import Broadcaster, ChangeWatcher
from httpwatch.lifecycle import GracefulShutdown
from httpwatch.middleware.compression import CompressionMiddleware, Encoding
from httpwatch.middleware.headers import StaticHeadersMiddleware
from httpwatch.middleware.logging import RequestLoggingMiddleware
from httpwatch.routes import events, health

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle events.

    Starts the change watcher when a pattern is configured. On exit,
    triggers the shutdown signal so open websockets unwind, then stops
    the watcher and its task.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.

    Raises:
        WatchInitError: If the watched directory cannot be registered.
    """
    settings: Settings = app.state.settings
    shutdown: GracefulShutdown = app.state.shutdown
    logger.info("server_startup", host=settings.host, port=settings.port, dir=str(settings.dir))

    watcher: ChangeWatcher | None = app.state.watcher
    watcher_task: asyncio.Task[None] | None = None
    if watcher is not None:
        watcher.start(asyncio.get_running_loop())
        watcher_task = asyncio.create_task(watcher.run())

    try:
        yield
    finally:
        shutdown.trigger("lifespan_exit")

        if watcher is not None:
            watcher.stop()
        if watcher_task is not None:
            watcher_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher_task

        broadcaster: Broadcaster = app.state.broadcaster
        logger.info(
            "server_shutdown",
            subscribers=broadcaster.subscriber_count,
            dropped_messages=broadcaster.dropped_messages,
        )


def create_static_app(settings: Settings) -> StaticHeadersMiddleware:
    """Build the ASGI app serving settings.dir.

    Args:
        settings: Configuration with a directory set.

    Returns:
        Static file app wrapped with headers and compression.
    """
    choices = [Encoding.GZIP] if settings.gzip else []
    files = StaticFiles(directory=settings.dir, html=True)
    return StaticHeadersMiddleware(CompressionMiddleware(files, choices=choices))


def create_app(
    settings: Settings | None = None,
    shutdown: GracefulShutdown | None = None,
) -> FastAPI:
    """Factory function to create configured FastAPI application.

    The events websocket is only routed when a pattern is configured, and
    static files are only served when a directory is configured.

    Args:
        settings: Configuration instance. Creates default if None.
        shutdown: Shutdown signal shared with the server runner.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="http-watch",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    broadcaster = Broadcaster()
    watch_config = settings.watch_config

    app.state.settings = settings
    app.state.shutdown = shutdown if shutdown is not None else GracefulShutdown()
    app.state.broadcaster = broadcaster
    app.state.watcher = (
        ChangeWatcher(watch_config, broadcaster, debounce_ms=settings.debounce_ms)
        if watch_config is not None
        else None
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router)
    if watch_config is not None:
        app.include_router(events.router)
    if settings.dir is not None:
        app.mount("/", create_static_app(settings), name="static")

    return app
