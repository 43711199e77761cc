"""Entry point for the http-watch server."""

import asyncio
import contextlib
import math
import signal
import sys

import structlog
import uvicorn
from starlette.types import ASGIApp

from httpwatch.app import create_app
from httpwatch.config import Settings
from httpwatch.lifecycle import GracefulShutdown
from httpwatch.logging import configure_logging

logger = structlog.get_logger()


def server_config(settings: Settings, app: ASGIApp) -> uvicorn.Config:
    """Build the uvicorn configuration for settings."""
    return uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level="warning",
        access_log=False,
        ws_ping_interval=settings.keepalive_interval,
        timeout_graceful_shutdown=math.ceil(settings.shutdown_timeout),
        ssl_certfile=str(settings.tls_cert) if settings.tls_cert else None,
        ssl_keyfile=str(settings.tls_key) if settings.tls_key else None,
    )


async def serve(settings: Settings) -> None:
    """Run uvicorn until SIGINT or SIGTERM.

    Args:
        settings: Server configuration.
    """
    shutdown = GracefulShutdown()
    app = create_app(settings, shutdown=shutdown)

    server = uvicorn.Server(server_config(settings, app))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.trigger, sig.name)

    async def shutdown_server() -> None:
        """Wait for shutdown signal and stop server."""
        await shutdown.wait_for_trigger()
        server.should_exit = True

    scheme = "https" if settings.has_tls else "http"
    logger.info("server_listening", url=f"{scheme}://{settings.host}:{settings.port}")

    stopper = asyncio.create_task(shutdown_server())
    try:
        await server.serve()
        if not server.started:
            raise RuntimeError("server failed to start")
    finally:
        stopper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await stopper


def main() -> None:
    """Entry point for python -m httpwatch and the http-watch script."""
    settings = Settings(_cli_parse_args=True)
    configure_logging(settings.log_level)

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error("run_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
