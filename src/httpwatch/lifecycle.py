"""Application-wide shutdown signal shared by long-lived tasks."""
import asyncio

import structlog

logger = structlog.get_logger()


class GracefulShutdown:
    """Upstream cancellation signal for the server, watcher and connections.

    Delivery loops wait on it alongside their own work so that a single
    trigger unwinds every open websocket before the watcher is stopped.

    Attributes:
        is_triggered: Whether shutdown has been triggered.
        reason: What triggered the shutdown, if anything.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def is_triggered(self) -> bool:
        """Check if shutdown has been triggered."""
        return self._event.is_set()

    def trigger(self, reason: str = "signal") -> None:
        """Signal every waiting task to wind down.

        Idempotent: only the first reason is kept.

        Args:
            reason: Short description logged with the shutdown.
        """
        if self._event.is_set():
            return
        self.reason = reason
        logger.info("shutdown_triggered", reason=reason)
        self._event.set()

    async def wait_for_trigger(self) -> None:
        """Block until `trigger` is called."""
        await self._event.wait()
