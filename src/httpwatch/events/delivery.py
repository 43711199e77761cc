"""Per-connection relay from the broadcaster to a websocket."""

import asyncio

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from httpwatch.events.broadcaster import Broadcaster
from httpwatch.events.types import WebsocketMessage
from httpwatch.exceptions import SubscriberClosedError
from httpwatch.lifecycle import GracefulShutdown

logger = structlog.get_logger()

DEFAULT_KEEPALIVE_INTERVAL = 30.0

_IO_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)


class DeliveryLoop:
    """Bridges one broadcaster subscription to one websocket.

    Two tasks cooperate per connection: `run` waits for notifications,
    keepalive deadlines and shutdown, while a reader task consumes
    inbound frames only to notice the peer going away. Whichever side
    finishes first ends `run`, which alone unsubscribes and closes.

    Attributes:
        keepalive_interval: Seconds between keepalive frames.
    """

    def __init__(
        self,
        websocket: WebSocket,
        broadcaster: Broadcaster,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        shutdown: GracefulShutdown | None = None,
    ) -> None:
        """Initialize delivery loop.

        Args:
            websocket: Connection that has not been accepted yet.
            broadcaster: Source of change notifications.
            keepalive_interval: Seconds between keepalive frames.
            shutdown: Application shutdown signal, if any.
        """
        self._websocket = websocket
        self._broadcaster = broadcaster
        self.keepalive_interval = keepalive_interval
        self._shutdown = shutdown
        self._client = (
            f"{websocket.client.host}:{websocket.client.port}" if websocket.client else None
        )

    async def run(self) -> None:
        """Subscribe, accept the connection and relay until it ends."""
        subscriber = self._broadcaster.subscribe()
        reader: asyncio.Task[None] | None = None
        receive: asyncio.Task[str] | None = None
        stop: asyncio.Task[None] | None = None
        reason = "cancelled"

        try:
            await self._websocket.accept()
            logger.info("websocket_connected", client=self._client)

            reader = asyncio.create_task(self._detect_disconnect())
            if self._shutdown is not None:
                stop = asyncio.create_task(self._shutdown.wait_for_trigger())

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.keepalive_interval

            while True:
                if receive is None:
                    receive = asyncio.create_task(subscriber.receive())

                waiting = {reader, receive}
                if stop is not None:
                    waiting.add(stop)

                done, _ = await asyncio.wait(
                    waiting,
                    timeout=max(0.0, deadline - loop.time()),
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if reader in done:
                    reason = "peer_closed"
                    break
                if stop is not None and stop in done:
                    reason = "shutdown"
                    break

                if receive in done:
                    try:
                        path = receive.result()
                    except SubscriberClosedError:
                        reason = "unsubscribed"
                        break
                    receive = None
                    logger.debug("websocket_file_change", client=self._client, file=path)
                    if not await self._send(WebsocketMessage.file_change(path)):
                        reason = "send_failed"
                        break

                if loop.time() >= deadline:
                    if not await self._send(WebsocketMessage.ping()):
                        reason = "ping_failed"
                        break
                    deadline = loop.time() + self.keepalive_interval
        except _IO_ERRORS as e:
            reason = "accept_failed"
            logger.debug("websocket_accept_error", client=self._client, error=str(e))
        finally:
            tasks = [task for task in (reader, receive, stop) if task is not None]
            for task in tasks:
                task.cancel()
            # Nothing may await before this: a cancel scope re-delivers
            # cancellation at every await of the teardown.
            self._broadcaster.unsubscribe(subscriber)

            interrupted = False
            try:
                await asyncio.shield(self._finish(tasks))
            except asyncio.CancelledError:
                interrupted = True
            logger.info("websocket_disconnected", client=self._client, reason=reason)
            if interrupted:
                raise asyncio.CancelledError

    async def _finish(self, tasks: list[asyncio.Task]) -> None:
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._close()

    async def _detect_disconnect(self) -> None:
        """Read and discard inbound frames until the peer goes away."""
        try:
            while True:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug(
                        "websocket_peer_closed",
                        client=self._client,
                        code=message.get("code"),
                    )
                    return
        except _IO_ERRORS as e:
            logger.debug("websocket_read_error", client=self._client, error=str(e))

    async def _send(self, message: WebsocketMessage) -> bool:
        try:
            await self._websocket.send_text(message.to_text())
        except _IO_ERRORS as e:
            logger.debug(
                "websocket_send_error",
                client=self._client,
                message_type=message.type.value,
                error=str(e),
            )
            return False
        return True

    async def _close(self) -> None:
        ws = self._websocket
        if (
            ws.client_state == WebSocketState.DISCONNECTED
            or ws.application_state != WebSocketState.CONNECTED
        ):
            return
        try:
            await ws.close()
        except _IO_ERRORS as e:
            logger.debug("websocket_close_error", client=self._client, error=str(e))
