"""WebSocket transport backend.

Server roles (replier, publisher) each run an asyncio event loop in a
daemon thread, so they can be driven from ordinary synchronous code.
Client roles (requester, subscriber) use the ``websockets`` synchronous
client.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any

from websockets.asyncio.server import serve
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect

from patchsync.transport.base import (
    Backend,
    MessageHandler,
    RequestHandler,
    TransportError,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9800

_START_TIMEOUT = 5.0  # seconds
_STOP_TIMEOUT = 5.0
_OPEN_TIMEOUT = 10.0
_REQUEST_TIMEOUT = 10.0


@dataclass(frozen=True)
class WebSocketConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


class WebSocketBackend(Backend):
    """Replier and publisher as WebSocket servers, one port each."""

    Config = WebSocketConfig

    def replier(self, config: WebSocketConfig, handler: RequestHandler) -> WebSocketReplier:
        return WebSocketReplier(config, handler)

    def publisher(self, config: WebSocketConfig) -> WebSocketPublisher:
        return WebSocketPublisher(config)

    def requester(self, config: WebSocketConfig) -> WebSocketRequester:
        return WebSocketRequester(config)

    def subscriber(self, config: WebSocketConfig, handler: MessageHandler) -> WebSocketSubscriber:
        return WebSocketSubscriber(config, handler)


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


class _ServerEndpoint(abc.ABC):
    """WebSocket server running on its own event loop thread.

    ``port`` holds the bound port once started, which differs from the
    configured one when the config asks for port 0.
    """

    thread_name = "patchsync-server"

    def __init__(self, config: WebSocketConfig) -> None:
        self.host = config.host
        self.port = config.port
        self._loop: asyncio.AbstractEventLoop | None = None
        self._server: Any = None
        self._thread: threading.Thread | None = None
        self._start()

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def _start(self) -> None:
        ready = threading.Event()
        errors: list[BaseException] = []

        def _run() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(self._serve())
            except OSError as exc:
                errors.append(exc)
                ready.set()
                loop.close()
                return
            self._loop = loop
            # Ready only once the loop runs, so close() can always stop it.
            loop.call_soon(ready.set)
            loop.run_forever()
            loop.run_until_complete(self._shutdown())
            loop.close()

        self._thread = threading.Thread(target=_run, name=self.thread_name, daemon=True)
        self._thread.start()
        if not ready.wait(timeout=_START_TIMEOUT):
            raise TransportError(f"Timed out starting server on {self.host}:{self.port}")
        if errors:
            raise TransportError(f"Cannot listen on {self.host}:{self.port}: {errors[0]}") from errors[0]
        logger.debug("%s listening on %s", self.thread_name, self.url)

    async def _serve(self) -> None:
        self._server = await serve(self._handle_client, self.host, self.port)
        self.port = next(iter(self._server.sockets)).getsockname()[1]

    async def _shutdown(self) -> None:
        self._server.close()
        await self._server.wait_closed()

    @abc.abstractmethod
    async def _handle_client(self, websocket: Any, path: Any = None) -> None:
        """Serve one connected client until it disconnects."""

    def close(self) -> None:
        """Stop the server and wait for its thread to exit."""
        loop = self._loop
        if loop is None or not loop.is_running():
            return
        loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=_STOP_TIMEOUT)


class WebSocketReplier(_ServerEndpoint):
    """Answer every incoming frame with ``handler(frame)``.

    The handler runs in a worker thread, so requests from different
    connections are served concurrently.
    """

    thread_name = "patchsync-replier"

    def __init__(self, config: WebSocketConfig, handler: RequestHandler) -> None:
        self._handler = handler
        super().__init__(config)

    async def _handle_client(self, websocket: Any, path: Any = None) -> None:  # noqa: ARG002
        async for message in websocket:
            if isinstance(message, bytes):
                message = message.decode("utf-8")
            reply = await asyncio.to_thread(self._handler, message)
            await websocket.send(reply)


class WebSocketPublisher(_ServerEndpoint):
    """Broadcast published messages to all connected subscribers.

    A single sender task drains a FIFO queue, so subscribers see messages
    in publish order.  Failed sends to individual subscribers are ignored.
    """

    thread_name = "patchsync-publisher"

    def __init__(self, config: WebSocketConfig) -> None:
        self._clients: set[Any] = set()
        self._queue: asyncio.Queue[str] | None = None
        self._sender: asyncio.Task | None = None
        super().__init__(config)

    async def _serve(self) -> None:
        self._queue = asyncio.Queue()
        await super()._serve()
        self._sender = asyncio.get_running_loop().create_task(self._drain())

    async def _shutdown(self) -> None:
        if self._sender is not None:
            self._sender.cancel()
            await asyncio.gather(self._sender, return_exceptions=True)
        await super()._shutdown()

    async def _handle_client(self, websocket: Any, path: Any = None) -> None:  # noqa: ARG002
        self._clients.add(websocket)
        logger.debug("subscriber connected to %s (%d total)", self.url, len(self._clients))
        try:
            await websocket.wait_closed()
        finally:
            self._clients.discard(websocket)

    def publish(self, message: str) -> None:
        """Thread-safe: queue *message* for broadcast and return immediately."""
        loop = self._loop
        if loop is None or not loop.is_running():
            raise TransportError(f"Publisher on {self.url} is closed")
        loop.call_soon_threadsafe(self._queue.put_nowait, message)

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            if self._clients:
                await asyncio.gather(
                    *(c.send(message) for c in list(self._clients)),
                    return_exceptions=True,
                )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


class WebSocketRequester:
    """Send requests to a replier, one short-lived connection per request."""

    def __init__(self, config: WebSocketConfig, timeout: float = _REQUEST_TIMEOUT) -> None:
        self.url = config.url
        self.timeout = timeout

    def request(self, message: str) -> str:
        try:
            with connect(self.url, open_timeout=self.timeout) as ws:
                ws.send(message)
                reply = ws.recv(timeout=self.timeout)
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise TransportError(f"Request to {self.url} failed: {exc}") from exc
        if isinstance(reply, bytes):
            reply = reply.decode("utf-8")
        return reply

    def close(self) -> None:
        pass


class WebSocketSubscriber:
    """Receive published messages on a background thread, in order."""

    def __init__(self, config: WebSocketConfig, handler: MessageHandler) -> None:
        self.url = config.url
        self._handler = handler
        try:
            self._ws = connect(self.url, open_timeout=_OPEN_TIMEOUT)
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise TransportError(f"Cannot subscribe to {self.url}: {exc}") from exc
        self._thread = threading.Thread(target=self._run, name="patchsync-subscriber", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            for message in self._ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                try:
                    self._handler(message)
                except Exception:
                    logger.exception("subscriber of %s failed to handle message", self.url)
        except WebSocketException as exc:
            logger.debug("subscription to %s ended: %s", self.url, exc)

    def close(self) -> None:
        self._ws.close()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=_STOP_TIMEOUT)
