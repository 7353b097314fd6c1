"""In-process transport backend.

Endpoints are matched by name inside one ``LocalBackend`` instance.
Requests run the replier's handler on the requesting thread; published
messages are delivered to each subscriber on the publishing thread, in
order.  Useful for embedding a server and its observers in one process
and for tests.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from patchsync.transport.base import (
    Backend,
    MessageHandler,
    RequestHandler,
    TransportError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalConfig:
    name: str


class LocalBackend(Backend):
    """Registry of in-process endpoints.

    Thread-safe: a lock protects the registry so endpoints can be created,
    used and closed from any thread.
    """

    Config = LocalConfig

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._repliers: dict[str, RequestHandler] = {}
        self._publishers: set[str] = set()
        self._subscribers: dict[str, list[MessageHandler]] = {}

    def replier(self, config: LocalConfig, handler: RequestHandler) -> _LocalReplier:
        with self._lock:
            if config.name in self._repliers:
                raise TransportError(f"Replier already bound: '{config.name}'")
            self._repliers[config.name] = handler
        return _LocalReplier(self, config.name)

    def publisher(self, config: LocalConfig) -> _LocalPublisher:
        with self._lock:
            if config.name in self._publishers:
                raise TransportError(f"Publisher already bound: '{config.name}'")
            self._publishers.add(config.name)
        return _LocalPublisher(self, config.name)

    def requester(self, config: LocalConfig) -> _LocalRequester:
        return _LocalRequester(self, config.name)

    def subscriber(self, config: LocalConfig, handler: MessageHandler) -> _LocalSubscriber:
        # Subscribing before the publisher exists is allowed, as with any
        # pub/sub socket: messages simply start flowing once it is bound.
        with self._lock:
            self._subscribers.setdefault(config.name, []).append(handler)
        return _LocalSubscriber(self, config.name, handler)

    def _dispatch_request(self, name: str, message: str) -> str:
        with self._lock:
            handler = self._repliers.get(name)
        if handler is None:
            raise TransportError(f"No replier bound at '{name}'")
        return handler(message)

    def _deliver(self, name: str, message: str) -> None:
        """Fire all subscribers of *name*.  Never raises."""
        with self._lock:
            handlers = list(self._subscribers.get(name, ()))
        for handler in handlers:
            try:
                handler(message)
            except Exception:
                logger.exception("subscriber of '%s' failed to handle message", name)


class _LocalReplier:
    def __init__(self, backend: LocalBackend, name: str) -> None:
        self._backend = backend
        self.name = name

    def close(self) -> None:
        with self._backend._lock:
            self._backend._repliers.pop(self.name, None)


class _LocalPublisher:
    def __init__(self, backend: LocalBackend, name: str) -> None:
        self._backend = backend
        self.name = name
        self._closed = False

    def publish(self, message: str) -> None:
        if self._closed:
            raise TransportError(f"Publisher '{self.name}' is closed")
        self._backend._deliver(self.name, message)

    def close(self) -> None:
        self._closed = True
        with self._backend._lock:
            self._backend._publishers.discard(self.name)


class _LocalRequester:
    def __init__(self, backend: LocalBackend, name: str) -> None:
        self._backend = backend
        self.name = name
        self._closed = False

    def request(self, message: str) -> str:
        if self._closed:
            raise TransportError(f"Requester for '{self.name}' is closed")
        return self._backend._dispatch_request(self.name, message)

    def close(self) -> None:
        self._closed = True


class _LocalSubscriber:
    def __init__(self, backend: LocalBackend, name: str, handler: MessageHandler) -> None:
        self._backend = backend
        self.name = name
        self._handler = handler

    def close(self) -> None:
        with self._backend._lock:
            handlers = self._backend._subscribers.get(self.name, [])
            try:
                handlers.remove(self._handler)
            except ValueError:
                pass
