"""Transport abstraction used by the sync server and client.

A backend provides four endpoint roles over some messaging substrate:

- ``Replier``: answers each incoming request with ``handler(request)``.
- ``Publisher``: broadcasts messages to every current subscriber, in
  publish order, without acknowledgement.
- ``Requester``: sends one request and waits for the reply.
- ``Subscriber``: receives published messages and passes them to
  ``handler(message)``.

Messages are ``str``.  The sync engine never assumes anything else about
the transport.
"""

from __future__ import annotations

import abc
from collections.abc import Callable
from typing import Any, ClassVar, Protocol

RequestHandler = Callable[[str], str]
MessageHandler = Callable[[str], None]


class TransportError(Exception):
    """Raised when an endpoint cannot be created or a request fails."""


class Replier(Protocol):
    def close(self) -> None: ...


class Publisher(Protocol):
    def publish(self, message: str) -> None: ...

    def close(self) -> None: ...


class Requester(Protocol):
    def request(self, message: str) -> str: ...

    def close(self) -> None: ...


class Subscriber(Protocol):
    def close(self) -> None: ...


class Backend(abc.ABC):
    """Factory for the endpoints of one transport implementation.

    ``Config`` names the backend-specific configuration type accepted by
    every factory method.
    """

    Config: ClassVar[type]

    @abc.abstractmethod
    def replier(self, config: Any, handler: RequestHandler) -> Replier:
        """Start answering requests at *config* with *handler*."""

    @abc.abstractmethod
    def publisher(self, config: Any) -> Publisher:
        """Start a publish endpoint at *config*."""

    @abc.abstractmethod
    def requester(self, config: Any) -> Requester:
        """Return an endpoint sending requests to the replier at *config*."""

    @abc.abstractmethod
    def subscriber(self, config: Any, handler: MessageHandler) -> Subscriber:
        """Subscribe *handler* to the publisher at *config*."""
