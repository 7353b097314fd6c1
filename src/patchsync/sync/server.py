"""Synchronizing server.

The server owns the authoritative state.  At construction it starts a
replier and a publisher.  The replier answers every request with the full
current state; whenever the state changes, the publisher broadcasts a JSON
patch (RFC 6902) that subscribers apply on their side.

Single writer: ``update()`` must not be called concurrently with itself.
Only the cached snapshot text is lock-protected, which is what makes
``handle_request()`` safe to call from any number of transport threads.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from patchsync.core.codec import dumps, to_state
from patchsync.core.ids import generate_server_id
from patchsync.core.patch import diff, dumps_patch
from patchsync.transport.base import Backend
from patchsync.transport.websocket import WebSocketBackend

logger = logging.getLogger(__name__)

# Reserved top-level key holding the state version.
VERSION_KEY = "__syncer_data_version"
VERSION_PATH = f"/{VERSION_KEY}"

# Empty message means "request a full state".
BOOTSTRAP_MESSAGE = ""


def stamp_version(state: dict, version: int) -> dict:
    """Set the reserved version field of *state* and return it."""
    state[VERSION_KEY] = version
    return state


class SyncServer:
    """Keep subscribers in sync with a versioned data state.

    Args:
        rep_config: Replier configuration of *backend*.
        pub_config: Publisher configuration of *backend*.
        data: Initial data state.  Anything ``codec.to_state`` accepts that
            serializes to a JSON object.
        backend: Transport implementation (WebSocket by default).
        server_id: Identifier used in log lines to tell servers apart.  A
            fresh ``srv_`` ULID by default.
    """

    def __init__(
        self,
        rep_config: Any,
        pub_config: Any,
        data: object,
        backend: Backend | None = None,
        server_id: str | None = None,
    ) -> None:
        self.backend = backend if backend is not None else WebSocketBackend()
        self.server_id = server_id or generate_server_id()
        self._version = 0
        self._state = stamp_version(to_state(data), self._version)
        self._lock = threading.Lock()
        with self._lock:
            self._reply = dumps(self._state)

        self._replier = self.backend.replier(rep_config, self.handle_request)
        try:
            self._publisher = self.backend.publisher(pub_config)
        except BaseException:
            self._replier.close()
            raise

        self._publisher.publish(BOOTSTRAP_MESSAGE)
        logger.debug("%s: sync server started at version %d", self.server_id, self._version)

    @property
    def version(self) -> int:
        return self._version

    @property
    def snapshot(self) -> str:
        """The cached full-state text served to requesters."""
        with self._lock:
            return self._reply

    def update(self, data: object) -> None:
        """Replace the data state and publish the difference.

        Nothing happens when *data* serializes to the current state: the
        version is not bumped and nothing is published.
        """
        candidate = stamp_version(to_state(data), self._version + 1)

        # The version bump alone always yields exactly one operation.
        ops = diff(self._state, candidate)
        if len(ops) <= 1:
            logger.debug("%s: update skipped, no change at version %d", self.server_id, self._version)
            return

        self._state = candidate
        self._version += 1
        with self._lock:
            self._reply = dumps(self._state)

        self._publisher.publish(dumps_patch(ops))
        logger.debug(
            "%s: published version %d (%d operations)", self.server_id, self._version, len(ops)
        )

    def handle_request(self, message: str) -> str:  # noqa: ARG002
        """Reply to any request with the full current state."""
        with self._lock:
            return self._reply

    def close(self) -> None:
        """Stop the replier and the publisher."""
        self._replier.close()
        self._publisher.close()

    def __enter__(self) -> SyncServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
