"""Client-side mirror of a ``SyncServer`` state.

The client subscribes to the server's publisher, fetches a full snapshot
from its replier, then keeps the local copy current by applying published
patches.  Each applied operation is dispatched through a ``PatchOpRouter``
so the application can react to individual changes.

Patches are reconciled by version: a patch must bump the local version by
exactly one.  Older patches are dropped; a gap triggers a resync.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

from patchsync.core.patch import PatchConflict, PatchOp, apply_patch, loads_patch
from patchsync.core.router import PatchOpRouter
from patchsync.sync.server import BOOTSTRAP_MESSAGE, VERSION_KEY, VERSION_PATH
from patchsync.transport.base import Backend
from patchsync.transport.websocket import WebSocketBackend

logger = logging.getLogger(__name__)

SNAPSHOT_REQUEST = "snapshot"


class SyncClient:
    """Mirror a remote state and route its changes to callbacks.

    Args:
        req_config: Backend configuration of the server's replier.
        sub_config: Backend configuration of the server's publisher.
        router: Router receiving every applied operation except the
            version field.
        context: Value passed to router callbacks as ``data``.  Defaults to
            the freshly patched state.
        backend: Transport implementation (WebSocket by default).
        on_snapshot: Called with the state after every full snapshot.
    """

    def __init__(
        self,
        req_config: Any,
        sub_config: Any,
        router: PatchOpRouter,
        context: Any = None,
        backend: Backend | None = None,
        on_snapshot: Callable[[dict], None] | None = None,
    ) -> None:
        self.backend = backend if backend is not None else WebSocketBackend()
        self.router = router
        self.context = context
        self.on_snapshot = on_snapshot
        self.state: dict | None = None
        self.version: int | None = None
        self._lock = threading.RLock()

        self._requester = self.backend.requester(req_config)
        # Subscribe first so no patch published after the snapshot is missed.
        self._subscriber = self.backend.subscriber(sub_config, self._on_message)
        try:
            self.resync()
        except BaseException:
            self.close()
            raise

    def resync(self) -> None:
        """Replace the local state with a full snapshot from the server."""
        with self._lock:
            state = json.loads(self._requester.request(SNAPSHOT_REQUEST))
            self.state = state
            self.version = state[VERSION_KEY]
            logger.debug("snapshot received at version %d", self.version)
            if self.on_snapshot is not None:
                self.on_snapshot(state)

    def _on_message(self, message: str) -> None:
        with self._lock:
            if message == BOOTSTRAP_MESSAGE:
                logger.debug("bootstrap signal received")
                self.resync()
                return
            if self.state is None:
                self.resync()
                return

            ops = loads_patch(message)
            patch_version = _patch_version(ops)
            if patch_version is not None and patch_version <= self.version:
                logger.debug("dropping stale patch for version %d", patch_version)
                return
            if patch_version != self.version + 1:
                logger.warning(
                    "patch version %s does not follow local version %d, resyncing",
                    patch_version,
                    self.version,
                )
                self.resync()
                return

            try:
                state = apply_patch(self.state, ops)
            except PatchConflict as exc:
                logger.warning("patch for version %d does not apply (%s), resyncing", patch_version, exc)
                self.resync()
                return

            self.state = state
            self.version = patch_version
            data = self.context if self.context is not None else state
            for operation in ops:
                if operation["path"] == VERSION_PATH:
                    continue
                self.router.handle_op(
                    data,
                    operation["path"],
                    PatchOp.from_name(operation["op"]),
                    operation.get("value"),
                )

    def close(self) -> None:
        """Unsubscribe and release the request endpoint."""
        self._subscriber.close()
        self._requester.close()

    def __enter__(self) -> SyncClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _patch_version(ops: list[dict]) -> int | None:
    """Return the version a patch moves to, or ``None`` if it has none."""
    for operation in ops:
        if operation["path"] == VERSION_PATH and operation["op"] == "replace":
            value = operation.get("value")
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None
