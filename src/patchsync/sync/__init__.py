"""Versioned state synchronization over JSON patches.

``SyncServer`` publishes patches of an authoritative state and serves full
snapshots; ``SyncClient`` mirrors that state and routes every change through
a ``PatchOpRouter``.
"""

from __future__ import annotations

from patchsync.core.patch import PATCH_OP_ANY, PatchOp
from patchsync.core.router import PatchOpRouter
from patchsync.sync.client import SyncClient
from patchsync.sync.server import BOOTSTRAP_MESSAGE, VERSION_KEY, SyncServer

__all__ = [
    "BOOTSTRAP_MESSAGE",
    "PATCH_OP_ANY",
    "PatchOp",
    "PatchOpRouter",
    "SyncClient",
    "SyncServer",
    "VERSION_KEY",
]
