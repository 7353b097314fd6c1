"""Shared test fixtures."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import pytest
from click.testing import CliRunner

from patchsync.transport.local import LocalBackend, LocalConfig

REP = LocalConfig("rep")
PUB = LocalConfig("pub")


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll *predicate* until it returns ``True`` or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class Recorder:
    """Thread-safe list of received messages, usable as a subscriber handler."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.messages: list[str] = []

    def __call__(self, message: str) -> None:
        with self._lock:
            self.messages.append(message)

    def snapshot(self) -> list[str]:
        with self._lock:
            return list(self.messages)


@pytest.fixture()
def backend() -> LocalBackend:
    """Return a fresh in-process transport backend."""
    return LocalBackend()


@pytest.fixture()
def published(backend: LocalBackend) -> Recorder:
    """Subscribe a recorder to the ``pub`` endpoint before any server starts."""
    recorder = Recorder()
    backend.subscriber(PUB, recorder)
    return recorder


@pytest.fixture()
def make_server(backend: LocalBackend):
    """Factory fixture: start a SyncServer on the local backend.

    Usage::

        server = make_server({"count": 0})
    """
    from patchsync.sync.server import SyncServer

    servers = []

    def _make(data: object):
        server = SyncServer(REP, PUB, data, backend=backend)
        servers.append(server)
        return server

    yield _make

    for server in servers:
        server.close()


@pytest.fixture()
def cli_runner() -> CliRunner:
    """Return a Click CliRunner for invoking CLI commands."""
    return CliRunner()


@pytest.fixture()
def invoke(cli_runner: CliRunner, tmp_path):
    """Return a helper that invokes CLI commands with PATCHSYNC_CONFIG in tmp_path.

    Usage::

        result = invoke("config", "show", "--json")
    """
    from patchsync.cli.main import cli

    env = {"PATCHSYNC_CONFIG": str(tmp_path / "patchsync.json")}

    def _invoke(*args: str, **kwargs):
        return cli_runner.invoke(cli, list(args), env=env, **kwargs)

    return _invoke
