"""Tests for sync/server.py: versioning, the diff commit rule and publishing."""

from __future__ import annotations

import json
import logging
import math
import threading

import pytest

from patchsync.core.codec import dumps
from patchsync.core.ids import validate_server_id
from patchsync.core.patch import apply_patch, loads_patch
from patchsync.sync.server import BOOTSTRAP_MESSAGE, VERSION_KEY, SyncServer
from patchsync.transport.base import TransportError
from tests.conftest import PUB, REP


def _patches(recorder) -> list[list[dict]]:
    """Return the non-bootstrap messages a recorder saw, parsed."""
    return [loads_patch(m) for m in recorder.snapshot() if m != BOOTSTRAP_MESSAGE]


class TestConstruction:
    def test_bootstrap_published_once(self, published, make_server) -> None:
        make_server({"count": 0})
        assert published.snapshot() == [BOOTSTRAP_MESSAGE]

    def test_reply_is_initial_state_at_version_zero(self, backend, make_server) -> None:
        make_server({"count": 0, "name": "demo"})
        reply = backend.requester(REP).request("anything at all")
        assert json.loads(reply) == {"count": 0, "name": "demo", VERSION_KEY: 0}

    def test_reply_ignores_request_payload(self, backend, make_server) -> None:
        make_server({"count": 0})
        requester = backend.requester(REP)
        assert requester.request("") == requester.request('{"give": "me"}')

    def test_snapshot_text_is_canonical(self, make_server) -> None:
        server = make_server({"b": 1, "a": 2})
        assert server.snapshot == dumps({"a": 2, "b": 1, VERSION_KEY: 0})
        assert server.version == 0

    def test_non_object_value_rejected(self, backend) -> None:
        with pytest.raises(TypeError):
            SyncServer(REP, PUB, [1, 2, 3], backend=backend)

    def test_replier_released_when_publisher_fails(self, backend) -> None:
        backend.publisher(PUB)
        with pytest.raises(TransportError):
            SyncServer(REP, PUB, {"a": 1}, backend=backend)
        # The replier name is free again.
        backend.replier(REP, lambda message: message).close()


class TestUpdate:
    def test_count_scenario(self, backend, published, make_server) -> None:
        server = make_server({"count": 0})

        server.update({"count": 1})

        ops = _patches(published)[-1]
        domain_ops = [op for op in ops if op["path"] != f"/{VERSION_KEY}"]
        assert domain_ops == [{"op": "replace", "path": "/count", "value": 1}]
        assert {"op": "replace", "path": f"/{VERSION_KEY}", "value": 1} in ops
        assert server.version == 1
        assert json.loads(backend.requester(REP).request("")) == {"count": 1, VERSION_KEY: 1}

    def test_unchanged_value_is_a_no_op(self, published, make_server) -> None:
        server = make_server({"count": 0, "items": [1, 2]})
        before = server.snapshot

        server.update({"count": 0, "items": [1, 2]})

        assert server.version == 0
        assert server.snapshot == before
        assert published.snapshot() == [BOOTSTRAP_MESSAGE]

    def test_version_increases_by_one_per_commit(self, make_server) -> None:
        server = make_server({"count": 0})
        versions = []
        for value in [1, 1, 2, 2, 2, 3]:
            server.update({"count": value})
            versions.append(json.loads(server.snapshot)[VERSION_KEY])
        assert versions == [1, 1, 2, 2, 2, 3]
        assert server.version == 3

    def test_no_further_bootstrap_messages(self, published, make_server) -> None:
        server = make_server({"count": 0})
        for value in range(1, 5):
            server.update({"count": value})
        messages = published.snapshot()
        assert messages.count(BOOTSTRAP_MESSAGE) == 1
        assert messages[0] == BOOTSTRAP_MESSAGE
        assert len(messages) == 5

    def test_published_diff_reproduces_new_state(self, published, make_server) -> None:
        server = make_server({"count": 0, "tags": ["a", "b"], "meta": {"owner": "x"}})
        values = [
            {"count": 1, "tags": ["a"], "meta": {"owner": "x", "team": "y"}},
            {"count": 1, "tags": ["a", "c", "d"], "meta": {}},
            {"total": 9},
        ]
        for value in values:
            before = json.loads(server.snapshot)
            server.update(value)
            after = json.loads(server.snapshot)
            assert apply_patch(before, _patches(published)[-1]) == after

    def test_domain_value_cannot_override_version(self, make_server) -> None:
        server = make_server({VERSION_KEY: 99, "a": 1})
        assert json.loads(server.snapshot)[VERSION_KEY] == 0

    def test_non_object_update_leaves_state_untouched(self, make_server) -> None:
        server = make_server({"count": 0})
        before = server.snapshot
        with pytest.raises(TypeError):
            server.update("not an object")
        assert server.snapshot == before
        assert server.version == 0

    def test_nan_rejected_and_state_kept(self, published, make_server) -> None:
        server = make_server({"x": 1.5})
        before = server.snapshot

        for _ in range(2):
            with pytest.raises(TypeError):
                server.update({"x": math.nan})

        assert server.version == 0
        assert server.snapshot == before
        assert published.snapshot() == [BOOTSTRAP_MESSAGE]

    def test_nan_initial_value_rejected(self, backend) -> None:
        with pytest.raises(TypeError):
            SyncServer(REP, PUB, {"x": math.inf}, backend=backend)

    def test_integer_to_float_change_is_committed(self, published, make_server) -> None:
        server = make_server({"x": 1})

        server.update({"x": 1.0})

        assert server.version == 1
        assert json.loads(server.snapshot) == {"x": 1.0, VERSION_KEY: 1}
        assert {"op": "replace", "path": "/x", "value": 1.0} in _patches(published)[-1]

        server.update({"x": 1.0})
        assert server.version == 1


class TestDiffSizeThreshold:
    """Only diffs of more than one operation are committed."""

    def test_single_operation_diff_discarded(self, monkeypatch, published, make_server) -> None:
        server = make_server({"count": 0})
        monkeypatch.setattr(
            "patchsync.sync.server.diff",
            lambda source, target: [{"op": "replace", "path": "/count", "value": 1}],
        )

        server.update({"count": 1})

        assert server.version == 0
        assert json.loads(server.snapshot) == {"count": 0, VERSION_KEY: 0}
        assert published.snapshot() == [BOOTSTRAP_MESSAGE]

    def test_two_operation_diff_committed(self, published, make_server) -> None:
        server = make_server({"count": 0})

        server.update({"count": 5})

        assert len(_patches(published)[-1]) == 2
        assert server.version == 1

    def test_version_only_diff_has_one_operation(self, make_server, monkeypatch) -> None:
        from patchsync.core import patch

        sizes: list[int] = []

        def _measuring_diff(source, target):
            ops = patch.diff(source, target)
            sizes.append(len(ops))
            return ops

        server = make_server({"count": 0})
        monkeypatch.setattr("patchsync.sync.server.diff", _measuring_diff)
        server.update({"count": 0})
        server.update({"count": 1})
        assert sizes == [1, 2]


class TestConcurrentRequests:
    def test_replies_are_always_consistent_snapshots(self, backend, make_server) -> None:
        server = make_server({"count": 0})
        requester = backend.requester(REP)
        stop = threading.Event()
        errors: list[str] = []
        seen_versions: list[int] = []

        def _reader() -> None:
            last = 0
            while True:
                done = stop.is_set()
                state = json.loads(requester.request(""))
                version = state[VERSION_KEY]
                if state["count"] != version:
                    errors.append(f"count {state['count']} at version {version}")
                if version < last:
                    errors.append(f"version went back from {last} to {version}")
                last = version
                seen_versions.append(version)
                if done:
                    return

        readers = [threading.Thread(target=_reader) for _ in range(4)]
        for t in readers:
            t.start()
        for value in range(1, 201):
            server.update({"count": value})
        stop.set()
        for t in readers:
            t.join(timeout=10)

        assert errors == []
        assert seen_versions
        assert json.loads(requester.request(""))[VERSION_KEY] == 200


class TestServerId:
    def test_default_id_is_generated(self, make_server) -> None:
        server = make_server({"a": 1})
        assert validate_server_id(server.server_id)

    def test_id_tags_log_lines(self, backend, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger="patchsync.sync.server"):
            with SyncServer(REP, PUB, {"a": 1}, backend=backend, server_id="srv_demo") as server:
                server.update({"a": 2})
                server.update({"a": 2})

        messages = [r.getMessage() for r in caplog.records if r.name == "patchsync.sync.server"]
        assert len(messages) == 3
        assert all(m.startswith("srv_demo: ") for m in messages)
        assert "published version 1" in messages[1]


class TestLifecycle:
    def test_close_releases_endpoints(self, backend) -> None:
        server = SyncServer(REP, PUB, {"a": 1}, backend=backend)
        server.close()

        with pytest.raises(TransportError):
            backend.requester(REP).request("")
        SyncServer(REP, PUB, {"a": 2}, backend=backend).close()

    def test_context_manager(self, backend) -> None:
        with SyncServer(REP, PUB, {"a": 1}, backend=backend) as server:
            server.update({"a": 2})
            assert json.loads(backend.requester(REP).request(""))["a"] == 2
        with pytest.raises(TransportError):
            backend.requester(REP).request("")
