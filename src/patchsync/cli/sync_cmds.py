"""CLI commands for serving and observing a synchronized state."""

from __future__ import annotations

import json
import re
import threading
import time
from pathlib import Path

import click

from patchsync.cli.helpers import output_error, read_source, websocket_config
from patchsync.cli.main import cli
from patchsync.core.config import default_config_path, load_sync_config
from patchsync.core.patch import PATCH_OP_ANY, PatchOp
from patchsync.core.router import PatchOpRouter
from patchsync.sync.client import SNAPSHOT_REQUEST, SyncClient
from patchsync.sync.server import SyncServer
from patchsync.transport.base import TransportError
from patchsync.transport.websocket import WebSocketBackend

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: $PATCHSYNC_CONFIG or ./patchsync.json).",
)
_rep_host_option = click.option("--rep-host", default=None, help="Replier host.")
_rep_port_option = click.option("--rep-port", type=int, default=None, help="Replier port.")
_pub_host_option = click.option("--pub-host", default=None, help="Publisher host.")
_pub_port_option = click.option("--pub-port", type=int, default=None, help="Publisher port.")


def _load_config(config_path: Path | None) -> dict:
    try:
        return load_sync_config(config_path or default_config_path())
    except ValueError as exc:
        raise click.ClickException(f"Invalid config: {exc}") from None


def poll_source(server: SyncServer, source: Path, last_mtime: int) -> int:
    """Push *source* to *server* if it changed since *last_mtime*.

    Returns the modification time seen, to pass to the next call.  Invalid
    JSON and a missing or unreadable file are reported and skipped; the
    server keeps its current state.
    """
    try:
        mtime = source.stat().st_mtime_ns
    except OSError as exc:
        click.echo(f"patchsync: cannot read {source}: {exc}", err=True)
        return last_mtime
    if mtime == last_mtime:
        return mtime
    try:
        data = read_source(source)
    except OSError as exc:
        click.echo(f"patchsync: cannot read {source}: {exc}", err=True)
        return last_mtime
    except ValueError as exc:
        click.echo(f"patchsync: skipping invalid {source}: {exc}", err=True)
        return mtime

    before = server.version
    server.update(data)
    if server.version != before:
        click.echo(f"patchsync: published version {server.version}", err=True)
    return mtime


@cli.command()
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_config_option
@_rep_host_option
@_rep_port_option
@_pub_host_option
@_pub_port_option
@click.option(
    "--interval",
    type=float,
    default=1.0,
    show_default=True,
    help="Seconds between checks of SOURCE for changes.",
)
def serve(
    source: Path,
    config_path: Path | None,
    rep_host: str | None,
    rep_port: int | None,
    pub_host: str | None,
    pub_port: int | None,
    interval: float,
) -> None:
    """Serve the JSON object in SOURCE and publish a patch whenever it changes."""
    config = _load_config(config_path)
    rep_config = websocket_config(config["replier"], rep_host, rep_port)
    pub_config = websocket_config(config["publisher"], pub_host, pub_port)

    try:
        data = read_source(source)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from None

    try:
        server = SyncServer(
            rep_config,
            pub_config,
            data,
            backend=WebSocketBackend(),
            server_id=config["server_id"],
        )
    except TransportError as exc:
        raise click.ClickException(str(exc)) from None

    click.echo(
        f"patchsync: serving {source} as {config['server_id']} "
        f"(replier {rep_config.url}, publisher {pub_config.url})",
        err=True,
    )
    mtime = source.stat().st_mtime_ns
    try:
        while True:
            time.sleep(interval)
            mtime = poll_source(server, source, mtime)
    except KeyboardInterrupt:
        click.echo("\npatchsync: stopped.", err=True)
    finally:
        server.close()


@cli.command()
@_config_option
@click.option("--host", default=None, help="Replier host.")
@click.option("--port", type=int, default=None, help="Replier port.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def snapshot(config_path: Path | None, host: str | None, port: int | None, as_json: bool) -> None:
    """Fetch and print the full current state from a server."""
    config = _load_config(config_path)
    rep_config = websocket_config(config["replier"], host, port)

    requester = WebSocketBackend().requester(rep_config)
    try:
        reply = requester.request(SNAPSHOT_REQUEST)
    except TransportError as exc:
        output_error(str(exc), "TRANSPORT_ERROR", as_json)
    finally:
        requester.close()

    if as_json:
        click.echo(json.dumps({"ok": True, "data": json.loads(reply)}, sort_keys=True, indent=2))
        return
    click.echo(reply)


def format_op(op: PatchOp, path: str, value: object) -> str:
    """Render one routed operation as a ``watch`` output line."""
    if op == PatchOp.REMOVE:
        return f"{op.op_name} {path}"
    return f"{op.op_name} {path} {json.dumps(value, sort_keys=True)}"


@cli.command()
@click.argument("pattern", default=".*")
@_config_option
@_rep_host_option
@_rep_port_option
@_pub_host_option
@_pub_port_option
def watch(
    pattern: str,
    config_path: Path | None,
    rep_host: str | None,
    rep_port: int | None,
    pub_host: str | None,
    pub_port: int | None,
) -> None:
    """Mirror a server's state and print every change whose path matches PATTERN."""
    config = _load_config(config_path)
    rep_config = websocket_config(config["replier"], rep_host, rep_port)
    pub_config = websocket_config(config["publisher"], pub_host, pub_port)

    router = PatchOpRouter()

    def _print_op(data, match, op, value) -> None:  # noqa: ARG001
        click.echo(format_op(op, match.string, value))

    try:
        router.add_callback(pattern, PATCH_OP_ANY, _print_op)
    except re.error as exc:
        raise click.ClickException(f"Invalid pattern '{pattern}': {exc}") from None

    def _on_snapshot(state: dict) -> None:
        click.echo(f"patchsync: snapshot received ({len(state)} top-level keys)", err=True)

    try:
        client = SyncClient(
            rep_config,
            pub_config,
            router,
            backend=WebSocketBackend(),
            on_snapshot=_on_snapshot,
        )
    except TransportError as exc:
        raise click.ClickException(str(exc)) from None

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        click.echo("\npatchsync: disconnected.", err=True)
    finally:
        client.close()
