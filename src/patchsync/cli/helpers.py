"""Shared CLI helpers and output utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

import click

from patchsync.core.config import EndpointConfig
from patchsync.transport.websocket import WebSocketConfig


def json_envelope(ok: bool, *, data: object = None, error: object = None) -> str:
    """Build a structured JSON output envelope."""
    result: dict = {"ok": ok}
    if data is not None:
        result["data"] = data
    if error is not None:
        result["error"] = error
    return json.dumps(result, sort_keys=True, indent=2) + "\n"


def output_error(message: str, code: str, is_json: bool, exit_code: int = 1) -> NoReturn:
    """Print error and exit. JSON errors go to stdout; human errors to stderr."""
    if is_json:
        click.echo(json_envelope(False, error={"code": code, "message": message}))
    else:
        click.echo(f"Error: {message}", err=True)
    raise SystemExit(exit_code)


def websocket_config(endpoint: EndpointConfig, host: str | None, port: int | None) -> WebSocketConfig:
    """Build a WebSocket config from a config-file endpoint and CLI overrides."""
    return WebSocketConfig(
        host=host if host is not None else endpoint["host"],
        port=port if port is not None else endpoint["port"],
    )


def read_source(path: Path) -> dict:
    """Read the JSON object served from *path*.

    Raises:
        ValueError: If the file does not hold a JSON object.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data
