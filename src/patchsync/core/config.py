"""Sync configuration: endpoint addresses and server identity.

Stored as JSON, by default in ``./patchsync.json`` (override with the
``PATCHSYNC_CONFIG`` environment variable).
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import TypedDict

from patchsync.core.ids import generate_server_id

CONFIG_ENV = "PATCHSYNC_CONFIG"
DEFAULT_CONFIG_FILE = "patchsync.json"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_REPLIER_PORT = 9800
DEFAULT_PUBLISHER_PORT = 9801

ENDPOINT_ROLES: tuple[str, ...] = ("replier", "publisher")


class EndpointConfig(TypedDict):
    host: str
    port: int


class SyncConfig(TypedDict, total=False):
    server_id: str
    replier: EndpointConfig
    publisher: EndpointConfig


def default_config_path() -> Path:
    """Return the config path from ``PATCHSYNC_CONFIG`` or the cwd default."""
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILE


def default_sync_config() -> SyncConfig:
    """Return default sync configuration with a fresh server ID."""
    return {
        "server_id": generate_server_id(),
        "replier": {"host": DEFAULT_HOST, "port": DEFAULT_REPLIER_PORT},
        "publisher": {"host": DEFAULT_HOST, "port": DEFAULT_PUBLISHER_PORT},
    }


def load_sync_config(path: Path) -> SyncConfig:
    """Load sync configuration, filling anything missing with defaults.

    Endpoint settings are merged per field, so a file containing only
    ``{"publisher": {"port": 9900}}`` keeps the default publisher host.

    Raises:
        ValueError: If the file is not valid JSON or holds an invalid
            endpoint.
    """
    config = default_sync_config()
    if not path.exists():
        return config

    data = json.loads(path.read_text())
    if not isinstance(data, dict):
        raise ValueError(f"Config file must hold a JSON object: {path}")

    if data.get("server_id"):
        config["server_id"] = str(data["server_id"])
    for role in ENDPOINT_ROLES:
        override = data.get(role)
        if override is None:
            continue
        if not isinstance(override, dict):
            raise ValueError(f"'{role}' must be an object with host and port")
        endpoint = {**config[role], **override}
        if not validate_endpoint(endpoint):
            raise ValueError(f"Invalid {role} endpoint: {override!r}")
        config[role] = {"host": endpoint["host"], "port": endpoint["port"]}
    return config


def serialize_config(config: SyncConfig) -> str:
    """Serialize config to canonical JSON."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def save_sync_config(path: Path, config: SyncConfig) -> None:
    """Save sync configuration, replacing any existing file atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(serialize_config(config))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def validate_endpoint(endpoint: object) -> bool:
    """Return ``True`` if *endpoint* has a non-empty host and a valid port.

    Port 0 is accepted and means "any free port".
    """
    if not isinstance(endpoint, dict):
        return False
    host = endpoint.get("host")
    port = endpoint.get("port")
    if not isinstance(host, str) or not host:
        return False
    if not isinstance(port, int) or isinstance(port, bool):
        return False
    return 0 <= port <= 65535
