"""CLI commands for the sync configuration file."""

from __future__ import annotations

from pathlib import Path

import click

from patchsync.cli.helpers import json_envelope, output_error
from patchsync.cli.main import cli
from patchsync.core.config import (
    ENDPOINT_ROLES,
    default_config_path,
    default_sync_config,
    load_sync_config,
    save_sync_config,
)


@cli.group()
def config() -> None:
    """Create and inspect the sync configuration."""


@config.command("init")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file to create (default: $PATCHSYNC_CONFIG or ./patchsync.json).",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file.")
def config_init(config_path: Path | None, force: bool) -> None:
    """Write a default configuration with a new server ID."""
    path = config_path or default_config_path()
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite).")

    config_data = default_sync_config()
    save_sync_config(path, config_data)
    click.echo(f"Wrote {path} (server {config_data['server_id']})")


@config.command("show")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file to read (default: $PATCHSYNC_CONFIG or ./patchsync.json).",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def config_show(config_path: Path | None, as_json: bool) -> None:
    """Show the effective configuration (file values over defaults)."""
    path = config_path or default_config_path()
    try:
        config_data = load_sync_config(path)
    except ValueError as exc:
        output_error(f"Invalid config {path}: {exc}", "INVALID_CONFIG", as_json)

    if as_json:
        click.echo(json_envelope(True, data=config_data), nl=False)
        return

    source = str(path) if path.exists() else "defaults (no config file)"
    click.echo(f"Source: {source}")
    click.echo(f"Server ID: {config_data['server_id']}")
    for role in ENDPOINT_ROLES:
        endpoint = config_data[role]
        click.echo(f"{role.capitalize()}: ws://{endpoint['host']}:{endpoint['port']}")
