"""CLI entry point."""

from __future__ import annotations

import logging

import click


@click.group()
@click.option("-v", "--verbose", count=True, help="Log more (repeat for debug output).")
def cli(verbose: int) -> None:
    """patchsync: keep observers in sync with a JSON state via JSON patches."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def main() -> None:
    cli()


# ---------------------------------------------------------------------------
# Register command modules (must be after cli group is defined)
# ---------------------------------------------------------------------------
from patchsync.cli import config_cmds as _config_cmds  # noqa: E402, F401
from patchsync.cli import sync_cmds as _sync_cmds  # noqa: E402, F401

if __name__ == "__main__":
    main()
