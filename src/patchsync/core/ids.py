"""ULID-based identifiers."""

from __future__ import annotations

import re

from ulid import ULID

# Crockford Base32 alphabet: 0-9 A-Z excluding I, L, O, U
_SERVER_ID_RE = re.compile(r"^srv_[0-9A-HJKMNP-TV-Z]{26}$")


def generate_server_id() -> str:
    """Return a new server identifier, e.g. ``srv_01HV...``."""
    return f"srv_{ULID()}"


def validate_server_id(s: str) -> bool:
    """Return ``True`` if *s* is a well-formed server identifier."""
    return bool(_SERVER_ID_RE.match(s))
