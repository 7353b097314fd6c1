"""Serialization of domain values and typed decoding of patch values.

Domain values are turned into plain JSON state with :func:`to_state`.
Anything exposing a ``to_json()`` method, a dataclass instance, or a mapping
is accepted; the result must be a JSON object.

Patch values are decoded into a route's expected type with
:func:`from_json`.  Supported types: ``object``/``Any`` (no decoding), the
JSON scalar and container types, dataclasses, and any class with a
``from_json`` classmethod.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from typing import Any


class DecodeError(ValueError):
    """Raised when a JSON value cannot be decoded into the requested type."""


_PLAIN_TYPES: tuple[type, ...] = (bool, int, float, str, list, dict)


def dumps(value: object) -> str:
    """Serialize a JSON value to compact text with sorted keys."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    )


def to_state(value: object) -> dict:
    """Serialize a domain value into a fresh JSON object.

    The result never shares structure with *value*.

    Raises:
        TypeError: If *value* is not serializable (including NaN and
            infinite floats) or does not serialize to a JSON object.
    """
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        raw = to_json()
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        raw = dataclasses.asdict(value)
    elif isinstance(value, Mapping):
        raw = dict(value)
    else:
        raw = value

    try:
        state = json.loads(json.dumps(raw, allow_nan=False))
    except ValueError as exc:
        # NaN and Infinity have no JSON form.
        raise TypeError(f"Domain value is not valid JSON: {exc}") from None
    if not isinstance(state, dict):
        raise TypeError(
            f"Domain value must serialize to a JSON object, got {type(state).__name__}"
        )
    return state


def is_decodable(value_type: Any) -> bool:
    """Return ``True`` if :func:`from_json` knows how to produce *value_type*."""
    return (
        value_type is object
        or value_type is Any
        or value_type in _PLAIN_TYPES
        or callable(getattr(value_type, "from_json", None))
        or (isinstance(value_type, type) and dataclasses.is_dataclass(value_type))
    )


def from_json(value: Any, value_type: Any) -> Any:
    """Decode a JSON value into *value_type*.

    Raises:
        DecodeError: If *value* does not have the expected shape.
    """
    if value_type is object or value_type is Any:
        return value

    decoder = getattr(value_type, "from_json", None)
    if callable(decoder):
        try:
            return decoder(value)
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(f"Cannot decode {value!r} as {_type_name(value_type)}: {exc}") from exc

    if isinstance(value_type, type) and dataclasses.is_dataclass(value_type):
        if not isinstance(value, dict):
            raise DecodeError(f"Expected object for {_type_name(value_type)}, got {_json_name(value)}")
        names = {f.name for f in dataclasses.fields(value_type) if f.init}
        try:
            return value_type(**{k: v for k, v in value.items() if k in names})
        except Exception as exc:
            raise DecodeError(f"Cannot decode {value!r} as {_type_name(value_type)}: {exc}") from exc

    if value_type is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif value_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif value_type in _PLAIN_TYPES:
        if isinstance(value, value_type):
            return value
    else:
        raise DecodeError(f"Unsupported value type: {value_type!r}")

    raise DecodeError(f"Expected {_type_name(value_type)}, got {_json_name(value)}")


def default_value(value_type: Any) -> Any:
    """Return the placeholder passed to callbacks for ``remove`` operations.

    This is ``value_type()`` when the type can be constructed without
    arguments, otherwise ``None``.
    """
    if value_type is object or value_type is Any:
        return None
    try:
        return value_type()
    except TypeError:
        return None


def _type_name(value_type: Any) -> str:
    return getattr(value_type, "__name__", repr(value_type))


def _json_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__
