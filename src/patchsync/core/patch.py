"""JSON Patch (RFC 6902) primitives: operation kinds, structural diff, apply.

The diff emits only ``add``, ``remove`` and ``replace`` operations so that
every operation it produces can be dispatched by a ``PatchOpRouter``.
Application is delegated to the ``jsonpatch`` library.
"""

from __future__ import annotations

import enum
import json

import jsonpatch
from jsonpointer import JsonPointer, JsonPointerException

from patchsync.core.codec import dumps


class PatchOp(enum.IntFlag):
    """JSON patch operations.

    Members are bit flags, so an operation set is written as
    ``PatchOp.ADD | PatchOp.REPLACE``.
    """

    ADD = 1
    REMOVE = 2
    REPLACE = 4

    @classmethod
    def from_name(cls, name: str) -> PatchOp:
        """Return the operation for an RFC 6902 ``op`` string (e.g. ``"add"``).

        Raises:
            ValueError: If *name* is not one of add/remove/replace.
        """
        try:
            return _OPS_BY_NAME[name]
        except KeyError:
            raise ValueError(f"Unsupported patch operation: '{name}'") from None

    @property
    def op_name(self) -> str:
        """The RFC 6902 ``op`` string of a single operation."""
        return _NAMES_BY_OP[self]


# Any of the three operations.
PATCH_OP_ANY = PatchOp.ADD | PatchOp.REMOVE | PatchOp.REPLACE

_OPS_BY_NAME: dict[str, PatchOp] = {
    "add": PatchOp.ADD,
    "remove": PatchOp.REMOVE,
    "replace": PatchOp.REPLACE,
}
_NAMES_BY_OP: dict[PatchOp, str] = {op: name for name, op in _OPS_BY_NAME.items()}


class PatchConflict(ValueError):
    """Raised when a patch cannot be applied to a document."""


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


def diff(source: object, target: object) -> list[dict]:
    """Return the JSON patch operations that turn *source* into *target*.

    Objects are compared key by key (shared keys first in source order,
    then additions).  Arrays are compared over their common prefix, surplus
    source elements are removed from the highest index down, and surplus
    target elements are appended.  Anything else that differs, including a
    change of JSON type, becomes a single ``replace``.  Integers and floats
    are distinct types, so ``1`` and ``1.0`` differ.

    Equal values produce an empty list.
    """
    ops: list[dict] = []
    _diff(source, target, [], ops)
    return ops


def _diff(source: object, target: object, parts: list[str], ops: list[dict]) -> None:
    source_type = _json_type(source)
    if source_type != _json_type(target):
        ops.append({"op": "replace", "path": _pointer(parts), "value": target})

    elif source_type == "object":
        for key, value in source.items():
            if key in target:
                _diff(value, target[key], [*parts, key], ops)
            else:
                ops.append({"op": "remove", "path": _pointer([*parts, key])})
        for key, value in target.items():
            if key not in source:
                ops.append({"op": "add", "path": _pointer([*parts, key]), "value": value})

    elif source_type == "array":
        common = min(len(source), len(target))
        for i in range(common):
            _diff(source[i], target[i], [*parts, str(i)], ops)
        for i in range(len(source) - 1, common - 1, -1):
            ops.append({"op": "remove", "path": _pointer([*parts, str(i)])})
        for value in target[common:]:
            ops.append({"op": "add", "path": _pointer([*parts, "-"]), "value": value})

    elif source != target:
        ops.append({"op": "replace", "path": _pointer(parts), "value": target})


def _json_type(value: object) -> str:
    # bool is checked before int: True == 1 in Python but not in JSON.
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return "null"


def _pointer(parts: list[str]) -> str:
    return JsonPointer.from_parts(parts).path


# ---------------------------------------------------------------------------
# Wire format and application
# ---------------------------------------------------------------------------


def dumps_patch(ops: list[dict]) -> str:
    """Serialize patch operations to the text published to subscribers."""
    return dumps(ops)


def loads_patch(text: str | bytes) -> list[dict]:
    """Parse a patch document.

    Raises:
        ValueError: If *text* is not a JSON array of operation objects.
    """
    ops = json.loads(text)
    if not isinstance(ops, list):
        raise ValueError("Patch document must be a JSON array")
    for operation in ops:
        if not isinstance(operation, dict) or "op" not in operation or "path" not in operation:
            raise ValueError(f"Malformed patch operation: {operation!r}")
    return ops


def apply_patch(doc: dict, ops: list[dict]) -> dict:
    """Return a copy of *doc* with *ops* applied.  *doc* is left untouched.

    Raises:
        PatchConflict: If an operation does not fit the document (missing
            path, bad array index, ...).
    """
    try:
        return jsonpatch.apply_patch(doc, ops, in_place=False)
    except (jsonpatch.JsonPatchException, JsonPointerException) as exc:
        raise PatchConflict(str(exc)) from exc
