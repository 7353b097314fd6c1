"""JSON patch operation router.

Assigns callbacks to path patterns and operation sets, then dispatches
incoming patch operations to every matching callback.  Clients use it to
react to individual changes of a mirrored state.

Usage::

    router = PatchOpRouter()

    @router.route(r"/users/(\\w+)/name", PatchOp.ADD | PatchOp.REPLACE, str)
    def on_name(data, match, op, name):
        print(match.group(1), "is now called", name)

    router.handle_op(data, "/users/alice/name", PatchOp.REPLACE, "Alice")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from typing import Any, NamedTuple

from patchsync.core.codec import DecodeError, default_value, from_json, is_decodable
from patchsync.core.patch import PATCH_OP_ANY, PatchOp

logger = logging.getLogger(__name__)

# (data, match, op, typed_value)
PatchOpCallback = Callable[[Any, "re.Match[str]", PatchOp, Any], None]

_SINGLE_OPS = frozenset({PatchOp.ADD, PatchOp.REMOVE, PatchOp.REPLACE})


class _Route(NamedTuple):
    pattern: re.Pattern[str]
    ops: int
    handler: Callable[[Any, "re.Match[str]", PatchOp, Any], None]


class PatchOpRouter:
    """Dispatch patch operations to callbacks by path pattern and operation.

    Routes are kept in registration order and are never removed.  Dispatch
    only reads the route list, so ``handle_op`` may be called from several
    threads once registration is complete.
    """

    def __init__(self) -> None:
        self._routes: list[_Route] = []

    def __len__(self) -> int:
        return len(self._routes)

    def add_callback(
        self,
        path_re: str,
        ops: int,
        callback: PatchOpCallback,
        value_type: Any = object,
    ) -> None:
        """Register *callback* for paths fully matching *path_re*.

        Args:
            path_re: Regular expression matched against the whole path.  Its
                groups are available through the match passed to *callback*.
            ops: Set of operations to react to (e.g. ``PATCH_OP_ANY``).
            callback: Called as ``callback(data, match, op, value)``.
            value_type: Type the operation value is decoded into before the
                call.  For ``remove`` operations *callback* receives
                ``value_type()`` instead (or ``None``).

        Raises:
            ValueError: If *ops* is empty or has unknown bits.
            TypeError: If *value_type* cannot be decoded into.
            re.error: If *path_re* is not a valid regular expression.
        """
        ops = int(ops)
        if not ops or ops & ~int(PATCH_OP_ANY):
            raise ValueError(f"Invalid patch operation set: {ops}")
        if not is_decodable(value_type):
            raise TypeError(f"Cannot decode patch values into {value_type!r}")
        pattern = re.compile(path_re)

        def handler(data: Any, match: re.Match[str], op: PatchOp, value: Any) -> None:
            if op == PatchOp.REMOVE:
                typed = default_value(value_type)
            else:
                try:
                    typed = from_json(value, value_type)
                except DecodeError as exc:
                    logger.warning(
                        "failed to construct JSON patch operation value at %s (route %r): %s",
                        match.string,
                        pattern.pattern,
                        exc,
                    )
                    return
            callback(data, match, op, typed)

        self._routes.append(_Route(pattern, ops, handler))

    def route(
        self,
        path_re: str,
        ops: int = PATCH_OP_ANY,
        value_type: Any = object,
    ) -> Callable[[PatchOpCallback], PatchOpCallback]:
        """Decorator form of :meth:`add_callback`."""

        def decorator(callback: PatchOpCallback) -> PatchOpCallback:
            self.add_callback(path_re, ops, callback, value_type)
            return callback

        return decorator

    def handle_op(self, data: Any, path: str, op: PatchOp, value: Any = None) -> None:
        """Call every callback matching *path* and *op*, in registration order.

        Args:
            data: Context passed through to callbacks (typically the
                mirrored state).
            path: JSON pointer of the operation.
            op: A single patch operation.
            value: Raw JSON value of the operation (ignored for ``remove``).

        Raises:
            ValueError: If *op* is not a single operation.

        Exceptions raised by callbacks propagate to the caller.
        """
        op = PatchOp(op)
        if op not in _SINGLE_OPS:
            raise ValueError(f"Expected a single patch operation, got {op!r}")
        for route in self._routes:
            if not route.ops & op:
                continue
            match = route.pattern.fullmatch(path)
            if match is not None:
                route.handler(data, match, op, value)

    def handle_patch(self, data: Any, ops: Iterable[dict]) -> None:
        """Dispatch each operation of a parsed patch document in order.

        Raises:
            ValueError: On move/copy/test operations.
        """
        for operation in ops:
            self.handle_op(
                data,
                operation["path"],
                PatchOp.from_name(operation["op"]),
                operation.get("value"),
            )
