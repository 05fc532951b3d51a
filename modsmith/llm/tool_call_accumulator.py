"""
Reassembles streaming tool-call fragments into ``ToolInvocation`` objects.

Design goals:
  - Accumulate ``ToolCallDelta`` fragments keyed by ``index``.  Name parts
    and argument fragments are always appended, never overwritten.
  - ``finalize()`` JSON-parses each accumulated argument buffer.  A buffer
    that does not parse to a JSON object drops *that* call only; the failure
    is logged and kept in ``self.errors`` so the caller can report it.
"""

from __future__ import annotations

import json
import logging

from modsmith.llm.errors import CompletionError
from modsmith.llm.types import StreamEvent, ToolCallDelta, ToolInvocation
from modsmith.types import ErrorKind

logger = logging.getLogger(__name__)


class ToolCallAccumulator:
    """Buffers tool-call deltas and emits finished ``ToolInvocation`` objects."""

    def __init__(self) -> None:
        self._buf: dict[int, dict] = {}
        self.errors: list[CompletionError] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        """Number of calls accumulated but not yet finalized."""
        return len(self._buf)

    def consume(self, event: StreamEvent) -> None:
        """Feed one stream event.  Anything but a ``ToolCallDelta`` is ignored."""
        if not isinstance(event, ToolCallDelta):
            return

        buf = self._buf.setdefault(event.index, {"id": None, "name": "", "args": ""})

        if event.id and not buf["id"]:
            buf["id"] = event.id

        if event.name_part:
            buf["name"] += event.name_part

        if event.args_fragment:
            buf["args"] += event.args_fragment

    def finalize(self) -> list[ToolInvocation]:
        """
        Parse every accumulated call, in index order, and clear the buffers.

        Returns the calls whose arguments parsed; the rest are recorded in
        ``errors``.
        """
        calls: list[ToolInvocation] = []
        for idx in sorted(self._buf):
            call = self._finalize_one(idx, self._buf[idx])
            if call is not None:
                calls.append(call)
        self._buf.clear()
        return calls

    def reset(self) -> None:
        """Discard all accumulated state."""
        self._buf.clear()
        self.errors.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finalize_one(self, idx: int, buf: dict) -> ToolInvocation | None:
        name = buf["name"].strip()
        raw_args = buf["args"] or "{}"
        try:
            args = json.loads(raw_args)
        except (json.JSONDecodeError, ValueError) as exc:
            return self._drop(idx, name, f"arguments are not valid JSON: {exc}")

        if not isinstance(args, dict):
            return self._drop(
                idx, name, f"arguments must be a JSON object, got {type(args).__name__}"
            )

        return ToolInvocation(id=buf["id"] or f"call_{idx}", name=name, arguments=args)

    def _drop(self, idx: int, name: str, reason: str) -> None:
        message = f"tool call {name or '?'!r} (index {idx}) dropped: {reason}"
        logger.warning("%s", message)
        self.errors.append(CompletionError(ErrorKind.MALFORMED_RESPONSE, message))
        return None
