"""Decoding of raw event-stream frames into mutation events."""

from __future__ import annotations

import json
import logging
from typing import Any

from wirekvs.errors import MalformedFrameError
from wirekvs.sync.protocol import EventKind, MutationEvent

logger = logging.getLogger(__name__)

_KIND_ALIASES: dict[str, EventKind] = {
    "set": EventKind.SET,
    "put": EventKind.SET,
    "update": EventKind.SET,
    "created": EventKind.SET,
    "delete": EventKind.DELETE,
    "deleted": EventKind.DELETE,
    "remove": EventKind.DELETE,
    "snapshot": EventKind.SNAPSHOT,
    "sync": EventKind.SNAPSHOT,
    "full": EventKind.SNAPSHOT,
}

# Frames that carry no mutation and are silently skipped
_CONTROL_TYPES = frozenset({"connected", "ping", "pong", "ack", "subscribed"})


class EventDecoder:
    """
    Turns inbound frames into :class:`MutationEvent` values, in wire order.

    The decoder does not reorder or deduplicate; the cache does that by
    sequence comparison. Frames without a numeric ``sequence`` (or
    ``timestamp``) get the next value of a local counter so that receive
    order is preserved.
    """

    def __init__(self) -> None:
        self._last_sequence: float = 0
        self._dropped_frames = 0

    @property
    def last_sequence(self) -> float:
        """Highest sequence seen or assigned so far."""
        return self._last_sequence

    @property
    def dropped_frames(self) -> int:
        """Number of malformed frames dropped."""
        return self._dropped_frames

    def feed(self, raw: str | bytes) -> MutationEvent | None:
        """Decode a frame, dropping and logging non-fatal protocol errors.

        Raises:
            MalformedFrameError: only for fatal (framing-level) corruption.
        """
        try:
            return self.decode(raw)
        except MalformedFrameError as e:
            if e.fatal:
                raise
            self._dropped_frames += 1
            logger.warning("Dropping malformed frame: %s", e)
            return None

    def decode(self, raw: str | bytes) -> MutationEvent | None:
        """Decode a frame. Returns None for control frames."""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedFrameError("Binary frame is not valid UTF-8", fatal=True) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"Frame is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedFrameError(f"Frame is a JSON {type(data).__name__}, not an object")

        frame_type = data.get("type") or data.get("event")
        if not isinstance(frame_type, str):
            raise MalformedFrameError("Frame has no type")

        frame_type = frame_type.lower()
        if frame_type in _CONTROL_TYPES:
            return None
        if frame_type == "error":
            raise MalformedFrameError(
                f"Server reported an error: {data.get('message', 'unknown')}", fatal=True
            )

        kind = _KIND_ALIASES.get(frame_type)
        if kind is None:
            raise MalformedFrameError(f"Unknown frame type '{frame_type}'")

        if kind == EventKind.SNAPSHOT:
            entries = data.get("entries", data.get("data"))
            if not isinstance(entries, dict):
                raise MalformedFrameError("Snapshot frame has no entries object")
            return MutationEvent.snapshot(entries, self._next_sequence(data))

        key = data.get("key")
        if not isinstance(key, str) or not key:
            raise MalformedFrameError(f"'{frame_type}' frame has no key")

        if kind == EventKind.SET:
            if "value" not in data:
                raise MalformedFrameError(f"'{frame_type}' frame for '{key}' has no value")
            return MutationEvent.set(key, data["value"], self._next_sequence(data))
        return MutationEvent.delete(key, self._next_sequence(data))

    def _next_sequence(self, data: dict[str, Any]) -> float:
        raw = data.get("sequence", data.get("timestamp"))
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            sequence: float = raw
        else:
            sequence = self._last_sequence + 1
        self._last_sequence = max(self._last_sequence, sequence)
        return sequence
