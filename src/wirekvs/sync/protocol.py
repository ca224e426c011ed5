"""Data structures shared by the sync engine components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class EventKind(StrEnum):
    """Kind of mutation pushed by the remote service."""

    SET = "set"
    DELETE = "delete"
    SNAPSHOT = "snapshot"


class Origin(StrEnum):
    """Where the current value of a cache entry came from."""

    LOCAL = "local"
    REMOTE = "remote"


class ConnectionState(StrEnum):
    """Event stream connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of the connection state machine.

    ``attempt`` and ``next_retry`` are only meaningful while reconnecting;
    ``next_retry`` is on the event loop's monotonic clock.
    """

    state: ConnectionState
    attempt: int = 0
    next_retry: float | None = None
    error: str | None = None


@dataclass(frozen=True)
class MutationEvent:
    """A decoded push event.

    For ``SNAPSHOT`` events ``key`` is None and ``value`` holds the full
    ``{key: value}`` mapping.
    """

    kind: EventKind
    sequence: float
    key: str | None = None
    value: Any = None

    @classmethod
    def set(cls, key: str, value: Any, sequence: float) -> MutationEvent:
        return cls(kind=EventKind.SET, key=key, value=value, sequence=sequence)

    @classmethod
    def delete(cls, key: str, sequence: float) -> MutationEvent:
        return cls(kind=EventKind.DELETE, key=key, sequence=sequence)

    @classmethod
    def snapshot(cls, entries: dict[str, Any], sequence: float) -> MutationEvent:
        return cls(kind=EventKind.SNAPSHOT, value=dict(entries), sequence=sequence)


@dataclass
class CacheEntry:
    """Mirror state for one key.

    Deleted keys stay as tombstones so stale SETs cannot resurrect them.
    A local write stays provisional (``confirmed=False``) until the remote
    service acknowledges it.
    """

    value: Any
    origin: Origin
    last_applied_sequence: float
    deleted: bool = False
    confirmed: bool = True


@dataclass(frozen=True)
class ChangeNotification:
    """A change delivered to subscribers."""

    key: str
    value: Any
    sequence: float
    origin: Origin
    deleted: bool = False


@dataclass(frozen=True)
class GapMarker:
    """Signals that ``missed`` notifications were dropped on overflow."""

    missed: int

