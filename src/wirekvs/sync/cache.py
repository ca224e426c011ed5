"""Client-side mirror of a WireKVS database."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from wirekvs.errors import RolledBackWriteError, TransportError
from wirekvs.sync.protocol import (
    CacheEntry,
    ChangeNotification,
    EventKind,
    MutationEvent,
    Origin,
)

if TYPE_CHECKING:
    from wirekvs.sync.bus import SubscriptionBus
    from wirekvs.transport import Transport

logger = logging.getLogger(__name__)


class ReconciliationCache:
    """
    Local mirror updated by local writes (optimistic) and remote events
    (authoritative).

    Precedence is decided per key by sequence: a remote event applies when
    its sequence is >= the entry's ``last_applied_sequence``, so duplicates
    are harmless and stale events are no-ops. Local writes take the highest
    sequence known at write time, which lets any equal-or-later remote event
    override them. A snapshot is the baseline for every key, including keys
    it does not contain, while entries applied after it was taken survive it.

    Every in-memory mutation below is a synchronous method without
    suspension points, so each one runs atomically on the event loop.
    Network calls happen only in :meth:`apply_local_write`, outside them.
    """

    def __init__(
        self,
        transport: Transport,
        bus: SubscriptionBus | None = None,
    ) -> None:
        self._transport = transport
        self._bus = bus
        self._entries: dict[str, CacheEntry] = {}
        self._high_watermark: float = 0
        self._has_snapshot = False
        self._snapshot_sequence: float = 0
        self._failure: BaseException | None = None
        self._waiters: list[asyncio.Future[None]] = []
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def is_ready(self) -> bool:
        """Check if at least one snapshot has been applied."""
        return self._has_snapshot

    @property
    def high_watermark(self) -> float:
        """Highest sequence applied so far."""
        return self._high_watermark

    @property
    def failure(self) -> BaseException | None:
        """Error raised to readers while the mirror is unavailable."""
        return self._failure

    def entry(self, key: str) -> CacheEntry | None:
        """Get the raw entry for a key, tombstones included."""
        return self._entries.get(key)

    # ========== Remote events ==========

    def apply_remote(self, event: MutationEvent) -> bool:
        """Apply a pushed event. Returns False for stale or duplicate events."""
        if event.kind == EventKind.SNAPSHOT:
            self._apply_snapshot(event)
            return True

        assert event.key is not None
        current = self._entries.get(event.key)
        baseline = self._snapshot_sequence if current is None else current.last_applied_sequence
        if event.sequence < baseline:
            logger.debug(
                "Ignoring stale %s for '%s' (seq %s < %s)",
                event.kind,
                event.key,
                event.sequence,
                baseline,
            )
            return False

        deleted = event.kind == EventKind.DELETE
        if (
            current is not None
            and current.origin == Origin.REMOTE
            and current.last_applied_sequence == event.sequence
            and current.deleted == deleted
            and (deleted or current.value == event.value)
        ):
            return False  # duplicate delivery

        self._entries[event.key] = CacheEntry(
            value=None if deleted else event.value,
            origin=Origin.REMOTE,
            last_applied_sequence=event.sequence,
            deleted=deleted,
        )
        self._high_watermark = max(self._high_watermark, event.sequence)
        self._publish(event.key, self._entries[event.key])
        return True

    def _apply_snapshot(self, event: MutationEvent) -> None:
        entries: dict[str, Any] = event.value or {}
        previous = self.get_all_entries_nowait() if self._has_snapshot else {}

        # Entries applied after the snapshot was taken are newer than it
        newer = {
            key: entry
            for key, entry in self._entries.items()
            if entry.last_applied_sequence > event.sequence
        }
        self._entries = {
            key: CacheEntry(value=value, origin=Origin.REMOTE, last_applied_sequence=event.sequence)
            for key, value in entries.items()
        }
        self._entries.update(newer)
        self._snapshot_sequence = max(self._snapshot_sequence, event.sequence)
        self._high_watermark = max(self._high_watermark, event.sequence)
        logger.debug(
            "Applied snapshot with %d entries at seq %s (%d newer kept)",
            len(entries),
            event.sequence,
            len(newer),
        )

        # Publish the diff against the previous view
        for key, entry in self._entries.items():
            if key in newer:
                continue
            if key not in previous or previous[key] != entry.value:
                self._publish(key, entry)
        for key in previous:
            if key not in self._entries:
                self._publish(
                    key,
                    CacheEntry(
                        value=None,
                        origin=Origin.REMOTE,
                        last_applied_sequence=event.sequence,
                        deleted=True,
                    ),
                )

        if not self._has_snapshot:
            self._has_snapshot = True
            self._wake_waiters()

    # ========== Local writes ==========

    async def apply_local_write(self, key: str, value: Any = None, *, delete: bool = False) -> None:
        """Write through to the remote service with optimistic local apply.

        Concurrent local writes to the same key are serialized. On
        transport failure the entry is restored and
        :class:`~wirekvs.errors.RolledBackWriteError` is raised.
        """
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                previous, provisional = self._begin_local_write(key, value, delete=delete)
                try:
                    if delete:
                        await self._transport.delete(key)
                    else:
                        await self._transport.set(key, value)
                except TransportError as e:
                    self._rollback_local_write(key, previous, provisional)
                    raise RolledBackWriteError(key, e) from e
                except BaseException:
                    # Cancelled or unexpected: the write outcome is unknown
                    self._rollback_local_write(key, previous, provisional)
                    raise
                self._confirm_local_write(provisional)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._key_locks[key]

    def _begin_local_write(
        self, key: str, value: Any, *, delete: bool
    ) -> tuple[CacheEntry | None, CacheEntry]:
        previous = self._entries.get(key)
        sequence = self._high_watermark
        if previous is not None:
            sequence = max(sequence, previous.last_applied_sequence)

        provisional = CacheEntry(
            value=None if delete else value,
            origin=Origin.LOCAL,
            last_applied_sequence=sequence,
            deleted=delete,
            confirmed=False,
        )
        self._entries[key] = provisional
        self._publish(key, provisional)
        return previous, provisional

    def _confirm_local_write(self, provisional: CacheEntry) -> None:
        # A remote event may have replaced the entry meanwhile; it wins.
        provisional.confirmed = True

    def _rollback_local_write(
        self, key: str, previous: CacheEntry | None, provisional: CacheEntry
    ) -> None:
        if self._entries.get(key) is not provisional:
            return

        if previous is None:
            del self._entries[key]
            restored = CacheEntry(
                value=None,
                origin=Origin.REMOTE,
                last_applied_sequence=provisional.last_applied_sequence,
                deleted=True,
            )
        else:
            self._entries[key] = previous
            restored = previous
        logger.warning("Rolled back local write to '%s'", key)
        self._publish(key, restored)

    def discard_pending(self) -> None:
        """Forget all state; used when the owning database is closed."""
        self._entries.clear()
        self._has_snapshot = False

    # ========== Reads ==========

    async def wait_ready(self) -> None:
        """Wait for the first snapshot, or raise the registered failure."""
        while True:
            if self._failure is not None:
                raise self._failure
            if self._has_snapshot:
                return
            waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

    def mark_unavailable(self, error: BaseException) -> None:
        """Fail current and future readers until :meth:`clear_unavailable`."""
        self._failure = error
        self._wake_waiters()

    def clear_unavailable(self) -> None:
        self._failure = None

    def _wake_waiters(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    async def get(self, key: str) -> Any:
        """Get a value from the mirror. Returns None for missing keys."""
        await self.wait_ready()
        return self.get_nowait(key)

    def get_nowait(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None or entry.deleted:
            return None
        return entry.value

    async def get_all_entries(self) -> dict[str, Any]:
        """Point-in-time copy of all live entries."""
        await self.wait_ready()
        return self.get_all_entries_nowait()

    def get_all_entries_nowait(self) -> dict[str, Any]:
        return {key: entry.value for key, entry in self._entries.items() if not entry.deleted}

    def _publish(self, key: str, entry: CacheEntry) -> None:
        if self._bus is None:
            return
        self._bus.publish(
            ChangeNotification(
                key=key,
                value=entry.value,
                sequence=entry.last_applied_sequence,
                origin=entry.origin,
                deleted=entry.deleted,
            )
        )
