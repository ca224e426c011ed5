"""Public handle for one WireKVS database."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from wirekvs.config import SyncConfig
from wirekvs.errors import (
    DatabaseClosedError,
    DatabaseUnavailableError,
    NotFoundError,
    RolledBackWriteError,
    TransportError,
)
from wirekvs.sync.bus import Subscriber, SubscriptionBus
from wirekvs.sync.cache import ReconciliationCache
from wirekvs.sync.connection import ConnectionStateMachine
from wirekvs.sync.decoder import EventDecoder
from wirekvs.sync.protocol import ConnectionState, ConnectionStatus, MutationEvent
from wirekvs.transport import Transport

logger = logging.getLogger(__name__)


class Database:
    """
    A live, locally mirrored view of one remote database.

    The handle owns one event-stream connection and one reconciliation
    cache. The connection starts with the handle and every successful
    (re)connect triggers a full snapshot resync, after which reads are
    answered from memory.

    Usage:
        async with Database("database-id", "access-key") as db:
            await db.set("greeting", "Hello!")
            print(await db.get("greeting"))

            sub = db.subscribe()
            async for change in sub:
                ...
    """

    def __init__(
        self,
        database_id: str,
        access_key: str,
        *,
        config: SyncConfig | None = None,
        transport: Transport | None = None,
        connection: ConnectionStateMachine | None = None,
    ) -> None:
        self._id = database_id
        self._access_key = access_key
        self._config = (config or SyncConfig()).validate()

        self._transport = transport or Transport(database_id, access_key, config=self._config)
        self._bus = SubscriptionBus(self._config.subscriber_queue_size)
        self._cache = ReconciliationCache(self._transport, self._bus)
        self._decoder = EventDecoder()
        self._connection = connection or ConnectionStateMachine(
            self._transport.events_url, config=self._config
        )
        self._connection.set_frame_handler(self._on_frame)
        self._connection.add_listener(self._on_status)

        self._resync_task: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False
        self._inflight_writes = 0
        self._writes_idle = asyncio.Event()
        self._writes_idle.set()

    @classmethod
    async def open(
        cls,
        database_id: str,
        access_key: str,
        *,
        config: SyncConfig | None = None,
    ) -> Database:
        """Create a handle and start connecting."""
        db = cls(database_id, access_key, config=config)
        db.start()
        return db

    def __repr__(self) -> str:
        return f"Database(id={self._id!r}, state={self.state.value})"

    @property
    def id(self) -> str:
        """Get the database ID."""
        return self._id

    @property
    def access_key(self) -> str:
        """Get the access key."""
        return self._access_key

    @property
    def status(self) -> ConnectionStatus:
        """Get the connection status."""
        return self._connection.status

    @property
    def state(self) -> ConnectionState:
        """Get the connection state."""
        return self._connection.state

    @property
    def is_ready(self) -> bool:
        """Check if the local mirror has received its first snapshot."""
        return self._cache.is_ready

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def dropped_frames(self) -> int:
        """Number of malformed push frames dropped so far."""
        return self._decoder.dropped_frames

    # ========== Lifecycle ==========

    def start(self) -> None:
        """Start the event-stream connection. No-op if already started."""
        self._ensure_open()
        if self._started:
            return
        self._started = True
        self._connection.start()

    async def close(self) -> None:
        """Close the connection and every subscriber.

        Writes already sent to the service are allowed to finish; their
        results are discarded.
        """
        if self._closed:
            return
        self._closed = True

        if self._resync_task is not None:
            self._resync_task.cancel()
            try:
                await self._resync_task
            except asyncio.CancelledError:
                pass
            self._resync_task = None

        await self._connection.close()
        self._cache.mark_unavailable(DatabaseClosedError(f"Database '{self._id}' is closed"))
        self._bus.close()
        self._cache.discard_pending()

        await self._writes_idle.wait()
        await self._transport.close()
        logger.info("Closed database %s", self._id)

    async def __aenter__(self) -> Database:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def reconnect(self) -> None:
        """Force a reconnect and snapshot resync."""
        self._ensure_open()
        if not self._started:
            self.start()
            return
        await self._connection.reconnect()

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Wait until the first snapshot has been applied."""
        self._ensure_started()
        await asyncio.wait_for(self._cache.wait_ready(), timeout)

    # ========== CRUD ==========

    async def get(self, key: str) -> Any:
        """Get a value from the local mirror (None if absent)."""
        self._ensure_started()
        return await self._cache.get(key)

    async def get_all_entries(self) -> dict[str, Any]:
        """Get a point-in-time copy of every entry."""
        self._ensure_started()
        return await self._cache.get_all_entries()

    async def set(self, key: str, value: Any) -> None:
        """Store a value remotely and in the local mirror.

        Raises:
            RolledBackWriteError: the remote write failed; the mirror was restored.
            DatabaseUnavailableError: the event stream gave up reconnecting.
        """
        self._ensure_started()
        await self._write(key, value, delete=False)

    async def delete(self, key: str) -> None:
        """Delete a key remotely and in the local mirror.

        Raises:
            RolledBackWriteError: the remote delete failed; the mirror was restored.
            DatabaseUnavailableError: the event stream gave up reconnecting.
        """
        self._ensure_started()
        await self._write(key, None, delete=True)

    async def fetch(self, key: str) -> Any:
        """Read a value straight from the service, bypassing the mirror."""
        self._ensure_open()
        try:
            return await self._transport.get(key)
        except NotFoundError:
            return None

    async def _write(self, key: str, value: Any, *, delete: bool) -> None:
        if isinstance(self._cache.failure, DatabaseUnavailableError):
            raise self._cache.failure
        self._inflight_writes += 1
        self._writes_idle.clear()
        try:
            await self._cache.apply_local_write(key, value, delete=delete)
        except RolledBackWriteError:
            if self._closed:
                logger.debug("Discarding failed write to '%s' after close", key)
                return
            raise
        finally:
            self._inflight_writes -= 1
            if not self._inflight_writes:
                self._writes_idle.set()

    # ========== Subscriptions ==========

    def subscribe(self, queue_size: int | None = None, *, raise_on_gap: bool = False) -> Subscriber:
        """Subscribe to changes applied from now on."""
        self._ensure_open()
        return self._bus.subscribe(queue_size, raise_on_gap=raise_on_gap)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Stop delivering changes to ``subscriber``."""
        self._bus.unsubscribe(subscriber)

    # ========== Sync engine wiring ==========

    def _on_frame(self, raw: str | bytes) -> None:
        event = self._decoder.feed(raw)
        if event is not None:
            self._cache.apply_remote(event)

    def _on_status(self, status: ConnectionStatus) -> None:
        if status.state == ConnectionState.CONNECTED:
            self._cache.clear_unavailable()
            self._schedule_resync()
        elif status.state == ConnectionState.RECONNECTING:
            give_up_after = self._config.give_up_after
            if give_up_after and status.attempt >= give_up_after:
                logger.warning(
                    "Database %s unreachable after %d attempts (%s)",
                    self._id,
                    status.attempt,
                    status.error,
                )
                self._cache.mark_unavailable(DatabaseUnavailableError(status.attempt))

    def _schedule_resync(self) -> None:
        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
        self._resync_task = asyncio.get_running_loop().create_task(
            self._resync(), name=f"wirekvs-resync-{self._id}"
        )

    async def _resync(self) -> None:
        # Events applied while the fetch is in flight are newer than the snapshot and survive it
        barrier = self._decoder.last_sequence
        try:
            entries = await self._transport.list_entries()
        except TransportError as e:
            logger.warning("Snapshot resync of %s failed, reconnecting: %s", self._id, e)
            if not self._closed:
                await self._connection.reconnect(immediate=False)
            return

        if self._closed:
            return
        self._cache.apply_remote(MutationEvent.snapshot(entries, barrier))
        logger.debug("Resynced %s with %d entries", self._id, len(entries))

    def _ensure_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError(f"Database '{self._id}' is closed")

    def _ensure_started(self) -> None:
        self._ensure_open()
        if not self._started:
            self.start()
