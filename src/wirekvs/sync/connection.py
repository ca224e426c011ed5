"""Self-healing WebSocket connection to the WireKVS event stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from wirekvs.config import SyncConfig
from wirekvs.errors import DatabaseClosedError, ProtocolError, UnexpectedCloseError
from wirekvs.sync.backoff import BackoffPolicy
from wirekvs.sync.protocol import ConnectionState, ConnectionStatus

logger = logging.getLogger(__name__)

FrameHandler = Callable[[str | bytes], None]
StatusListener = Callable[[ConnectionStatus], None]


class ConnectionStateMachine:
    """
    Keeps exactly one live event-stream connection and heals it after any
    failure.

    States: DISCONNECTED -> CONNECTING -> CONNECTED, with every failure
    routed to RECONNECTING(attempt, next_retry). DISCONNECTED is only
    re-entered by :meth:`close`. While connected, a WebSocket ping is sent
    every ``heartbeat_interval`` seconds and a missing pong drops the
    connection.

    Raw frames are handed to the frame handler in receive order. A
    :class:`~wirekvs.errors.ProtocolError` raised by the handler forces a
    reconnect.

    Usage:
        machine = ConnectionStateMachine(url, config=config, frame_handler=on_frame)
        machine.add_listener(on_status)
        machine.start()
        ...
        await machine.close()
    """

    def __init__(
        self,
        url: str | Callable[[], str],
        *,
        config: SyncConfig | None = None,
        frame_handler: FrameHandler | None = None,
        backoff: BackoffPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._config = config or SyncConfig()
        self._frame_handler = frame_handler
        self._backoff = backoff or BackoffPolicy.from_config(self._config)

        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._status = ConnectionStatus(ConnectionState.DISCONNECTED)
        self._listeners: list[StatusListener] = []
        self._attempt = 0
        self._closed = False
        self._task: asyncio.Task[None] | None = None
        self._wakeup = asyncio.Event()
        self._reconnect_requested = False
        self._pong_waiter: asyncio.Future[None] | None = None
        self._drop_reason: str | None = None

    @property
    def status(self) -> ConnectionStatus:
        """Get the current connection status."""
        return self._status

    @property
    def state(self) -> ConnectionState:
        """Get the current connection state."""
        return self._status.state

    @property
    def is_connected(self) -> bool:
        """Check if the event stream is live."""
        return self._status.state == ConnectionState.CONNECTED

    @property
    def is_closed(self) -> bool:
        """Check if :meth:`close` has been called."""
        return self._closed

    def set_frame_handler(self, handler: FrameHandler) -> None:
        """Set the callable that receives raw frames."""
        self._frame_handler = handler

    def add_listener(self, listener: StatusListener) -> None:
        """Register a callable notified synchronously on every transition."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        """Unregister a transition listener."""
        self._listeners = [lst for lst in self._listeners if lst != listener]

    def start(self) -> None:
        """Begin connecting in a background task. No-op if already running."""
        if self._closed:
            raise DatabaseClosedError("Connection has been closed")
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="wirekvs-connection"
        )

    async def reconnect(self, *, immediate: bool = True) -> None:
        """Drop the live stream and connect again.

        With ``immediate`` any pending backoff is skipped and the next
        attempt starts at once; otherwise the usual backoff delay applies.
        """
        if self._closed:
            raise DatabaseClosedError("Connection has been closed")
        if self._task is None or self._task.done():
            self.start()
            return

        if immediate:
            self._wakeup.set()
        if self._ws is not None and not self._ws.closed:
            self._reconnect_requested = immediate
            self._drop_reason = "reconnect requested"
            await self._ws.close()

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until the next CONNECTED transition (returns if already connected)."""
        if self.is_connected:
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _on_status(status: ConnectionStatus) -> None:
            if status.state == ConnectionState.CONNECTED and not future.done():
                future.set_result(None)
            elif status.state == ConnectionState.DISCONNECTED and not future.done():
                future.set_exception(DatabaseClosedError("Connection has been closed"))

        self.add_listener(_on_status)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            self.remove_listener(_on_status)

    async def close(self) -> None:
        """Stop reconnecting, close the stream and enter DISCONNECTED."""
        if self._closed and self._task is None:
            return

        self._closed = True
        self._wakeup.set()

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

        self._transition(ConnectionState.DISCONNECTED)
        logger.info("Event stream closed")

    async def __aenter__(self) -> ConnectionStateMachine:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    # ========== Connection loop ==========

    async def _run(self) -> None:
        while not self._closed:
            self._transition(ConnectionState.CONNECTING, attempt=self._attempt)
            try:
                ws = await self._open()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                await self._wait_backoff(_describe(e))
                continue

            self._ws = ws
            self._attempt = 0
            self._transition(ConnectionState.CONNECTED)
            logger.info("Event stream connected")

            error = await self._serve(ws)
            if self._closed:
                break
            await self._wait_backoff(str(error))

    async def _open(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        url = self._url() if callable(self._url) else self._url
        return await asyncio.wait_for(
            self._session.ws_connect(url, autoping=False),
            timeout=self._config.connect_timeout,
        )

    async def _serve(self, ws: aiohttp.ClientWebSocketResponse) -> ProtocolError:
        """Read frames until the stream fails; returns the failure."""
        heartbeat = asyncio.create_task(self._heartbeat(ws), name="wirekvs-heartbeat")
        try:
            while True:
                message = await ws.receive()

                if message.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    error = self._dispatch(message.data)
                    if error is not None:
                        return error

                elif message.type == aiohttp.WSMsgType.PING:
                    await ws.pong(message.data)

                elif message.type == aiohttp.WSMsgType.PONG:
                    if self._pong_waiter is not None and not self._pong_waiter.done():
                        self._pong_waiter.set_result(None)

                elif message.type == aiohttp.WSMsgType.ERROR:
                    return UnexpectedCloseError(f"stream error: {ws.exception()}")

                elif message.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    return UnexpectedCloseError(self._drop_reason or "remote closed the stream")

        except (aiohttp.ClientError, ConnectionError) as e:
            return UnexpectedCloseError(f"stream error: {e}")
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            self._ws = None
            self._drop_reason = None
            if not ws.closed:
                await ws.close()

    def _dispatch(self, data: str | bytes) -> ProtocolError | None:
        if self._frame_handler is None:
            return None
        try:
            self._frame_handler(data)
        except ProtocolError as e:
            logger.warning("Protocol error on event stream, reconnecting: %s", e)
            return e
        except Exception as e:
            logger.exception("Failed to apply frame, forcing resync")
            return ProtocolError(f"apply error: {e}")
        return None

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        loop = asyncio.get_running_loop()
        while not ws.closed:
            await asyncio.sleep(self._config.heartbeat_interval)
            self._pong_waiter = loop.create_future()
            try:
                await ws.ping()
                await asyncio.wait_for(self._pong_waiter, self._config.heartbeat_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "No pong within %.1fs, dropping event stream",
                    self._config.heartbeat_timeout,
                )
                self._drop_reason = "heartbeat timeout"
                await ws.close()
                return
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                self._drop_reason = f"heartbeat failed: {e}"
                await ws.close()
                return
            finally:
                self._pong_waiter = None

    async def _wait_backoff(self, reason: str) -> None:
        self._attempt += 1
        delay = self._backoff.delay(self._attempt)
        if self._reconnect_requested:
            self._reconnect_requested = False
            delay = 0.0
        next_retry = asyncio.get_running_loop().time() + delay

        self._wakeup.clear()
        self._transition(
            ConnectionState.RECONNECTING,
            attempt=self._attempt,
            next_retry=next_retry,
            error=reason,
        )
        logger.debug("Reconnect attempt %d in %.2fs (%s)", self._attempt, delay, reason)

        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _transition(
        self,
        state: ConnectionState,
        *,
        attempt: int = 0,
        next_retry: float | None = None,
        error: str | None = None,
    ) -> None:
        previous = self._status.state
        self._status = ConnectionStatus(
            state=state, attempt=attempt, next_retry=next_retry, error=error
        )
        logger.debug("Connection %s -> %s", previous, state)

        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception:
                logger.warning("Connection listener failed", exc_info=True)


def _describe(error: BaseException) -> str:
    if isinstance(error, aiohttp.WSServerHandshakeError):
        return f"handshake rejected ({error.status})"
    if isinstance(error, asyncio.TimeoutError):
        return "connect timed out"
    return f"connect failed: {error}"
