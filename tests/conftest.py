"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any, NamedTuple

import aiohttp
import pytest
import pytest_asyncio

from wirekvs.config import SyncConfig, reset_config
from wirekvs.errors import NotFoundError, TransportError
from wirekvs.sync.backoff import BackoffPolicy
from wirekvs.sync.connection import ConnectionStateMachine


class Message(NamedTuple):
    """Stand-in for aiohttp.WSMessage."""

    type: aiohttp.WSMsgType
    data: Any = None


class FakeWebSocket:
    """In-memory client WebSocket driven by the test."""

    def __init__(self, *, auto_pong: bool = True) -> None:
        self.auto_pong = auto_pong
        self.closed = False
        self.pings = 0
        self.pongs: list[Any] = []
        self._inbox: asyncio.Queue[Message] = asyncio.Queue()

    def push(self, frame: dict[str, Any] | str | bytes) -> None:
        if isinstance(frame, dict):
            self._inbox.put_nowait(Message(aiohttp.WSMsgType.TEXT, json.dumps(frame)))
        elif isinstance(frame, bytes):
            self._inbox.put_nowait(Message(aiohttp.WSMsgType.BINARY, frame))
        else:
            self._inbox.put_nowait(Message(aiohttp.WSMsgType.TEXT, frame))

    def push_message(self, message: Message) -> None:
        self._inbox.put_nowait(message)

    def remote_close(self) -> None:
        self._inbox.put_nowait(Message(aiohttp.WSMsgType.CLOSE))

    async def receive(self) -> Message:
        if self.closed and self._inbox.empty():
            return Message(aiohttp.WSMsgType.CLOSED)
        return await self._inbox.get()

    async def ping(self, message: bytes = b"") -> None:
        self.pings += 1
        if self.auto_pong:
            self._inbox.put_nowait(Message(aiohttp.WSMsgType.PONG, message))

    async def pong(self, message: bytes = b"") -> None:
        self.pongs.append(message)

    async def close(self) -> bool:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(Message(aiohttp.WSMsgType.CLOSED))
        return True

    def exception(self) -> BaseException | None:
        return None


class FakeSession:
    """aiohttp.ClientSession stand-in whose ws_connect outcomes are scripted.

    Each connect pops the next outcome: a FakeWebSocket or an exception.
    When the script runs out a fresh FakeWebSocket is returned.
    """

    def __init__(self, outcomes: list[FakeWebSocket | BaseException] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.sockets: list[FakeWebSocket] = []
        self.urls: list[str] = []
        self.closed = False

    async def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else FakeWebSocket()
        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome

    @property
    def current(self) -> FakeWebSocket:
        return self.sockets[-1]

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """In-memory Transport with injectable failures and gates for in-flight requests."""

    def __init__(self, entries: dict[str, Any] | None = None) -> None:
        self.store: dict[str, Any] = dict(entries or {})
        self.calls: list[tuple[str, str | None]] = []
        self.fail_with: TransportError | None = None
        self.fail_list_with: TransportError | None = None
        self.gate: asyncio.Event | None = None
        self.list_gate: asyncio.Event | None = None
        self.closed = False

    def events_url(self) -> str:
        return "wss://kvs.test/events/db-1?accessKey=secret"

    async def _maybe_wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def get(self, key: str) -> Any:
        self.calls.append(("get", key))
        if key not in self.store:
            raise NotFoundError(f"{key} not found", status_code=404)
        return self.store[key]

    async def set(self, key: str, value: Any) -> None:
        self.calls.append(("set", key))
        await self._maybe_wait()
        if self.fail_with is not None:
            raise self.fail_with
        self.store[key] = value

    async def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        await self._maybe_wait()
        if self.fail_with is not None:
            raise self.fail_with
        self.store.pop(key, None)

    async def list_entries(self) -> dict[str, Any]:
        self.calls.append(("list", None))
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.fail_list_with is not None:
            error, self.fail_list_with = self.fail_list_with, None
            raise error
        return dict(self.store)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    """Keep tests away from the user's config file and environment."""
    monkeypatch.setenv("WIREKVS_DIR", str(tmp_path / "wirekvs"))
    for var in (
        "WIREKVS_TOKEN",
        "WIREKVS_DATABASE_ID",
        "WIREKVS_ACCESS_KEY",
        "WIREKVS_API_URL",
        "WIREKVS_EVENTS_URL",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_config()


@pytest.fixture
def fast_config() -> SyncConfig:
    """Config with short timeouts and a quiet heartbeat."""
    return SyncConfig(
        connect_timeout=1.0,
        heartbeat_interval=30.0,
        heartbeat_timeout=1.0,
        backoff_base=0.01,
        backoff_cap=0.05,
        backoff_jitter=0.0,
        give_up_after=0,
        subscriber_queue_size=100,
    )


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def make_machine(
    fast_config: SyncConfig,
) -> Callable[..., ConnectionStateMachine]:
    """Build a ConnectionStateMachine over a FakeSession."""

    def _make(
        session: FakeSession,
        *,
        config: SyncConfig | None = None,
        **kwargs: Any,
    ) -> ConnectionStateMachine:
        cfg = config or fast_config
        return ConnectionStateMachine(
            "wss://kvs.test/events/db-1?accessKey=secret",
            config=cfg,
            backoff=BackoffPolicy(
                base=cfg.backoff_base, cap=cfg.backoff_cap, jitter=cfg.backoff_jitter
            ),
            session=session,  # type: ignore[arg-type]
            **kwargs,
        )

    return _make


@pytest.fixture
def eventually() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds or fail after ``timeout`` seconds."""

    async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)

    return _eventually


@pytest_asyncio.fixture
async def closing() -> AsyncGenerator[list[Any], None]:
    """Collect objects with an async close() and close them after the test."""
    resources: list[Any] = []
    yield resources
    for resource in reversed(resources):
        await resource.close()
