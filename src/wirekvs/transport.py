"""HTTP transport for the WireKVS REST API."""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import Any
from urllib.parse import quote

import aiohttp

from wirekvs.config import SyncConfig
from wirekvs.errors import NetworkError, TransportError, error_for_status

logger = logging.getLogger(__name__)

_NO_BODY = object()


class Operation(StrEnum):
    """Request/response operations against a single database."""

    GET = "get"
    SET = "set"
    DELETE = "delete"
    LIST = "list"


class HttpClient:
    """
    Thin aiohttp wrapper shared by the database transport and the
    management client.

    Sends the credential verbatim in the ``Authorization`` header and maps
    failures onto :class:`~wirekvs.errors.TransportError` subclasses.
    No retries are performed.
    """

    def __init__(
        self,
        base_url: str,
        authorization: str,
        *,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._authorization = authorization
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        """Get the API base URL."""
        return self._base_url

    @property
    def is_open(self) -> bool:
        """Check if an HTTP session is open."""
        return self._session is not None

    async def open(self) -> None:
        """Create the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Authorization": self._authorization},
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> HttpClient:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json_data: Any = _NO_BODY,
        expect_body: bool = True,
    ) -> Any:
        """Make an HTTP request and decode the JSON response."""
        if not self._session:
            await self.open()

        assert self._session is not None

        url = f"{self._base_url}{path}"
        kwargs: dict[str, Any] = {}
        if json_data is not _NO_BODY:
            kwargs["json"] = json_data

        try:
            async with self._session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise error_for_status(
                        response.status, f"{method} {path} failed ({response.status}): {text}"
                    )
                if not expect_body or response.status == 204:
                    return None
                return await response.json(content_type=None)
        except TransportError:
            raise
        except asyncio.TimeoutError as e:
            raise NetworkError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Failed to connect: {e}") from e


class Transport(HttpClient):
    """
    Request/response access to one WireKVS database.

    Usage:
        async with Transport("db-id", "access-key") as transport:
            await transport.set("greeting", "hello")
            value = await transport.get("greeting")
    """

    def __init__(
        self,
        database_id: str,
        access_key: str,
        *,
        config: SyncConfig | None = None,
    ) -> None:
        config = config or SyncConfig()
        super().__init__(config.api_base_url, access_key, timeout=config.request_timeout)
        self._database_id = database_id
        self._access_key = access_key
        self._events_base_url = config.events_base_url.rstrip("/")

    @property
    def database_id(self) -> str:
        """Get the database ID."""
        return self._database_id

    def events_url(self) -> str:
        """URL of the push-event stream, carrying the access key."""
        return (
            f"{self._events_base_url}/{quote(self._database_id, safe='')}"
            f"?accessKey={quote(self._access_key, safe='')}"
        )

    def _key_path(self, key: str) -> str:
        return f"/database/{quote(self._database_id, safe='')}/{quote(key, safe='')}"

    async def request(
        self,
        op: Operation,
        key: str | None = None,
        value: Any = None,
    ) -> Any:
        """Perform one operation against the database."""
        if op == Operation.LIST:
            return await self._send("GET", f"/database/{quote(self._database_id, safe='')}")

        if key is None:
            raise ValueError(f"Operation '{op}' requires a key")

        if op == Operation.GET:
            return await self._send("GET", self._key_path(key))
        if op == Operation.SET:
            logger.debug("SET %s on %s", key, self._database_id)
            return await self._send(
                "POST", self._key_path(key), json_data=value, expect_body=False
            )
        if op == Operation.DELETE:
            logger.debug("DELETE %s on %s", key, self._database_id)
            return await self._send("DELETE", self._key_path(key), expect_body=False)
        raise ValueError(f"Unknown operation: {op}")

    async def get(self, key: str) -> Any:
        """Fetch one value."""
        return await self.request(Operation.GET, key)

    async def set(self, key: str, value: Any) -> None:
        """Store one value."""
        await self.request(Operation.SET, key, value)

    async def delete(self, key: str) -> None:
        """Delete one key."""
        await self.request(Operation.DELETE, key)

    async def list_entries(self) -> dict[str, Any]:
        """Fetch every entry of the database."""
        result = await self.request(Operation.LIST)
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise TransportError(f"Expected an object of entries, got {type(result).__name__}")
        return result
