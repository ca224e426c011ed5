"""Account-level database management for WireKVS."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from wirekvs.config import SyncConfig
from wirekvs.database import Database
from wirekvs.errors import TransportError
from wirekvs.transport import HttpClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Server-side access control flags for a new database."""

    allow_public_writes: bool = False
    allow_public_reads: bool = False
    allow_public_modifications: bool = False
    allow_specific_public_reads: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "allowPublicWrites": self.allow_public_writes,
            "allowPublicReads": self.allow_public_reads,
            "allowPublicModifications": self.allow_public_modifications,
            "allowSpecificPublicReads": self.allow_specific_public_reads,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, bool]) -> DatabaseConfig:
        """Build from the service's camelCase option names."""
        return cls(
            allow_public_writes=bool(data.get("allowPublicWrites", False)),
            allow_public_reads=bool(data.get("allowPublicReads", False)),
            allow_public_modifications=bool(data.get("allowPublicModifications", False)),
            allow_specific_public_reads=bool(data.get("allowSpecificPublicReads", False)),
        )


@dataclass(frozen=True)
class DatabaseCredentials:
    """ID and access key returned when a database is created."""

    id: str
    access_key: str


@dataclass(frozen=True)
class DatabaseInfo:
    """A database listed for the account."""

    id: str
    name: str | None = None
    raw: Mapping[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DatabaseInfo:
        database_id = data.get("kvsId") or data.get("id")
        if not database_id:
            raise TransportError(f"Database listing entry has no id: {dict(data)}")
        return cls(id=str(database_id), name=data.get("name"), raw=dict(data))


class WireKVS(HttpClient):
    """
    Management client authenticated with an account token.

    Usage:
        async with WireKVS(token) as client:
            creds = await client.create_database("demo", {"allowPublicReads": True})
            db = await client.database(creds.id, creds.access_key)
    """

    def __init__(self, token: str, *, config: SyncConfig | None = None) -> None:
        self._config = config or SyncConfig()
        super().__init__(self._config.api_base_url, token, timeout=self._config.request_timeout)

    async def list_databases(self) -> list[DatabaseInfo]:
        """List all databases of the authenticated account."""
        result = await self._send("GET", "/databases")
        if isinstance(result, dict):
            result = result.get("databases", [])
        if not isinstance(result, list):
            raise TransportError(f"Unexpected database listing: {type(result).__name__}")
        return [DatabaseInfo.from_dict(item) for item in result]

    async def create_database(
        self,
        name: str,
        config: DatabaseConfig | Mapping[str, bool] | None = None,
    ) -> DatabaseCredentials:
        """Create a database and return its credentials."""
        if config is None:
            config = DatabaseConfig()
        elif not isinstance(config, DatabaseConfig):
            config = DatabaseConfig.from_mapping(config)

        payload: dict[str, Any] = {"name": name, **config.to_dict()}
        result = await self._send("POST", "/database", json_data=payload)
        if not isinstance(result, dict) or "kvsId" not in result or "accessKey" not in result:
            raise TransportError("Create database response lacks kvsId/accessKey")

        logger.info("Created database %s (%s)", result["kvsId"], name)
        return DatabaseCredentials(id=str(result["kvsId"]), access_key=str(result["accessKey"]))

    async def delete_database(self, database_id: str) -> None:
        """Delete a database by ID."""
        await self._send("DELETE", f"/database/{quote(database_id, safe='')}", expect_body=False)
        logger.info("Deleted database %s", database_id)

    async def database(self, database_id: str, access_key: str) -> Database:
        """Open a started :class:`~wirekvs.database.Database` handle."""
        return await Database.open(database_id, access_key, config=self._config)
