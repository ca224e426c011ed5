"""WireKVS - real-time synchronized client for WireKVS key-value databases."""

from wirekvs.config import ClientConfig, SyncConfig
from wirekvs.database import Database
from wirekvs.errors import (
    CacheError,
    DatabaseClosedError,
    DatabaseUnavailableError,
    MalformedFrameError,
    NetworkError,
    NotFoundError,
    ProtocolError,
    QueueOverflowError,
    RolledBackWriteError,
    ServerError,
    SubscriptionError,
    TransportError,
    UnauthorizedError,
    UnexpectedCloseError,
    WireKVSError,
)
from wirekvs.management import DatabaseConfig, DatabaseCredentials, DatabaseInfo, WireKVS
from wirekvs.sync import (
    ChangeNotification,
    ConnectionState,
    ConnectionStatus,
    GapMarker,
    Subscriber,
)
from wirekvs.transport import Transport

__version__ = "0.1.0"

__all__ = [
    # Clients
    "Database",
    "WireKVS",
    "Transport",
    # Configuration
    "ClientConfig",
    "SyncConfig",
    "DatabaseConfig",
    "DatabaseCredentials",
    "DatabaseInfo",
    # Subscriptions
    "Subscriber",
    "ChangeNotification",
    "GapMarker",
    "ConnectionState",
    "ConnectionStatus",
    # Errors
    "WireKVSError",
    "TransportError",
    "NetworkError",
    "UnauthorizedError",
    "NotFoundError",
    "ServerError",
    "ProtocolError",
    "MalformedFrameError",
    "UnexpectedCloseError",
    "CacheError",
    "RolledBackWriteError",
    "SubscriptionError",
    "QueueOverflowError",
    "DatabaseUnavailableError",
    "DatabaseClosedError",
    # Version
    "__version__",
]
