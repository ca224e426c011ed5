"""Real-time synchronization engine: connection, decoding, mirror and fan-out."""

from wirekvs.sync.backoff import BackoffPolicy
from wirekvs.sync.bus import Subscriber, SubscriptionBus
from wirekvs.sync.cache import ReconciliationCache
from wirekvs.sync.connection import ConnectionStateMachine
from wirekvs.sync.decoder import EventDecoder
from wirekvs.sync.protocol import (
    CacheEntry,
    ChangeNotification,
    ConnectionState,
    ConnectionStatus,
    EventKind,
    GapMarker,
    MutationEvent,
    Origin,
)

__all__ = [
    "BackoffPolicy",
    "Subscriber",
    "SubscriptionBus",
    "ReconciliationCache",
    "ConnectionStateMachine",
    "EventDecoder",
    "CacheEntry",
    "ChangeNotification",
    "ConnectionState",
    "ConnectionStatus",
    "EventKind",
    "GapMarker",
    "MutationEvent",
    "Origin",
]
