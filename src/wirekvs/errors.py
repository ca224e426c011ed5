"""Exception hierarchy for the WireKVS client.

All errors raised by this package derive from :class:`WireKVSError` so
callers can catch a single base class.
"""

from __future__ import annotations


class WireKVSError(Exception):
    """Base class for every WireKVS client error."""


# ========== Transport ==========


class TransportError(WireKVSError):
    """A request/response call to the remote service failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(TransportError):
    """The service could not be reached or the request timed out."""


class UnauthorizedError(TransportError):
    """The credentials were rejected (HTTP 401/403)."""


class NotFoundError(TransportError):
    """The database or key does not exist (HTTP 404)."""


class ServerError(TransportError):
    """Any other non-2xx response."""


def error_for_status(status_code: int, message: str) -> TransportError:
    """Map an HTTP status code to the matching TransportError subclass."""
    if status_code in (401, 403):
        return UnauthorizedError(message, status_code=status_code)
    if status_code == 404:
        return NotFoundError(message, status_code=status_code)
    return ServerError(message, status_code=status_code)


# ========== Event stream ==========


class ProtocolError(WireKVSError):
    """The push-event stream misbehaved."""


class MalformedFrameError(ProtocolError):
    """An inbound frame could not be decoded.

    Non-fatal frames are dropped by the decoder. Fatal ones indicate
    framing-level corruption and force a reconnect.
    """

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal


class UnexpectedCloseError(ProtocolError):
    """The remote side closed the event stream."""


# ========== Cache ==========


class CacheError(WireKVSError):
    """A reconciliation cache operation failed."""


class RolledBackWriteError(CacheError):
    """A local write failed remotely and was reverted in the cache."""

    def __init__(self, key: str, cause: TransportError) -> None:
        super().__init__(f"Write to '{key}' was rolled back: {cause}")
        self.key = key
        self.cause = cause


# ========== Subscriptions ==========


class SubscriptionError(WireKVSError):
    """A subscriber could not receive its events."""


class QueueOverflowError(SubscriptionError):
    """The subscriber queue overflowed and notifications were dropped."""

    def __init__(self, missed: int) -> None:
        super().__init__(f"Subscriber queue overflowed, {missed} notification(s) dropped")
        self.missed = missed


# ========== Lifecycle ==========


class DatabaseUnavailableError(WireKVSError):
    """The event stream could not be (re)established within the retry budget."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Database unreachable after {attempts} connection attempt(s)")
        self.attempts = attempts


class DatabaseClosedError(WireKVSError):
    """The database handle has been closed."""
