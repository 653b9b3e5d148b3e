"""
PeerLink - Contracts of the signaling, connection, call and media collaborators.

The lifecycle managers never depend on a concrete transport. Anything that
honours these contracts (a WebRTC stack, the in-process loopback transport,
a test double) can be plugged in.

Signaling handle events:
- ``open(assigned_id)`` once the identity is registered
- ``connection(handle)`` per inbound data connection
- ``call(handle)`` per inbound call
- ``error(kind)`` with kinds such as ``peer-unavailable`` or ``network``

Connection handle events: ``open``, ``data(payload)``, ``close``, ``error(err)``.
Call handle events: ``stream(remote_stream)``, ``close``, ``error(err)``.
"""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from .constants import (
    ERROR_DISCONNECTED,
    ERROR_NETWORK,
    ERROR_PEER_UNAVAILABLE,
    ERROR_SERVER,
    ERROR_SOCKET,
    ERROR_SOCKET_CLOSED,
)

logger = logging.getLogger(__name__)

# Event names
EVENT_OPEN = "open"
EVENT_CONNECTION = "connection"
EVENT_CALL = "call"
EVENT_ERROR = "error"
EVENT_DATA = "data"
EVENT_CLOSE = "close"
EVENT_STREAM = "stream"


class SignalingErrorKind(Enum):
    """How the session manager reacts to a signaling error."""

    TRANSIENT = "transient"  # target not reachable yet, retry the data connection
    FATAL = "fatal"  # rendezvous service lost, recover the signaling handle
    UNCLASSIFIED = "unclassified"  # log and carry on


TRANSIENT_ERRORS = frozenset({ERROR_PEER_UNAVAILABLE})
FATAL_ERRORS = frozenset(
    {ERROR_NETWORK, ERROR_DISCONNECTED, ERROR_SERVER, ERROR_SOCKET, ERROR_SOCKET_CLOSED}
)


def error_kind_name(error: Any) -> str:
    """Extract the kind string from an error event payload.

    Accepts a bare string, an object with a ``type`` or ``kind`` attribute,
    or a mapping with one of those keys.
    """
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return str(error.get("type") or error.get("kind") or "")
    for attr in ("type", "kind"):
        value = getattr(error, attr, None)
        if isinstance(value, str):
            return value
    return ""


def classify_signaling_error(error: Any) -> SignalingErrorKind:
    name = error_kind_name(error)
    if name in TRANSIENT_ERRORS:
        return SignalingErrorKind.TRANSIENT
    if name in FATAL_ERRORS:
        return SignalingErrorKind.FATAL
    return SignalingErrorKind.UNCLASSIFIED


class EventEmitter:
    """
    Minimal synchronous event emitter.

    Handlers run in registration order. A handler that raises is logged and
    does not prevent the remaining handlers from running.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Handler for '{event}' failed: {e}", exc_info=True)


@runtime_checkable
class MediaTrack(Protocol):
    kind: str

    def stop(self) -> None: ...


@runtime_checkable
class MediaStream(Protocol):
    def get_tracks(self) -> List[MediaTrack]: ...


def stop_stream(stream: Optional[MediaStream]) -> None:
    """Stop every track of a local media stream."""
    if stream is None:
        return
    for track in stream.get_tracks():
        try:
            track.stop()
        except Exception as e:
            logger.warning(f"Failed to stop {getattr(track, 'kind', 'media')} track: {e}")


class MediaProvider(Protocol):
    """Acquires the local audio/video stream for calls."""

    async def acquire_local_stream(self, audio: bool = True, video: bool = True) -> MediaStream:
        """Raises MediaError when the devices are denied or unavailable."""
        ...


class ConnectionHandle(Protocol):
    peer: str
    open: bool

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def send(self, payload: Any) -> None: ...

    def close(self) -> None: ...


class CallHandle(Protocol):
    peer: str

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def answer(self, stream: MediaStream) -> None: ...

    def close(self) -> None: ...


class SignalingHandle(Protocol):
    id: str
    destroyed: bool
    supports_reconnect: bool

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def connect(self, target_id: str, reliable: bool = True) -> ConnectionHandle: ...

    def call(self, target_id: str, stream: MediaStream) -> CallHandle: ...

    def reconnect(self) -> None: ...

    def destroy(self) -> None: ...


SignalingFactory = Callable[[str], SignalingHandle]
