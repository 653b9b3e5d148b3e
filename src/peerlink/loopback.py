"""
PeerLink - In-process loopback transport.

A rendezvous broker plus signaling, connection and call handles that honour
the collaborator contracts in ``signaling.py`` without any network. Events
are delivered through the running asyncio loop, never synchronously from
the call that caused them, which mirrors how a real transport behaves.

Used by the command-line demo and the integration tests.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .constants import ERROR_DISCONNECTED, ERROR_PEER_UNAVAILABLE
from .errors import ErrorCode, MediaError, SignalingError
from .signaling import (
    EVENT_CALL,
    EVENT_CLOSE,
    EVENT_CONNECTION,
    EVENT_DATA,
    EVENT_ERROR,
    EVENT_OPEN,
    EVENT_STREAM,
    EventEmitter,
    MediaStream,
)

logger = logging.getLogger(__name__)

_stream_ids = itertools.count(1)


@dataclass
class SignalingErrorEvent:
    """Payload of a signaling ``error`` event."""

    type: str
    message: str = ""

    def __str__(self) -> str:
        return f"{self.type}: {self.message}" if self.message else self.type


class LoopbackBroker:
    """In-process rendezvous service mapping identities to signaling handles."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._peers: Dict[str, "LoopbackSignaling"] = {}

    def schedule(self, callback: Callable[..., Any], *args: Any) -> None:
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon(callback, *args)

    def register(self, handle: "LoopbackSignaling") -> bool:
        current = self._peers.get(handle.id)
        if current is not None and current is not handle:
            return False
        self._peers[handle.id] = handle
        logger.debug(f"Broker registered {handle.id}")
        return True

    def unregister(self, handle: "LoopbackSignaling") -> None:
        if self._peers.get(handle.id) is handle:
            del self._peers[handle.id]
            logger.debug(f"Broker unregistered {handle.id}")

    def lookup(self, identity: str) -> Optional["LoopbackSignaling"]:
        return self._peers.get(identity)

    def is_registered(self, identity: str) -> bool:
        return identity in self._peers

    def drop_all(self) -> None:
        """Simulate a rendezvous outage: every registered handle loses the service."""
        for handle in list(self._peers.values()):
            handle.simulate_disconnect()

    def factory(self) -> Callable[[str], "LoopbackSignaling"]:
        """Signaling factory for SessionLifecycleManager."""
        return lambda identity: LoopbackSignaling(self, identity)


class LoopbackSignaling(EventEmitter):
    """Signaling handle registered on a LoopbackBroker."""

    supports_reconnect = True

    def __init__(self, broker: LoopbackBroker, identity: str):
        super().__init__()
        self.broker = broker
        self.id = identity
        self.destroyed = False
        self.disconnected = True
        self.connections: List["LoopbackConnection"] = []
        self.calls: List["LoopbackCall"] = []
        broker.schedule(self._register)

    @property
    def open(self) -> bool:
        return not self.disconnected and not self.destroyed

    def _register(self) -> None:
        if self.destroyed:
            return
        if not self.broker.register(self):
            self.emit(EVENT_ERROR, SignalingErrorEvent("unavailable-id", f"ID {self.id} is taken"))
            return
        self.disconnected = False
        self.emit(EVENT_OPEN, self.id)

    def _require_open(self) -> None:
        if self.destroyed:
            raise SignalingError(ErrorCode.E250_SIGNALING_ERROR, "Signaling handle destroyed")
        if self.disconnected:
            raise SignalingError(
                ErrorCode.E250_SIGNALING_ERROR, "Not connected to the rendezvous service"
            )

    # Outbound operations

    def connect(self, target_id: str, reliable: bool = True) -> "LoopbackConnection":
        self._require_open()
        local = LoopbackConnection(self, target_id, reliable=reliable)
        self.connections.append(local)
        self.broker.schedule(self._deliver_connection, local)
        return local

    def _deliver_connection(self, local: "LoopbackConnection") -> None:
        if self.destroyed or local.closed:
            return
        remote_handle = self.broker.lookup(local.peer)
        if remote_handle is None or not remote_handle.open:
            self.emit(
                EVENT_ERROR,
                SignalingErrorEvent(ERROR_PEER_UNAVAILABLE, f"Could not connect to peer {local.peer}"),
            )
            return
        remote = LoopbackConnection(remote_handle, self.id, reliable=local.reliable)
        remote_handle.connections.append(remote)
        local.pair(remote)
        remote.pair(local)
        remote_handle.emit(EVENT_CONNECTION, remote)
        self.broker.schedule(local.mark_open)
        self.broker.schedule(remote.mark_open)

    def call(self, target_id: str, stream: MediaStream) -> "LoopbackCall":
        self._require_open()
        local = LoopbackCall(self, target_id, stream)
        self.calls.append(local)
        self.broker.schedule(self._deliver_call, local)
        return local

    def _deliver_call(self, local: "LoopbackCall") -> None:
        if self.destroyed or local.closed:
            return
        remote_handle = self.broker.lookup(local.peer)
        if remote_handle is None or not remote_handle.open:
            self.emit(
                EVENT_ERROR,
                SignalingErrorEvent(ERROR_PEER_UNAVAILABLE, f"Could not call peer {local.peer}"),
            )
            local.close()
            return
        remote = LoopbackCall(remote_handle, self.id, None)
        remote_handle.calls.append(remote)
        local.pair(remote)
        remote.pair(local)
        remote_handle.emit(EVENT_CALL, remote)

    # Lifecycle

    def reconnect(self) -> None:
        if self.destroyed:
            raise SignalingError(
                ErrorCode.E252_RECONNECT_UNAVAILABLE, "Cannot reconnect a destroyed handle"
            )
        if not self.disconnected:
            return
        self.broker.schedule(self._register)

    def simulate_disconnect(self, kind: str = ERROR_DISCONNECTED) -> None:
        """Lose the rendezvous service; data connections stay up."""
        if self.destroyed:
            return
        self.broker.unregister(self)
        self.disconnected = True
        self.broker.schedule(self.emit, EVENT_ERROR, SignalingErrorEvent(kind, "Lost connection to server"))

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        self.disconnected = True
        self.broker.unregister(self)
        for connection in list(self.connections):
            connection.close()
        for call in list(self.calls):
            call.close()
        logger.debug(f"Signaling handle {self.id} destroyed")

    def __repr__(self) -> str:
        return f"LoopbackSignaling(id={self.id!r}, open={self.open})"


class LoopbackConnection(EventEmitter):
    """One end of an in-process data connection."""

    def __init__(self, owner: LoopbackSignaling, peer: str, reliable: bool = True):
        super().__init__()
        self.owner = owner
        self.peer = peer
        self.reliable = reliable
        self.open = False
        self.closed = False
        self._remote: Optional["LoopbackConnection"] = None
        self.sent: List[Any] = []

    def pair(self, remote: "LoopbackConnection") -> None:
        self._remote = remote

    def mark_open(self) -> None:
        if self.closed or self.open:
            return
        self.open = True
        self.emit(EVENT_OPEN)

    def send(self, payload: Any) -> None:
        if not self.open or self.closed or self._remote is None:
            raise SignalingError(ErrorCode.E203_CONNECTION_CLOSED, f"Connection to {self.peer} is not open")
        # Round-trip through JSON like a real serializing transport
        wire = json.loads(json.dumps(payload))
        self.sent.append(wire)
        self.owner.broker.schedule(self._remote._receive, wire)

    def _receive(self, payload: Any) -> None:
        if self.open and not self.closed:
            self.emit(EVENT_DATA, payload)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.open = False
        broker = self.owner.broker
        broker.schedule(self.emit, EVENT_CLOSE)
        if self._remote is not None:
            broker.schedule(self._remote.close)

    def fail(self, reason: str = "connection failed") -> None:
        """Simulate a transport error followed by close."""
        if self.closed:
            return
        self.owner.broker.schedule(self.emit, EVENT_ERROR, reason)
        self.close()

    def __repr__(self) -> str:
        return f"LoopbackConnection(peer={self.peer!r}, open={self.open}, closed={self.closed})"


class LoopbackCall(EventEmitter):
    """One end of an in-process call."""

    def __init__(self, owner: LoopbackSignaling, peer: str, stream: Optional[MediaStream]):
        super().__init__()
        self.owner = owner
        self.peer = peer
        self.local_stream = stream
        self.answered = False
        self.closed = False
        self._remote: Optional["LoopbackCall"] = None

    def pair(self, remote: "LoopbackCall") -> None:
        self._remote = remote

    def answer(self, stream: MediaStream) -> None:
        if self.closed or self._remote is None:
            raise SignalingError(ErrorCode.E250_SIGNALING_ERROR, "Call is no longer available")
        self.local_stream = stream
        self.answered = True
        self._remote.answered = True
        broker = self.owner.broker
        broker.schedule(self.emit, EVENT_STREAM, self._remote.local_stream)
        broker.schedule(self._remote.emit, EVENT_STREAM, stream)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        broker = self.owner.broker
        broker.schedule(self.emit, EVENT_CLOSE)
        if self._remote is not None:
            broker.schedule(self._remote.close)

    def __repr__(self) -> str:
        return f"LoopbackCall(peer={self.peer!r}, answered={self.answered}, closed={self.closed})"


class LoopbackTrack:
    """Stand-in media track."""

    def __init__(self, kind: str):
        self.kind = kind
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True
        self.enabled = False

    def __repr__(self) -> str:
        return f"LoopbackTrack(kind={self.kind!r}, stopped={self.stopped})"


class LoopbackMediaStream:
    """Stand-in local or remote media stream."""

    def __init__(self, tracks: List[LoopbackTrack]):
        self.id = f"stream-{next(_stream_ids)}"
        self._tracks = list(tracks)

    def get_tracks(self) -> List[LoopbackTrack]:
        return list(self._tracks)

    @property
    def active(self) -> bool:
        return any(not track.stopped for track in self._tracks)

    def __repr__(self) -> str:
        return f"LoopbackMediaStream(id={self.id!r}, active={self.active})"


class LoopbackMediaProvider:
    """Media provider producing stand-in streams, optionally slow or denied."""

    def __init__(self, available: bool = True, delay: float = 0.0):
        self.available = available
        self.delay = delay
        self.acquired: List[LoopbackMediaStream] = []

    async def acquire_local_stream(self, audio: bool = True, video: bool = True) -> LoopbackMediaStream:
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.available:
            raise MediaError(ErrorCode.E611_MEDIA_UNAVAILABLE, "Permission denied")
        kinds = [kind for kind, wanted in (("audio", audio), ("video", video)) if wanted]
        stream = LoopbackMediaStream([LoopbackTrack(kind) for kind in kinds])
        self.acquired.append(stream)
        return stream
