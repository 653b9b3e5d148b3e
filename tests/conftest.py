"""
Pytest configuration and fixtures for PeerLink tests.

Provides a manually driven clock and in-memory doubles of the signaling,
connection, call and media collaborators, so lifecycle behaviour can be
tested event by event without a transport or an event loop.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator, List, Optional

import pytest

from peerlink.arbiter import ConnectionArbiter
from peerlink.config import SessionSettings
from peerlink.identity import derive_identity
from peerlink.signaling import EventEmitter

LOCAL_ID = derive_identity("aryaveer")
REMOTE_ID = derive_identity("guest")


# ----------------------------------------------------------------------
# Clock


class ManualTimer:
    def __init__(self, when: float, seq: int, callback: Callable[[], None]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose time only moves when a test calls ``advance``."""

    def __init__(self):
        self.now = 0.0
        self._seq = 0
        self._timers: List[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, self._seq, callback)
        self._seq += 1
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self._timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due callbacks in order."""
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self.now = max(self.now, timer.when)
            timer.fired = True
            timer.callback()
        self.now = target


# ----------------------------------------------------------------------
# Transport doubles


class FakeConnection(EventEmitter):
    """Data connection handle; events are raised explicitly by the test."""

    def __init__(self, peer: str):
        super().__init__()
        self.peer = peer
        self.open = False
        self.closed = False
        self.close_count = 0
        self.sent: List[Any] = []
        self.send_error: Optional[Exception] = None

    def send(self, payload: Any) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)

    def close(self) -> None:
        self.close_count += 1
        self.closed = True
        self.open = False

    def simulate_open(self) -> None:
        self.open = True
        self.emit("open")

    def simulate_close(self) -> None:
        self.open = False
        self.emit("close")

    def simulate_error(self, error: Any = "transport failure") -> None:
        self.emit("error", error)

    def simulate_data(self, payload: Any) -> None:
        self.emit("data", payload)


class FakeCall(EventEmitter):
    def __init__(self, peer: str, local_stream: Any = None):
        super().__init__()
        self.peer = peer
        self.local_stream = local_stream
        self.answered_with: Any = None
        self.answer_error: Optional[Exception] = None
        self.closed = False
        self.close_count = 0

    def answer(self, stream: Any) -> None:
        if self.answer_error is not None:
            raise self.answer_error
        self.answered_with = stream

    def close(self) -> None:
        self.close_count += 1
        self.closed = True

    def simulate_stream(self, stream: Any) -> None:
        self.emit("stream", stream)

    def simulate_close(self) -> None:
        self.emit("close")

    def simulate_error(self, error: Any = "call failure") -> None:
        self.emit("error", error)


class FakeSignaling(EventEmitter):
    def __init__(self, identity: str, supports_reconnect: bool = False):
        super().__init__()
        self.id = identity
        self.destroyed = False
        self.supports_reconnect = supports_reconnect
        self.connections: List[FakeConnection] = []
        self.calls: List[FakeCall] = []
        self.reconnect_count = 0
        self.connect_error: Optional[Exception] = None
        self.call_error: Optional[Exception] = None

    def connect(self, target_id: str, reliable: bool = True) -> FakeConnection:
        if self.connect_error is not None:
            raise self.connect_error
        connection = FakeConnection(target_id)
        self.connections.append(connection)
        return connection

    def call(self, target_id: str, stream: Any) -> FakeCall:
        if self.call_error is not None:
            raise self.call_error
        call = FakeCall(target_id, stream)
        self.calls.append(call)
        return call

    def reconnect(self) -> None:
        self.reconnect_count += 1

    def destroy(self) -> None:
        self.destroyed = True

    def simulate_open(self) -> None:
        self.emit("open", self.id)

    def simulate_error(self, kind: Any) -> None:
        self.emit("error", kind)

    def simulate_incoming(self, peer: str = REMOTE_ID, already_open: bool = False) -> FakeConnection:
        connection = FakeConnection(peer)
        connection.open = already_open
        self.emit("connection", connection)
        return connection

    def simulate_call(self, peer: str = REMOTE_ID) -> FakeCall:
        call = FakeCall(peer)
        self.emit("call", call)
        return call


class FakeSignalingFactory:
    """Records every handle it creates; queued errors are raised first."""

    def __init__(self, supports_reconnect: bool = False):
        self.supports_reconnect = supports_reconnect
        self.handles: List[FakeSignaling] = []
        self.errors: List[Exception] = []

    def __call__(self, identity: str) -> FakeSignaling:
        if self.errors:
            raise self.errors.pop(0)
        handle = FakeSignaling(identity, self.supports_reconnect)
        self.handles.append(handle)
        return handle

    @property
    def current(self) -> FakeSignaling:
        return self.handles[-1]


# ----------------------------------------------------------------------
# Media doubles


class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeStream:
    def __init__(self, kinds=("audio", "video")):
        self.tracks = [FakeTrack(kind) for kind in kinds]

    def get_tracks(self) -> List[FakeTrack]:
        return list(self.tracks)

    @property
    def stopped(self) -> bool:
        return all(track.stopped for track in self.tracks)


class FakeMediaProvider:
    """Media provider that can fail or be held open by an asyncio.Event."""

    def __init__(self):
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.requests = 0
        self.streams: List[FakeStream] = []

    async def acquire_local_stream(self, audio: bool = True, video: bool = True) -> FakeStream:
        self.requests += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        kinds = [kind for kind, wanted in (("audio", audio), ("video", video)) if wanted]
        stream = FakeStream(kinds)
        self.streams.append(stream)
        return stream


# ----------------------------------------------------------------------
# Fixtures


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path
    """
    tmp = Path(tempfile.mkdtemp(prefix="peerlink_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def settings() -> SessionSettings:
    return SessionSettings()


@pytest.fixture
def signaling_factory() -> FakeSignalingFactory:
    return FakeSignalingFactory()


@pytest.fixture
def media_provider() -> FakeMediaProvider:
    return FakeMediaProvider()


@pytest.fixture
def fake_signaling() -> FakeSignaling:
    return FakeSignaling(LOCAL_ID)


@pytest.fixture
def arbiter(scheduler: ManualScheduler, settings: SessionSettings) -> ConnectionArbiter:
    return ConnectionArbiter(scheduler, settings)


@pytest.fixture
def bound_arbiter(arbiter: ConnectionArbiter, fake_signaling: FakeSignaling) -> ConnectionArbiter:
    """Arbiter bound to ``fake_signaling`` with the guest as target."""
    arbiter.bind(fake_signaling, REMOTE_ID)
    return arbiter


@pytest.fixture
def connection_events(arbiter: ConnectionArbiter) -> List[bool]:
    """Connection up/down notifications seen by the observer."""
    events: List[bool] = []
    arbiter.on_connection_state_callback = events.append
    return events


@pytest.fixture
def stream_factory() -> Callable[..., FakeStream]:
    return FakeStream


@pytest.fixture
def make_connection() -> Callable[[str], FakeConnection]:
    return FakeConnection


@pytest.fixture
def make_call() -> Callable[[str], FakeCall]:
    return FakeCall


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
