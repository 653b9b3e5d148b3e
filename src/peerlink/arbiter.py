"""
PeerLink - Connection arbiter for the single logical data connection.

Created for the PeerLink session core.

This module implements:
- At most one registered data connection, whether locally or remotely originated
- Simultaneous-connect (glare) arbitration between outbound and inbound attempts
- Automatic retry through a single-slot cancelable timer
- Generation-tagged event handlers so events from superseded handles are dropped
- Connection status reporting for observers
"""

import logging
from typing import Any, Callable, Optional

from .config import SessionSettings
from .connection_fsm import ConnectionEvent, ConnectionState, ConnectionStateMachine
from .constants import GLARE_BY_IDENTITY
from .errors import NotConnectedError, SendFailedError
from .signaling import (
    EVENT_CLOSE,
    EVENT_DATA,
    EVENT_ERROR,
    EVENT_OPEN,
    ConnectionHandle,
    SignalingHandle,
)
from .timer import RetryTimer, Scheduler

logger = logging.getLogger(__name__)


class ConnectionStatus:
    """
    Connection status indicators for observers.

    CONNECTED: Data connection open
    CONNECTING: An attempt or inbound offer is in flight
    WAITING: Disconnected, a retry is scheduled
    OFFLINE: Disconnected, nothing scheduled
    """

    CONNECTED = "connected"
    CONNECTING = "connecting"
    WAITING = "waiting"
    OFFLINE = "offline"


def _close_quietly(connection: ConnectionHandle) -> None:
    try:
        connection.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing connection: {e}")


class ConnectionArbiter:
    """
    Owns the one active data connection to the configured target.

    The active connection lives in a single slot tagged with a generation
    counter. Every handler attached to a connection captures the generation
    it was registered under and does nothing once the slot has moved on.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        settings: Optional[SessionSettings] = None,
    ):
        self.settings = settings or SessionSettings()
        self._timer = RetryTimer(scheduler, name="connect-retry")

        self._signaling: Optional[SignalingHandle] = None
        self.local_id: Optional[str] = None
        self.target_id: Optional[str] = None

        # The slot
        self._connection: Optional[ConnectionHandle] = None
        self._fsm: Optional[ConnectionStateMachine] = None
        self._outbound = False
        self._generation = 0

        self._closing = False
        self._consecutive_failures = 0
        self.connection_attempts = 0

        # Callbacks
        self.on_connection_state_callback: Optional[Callable[[bool], None]] = None
        self.on_data_callback: Optional[Callable[[Any], None]] = None
        self.on_reset_requested: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Binding to the signaling handle

    def bind(self, signaling: SignalingHandle, target_id: str) -> None:
        """Attach to a freshly created signaling handle."""
        self._signaling = signaling
        self.local_id = signaling.id
        self.target_id = target_id
        self._closing = False
        logger.debug(f"Arbiter bound: {self.local_id} -> {self.target_id}")

    def reset(self) -> None:
        """
        Cancel the retry, close and forget any connection, unbind.

        Safe to call repeatedly. No retry is scheduled by the close events
        that follow, because the slot no longer matches them.
        """
        self._closing = True
        self._timer.cancel()

        connection = self._connection
        was_open = self._fsm is not None and self._fsm.is_open()
        if connection is not None:
            self._fsm.transition(ConnectionEvent.CLOSED)
            self._unregister()
            _close_quietly(connection)
            logger.info(f"Closed connection to {self.target_id}")
            if was_open:
                self._notify(False)

        self._signaling = None
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Operations

    def attempt_connect(self, target: Optional[str] = None) -> bool:
        """
        Open an outbound connection unless one is already in flight or open.

        Returns:
            True if a new attempt was issued, False otherwise
        """
        if self._closing or self._signaling is None:
            logger.debug("Connect attempt skipped: arbiter not bound")
            return False
        if getattr(self._signaling, "destroyed", False):
            logger.debug("Connect attempt skipped: signaling handle destroyed")
            return False
        if self._fsm is not None and self._fsm.is_live():
            logger.debug(
                f"Connect attempt skipped: connection already {self._fsm.get_state().name}"
            )
            return False

        target = target or self.target_id
        self._timer.cancel()
        self.connection_attempts += 1
        logger.info(f"Attempting connection to {target} - Attempt #{self.connection_attempts}")

        try:
            connection = self._signaling.connect(target, reliable=self.settings.reliable)
        except Exception as e:
            logger.warning(f"Connect to {target} failed immediately: {e}")
            self._schedule_retry(self.settings.unavailable_retry_delay)
            return False

        generation = self._register(connection, outbound=True)
        self._attach(connection, generation)
        return True

    def accept_incoming(self, connection: ConnectionHandle) -> bool:
        """
        Consider an inbound connection for adoption.

        Returns:
            True if the connection became the active one
        """
        remote = getattr(connection, "peer", None)

        if self._closing or self._signaling is None:
            logger.debug(f"Incoming connection from {remote} ignored: arbiter not bound")
            return False

        if self.target_id is not None and remote is not None and remote != self.target_id:
            logger.warning(f"Rejecting connection from unexpected peer {remote}")
            _close_quietly(connection)
            return False

        if self._fsm is not None and self._fsm.is_open():
            # Not closed: closing it could race with the open one on the remote side
            logger.info(f"Incoming connection from {remote} ignored: already connected")
            return False

        if self._fsm is not None and self._fsm.is_live():
            if self._keep_outbound_on_glare(remote):
                logger.info(f"Glare with {remote}: keeping our outbound attempt")
                return False
            superseded = self._connection
            self._fsm.transition(ConnectionEvent.CLOSED)
            self._unregister()
            _close_quietly(superseded)
            logger.info(f"Glare with {remote}: adopting incoming connection")

        logger.info(f"Incoming connection from {remote} adopted")
        generation = self._register(connection, outbound=False)
        self._attach(connection, generation)
        return True

    def on_target_unavailable(self) -> None:
        """The rendezvous service reported the target as not registered."""
        if self._fsm is not None and self._fsm.is_open():
            logger.debug("Target unavailable reported while connected, ignoring")
            return
        if self._closing or self._signaling is None:
            return

        if self._connection is not None and self._outbound:
            # The attempt will never open; free the slot for the retry
            stale = self._connection
            self._fsm.transition(ConnectionEvent.ERRORED)
            self._unregister()
            _close_quietly(stale)

        logger.info(f"Target {self.target_id} unavailable")
        self._schedule_retry(self.settings.unavailable_retry_delay)

    def transmit(self, payload: Any) -> None:
        """
        Send a payload over the open connection.

        Raises:
            NotConnectedError: If no connection is open
            SendFailedError: If the transport raised; the connection is dropped
        """
        if self._fsm is None or not self._fsm.is_open():
            raise NotConnectedError(details={"target": self.target_id})

        connection = self._connection
        try:
            connection.send(payload)
        except Exception as e:
            logger.error(f"Send to {self.target_id} failed: {e}")
            self._fsm.transition(ConnectionEvent.SEND_FAILED)
            self._unregister()
            _close_quietly(connection)
            self._notify(False)
            raise SendFailedError(f"Failed to send to {self.target_id}: {e}") from e

    def manual_reset(self) -> None:
        """User-requested full restart when automatic recovery stalls."""
        logger.info("Manual reset requested")
        self._timer.cancel()
        self._consecutive_failures = 0
        if self.on_reset_requested:
            self.on_reset_requested()
            return

        signaling, target = self._signaling, self.target_id
        self.reset()
        if signaling is not None and target is not None:
            self.bind(signaling, target)
            self.attempt_connect()

    # ------------------------------------------------------------------
    # Queries

    @property
    def state(self) -> Optional[ConnectionState]:
        return self._fsm.get_state() if self._fsm is not None else None

    @property
    def is_connected(self) -> bool:
        return self._fsm is not None and self._fsm.is_open()

    @property
    def remote_id(self) -> Optional[str]:
        if self._connection is None:
            return None
        return getattr(self._connection, "peer", self.target_id)

    @property
    def retry_pending(self) -> bool:
        return self._timer.pending

    @property
    def retry_delay(self) -> Optional[float]:
        return self._timer.delay

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def status(self) -> str:
        if self._fsm is not None and self._fsm.is_open():
            return ConnectionStatus.CONNECTED
        if self._fsm is not None and self._fsm.is_live():
            return ConnectionStatus.CONNECTING
        if self._timer.pending:
            return ConnectionStatus.WAITING
        return ConnectionStatus.OFFLINE

    # ------------------------------------------------------------------
    # Slot management

    def _register(self, connection: ConnectionHandle, outbound: bool) -> int:
        self._generation += 1
        self._connection = connection
        self._outbound = outbound
        self._fsm = ConnectionStateMachine(label=f"connection#{self._generation}")
        return self._generation

    def _unregister(self) -> None:
        self._generation += 1
        self._connection = None
        self._fsm = None
        self._outbound = False

    def _is_current(self, generation: int) -> bool:
        return self._connection is not None and generation == self._generation

    def _attach(self, connection: ConnectionHandle, generation: int) -> None:
        connection.on(EVENT_OPEN, lambda *args: self._handle_open(generation))
        connection.on(EVENT_DATA, lambda payload: self._handle_data(generation, payload))
        connection.on(EVENT_CLOSE, lambda *args: self._handle_close(generation))
        connection.on(EVENT_ERROR, lambda err=None: self._handle_error(generation, err))

        # Inbound handles may already be usable when handed over
        if getattr(connection, "open", False):
            self._handle_open(generation)

    def _keep_outbound_on_glare(self, remote: Optional[str]) -> bool:
        if self.settings.glare_resolution != GLARE_BY_IDENTITY:
            return False
        if not self._outbound or remote is None or self.local_id is None:
            return False
        return self.local_id < remote

    # ------------------------------------------------------------------
    # Connection events

    def _handle_open(self, generation: int) -> None:
        if not self._is_current(generation):
            logger.debug(f"Dropping open from stale connection #{generation}")
            return
        if not self._fsm.transition(ConnectionEvent.OPENED):
            return

        self._timer.cancel()
        self._consecutive_failures = 0
        logger.info(f"Connection established with {self.remote_id}")
        self._notify(True)

    def _handle_data(self, generation: int, payload: Any) -> None:
        if not self._is_current(generation):
            logger.debug(f"Dropping data from stale connection #{generation}")
            return
        if self.on_data_callback:
            try:
                self.on_data_callback(payload)
            except Exception as e:
                logger.error(f"Data callback error: {e}", exc_info=True)

    def _handle_close(self, generation: int) -> None:
        if not self._is_current(generation):
            logger.debug(f"Dropping close from stale connection #{generation}")
            return
        logger.info(f"Connection to {self.remote_id} closed")
        self._fsm.transition(ConnectionEvent.CLOSED)
        self._connection_lost()

    def _handle_error(self, generation: int, error: Any) -> None:
        if not self._is_current(generation):
            logger.debug(f"Dropping error from stale connection #{generation}: {error}")
            return
        logger.warning(f"Connection error with {self.remote_id}: {error}")
        self._fsm.transition(ConnectionEvent.ERRORED)
        self._connection_lost()

    def _connection_lost(self) -> None:
        # Unregistering makes the matching close/error pair count once
        self._unregister()
        self._notify(False)
        if not self._closing and self._signaling is not None:
            self._schedule_retry(self.settings.close_retry_delay)

    # ------------------------------------------------------------------
    # Retry

    def _schedule_retry(self, base_delay: float) -> None:
        delay = min(
            base_delay * (self.settings.backoff_multiplier ** self._consecutive_failures),
            max(base_delay, self.settings.max_retry_delay),
        )
        self._consecutive_failures += 1
        logger.info(f"Retrying connection to {self.target_id} in {delay:.1f}s")
        self._timer.schedule(delay, self._on_retry_timer)

    def _on_retry_timer(self) -> None:
        self.attempt_connect()

    def _notify(self, connected: bool) -> None:
        if self.on_connection_state_callback:
            try:
                self.on_connection_state_callback(connected)
            except Exception as e:
                logger.error(f"Connection state callback error: {e}")

    def __repr__(self) -> str:
        state = self.state.name if self.state else "NONE"
        return (
            f"ConnectionArbiter(target={self.target_id!r}, state={state}, "
            f"generation={self._generation}, retry_pending={self.retry_pending})"
        )
