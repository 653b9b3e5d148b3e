"""
PeerLink - State machines for the signaling session and data connections.

This module implements small table-driven finite state machines for the
lifecycle of the signaling handle and of each logical data connection.
Invalid transitions are rejected and logged instead of raising, since
transport events can arrive in any order.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of one logical data connection."""

    CONNECTING = auto()  # Attempt issued or inbound offer received
    OPEN = auto()  # Data channel is usable
    CLOSED = auto()  # Terminal


class ConnectionEvent(Enum):
    """Events that move a data connection between states."""

    OPENED = auto()  # Transport reported the channel open
    CLOSED = auto()  # Transport or local side closed the channel
    ERRORED = auto()  # Transport reported an error
    SEND_FAILED = auto()  # Transport raised while sending


class SessionState(Enum):
    """States of the signaling handle owned by the session manager."""

    INITIALIZING = auto()  # Handle created, waiting for registration
    OPEN = auto()  # Registered on the rendezvous service
    RECONNECTING = auto()  # Lost the rendezvous service, recovering
    DESTROYED = auto()  # Terminal


class SessionEvent(Enum):
    """Events that move the signaling session between states."""

    OPENED = auto()  # Identity registered
    CONNECTION_LOST = auto()  # Fatal transport error reported
    DESTROY_REQUESTED = auto()  # Teardown


S = TypeVar("S", bound=Enum)
E = TypeVar("E", bound=Enum)


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: Enum
    event: Enum
    to_state: Enum
    timestamp: float = field(default_factory=time.time)


class StateMachine(Generic[S, E]):
    """
    Table-driven finite state machine.

    Subclasses provide TRANSITIONS and INITIAL_STATE. Tracks the current
    state, a bounded transition history and an optional change callback.
    """

    TRANSITIONS: Dict[Any, Dict[Any, Any]] = {}
    INITIAL_STATE: Any = None
    max_history = 50

    def __init__(self, label: str = ""):
        self.label = label
        self.current_state: S = self.INITIAL_STATE
        self.previous_state: Optional[S] = None
        self.transition_history: List[StateTransition] = []

        self.on_state_change: Optional[Callable[[S, S], None]] = None

    def transition(self, event: E) -> bool:
        """
        Attempt state transition based on event.

        Args:
            event: Event triggering transition

        Returns:
            True if transition successful, False otherwise
        """
        if not self.is_valid_transition(self.current_state, event):
            logger.debug(
                f"{self.label}: ignoring {event.name} in state {self.current_state.name}"
            )
            return False

        new_state = self.TRANSITIONS[self.current_state][event]
        old_state = self.current_state
        self.previous_state = old_state
        self.current_state = new_state

        self.transition_history.append(StateTransition(old_state, event, new_state))
        if len(self.transition_history) > self.max_history:
            self.transition_history = self.transition_history[-self.max_history :]

        logger.debug(f"{self.label}: {old_state.name} -> {new_state.name} (event: {event.name})")

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")

        return True

    def is_valid_transition(self, from_state: S, event: E) -> bool:
        return from_state in self.TRANSITIONS and event in self.TRANSITIONS[from_state]

    def get_state(self) -> S:
        return self.current_state

    def get_history(self, count: int = 10) -> List[StateTransition]:
        return self.transition_history[-count:]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(label={self.label!r}, state={self.current_state.name})"


class ConnectionStateMachine(StateMachine[ConnectionState, ConnectionEvent]):
    """CONNECTING -> OPEN -> CLOSED, or CONNECTING -> CLOSED on failure."""

    INITIAL_STATE = ConnectionState.CONNECTING
    TRANSITIONS = {
        ConnectionState.CONNECTING: {
            ConnectionEvent.OPENED: ConnectionState.OPEN,
            ConnectionEvent.CLOSED: ConnectionState.CLOSED,
            ConnectionEvent.ERRORED: ConnectionState.CLOSED,
        },
        ConnectionState.OPEN: {
            ConnectionEvent.CLOSED: ConnectionState.CLOSED,
            ConnectionEvent.ERRORED: ConnectionState.CLOSED,
            ConnectionEvent.SEND_FAILED: ConnectionState.CLOSED,
        },
        ConnectionState.CLOSED: {},
    }

    def is_open(self) -> bool:
        return self.current_state == ConnectionState.OPEN

    def is_live(self) -> bool:
        """True while the connection is CONNECTING or OPEN."""
        return self.current_state in (ConnectionState.CONNECTING, ConnectionState.OPEN)


class SessionStateMachine(StateMachine[SessionState, SessionEvent]):
    """INITIALIZING -> OPEN -> (RECONNECTING -> OPEN)* -> DESTROYED."""

    INITIAL_STATE = SessionState.INITIALIZING
    TRANSITIONS = {
        SessionState.INITIALIZING: {
            SessionEvent.OPENED: SessionState.OPEN,
            SessionEvent.CONNECTION_LOST: SessionState.RECONNECTING,
            SessionEvent.DESTROY_REQUESTED: SessionState.DESTROYED,
        },
        SessionState.OPEN: {
            SessionEvent.CONNECTION_LOST: SessionState.RECONNECTING,
            SessionEvent.DESTROY_REQUESTED: SessionState.DESTROYED,
        },
        SessionState.RECONNECTING: {
            SessionEvent.OPENED: SessionState.OPEN,
            SessionEvent.CONNECTION_LOST: SessionState.RECONNECTING,
            SessionEvent.DESTROY_REQUESTED: SessionState.DESTROYED,
        },
        SessionState.DESTROYED: {},
    }

    def is_open(self) -> bool:
        return self.current_state == SessionState.OPEN

    def is_destroyed(self) -> bool:
        return self.current_state == SessionState.DESTROYED
