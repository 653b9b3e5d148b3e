"""
PeerLink - Signaling session lifecycle.

The session manager owns exactly one signaling handle at a time. It
creates it, routes its events, recovers from fatal transport errors and
destroys it on teardown. Errors never propagate to the caller; they end up
in a retry path or in the logs.
"""

import logging
from typing import Any, Callable, Optional

from .arbiter import ConnectionArbiter
from .calls import CallRouter
from .config import SessionSettings
from .connection_fsm import SessionEvent, SessionState, SessionStateMachine
from .signaling import (
    EVENT_CALL,
    EVENT_CONNECTION,
    EVENT_ERROR,
    EVENT_OPEN,
    CallHandle,
    ConnectionHandle,
    SignalingErrorKind,
    SignalingFactory,
    SignalingHandle,
    classify_signaling_error,
    error_kind_name,
)
from .timer import RetryTimer, Scheduler

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[str], None]
ConnectionCallback = Callable[[ConnectionHandle], Any]
CallCallback = Callable[[CallHandle], Any]
FatalErrorCallback = Callable[[str], None]


class SessionLifecycleManager:
    """
    Creates, supervises and destroys the signaling handle.

    Every handle gets a generation number; events from a handle that has
    since been replaced are dropped.
    """

    def __init__(
        self,
        signaling_factory: SignalingFactory,
        arbiter: ConnectionArbiter,
        scheduler: Scheduler,
        call_router: Optional[CallRouter] = None,
        settings: Optional[SessionSettings] = None,
    ):
        self.signaling_factory = signaling_factory
        self.arbiter = arbiter
        self.call_router = call_router
        self.settings = settings or SessionSettings()
        self._reinit_timer = RetryTimer(scheduler, name="signaling-reinit")

        self._signaling: Optional[SignalingHandle] = None
        self._fsm: Optional[SessionStateMachine] = None
        self._generation = 0

        self.identity: Optional[str] = None
        self.target_id: Optional[str] = None
        self.assigned_id: Optional[str] = None
        self.reinit_count = 0

        self._on_ready: Optional[ReadyCallback] = None
        self._on_incoming_connection: Optional[ConnectionCallback] = None
        self._on_incoming_call: Optional[CallCallback] = None
        self._on_fatal_error: Optional[FatalErrorCallback] = None

        arbiter.on_reset_requested = self.reinitialize

    # ------------------------------------------------------------------
    # Lifecycle

    def initialize(
        self,
        identity: str,
        target_id: str,
        on_ready: Optional[ReadyCallback] = None,
        on_incoming_connection: Optional[ConnectionCallback] = None,
        on_incoming_call: Optional[CallCallback] = None,
        on_fatal_error: Optional[FatalErrorCallback] = None,
    ) -> None:
        """
        Create a fresh signaling handle bound to ``identity``.

        An existing handle is torn down first. Inbound connections and calls
        go to the arbiter and the call router unless callbacks are given.
        Never raises: a handle that cannot be created is retried after
        ``reinit_delay``.
        """
        self.teardown()

        self.identity = identity
        self.target_id = target_id
        self._on_ready = on_ready
        self._on_incoming_connection = on_incoming_connection or self.arbiter.accept_incoming
        self._on_incoming_call = on_incoming_call or (
            self.call_router.on_incoming_call if self.call_router else None
        )
        self._on_fatal_error = on_fatal_error

        self._create_handle()

    def reinitialize(self) -> None:
        """Tear everything down and start again with the last identity."""
        if self.identity is None or self.target_id is None:
            logger.debug("Reinitialize skipped: never initialized")
            return
        self.reinit_count += 1
        logger.info(f"Reinitializing signaling session for {self.identity}")
        self.initialize(
            self.identity,
            self.target_id,
            self._on_ready,
            self._on_incoming_connection,
            self._on_incoming_call,
            self._on_fatal_error,
        )

    def teardown(self) -> None:
        """
        Cancel timers, close the data connection, end the call, destroy the handle.

        Safe to call any number of times.
        """
        self._reinit_timer.cancel()
        self.arbiter.reset()
        if self.call_router is not None:
            self.call_router.end_call()

        signaling = self._signaling
        self._signaling = None
        self._generation += 1
        self.assigned_id = None

        if signaling is None:
            return

        if self._fsm is not None:
            self._fsm.transition(SessionEvent.DESTROY_REQUESTED)
        try:
            signaling.destroy()
        except Exception as e:
            logger.warning(f"Error destroying signaling handle: {e}")
        logger.info(f"Signaling session for {self.identity} destroyed")

    async def place_call(self) -> bool:
        """Place a call to the configured target over the current handle."""
        if self.call_router is None:
            logger.warning("No call router configured")
            return False
        return await self.call_router.place_call(self._signaling, self.target_id)

    # ------------------------------------------------------------------
    # Queries

    @property
    def state(self) -> Optional[SessionState]:
        return self._fsm.get_state() if self._fsm is not None else None

    @property
    def is_open(self) -> bool:
        return self._fsm is not None and self._fsm.is_open() and self._signaling is not None

    @property
    def reinit_pending(self) -> bool:
        return self._reinit_timer.pending

    # ------------------------------------------------------------------
    # Internals

    def _create_handle(self) -> None:
        self._generation += 1
        generation = self._generation
        self._fsm = SessionStateMachine(label=f"session#{generation}")

        try:
            signaling = self.signaling_factory(self.identity)
        except Exception as e:
            logger.error(f"Failed to create signaling handle for {self.identity}: {e}")
            self._reinit_timer.schedule(self.settings.reinit_delay, self.reinitialize)
            return

        self._signaling = signaling
        self.arbiter.bind(signaling, self.target_id)

        signaling.on(EVENT_OPEN, lambda assigned_id=None: self._handle_open(generation, assigned_id))
        signaling.on(EVENT_CONNECTION, lambda conn: self._handle_connection(generation, conn))
        signaling.on(EVENT_CALL, lambda call: self._handle_call(generation, call))
        signaling.on(EVENT_ERROR, lambda err=None: self._handle_error(generation, err))
        logger.info(f"Signaling handle created for {self.identity}")

    def _is_current(self, generation: int) -> bool:
        return self._signaling is not None and generation == self._generation

    def _handle_open(self, generation: int, assigned_id: Optional[str]) -> None:
        if not self._is_current(generation):
            logger.debug("Dropping open from stale signaling handle")
            return
        self._fsm.transition(SessionEvent.OPENED)
        self.assigned_id = assigned_id or self.identity
        logger.info(f"Signaling open as {self.assigned_id}")

        if self._on_ready:
            try:
                self._on_ready(self.assigned_id)
            except Exception as e:
                logger.error(f"Ready callback error: {e}")

        self.arbiter.attempt_connect()

    def _handle_connection(self, generation: int, connection: ConnectionHandle) -> None:
        if not self._is_current(generation):
            logger.debug("Dropping incoming connection from stale signaling handle")
            return
        logger.debug(f"Incoming connection from {getattr(connection, 'peer', None)}")
        if self._on_incoming_connection:
            self._on_incoming_connection(connection)

    def _handle_call(self, generation: int, call: CallHandle) -> None:
        if not self._is_current(generation):
            logger.debug("Dropping incoming call from stale signaling handle")
            return
        logger.debug(f"Incoming call from {getattr(call, 'peer', None)}")
        if self._on_incoming_call:
            self._on_incoming_call(call)

    def _handle_error(self, generation: int, error: Any) -> None:
        if not self._is_current(generation):
            logger.debug(f"Dropping error from stale signaling handle: {error}")
            return

        kind = classify_signaling_error(error)
        name = error_kind_name(error) or "unknown"

        if kind == SignalingErrorKind.TRANSIENT:
            logger.info(f"Signaling reports {name}")
            self.arbiter.on_target_unavailable()
        elif kind == SignalingErrorKind.FATAL:
            logger.warning(f"Signaling connection lost ({name})")
            self._fsm.transition(SessionEvent.CONNECTION_LOST)
            if self._on_fatal_error:
                try:
                    self._on_fatal_error(name)
                except Exception as e:
                    logger.error(f"Fatal error callback error: {e}")
            self._recover()
        else:
            logger.error(f"Unhandled signaling error ({name}): {error}")

    def _recover(self) -> None:
        signaling = self._signaling
        if getattr(signaling, "supports_reconnect", False) and not getattr(
            signaling, "destroyed", False
        ):
            try:
                signaling.reconnect()
                logger.info("Reconnecting to signaling service")
                return
            except Exception as e:
                logger.warning(f"Signaling reconnect failed: {e}")

        # Deferred so the failing handle is not destroyed from inside its own event
        self._reinit_timer.schedule(0, self.reinitialize)

    def __repr__(self) -> str:
        state = self.state.name if self.state else "NONE"
        return f"SessionLifecycleManager(identity={self.identity!r}, state={state})"
