"""
PeerLink - Call routing for the single audio/video call.

The router keeps at most one call handle. It acquires the local media
stream from an external provider, answers or places calls through the
signaling handle, and hands the remote stream to whoever renders it.
It never touches tracks beyond stopping them when a call ends.
"""

import asyncio
import logging
from enum import Enum, auto
from typing import Any, Callable, Optional, Set

from .config import SessionSettings
from .constants import (
    CALL_STATUS_ANSWERING,
    CALL_STATUS_CALLING,
    CALL_STATUS_CONNECTED,
    CALL_STATUS_ENDED,
    CALL_STATUS_MEDIA_ERROR,
    CALL_STATUS_READY,
    CALL_STATUS_RINGING,
    CALL_STATUS_STARTING,
)
from .errors import MediaError
from .signaling import (
    EVENT_CLOSE,
    EVENT_ERROR,
    EVENT_STREAM,
    CallHandle,
    MediaProvider,
    MediaStream,
    SignalingHandle,
    stop_stream,
)

logger = logging.getLogger(__name__)


class CallPhase(Enum):
    IDLE = auto()
    RINGING = auto()  # inbound only
    ACTIVE = auto()
    ENDED = auto()


class CallEndReason(Enum):
    HANGUP = "hangup"
    REMOTE_CLOSED = "remote-closed"
    ERROR = "error"
    MEDIA_ERROR = "media-error"


def _close_quietly(call: CallHandle) -> None:
    try:
        call.close()
    except Exception as e:
        logger.debug(f"Ignoring error while closing call: {e}")


class CallRouter:
    """
    Tracks the one active call.

    IDLE -> RINGING (inbound only) -> ACTIVE -> ENDED -> IDLE.
    Media acquisition suspends; every resume re-checks that the request
    it belongs to is still the current one.
    """

    def __init__(self, media_provider: MediaProvider, settings: Optional[SessionSettings] = None):
        self.media_provider = media_provider
        self.settings = settings or SessionSettings()

        self.phase = CallPhase.IDLE
        self.status = CALL_STATUS_READY
        self.end_reason: Optional[CallEndReason] = None
        self.remote_stream: Optional[MediaStream] = None

        self._call: Optional[CallHandle] = None
        self._local_stream: Optional[MediaStream] = None
        self._generation = 0
        self._pending: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()

        # Callbacks
        self.on_call_state_callback: Optional[Callable[[CallPhase, str], None]] = None
        self.on_remote_stream_callback: Optional[Callable[[MediaStream], None]] = None
        self.on_incoming_call_callback: Optional[Callable[[CallHandle], None]] = None

    @property
    def has_call(self) -> bool:
        """True while a call is registered or a local stream is being acquired for one."""
        return self._call is not None or self._pending is not None

    @property
    def is_active(self) -> bool:
        return self.phase == CallPhase.ACTIVE

    @property
    def remote_id(self) -> Optional[str]:
        return getattr(self._call, "peer", None) if self._call is not None else None

    @property
    def local_stream(self) -> Optional[MediaStream]:
        return self._local_stream

    # ------------------------------------------------------------------
    # Outbound

    async def place_call(self, signaling: Optional[SignalingHandle], target: str) -> bool:
        """
        Acquire local media and call ``target``.

        Returns:
            True if the call was placed
        """
        if self.has_call:
            logger.warning(f"Cannot call {target}: a call is already in progress")
            return False

        self._generation += 1
        generation = self._generation
        self._pending = generation
        self.end_reason = None
        self._set_phase(CallPhase.IDLE, CALL_STATUS_STARTING)

        stream = await self._acquire(generation)
        if stream is None:
            return False

        if signaling is None or getattr(signaling, "destroyed", False):
            logger.warning(f"Cannot call {target}: signaling not available")
            stop_stream(stream)
            self._pending = None
            self._finish(CallEndReason.ERROR)
            return False

        self._pending = None
        self._local_stream = stream
        self._set_phase(CallPhase.IDLE, CALL_STATUS_CALLING)
        logger.info(f"Calling {target}")

        try:
            call = signaling.call(target, stream)
        except Exception as e:
            logger.error(f"Failed to call {target}: {e}")
            self._finish(CallEndReason.ERROR)
            return False

        self._call = call
        self._attach(call, generation)
        self._set_phase(CallPhase.ACTIVE, CALL_STATUS_CONNECTED)
        return True

    # ------------------------------------------------------------------
    # Inbound

    def on_incoming_call(self, call: CallHandle) -> bool:
        """
        Register an inbound call as ringing, or reject it if one exists.

        Returns:
            True if the call was registered
        """
        remote = getattr(call, "peer", None)
        if self.has_call:
            logger.info(f"Rejecting call from {remote}: a call is already in progress")
            _close_quietly(call)
            return False

        self._generation += 1
        self._call = call
        self.end_reason = None
        self._attach(call, self._generation)
        logger.info(f"Incoming call from {remote}")
        self._set_phase(CallPhase.RINGING, CALL_STATUS_RINGING)

        if self.on_incoming_call_callback:
            try:
                self.on_incoming_call_callback(call)
            except Exception as e:
                logger.error(f"Incoming call callback error: {e}")

        if self.settings.auto_answer:
            self._spawn(self.answer_call(call))
        return True

    async def answer_call(self, call: Optional[CallHandle] = None) -> bool:
        """
        Acquire local media and answer the ringing call.

        Returns:
            True if the call became active
        """
        call = call or self._call
        if call is None or call is not self._call or self.phase != CallPhase.RINGING:
            logger.warning("No ringing call to answer")
            return False

        if self._pending is not None:
            logger.debug("Already answering")
            return False

        generation = self._generation
        self._pending = generation
        self._set_phase(CallPhase.RINGING, CALL_STATUS_ANSWERING)

        stream = await self._acquire(generation, ringing_call=call)
        if stream is None:
            return False
        self._pending = None

        if self.phase != CallPhase.RINGING:
            stop_stream(stream)
            return False

        self._local_stream = stream
        try:
            call.answer(stream)
        except Exception as e:
            logger.error(f"Failed to answer call from {self.remote_id}: {e}")
            self._finish(CallEndReason.ERROR)
            _close_quietly(call)
            return False

        logger.info(f"Answered call from {self.remote_id}")
        self._set_phase(CallPhase.ACTIVE, CALL_STATUS_CONNECTED)
        return True

    # ------------------------------------------------------------------
    # Teardown

    def end_call(self) -> None:
        """Close the call, stop local tracks and go back to IDLE. Idempotent."""
        call, stream = self._call, self._local_stream
        if call is None and stream is None and self._pending is None and self.phase == CallPhase.IDLE:
            return

        self._generation += 1
        self._pending = None
        self._call = None
        self._local_stream = None
        self.remote_stream = None

        if call is not None:
            _close_quietly(call)
            logger.info("Call ended locally")
        stop_stream(stream)

        if self.end_reason is None and call is not None:
            self.end_reason = CallEndReason.HANGUP
        status = CALL_STATUS_ENDED if call is not None else self.status
        if status in (CALL_STATUS_STARTING, CALL_STATUS_CALLING, CALL_STATUS_ANSWERING):
            status = CALL_STATUS_READY
        self._set_phase(CallPhase.IDLE, status)

    async def aclose(self) -> None:
        """End the call and wait for pending auto-answer tasks."""
        self.end_call()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals

    async def _acquire(
        self, generation: int, ringing_call: Optional[CallHandle] = None
    ) -> Optional[MediaStream]:
        try:
            stream = await self.media_provider.acquire_local_stream(
                audio=self.settings.audio, video=self.settings.video
            )
        except asyncio.CancelledError:
            if generation == self._generation:
                self._pending = None
            raise
        except Exception as e:
            if generation != self._generation:
                return None
            if isinstance(e, MediaError):
                logger.error(f"Failed to get local stream: {e}")
            else:
                logger.error(f"Media provider failed: {e}", exc_info=True)
            self._pending = None
            self._finish(CallEndReason.MEDIA_ERROR)
            if ringing_call is not None:
                _close_quietly(ringing_call)
            return None

        if generation != self._generation:
            logger.debug("Local stream arrived after the call was abandoned")
            stop_stream(stream)
            return None
        return stream

    def _attach(self, call: CallHandle, generation: int) -> None:
        call.on(EVENT_STREAM, lambda stream: self._handle_stream(generation, stream))
        call.on(EVENT_CLOSE, lambda *args: self._handle_close(generation))
        call.on(EVENT_ERROR, lambda err=None: self._handle_error(generation, err))

    def _is_current(self, generation: int) -> bool:
        return self._call is not None and generation == self._generation

    def _handle_stream(self, generation: int, stream: MediaStream) -> None:
        if not self._is_current(generation):
            logger.debug("Dropping stream from stale call")
            return
        self.remote_stream = stream
        if self.on_remote_stream_callback:
            try:
                self.on_remote_stream_callback(stream)
            except Exception as e:
                logger.error(f"Remote stream callback error: {e}")

    def _handle_close(self, generation: int) -> None:
        if not self._is_current(generation):
            logger.debug("Dropping close from stale call")
            return
        logger.info(f"Call with {self.remote_id} closed")
        self._finish(CallEndReason.REMOTE_CLOSED)

    def _handle_error(self, generation: int, error: Any) -> None:
        if not self._is_current(generation):
            logger.debug(f"Dropping error from stale call: {error}")
            return
        logger.warning(f"Call error with {self.remote_id}: {error}")
        self._finish(CallEndReason.ERROR)

    def _finish(self, reason: CallEndReason) -> None:
        self._generation += 1
        self._pending = None
        stop_stream(self._local_stream)
        self._local_stream = None
        self._call = None
        self.remote_stream = None
        self.end_reason = reason
        status = CALL_STATUS_MEDIA_ERROR if reason == CallEndReason.MEDIA_ERROR else CALL_STATUS_ENDED
        self._set_phase(CallPhase.ENDED, status)

    def _set_phase(self, phase: CallPhase, status: str) -> None:
        self.phase = phase
        self.status = status
        if self.on_call_state_callback:
            try:
                self.on_call_state_callback(phase, status)
            except Exception as e:
                logger.error(f"Call state callback error: {e}")

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Auto-answer skipped: no running event loop")
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def __repr__(self) -> str:
        return f"CallRouter(phase={self.phase.name}, status={self.status!r})"
