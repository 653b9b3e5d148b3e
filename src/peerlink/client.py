"""
PeerLink - Session facade for one local user.

Created for the PeerLink session core.

PeerSession wires the session manager, the connection arbiter, the message
channel and the call router together for a configured user, and exposes
the operations and notifications a front end needs:
- start/stop and identity switching
- message sending and the session message log
- placing, answering and ending calls
- manual reset when automatic recovery stalls
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .arbiter import ConnectionArbiter
from .calls import CallPhase, CallRouter
from .channel import MessageChannel
from .config import Config, SessionSettings
from .errors import SendFailedError
from .identity import PeerDirectory
from .message import Attachment, Message, load_attachment
from .session import SessionLifecycleManager
from .signaling import CallHandle, MediaProvider, MediaStream, SignalingFactory
from .timer import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)


class PeerSession:
    """
    A local user's point-to-point session with its configured peer.

    ``connected`` tracks the data connection only. Losing the rendezvous
    service does not clear it: an open data connection keeps working while
    the signaling handle reconnects, and ``on_fatal_error_callback`` reports
    the outage separately.
    """

    def __init__(
        self,
        user_id: str,
        signaling_factory: SignalingFactory,
        media_provider: MediaProvider,
        directory: Optional[PeerDirectory] = None,
        settings: Optional[SessionSettings] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.settings = settings or SessionSettings()
        self.directory = directory or PeerDirectory(prefix=self.settings.identity_prefix)
        self.scheduler = scheduler or AsyncioScheduler()

        self.arbiter = ConnectionArbiter(self.scheduler, self.settings)
        self.channel = MessageChannel(
            self.arbiter,
            max_message_size=self.settings.max_message_size,
            max_attachment_size=self.settings.max_attachment_size,
        )
        self.calls = CallRouter(media_provider, self.settings)
        self.session = SessionLifecycleManager(
            signaling_factory,
            self.arbiter,
            self.scheduler,
            call_router=self.calls,
            settings=self.settings,
        )

        self.user_id = user_id
        self.connected = False
        self.started = False

        # Observer callbacks
        self.on_ready_callback: Optional[Callable[[str], None]] = None
        self.on_connection_change_callback: Optional[Callable[[bool], None]] = None
        self.on_message_callback: Optional[Callable[[Message], None]] = None
        self.on_call_state_callback: Optional[Callable[[CallPhase, str], None]] = None
        self.on_remote_stream_callback: Optional[Callable[[MediaStream], None]] = None
        self.on_incoming_call_callback: Optional[Callable[[CallHandle], None]] = None
        self.on_fatal_error_callback: Optional[Callable[[str], None]] = None

        self.arbiter.on_connection_state_callback = self._on_connection_state
        self.channel.on_message_callback = self._on_message
        self.calls.on_call_state_callback = self._on_call_state
        self.calls.on_remote_stream_callback = self._on_remote_stream
        self.calls.on_incoming_call_callback = self._on_incoming_call

    @classmethod
    def from_config(
        cls,
        user_id: str,
        config: Config,
        signaling_factory: SignalingFactory,
        media_provider: MediaProvider,
        scheduler: Optional[Scheduler] = None,
    ) -> "PeerSession":
        settings = SessionSettings.from_config(config)
        directory = PeerDirectory(config.data.get("peers"), prefix=settings.identity_prefix)
        return cls(user_id, signaling_factory, media_provider, directory, settings, scheduler)

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def identity(self) -> str:
        return self.directory.identity_for(self.user_id)

    @property
    def target_id(self) -> str:
        return self.directory.target_for(self.user_id)

    def start(self) -> None:
        """Register the user's identity and start connecting to its peer."""
        identity, target = self.identity, self.target_id
        self.channel.sender_id = self.user_id
        logger.info(f"Starting session for {self.user_id} ({identity} -> {target})")
        self.session.initialize(
            identity,
            target,
            on_ready=self._on_ready,
            on_incoming_connection=self.arbiter.accept_incoming,
            on_incoming_call=self.calls.on_incoming_call,
            on_fatal_error=self._on_fatal_error,
        )
        self.started = True

    def stop(self) -> None:
        """Tear the session down. Safe to call repeatedly."""
        self.session.teardown()
        self.started = False
        if self.connected:
            self._on_connection_state(False)

    def switch_identity(self, user_id: str) -> None:
        """Tear down, forget this session's messages and start as another user."""
        self.directory.identity_for(user_id)
        self.stop()
        self.channel.clear()
        self.user_id = user_id
        self.start()

    def manual_reset(self) -> None:
        self.arbiter.manual_reset()

    async def __aenter__(self) -> "PeerSession":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()
        await self.calls.aclose()

    # ------------------------------------------------------------------
    # Messaging

    @property
    def messages(self) -> List[Message]:
        return self.channel.log.messages()

    def send(self, text: str, attachments: Sequence[Attachment] = ()) -> Optional[Message]:
        """
        Send a message to the peer.

        Raises:
            MediaError: If an attachment exceeds the configured size limit
            NotConnectedError: If no connection is open
            SendFailedError: If the transport failed; a new attempt is already started
        """
        try:
            return self.channel.send(text, attachments)
        except SendFailedError:
            self.arbiter.attempt_connect()
            raise

    async def load_attachment(self, path: Union[str, Path]) -> Attachment:
        """Read a file as an attachment, enforcing ``limits.max_attachment_size``."""
        return await load_attachment(path, max_size=self.settings.max_attachment_size)

    # ------------------------------------------------------------------
    # Calls

    async def place_call(self) -> bool:
        return await self.session.place_call()

    async def answer_call(self) -> bool:
        return await self.calls.answer_call()

    def end_call(self) -> None:
        self.calls.end_call()

    # ------------------------------------------------------------------
    # Notifications

    def _on_ready(self, assigned_id: str) -> None:
        if self.on_ready_callback:
            self.on_ready_callback(assigned_id)

    def _on_connection_state(self, connected: bool) -> None:
        self.connected = connected
        if self.on_connection_change_callback:
            self.on_connection_change_callback(connected)

    def _on_message(self, message: Message) -> None:
        if self.on_message_callback:
            self.on_message_callback(message)

    def _on_call_state(self, phase: CallPhase, status: str) -> None:
        if self.on_call_state_callback:
            self.on_call_state_callback(phase, status)

    def _on_remote_stream(self, stream: MediaStream) -> None:
        if self.on_remote_stream_callback:
            self.on_remote_stream_callback(stream)

    def _on_incoming_call(self, call: CallHandle) -> None:
        if self.on_incoming_call_callback:
            self.on_incoming_call_callback(call)

    def _on_fatal_error(self, kind: str) -> None:
        if self.on_fatal_error_callback:
            self.on_fatal_error_callback(kind)

    def __repr__(self) -> str:
        return (
            f"PeerSession(user={self.user_id!r}, connected={self.connected}, "
            f"call={self.calls.phase.name})"
        )

