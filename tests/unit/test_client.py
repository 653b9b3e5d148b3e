"""
Unit tests for peerlink.client module.

Tests the PeerSession facade against fake transport handles.
"""

from unittest.mock import MagicMock

import pytest

from peerlink.client import PeerSession
from peerlink.config import Config
from peerlink.errors import ErrorCode, IdentityError, MediaError, NotConnectedError, SendFailedError
from peerlink.message import Attachment, Message

LOCAL_ID = "secure-chat-v2-aryaveer"
REMOTE_ID = "secure-chat-v2-guest"


@pytest.fixture
def peer(signaling_factory, media_provider, scheduler):
    return PeerSession("aryaveer", signaling_factory, media_provider, scheduler=scheduler)


def connect(peer, signaling_factory):
    handle = signaling_factory.current
    handle.simulate_open()
    connection = handle.connections[-1]
    connection.simulate_open()
    return connection


class TestLifecycle:
    """Test start, stop and identity switching."""

    def test_start(self, peer, signaling_factory):
        ready = MagicMock()
        peer.on_ready_callback = ready
        peer.start()

        handle = signaling_factory.current
        assert handle.id == LOCAL_ID
        assert peer.target_id == REMOTE_ID
        assert peer.started is True

        handle.simulate_open()
        ready.assert_called_once_with(LOCAL_ID)
        assert handle.connections[0].peer == REMOTE_ID

    def test_unknown_user(self, signaling_factory, media_provider, scheduler):
        peer = PeerSession("mallory", signaling_factory, media_provider, scheduler=scheduler)
        with pytest.raises(IdentityError):
            peer.start()
        assert signaling_factory.handles == []

    def test_connection_notifications(self, peer, signaling_factory):
        changes = []
        peer.on_connection_change_callback = changes.append
        peer.start()

        connection = connect(peer, signaling_factory)
        assert peer.connected is True
        connection.simulate_close()
        assert peer.connected is False
        assert changes == [True, False]

    def test_stop(self, peer, signaling_factory, scheduler):
        changes = []
        peer.on_connection_change_callback = changes.append
        peer.start()
        connection = connect(peer, signaling_factory)

        peer.stop()
        peer.stop()

        assert connection.closed is True
        assert signaling_factory.current.destroyed is True
        assert peer.connected is False
        assert peer.started is False
        assert changes == [True, False]
        assert scheduler.pending == []

    def test_switch_identity(self, peer, signaling_factory):
        peer.start()
        connect(peer, signaling_factory)
        peer.send("before the switch")
        first = signaling_factory.current

        peer.switch_identity("guest")

        assert first.destroyed is True
        assert peer.messages == []
        assert signaling_factory.current.id == REMOTE_ID
        assert peer.target_id == LOCAL_ID
        assert peer.channel.sender_id == "guest"

    def test_switch_to_unknown_identity_keeps_session(self, peer, signaling_factory):
        peer.start()
        with pytest.raises(IdentityError):
            peer.switch_identity("mallory")
        assert signaling_factory.current.destroyed is False
        assert peer.user_id == "aryaveer"

    def test_manual_reset(self, peer, signaling_factory):
        peer.start()
        first = signaling_factory.current
        peer.manual_reset()
        assert first.destroyed is True
        assert len(signaling_factory.handles) == 2

    def test_from_config(self, temp_dir, signaling_factory, media_provider, scheduler):
        path = temp_dir / "config.toml"
        path.write_text(
            '[identity]\nprefix = "test-"\n\n'
            '[peers]\nalice = "bob"\nbob = "alice"\n\n'
            "[connection]\nunavailable_retry_delay = 1.0\n"
        )
        peer = PeerSession.from_config(
            "alice", Config(path), signaling_factory, media_provider, scheduler
        )
        peer.start()

        assert signaling_factory.current.id == "test-alice"
        assert peer.target_id == "test-bob"
        assert peer.settings.unavailable_retry_delay == 1.0

    @pytest.mark.asyncio
    async def test_async_context_manager(self, peer, signaling_factory):
        async with peer as session:
            assert session is peer
            assert peer.started is True
        assert signaling_factory.current.destroyed is True


class TestMessaging:
    """Test the messaging surface."""

    def test_send(self, peer, signaling_factory):
        peer.start()
        connection = connect(peer, signaling_factory)

        message = peer.send("hello guest")
        assert connection.sent[0]["senderId"] == "aryaveer"
        assert peer.messages == [message]

    def test_send_while_disconnected(self, peer):
        peer.start()
        with pytest.raises(NotConnectedError):
            peer.send("hello")

    def test_send_failure_starts_new_attempt(self, peer, signaling_factory):
        peer.start()
        connection = connect(peer, signaling_factory)
        connection.send_error = RuntimeError("channel closed")

        with pytest.raises(SendFailedError):
            peer.send("hello")

        handle = signaling_factory.current
        assert len(handle.connections) == 2
        assert peer.connected is False
        assert peer.messages == []

    def test_receive(self, peer, signaling_factory):
        received = []
        peer.on_message_callback = received.append
        peer.start()
        connection = connect(peer, signaling_factory)

        connection.simulate_data(Message.create("guest", "hi aryaveer").to_dict())
        assert [m.text for m in received] == ["hi aryaveer"]
        assert peer.messages == received


@pytest.mark.asyncio
class TestCalls:
    """Test the call surface."""

    async def test_place_and_end(self, peer, signaling_factory, media_provider):
        states = []
        peer.on_call_state_callback = lambda phase, status: states.append(status)
        peer.start()
        signaling_factory.current.simulate_open()

        assert await peer.place_call() is True
        call = signaling_factory.current.calls[0]
        assert call.peer == REMOTE_ID

        peer.end_call()
        assert call.closed is True
        assert media_provider.streams[0].stopped is True
        assert states[-1] == "Call ended"

    async def test_answer_incoming(self, peer, signaling_factory, stream_factory):
        incoming = []
        streams = []
        peer.on_incoming_call_callback = incoming.append
        peer.on_remote_stream_callback = streams.append
        peer.start()

        call = signaling_factory.current.simulate_call(REMOTE_ID)
        assert incoming == [call]
        assert await peer.answer_call() is True

        remote = stream_factory()
        call.simulate_stream(remote)
        assert streams == [remote]


class TestAttachmentLimit:
    """Test the configured attachment size limit."""

    @pytest.fixture
    def limited(self, temp_dir, signaling_factory, media_provider, scheduler):
        path = temp_dir / "config.toml"
        path.write_text("[limits]\nmax_attachment_size = 8\n")
        return PeerSession.from_config(
            "aryaveer", Config(path), signaling_factory, media_provider, scheduler
        )

    def test_send_refuses_large_attachment(self, limited, signaling_factory):
        limited.start()
        connection = connect(limited, signaling_factory)

        with pytest.raises(MediaError) as exc_info:
            limited.send("", [Attachment.from_bytes(b"0123456789", "big.bin")])

        assert exc_info.value.code == ErrorCode.E612_ATTACHMENT_TOO_LARGE
        assert connection.sent == []
        assert limited.messages == []

        limited.send("", [Attachment.from_bytes(b"small", "ok.bin")])
        assert len(connection.sent) == 1

    @pytest.mark.asyncio
    async def test_load_attachment_uses_limit(self, limited, temp_dir):
        (temp_dir / "note.txt").write_bytes(b"short")
        (temp_dir / "photo.png").write_bytes(b"0123456789")

        attachment = await limited.load_attachment(temp_dir / "note.txt")
        assert attachment.decode() == b"short"

        with pytest.raises(MediaError) as exc_info:
            await limited.load_attachment(temp_dir / "photo.png")
        assert exc_info.value.code == ErrorCode.E612_ATTACHMENT_TOO_LARGE
