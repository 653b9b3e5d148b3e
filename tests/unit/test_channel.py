"""
Unit tests for peerlink.channel module.
"""

import pytest

from peerlink.channel import MessageChannel
from peerlink.errors import ErrorCode, MediaError, NotConnectedError, ProtocolError, SendFailedError
from peerlink.message import Attachment, Message


@pytest.fixture
def channel(bound_arbiter):
    channel = MessageChannel(bound_arbiter)
    channel.sender_id = "aryaveer"
    return channel


@pytest.fixture
def open_connection(bound_arbiter, fake_signaling):
    bound_arbiter.attempt_connect()
    connection = fake_signaling.connections[-1]
    connection.simulate_open()
    return connection


class TestSend:
    """Test outbound messages."""

    def test_send_appends_to_log(self, channel, open_connection):
        message = channel.send("hello")

        assert message.text == "hello"
        assert open_connection.sent == [message.to_dict()]
        assert channel.log.messages() == [message]

    def test_send_with_attachment(self, channel, open_connection):
        attachment = Attachment.from_bytes(b"data", "a.txt")
        message = channel.send("", [attachment])

        wire = open_connection.sent[0]
        assert wire["attachments"][0]["name"] == "a.txt"
        assert message.attachments == (attachment,)

    def test_attachment_over_limit_not_sent(self, bound_arbiter, open_connection):
        channel = MessageChannel(bound_arbiter, max_attachment_size=4)
        channel.sender_id = "aryaveer"
        attachment = Attachment.from_bytes(b"too large", "big.bin")

        with pytest.raises(MediaError) as exc_info:
            channel.send("see attached", [attachment])

        assert exc_info.value.code == ErrorCode.E612_ATTACHMENT_TOO_LARGE
        assert open_connection.sent == []
        assert channel.log.messages() == []

    def test_empty_message_not_sent(self, channel, open_connection):
        assert channel.send("  ") is None
        assert open_connection.sent == []
        assert len(channel.log) == 0

    def test_not_connected_leaves_log_untouched(self, channel):
        with pytest.raises(NotConnectedError):
            channel.send("hello")
        assert len(channel.log) == 0

    def test_send_failure_leaves_log_untouched(self, channel, open_connection):
        open_connection.send_error = RuntimeError("buffer full")
        with pytest.raises(SendFailedError):
            channel.send("hello")
        assert len(channel.log) == 0

    def test_sender_required(self, bound_arbiter, open_connection):
        channel = MessageChannel(bound_arbiter)
        with pytest.raises(ProtocolError):
            channel.send("hello")


class TestReceive:
    """Test inbound payloads."""

    def test_receive_appends_and_notifies(self, channel, open_connection):
        seen = []
        channel.on_message_callback = seen.append
        wire = Message.create("guest", "hi there").to_dict()

        open_connection.simulate_data(wire)

        assert len(channel.log) == 1
        assert channel.log.last().text == "hi there"
        assert channel.log.last().sender_id == "guest"
        assert seen == channel.log.messages()

    def test_malformed_payload_dropped(self, channel, open_connection):
        open_connection.simulate_data({"garbage": True})
        open_connection.simulate_data("not json")
        assert len(channel.log) == 0

    def test_sent_and_received_share_one_ordered_log(self, channel, open_connection):
        mine = channel.send("first")
        open_connection.simulate_data(Message.create("guest", "second").to_dict())
        theirs = channel.log.last()

        assert channel.log.messages() == [mine, theirs]

    def test_clear(self, channel, open_connection):
        channel.send("hello")
        channel.clear()
        assert len(channel.log) == 0
