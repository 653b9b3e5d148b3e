"""
PeerLink - Message channel over the arbitrated data connection.

Serializes outgoing messages onto the connection owned by the arbiter and
appends both sent and received messages to the session log.
"""

import logging
from typing import Any, Callable, Optional, Sequence

from .arbiter import ConnectionArbiter
from .constants import MAX_ATTACHMENT_SIZE, MAX_MESSAGE_SIZE
from .errors import ErrorCode, MediaError, ProtocolError
from .message import Attachment, Message, MessageKind, MessageLog, decode_payload

logger = logging.getLogger(__name__)


class MessageChannel:
    """Send/receive surface for chat messages."""

    def __init__(
        self,
        arbiter: ConnectionArbiter,
        log: Optional[MessageLog] = None,
        max_message_size: int = MAX_MESSAGE_SIZE,
        max_attachment_size: int = MAX_ATTACHMENT_SIZE,
    ):
        self.arbiter = arbiter
        self.log = log if log is not None else MessageLog()
        self.max_message_size = max_message_size
        self.max_attachment_size = max_attachment_size
        self.sender_id: Optional[str] = None

        self.on_message_callback: Optional[Callable[[Message], None]] = None

        arbiter.on_data_callback = self.on_receive

    def send(self, text: str, attachments: Sequence[Attachment] = ()) -> Optional[Message]:
        """
        Build and send a text message from the local user.

        Returns:
            The sent message, or None if there was nothing to send

        Raises:
            NotConnectedError: If no connection is open
            SendFailedError: If the transport rejected the payload
        """
        if self.sender_id is None:
            raise ProtocolError("Sender id not set on message channel")

        message = Message.create(self.sender_id, text, attachments, MessageKind.TEXT)
        if message.is_empty:
            logger.debug("Not sending empty message")
            return None

        self.send_message(message)
        return message

    def send_message(self, message: Message) -> None:
        """
        Transmit a message verbatim and append it to the log.

        Raises:
            MediaError: If an attachment exceeds ``max_attachment_size``
            NotConnectedError: If no connection is open
            SendFailedError: If the transport rejected the payload
        """
        for attachment in message.attachments:
            if attachment.size > self.max_attachment_size:
                raise MediaError(
                    ErrorCode.E612_ATTACHMENT_TOO_LARGE,
                    f"Attachment {attachment.name!r} is {attachment.size} bytes "
                    f"(limit {self.max_attachment_size})",
                    {"name": attachment.name, "size": attachment.size, "limit": self.max_attachment_size},
                )

        self.arbiter.transmit(message.to_dict())
        self.log.append(message)
        logger.debug(f"Sent message {message.message_id} ({len(message.attachments)} attachments)")

    def on_receive(self, payload: Any) -> Optional[Message]:
        """Decode an inbound payload and append it to the log."""
        try:
            message = decode_payload(payload, self.max_message_size)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed payload from {self.arbiter.remote_id}: {e}")
            return None

        self.log.append(message)
        logger.debug(f"Received message {message.message_id} from {message.sender_id}")

        if self.on_message_callback:
            try:
                self.on_message_callback(message)
            except Exception as e:
                logger.error(f"Message callback error: {e}")
        return message

    def clear(self) -> None:
        """Forget the session's messages (identity change)."""
        self.log.clear()
