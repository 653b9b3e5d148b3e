"""
PeerLink - Chat messages and the session message log.

Messages are immutable once built. The log is an ordered, append-only
sequence scoped to the current session; it is cleared on identity change
and never written to disk.

Wire format (one JSON-compatible dict per message):
    {"id": str, "senderId": str, "text": str,
     "attachments": [{"mimeType": str, "data": str, "name": str}],
     "timestamp": int, "type": "text" | "system"}
"""

import base64
import binascii
import json
import logging
import mimetypes
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import aiofiles

from .constants import MAX_ATTACHMENT_SIZE, MAX_MESSAGE_SIZE
from .errors import ErrorCode, MediaError, ProtocolError

logger = logging.getLogger(__name__)

_id_lock = threading.Lock()
_last_id_ms = 0


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def next_message_id() -> str:
    """Millisecond clock value, bumped so ids from this process never repeat."""
    global _last_id_ms
    with _id_lock:
        candidate = now_ms()
        if candidate <= _last_id_ms:
            candidate = _last_id_ms + 1
        _last_id_ms = candidate
        return str(candidate)


class MessageKind(Enum):
    TEXT = "text"
    SYSTEM = "system"


@dataclass(frozen=True)
class Attachment:
    """A self-contained file payload; ``data`` is base64 text."""

    mime_type: str
    data: str
    name: str

    @classmethod
    def from_bytes(
        cls,
        payload: bytes,
        name: str,
        mime_type: Optional[str] = None,
        max_size: int = MAX_ATTACHMENT_SIZE,
    ) -> "Attachment":
        if len(payload) > max_size:
            raise MediaError(
                ErrorCode.E612_ATTACHMENT_TOO_LARGE,
                f"Attachment {name!r} is {len(payload)} bytes (limit {max_size})",
                {"name": name, "size": len(payload), "limit": max_size},
            )
        if mime_type is None:
            mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        return cls(mime_type=mime_type, data=base64.b64encode(payload).decode("ascii"), name=name)

    def decode(self) -> bytes:
        return base64.b64decode(self.data)

    @property
    def size(self) -> int:
        """Decoded size in bytes."""
        return len(self.decode())

    def to_dict(self) -> Dict[str, str]:
        return {"mimeType": self.mime_type, "data": self.data, "name": self.name}

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Attachment":
        try:
            attachment = Attachment(
                mime_type=str(data["mimeType"]),
                data=str(data["data"]),
                name=str(data.get("name", "")),
            )
            base64.b64decode(attachment.data, validate=True)
        except (AttributeError, KeyError, TypeError, binascii.Error) as e:
            raise ProtocolError(f"Invalid attachment: {e}", {"error": str(e)})
        return attachment


async def load_attachment(
    path: Union[str, Path], max_size: int = MAX_ATTACHMENT_SIZE
) -> Attachment:
    """
    Read a file into an attachment without blocking the event loop.

    Raises:
        MediaError: If the file is missing, unreadable or too large
    """
    path = Path(path)
    try:
        size = path.stat().st_size
    except OSError as e:
        raise MediaError(
            ErrorCode.E610_MEDIA_ERROR,
            f"Cannot read attachment {path.name}: {e}",
            {"path": str(path)},
        )
    if size > max_size:
        raise MediaError(
            ErrorCode.E612_ATTACHMENT_TOO_LARGE,
            f"Attachment {path.name!r} is {size} bytes (limit {max_size})",
            {"path": str(path), "size": size, "limit": max_size},
        )

    try:
        async with aiofiles.open(path, "rb") as f:
            payload = await f.read()
    except OSError as e:
        raise MediaError(
            ErrorCode.E610_MEDIA_ERROR,
            f"Cannot read attachment {path.name}: {e}",
            {"path": str(path)},
        )

    return Attachment.from_bytes(payload, path.name, max_size=max_size)


@dataclass(frozen=True)
class Message:
    """One chat message. ``message_id`` is assigned by the sender."""

    message_id: str
    sender_id: str
    text: str
    attachments: Tuple[Attachment, ...] = field(default_factory=tuple)
    timestamp: int = field(default_factory=now_ms)
    kind: MessageKind = MessageKind.TEXT

    @classmethod
    def create(
        cls,
        sender_id: str,
        text: str,
        attachments: Sequence[Attachment] = (),
        kind: MessageKind = MessageKind.TEXT,
    ) -> "Message":
        message_id = next_message_id()
        return cls(
            message_id=message_id,
            sender_id=sender_id,
            text=text,
            attachments=tuple(attachments),
            timestamp=int(message_id),
            kind=kind,
        )

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.attachments

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation."""
        return {
            "id": self.message_id,
            "senderId": self.sender_id,
            "text": self.text,
            "attachments": [a.to_dict() for a in self.attachments],
            "timestamp": self.timestamp,
            "type": self.kind.value,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Message":
        """
        Build a message from its wire representation.

        Raises:
            ProtocolError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ProtocolError(f"Expected an object, got {type(data).__name__}")
        try:
            kind = MessageKind(data.get("type", MessageKind.TEXT.value))
            attachments = tuple(Attachment.from_dict(a) for a in data.get("attachments") or [])
            return Message(
                message_id=str(data["id"]),
                sender_id=str(data["senderId"]),
                text=str(data.get("text", "")),
                attachments=attachments,
                timestamp=int(data["timestamp"]),
                kind=kind,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed message: {e}", {"error": str(e)})


def decode_payload(payload: Any, max_size: int = MAX_MESSAGE_SIZE) -> Message:
    """Decode a transport payload (dict, JSON text or JSON bytes) into a message."""
    if isinstance(payload, (bytes, bytearray)):
        if len(payload) > max_size:
            raise ProtocolError(
                f"Payload of {len(payload)} bytes exceeds limit",
                {"size": len(payload), "limit": max_size},
            )
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Payload is not UTF-8: {e}")
    if isinstance(payload, str):
        if len(payload) > max_size:
            raise ProtocolError(
                f"Payload of {len(payload)} characters exceeds limit",
                {"size": len(payload), "limit": max_size},
            )
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Payload is not JSON: {e}")
    return Message.from_dict(payload)


class MessageLog:
    """Ordered, append-only message history for the current session."""

    def __init__(self):
        self._messages: List[Message] = []
        self.on_append: Optional[Callable[[Message], None]] = None

    def append(self, message: Message) -> None:
        self._messages.append(message)
        if self.on_append:
            try:
                self.on_append(message)
            except Exception as e:
                logger.error(f"Message log callback error: {e}")

    def clear(self) -> None:
        if self._messages:
            logger.debug(f"Clearing {len(self._messages)} messages from log")
        self._messages = []

    def messages(self) -> List[Message]:
        return list(self._messages)

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))
