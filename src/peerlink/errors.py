"""
PeerLink - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
PeerLink. Each error has a unique code for logging and debugging.

Author: peerlink contributors
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all PeerLink error codes."""

    # Network Errors (E200-E299)
    E200_NETWORK_ERROR = "E200"
    E203_CONNECTION_CLOSED = "E203"
    E204_SEND_FAILED = "E204"
    E206_INVALID_MESSAGE = "E206"
    E210_NOT_CONNECTED = "E210"

    # Signaling Errors (E250-E299)
    E250_SIGNALING_ERROR = "E250"
    E252_RECONNECT_UNAVAILABLE = "E252"

    # Identity Errors (E300-E399)
    E300_IDENTITY_ERROR = "E300"
    E301_IDENTITY_NOT_FOUND = "E301"
    E305_INVALID_IDENTITY = "E305"

    # Call Errors (E600-E699)
    E600_CALL_ERROR = "E600"
    E610_MEDIA_ERROR = "E610"
    E611_MEDIA_UNAVAILABLE = "E611"
    E612_ATTACHMENT_TOO_LARGE = "E612"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class PeerLinkError(Exception):
    """Base exception class for all PeerLink errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {"code": self.code.value, "message": self.message, "details": self.details}


class NetworkError(PeerLinkError):
    """Exception raised for data connection failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_NETWORK_ERROR,
        message: str = "Network operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class NotConnectedError(NetworkError):
    """Raised when sending while no data connection is open."""

    def __init__(
        self,
        message: str = "No open connection to peer",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E210_NOT_CONNECTED, message, details)


class SendFailedError(NetworkError):
    """Raised when the transport rejects a payload on an open connection.

    The connection is considered lost once this is raised; callers should
    request a new connection attempt.
    """

    def __init__(
        self,
        message: str = "Failed to send payload",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E204_SEND_FAILED, message, details)


class ProtocolError(NetworkError):
    """Raised for payloads that do not decode into a valid message."""

    def __init__(
        self,
        message: str = "Invalid message payload",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E206_INVALID_MESSAGE, message, details)


class SignalingError(PeerLinkError):
    """Exception raised by signaling handle implementations."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E250_SIGNALING_ERROR,
        message: str = "Signaling operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class IdentityError(PeerLinkError):
    """Exception raised for unknown or malformed identities."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_IDENTITY_ERROR,
        message: str = "Identity operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class CallError(PeerLinkError):
    """Exception raised for call routing failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E600_CALL_ERROR,
        message: str = "Call operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class MediaError(CallError):
    """Exception raised when a local media stream cannot be acquired.

    This includes devices being denied, busy or absent.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E610_MEDIA_ERROR,
        message: str = "Could not access camera/mic",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(PeerLinkError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
