"""
PeerLink - Point-to-point messaging and calling session core

Keeps a single logical data connection and a single call alive between
two paired users over a rendezvous-based peer transport, recovering from
transport failures without user intervention.

Author: peerlink contributors
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "peerlink contributors"
__license__ = "MIT"

# Import core modules for easy access
from .arbiter import ConnectionArbiter, ConnectionStatus
from .calls import CallEndReason, CallPhase, CallRouter
from .channel import MessageChannel
from .client import PeerSession
from .config import Config, SessionSettings
from .constants import APP_NAME, VERSION
from .errors import (
    CallError,
    ConfigError,
    ErrorCode,
    IdentityError,
    MediaError,
    NetworkError,
    NotConnectedError,
    PeerLinkError,
    ProtocolError,
    SendFailedError,
    SignalingError,
)
from .identity import PeerDirectory, derive_identity
from .message import Attachment, Message, MessageKind, MessageLog, load_attachment
from .session import SessionLifecycleManager
from .timer import AsyncioScheduler, RetryTimer

__all__ = [
    "APP_NAME",
    "VERSION",
    "AsyncioScheduler",
    "Attachment",
    "CallEndReason",
    "CallError",
    "CallPhase",
    "CallRouter",
    "Config",
    "ConfigError",
    "ConnectionArbiter",
    "ConnectionStatus",
    "ErrorCode",
    "IdentityError",
    "MediaError",
    "Message",
    "MessageChannel",
    "MessageKind",
    "MessageLog",
    "NetworkError",
    "NotConnectedError",
    "PeerDirectory",
    "PeerLinkError",
    "PeerSession",
    "ProtocolError",
    "RetryTimer",
    "SendFailedError",
    "SessionLifecycleManager",
    "SessionSettings",
    "SignalingError",
    "derive_identity",
    "load_attachment",
]
