"""
PeerLink - Global Constants and Configuration Values

This module defines all constants used throughout the PeerLink package.
All magic numbers and configuration defaults are centralized here.

Author: peerlink contributors
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "PeerLink"

# Identity Constants
# Unique prefix to avoid collisions on a shared rendezvous service
IDENTITY_PREFIX = "secure-chat-v2-"
DEFAULT_PEERS = {
    "aryaveer": "guest",
    "guest": "aryaveer",
}

# Retry Configuration (seconds)
UNAVAILABLE_RETRY_DELAY = 3.0  # target not registered on the rendezvous service
CLOSE_RETRY_DELAY = 2.0  # established connection closed
REINIT_DELAY = 5.0  # signaling handle could not be created
RETRY_BACKOFF_MULTIPLIER = 1.0  # 1.0 keeps the delay fixed
MAX_RETRY_DELAY = 60.0

# Glare resolution policies
GLARE_ADOPT_INCOMING = "adopt"
GLARE_BY_IDENTITY = "identity"

# Message Limits
MAX_MESSAGE_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_ATTACHMENT_SIZE = 8 * 1024 * 1024  # 8 MB before base64 encoding

# Signaling error kinds
ERROR_PEER_UNAVAILABLE = "peer-unavailable"
ERROR_NETWORK = "network"
ERROR_DISCONNECTED = "disconnected"
ERROR_SERVER = "server-error"
ERROR_SOCKET = "socket-error"
ERROR_SOCKET_CLOSED = "socket-closed"

# Call status strings shown to observers
CALL_STATUS_READY = "Ready to call"
CALL_STATUS_STARTING = "Starting stream..."
CALL_STATUS_CALLING = "Calling..."
CALL_STATUS_ANSWERING = "Answering..."
CALL_STATUS_RINGING = "Incoming call"
CALL_STATUS_CONNECTED = "Connected"
CALL_STATUS_ENDED = "Call ended"
CALL_STATUS_MEDIA_ERROR = "Error: Could not access camera/mic"

# File Paths
DEFAULT_DATA_DIR = "~/.peerlink"
CONFIG_FILENAME = "config.toml"
LOGS_DIR = "logs"
LOG_FILENAME = "peerlink.log"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5
