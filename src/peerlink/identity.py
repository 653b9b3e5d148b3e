"""
PeerLink - Identity derivation and peer pairing.

Each local user maps to exactly one signaling identity and exactly one
counterpart. There is no discovery: the pairing comes from configuration.
"""

import logging
import re
from typing import Dict, Mapping, Optional

from .constants import DEFAULT_PEERS, IDENTITY_PREFIX
from .errors import ErrorCode, IdentityError

logger = logging.getLogger(__name__)

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_user_id(user_id: str) -> bool:
    """Check that a user id is safe to embed in a signaling identity."""
    return isinstance(user_id, str) and bool(_USER_ID_PATTERN.match(user_id))


def derive_identity(user_id: str, prefix: str = IDENTITY_PREFIX) -> str:
    """
    Derive the signaling identity for a local user.

    Args:
        user_id: Local user identifier
        prefix: Namespace prefix shared by both parties

    Returns:
        Identity string (prefix followed by the user id)

    Raises:
        IdentityError: If the user id is empty or contains unsafe characters
    """
    if not validate_user_id(user_id):
        raise IdentityError(
            ErrorCode.E305_INVALID_IDENTITY,
            f"Invalid user id: {user_id!r}",
            {"user_id": user_id},
        )
    return f"{prefix}{user_id}"


class PeerDirectory:
    """Fixed user-to-counterpart pairing."""

    def __init__(self, peers: Optional[Mapping[str, str]] = None, prefix: str = IDENTITY_PREFIX):
        self.prefix = prefix
        self._peers: Dict[str, str] = dict(peers if peers is not None else DEFAULT_PEERS)

        for user_id, target in self._peers.items():
            if not validate_user_id(user_id) or not validate_user_id(target):
                raise IdentityError(
                    ErrorCode.E305_INVALID_IDENTITY,
                    f"Invalid peer pairing: {user_id!r} -> {target!r}",
                    {"user_id": user_id, "target": target},
                )
            if user_id == target:
                raise IdentityError(
                    ErrorCode.E305_INVALID_IDENTITY,
                    f"User {user_id!r} cannot be paired with itself",
                    {"user_id": user_id},
                )

    def identity_for(self, user_id: str) -> str:
        """Signaling identity of a configured local user."""
        self._require(user_id)
        return derive_identity(user_id, self.prefix)

    def target_for(self, user_id: str) -> str:
        """Signaling identity of the counterpart configured for ``user_id``."""
        self._require(user_id)
        return derive_identity(self._peers[user_id], self.prefix)

    def users(self) -> list:
        return sorted(self._peers)

    def _require(self, user_id: str) -> None:
        if user_id not in self._peers:
            raise IdentityError(
                ErrorCode.E301_IDENTITY_NOT_FOUND,
                f"No peer configured for user {user_id!r}",
                {"user_id": user_id},
            )

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._peers

    def __repr__(self) -> str:
        return f"PeerDirectory(users={self.users()}, prefix={self.prefix!r})"
