"""Domain layer: Core entities of the command channel.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from vmadmin.common.keys import derive_public_key, normalize_private_key


@dataclass(frozen=True)
class Identity:
    """Operator keypair held in memory for one session."""

    private_key: str
    public_key: str

    @classmethod
    def from_secret(cls, secret: str) -> Identity:
        """Build an identity from a hex or nsec private key."""
        private_key = normalize_private_key(secret)
        return cls(private_key=private_key, public_key=derive_public_key(private_key))

    def __repr__(self) -> str:
        return f"Identity(public_key={self.public_key!r})"


@dataclass(frozen=True)
class Ack:
    """A relay accepted an event. Says nothing about the device."""

    relay_url: str
    event_id: str
    message: str = ""


class ChannelState(enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    ACKED = "acked"
    FAILED = "failed"


@dataclass(frozen=True)
class SendOutcome:
    command_type: str
    state: ChannelState
    detail: str
