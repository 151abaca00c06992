"""
Custom exceptions for the admin command channel.
"""

from __future__ import annotations

from dataclasses import dataclass

UNAVAILABLE_REASONS = ("timeout", "connection-error")


class VmAdminError(Exception):
    """Base class for every error raised by vmadmin."""


class InvalidKeyEncoding(VmAdminError):
    """Key text is neither valid hex nor a decodable nsec/npub string."""


class InvalidKeyMaterial(VmAdminError):
    """Key bytes are not a valid secp256k1 scalar or point."""


class KeyAgreementFailed(VmAdminError):
    """Conversation key derivation failed."""


class DecryptionFailed(VmAdminError):
    """Payload could not be authenticated or decoded."""


class SigningFailed(VmAdminError):
    """Event could not be signed."""


class MalformedSnapshot(VmAdminError):
    """Device update did not contain a valid inventory snapshot."""


@dataclass(frozen=True)
class RelayFailure:
    """Why a single relay did not accept an event."""

    url: str
    reason: str  # "rejected" | "timeout" | "connection-error" | "error"
    detail: str = ""

    def __str__(self) -> str:
        if self.detail:
            return f"{self.url}: {self.reason} ({self.detail})"
        return f"{self.url}: {self.reason}"


class PublishFailure(VmAdminError):
    """No relay accepted the event."""

    def __init__(self, failures: list[RelayFailure]) -> None:
        self.failures = list(failures)
        details = "; ".join(str(f) for f in self.failures) or "no relays"
        super().__init__(f"Failed to publish to any relay: {details}")

    @property
    def relay_unavailable(self) -> bool:
        return any(f.reason in UNAVAILABLE_REASONS for f in self.failures)


class SendFailure(VmAdminError):
    """Umbrella error surfaced to callers of CommandChannel.send."""

    def __init__(self, cause: str, *, relay_unavailable: bool = False) -> None:
        super().__init__(cause)
        self.cause = cause
        self.relay_unavailable = relay_unavailable


class RelaySetClosed(VmAdminError):
    """Publishing was attempted on a RelaySet that has been closed."""
