"""
Signed, addressed, timestamped message units (NIP-01 events).

Producing an event is two steps: ``build`` an unsigned draft, then ``sign``
it. The event id commits to every field of the draft, so an event cannot be
changed once signed without breaking ``verify``.
"""

from __future__ import annotations

import hashlib
import json
import os
import time
from typing import Any, Callable

import coincurve
from pydantic import BaseModel, ConfigDict, Field, model_validator

from vmadmin.common.exceptions import InvalidKeyMaterial, SigningFailed
from vmadmin.common.keys import derive_public_key

DIRECT_MESSAGE_KIND = 4
RECIPIENT_TAG = "p"


class EventDraft(BaseModel):
    """Unsigned event."""

    model_config = ConfigDict(frozen=True)

    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = Field(default_factory=list)
    content: str

    def serialize(self) -> bytes:
        """Canonical NIP-01 serialization the id is computed over."""
        return json.dumps(
            [0, self.pubkey, self.created_at, self.kind, self.tags, self.content],
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    def compute_id(self) -> str:
        return hashlib.sha256(self.serialize()).hexdigest()

    def tag_values(self, name: str) -> list[str]:
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]  # noqa: PLR2004


class Event(EventDraft):
    """Signed event as published to and received from relays."""

    id: str
    sig: str


def build(
    sender_public_key: str,
    recipient_public_key: str,
    encrypted_payload: str,
    clock: Callable[[], float] = time.time,
    kind: int = DIRECT_MESSAGE_KIND,
) -> EventDraft:
    """Create an unsigned draft addressed to one recipient."""
    return EventDraft(
        pubkey=sender_public_key,
        created_at=int(clock()),
        kind=kind,
        tags=[[RECIPIENT_TAG, recipient_public_key]],
        content=encrypted_payload,
    )


def sign(draft: EventDraft, private_key: str) -> Event:
    """Sign a draft with BIP-340 Schnorr over its id."""
    try:
        if derive_public_key(private_key) != draft.pubkey:
            msg = "Private key does not match the draft's pubkey"
            raise SigningFailed(msg)
        secret = coincurve.PrivateKey(bytes.fromhex(private_key))
        event_id = draft.compute_id()
        sig = secret.sign_schnorr(bytes.fromhex(event_id), os.urandom(32))
    except (InvalidKeyMaterial, ValueError) as err:
        msg = f"Signing failed: {err}"
        raise SigningFailed(msg) from err
    return Event(**draft.model_dump(), id=event_id, sig=sig.hex())


def verify(event: Event) -> bool:
    """Check the event id and signature. Never raises for bad input."""
    if event.compute_id() != event.id:
        return False
    try:
        public_key = coincurve.PublicKeyXOnly(bytes.fromhex(event.pubkey))
        return bool(public_key.verify(bytes.fromhex(event.sig), bytes.fromhex(event.id)))
    except (ValueError, TypeError):
        return False


class WireFilter(BaseModel):
    """Shape of a NIP-01 filter object; tag filters (`#x`) are extra fields."""

    model_config = ConfigDict(extra="allow", strict=True)

    ids: list[str] | None = None
    authors: list[str] | None = None
    kinds: list[int] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None

    @model_validator(mode="after")
    def check_tag_filters(self) -> WireFilter:
        for key, value in (self.model_extra or {}).items():
            if not key.startswith("#"):
                continue
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                msg = f"{key} must be a list of strings"
                raise ValueError(msg)
        return self


def event_matches(wire_filter: dict[str, Any], event: EventDraft) -> bool:
    """NIP-01 filter matching; all present conditions must hold."""
    for key, expected in wire_filter.items():
        if key == "ids":
            if getattr(event, "id", None) not in expected:
                return False
        elif key == "authors":
            if event.pubkey not in expected:
                return False
        elif key == "kinds":
            if event.kind not in expected:
                return False
        elif key == "since":
            if event.created_at < expected:
                return False
        elif key == "until":
            if event.created_at > expected:
                return False
        elif key.startswith("#") and len(key) == 2:  # noqa: PLR2004
            if not set(event.tag_values(key[1])) & set(expected):
                return False
    return True
