"""
Encrypted command dispatch and device state subscription.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from vmadmin.client.domain.entities import Ack, ChannelState, Identity, SendOutcome
from vmadmin.client.subscription import Subscription, SubscriptionFilter
from vmadmin.common import envelope
from vmadmin.common.config import Config
from vmadmin.common.crypto import SecretAgreement
from vmadmin.common.exceptions import (
    MalformedSnapshot,
    PublishFailure,
    SendFailure,
    VmAdminError,
)
from vmadmin.common.keys import normalize_public_key
from vmadmin.common.models import InventorySnapshot, encode_command

if TYPE_CHECKING:
    from pydantic import BaseModel

    from vmadmin.client.relay_set import RelaySet
    from vmadmin.common.envelope import Event

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[InventorySnapshot], None]


class CommandChannel:
    """Sends commands to a device and reconciles its pushed inventory."""

    def __init__(
        self,
        relay_set: RelaySet,
        identity: Identity | None = None,
        *,
        command_kind: int | None = None,
        update_kind: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        config = Config()
        self.relay_set = relay_set
        self.identity = identity
        self.command_kind = (
            command_kind if command_kind is not None else config.COMMAND_KIND
        )
        self.update_kind = update_kind if update_kind is not None else config.UPDATE_KIND
        self.clock = clock
        self.state = ChannelState.IDLE
        self.last_outcome: SendOutcome | None = None

    def _build_event(
        self, identity: Identity, device_public_key: str, command: BaseModel
    ) -> Event:
        device_key = normalize_public_key(device_public_key)
        conversation_key = SecretAgreement.get_conversation_key(
            identity.private_key, device_key
        )
        plaintext = encode_command(command).encode("utf-8")
        try:
            payload = SecretAgreement.encrypt(conversation_key, plaintext)
        except ValueError as err:
            msg = f"Command cannot be encrypted: {err}"
            raise SendFailure(msg) from err
        draft = envelope.build(
            identity.public_key,
            device_key,
            payload,
            clock=self.clock,
            kind=self.command_kind,
        )
        return envelope.sign(draft, identity.private_key)

    async def send(
        self, identity: Identity | str, device_public_key: str, command: BaseModel
    ) -> Ack:
        """Encrypt, sign and publish a command.

        Returns once one relay accepted the event; that is not a confirmation
        that the device applied it. Every failure is raised as SendFailure.
        """
        command_type = getattr(command, "type", type(command).__name__)
        self.state = ChannelState.SENDING
        logger.info("Preparing to send %s command", command_type)
        try:
            if isinstance(identity, str):
                identity = Identity.from_secret(identity)
            event = self._build_event(identity, device_public_key, command)
            ack = await self.relay_set.publish_and_await_ack(event)
        except SendFailure as err:
            self._finish(command_type, ChannelState.FAILED, err.cause)
            raise
        except PublishFailure as err:
            self._finish(command_type, ChannelState.FAILED, str(err))
            raise SendFailure(str(err), relay_unavailable=err.relay_unavailable) from err
        except VmAdminError as err:
            self._finish(command_type, ChannelState.FAILED, str(err))
            raise SendFailure(str(err)) from err
        except Exception as err:
            cause = str(err) or type(err).__name__
            self._finish(command_type, ChannelState.FAILED, cause)
            raise SendFailure(cause) from err
        else:
            detail = f"Command {command_type} sent successfully"
            self._finish(command_type, ChannelState.ACKED, detail)
            logger.info("%s (event %s via %s)", detail, ack.event_id, ack.relay_url)
            return ack
        finally:
            self.state = ChannelState.IDLE

    def _finish(self, command_type: str, state: ChannelState, detail: str) -> None:
        if state is ChannelState.FAILED:
            logger.error("Sending %s failed: %s", command_type, detail)
        self.last_outcome = SendOutcome(command_type=command_type, state=state, detail=detail)

    def decode_snapshot(self, event: Event) -> InventorySnapshot:
        """Decode a device push; any failure yields the empty snapshot."""
        try:
            content = event.content
            if self.identity is not None:
                conversation_key = SecretAgreement.get_conversation_key(
                    self.identity.private_key, event.pubkey
                )
                content = SecretAgreement.decrypt(conversation_key, content).decode("utf-8")
            return InventorySnapshot.from_payload(content)
        except MalformedSnapshot as err:
            logger.warning("Malformed snapshot in %s: %s", event.id, err)
        except (VmAdminError, UnicodeDecodeError) as err:
            logger.warning("Undecodable update %s: %s", event.id, err)
        return InventorySnapshot.empty()

    async def subscribe_to_device_updates(
        self, device_public_key: str, on_snapshot: SnapshotHandler
    ) -> Callable[[], Awaitable[None]]:
        """Push every device update to on_snapshot until unsubscribed.

        Updates older than the newest one already delivered are skipped, so
        stored history replayed by a relay never overwrites a fresher state.

        Returns a zero-argument coroutine function that closes the
        subscription; calling it again does nothing.
        """
        device_key = normalize_public_key(device_public_key)
        subscription_filter = SubscriptionFilter(
            author=device_key,
            kind=self.update_kind,
            recipient=self.identity.public_key if self.identity else None,
        )
        newest_seen: int | None = None

        def handle_event(event: Event) -> None:
            nonlocal newest_seen
            if not envelope.verify(event):
                logger.warning("Dropping update %s with invalid signature", event.id)
                return
            if newest_seen is not None and event.created_at < newest_seen:
                logger.debug("Skipping stale update %s", event.id)
                return
            newest_seen = event.created_at
            on_snapshot(self.decode_snapshot(event))

        handle = await Subscription.open(self.relay_set, subscription_filter, handle_event)

        async def unsubscribe() -> None:
            await handle.close()

        return unsubscribe
