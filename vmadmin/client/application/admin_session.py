"""
Application layer: Operator session use cases.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from vmadmin.client.domain.entities import Identity
from vmadmin.common.config import Config
from vmadmin.common.exceptions import SendFailure, VmAdminError
from vmadmin.common.keys import normalize_public_key
from vmadmin.common.models import (
    AddItemCommand,
    AddItemRequest,
    ChangePriceCommand,
    ChangePriceRequest,
    Credentials,
    EndAdminStateCommand,
    InventorySnapshot,
    Notification,
    RebootCommand,
    RemoveItemCommand,
    RequestAdminStateCommand,
    ShutdownCommand,
    StatusCommand,
)

if TYPE_CHECKING:
    from pydantic import BaseModel

    from vmadmin.client.channel import CommandChannel
    from vmadmin.client.relay_set import RelaySet
    from vmadmin.common.interfaces import (
        ICredentialStore,
        INotificationSink,
        IStateStore,
    )

ChannelFactory = Callable[["RelaySet", "Identity | None"], "CommandChannel"]


class AdminSession:
    """Application service behind the admin console.

    Holds the operator identity, turns command outcomes into notifications
    and keeps the displayed inventory in step with device pushes.
    """

    def __init__(
        self,
        relay_set: RelaySet,
        channel_factory: ChannelFactory,
        credential_store: ICredentialStore,
        notifications: INotificationSink,
        state_store: IStateStore,
        dismiss_after: float | None = None,
    ):
        self.relay_set = relay_set
        self.channel_factory = channel_factory
        self.credential_store = credential_store
        self.notifications = notifications
        self.state_store = state_store
        self.dismiss_after = (
            dismiss_after
            if dismiss_after is not None
            else Config().NOTIFICATION_DISMISS_AFTER
        )
        self.logger = logging.getLogger(__name__)
        self.identity: Identity | None = None
        self.target_public_key: str | None = None
        self.channel: CommandChannel | None = None
        self.local_inventory = InventorySnapshot.empty()
        self._unsubscribe: Callable[[], Awaitable[None]] | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None and self.target_public_key is not None

    @property
    def watching(self) -> bool:
        return self._unsubscribe is not None

    def notify(self, message: str, severity: str = "info") -> None:
        self.notifications.notify(
            Notification(
                message=message,
                severity=severity,
                auto_dismiss_after=self.dismiss_after,
            )
        )

    def _activate(self, identity: Identity, target_public_key: str) -> None:
        self.identity = identity
        self.target_public_key = target_public_key
        self.channel = self.channel_factory(self.relay_set, identity)
        self.state_store.set_connected(True)

    def restore(self) -> bool:
        """Resume a previously saved login."""
        credentials = self.credential_store.load()
        if credentials is None:
            return False
        try:
            identity = Identity.from_secret(credentials.private_key)
            target = normalize_public_key(credentials.target_public_key)
        except VmAdminError as e:
            self.logger.warning("Ignoring saved credentials: %s", e)
            return False
        self._activate(identity, target)
        self.logger.info("Restored session for %s", identity.public_key)
        return True

    def login(
        self, private_key: str, target_public_key: str, *, remember: bool = True
    ) -> bool:
        """Validate the operator key and the target device key.

        With remember, both are saved for later sessions.
        """
        try:
            identity = Identity.from_secret(private_key)
            target = normalize_public_key(target_public_key)
        except VmAdminError as e:
            self.notify(f"Login failed: {e}", "error")
            return False

        self._activate(identity, target)
        if remember:
            self.credential_store.save(
                Credentials(private_key=identity.private_key, target_public_key=target)
            )
            self.notify("Logged in successfully", "success")
        return True

    async def logout(self) -> None:
        await self.stop_watching()
        self.credential_store.clear()
        self.identity = None
        self.target_public_key = None
        self.channel = None
        self.local_inventory = InventorySnapshot.empty()
        self.state_store.set_inventory(self.local_inventory)
        self.state_store.set_connected(False)
        self.notify("Logged out")

    async def send_command(self, command: BaseModel) -> bool:
        """Send one command, reporting progress and outcome as notifications."""
        if not self.is_authenticated or self.channel is None:
            self.notify("Not logged in", "error")
            return False

        command_type = getattr(command, "type", type(command).__name__)
        self.notify(f"Sending {command_type} command...")
        try:
            await self.channel.send(self.identity, self.target_public_key, command)
        except SendFailure as e:
            self.notify(e.cause, "error")
            if e.relay_unavailable:
                self.state_store.set_connected(False)
                self.notify("Connection to relay network lost", "error")
            return False

        self.state_store.set_connected(True)
        self.notify(f"Command {command_type} sent successfully", "success")
        # Local view only; the next device push replaces it.
        self.local_inventory = self.local_inventory.apply(command)
        return True

    async def request_status(self) -> bool:
        return await self.send_command(StatusCommand())

    async def reboot(self) -> bool:
        return await self.send_command(RebootCommand())

    async def shutdown(self) -> bool:
        return await self.send_command(ShutdownCommand())

    async def enter_admin_mode(self) -> bool:
        return await self.send_command(RequestAdminStateCommand())

    async def end_admin_mode(self) -> bool:
        return await self.send_command(EndAdminStateCommand())

    async def add_item(
        self,
        item_id: int,
        count: int,
        name: str | None = None,
        price: int | None = None,
    ) -> bool:
        """Restock a known item or add a new one.

        Name and price fall back to the known item's values; a new item
        needs both.
        """
        existing = self.local_inventory.get(item_id)
        if existing is not None:
            name = name or existing.name
            price = existing.price if price is None else price
        if not name or price is None:
            self.notify("Please fill all required fields", "error")
            return False
        try:
            request = AddItemRequest(id=item_id, name=name, price=price, count=count)
        except ValueError as e:
            self.notify(f"Invalid item: {e}", "error")
            return False
        return await self.send_command(AddItemCommand(data=request))

    async def remove_item(self, item_id: int) -> bool:
        return await self.send_command(RemoveItemCommand(data=item_id))

    async def change_price(self, item_id: int, price: int) -> bool:
        try:
            request = ChangePriceRequest(id=item_id, price=price)
        except ValueError as e:
            self.notify(f"Invalid price: {e}", "error")
            return False
        return await self.send_command(ChangePriceCommand(data=request))

    def _on_snapshot(self, snapshot: InventorySnapshot) -> None:
        self.local_inventory = snapshot
        self.state_store.set_inventory(snapshot)
        self.state_store.set_connected(True)

    async def start_watching(self) -> bool:
        """Subscribe to the target device's inventory pushes."""
        if not self.is_authenticated or self.channel is None:
            self.notify("Not logged in", "error")
            return False
        if self._unsubscribe is not None:
            return True
        self._unsubscribe = await self.channel.subscribe_to_device_updates(
            self.target_public_key, self._on_snapshot
        )
        self.logger.info("Watching device %s", self.target_public_key)
        return True

    async def stop_watching(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            await unsubscribe()
