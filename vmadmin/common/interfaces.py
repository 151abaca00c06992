"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from vmadmin.common.envelope import Event
    from vmadmin.common.models import Credentials, InventorySnapshot, Notification

EventCallback = Callable[[str, "Event"], None]


class IRelayConnection(Protocol):
    """Protocol for a single relay endpoint."""

    url: str

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def publish(self, event: Event) -> tuple[bool, str]: ...

    async def subscribe(
        self, sub_id: str, filters: list[dict[str, Any]], callback: EventCallback
    ) -> None: ...

    async def unsubscribe(self, sub_id: str) -> None: ...

    async def close(self) -> None: ...


class ICredentialStore(Protocol):
    """Protocol for operator credential storage."""

    def load(self) -> Credentials | None: ...

    def save(self, credentials: Credentials) -> None: ...

    def clear(self) -> None: ...


class INotificationSink(Protocol):
    """Protocol for user-facing feedback."""

    def notify(self, notification: Notification) -> None: ...


class IStateStore(Protocol):
    """Protocol for the UI state the channel reconciles into."""

    def set_inventory(self, snapshot: InventorySnapshot) -> None: ...

    def set_connected(self, connected: bool) -> None: ...  # noqa: FBT001
