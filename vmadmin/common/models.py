"""
Pydantic models for commands, inventory state and settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from vmadmin.common.exceptions import MalformedSnapshot

NonNegativeInt = Annotated[int, Field(strict=True, ge=0)]
PositiveInt = Annotated[int, Field(strict=True, gt=0)]


class AddItemRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: NonNegativeInt
    name: str
    price: NonNegativeInt
    count: NonNegativeInt


class ChangePriceRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: NonNegativeInt
    price: NonNegativeInt


class StatusCommand(BaseModel):
    """Ask the machine to report its current status."""

    model_config = ConfigDict(frozen=True)
    type: Literal["Status"] = "Status"


class AddItemCommand(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["AddItem"] = "AddItem"
    data: AddItemRequest


class RemoveItemCommand(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["RemoveItem"] = "RemoveItem"
    data: NonNegativeInt


class ChangePriceCommand(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["ChangePrice"] = "ChangePrice"
    data: ChangePriceRequest


class RebootCommand(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["Reboot"] = "Reboot"


class ShutdownCommand(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["Shutdown"] = "Shutdown"


class RequestAdminStateCommand(BaseModel):
    """Put the machine into admin state; inventory changes need it."""

    model_config = ConfigDict(frozen=True)
    type: Literal["RequestAdminState"] = "RequestAdminState"


class EndAdminStateCommand(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["EndAdminState"] = "EndAdminState"


Command = Annotated[
    Union[
        StatusCommand,
        AddItemCommand,
        RemoveItemCommand,
        ChangePriceCommand,
        RebootCommand,
        ShutdownCommand,
        RequestAdminStateCommand,
        EndAdminStateCommand,
    ],
    Field(discriminator="type"),
]

COMMAND_TYPES: dict[str, type[BaseModel]] = {
    "Status": StatusCommand,
    "AddItem": AddItemCommand,
    "RemoveItem": RemoveItemCommand,
    "ChangePrice": ChangePriceCommand,
    "Reboot": RebootCommand,
    "Shutdown": ShutdownCommand,
    "RequestAdminState": RequestAdminStateCommand,
    "EndAdminState": EndAdminStateCommand,
}

_command_adapter: TypeAdapter[Any] = TypeAdapter(Command)


def encode_command(command: BaseModel) -> str:
    """Serialize a command to its wire JSON (``type`` plus optional ``data``)."""
    return command.model_dump_json()


def parse_command(payload: str | bytes) -> Any:
    """Parse wire JSON back into a command variant."""
    return _command_adapter.validate_json(payload)


class InventoryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: PositiveInt
    name: str
    price: NonNegativeInt  # minor currency unit
    count: NonNegativeInt


class InventorySnapshot(BaseModel):
    """Complete inventory as last reported by the device."""

    model_config = ConfigDict(frozen=True)

    items: tuple[InventoryItem, ...]

    @field_validator("items")
    @classmethod
    def validate_unique_ids(
        cls, items: tuple[InventoryItem, ...]
    ) -> tuple[InventoryItem, ...]:
        ids = [item.id for item in items]
        if len(ids) != len(set(ids)):
            msg = "Duplicate item ids in snapshot"
            raise ValueError(msg)
        return items

    @classmethod
    def empty(cls) -> InventorySnapshot:
        return cls(items=())

    @classmethod
    def from_payload(cls, payload: str | bytes) -> InventorySnapshot:
        """Parse a device push; raises MalformedSnapshot on any other shape."""
        try:
            return cls.model_validate_json(payload)
        except ValidationError as err:
            msg = f"Invalid inventory snapshot: {err.error_count()} error(s)"
            raise MalformedSnapshot(msg) from err

    def get(self, item_id: int) -> InventoryItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def apply(self, command: BaseModel) -> InventorySnapshot:
        """Return the snapshot as it would look once the device applies command.

        Only used for an optimistic local view; it is never a confirmation.
        """
        if isinstance(command, AddItemCommand):
            data = command.data
            existing = self.get(data.id)
            if existing is not None:
                updated = existing.model_copy(update={"count": existing.count + data.count})
                return self._replace(updated)
            if data.id == 0:
                # Snapshot ids are positive; nothing to show for id 0.
                return self
            item = InventoryItem(
                id=data.id, name=data.name, price=data.price, count=data.count
            )
            return InventorySnapshot(items=(*self.items, item))
        if isinstance(command, RemoveItemCommand):
            return InventorySnapshot(
                items=tuple(item for item in self.items if item.id != command.data)
            )
        if isinstance(command, ChangePriceCommand):
            existing = self.get(command.data.id)
            if existing is None:
                return self
            return self._replace(existing.model_copy(update={"price": command.data.price}))
        return self

    def _replace(self, updated: InventoryItem) -> InventorySnapshot:
        return InventorySnapshot(
            items=tuple(updated if item.id == updated.id else item for item in self.items)
        )


class Credentials(BaseModel):
    private_key: str
    target_public_key: str


class Notification(BaseModel):
    message: str
    severity: Literal["info", "success", "error"] = "info"
    auto_dismiss_after: float | None = 3.0


class RelayInfo(BaseModel):
    """NIP-11 relay information document."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    description: str | None = None
    pubkey: str | None = None
    contact: str | None = None
    supported_nips: list[int] = Field(default_factory=list)
    software: str | None = None
    version: str | None = None


class ClientConfig(BaseModel):
    relays: list[str] | None = None
    publish_timeout: float | None = None
    connect_timeout: float | None = None
    reconnect_initial_backoff: float | None = None
    reconnect_max_backoff: float | None = None
    command_kind: int | None = None
    update_kind: int | None = None
    notification_dismiss_after: float | None = None
    log_level: int | None = None
    data_dir: Path | None = None
    credentials_file_path: Path | None = None
