"""Infrastructure layer: Notification sinks and UI state stores.
"""

from __future__ import annotations

import logging
from typing import Callable

import click

from vmadmin.common.models import InventorySnapshot, Notification

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "error": logging.ERROR,
}
SEVERITY_COLORS = {"info": "blue", "success": "green", "error": "red"}


class LoggingNotificationSink:
    """Writes notifications to the log."""

    def __init__(self) -> None:
        self.history: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.history.append(notification)
        logger.log(
            SEVERITY_LEVELS[notification.severity],
            "[%s] %s",
            notification.severity,
            notification.message,
        )


class ClickNotificationSink:
    """Echoes notifications to the terminal."""

    def notify(self, notification: Notification) -> None:
        click.secho(
            notification.message,
            fg=SEVERITY_COLORS[notification.severity],
            err=notification.severity == "error",
        )


class InMemoryStateStore:
    """Holds the reconciled inventory and connectivity flag."""

    def __init__(
        self, on_change: Callable[[InMemoryStateStore], None] | None = None
    ) -> None:
        self.inventory = InventorySnapshot.empty()
        self.connected = False
        self.on_change = on_change

    def set_inventory(self, snapshot: InventorySnapshot) -> None:
        self.inventory = snapshot
        self._changed()

    def set_connected(self, connected: bool) -> None:  # noqa: FBT001
        self.connected = connected
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
