"""
Configuration settings for the vending machine admin channel.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path


def _split_relays(value: str) -> list[str]:
    return [url.strip() for url in value.split(",") if url.strip()]


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Relay network
        self.RELAYS: list[str] = _split_relays(
            os.getenv("VMADMIN_RELAYS", "ws://localhost:7777")
        )
        self.PUBLISH_TIMEOUT: float = float(
            os.getenv("VMADMIN_PUBLISH_TIMEOUT", "5")
        )  # Per-relay ack timeout in seconds
        self.CONNECT_TIMEOUT: float = float(os.getenv("VMADMIN_CONNECT_TIMEOUT", "5"))
        self.RECONNECT_INITIAL_BACKOFF: float = 1.0
        self.RECONNECT_MAX_BACKOFF: float = 30.0
        self.PROBE_TIMEOUT: float = 5.0

        # Event kinds
        self.COMMAND_KIND: int = 4  # Encrypted direct message
        self.UPDATE_KIND: int = 4

        # Operator feedback
        self.NOTIFICATION_DISMISS_AFTER: float = 3.0

        # File paths
        self.DATA_DIR: Path = Path(
            os.getenv("VMADMIN_DATA_DIR", str(Path.home() / ".vmadmin"))
        )
        self.CREDENTIALS_FILE_NAME: str = "credentials.json"

        # Development relay
        self.RELAY_HOST: str = os.getenv("VMADMIN_RELAY_HOST", "127.0.0.1")
        self.RELAY_PORT: int = int(os.getenv("VMADMIN_RELAY_PORT", "7777"))
        self.MAX_EVENT_SIZE: int = 64 * 1024  # Serialized event bytes

        # Version
        self.SOFTWARE_VERSION: str = "0.1.0"

        # Logging
        self.LOG_LEVEL: int = logging.INFO
