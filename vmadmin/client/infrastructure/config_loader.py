"""Infrastructure layer: Settings resolution and component construction.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from vmadmin.client.channel import CommandChannel
from vmadmin.client.infrastructure.credential_store import FileCredentialStore
from vmadmin.client.relay_set import RelaySet
from vmadmin.common import Configurable, setup_logger
from vmadmin.common.config import Config
from vmadmin.common.models import ClientConfig

if TYPE_CHECKING:
    from vmadmin.client.domain.entities import Identity

SETTINGS = [
    "relays",
    "publish_timeout",
    "connect_timeout",
    "reconnect_initial_backoff",
    "reconnect_max_backoff",
    "command_kind",
    "update_kind",
    "notification_dismiss_after",
    "log_level",
    "data_dir",
]


class ConfigLoader(Configurable):
    """Resolves client settings over Config defaults and builds components."""

    def __init__(self, client_config: ClientConfig | None = None):
        self.config: Config = Config()
        client_config = client_config or ClientConfig()

        self.apply_overrides(client_config.model_dump(), self.config, SETTINGS)
        self.credentials_file_path: Path = (
            client_config.credentials_file_path
            or Path(self.data_dir) / self.config.CREDENTIALS_FILE_NAME
        )

        # Setup logging
        self.logger = logging.getLogger("vmadmin")
        setup_logger(self.logger, self.log_level)

    def create_relay_set(self) -> RelaySet:
        return RelaySet(
            self.relays,
            publish_timeout=self.publish_timeout,
            connect_timeout=self.connect_timeout,
            reconnect_initial_backoff=self.reconnect_initial_backoff,
            reconnect_max_backoff=self.reconnect_max_backoff,
        )

    def create_channel(
        self, relay_set: RelaySet, identity: Identity | None = None
    ) -> CommandChannel:
        return CommandChannel(
            relay_set,
            identity,
            command_kind=self.command_kind,
            update_kind=self.update_kind,
        )

    def create_credential_store(self) -> FileCredentialStore:
        return FileCredentialStore(self.credentials_file_path)
