"""
Entry point for the development relay.
"""

from __future__ import annotations

import uvicorn

from vmadmin.common.config import Config

from .core import DevRelay


def start_relay(config: Config | None = None) -> None:
    """Start the development relay."""
    if config is None:
        config = Config()
    relay = DevRelay(config=config)
    uvicorn.run(relay.app, host=relay.relay_host, port=relay.relay_port)
