"""
Basic usage example of CommandChannel.

This example sends a status request to a vending machine and prints which
relay accepted it. Set VMADMIN_PRIVATE_KEY and VMADMIN_TARGET first, and
VMADMIN_RELAYS if you are not running ``vmadmin relay`` locally.
"""

import asyncio
import logging
import os

from vmadmin import CommandChannel, Identity, RelaySet, SendFailure
from vmadmin.common.config import Config
from vmadmin.common.models import StatusCommand


async def main() -> None:
    # Configure logging
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    identity = Identity.from_secret(os.environ["VMADMIN_PRIVATE_KEY"])
    target = os.environ["VMADMIN_TARGET"]

    async with RelaySet(Config().RELAYS) as relay_set:
        channel = CommandChannel(relay_set, identity)
        try:
            ack = await channel.send(identity, target, StatusCommand())
        except SendFailure as e:
            logger.error("Status request failed: %s", e.cause)
            if e.relay_unavailable:
                logger.error("No relay could be reached")
            return
        logger.info("Status request accepted by %s (event %s)", ack.relay_url, ack.event_id)


if __name__ == "__main__":
    asyncio.run(main())
