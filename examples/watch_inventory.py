"""
Inventory watch example.

This example subscribes to a vending machine's inventory pushes, asks it
for its status once, and prints every snapshot it reports for a minute.
"""

import asyncio
import logging
import os

from vmadmin import CommandChannel, Identity, RelaySet
from vmadmin.common.config import Config
from vmadmin.common.models import InventorySnapshot, StatusCommand


def print_snapshot(snapshot: InventorySnapshot) -> None:
    print(f"{len(snapshot.items)} item(s)")
    for item in snapshot.items:
        print(f"  #{item.id} {item.name}: {item.count} left at {item.price}")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    identity = Identity.from_secret(os.environ["VMADMIN_PRIVATE_KEY"])
    target = os.environ["VMADMIN_TARGET"]

    async with RelaySet(Config().RELAYS) as relay_set:
        channel = CommandChannel(relay_set, identity)
        unsubscribe = await channel.subscribe_to_device_updates(target, print_snapshot)
        try:
            await channel.send(identity, target, StatusCommand())
            await asyncio.sleep(60)
        finally:
            await unsubscribe()


if __name__ == "__main__":
    asyncio.run(main())
