"""
Command-line interface for vending machine administration.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Awaitable, Callable

import click
import requests
from pydantic import ValidationError

from vmadmin.client.application.admin_session import AdminSession
from vmadmin.client.infrastructure.config_loader import ConfigLoader
from vmadmin.client.infrastructure.feedback import (
    ClickNotificationSink,
    InMemoryStateStore,
)
from vmadmin.client.infrastructure.relay_info import fetch_relay_info
from vmadmin.common.config import Config
from vmadmin.common.exceptions import VmAdminError
from vmadmin.common.keys import (
    derive_public_key,
    encode_private_key,
    encode_public_key,
    generate_private_key,
)
from vmadmin.common.models import ClientConfig
from vmadmin.relay import start_relay

if TYPE_CHECKING:
    from vmadmin.common.models import InventorySnapshot

COMMAND_NAMES = [
    "status",
    "add-item",
    "remove-item",
    "change-price",
    "reboot",
    "shutdown",
    "request-admin",
    "end-admin",
]


def _loader(ctx: click.Context) -> ConfigLoader:
    return ConfigLoader(ctx.obj)


def _build_session(loader: ConfigLoader) -> AdminSession:
    return AdminSession(
        loader.create_relay_set(),
        loader.create_channel,
        loader.create_credential_store(),
        ClickNotificationSink(),
        InMemoryStateStore(),
        loader.notification_dismiss_after,
    )


def _open_session(
    loader: ConfigLoader, private_key: str | None, target: str | None
) -> AdminSession:
    session = _build_session(loader)
    if private_key or target:
        if not (private_key and target):
            msg = "--private-key and --target must be given together"
            raise click.UsageError(msg)
        if not session.login(private_key, target, remember=False):
            msg = "Invalid credentials"
            raise click.ClickException(msg)
    else:
        try:
            restored = session.restore()
        except ValueError as e:
            raise click.ClickException(str(e)) from e
        if not restored:
            msg = "Not logged in. Run 'vmadmin login' or pass --private-key and --target"
            raise click.ClickException(msg)
    return session


async def _with_relays(
    session: AdminSession, action: Callable[[AdminSession], Awaitable[bool]]
) -> bool:
    async with session.relay_set:
        return await action(session)


def format_inventory(snapshot: InventorySnapshot) -> str:
    if not snapshot.items:
        return "Inventory is empty"
    lines = [f"{'ID':>4}  {'Name':<24} {'Price':>8} {'Count':>6}"]
    lines.extend(
        f"{item.id:>4}  {item.name:<24} {item.price:>8} {item.count:>6}"
        for item in snapshot.items
    )
    return "\n".join(lines)


credential_options = [
    click.option(
        "--private-key",
        envvar="VMADMIN_PRIVATE_KEY",
        default=None,
        help="Operator private key, hex or nsec (default: saved login)",
    ),
    click.option(
        "--target",
        envvar="VMADMIN_TARGET",
        default=None,
        help="Vending machine public key, hex or npub (default: saved login)",
    ),
]


def with_credentials(f: Callable) -> Callable:
    for option in reversed(credential_options):
        f = option(f)
    return f


@click.group()
@click.option(
    "--relay",
    "relays",
    multiple=True,
    help="Relay URL, repeatable (default: from VMADMIN_RELAYS env)",
)
@click.option(
    "--data-dir",
    default=None,
    help="Directory for saved credentials (default: ~/.vmadmin)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    relays: tuple[str, ...],
    data_dir: str | None,
    verbose: bool,  # noqa: FBT001
) -> None:
    """Vending machine remote administration CLI"""
    if relays:
        os.environ["VMADMIN_RELAYS"] = ",".join(relays)
    if data_dir:
        os.environ["VMADMIN_DATA_DIR"] = data_dir
    ctx.obj = ClientConfig(log_level=logging.DEBUG if verbose else None)


@cli.command()
def keygen() -> None:
    """Generate a new operator keypair"""
    private_key = generate_private_key()
    public_key = derive_public_key(private_key)
    click.echo(f"Private key: {private_key}")
    click.echo(f"             {encode_private_key(private_key)}")
    click.echo(f"Public key:  {public_key}")
    click.echo(f"             {encode_public_key(public_key)}")


@cli.command()
@click.option(
    "--private-key",
    envvar="VMADMIN_PRIVATE_KEY",
    prompt="Operator private key",
    hide_input=True,
    help="Operator private key, hex or nsec",
)
@click.option(
    "--target",
    envvar="VMADMIN_TARGET",
    prompt="Vending machine public key",
    help="Vending machine public key, hex or npub",
)
@click.pass_context
def login(ctx: click.Context, private_key: str, target: str) -> None:
    """Save operator credentials for later commands"""
    loader = _loader(ctx)
    session = _build_session(loader)
    if not session.login(private_key, target):
        msg = "Credentials were not saved"
        raise click.ClickException(msg)
    click.echo(f"Credentials saved to {loader.credentials_file_path}")


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Forget saved operator credentials"""
    loader = _loader(ctx)
    loader.create_credential_store().clear()
    click.echo("Logged out")


@cli.command()
@click.argument("command", type=click.Choice(COMMAND_NAMES))
@click.option("--id", "item_id", type=click.IntRange(min=0), help="Item id")
@click.option("--name", default=None, help="Item name (add-item)")
@click.option(
    "--price", type=click.IntRange(min=0), default=None, help="Price in minor units"
)
@click.option("--count", type=click.IntRange(min=0), default=None, help="Units to add")
@with_credentials
@click.pass_context
def send(
    ctx: click.Context,
    command: str,
    item_id: int | None,
    name: str | None,
    price: int | None,
    count: int | None,
    private_key: str | None,
    target: str | None,
) -> None:
    """Send one command to the vending machine"""
    if command in ("add-item", "remove-item", "change-price") and item_id is None:
        msg = f"{command} requires --id"
        raise click.UsageError(msg)
    if command == "add-item" and count is None:
        msg = "add-item requires --count"
        raise click.UsageError(msg)
    if command == "change-price" and price is None:
        msg = "change-price requires --price"
        raise click.UsageError(msg)

    actions: dict[str, Callable[[AdminSession], Awaitable[bool]]] = {
        "status": lambda s: s.request_status(),
        "add-item": lambda s: s.add_item(item_id, count, name, price),
        "remove-item": lambda s: s.remove_item(item_id),
        "change-price": lambda s: s.change_price(item_id, price),
        "reboot": lambda s: s.reboot(),
        "shutdown": lambda s: s.shutdown(),
        "request-admin": lambda s: s.enter_admin_mode(),
        "end-admin": lambda s: s.end_admin_mode(),
    }
    session = _open_session(_loader(ctx), private_key, target)
    if not asyncio.run(_with_relays(session, actions[command])):
        msg = "Command was not delivered"
        raise click.ClickException(msg)


@cli.command()
@click.option(
    "--duration",
    type=float,
    default=None,
    help="Stop after this many seconds (default: until interrupted)",
)
@click.option(
    "--status/--no-status",
    default=True,
    help="Ask the machine for its status once subscribed",
)
@with_credentials
@click.pass_context
def watch(
    ctx: click.Context,
    duration: float | None,
    status: bool,  # noqa: FBT001
    private_key: str | None,
    target: str | None,
) -> None:
    """Print the machine's inventory whenever it reports one"""
    session = _open_session(_loader(ctx), private_key, target)
    shown: list[InventorySnapshot] = []

    def on_change(store: InMemoryStateStore) -> None:
        if shown and shown[-1] is store.inventory:
            return
        shown.append(store.inventory)
        click.echo(format_inventory(store.inventory))

    session.state_store.on_change = on_change
    shown.append(session.state_store.inventory)

    async def run(session: AdminSession) -> bool:
        await session.start_watching()
        try:
            if status:
                await session.request_status()
            if duration is not None:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await session.stop_watching()
        return True

    try:
        asyncio.run(_with_relays(session, run))
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command()
@click.option("--timeout", type=float, default=None, help="Seconds per relay")
def probe(timeout: float | None) -> None:
    """Show the information document of each configured relay"""
    config = Config()
    failed = 0
    for url in config.RELAYS:
        try:
            info = fetch_relay_info(url, timeout=timeout or config.PROBE_TIMEOUT)
        except (requests.RequestException, ValueError, ValidationError) as e:
            failed += 1
            click.secho(f"{url}: unreachable ({e})", fg="red")
            continue
        nips = ", ".join(str(n) for n in info.supported_nips) or "none"
        software = " ".join(filter(None, [info.software, info.version])) or "unknown"
        click.echo(f"{url}: {info.name or 'unnamed'} ({software})")
        click.echo(f"  supported NIPs: {nips}")
    if failed == len(config.RELAYS):
        msg = "No relay answered"
        raise click.ClickException(msg)


@cli.command()
@click.option(
    "--host",
    default=None,
    help="Host to bind relay to (default: from VMADMIN_RELAY_HOST env or 127.0.0.1)",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind relay to (default: from VMADMIN_RELAY_PORT env or 7777)",
)
def relay(host: str | None, port: int | None) -> None:
    """Start an in-memory development relay"""
    if host:
        os.environ["VMADMIN_RELAY_HOST"] = host
    if port:
        os.environ["VMADMIN_RELAY_PORT"] = str(port)

    start_relay(Config())


@cli.command("show-key")
@click.pass_context
def show_key(ctx: click.Context) -> None:
    """Show the public keys of the saved login"""
    loader = _loader(ctx)
    try:
        credentials = loader.create_credential_store().load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    if credentials is None:
        msg = "Not logged in"
        raise click.ClickException(msg)
    try:
        operator = derive_public_key(credentials.private_key)
    except VmAdminError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Operator: {encode_public_key(operator)}")
    click.echo(f"Target:   {encode_public_key(credentials.target_public_key)}")


if __name__ == "__main__":
    cli()
