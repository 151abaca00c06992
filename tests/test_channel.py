import asyncio
import json
import time

import pytest

from fakes import FakeRelay, relay_set_of

from vmadmin.client.channel import CommandChannel
from vmadmin.client.domain.entities import ChannelState
from vmadmin.common import envelope
from vmadmin.common.crypto import SecretAgreement
from vmadmin.common.exceptions import SendFailure
from vmadmin.common.keys import encode_private_key, encode_public_key
from vmadmin.common.models import (
    AddItemCommand,
    AddItemRequest,
    InventoryItem,
    InventorySnapshot,
    StatusCommand,
)

CANDY = '{"items":[{"id":1,"name":"Candy Bar","price":150,"count":12}]}'


def device_push(device, operator, payload: str, kind: int = 4, at: int | None = None):
    """A device update encrypted to the operator, as a real machine sends it."""
    key = SecretAgreement.get_conversation_key(device.private_key, operator.public_key)
    draft = envelope.build(
        device.public_key,
        operator.public_key,
        SecretAgreement.encrypt(key, payload.encode()),
        clock=time.time if at is None else (lambda: at),
        kind=kind,
    )
    return envelope.sign(draft, device.private_key)


def open_command(device, event) -> dict:
    key = SecretAgreement.get_conversation_key(device.private_key, event.pubkey)
    return json.loads(SecretAgreement.decrypt(key, event.content))


def test_send_publishes_encrypted_signed_command(operator, device):
    relay = FakeRelay("ws://a", message="")
    channel = CommandChannel(relay_set_of(relay), operator, clock=lambda: 1_700_000_000)

    ack = asyncio.run(channel.send(operator, device.public_key, StatusCommand()))

    event = relay.published[0]
    assert ack.relay_url == "ws://a"
    assert ack.event_id == event.id
    assert event.pubkey == operator.public_key
    assert event.kind == 4  # noqa: PLR2004
    assert event.created_at == 1_700_000_000  # noqa: PLR2004
    assert event.tag_values("p") == [device.public_key]
    assert envelope.verify(event)
    assert "Status" not in event.content
    assert open_command(device, event) == {"type": "Status"}
    assert channel.state is ChannelState.IDLE
    assert channel.last_outcome.state is ChannelState.ACKED
    assert channel.last_outcome.detail == "Command Status sent successfully"


def test_send_accepts_nsec_secret_and_npub_target(operator, device):
    relay = FakeRelay("ws://a")
    channel = CommandChannel(relay_set_of(relay))
    command = AddItemCommand(data=AddItemRequest(id=1, name="Candy Bar", price=150, count=5))

    asyncio.run(
        channel.send(
            encode_private_key(operator.private_key),
            encode_public_key(device.public_key),
            command,
        )
    )

    assert open_command(device, relay.published[0]) == {
        "type": "AddItem",
        "data": {"id": 1, "name": "Candy Bar", "price": 150, "count": 5},
    }


def test_each_send_is_a_new_event(operator, device):
    relay = FakeRelay("ws://a")
    channel = CommandChannel(relay_set_of(relay), clock=lambda: 100)

    async def scenario():
        await channel.send(operator, device.public_key, StatusCommand())
        await channel.send(operator, device.public_key, StatusCommand())

    asyncio.run(scenario())
    first, second = relay.published
    assert first.id != second.id
    assert first.content != second.content


def test_invalid_device_key_is_a_send_failure(operator):
    relay = FakeRelay("ws://a")
    channel = CommandChannel(relay_set_of(relay))

    with pytest.raises(SendFailure) as exc_info:
        asyncio.run(channel.send(operator, "not-a-key", StatusCommand()))

    assert not exc_info.value.relay_unavailable
    assert relay.published == []
    assert channel.last_outcome.state is ChannelState.FAILED


def test_invalid_operator_secret_is_a_send_failure(device):
    channel = CommandChannel(relay_set_of(FakeRelay("ws://a")))

    with pytest.raises(SendFailure):
        asyncio.run(channel.send("00" * 32, device.public_key, StatusCommand()))


def test_rejection_everywhere_is_a_send_failure(operator, device):
    channel = CommandChannel(
        relay_set_of(
            FakeRelay("ws://a", accept=False, message="blocked"),
            FakeRelay("ws://b", accept=False, message="blocked"),
        )
    )

    with pytest.raises(SendFailure) as exc_info:
        asyncio.run(channel.send(operator, device.public_key, StatusCommand()))

    assert "Failed to publish to any relay" in exc_info.value.cause
    assert not exc_info.value.relay_unavailable
    assert channel.state is ChannelState.IDLE


def test_unreachable_relays_flag_relay_unavailable(operator, device):
    channel = CommandChannel(
        relay_set_of(
            FakeRelay("ws://a", error=ConnectionRefusedError("refused")),
            FakeRelay("ws://b", delay=5.0),
            publish_timeout=0.05,
        )
    )

    with pytest.raises(SendFailure) as exc_info:
        asyncio.run(channel.send(operator, device.public_key, StatusCommand()))

    assert exc_info.value.relay_unavailable


def test_send_on_closed_relay_set_is_a_send_failure(operator, device):
    relay_set = relay_set_of(FakeRelay("ws://a"))
    channel = CommandChannel(relay_set)

    async def scenario():
        await relay_set.close()
        await channel.send(operator, device.public_key, StatusCommand())

    with pytest.raises(SendFailure, match="closed"):
        asyncio.run(scenario())

    assert channel.state is ChannelState.IDLE
    assert channel.last_outcome.state is ChannelState.FAILED


def test_one_broken_relay_does_not_stop_the_others(operator, device):
    healthy = FakeRelay("ws://good", delay=0.2)
    channel = CommandChannel(
        relay_set_of(FakeRelay("ws://bad", error=ValueError("weird frame")), healthy)
    )

    ack = asyncio.run(channel.send(operator, device.public_key, StatusCommand()))

    assert ack.relay_url == "ws://good"
    assert channel.state is ChannelState.IDLE
    assert channel.last_outcome.state is ChannelState.ACKED


def test_unexpected_error_is_a_send_failure(operator, device, monkeypatch):
    relay_set = relay_set_of(FakeRelay("ws://a"))
    channel = CommandChannel(relay_set)

    async def explode(event, timeout=None):
        raise KeyError("lost")

    monkeypatch.setattr(relay_set, "publish_and_await_ack", explode)

    with pytest.raises(SendFailure) as exc_info:
        asyncio.run(channel.send(operator, device.public_key, StatusCommand()))

    assert isinstance(exc_info.value.__cause__, KeyError)
    assert not exc_info.value.relay_unavailable
    assert channel.state is ChannelState.IDLE
    assert channel.last_outcome.state is ChannelState.FAILED


def test_decode_snapshot_decrypts_device_push(operator, device):
    channel = CommandChannel(relay_set_of(FakeRelay("ws://a")), operator)

    snapshot = channel.decode_snapshot(device_push(device, operator, CANDY))

    assert snapshot.items == (
        InventoryItem(id=1, name="Candy Bar", price=150, count=12),
    )


def test_decode_snapshot_without_identity_reads_plaintext(device, make_event):
    channel = CommandChannel(relay_set_of(FakeRelay("ws://a")))

    snapshot = channel.decode_snapshot(make_event(CANDY, sender=device))

    assert snapshot.get(1).name == "Candy Bar"


@pytest.mark.parametrize("payload", ['{"items":"not-an-array"}', "not json at all"])
def test_malformed_snapshot_becomes_empty(operator, device, payload):
    channel = CommandChannel(relay_set_of(FakeRelay("ws://a")), operator)

    snapshot = channel.decode_snapshot(device_push(device, operator, payload))

    assert snapshot == InventorySnapshot.empty()


def test_undecryptable_update_becomes_empty(operator, device, make_event):
    channel = CommandChannel(relay_set_of(FakeRelay("ws://a")), operator)

    snapshot = channel.decode_snapshot(make_event(CANDY, sender=device, recipient=operator))

    assert snapshot == InventorySnapshot.empty()


def test_subscribe_delivers_snapshots_until_unsubscribed(operator, device):
    relay = FakeRelay("ws://a")
    channel = CommandChannel(relay_set_of(relay), operator)
    snapshots = []

    async def scenario():
        unsubscribe = await channel.subscribe_to_device_updates(
            device.public_key, snapshots.append
        )
        ((sub_id, (filters, callback)),) = relay.subscriptions.items()
        assert filters == [
            {"authors": [device.public_key], "kinds": [4], "#p": [operator.public_key]}
        ]

        await callback("ws://a", device_push(device, operator, CANDY))
        await callback("ws://a", device_push(device, operator, '{"items":"not-an-array"}'))
        await unsubscribe()
        await unsubscribe()
        await callback("ws://a", device_push(device, operator, CANDY))
        return sub_id

    sub_id = asyncio.run(scenario())
    assert [len(s.items) for s in snapshots] == [1, 0]
    assert sub_id not in relay.subscriptions


def test_forged_updates_are_dropped(operator, device):
    relay = FakeRelay("ws://a")
    channel = CommandChannel(relay_set_of(relay), operator)
    snapshots = []

    async def scenario():
        await channel.subscribe_to_device_updates(device.public_key, snapshots.append)
        ((_, (_, callback)),) = relay.subscriptions.items()
        genuine = device_push(device, operator, CANDY)
        forged = genuine.model_copy(update={"created_at": genuine.created_at + 1})
        await callback("ws://a", forged)

    asyncio.run(scenario())
    assert snapshots == []


def test_replayed_history_does_not_overwrite_newer_state(operator, device):
    relay = FakeRelay("ws://a")
    channel = CommandChannel(relay_set_of(relay), operator)
    snapshots = []
    restocked = '{"items":[{"id":1,"name":"Candy Bar","price":150,"count":20}]}'

    async def scenario():
        await channel.subscribe_to_device_updates(device.public_key, snapshots.append)
        ((_, (_, callback)),) = relay.subscriptions.items()
        # Stored events come back newest first.
        await callback("ws://a", device_push(device, operator, restocked, at=1_700_000_200))
        await callback("ws://a", device_push(device, operator, CANDY, at=1_700_000_100))
        await callback("ws://b", device_push(device, operator, restocked, at=1_700_000_200))

    asyncio.run(scenario())
    assert [s.get(1).count for s in snapshots] == [20, 20]
