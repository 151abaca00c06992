import asyncio
import json

import pytest

from vmadmin.client.connection import WebSocketRelay


class FakeSocket:
    """In-process stand-in for a websocket client connection."""

    def __init__(self, responder=None):
        self.sent = []
        self.incoming = asyncio.Queue()
        self.responder = responder
        self.closed = False

    async def send(self, raw):
        message = json.loads(raw)
        self.sent.append(message)
        if self.responder is not None:
            for reply in self.responder(message):
                self.push(reply)

    def push(self, message):
        self.incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        self.incoming.put_nowait(None)

    async def close(self):
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        raw = await self.incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


def accept_all(message):
    if message[0] == "EVENT":
        return [["OK", message[1]["id"], True, ""]]
    return []


def reject_all(message):
    if message[0] == "EVENT":
        return [["OK", message[1]["id"], False, "blocked: not on allow list"]]
    return []


def connector_for(*sockets):
    remaining = list(sockets)

    async def connect(url):
        item = remaining.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return connect


async def eventually(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


def test_publish_returns_relay_ok(make_event):
    async def scenario():
        socket = FakeSocket(accept_all)
        relay = WebSocketRelay("ws://relay", connector=connector_for(socket))
        event = make_event()
        assert await relay.publish(event) == (True, "")
        assert socket.sent[0] == ["EVENT", event.model_dump()]
        await relay.close()
        assert socket.closed

    asyncio.run(scenario())


def test_publish_reports_rejection(make_event):
    async def scenario():
        relay = WebSocketRelay("ws://relay", connector=connector_for(FakeSocket(reject_all)))
        accepted, message = await relay.publish(make_event())
        await relay.close()
        return accepted, message

    assert asyncio.run(scenario()) == (False, "blocked: not on allow list")


def test_pending_publish_fails_when_connection_drops(make_event):
    async def scenario():
        socket = FakeSocket()
        relay = WebSocketRelay("ws://relay", connector=connector_for(socket))
        publish = asyncio.create_task(relay.publish(make_event()))
        await eventually(lambda: socket.sent)
        socket.drop()
        with pytest.raises(ConnectionError):
            await publish
        assert not relay.connected
        await relay.close()

    asyncio.run(scenario())


def test_subscription_receives_matching_events(make_event, device):
    async def scenario():
        socket = FakeSocket()
        relay = WebSocketRelay("ws://relay", connector=connector_for(socket))
        received = []
        filters = [{"authors": [device.public_key], "kinds": [4]}]

        await relay.subscribe("sub1", filters, lambda url, event: received.append((url, event)))
        assert socket.sent == [["REQ", "sub1", *filters]]

        event = make_event(sender=device)
        socket.push("not json")
        socket.push(["EVENT", "sub1", {"id": "missing fields"}])
        socket.push(["EVENT", "other-sub", event.model_dump()])
        socket.push(["EVENT", "sub1", event.model_dump()])
        await eventually(lambda: received)
        assert received == [("ws://relay", event)]

        await relay.unsubscribe("sub1")
        assert socket.sent[-1] == ["CLOSE", "sub1"]
        await relay.close()

    asyncio.run(scenario())


def test_failing_callback_does_not_stop_delivery(make_event, device):
    async def scenario():
        socket = FakeSocket()
        relay = WebSocketRelay("ws://relay", connector=connector_for(socket))
        calls = []

        async def callback(url, event):
            calls.append(event.content)
            if len(calls) == 1:
                raise RuntimeError("handler bug")

        await relay.subscribe("sub1", [{}], callback)
        socket.push(["EVENT", "sub1", make_event("one", sender=device).model_dump()])
        socket.push(["EVENT", "sub1", make_event("two", sender=device).model_dump()])
        await eventually(lambda: len(calls) == 2)  # noqa: PLR2004
        await relay.close()
        return calls

    assert asyncio.run(scenario()) == ["one", "two"]


def test_subscription_is_restored_after_reconnect():
    async def scenario():
        first, second = FakeSocket(), FakeSocket()
        relay = WebSocketRelay(
            "ws://relay",
            initial_backoff=0.01,
            connector=connector_for(first, OSError("refused"), second),
        )
        await relay.subscribe("sub1", [{"kinds": [4]}], lambda url, event: None)
        first.drop()
        await eventually(lambda: second.sent)
        assert second.sent == [["REQ", "sub1", {"kinds": [4]}]]
        assert relay.connected
        await relay.close()

    asyncio.run(scenario())


def test_subscribe_to_unreachable_relay_retries_in_background():
    async def scenario():
        socket = FakeSocket()
        relay = WebSocketRelay(
            "ws://relay",
            initial_backoff=0.01,
            connector=connector_for(OSError("refused"), socket),
        )
        await relay.subscribe("sub1", [{}], lambda url, event: None)
        assert not relay.connected
        await eventually(lambda: socket.sent)
        assert socket.sent == [["REQ", "sub1", {}]]
        await relay.close()

    asyncio.run(scenario())


def test_publish_after_close_is_a_connection_error(make_event):
    async def scenario():
        relay = WebSocketRelay("ws://relay", connector=connector_for())
        await relay.close()
        with pytest.raises(ConnectionError):
            await relay.publish(make_event())

    asyncio.run(scenario())


def test_handler_can_publish_on_the_same_relay(make_event, device):
    async def scenario():
        socket = FakeSocket(accept_all)
        relay = WebSocketRelay("ws://relay", connector=connector_for(socket))
        reply = make_event("reply")
        results = []

        async def callback(url, event):
            results.append(await relay.publish(reply))

        await relay.subscribe("sub1", [{}], callback)
        socket.push(["EVENT", "sub1", make_event("ping", sender=device).model_dump()])
        await eventually(lambda: results)
        await relay.close()
        return results

    assert asyncio.run(scenario()) == [(True, "")]


def test_unsubscribe_from_inside_handler(make_event, device):
    async def scenario():
        socket = FakeSocket()
        relay = WebSocketRelay("ws://relay", connector=connector_for(socket))
        calls = []

        async def callback(url, event):
            calls.append(event.content)
            await relay.unsubscribe("sub1")

        await relay.subscribe("sub1", [{}], callback)
        socket.push(["EVENT", "sub1", make_event("one", sender=device).model_dump()])
        socket.push(["EVENT", "sub1", make_event("two", sender=device).model_dump()])
        await eventually(lambda: socket.sent[-1] == ["CLOSE", "sub1"])
        await asyncio.sleep(0.05)
        await relay.close()
        return calls

    assert asyncio.run(scenario()) == ["one"]
