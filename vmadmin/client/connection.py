"""
Websocket connection to a single relay.

One reader task per connection handles every frame the relay sends. Events
are queued per subscription and handed to the handler by a dispatcher task,
in the order the relay sent them, so a handler may await a publish on the
same relay without holding up its OK.
While subscriptions are registered the connection keeps itself alive,
reconnecting with exponential backoff and re-sending every active REQ.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from typing import TYPE_CHECKING, Any, Callable

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from vmadmin.common.config import Config
from vmadmin.common.envelope import Event

if TYPE_CHECKING:
    from vmadmin.common.interfaces import EventCallback

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class WebSocketRelay:
    """NIP-01 client side of one relay connection."""

    def __init__(
        self,
        url: str,
        connect_timeout: float | None = None,
        initial_backoff: float | None = None,
        max_backoff: float | None = None,
        connector: Callable[[str], Any] = websockets.connect,
    ):
        config = Config()
        self.url = url
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else config.CONNECT_TIMEOUT
        )
        self.initial_backoff = (
            initial_backoff
            if initial_backoff is not None
            else config.RECONNECT_INITIAL_BACKOFF
        )
        self.max_backoff = (
            max_backoff if max_backoff is not None else config.RECONNECT_MAX_BACKOFF
        )
        self._connector = connector
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future[tuple[bool, str]]] = {}
        self._subscriptions: dict[str, tuple[list[dict[str, Any]], EventCallback]] = {}
        self._requested: set[str] = set()
        self._inboxes: dict[str, asyncio.Queue[Event | None]] = {}
        self._dispatchers: dict[str, asyncio.Task[None]] = {}
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def _open(self) -> Any:
        return await self._connector(self.url)

    async def connect(self) -> None:
        """Open the websocket unless it is already open."""
        if self._closing:
            msg = f"Relay {self.url} is closed"
            raise ConnectionError(msg)
        async with self._connect_lock:
            if self._ws is not None:
                return
            ws = await asyncio.wait_for(self._open(), self.connect_timeout)
            self._ws = ws
            self._requested.clear()
            self._reader = asyncio.create_task(self._read_loop(ws))
            logger.info("Connected to relay %s", self.url)
            for sub_id in list(self._subscriptions):
                await self._send_req(sub_id)

    async def publish(self, event: Event) -> tuple[bool, str]:
        """Send an event and wait for the relay's OK."""
        await self.connect()
        future: asyncio.Future[tuple[bool, str]] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[event.id] = future
        try:
            await self._send(["EVENT", event.model_dump()])
            return await future
        finally:
            self._pending.pop(event.id, None)

    async def subscribe(
        self, sub_id: str, filters: list[dict[str, Any]], callback: EventCallback
    ) -> None:
        """Register a subscription; unreachable relays retry in the background."""
        self._subscriptions[sub_id] = (filters, callback)
        try:
            await self.connect()
            if sub_id not in self._requested:
                await self._send_req(sub_id)
        except CONNECTION_ERRORS as exc:
            logger.warning(
                "Relay %s unavailable for subscription %s: %s", self.url, sub_id, exc
            )
            self._schedule_reconnect()

    async def unsubscribe(self, sub_id: str) -> None:
        self._subscriptions.pop(sub_id, None)
        self._stop_dispatcher(sub_id)
        if sub_id not in self._requested:
            return
        self._requested.discard(sub_id)
        try:
            await self._send(["CLOSE", sub_id])
        except CONNECTION_ERRORS as exc:
            logger.debug("CLOSE %s not delivered to %s: %s", sub_id, self.url, exc)

    async def close(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        self._subscriptions.clear()
        dispatchers = [
            task
            for task in (self._stop_dispatcher(sub_id) for sub_id in list(self._inboxes))
            if task is not None and task is not asyncio.current_task()
        ]
        for task in dispatchers:
            task.cancel()
        await asyncio.gather(*dispatchers, return_exceptions=True)
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
            self._reconnect_task = None
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._fail_pending(f"relay {self.url} closed")

    async def _send(self, message: list[Any]) -> None:
        ws = self._ws
        if ws is None:
            msg = f"Not connected to {self.url}"
            raise ConnectionError(msg)
        await ws.send(json.dumps(message, separators=(",", ":"), ensure_ascii=False))

    async def _send_req(self, sub_id: str) -> None:
        filters, _ = self._subscriptions[sub_id]
        await self._send(["REQ", sub_id, *filters])
        self._requested.add(sub_id)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._handle_message(raw)
        except ConnectionClosed as exc:
            logger.warning("Relay %s connection closed: %s", self.url, exc)
        finally:
            if self._ws is ws:
                self._ws = None
                self._requested.clear()
            self._fail_pending(f"connection to {self.url} lost")
            if not self._closing and self._subscriptions:
                self._schedule_reconnect()

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring malformed frame from %s", self.url)
            return
        if not isinstance(message, list) or not message:
            logger.debug("Ignoring unexpected frame from %s", self.url)
            return

        kind, args = message[0], message[1:]
        if kind == "OK" and len(args) >= 2:  # noqa: PLR2004
            self._resolve_ok(args)
        elif kind == "EVENT" and len(args) >= 2:  # noqa: PLR2004
            self._deliver(args[0], args[1])
        elif kind == "EOSE":
            logger.debug("End of stored events from %s: %s", self.url, args)
        elif kind == "CLOSED" and args:
            logger.warning("Relay %s closed subscription: %s", self.url, args)
            if isinstance(args[0], str):
                self._requested.discard(args[0])
        elif kind == "NOTICE":
            logger.info("Notice from %s: %s", self.url, args)
        else:
            logger.debug("Ignoring %r frame from %s", kind, self.url)

    def _resolve_ok(self, args: list[Any]) -> None:
        event_id, accepted = args[0], args[1]
        reason = str(args[2]) if len(args) > 2 else ""  # noqa: PLR2004
        if not isinstance(event_id, str):
            return
        future = self._pending.get(event_id)
        if future is not None and not future.done():
            future.set_result((accepted is True, reason))

    def _deliver(self, sub_id: Any, data: Any) -> None:
        entry = self._subscriptions.get(sub_id) if isinstance(sub_id, str) else None
        if entry is None:
            return
        try:
            event = Event.model_validate(data)
        except ValidationError:
            logger.debug("Dropping invalid event from %s on %s", self.url, sub_id)
            return
        self._inbox(sub_id).put_nowait(event)

    def _inbox(self, sub_id: str) -> asyncio.Queue[Event | None]:
        inbox = self._inboxes.get(sub_id)
        if inbox is None:
            inbox = self._inboxes[sub_id] = asyncio.Queue()
            self._dispatchers[sub_id] = asyncio.create_task(
                self._dispatch_loop(sub_id, inbox)
            )
        return inbox

    def _stop_dispatcher(self, sub_id: str) -> asyncio.Task[None] | None:
        inbox = self._inboxes.pop(sub_id, None)
        if inbox is not None:
            inbox.put_nowait(None)
        return self._dispatchers.pop(sub_id, None)

    async def _dispatch_loop(self, sub_id: str, inbox: asyncio.Queue[Event | None]) -> None:
        while True:
            event = await inbox.get()
            if event is None:
                return
            entry = self._subscriptions.get(sub_id)
            if entry is None:
                continue
            _, callback = entry
            try:
                result = callback(self.url, event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for subscription %s failed", sub_id)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        backoff = self.initial_backoff
        while not self._closing and self._subscriptions and self._ws is None:
            await asyncio.sleep(backoff)
            try:
                await self.connect()
            except CONNECTION_ERRORS as exc:
                logger.warning(
                    "Reconnect to %s failed, retrying in %ss: %s",
                    self.url,
                    min(backoff * 2, self.max_backoff),
                    exc,
                )
                backoff = min(backoff * 2, self.max_backoff)
            else:
                logger.info("Reconnected to %s", self.url)
