"""
Filtered push subscriptions fanned out over a RelaySet.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict

from vmadmin.common.envelope import Event, event_matches

if TYPE_CHECKING:
    from vmadmin.client.relay_set import RelaySet
    from vmadmin.common.interfaces import IRelayConnection

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class SubscriptionFilter(BaseModel):
    """Events by one author of one kind, optionally addressed to one key."""

    model_config = ConfigDict(frozen=True)

    author: str
    kind: int
    recipient: str | None = None
    since: int | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"authors": [self.author], "kinds": [self.kind]}
        if self.recipient is not None:
            wire["#p"] = [self.recipient]
        if self.since is not None:
            wire["since"] = self.since
        return wire

    def matches(self, event: Event) -> bool:
        return event_matches(self.to_wire(), event)


class SubscriptionHandle:
    """A live subscription; owns its relay-side registrations until closed."""

    def __init__(
        self,
        sub_id: str,
        subscription_filter: SubscriptionFilter,
        relays: list[IRelayConnection],
        on_event: EventHandler,
    ):
        self.id = sub_id
        self.filter = subscription_filter
        self._relays = relays
        self._on_event = on_event
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def dispatch(self, relay_url: str, event: Event) -> None:
        """Deliver one event from one relay to the handler."""
        if self._closed:
            return
        if not self.filter.matches(event):
            logger.debug("Event %s from %s does not match %s", event.id, relay_url, self.id)
            return
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler for subscription %s failed", self.id)

    async def close(self) -> None:
        """Stop delivery and release relay-side resources. Idempotent."""
        if self._closed:
            return
        # Mark first: nothing is delivered once close() has been called.
        self._closed = True
        results = await asyncio.gather(
            *(relay.unsubscribe(self.id) for relay in self._relays),
            return_exceptions=True,
        )
        for relay, result in zip(self._relays, results):
            if isinstance(result, Exception):
                logger.warning("Error closing %s on %s: %s", self.id, relay.url, result)
        logger.info("Subscription %s closed", self.id)


class Subscription:
    """Opens and closes subscriptions against a RelaySet."""

    @staticmethod
    async def open(
        relay_set: RelaySet,
        subscription_filter: SubscriptionFilter,
        on_event: EventHandler,
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(
            secrets.token_hex(8), subscription_filter, relay_set.relays, on_event
        )
        wire_filters = [subscription_filter.to_wire()]
        await asyncio.gather(
            *(
                relay.subscribe(handle.id, wire_filters, handle.dispatch)
                for relay in relay_set.relays
            )
        )
        logger.info(
            "Subscription %s opened on %d relay(s)", handle.id, len(relay_set.relays)
        )
        return handle

    @staticmethod
    async def close(handle: SubscriptionHandle) -> None:
        await handle.close()
