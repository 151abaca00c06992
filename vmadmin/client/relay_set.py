"""
Redundant publishing to a fixed set of relays.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import TYPE_CHECKING, Callable, Iterable

from vmadmin.client.connection import CONNECTION_ERRORS, WebSocketRelay
from vmadmin.client.domain.entities import Ack
from vmadmin.common.config import Config
from vmadmin.common.exceptions import PublishFailure, RelayFailure, RelaySetClosed

if TYPE_CHECKING:
    from types import TracebackType

    from vmadmin.common.envelope import Event
    from vmadmin.common.interfaces import IRelayConnection

logger = logging.getLogger(__name__)


class RelaySet:
    """Owns one connection per relay and publishes to all of them at once.

    Publishing is first-success-wins: the first relay to accept an event
    settles the call and the remaining submissions are cancelled. A call fails
    only once every relay has rejected, errored or timed out.
    """

    def __init__(
        self,
        urls: Iterable[str],
        publish_timeout: float | None = None,
        connect_timeout: float | None = None,
        reconnect_initial_backoff: float | None = None,
        reconnect_max_backoff: float | None = None,
        relay_factory: Callable[[str], IRelayConnection] | None = None,
    ):
        config = Config()
        unique_urls = list(dict.fromkeys(url.strip() for url in urls if url.strip()))
        if not unique_urls:
            msg = "RelaySet needs at least one relay URL"
            raise ValueError(msg)

        self.publish_timeout = (
            publish_timeout if publish_timeout is not None else config.PUBLISH_TIMEOUT
        )
        if relay_factory is None:
            relay_factory = partial(
                WebSocketRelay,
                connect_timeout=connect_timeout,
                initial_backoff=reconnect_initial_backoff,
                max_backoff=reconnect_max_backoff,
            )
        self._relays: dict[str, IRelayConnection] = {
            url: relay_factory(url) for url in unique_urls
        }
        self._closed = False

    @property
    def urls(self) -> list[str]:
        return list(self._relays)

    @property
    def relays(self) -> list[IRelayConnection]:
        return list(self._relays.values())

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> RelaySet:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close every relay connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        results = await asyncio.gather(
            *(relay.close() for relay in self._relays.values()),
            return_exceptions=True,
        )
        for url, result in zip(self._relays, results):
            if isinstance(result, Exception):
                logger.warning("Error closing relay %s: %s", url, result)

    async def _submit(
        self, relay: IRelayConnection, event: Event, timeout: float
    ) -> Ack | RelayFailure:
        try:
            accepted, message = await asyncio.wait_for(relay.publish(event), timeout)
        except asyncio.TimeoutError:
            return RelayFailure(relay.url, "timeout", f"no OK within {timeout:g}s")
        except CONNECTION_ERRORS as exc:
            return RelayFailure(
                relay.url, "connection-error", str(exc) or type(exc).__name__
            )
        except Exception as exc:
            logger.exception("Unexpected error publishing to %s", relay.url)
            return RelayFailure(relay.url, "error", str(exc) or type(exc).__name__)
        if accepted:
            return Ack(relay_url=relay.url, event_id=event.id, message=message)
        return RelayFailure(relay.url, "rejected", message)

    async def publish_and_await_ack(
        self, event: Event, timeout: float | None = None
    ) -> Ack:
        """Publish to every relay; return the first acceptance.

        Each relay gets its own ``timeout`` (default ``publish_timeout``), so
        the call never waits longer than that.
        """
        if self._closed:
            msg = "RelaySet is closed"
            raise RelaySetClosed(msg)
        per_relay_timeout = timeout if timeout is not None else self.publish_timeout

        tasks = [
            asyncio.create_task(self._submit(relay, event, per_relay_timeout))
            for relay in self._relays.values()
        ]
        failures: list[RelayFailure] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                if isinstance(outcome, Ack):
                    logger.info(
                        "Event %s accepted by %s", event.id, outcome.relay_url
                    )
                    return outcome
                logger.warning("Event %s not accepted: %s", event.id, outcome)
                failures.append(outcome)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        order = self.urls
        failures.sort(key=lambda failure: order.index(failure.url))
        raise PublishFailure(failures)
