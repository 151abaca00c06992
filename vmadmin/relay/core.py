"""
In-memory development relay using FastAPI.

Speaks enough NIP-01 for the admin channel (EVENT, REQ, CLOSE) and serves a
NIP-11 information document. Events are fanned out to live subscriptions
and never stored.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from vmadmin.common import setup_logger
from vmadmin.common.config import Config
from vmadmin.common.envelope import Event, WireFilter, event_matches, verify

NOSTR_JSON = "application/nostr+json"


class RelayClient:
    """One websocket peer and its open subscriptions."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.subscriptions: dict[str, list[dict[str, Any]]] = {}
        self.alive = True

    async def send(self, message: list[Any]) -> None:
        if not self.alive:
            return
        try:
            await self.websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError, OSError):
            self.alive = False


class DevRelay:
    """Relay server class handling all connections."""

    def __init__(
        self,
        log_level: int | None = None,
        relay_host: str | None = None,
        relay_port: int | None = None,
        max_event_size: int | None = None,
        config: Config | None = None,
    ):
        config = config or Config()
        self.logger = logging.getLogger(__name__)
        setup_logger(self.logger, log_level if log_level is not None else config.LOG_LEVEL)
        self.relay_host = relay_host or config.RELAY_HOST
        self.relay_port = relay_port or config.RELAY_PORT
        self.max_event_size = max_event_size or config.MAX_EVENT_SIZE
        self.software_version = config.SOFTWARE_VERSION
        self.clients: list[RelayClient] = []
        self.app = FastAPI()

        # Setup routes
        self._setup_routes()

        self.logger.info(
            "Relay listening on ws://%s:%s", self.relay_host, self.relay_port
        )

    def _setup_routes(self) -> None:
        """Setup FastAPI routes."""

        @self.app.get("/health")
        def health() -> dict[str, Any]:
            return {
                "status": "ok",
                "clients": len(self.clients),
                "timestamp": int(time.time()),
            }

        self.app.get("/")(self.info)
        self.app.websocket("/")(self.websocket_endpoint)

    def info_document(self) -> dict[str, Any]:
        return {
            "name": "vmadmin dev relay",
            "description": "In-memory relay for vending machine administration",
            "supported_nips": [1, 11],
            "software": "vmadmin",
            "version": self.software_version,
            "limitation": {"max_message_length": self.max_event_size},
        }

    def info(self) -> JSONResponse:
        """NIP-11 relay information document."""
        return JSONResponse(self.info_document(), media_type=NOSTR_JSON)

    async def websocket_endpoint(self, websocket: WebSocket) -> None:
        await websocket.accept()
        client = RelayClient(websocket)
        self.clients.append(client)
        self.logger.debug("Client connected (%d total)", len(self.clients))
        try:
            while client.alive:
                raw = await websocket.receive_text()
                await self.handle_message(client, raw)
        except WebSocketDisconnect:
            pass
        finally:
            client.alive = False
            self.clients.remove(client)
            self.logger.debug("Client disconnected (%d left)", len(self.clients))

    async def handle_message(self, client: RelayClient, raw: str) -> None:
        """Dispatch one client frame."""
        try:
            message = json.loads(raw)
        except ValueError:
            await client.send(["NOTICE", "invalid: malformed JSON"])
            return
        if not isinstance(message, list) or not message:
            await client.send(["NOTICE", "invalid: expected a JSON array"])
            return

        verb = message[0]
        if verb == "EVENT" and len(message) == 2:  # noqa: PLR2004
            await self.handle_event(client, message[1], len(raw.encode("utf-8")))
        elif verb == "REQ" and len(message) >= 2 and isinstance(message[1], str):  # noqa: PLR2004
            await self.handle_req(client, message[1], message[2:])
        elif verb == "CLOSE" and len(message) == 2 and isinstance(message[1], str):  # noqa: PLR2004
            client.subscriptions.pop(message[1], None)
        else:
            await client.send(["NOTICE", f"invalid: unsupported message {verb!r}"])

    async def handle_event(self, client: RelayClient, data: Any, size: int) -> None:
        event_id = data.get("id", "") if isinstance(data, dict) else ""
        if not isinstance(event_id, str):
            event_id = ""
        if size > self.max_event_size:
            await client.send(["OK", event_id, False, "invalid: event too large"])
            return
        try:
            event = Event.model_validate(data)
        except ValidationError:
            await client.send(["OK", event_id, False, "invalid: malformed event"])
            return
        if not verify(event):
            await client.send(["OK", event.id, False, "invalid: bad event id or signature"])
            return

        await client.send(["OK", event.id, True, ""])
        self.logger.info("Accepted event %s kind %d from %s", event.id, event.kind, event.pubkey)
        await self.broadcast(event)

    async def handle_req(
        self, client: RelayClient, sub_id: str, filters: list[Any]
    ) -> None:
        try:
            for wire_filter in filters:
                WireFilter.model_validate(wire_filter)
        except ValidationError as e:
            self.logger.debug("Rejected subscription %s: %s", sub_id, e)
            client.subscriptions.pop(sub_id, None)
            await client.send(["CLOSED", sub_id, "invalid: malformed filter"])
            return
        client.subscriptions[sub_id] = filters
        self.logger.debug("Subscription %s opened with %d filter(s)", sub_id, len(filters))
        # Nothing is stored, so stored events end immediately.
        await client.send(["EOSE", sub_id])

    async def broadcast(self, event: Event) -> None:
        """Push an accepted event to every matching subscription."""
        payload = event.model_dump()
        for client in list(self.clients):
            for sub_id, filters in list(client.subscriptions.items()):
                if self.matches_any(filters, event, sub_id):
                    await client.send(["EVENT", sub_id, payload])

    def matches_any(
        self, filters: list[dict[str, Any]], event: Event, sub_id: str
    ) -> bool:
        for wire_filter in filters:
            try:
                if event_matches(wire_filter, event):
                    return True
            except (TypeError, ValueError, AttributeError) as e:
                self.logger.warning("Unusable filter on %s: %s", sub_id, e)
        return False
