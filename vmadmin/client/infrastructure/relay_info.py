"""Infrastructure layer: NIP-11 relay information lookup.
"""

from __future__ import annotations

import requests

from vmadmin.common.models import RelayInfo

NOSTR_JSON = "application/nostr+json"


def relay_http_url(url: str) -> str:
    """Map a relay websocket URL to the HTTP URL serving its info document."""
    if url.startswith("wss://"):
        return "https://" + url[len("wss://") :]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://") :]
    return url


def fetch_relay_info(url: str, timeout: float = 5.0) -> RelayInfo:
    """Fetch a relay's information document."""
    r = requests.get(relay_http_url(url), headers={"Accept": NOSTR_JSON}, timeout=timeout)
    r.raise_for_status()
    return RelayInfo.model_validate(r.json())
