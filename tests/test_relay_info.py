import pytest
import requests

from vmadmin.client.infrastructure import relay_info
from vmadmin.client.infrastructure.relay_info import fetch_relay_info, relay_http_url


class MockResponse:
    def __init__(self, status_code, json_data):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:  # noqa: PLR2004
            raise requests.HTTPError(f"{self.status_code} Client Error", response=self)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("wss://relay.example.com", "https://relay.example.com"),
        ("ws://localhost:7777", "http://localhost:7777"),
        ("https://already.http", "https://already.http"),
    ],
)
def test_relay_http_url(url, expected):
    assert relay_http_url(url) == expected


def test_fetch_relay_info(monkeypatch):
    calls = []

    def mock_get(url, headers, timeout):
        calls.append((url, headers, timeout))
        return MockResponse(
            200,
            {
                "name": "Test relay",
                "supported_nips": [1, 11, 44],
                "software": "strfry",
                "version": "1.0",
            },
        )

    monkeypatch.setattr(relay_info.requests, "get", mock_get)

    info = fetch_relay_info("wss://relay.example.com", timeout=2.0)

    assert info.name == "Test relay"
    assert info.supported_nips == [1, 11, 44]
    assert calls == [
        ("https://relay.example.com", {"Accept": "application/nostr+json"}, 2.0)
    ]


def test_fetch_relay_info_http_error(monkeypatch):
    monkeypatch.setattr(
        relay_info.requests, "get", lambda url, headers, timeout: MockResponse(404, {})
    )
    with pytest.raises(requests.HTTPError):
        fetch_relay_info("ws://localhost:7777")
