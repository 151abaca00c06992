import pytest

from vmadmin.client.domain.entities import Identity
from vmadmin.common import envelope
from vmadmin.common.envelope import Event

OPERATOR_SECRET = "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"
DEVICE_SECRET = "0000000000000000000000000000000000000000000000000000000000000002"


@pytest.fixture
def operator() -> Identity:
    return Identity.from_secret(OPERATOR_SECRET)


@pytest.fixture
def device() -> Identity:
    return Identity.from_secret(DEVICE_SECRET)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep tests independent of the caller's VMADMIN_* settings."""
    for name in (
        "VMADMIN_RELAYS",
        "VMADMIN_PUBLISH_TIMEOUT",
        "VMADMIN_CONNECT_TIMEOUT",
        "VMADMIN_DATA_DIR",
        "VMADMIN_RELAY_HOST",
        "VMADMIN_RELAY_PORT",
        "VMADMIN_PRIVATE_KEY",
        "VMADMIN_TARGET",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_event(operator, device):
    """Factory for signed events, operator to device by default."""

    def factory(
        content: str = "payload",
        sender: Identity | None = None,
        recipient: Identity | None = None,
        kind: int = 4,
        at: float = 1_700_000_000,
    ) -> Event:
        sender = sender or operator
        recipient = recipient or device
        draft = envelope.build(
            sender.public_key, recipient.public_key, content, clock=lambda: at, kind=kind
        )
        return envelope.sign(draft, sender.private_key)

    return factory
