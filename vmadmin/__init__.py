# Vending machine admin channel

from vmadmin.client.channel import CommandChannel
from vmadmin.client.domain.entities import Ack, Identity
from vmadmin.client.relay_set import RelaySet
from vmadmin.common.exceptions import PublishFailure, SendFailure, VmAdminError

__version__ = "0.1.0"

__all__ = [
    "Ack",
    "CommandChannel",
    "Identity",
    "PublishFailure",
    "RelaySet",
    "SendFailure",
    "VmAdminError",
]
