"""MQTT side of the bridge.

- topics.py: topic grammar (legacy and current notation)
- commands.py: command normalisation
- state_updates.py: state and property publishing
- supervisor.py: broker connectivity supervision
- client.py: aiomqtt transport with reconnect loop
- command_routing.py: inbound message routing to devices
"""

from .client import MQTTClient
from .command_routing import CommandRouter
from .commands import command_payload, is_json_string, normalize
from .state_updates import StatePublisher
from .supervisor import ConnectionSupervisor
from .topics import is_legacy_notation, parse_action, parse_address, parse_raw_command

__all__ = [
    "CommandRouter",
    "ConnectionSupervisor",
    "MQTTClient",
    "StatePublisher",
    "command_payload",
    "is_json_string",
    "is_legacy_notation",
    "normalize",
    "parse_action",
    "parse_address",
    "parse_raw_command",
]
