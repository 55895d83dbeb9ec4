"""Topic grammar for inbound command topics.

Two positional layouts are accepted, told apart by segment 1:

- legacy:  ``<prefix>/<type>/<id>/<key>/<ip>/<action>[/<command>]``
  where ``<type>`` is ``socket`` or ``lightbulb``
- current: ``<prefix>/<id>/<key>/<ip>/<action>[/<command>]``

A current-notation device whose id is literally ``socket`` or ``lightbulb`` is
read as legacy notation. Subscribers may depend on that, so it is kept.
"""

from __future__ import annotations

from typing import NamedTuple

from tuya_mqtt.const import LEGACY_DEVICE_TYPES
from tuya_mqtt.exceptions import ParseError, UnsupportedActionError
from tuya_mqtt.structs import Action, DeviceIdentity

__all__ = [
    "TopicLayout",
    "is_legacy_notation",
    "parse_action",
    "parse_address",
    "parse_raw_command",
]


class TopicLayout(NamedTuple):
    """Segment indexes of one notation."""

    id: int
    key: int
    ip: int
    action: int
    command: int
    type: int | None = None


LEGACY_LAYOUT = TopicLayout(id=2, key=3, ip=4, action=5, command=6, type=1)
CURRENT_LAYOUT = TopicLayout(id=1, key=2, ip=3, action=4, command=5)


def _split(topic: str) -> list[str]:
    parts = topic.split("/")
    if len(parts) < 2:
        raise ParseError(topic, "no device segment")
    return parts


def is_legacy_notation(topic: str) -> bool:
    """Check whether the topic uses the old layout with an explicit device type."""
    return _split(topic)[1] in LEGACY_DEVICE_TYPES


def _layout(parts: list[str]) -> TopicLayout:
    return LEGACY_LAYOUT if parts[1] in LEGACY_DEVICE_TYPES else CURRENT_LAYOUT


def _segment(topic: str, parts: list[str], index: int, name: str) -> str:
    if index >= len(parts):
        raise ParseError(topic, f"missing {name} segment (index {index})")
    value = parts[index]
    if not value:
        raise ParseError(topic, f"empty {name} segment (index {index})")
    return value


def parse_address(topic: str) -> DeviceIdentity:
    """Extract the device id, key, ip and (legacy only) type from a topic.

    Raises:
        ParseError: the topic is too short for its notation or an addressing
            segment is empty.

    """
    parts = _split(topic)
    layout = _layout(parts)
    return DeviceIdentity(
        id=_segment(topic, parts, layout.id, "id"),
        key=_segment(topic, parts, layout.key, "key"),
        ip=_segment(topic, parts, layout.ip, "ip"),
        type=parts[layout.type] if layout.type is not None else None,
    )


def parse_action(topic: str) -> Action:
    """Extract the action verb.

    Raises:
        ParseError: the action segment is missing.
        UnsupportedActionError: the segment is present but not a bridge action,
            e.g. the bridge's own ``state`` and ``dps`` topics.

    """
    parts = _split(topic)
    segment = _segment(topic, parts, _layout(parts).action, "action")
    try:
        return Action(segment)
    except ValueError:
        raise UnsupportedActionError(topic, segment) from None


def parse_raw_command(topic: str, payload: str | None) -> str:
    """Return the raw command token: the payload, else the trailing topic segment."""
    if payload:
        return payload
    parts = _split(topic)
    index = _layout(parts).command
    if index < len(parts) and parts[index]:
        return parts[index]
    raise ParseError(topic, "no command in payload or topic")
