"""Exception hierarchy for the bridge.

Every error raised while handling one inbound message or one device event is a
subclass of :class:`TuyaMqttError`, so handler boundaries can log and drop it.
"""

from __future__ import annotations


class TuyaMqttError(Exception):
    """Base class for bridge errors."""


class ParseError(TuyaMqttError):
    """Topic path could not be parsed.

    Raised when:
    - The topic has fewer segments than its notation requires
    - A required addressing segment is empty
    - Neither the payload nor the topic carries a command

    Attributes:
        topic: The offending topic path
        reason: Specific failure reason

    """

    def __init__(self, topic: str, reason: str) -> None:
        """Initialize parse error with topic and reason."""
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Cannot parse topic '{topic}': {reason}")


class UnsupportedActionError(ParseError):
    """The action segment is present but is not a bridge action.

    This is the normal outcome for the bridge's own ``state`` and ``dps``
    publications, which come back through the wildcard subscription.

    Attributes:
        action: The unsupported action segment

    """

    def __init__(self, topic: str, action: str) -> None:
        """Initialize with the unsupported action segment."""
        self.action: str = action
        super().__init__(topic, f"unsupported action '{action}'")


class NormalizeError(TuyaMqttError):
    """A raw command token could not be turned into a structured command."""

    def __init__(self, token: str, reason: str) -> None:
        """Initialize normalize error with token and reason."""
        self.token: str = token
        self.reason: str = reason
        super().__init__(f"Cannot normalize command '{token}': {reason}")


class DispatchError(TuyaMqttError):
    """A device rejected, failed or timed out a command or color call.

    Attributes:
        device_id: Tuya device id the call was addressed to
        operation: Dispatch operation name (connect, toggle, set, set_color)

    """

    def __init__(self, device_id: str | None, operation: str, reason: str) -> None:
        """Initialize dispatch error."""
        self.device_id: str | None = device_id
        self.operation: str = operation
        self.reason: str = reason
        super().__init__(f"Device {device_id} {operation} failed: {reason}")


class PublishError(TuyaMqttError):
    """Publishing to the broker failed."""

    def __init__(self, topic: str, reason: str) -> None:
        """Initialize publish error with topic and reason."""
        self.topic: str = topic
        self.reason: str = reason
        super().__init__(f"Publish to '{topic}' failed: {reason}")


class ConnectivityError(TuyaMqttError):
    """The broker connection could not be established or was lost.

    Note: Named ConnectivityError to avoid shadowing Python's built-in ConnectionError.
    """

    def __init__(self, reason: str, host: str | None = None) -> None:
        """Initialize connectivity error with reason and broker host."""
        self.reason: str = reason
        self.host: str | None = host
        super().__init__(f"Broker connection error: {reason} (host: {host})")


class ConfigError(TuyaMqttError):
    """Bridge configuration is missing or invalid."""
