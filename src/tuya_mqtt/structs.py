from __future__ import annotations

import asyncio
from argparse import Namespace
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tuya_mqtt.const import (
    DEFAULT_CONN_CHECK_INTERVAL,
    DEFAULT_CONN_DELAY,
    DEFAULT_DEVICE_TIMEOUT,
    DEFAULT_QOS,
    DEFAULT_TOPIC,
)

if TYPE_CHECKING:
    import uvloop

__all__ = [
    "Action",
    "BooleanSetCommand",
    "BridgeConfig",
    "BridgeProtocol",
    "DeviceEvent",
    "DeviceEventListener",
    "DeviceIdentity",
    "GlobalObject",
    "RawCommand",
    "StructuredCommand",
    "ToggleCommand",
    "dps_snapshot",
]


class Action(StrEnum):
    """Topic verb selecting how an inbound message is handled."""

    COMMAND = "command"
    COLOR = "color"


class DeviceIdentity(BaseModel):
    """Addressing fields of one Tuya device.

    Topic parsing always fills ``id``, ``key`` and ``ip``; ``type`` is only set
    for the legacy ``<prefix>/<type>/<id>/...`` notation. Identities attached
    to device handles may lack fields, and publishers must check for that.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    key: str | None = None
    ip: str | None = None
    type: str | None = None

    @property
    def is_addressable(self) -> bool:
        return bool(self.id and self.key and self.ip)


@dataclass(frozen=True, slots=True)
class ToggleCommand:
    """Flip the device's primary switch."""


@dataclass(frozen=True, slots=True)
class BooleanSetCommand:
    """Set the device's primary switch to ``value``."""

    value: bool


@dataclass(frozen=True, slots=True)
class RawCommand:
    """Pass a decoded JSON value straight to the device ``set`` call."""

    data: Any


type StructuredCommand = ToggleCommand | BooleanSetCommand | RawCommand


@dataclass(frozen=True, slots=True)
class DeviceEvent:
    """Property-change notification from any live device."""

    identity: DeviceIdentity
    dps: dict[str, object] = field(default_factory=dict)


class DeviceEventListener(Protocol):
    """Process-wide observer of device property changes."""

    def on_device_data(self, event: DeviceEvent) -> None: ...


class BridgeConfig(BaseModel):
    """Runtime configuration.

    Built by ``main.load_config``: TUYA_MQTT_* environment variables, then the
    YAML config file, then command line options, each overriding the last.
    """

    model_config = ConfigDict(extra="ignore")

    host: str = "localhost"
    port: int = Field(default=1883, ge=1, le=65535)
    mqtt_user: str = ""
    mqtt_pass: str = ""
    topic: str = DEFAULT_TOPIC
    qos: int = Field(default=DEFAULT_QOS, ge=0, le=2)
    retain: bool = False
    device_client: str | None = None
    device_timeout: float = Field(default=DEFAULT_DEVICE_TIMEOUT, gt=0)
    conn_check_interval: float = Field(default=DEFAULT_CONN_CHECK_INTERVAL, gt=0)
    reconnect_delay: int = DEFAULT_CONN_DELAY

    @field_validator("topic")
    @classmethod
    def _normalize_topic(cls, value: str) -> str:
        # Topics are built as "<prefix><id>/..." and subscribed as "<prefix>#";
        # inbound parsing reads fixed segment positions, so the prefix is one level
        value = value.strip().removesuffix("/")
        if not value:
            msg = "topic prefix must not be empty"
            raise ValueError(msg)
        if "/" in value:
            msg = f"topic prefix must be a single topic level, got '{value}/'"
            raise ValueError(msg)
        if "+" in value or "#" in value:
            msg = "topic prefix must not contain MQTT wildcards"
            raise ValueError(msg)
        return f"{value}/"

    @property
    def subscribe_topic(self) -> str:
        return f"{self.topic}#"


class BridgeProtocol(Protocol):
    """What signal handling needs from the running bridge."""

    async def stop(self) -> None: ...


class GlobalObject:
    """Singleton container for cross-module state and services."""

    bridge: BridgeProtocol | None = None
    config: BridgeConfig | None = None
    loop: uvloop.Loop | asyncio.AbstractEventLoop | None = None
    tasks: ClassVar[list[asyncio.Task[Any]]] = []
    cli_args: Namespace | None = None

    _instance: GlobalObject | None = None

    def __new__(cls, *_args: Any, **_kwargs: Any) -> GlobalObject:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance


def dps_snapshot(dps: Mapping[str, object]) -> dict[str, object]:
    """Copy a device property map, normalising keys to strings."""
    return {str(k): v for k, v in dps.items()}
