"""Shared fixtures for unit tests.

Provides a recording transport, a scriptable device client and a ready-made
bridge configuration.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from unittest.mock import AsyncMock, MagicMock

import pytest

from tuya_mqtt.devices import DataCallback
from tuya_mqtt.structs import BridgeConfig, DeviceIdentity


@dataclass
class Published:
    topic: str
    payload: bytes
    qos: int
    retain: bool


@dataclass
class RecordingTransport:
    """Publisher stub that records every publish and can be told to fail."""

    connected: bool = True
    fail_on: set[str] = field(default_factory=set)
    published: list[Published] = field(default_factory=list)

    async def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> bool:
        if topic in self.fail_on:
            return False
        self.published.append(Published(topic, payload, qos, retain))
        return True

    @property
    def topics(self) -> list[str]:
        return [p.topic for p in self.published]


class FakeDeviceClient:
    """Device client whose calls are AsyncMocks; ``emit`` plays a device report."""

    def __init__(self, identity: DeviceIdentity, on_data: DataCallback) -> None:
        self.identity: DeviceIdentity = identity
        self.on_data: DataCallback = on_data
        self.connect = AsyncMock()
        self.toggle = AsyncMock(return_value="toggled")
        self.set = AsyncMock(return_value="set")
        self.set_color = AsyncMock(return_value="colored")
        self.disconnect = AsyncMock()
        # records every call in order across the methods above
        self.calls = MagicMock()
        for name in ("connect", "toggle", "set", "set_color", "disconnect"):
            self.calls.attach_mock(getattr(self, name), name)

    def emit(self, dps: Mapping[str, object]) -> None:
        self.on_data(dps)


@dataclass
class DeviceClientFactoryStub:
    """Device client factory that keeps every client it built."""

    clients: list[FakeDeviceClient] = field(default_factory=list)

    def __call__(self, identity: DeviceIdentity, on_data: DataCallback) -> FakeDeviceClient:
        client = FakeDeviceClient(identity, on_data)
        self.clients.append(client)
        return client

    def last(self) -> FakeDeviceClient:
        return self.clients[-1]


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def device_factory() -> DeviceClientFactoryStub:
    return DeviceClientFactoryStub()


@pytest.fixture
def bridge_config() -> BridgeConfig:
    """Configuration with a short device timeout and QoS 1 / retain on."""
    return BridgeConfig(
        host="broker.local",
        port=1883,
        topic="tuya/",
        qos=1,
        retain=True,
        device_timeout=0.5,
        conn_check_interval=0.01,
        reconnect_delay=1,
    )


@pytest.fixture
def identity() -> DeviceIdentity:
    return DeviceIdentity(id="dev01", key="k3y", ip="10.0.0.5")


@pytest.fixture
def legacy_identity() -> DeviceIdentity:
    return DeviceIdentity(id="dev02", key="k3y", ip="10.0.0.6", type="socket")


@pytest.fixture
def dummy_secret() -> str:
    """Non-literal password for credential tests."""
    return f"secret-{secrets.token_hex(16)}"
