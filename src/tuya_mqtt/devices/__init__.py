"""Device handles and registry."""

from .base_device import (
    DataCallback,
    DeviceClientFactory,
    DeviceClientProtocol,
    DeviceRegistry,
    TuyaDevice,
)

__all__ = [
    "DataCallback",
    "DeviceClientFactory",
    "DeviceClientProtocol",
    "DeviceRegistry",
    "TuyaDevice",
]
