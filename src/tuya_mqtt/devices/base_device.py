"""Device handles and the process-wide device registry.

The Tuya wire protocol lives in a pluggable device client (see
:class:`DeviceClientProtocol`). This module owns one handle per device, the
lazy connect, error translation to :class:`DispatchError`, and the fan-in of
every device's property changes into registered listeners.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Protocol

from tuya_mqtt.const import DEFAULT_DEVICE_TIMEOUT
from tuya_mqtt.exceptions import DispatchError
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.mqtt.commands import command_payload
from tuya_mqtt.structs import (
    DeviceEvent,
    DeviceEventListener,
    DeviceIdentity,
    StructuredCommand,
    ToggleCommand,
    dps_snapshot,
)

__all__ = [
    "DataCallback",
    "DeviceClientFactory",
    "DeviceClientProtocol",
    "DeviceRegistry",
    "TuyaDevice",
]

logger = get_logger(__name__)

type DataCallback = Callable[[Mapping[str, object]], None]


class DeviceClientProtocol(Protocol):
    """Protocol client for a single device.

    Implementations call the ``on_data`` callback they were built with every
    time the device reports a property map.
    """

    async def connect(self) -> None: ...

    async def toggle(self) -> object: ...

    async def set(self, payload: object) -> object: ...

    async def set_color(self, color: str) -> object: ...

    async def disconnect(self) -> None: ...


type DeviceClientFactory = Callable[[DeviceIdentity, DataCallback], DeviceClientProtocol]


class TuyaDevice:
    """Handle for one device, created by :class:`DeviceRegistry`."""

    lp: str = "TuyaDevice:"

    def __init__(
        self,
        identity: DeviceIdentity,
        client_factory: DeviceClientFactory,
        emit: Callable[[DeviceEvent], None],
        timeout: float = DEFAULT_DEVICE_TIMEOUT,
    ) -> None:
        self.identity: DeviceIdentity = identity
        self.timeout: float = timeout
        self._emit: Callable[[DeviceEvent], None] = emit
        self._connect_task: asyncio.Task[None] | None = None
        # held from connect through the device call: one command at a time, in arrival order
        self._lock: asyncio.Lock = asyncio.Lock()
        self._closed: bool = False
        self.client: DeviceClientProtocol = client_factory(identity, self._on_data)

    @property
    def id(self) -> str | None:
        return self.identity.id

    @property
    def connected(self) -> bool:
        task = self._connect_task
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    def _on_data(self, dps: Mapping[str, object]) -> None:
        if not dps:
            return
        logger.debug("%s Data from device %s: %s", self.lp, self.id, dict(dps))
        self._emit(DeviceEvent(identity=self.identity, dps=dps_snapshot(dps)))

    async def _call[T](self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            async with asyncio.timeout(self.timeout):
                return await call()
        except TimeoutError as exc:
            raise DispatchError(self.id, operation, f"timed out after {self.timeout}s") from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise DispatchError(self.id, operation, str(exc) or type(exc).__name__) from exc

    async def ensure_connected(self) -> None:
        """Connect once; concurrent callers share the attempt, a failed attempt is retried next time."""
        if self._closed:
            raise DispatchError(self.id, "connect", "device handle is closed")
        task = self._connect_task
        if task is None or (task.done() and (task.cancelled() or task.exception() is not None)):
            logger.debug("%s Connecting to device %s at %s", self.lp, self.id, self.identity.ip)
            task = self._connect_task = asyncio.create_task(self._call("connect", self.client.connect))
        await asyncio.shield(task)

    async def toggle(self) -> object:
        async with self._lock:
            await self.ensure_connected()
            return await self._call("toggle", self.client.toggle)

    async def execute_command(self, command: StructuredCommand) -> object:
        if isinstance(command, ToggleCommand):
            return await self.toggle()
        payload = command_payload(command)
        async with self._lock:
            await self.ensure_connected()
            return await self._call("set", lambda: self.client.set(payload))

    async def set_color(self, color: str) -> object:
        async with self._lock:
            await self.ensure_connected()
            return await self._call("set_color", lambda: self.client.set_color(color))

    async def disconnect(self) -> None:
        self._closed = True
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            _ = task.cancel()
        await self._call("disconnect", self.client.disconnect)


class DeviceRegistry:
    """All live device handles, keyed by device id.

    Listeners registered with :meth:`add_listener` receive the property
    changes of every device, including devices created after registration.
    """

    lp: str = "devices:"

    def __init__(self, client_factory: DeviceClientFactory, timeout: float = DEFAULT_DEVICE_TIMEOUT) -> None:
        self.client_factory: DeviceClientFactory = client_factory
        self.timeout: float = timeout
        self._devices: dict[str, TuyaDevice] = {}
        self._listeners: list[DeviceEventListener] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def devices(self) -> dict[str, TuyaDevice]:
        return dict(self._devices)

    def add_listener(self, listener: DeviceEventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: DeviceEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: DeviceEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener.on_device_data(event)
            except Exception:
                logger.exception("%s listener %r failed for device %s", self.lp, listener, event.identity.id)

    def _retire(self, device: TuyaDevice) -> None:
        task = asyncio.create_task(self._disconnect(device))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def get_or_create(self, identity: DeviceIdentity) -> TuyaDevice:
        """Return the cached handle for ``identity``, replacing one whose address changed."""
        if identity.id is None:
            raise DispatchError(None, "create", "device id missing")
        if self._closed:
            raise DispatchError(identity.id, "create", "device registry is closed")
        existing = self._devices.get(identity.id)
        if existing is not None:
            if existing.identity == identity:
                return existing
            logger.info(
                "%s Device %s address changed, replacing handle",
                self.lp,
                identity.id,
                extra={"old_ip": existing.identity.ip, "new_ip": identity.ip},
            )
            self._retire(existing)
        device = TuyaDevice(identity, self.client_factory, self._emit, timeout=self.timeout)
        self._devices[identity.id] = device
        return device

    async def get_device(self, identity: DeviceIdentity) -> TuyaDevice:
        """Return a connected handle for ``identity``."""
        device = self.get_or_create(identity)
        await device.ensure_connected()
        return device

    async def _disconnect(self, device: TuyaDevice) -> None:
        try:
            await device.disconnect()
        except DispatchError as exc:
            logger.warning("%s %s", self.lp, exc)

    async def disconnect_all(self) -> None:
        """Disconnect every device and refuse new handles from now on."""
        self._closed = True
        devices = list(self._devices.values())
        self._devices.clear()
        if devices:
            logger.info("%s Disconnecting %d device(s)", self.lp, len(devices))
        _ = await asyncio.gather(*(self._disconnect(device) for device in devices), *self._tasks)
