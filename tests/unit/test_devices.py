"""Unit tests for TuyaDevice and DeviceRegistry."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from tuya_mqtt.devices import DeviceRegistry, TuyaDevice
from tuya_mqtt.exceptions import DispatchError
from tuya_mqtt.structs import BooleanSetCommand, DeviceEvent, DeviceIdentity, RawCommand, ToggleCommand


@pytest.fixture
def registry(device_factory) -> DeviceRegistry:
    return DeviceRegistry(device_factory, timeout=0.5)


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[DeviceEvent] = []

    def on_device_data(self, event: DeviceEvent) -> None:
        self.events.append(event)


class TestTuyaDevice:
    """Tests for a single device handle."""

    @pytest.mark.asyncio
    async def test_toggle_connects_first(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())
        client = device_factory.last()

        assert await device.toggle() == "toggled"
        client.connect.assert_awaited_once()
        client.toggle.assert_awaited_once()
        assert device.connected

    @pytest.mark.asyncio
    async def test_boolean_set_payload(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())

        _ = await device.execute_command(BooleanSetCommand(value=True))

        device_factory.last().set.assert_awaited_once_with({"set": True})

    @pytest.mark.asyncio
    async def test_raw_payload_passed_through(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())

        _ = await device.execute_command(RawCommand(data={"dps": 2, "set": 50}))

        device_factory.last().set.assert_awaited_once_with({"dps": 2, "set": 50})

    @pytest.mark.asyncio
    async def test_execute_toggle_uses_toggle_call(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())

        _ = await device.execute_command(ToggleCommand())

        client = device_factory.last()
        client.toggle.assert_awaited_once()
        client.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_color(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())

        assert await device.set_color("ff0000") == "colored"
        device_factory.last().set_color.assert_awaited_once_with("ff0000")

    @pytest.mark.asyncio
    async def test_client_error_becomes_dispatch_error(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())
        device_factory.last().set.side_effect = OSError("device refused")

        with pytest.raises(DispatchError, match="device refused") as exc_info:
            _ = await device.execute_command(BooleanSetCommand(value=False))

        assert exc_info.value.device_id == "dev01"
        assert exc_info.value.operation == "set"

    @pytest.mark.asyncio
    async def test_timeout_becomes_dispatch_error(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock(), timeout=0.05)

        async def hang() -> None:
            await asyncio.sleep(1)

        device_factory.last().connect.side_effect = hang

        with pytest.raises(DispatchError, match="timed out"):
            _ = await device.toggle()
        assert not device.connected

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_connect(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())

        _ = await asyncio.gather(device.toggle(), device.set_color("00ff00"))

        device_factory.last().connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_connect_is_retried(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())
        client = device_factory.last()
        client.connect.side_effect = [ConnectionRefusedError("offline"), None]

        with pytest.raises(DispatchError, match="offline"):
            await device.ensure_connected()
        await device.ensure_connected()

        assert client.connect.await_count == 2
        assert device.connected

    @pytest.mark.asyncio
    async def test_calls_run_one_at_a_time(self, device_factory, identity):
        """A second command waits until the first device call has returned."""
        device = TuyaDevice(identity, device_factory, MagicMock())
        client = device_factory.last()
        release = asyncio.Event()
        seen: list[object] = []

        async def slow_set(payload: object) -> str:
            seen.append(payload)
            if len(seen) == 1:
                await release.wait()
            return "set"

        client.set.side_effect = slow_set
        first = asyncio.create_task(device.execute_command(BooleanSetCommand(value=True)))
        second = asyncio.create_task(device.execute_command(BooleanSetCommand(value=False)))
        await asyncio.sleep(0.01)

        assert seen == [{"set": True}]
        release.set()
        _ = await asyncio.gather(first, second)
        assert seen == [{"set": True}, {"set": False}]

    @pytest.mark.asyncio
    async def test_disconnected_handle_does_not_reconnect(self, device_factory, identity):
        device = TuyaDevice(identity, device_factory, MagicMock())
        await device.disconnect()

        with pytest.raises(DispatchError, match="closed"):
            _ = await device.toggle()
        device_factory.last().connect.assert_not_awaited()

    def test_device_report_emits_event(self, device_factory, identity):
        emit = MagicMock()
        _ = TuyaDevice(identity, device_factory, emit)

        device_factory.last().emit({1: True, "20": 5})

        emit.assert_called_once()
        event = emit.call_args.args[0]
        assert event.identity == identity
        assert event.dps == {"1": True, "20": 5}

    def test_empty_report_is_ignored(self, device_factory, identity):
        emit = MagicMock()
        _ = TuyaDevice(identity, device_factory, emit)

        device_factory.last().emit({})

        emit.assert_not_called()


class TestDeviceRegistry:
    """Tests for the registry and its process-wide listener fan-in."""

    def test_handles_are_cached(self, registry, identity):
        assert registry.get_or_create(identity) is registry.get_or_create(identity)
        assert list(registry.devices) == ["dev01"]

    def test_missing_id_rejected(self, registry):
        with pytest.raises(DispatchError, match="device id missing"):
            _ = registry.get_or_create(DeviceIdentity(key="k", ip="1.2.3.4"))

    @pytest.mark.asyncio
    async def test_changed_address_replaces_handle(self, registry, device_factory, identity):
        old = registry.get_or_create(identity)
        moved = identity.model_copy(update={"ip": "10.0.0.99"})

        new = registry.get_or_create(moved)
        await asyncio.sleep(0.01)

        assert new is not old
        assert registry.devices["dev01"] is new
        device_factory.clients[0].disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_device_connects(self, registry, device_factory, identity):
        device = await registry.get_device(identity)

        assert device.connected
        device_factory.last().connect.assert_awaited_once()

    def test_listener_sees_every_device(self, registry, device_factory, identity, legacy_identity):
        """Events from all devices reach the listener, not only the last one commanded."""
        listener = RecordingListener()
        registry.add_listener(listener)
        _ = registry.get_or_create(identity)
        _ = registry.get_or_create(legacy_identity)

        device_factory.clients[0].emit({"1": True})
        device_factory.clients[1].emit({"1": False})
        device_factory.clients[0].emit({"2": 7})

        assert [(e.identity.id, e.dps) for e in listener.events] == [
            ("dev01", {"1": True}),
            ("dev02", {"1": False}),
            ("dev01", {"2": 7}),
        ]

    def test_listener_registered_once(self, registry, device_factory, identity):
        listener = RecordingListener()
        registry.add_listener(listener)
        registry.add_listener(listener)
        _ = registry.get_or_create(identity)

        device_factory.last().emit({"1": True})

        assert len(listener.events) == 1

    def test_failing_listener_does_not_block_others(self, registry, device_factory, identity):
        broken = MagicMock()
        broken.on_device_data.side_effect = RuntimeError("boom")
        listener = RecordingListener()
        registry.add_listener(broken)
        registry.add_listener(listener)
        _ = registry.get_or_create(identity)

        device_factory.last().emit({"1": True})

        assert len(listener.events) == 1

    def test_removed_listener_gets_nothing(self, registry, device_factory, identity):
        listener = RecordingListener()
        registry.add_listener(listener)
        registry.remove_listener(listener)
        _ = registry.get_or_create(identity)

        device_factory.last().emit({"1": True})

        assert listener.events == []

    @pytest.mark.asyncio
    async def test_closed_registry_refuses_new_handles(self, registry, device_factory, identity):
        await registry.disconnect_all()

        assert registry.closed
        with pytest.raises(DispatchError, match="closed"):
            _ = registry.get_or_create(identity)
        assert device_factory.clients == []

    @pytest.mark.asyncio
    async def test_disconnect_all(self, registry, device_factory, identity, legacy_identity):
        _ = await registry.get_device(identity)
        _ = registry.get_or_create(legacy_identity)
        device_factory.clients[1].disconnect.side_effect = OSError("already gone")

        await registry.disconnect_all()

        for client in device_factory.clients:
            client.disconnect.assert_awaited_once()
        assert registry.devices == {}
