"""Unit tests for ConnectionSupervisor."""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest

from tuya_mqtt.mqtt.supervisor import ConnectionSupervisor

SUPERVISOR_LOGGER = "tuya_mqtt.mqtt.supervisor"


def _transitions(caplog: pytest.LogCaptureFixture) -> list[str]:
    return [
        r.getMessage()
        for r in caplog.records
        if r.name == SUPERVISOR_LOGGER and "MQTT broker" in r.getMessage()
    ]


@pytest.fixture
def transport_state() -> SimpleNamespace:
    return SimpleNamespace(connected=False)


@pytest.fixture
def supervisor(transport_state) -> ConnectionSupervisor:
    return ConnectionSupervisor(transport_state, interval=0.01)


@pytest.fixture(autouse=True)
def capture_info(caplog):
    caplog.set_level(logging.INFO, logger=SUPERVISOR_LOGGER)


class TestTransitions:
    def test_initially_disconnected(self, supervisor):
        assert supervisor.connected is False

    def test_one_log_on_connect_flip(self, supervisor, transport_state, caplog):
        transport_state.connected = True

        assert supervisor.check() is True
        assert supervisor.connected is True
        assert _transitions(caplog) == ["supervisor: MQTT broker connected."]

    def test_no_log_on_repeated_ticks(self, supervisor, transport_state, caplog):
        transport_state.connected = True
        _ = supervisor.check()
        caplog.clear()

        for _ in range(5):
            assert supervisor.check() is False

        assert _transitions(caplog) == []

    def test_no_log_while_staying_disconnected(self, supervisor, caplog):
        for _ in range(3):
            _ = supervisor.check()

        assert _transitions(caplog) == []

    def test_disconnect_flip_logged_once(self, supervisor, transport_state, caplog):
        transport_state.connected = True
        _ = supervisor.check()
        transport_state.connected = False

        _ = supervisor.check()
        _ = supervisor.check()

        assert _transitions(caplog) == [
            "supervisor: MQTT broker connected.",
            "supervisor: MQTT broker not connected.",
        ]

    def test_callback_then_tick_logs_once(self, supervisor, transport_state, caplog):
        """The connect callback and a later tick seeing the same state produce one log."""
        transport_state.connected = True
        supervisor.mark_connected()

        assert supervisor.check() is False
        assert _transitions(caplog) == ["supervisor: MQTT broker connected."]

    def test_error_callback_marks_disconnected(self, supervisor, caplog):
        supervisor.mark_connected()
        supervisor.mark_disconnected("broken pipe")
        supervisor.mark_disconnected("broken pipe")

        assert supervisor.connected is False
        assert len(_transitions(caplog)) == 2
        last = [r for r in caplog.records if r.name == SUPERVISOR_LOGGER][-1]
        assert last.extra_data == {"source": "on_error", "reason": "broken pipe"}


class TestPeriodicCheck:
    @pytest.mark.asyncio
    async def test_tick_picks_up_transport_state(self, supervisor, transport_state, caplog):
        supervisor.start()
        assert supervisor.running

        transport_state.connected = True
        await asyncio.sleep(0.05)

        assert supervisor.connected is True
        assert _transitions(caplog) == ["supervisor: MQTT broker connected."]
        supervisor.stop()

    @pytest.mark.asyncio
    async def test_start_checks_immediately(self, supervisor, transport_state):
        transport_state.connected = True

        supervisor.start()

        assert supervisor.connected is True
        supervisor.stop()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self, supervisor):
        supervisor.start()
        first = supervisor._task

        supervisor.start()

        assert supervisor._task is first
        supervisor.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, supervisor):
        supervisor.start()
        task = supervisor._task
        assert task is not None

        supervisor.stop()
        supervisor.stop()
        await asyncio.sleep(0.01)

        assert task.cancelled() or task.done()
        assert not supervisor.running

    def test_stop_before_start(self, supervisor):
        supervisor.stop()

        assert not supervisor.running
