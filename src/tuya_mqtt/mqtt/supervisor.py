"""Broker connectivity supervision.

The supervisor owns the bridge's single "connected" flag. Transport callbacks
update it directly; a periodic tick reconciles it with the transport's live
state to catch transitions no callback reported. Every transition is logged
once, whichever path observed it.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from tuya_mqtt.const import DEFAULT_CONN_CHECK_INTERVAL, SUPERVISOR_TASK_NAME
from tuya_mqtt.logging_abstraction import get_logger

__all__ = ["ConnectionSupervisor", "TransportStateProtocol"]

logger = get_logger(__name__)


class TransportStateProtocol(Protocol):
    @property
    def connected(self) -> bool: ...


class ConnectionSupervisor:
    """Two-state (connected / disconnected) view of broker connectivity."""

    lp: str = "supervisor:"

    def __init__(
        self,
        transport: TransportStateProtocol,
        interval: float = DEFAULT_CONN_CHECK_INTERVAL,
    ) -> None:
        self.transport: TransportStateProtocol = transport
        self.interval: float = interval
        self._connected: bool = False
        self._task: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _transition(self, connected: bool, source: str, reason: str | None = None) -> bool:
        """Update the flag; log and return True only when it changed."""
        if connected == self._connected:
            return False
        self._connected = connected
        if connected:
            logger.info("%s MQTT broker connected.", self.lp, extra={"source": source})
        else:
            extra: dict[str, object] = {"source": source}
            if reason:
                extra["reason"] = reason
            logger.info("%s MQTT broker not connected.", self.lp, extra=extra)
        return True

    def mark_connected(self) -> None:
        _ = self._transition(True, "on_connect")

    def mark_disconnected(self, reason: str | None = None) -> None:
        _ = self._transition(False, "on_error", reason)

    def check(self) -> bool:
        """Run one reconciliation tick. Returns True if a transition was observed."""
        return self._transition(self.transport.connected, "tick")

    async def _run(self) -> None:
        lp = f"{self.lp}run:"
        logger.debug("%s Connectivity checks every %ss", lp, self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                _ = self.check()
            except Exception:
                logger.exception("%s connectivity check failed", lp)

    def start(self) -> None:
        """Check once now, then keep checking every ``interval`` seconds."""
        _ = self.check()
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=SUPERVISOR_TASK_NAME)

    def stop(self) -> None:
        """Cancel the periodic check. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            logger.debug("%s Cancelling connectivity checks", self.lp)
            _ = task.cancel()
