"""Inbound MQTT message routing.

Parses the topic, normalises the command and hands it to the addressed device
as a fire-and-forget task. Nothing raised while handling one message escapes
:meth:`CommandRouter.handle_message`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

from tuya_mqtt.correlation import CorrelationKind, correlation_scope
from tuya_mqtt.exceptions import DispatchError, TuyaMqttError, UnsupportedActionError
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.mqtt.commands import normalize
from tuya_mqtt.mqtt.topics import parse_action, parse_address, parse_raw_command
from tuya_mqtt.structs import Action, DeviceIdentity, StructuredCommand, ToggleCommand

if TYPE_CHECKING:
    from tuya_mqtt.devices import DeviceRegistry

__all__ = ["CommandRouter"]

logger = get_logger(__name__)


class CommandRouter:
    """Routes ``command`` and ``color`` messages to device handles."""

    lp: str = "mqtt:rcv:"

    def __init__(self, registry: DeviceRegistry) -> None:
        self.registry: DeviceRegistry = registry
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def handle_message(self, topic: str, payload: bytes) -> asyncio.Task[None] | None:
        """Handle one inbound message; returns the dispatch task, if any."""
        lp = f"{self.lp}handle:"
        with correlation_scope(CorrelationKind.MESSAGE):
            try:
                return self._route(topic, payload)
            except UnsupportedActionError as exc:
                logger.debug("%s ignoring topic %s (action: %s)", lp, topic, exc.action)
            except TuyaMqttError as exc:
                logger.warning("%s %s", lp, exc)
            except Exception:
                logger.exception("%s failed to handle message on topic: %s", lp, topic)
        return None

    def _route(self, topic: str, payload: bytes) -> asyncio.Task[None]:
        lp = f"{self.lp}route:"
        message = payload.decode("utf-8", errors="replace")
        action = parse_action(topic)
        identity = parse_address(topic)
        logger.debug(
            "%s receive settings",
            lp,
            extra={"topic": topic, "action": action.value, "message": message, "device": identity.id},
        )

        coro: Coroutine[Any, Any, None]
        match action:
            case Action.COMMAND:
                command = normalize(action, parse_raw_command(topic, message))
                logger.debug("%s receive command: %s", lp, command)
                coro = self._dispatch_command(identity, command)
            case Action.COLOR:
                color = message.lower()
                logger.debug("%s set color: %s", lp, color)
                coro = self._dispatch_color(identity, color)
        return self._spawn(coro, identity, action)

    def _spawn(
        self,
        coro: Coroutine[Any, Any, None],
        identity: DeviceIdentity,
        action: Action,
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(coro, identity), name=f"tuya_mqtt.dispatch.{action}.{identity.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, None], identity: DeviceIdentity) -> None:
        lp = f"{self.lp}dispatch:"
        try:
            await coro
        except DispatchError as exc:
            logger.warning("%s %s", lp, exc)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s dispatch to device %s failed", lp, identity.id)

    async def _dispatch_command(self, identity: DeviceIdentity, command: StructuredCommand) -> None:
        device = self.registry.get_or_create(identity)
        if isinstance(command, ToggleCommand):
            result = await device.toggle()
        else:
            result = await device.execute_command(command)
        logger.debug("%s set device status completed: %s", self.lp, result)

    async def _dispatch_color(self, identity: DeviceIdentity, color: str) -> None:
        device = self.registry.get_or_create(identity)
        result = await device.set_color(color)
        logger.debug("%s set device color completed: %s", self.lp, result)

    async def cancel_all(self) -> None:
        """Cancel dispatches still in flight (shutdown only)."""
        tasks = list(self._tasks)
        for task in tasks:
            _ = task.cancel()
        _ = await asyncio.gather(*tasks, return_exceptions=True)
