"""Bridge coordinator: wires the MQTT transport, the connection supervisor,
the command router, the device registry and the state publisher together.
"""

from __future__ import annotations

import asyncio

from tuya_mqtt.const import MQTT_CLIENT_START_TASK_NAME, PRIMARY_SWITCH_DPS
from tuya_mqtt.correlation import CorrelationKind, correlation_scope
from tuya_mqtt.devices import DeviceClientFactory, DeviceRegistry
from tuya_mqtt.exceptions import TuyaMqttError
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.mqtt import CommandRouter, ConnectionSupervisor, MQTTClient, StatePublisher
from tuya_mqtt.structs import BridgeConfig, DeviceEvent

__all__ = ["TuyaMqttBridge"]

logger = get_logger(__name__)


class TuyaMqttBridge:
    """Owns the bridge lifecycle.

    The bridge registers itself once as the global device listener, so
    property changes from every device (not only the last one commanded) are
    republished.
    """

    lp: str = "bridge:"

    def __init__(
        self,
        config: BridgeConfig,
        device_factory: DeviceClientFactory,
        client: MQTTClient | None = None,
    ) -> None:
        self.config: BridgeConfig = config
        self.client: MQTTClient = client or MQTTClient(config)
        self.supervisor: ConnectionSupervisor = ConnectionSupervisor(self.client, interval=config.conn_check_interval)
        self.publisher: StatePublisher = StatePublisher(
            self.client,
            self.supervisor,
            topic=config.topic,
            qos=config.qos,
            retain=config.retain,
        )
        self.registry: DeviceRegistry = DeviceRegistry(device_factory, timeout=config.device_timeout)
        self.router: CommandRouter = CommandRouter(self.registry)
        self._events: asyncio.Queue[DeviceEvent] = asyncio.Queue()
        self._event_task: asyncio.Task[None] | None = None
        self._stopped: bool = False

        self.client.on_connect = self.handle_connect
        self.client.on_reconnect = self.handle_reconnect
        self.client.on_error = self.handle_error
        self.client.on_message = self.router.handle_message
        self.registry.add_listener(self)

    # transport events
    async def handle_connect(self) -> None:
        lp = f"{self.lp}connect:"
        logger.info("%s Connection to MQTT broker established", lp)
        self.supervisor.mark_connected()
        topic = self.config.subscribe_topic
        if not await self.client.subscribe(topic, qos=self.config.qos):
            logger.warning("%s Subscribing to %s failed", lp, topic)

    def handle_reconnect(self, was_connected: bool) -> None:
        lp = f"{self.lp}reconnect:"
        if was_connected:
            logger.info("%s Connection to MQTT broker was interrupted, reconnecting...", lp)
        else:
            logger.info("%s Connection to MQTT broker could not be established, retrying...", lp)

    def handle_error(self, exc: TuyaMqttError) -> None:
        logger.warning("%s %s", self.lp, exc)
        self.supervisor.mark_disconnected(str(exc))

    # device events
    def on_device_data(self, event: DeviceEvent) -> None:
        self._events.put_nowait(event)

    async def handle_device_event(self, event: DeviceEvent) -> None:
        """Republish one device event: primary switch state (if present), then all properties."""
        logger.debug("%s Data from device %s", self.lp, event.identity.id, extra={"dps": event.dps})
        if PRIMARY_SWITCH_DPS in event.dps:
            _ = await self.publisher.publish_status(event.identity, event.dps[PRIMARY_SWITCH_DPS])
        _ = await self.publisher.publish_properties(event.identity, event.dps)

    async def _process_events(self) -> None:
        lp = f"{self.lp}events:"
        while True:
            event = await self._events.get()
            try:
                with correlation_scope(CorrelationKind.DEVICE_EVENT):
                    await self.handle_device_event(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s failed to publish data of device %s", lp, event.identity.id)
            finally:
                self._events.task_done()

    def start_event_worker(self) -> None:
        if self._event_task is None or self._event_task.done():
            self._event_task = asyncio.create_task(self._process_events(), name="tuya_mqtt.bridge.events")

    async def join_events(self) -> None:
        """Wait until every queued device event has been handled."""
        await self._events.join()

    # lifecycle
    async def start(self) -> None:
        """Run the bridge until :meth:`stop` is called or the task is cancelled."""
        logger.info(
            "%s Starting bridge",
            self.lp,
            extra={"broker": f"{self.config.host}:{self.config.port}", "topic": self.config.topic},
        )
        self.supervisor.start()
        self.start_event_worker()
        self.client.start_task = task = asyncio.create_task(self.client.start(), name=MQTT_CLIENT_START_TASK_NAME)
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("%s MQTT client task cancelled", self.lp)
            if not self._stopped:
                raise

    async def stop(self) -> None:
        """Cancel pending dispatches, disconnect all devices, stop supervision and the transport. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        lp = f"{self.lp}stop:"
        logger.info("%s Shutting down bridge...", lp)
        self.registry.remove_listener(self)
        await self.router.cancel_all()
        await self.registry.disconnect_all()
        self.supervisor.stop()
        if self._event_task is not None and not self._event_task.done():
            _ = self._event_task.cancel()
        await self.client.stop()
        logger.info("%s Bridge stopped", lp)
