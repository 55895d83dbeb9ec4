"""MQTT transport for the bridge.

Wraps :class:`aiomqtt.Client` with a reconnect loop, a readable ``connected``
flag and the event hooks the coordinator attaches to: ``on_connect``,
``on_reconnect``, ``on_error`` and ``on_message``.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable

import aiomqtt

from tuya_mqtt.exceptions import ConnectivityError, PublishError, TuyaMqttError
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.structs import BridgeConfig
from tuya_mqtt.utils import send_sigterm

__all__ = ["MQTTClient"]

logger = get_logger(__name__)

type ConnectHandler = Callable[[], Awaitable[None]]
type ReconnectHandler = Callable[[bool], None]
type ErrorHandler = Callable[[TuyaMqttError], None]
type MessageHandler = Callable[[str, bytes], object]


def _payload_bytes(payload: object) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes | bytearray):
        return bytes(payload)
    return str(payload).encode()


class MQTTClient:
    """Broker connection with automatic reconnects."""

    lp: str = "mqtt:"

    def __init__(self, config: BridgeConfig, identifier: str | None = None) -> None:
        self.config: BridgeConfig = config
        self.broker_client_id: str = identifier or f"tuya_mqtt_{uuid.uuid4().hex[:12]}"
        self.client: aiomqtt.Client | None = None
        self.start_task: asyncio.Task[None] | None = None
        self._connected: bool = False
        self._stopping: bool = False

        self.on_connect: ConnectHandler | None = None
        self.on_reconnect: ReconnectHandler | None = None
        self.on_error: ErrorHandler | None = None
        self.on_message: MessageHandler | None = None

    @property
    def connected(self) -> bool:
        """Live connectivity as last observed by the transport."""
        return self._connected

    def _build_client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.mqtt_user or None,
            password=self.config.mqtt_pass or None,
            identifier=self.broker_client_id,
        )

    def _report_error(self, exc: TuyaMqttError) -> None:
        if self.on_error is not None:
            self.on_error(exc)

    def _get_connection_delay(self, lp: str) -> int:
        delay = self.config.reconnect_delay
        if delay <= 0:
            logger.debug(
                "%s MQTT reconnect delay is less than or equal to 0, which is probably a typo, setting to 5...",
                lp,
            )
            return 5
        return delay

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        logger.debug("%s Connecting to MQTT broker %s:%s...", lp, self.config.host, self.config.port)
        self.client = self._build_client()
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            # -> [Errno 111] Connection refused
            # [code:134] Bad user name or password
            logger.warning("%s Connection failed [MqttError] -> %s", lp, mqtt_err_exc)
            self._report_error(ConnectivityError(str(mqtt_err_exc), self.config.host))
            if "code:134" in str(mqtt_err_exc):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.config.mqtt_user,
                )
                send_sigterm()
            return False
        self._connected = True
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.config.host, self.config.port)
        return True

    async def start(self) -> None:
        """Connect, run the receive loop and reconnect until stopped or cancelled."""
        lp = f"{self.lp}start:"
        itr = 0
        was_connected = False
        try:
            while not self._stopping:
                itr += 1
                if itr > 1 and self.on_reconnect is not None:
                    self.on_reconnect(was_connected)
                was_connected = await self.connect()
                if was_connected:
                    if self.on_connect is not None:
                        await self.on_connect()
                    try:
                        await self._receive()
                    except aiomqtt.MqttError as msg_err:
                        self._connected = False
                        logger.warning("%s MQTT error: %s", lp, msg_err)
                        self._report_error(ConnectivityError(str(msg_err), self.config.host))
                    else:
                        logger.debug("%s broker closed the message stream", lp)
                    self._connected = False
                    await self._close_session(lp)
                else:
                    delay = self._get_connection_delay(lp)
                    logger.info(
                        "%s connecting to MQTT broker failed, sleeping for %s seconds before re-trying...",
                        lp,
                        delay,
                    )
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s MQTT start() EXCEPTION", lp)

    async def _close_session(self, lp: str) -> None:
        """Exit the dropped session's client before the next connect; failures are only logged."""
        client, self.client = self.client, None
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as exc:
            logger.debug("%s closing dropped session failed: %s", lp, exc)

    async def _receive(self) -> None:
        lp = f"{self.lp}rcv:"
        assert self.client is not None, "client must be initialized"
        async for message in self.client.messages:
            topic = message.topic.value
            payload = _payload_bytes(message.payload)
            logger.debug("%s >>> MQTT MESSAGE RECEIVED: topic=%s, payload_len=%d", lp, topic, len(payload))
            if self.on_message is None:
                continue
            try:
                _ = self.on_message(topic, payload)
            except Exception:
                logger.exception("%s message handler failed for topic: %s", lp, topic)

    async def subscribe(self, topic: str, qos: int) -> bool:
        lp = f"{self.lp}subscribe:"
        if not self._connected:
            return False
        assert self.client is not None, "client must be initialized"
        try:
            _ = await self.client.subscribe(topic, qos=qos)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
            return False
        logger.debug("%s Subscribed to MQTT topic: %s (qos=%s). Waiting for MQTT messages...", lp, topic, qos)
        return True

    async def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> bool:
        """Publish a message to the MQTT broker."""
        lp = f"{self.lp}publish:"
        if not self._connected:
            return False
        assert self.client is not None, "client must be initialized"
        try:
            _ = await self.client.publish(topic, payload, qos=qos, retain=retain)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] -> %s", lp, mqtt_code_exc)
            self._connected = False
            self._report_error(PublishError(topic, str(mqtt_code_exc)))
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
            self._report_error(PublishError(topic, str(mqtt_err)))
        else:
            return True
        return False

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        self._stopping = True
        client, self.client = self.client, None
        try:
            if client is not None and self._connected:
                logger.debug("%s Disconnecting from broker...", lp)
                await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            logger.warning("%s MQTT disconnect failed: %s", lp, ce)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            self._connected = False
            if self.start_task and not self.start_task.done():
                logger.debug("%s FINISHING: Cancelling start task", lp)
                _ = self.start_task.cancel()
