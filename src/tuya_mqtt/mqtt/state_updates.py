"""Publishing of device state to MQTT.

For a device at ``<base> = <prefix>[<type>/]<id>/<key>/<ip>``:

- ``<base>/state``      ``ON`` / ``OFF`` of the primary switch
- ``<base>/dps``        the whole property map as one JSON object
- ``<base>/dps/<key>``  each property value as JSON
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Protocol

from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.structs import DeviceIdentity
from tuya_mqtt.utils import bmap

__all__ = ["PublisherProtocol", "StatePublisher"]

logger = get_logger(__name__)


class PublisherProtocol(Protocol):
    async def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> bool: ...


class ConnectivityProtocol(Protocol):
    @property
    def connected(self) -> bool: ...


def _finite(value: object) -> object:
    """Replace NaN and infinities, nested ones included, with None."""
    match value:
        case float() if not math.isfinite(value):
            return None
        case Mapping():
            return {k: _finite(v) for k, v in value.items()}
        case list() | tuple():
            return [_finite(v) for v in value]
        case _:
            return value


def _dumps(value: object) -> str:
    return json.dumps(_finite(value), separators=(",", ":"), ensure_ascii=False, allow_nan=False)


class StatePublisher:
    """Maps device identity + properties to outbound topic/payload pairs."""

    lp: str = "state:"

    def __init__(
        self,
        client: PublisherProtocol,
        connectivity: ConnectivityProtocol,
        topic: str,
        qos: int = 0,
        retain: bool = False,
    ) -> None:
        """Initialize the state publisher.

        Args:
            client: Transport used for publishing
            connectivity: Gate read before every publish (the connection supervisor)
            topic: Configured topic prefix, ending with "/"
            qos: QoS for every publish
            retain: Retain flag for every publish

        """
        self.client: PublisherProtocol = client
        self.connectivity: ConnectivityProtocol = connectivity
        self.topic: str = topic
        self.qos: int = qos
        self.retain: bool = retain

    def base_topic(self, identity: DeviceIdentity) -> str | None:
        """Topic root for a device, or None if an addressing field is missing."""
        if not identity.is_addressable:
            return None
        type_segment = f"{identity.type}/" if identity.type else ""
        return f"{self.topic}{type_segment}{identity.id}/{identity.key}/{identity.ip}"

    def _resolve_base(self, identity: DeviceIdentity, lp: str) -> str | None:
        if not self.connectivity.connected:
            logger.debug("%s MQTT not connected, skipping publish for device %s", lp, identity.id)
            return None
        base = self.base_topic(identity)
        if base is None:
            logger.debug(
                "%s mqtt not updated, incomplete device address",
                lp,
                extra={"id": identity.id, "key_set": bool(identity.key), "ip": identity.ip},
            )
        return base

    async def _publish(self, topic: str, payload: str) -> bool:
        return await self.client.publish(topic, payload.encode(), qos=self.qos, retain=self.retain)

    async def publish_status(self, identity: DeviceIdentity, state: object) -> bool:
        """Publish ``ON``/``OFF`` for the primary switch to ``<base>/state``."""
        lp = f"{self.lp}publish_status:"
        base = self._resolve_base(identity, lp)
        if base is None:
            return False
        topic = f"{base}/state"
        status = bmap(state)
        if not await self._publish(topic, status):
            logger.warning("%s publish failed: %s", lp, topic)
            return False
        logger.debug("%s mqtt status updated to: %s -> %s", lp, topic, status)
        return True

    async def publish_properties(self, identity: DeviceIdentity, dps: Mapping[str, object]) -> bool:
        """Publish the full property map, then one message per property.

        Stops at the first failed publish; nothing is retried.
        """
        lp = f"{self.lp}publish_properties:"
        base = self._resolve_base(identity, lp)
        if base is None:
            return False

        dps_topic = f"{base}/dps"
        data = _dumps(dict(dps))
        if not await self._publish(dps_topic, data):
            logger.warning("%s publish failed: %s", lp, dps_topic)
            return False
        logger.debug("%s mqtt dps updated to: %s -> %s", lp, dps_topic, data)

        for key, value in dps.items():
            key_topic = f"{dps_topic}/{key}"
            key_data = _dumps(value)
            if not await self._publish(key_topic, key_data):
                logger.warning("%s publish failed: %s, remaining properties skipped", lp, key_topic)
                return False
            logger.debug("%s mqtt dps updated to: %s -> dps[%s] %s", lp, key_topic, key, key_data)
        return True
