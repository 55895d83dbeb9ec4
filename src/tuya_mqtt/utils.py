from __future__ import annotations

import asyncio
import os
import signal
import sys

from tuya_mqtt.const import MIN_PY_VERSION
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.structs import GlobalObject

logger = get_logger(__name__)
g = GlobalObject()


def send_signal(signal_num: int):
    """Send a signal to the current process.

    Args:
        signal_num (int): The signal number to send.

    """
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm():
    """Ask the process to terminate; the SIGTERM handler stops the bridge."""
    send_signal(signal.SIGTERM)


async def _async_signal_cleanup():
    logger.info("tuya-mqtt: Starting signal cleanup...")
    if g.bridge:
        logger.debug("Stopping bridge...")
        await g.bridge.stop()
    for task in g.tasks:
        if not task.done():
            logger.debug("tuya-mqtt: Cancelling task: %s", task.get_name())
            _ = task.cancel()
    logger.info("tuya-mqtt: Signal cleanup completed")


def signal_handler(signum: int):
    logger.info("tuya-mqtt: Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    loop = g.loop or asyncio.get_event_loop()
    _ = loop.create_task(_async_signal_cleanup())


def check_python_version():
    """Ensure the running interpreter meets the minimum supported version."""
    if sys.version_info < MIN_PY_VERSION:
        version_message = (
            f"tuya-mqtt requires Python {MIN_PY_VERSION[0]}.{MIN_PY_VERSION[1]} or newer; "
            f"detected {sys.version_info.major}.{sys.version_info.minor}"
        )
        raise RuntimeError(version_message)


def bmap(state: object) -> str:
    """Map a switch value to the ``ON``/``OFF`` payload."""
    return "ON" if state else "OFF"
