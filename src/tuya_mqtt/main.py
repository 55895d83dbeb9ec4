from __future__ import annotations

import argparse
import asyncio
import logging
import os
import pkgutil
import signal
from functools import partial
from pathlib import Path
from typing import Any, cast

import dotenv
import uvloop
import yaml
from pydantic import ValidationError

from tuya_mqtt.bridge import TuyaMqttBridge
from tuya_mqtt.const import (
    TUYA_MQTT_CONFIG_FILE_PATH,
    TUYA_MQTT_VERSION,
    YES_ANSWER,
    read_env_config,
)
from tuya_mqtt.correlation import CorrelationKind, correlation_scope, process_correlation_id
from tuya_mqtt.devices import DeviceClientFactory
from tuya_mqtt.exceptions import ConfigError
from tuya_mqtt.logging_abstraction import get_logger
from tuya_mqtt.structs import BridgeConfig, GlobalObject
from tuya_mqtt.utils import check_python_version, signal_handler

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
for _name in ("mqtt", "aiomqtt"):
    _lib_logger = logging.getLogger(_name)
    _lib_logger.setLevel(logging.ERROR)
    _lib_logger.propagate = False

g = GlobalObject()


def enable_debug_logging() -> None:
    """Switch every tuya_mqtt logger and its handlers to DEBUG."""
    for name in list(logging.root.manager.loggerDict):
        if name == "tuya_mqtt" or name.startswith("tuya_mqtt."):
            pkg_logger = logging.getLogger(name)
            pkg_logger.setLevel(logging.DEBUG)
            for handler in pkg_logger.handlers:
                handler.setLevel(logging.DEBUG)


def load_config(config_file: Path | None, overrides: dict[str, Any] | None = None) -> BridgeConfig:
    """Build the bridge configuration.

    Environment defaults are overridden by keys in the YAML file, which are
    overridden by ``overrides`` (CLI arguments).

    Raises:
        ConfigError: the file cannot be read or the values do not validate

    """
    data: dict[str, Any] = dict(read_env_config())
    if config_file is not None and config_file.exists():
        logger.debug("Parsing config file: %s", config_file)
        try:
            with config_file.open() as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            msg = f"Failed to read config file {config_file}: {exc}"
            raise ConfigError(msg) from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            msg = f"Config file {config_file} must contain a mapping, got {type(loaded).__name__}"
            raise ConfigError(msg)
        data.update(cast("dict[str, Any]", loaded))
    elif config_file is not None:
        logger.warning("Configuration file not found, using environment defaults", extra={"config_path": str(config_file)})

    if overrides:
        data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BridgeConfig(**data)
    except ValidationError as exc:
        msg = f"Invalid configuration: {exc}"
        raise ConfigError(msg) from exc


def resolve_device_factory(dotted_path: str | None) -> DeviceClientFactory:
    """Import the device client factory named ``package.module:attr``."""
    if not dotted_path:
        msg = "No device client configured (set 'device_client' or TUYA_MQTT_DEVICE_CLIENT)"
        raise ConfigError(msg)
    try:
        factory = pkgutil.resolve_name(dotted_path)
    except (ImportError, AttributeError, ValueError) as exc:
        msg = f"Cannot import device client '{dotted_path}': {exc}"
        raise ConfigError(msg) from exc
    if not callable(factory):
        msg = f"Device client '{dotted_path}' is not callable"
        raise ConfigError(msg)
    return cast("DeviceClientFactory", factory)


class TuyaMqttController:
    lp: str = "TuyaMqttController:"

    def __init__(self, config: BridgeConfig, device_factory: DeviceClientFactory) -> None:
        g.loop = uvloop.new_event_loop()
        asyncio.set_event_loop(g.loop)
        g.config = config
        g.bridge = self.bridge = TuyaMqttBridge(config, device_factory)

        logger.info("Initializing tuya-mqtt", extra={"version": TUYA_MQTT_VERSION})
        g.loop.add_signal_handler(signal.SIGINT, partial(signal_handler, signal.SIGINT))
        g.loop.add_signal_handler(signal.SIGTERM, partial(signal_handler, signal.SIGTERM))
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    async def start(self) -> None:
        _ = process_correlation_id()
        task = asyncio.current_task()
        if task is not None:
            g.tasks.append(task)
        await self.bridge.start()


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MQTT bridge for Tuya devices")
    _ = parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path(TUYA_MQTT_CONFIG_FILE_PATH),
        help="Path to the YAML configuration file",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument(
        "--device-client",
        dest="device_client",
        default=None,
        help="Device client factory as 'package.module:attr'",
    )
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    g.cli_args = args = parser.parse_args(argv)

    if args.debug:
        enable_debug_logging()
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return args


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``tuya-mqtt`` command."""
    with correlation_scope(CorrelationKind.PROCESS):
        logger.info("Starting tuya-mqtt", extra={"version": TUYA_MQTT_VERSION})
        args = parse_cli(argv)
        # re-read: an --env file may have set it
        if os.environ.get("TUYA_MQTT_DEBUG", "0").casefold() in YES_ANSWER:
            enable_debug_logging()

        check_python_version()
        try:
            config = load_config(args.config.expanduser(), {"device_client": args.device_client})
            device_factory = resolve_device_factory(config.device_client)
        except ConfigError as exc:
            logger.error("Configuration error: %s", exc)
            return 1

        controller = TuyaMqttController(config, device_factory)
        loop = g.loop
        assert loop is not None
        try:
            loop.run_until_complete(controller.start())
        except asyncio.CancelledError:
            logger.info("tuya-mqtt cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            return 1
        else:
            logger.info("tuya-mqtt stopped gracefully")
        finally:
            loop.run_until_complete(controller.bridge.stop())
            loop.close()
            logger.info("tuya-mqtt shutdown complete")
    return 0
