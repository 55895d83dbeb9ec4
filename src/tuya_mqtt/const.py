import os

from tuya_mqtt import __version__

__all__ = [
    "CONFIG_ENV_VARS",
    "DEFAULT_CONN_CHECK_INTERVAL",
    "DEFAULT_CONN_DELAY",
    "DEFAULT_DEVICE_TIMEOUT",
    "DEFAULT_QOS",
    "DEFAULT_TOPIC",
    "LEGACY_DEVICE_TYPES",
    "MIN_PY_VERSION",
    "MQTT_CLIENT_START_TASK_NAME",
    "PRIMARY_SWITCH_DPS",
    "SRC_REPO_URL",
    "SUPERVISOR_TASK_NAME",
    "TUYA_MQTT_CONFIG_FILE_PATH",
    "TUYA_MQTT_DEBUG",
    "TUYA_MQTT_LOG_FORMAT",
    "TUYA_MQTT_LOG_HUMAN_OUTPUT",
    "TUYA_MQTT_LOG_JSON_FILE",
    "TUYA_MQTT_VERSION",
    "YES_ANSWER",
    "read_env_config",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
TUYA_MQTT_VERSION: str = __version__
SRC_REPO_URL: str = "https://github.com/TheAgentK/tuya-mqtt"
MIN_PY_VERSION: tuple[int, int] = (3, 12)

# Segment 1 values that mark the old "<prefix>/<type>/<id>/..." topic layout
LEGACY_DEVICE_TYPES: frozenset[str] = frozenset({"socket", "lightbulb"})
# DPS index of the main on/off switch
PRIMARY_SWITCH_DPS: str = "1"

MQTT_CLIENT_START_TASK_NAME = "tuya_mqtt.mqtt_client.start"
SUPERVISOR_TASK_NAME = "tuya_mqtt.supervisor.tick"

DEFAULT_TOPIC = "tuya/"
DEFAULT_QOS = 2
# seconds between broker connectivity checks
DEFAULT_CONN_CHECK_INTERVAL: float = 1.5
# seconds to wait before re-trying a failed broker connection
DEFAULT_CONN_DELAY: int = 10
# seconds a device connect, command or color call may take
DEFAULT_DEVICE_TIMEOUT: float = 10.0

# environment variable -> BridgeConfig field
CONFIG_ENV_VARS: dict[str, str] = {
    "TUYA_MQTT_HOST": "host",
    "TUYA_MQTT_PORT": "port",
    "TUYA_MQTT_USER": "mqtt_user",
    "TUYA_MQTT_PASS": "mqtt_pass",
    "TUYA_MQTT_TOPIC": "topic",
    "TUYA_MQTT_QOS": "qos",
    "TUYA_MQTT_RETAIN": "retain",
    "TUYA_MQTT_DEVICE_CLIENT": "device_client",
    "TUYA_MQTT_DEVICE_TIMEOUT": "device_timeout",
    "TUYA_MQTT_CONN_CHECK_INTERVAL": "conn_check_interval",
    "TUYA_MQTT_CONN_DELAY": "reconnect_delay",
}


def read_env_config() -> dict[str, str]:
    """Re-read the TUYA_MQTT_* variables that map to config fields.

    Read at call time so values loaded from an ``--env`` file are picked up.
    Unset and empty variables are left out.
    """
    return {field: value for var, field in CONFIG_ENV_VARS.items() if (value := os.environ.get(var))}


TUYA_MQTT_CONFIG_FILE_PATH = os.environ.get("TUYA_MQTT_CONFIG_FILE", "config.yaml")
TUYA_MQTT_DEBUG = os.environ.get("TUYA_MQTT_DEBUG", "0").casefold() in YES_ANSWER

# Logging configuration
TUYA_MQTT_LOG_FORMAT: str = os.environ.get("TUYA_MQTT_LOG_FORMAT", "human").casefold()
TUYA_MQTT_LOG_JSON_FILE: str | None = os.environ.get("TUYA_MQTT_LOG_JSON_FILE") or None
TUYA_MQTT_LOG_HUMAN_OUTPUT: str = os.environ.get("TUYA_MQTT_LOG_HUMAN_OUTPUT", "stdout")
