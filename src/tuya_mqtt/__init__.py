"""MQTT bridge for Tuya smart-home devices."""

__version__ = "0.3.0"
