"""Tasmota relay devices exposed as a virtual Zigbee2MQTT network."""

__version__ = "0.1.0"
