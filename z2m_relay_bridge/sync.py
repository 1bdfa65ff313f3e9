from __future__ import annotations

import logging
from typing import Any, Callable

from .description import LINKQUALITY_MAX
from .errors import BridgeError, UnknownDevice
from .registry import Device, DeviceRegistry

_LOGGER = logging.getLogger("z2m_bridge.sync")

# publish(topic_suffix, payload, retain) relative to the Z2M base topic.
Publish = Callable[[str, Any, bool], None]


def on_off(value: bool | None) -> str:
    return "ON" if value else "OFF"


def state_payload(device: Device) -> dict[str, Any]:
    # Whole-device snapshot: Z2M consumers replace their cached state with it.
    payload: dict[str, Any] = {
        name: on_off(device.last_states[i]) for i, name in enumerate(device.capability.endpoints)
    }
    payload["linkquality"] = LINKQUALITY_MAX
    return payload


def availability_payload(available: bool) -> dict[str, str]:
    return {"state": "online" if available else "offline"}


class StateSynchronizer:
    def __init__(self, registry: DeviceRegistry, publish: Publish) -> None:
        self._registry = registry
        self._publish = publish

    def publish_snapshot(self, device: Device) -> None:
        payload = state_payload(device)
        self._publish(device.display_name, payload, False)
        _LOGGER.debug("State published for %s: %s", device.display_name, payload)

    def publish_availability(self, device: Device, available: bool) -> None:
        self._publish(f"{device.display_name}/availability", availability_payload(available), True)

    def on_state_change(self, native_id: str, endpoint_index: int, value: bool) -> bool:
        try:
            upd = self._registry.update_state(native_id, endpoint_index, value)
        except UnknownDevice:
            _LOGGER.debug("State for unknown device %s ignored", native_id)
            return False
        except BridgeError as e:
            _LOGGER.warning("State for %s dropped: %s", native_id, e)
            return False
        if not upd.changed:
            return False
        self.publish_snapshot(upd.device)
        return True

    def on_availability_change(self, native_id: str, value: bool) -> bool:
        try:
            upd = self._registry.update_availability(native_id, value)
        except UnknownDevice:
            _LOGGER.debug("Availability for unknown device %s ignored", native_id)
            return False
        if not upd.changed:
            return False
        dev = upd.device
        _LOGGER.info("%s is now %s", dev.display_name, "online" if value else "offline")
        self.publish_availability(dev, bool(value))
        self.publish_snapshot(dev)
        return True
