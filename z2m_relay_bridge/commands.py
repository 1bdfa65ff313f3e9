from __future__ import annotations

import json
import logging
from typing import Any, Callable

from .errors import BridgeError, MalformedInput, UnknownDevice, UnsupportedCommand
from .registry import Device, DeviceRegistry

_LOGGER = logging.getLogger("z2m_bridge.commands")

# send(native_id, endpoint_index, "ON" | "OFF")
SendNative = Callable[[str, int, str], None]

VALUES = ("ON", "OFF", "TOGGLE")


def parse_set_payload(payload: Any) -> dict[str, Any]:
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    s = str(payload or "").strip()
    if not s:
        raise MalformedInput("empty payload")

    if s[0] == "{":
        try:
            obj = json.loads(s)
        except ValueError as e:
            raise MalformedInput(f"invalid JSON: {e}") from e
        if not isinstance(obj, dict):
            raise MalformedInput("payload must be a JSON object")
        return obj

    # Z2M also accepts a bare value meaning {"state": value}.
    if s.upper() in VALUES:
        return {"state": s.upper()}
    raise MalformedInput(f"unsupported payload {s[:40]!r}")


class CommandTranslator:
    def __init__(self, registry: DeviceRegistry, send: SendNative) -> None:
        self._registry = registry
        self._send = send

    def _resolve(self, display_name: str) -> Device:
        dev = self._registry.find_by_display_name(display_name)
        if dev is None:
            raise UnknownDevice(f"no device named {display_name!r}")
        return dev

    def translate(self, device: Device, cmd: dict[str, Any]) -> list[tuple[int, str]]:
        """Map a set payload to concrete per-relay ON/OFF commands.

        TOGGLE is resolved against the last reported state (unknown counts as
        off). Keys that are not relay endpoints are ignored.
        """
        out: list[tuple[int, str]] = []
        for i, key in enumerate(device.capability.endpoints):
            if key not in cmd:
                continue
            value = str(cmd[key]).strip().upper()
            if value not in VALUES:
                _LOGGER.warning("%s: unsupported value %r for %s", device.display_name, cmd[key], key)
                continue
            if value == "TOGGLE":
                value = "OFF" if device.last_states[i] else "ON"
            out.append((i, value))
        if not out and not any(k in cmd for k in device.capability.endpoints):
            raise UnsupportedCommand(f"{device.display_name}: no relay key in {sorted(cmd)}")
        return out

    def on_command(self, display_name: str, payload: Any) -> list[tuple[int, str]]:
        _LOGGER.debug("Z2M set command for %s: %s", display_name, payload)
        try:
            dev = self._resolve(display_name)
            cmd = parse_set_payload(payload)
            commands = self.translate(dev, cmd)
        except BridgeError as e:
            _LOGGER.warning("Set command for %s dropped: %s", display_name, e)
            return []
        for index, value in commands:
            try:
                self._send(dev.native_id, index, value)
            except BridgeError as e:
                _LOGGER.warning("Command for %s relay %d dropped: %s", dev.display_name, index + 1, e)
                continue
            _LOGGER.debug("%s relay %d -> %s", dev.display_name, index + 1, value)
        return commands

    def on_property_command(self, display_name: str, prop: str, payload: Any) -> list[tuple[int, str]]:
        # <name>/set/<property> carries the bare value.
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")
        return self.on_command(display_name, {prop: str(payload or "").strip()})
