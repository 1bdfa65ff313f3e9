from __future__ import annotations

import json
import logging
import re
import threading
from typing import Any, Callable

from .capability import Capability, derive_capability
from .errors import BridgeError, MalformedInput, UnknownDevice
from .identity import normalize
from .mqtt_client import MqttClient
from .settings import TasmotaConfig

_LOGGER = logging.getLogger("z2m_bridge.tasmota")

_POWER_KEY = re.compile(r"^POWER(\d*)$")
_GPIO_KEY = re.compile(r"^GPIO\d+$")

DiscoveryListener = Callable[[str, dict[str, Any]], None]
StateListener = Callable[[str, int, bool], None]
AvailabilityListener = Callable[[str, bool], None]


def parse_power(value: Any) -> bool | None:
    s = str(value).strip().upper()
    if s in ("ON", "1", "TRUE"):
        return True
    if s in ("OFF", "0", "FALSE"):
        return False
    return None


def power_channel(key: str) -> int | None:
    """POWER and POWER1 are channel 1, POWERn is channel n."""
    m = _POWER_KEY.match(key)
    if not m:
        return None
    n = int(m.group(1) or 1)
    return n if n >= 1 else None


def _loads_object(payload: str) -> dict[str, Any] | None:
    s = (payload or "").strip()
    if not s or s[0] != "{":
        return None
    try:
        obj = json.loads(s)
    except ValueError:
        return None
    return obj if isinstance(obj, dict) else None


class TasmotaGateway:
    """Tasmota devices over MQTT (native discovery, stat/tele and cmnd topics).

    Device topics are learned from discovery; events for topics that were
    never announced are ignored. Endpoint indices on the listener and
    ``send_power`` side are translated to POWER channels through the relay
    channels derived at discovery.
    """

    def __init__(self, mqtt: MqttClient, cfg: TasmotaConfig) -> None:
        self._mqtt = mqtt
        self._cfg = cfg
        self._lock = threading.Lock()
        self._mac_by_topic: dict[str, str] = {}
        self._topic_by_mac: dict[str, str] = {}
        self._capability_by_mac: dict[str, Capability] = {}
        self._pending_gpio: dict[str, dict[str, Any]] = {}
        self._lwt_by_topic: dict[str, bool] = {}
        # Retained "Online" held back until the first power report.
        self._pending_online: set[str] = set()

        self._discovery_listeners: list[DiscoveryListener] = []
        self._state_listeners: list[StateListener] = []
        self._availability_listeners: list[AvailabilityListener] = []

    def add_discovery_listener(self, cb: DiscoveryListener) -> None:
        self._discovery_listeners.append(cb)

    def add_state_listener(self, cb: StateListener) -> None:
        self._state_listeners.append(cb)

    def add_availability_listener(self, cb: AvailabilityListener) -> None:
        self._availability_listeners.append(cb)

    def _emit_discovery(self, mac: str, raw: dict[str, Any]) -> None:
        for cb in list(self._discovery_listeners):
            try:
                cb(mac, raw)
            except Exception:
                _LOGGER.exception("Discovery listener failed")

    def _emit_state(self, mac: str, index: int, value: bool) -> None:
        for cb in list(self._state_listeners):
            try:
                cb(mac, index, value)
            except Exception:
                _LOGGER.exception("State listener failed")

    def _emit_availability(self, mac: str, value: bool) -> None:
        for cb in list(self._availability_listeners):
            try:
                cb(mac, value)
            except Exception:
                _LOGGER.exception("Availability listener failed")

    def start(self) -> None:
        base = self._cfg.base_topic
        self._mqtt.subscribe(f"{base}/discovery/+/config", self.handle_discovery)
        self._mqtt.subscribe("stat/+/+", self.handle_stat)
        self._mqtt.subscribe("tele/+/STATE", self.handle_tele_state)
        self._mqtt.subscribe("tele/+/LWT", self.handle_lwt)
        _LOGGER.info("Watching Tasmota devices on %s/discovery", base)

    def topic_for(self, mac: str) -> str | None:
        with self._lock:
            return self._topic_by_mac.get(mac)

    def capability_for(self, mac: str) -> Capability | None:
        with self._lock:
            return self._capability_by_mac.get(mac)

    def _mac_for_topic(self, device_topic: str) -> str | None:
        with self._lock:
            return self._mac_by_topic.get(device_topic)

    def command(self, device_topic: str, command: str, payload: Any = "") -> None:
        self._mqtt.publish(f"cmnd/{device_topic}/{command}", payload)

    def handle_discovery(self, topic: str, payload: str) -> None:
        raw = _loads_object(payload)
        if raw is None:
            # Empty retained payload: the device was removed from discovery.
            return
        mac_raw = raw.get("mac") or topic.split("/")[-2]
        try:
            mac = normalize(str(mac_raw))
        except MalformedInput:
            _LOGGER.error("Discovery payload without usable MAC address on %s", topic)
            return
        device_topic = str(raw.get("t") or "").strip()
        if device_topic:
            with self._lock:
                self._mac_by_topic[device_topic] = mac
                self._topic_by_mac[mac] = device_topic

        if raw.get("rl") is None and self._cfg.request_gpio and device_topic:
            with self._lock:
                self._pending_gpio[mac] = raw
            _LOGGER.debug("No relay list for %s, requesting GPIO", device_topic)
            self.command(device_topic, "GPIO")
            return

        self._announce(mac, device_topic, raw)

    def _announce(self, mac: str, device_topic: str, raw: dict[str, Any]) -> None:
        try:
            capability = derive_capability(raw)
        except BridgeError:
            # Rejected by the engine as well; power reports stay unmapped.
            capability = None
        with self._lock:
            if capability is not None:
                # First announcement wins, as in the device registry.
                self._capability_by_mac.setdefault(mac, capability)
            alive = self._lwt_by_topic.get(device_topic) if device_topic else None
            if alive:
                self._pending_online.add(mac)
        self._emit_discovery(mac, raw)
        if not device_topic:
            return
        self.command(device_topic, "STATE")
        if alive is False:
            self._emit_availability(mac, False)

    def _index_for(self, mac: str, key: str) -> int | None:
        channel = power_channel(key)
        if channel is None:
            return None
        capability = self.capability_for(mac)
        if capability is None:
            return None
        index = capability.index_for_channel(channel)
        if index is None:
            _LOGGER.debug("%s: POWER%d is not a relay channel", mac, channel)
        return index

    def _release_online(self, mac: str) -> None:
        with self._lock:
            if mac not in self._pending_online:
                return
            self._pending_online.discard(mac)
        self._emit_availability(mac, True)

    def handle_stat(self, topic: str, payload: str) -> None:
        parts = topic.split("/")
        if len(parts) != 3:
            return
        mac = self._mac_for_topic(parts[1])
        if mac is None:
            return
        key = parts[2]
        if key == "RESULT":
            obj = _loads_object(payload)
            if obj is not None:
                self._handle_result(mac, parts[1], obj)
            return
        index = self._index_for(mac, key)
        value = parse_power(payload)
        if index is not None and value is not None:
            self._emit_state(mac, index, value)
            self._release_online(mac)

    def _handle_result(self, mac: str, device_topic: str, obj: dict[str, Any]) -> None:
        gpio = {k: v for k, v in obj.items() if _GPIO_KEY.match(k)}
        if gpio:
            with self._lock:
                raw = self._pending_gpio.pop(mac, None)
            if raw is not None:
                self._announce(mac, device_topic, {**raw, "gpio": gpio})
        self._handle_powers(mac, obj)

    def _handle_powers(self, mac: str, obj: dict[str, Any]) -> None:
        reported = False
        for key, raw_value in obj.items():
            index = self._index_for(mac, key)
            if index is None:
                continue
            value = parse_power(raw_value)
            if value is not None:
                self._emit_state(mac, index, value)
                reported = True
        if reported:
            self._release_online(mac)

    def handle_tele_state(self, topic: str, payload: str) -> None:
        parts = topic.split("/")
        mac = self._mac_for_topic(parts[1]) if len(parts) == 3 else None
        obj = _loads_object(payload)
        if mac is None or obj is None:
            return
        self._handle_powers(mac, obj)

    def handle_lwt(self, topic: str, payload: str) -> None:
        parts = topic.split("/")
        if len(parts) != 3:
            return
        s = (payload or "").strip().lower()
        if s not in ("online", "offline"):
            return
        # LWT is retained and may arrive before the discovery message.
        mac = self._mac_for_topic(parts[1])
        with self._lock:
            self._lwt_by_topic[parts[1]] = s == "online"
            if mac is not None:
                self._pending_online.discard(mac)
        if mac is not None:
            self._emit_availability(mac, s == "online")

    def send_power(self, native_id: str, endpoint_index: int, value: str) -> None:
        device_topic = self.topic_for(native_id)
        capability = self.capability_for(native_id)
        if device_topic is None or capability is None:
            raise UnknownDevice(f"no Tasmota topic known for {native_id}")
        channel = capability.channel_for(endpoint_index)
        # POWER1 addresses the only relay on single-relay firmware as well.
        self.command(device_topic, f"POWER{channel}", value)
        _LOGGER.debug("Tasmota cmd %s/POWER%d = %s", device_topic, channel, value)
