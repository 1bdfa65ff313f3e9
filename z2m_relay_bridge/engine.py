from __future__ import annotations

import logging
from typing import Any

from .bridge import BridgePublisher
from .capability import derive_capability
from .commands import CommandTranslator, SendNative
from .description import device_description
from .errors import BridgeError, MalformedInput
from .identity import normalize
from .registry import Device, DeviceRegistry
from .settings import BridgeConfig
from .sync import Publish, StateSynchronizer

_LOGGER = logging.getLogger("z2m_bridge.engine")


def display_names_for(native_id: str, raw: dict[str, Any], vendor: str) -> list[str]:
    """Candidate display names, preferred first.

    The configured name, then the device topic, then ``<vendor>_<id>``.
    Unconfigured Tasmota devices all announce the same default name.
    """
    out: list[str] = []
    for keys in (("dn", "name"), ("t", "topic")):
        for key in keys:
            v = str(raw.get(key) or "").strip()
            if v:
                if v not in out:
                    out.append(v)
                break
    fallback = f"{vendor}_{native_id}"
    if fallback not in out:
        out.append(fallback)
    return out


class BridgeEngine:
    """Owns the device registry and routes native and Z2M events through it.

    Handlers are expected to be called one at a time from a single thread
    (the asyncio loop in the service); the registry lock only guards against
    misuse from other threads.
    """

    def __init__(
        self,
        *,
        publish: Publish,
        send_native: SendNative,
        cfg: BridgeConfig,
        debug: bool = False,
        date_code: str | None = None,
    ) -> None:
        self.registry = DeviceRegistry()
        self.cfg = cfg
        self.sync = StateSynchronizer(self.registry, publish)
        self.commands = CommandTranslator(self.registry, send_native)
        self.bridge = BridgePublisher(self.registry, publish, cfg, debug=debug)
        self._date_code = date_code
        self.initialized = False

    def on_discovery(self, native_id: str, raw: dict[str, Any]) -> Device | None:
        try:
            if not isinstance(raw, dict):
                raise MalformedInput("discovery payload must be an object")
            nid = normalize(native_id or raw.get("mac") or "")
            if nid in self.registry:
                return None
            capability = derive_capability(raw)
            candidates = display_names_for(nid, raw, self.cfg.vendor)
            # A name taken by every candidate is rejected by the registry.
            name = next((n for n in candidates if self.registry.find_by_display_name(n) is None), candidates[0])
            if name != candidates[0]:
                _LOGGER.info("Display name %r already used, %s registered as %r", candidates[0], nid, name)
            model = str(raw.get("md") or "") or None
            firmware = str(raw.get("sw") or "") or None
            description = device_description(
                native_id=nid,
                display_name=name,
                capability=capability,
                vendor=self.cfg.vendor,
                model=model,
                firmware=firmware,
                date_code=self._date_code,
            )
            reg = self.registry.register(nid, name, capability, description, model=model, firmware=firmware)
        except BridgeError as e:
            _LOGGER.warning("Discovery for %s skipped: %s", native_id or raw, e)
            return None

        if not reg.created:
            return None
        dev = reg.device
        _LOGGER.info(
            "Discovered %s (%s) - Model: %s, Version: %s, Relays: %d",
            dev.display_name,
            nid,
            model,
            firmware,
            capability.relay_count,
        )
        if self.initialized:
            self.bridge.publish_topology()
        return dev

    def on_state_change(self, native_id: str, endpoint_index: int, value: bool) -> bool:
        try:
            nid = normalize(native_id)
        except MalformedInput as e:
            _LOGGER.warning("State event dropped: %s", e)
            return False
        return self.sync.on_state_change(nid, endpoint_index, value)

    def on_availability_change(self, native_id: str, value: bool) -> bool:
        try:
            nid = normalize(native_id)
        except MalformedInput as e:
            _LOGGER.warning("Availability event dropped: %s", e)
            return False
        return self.sync.on_availability_change(nid, value)

    def on_command(self, display_name: str, payload: Any) -> list[tuple[int, str]]:
        return self.commands.on_command(display_name, payload)

    def on_property_command(self, display_name: str, prop: str, payload: Any) -> list[tuple[int, str]]:
        return self.commands.on_property_command(display_name, prop, payload)

    def start(self, refresh_interval_s: float | None = None) -> None:
        """Publish the devices collected so far and begin periodic refreshes.

        Must run inside the event loop when a refresh interval is used.
        """
        self.bridge.publish_topology()
        self.initialized = True
        if refresh_interval_s:
            self.bridge.start_periodic(refresh_interval_s)
        _LOGGER.info("Bridge initialized, %d device(s) registered", len(self.registry))

    async def shutdown(self) -> None:
        await self.bridge.stop_periodic()
        self.bridge.shutdown()
        self.initialized = False
