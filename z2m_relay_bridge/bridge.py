from __future__ import annotations

import asyncio
import logging
from typing import Any

from .description import bridge_info, coordinator_entry
from .registry import DeviceRegistry
from .settings import BridgeConfig
from .sync import Publish, availability_payload

_LOGGER = logging.getLogger("z2m_bridge.bridge")


class BridgePublisher:
    """Publishes the virtual network: bridge/info, device list and bridge state."""

    def __init__(self, registry: DeviceRegistry, publish: Publish, cfg: BridgeConfig, *, debug: bool = False) -> None:
        self._registry = registry
        self._publish = publish
        self._cfg = cfg
        self._debug = debug
        self._task: asyncio.Task | None = None

    def device_list(self) -> list[dict[str, Any]]:
        return [coordinator_entry(self._cfg)] + [d.description for d in self._registry.devices()]

    def publish_topology(self) -> None:
        devices = self.device_list()
        self._publish("bridge/info", bridge_info(self._cfg, debug=self._debug), True)
        self._publish("bridge/devices", devices, True)
        self._publish("bridge/groups", [], True)
        self._publish("bridge/extensions", [], True)
        self._publish("bridge/state", {"state": "online"}, True)
        _LOGGER.debug("Bridge topics published with %d devices (including coordinator)", len(devices))

    async def _refresh_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                self.publish_topology()
            except Exception:
                _LOGGER.exception("Periodic bridge refresh failed")

    def start_periodic(self, interval_s: float) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._refresh_loop(interval_s))

    @property
    def periodic_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop_periodic(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def shutdown(self) -> None:
        self._publish("bridge/state", {"state": "offline"}, True)
        devices = self._registry.devices()
        for dev in devices:
            self._publish(f"{dev.display_name}/availability", availability_payload(False), True)
        _LOGGER.info("Bridge offline, %d device(s) marked unavailable", len(devices))
