from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from .capability import Capability
from .errors import CapabilityRejected, UnknownDevice, UnsupportedCommand


@dataclass
class Device:
    native_id: str
    display_name: str
    capability: Capability
    description: dict[str, Any]
    model: str | None = None
    firmware: str | None = None
    last_states: list[bool | None] = field(default_factory=list)
    last_available: bool | None = None

    def __post_init__(self) -> None:
        if not self.last_states:
            self.last_states = [None] * self.capability.relay_count

    @property
    def ieee_address(self) -> str:
        return str(self.description.get("ieee_address") or "")


@dataclass(frozen=True)
class Registration:
    created: bool
    device: Device


@dataclass(frozen=True)
class Update:
    changed: bool
    device: Device


class DeviceRegistry:
    """Known relay devices keyed by their hardware id.

    Entries are created once and never removed. Only ``last_states`` and
    ``last_available`` change after registration.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._devices: dict[str, Device] = {}
        self._by_name: dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, native_id: object) -> bool:
        with self._lock:
            return native_id in self._devices

    def register(
        self,
        native_id: str,
        display_name: str,
        capability: Capability,
        description: dict[str, Any],
        *,
        model: str | None = None,
        firmware: str | None = None,
    ) -> Registration:
        with self._lock:
            existing = self._devices.get(native_id)
            if existing is not None:
                return Registration(created=False, device=existing)
            owner = self._by_name.get(display_name)
            if owner is not None:
                raise CapabilityRejected(f"display name {display_name!r} already used by {owner}")
            dev = Device(
                native_id=native_id,
                display_name=display_name,
                capability=capability,
                description=description,
                model=model,
                firmware=firmware,
            )
            self._devices[native_id] = dev
            self._by_name[display_name] = native_id
            return Registration(created=True, device=dev)

    def get(self, native_id: str) -> Device | None:
        with self._lock:
            return self._devices.get(native_id)

    def find_by_display_name(self, name: str) -> Device | None:
        with self._lock:
            nid = self._by_name.get(name)
            return self._devices.get(nid) if nid is not None else None

    def devices(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())

    def _require(self, native_id: str) -> Device:
        dev = self._devices.get(native_id)
        if dev is None:
            raise UnknownDevice(native_id)
        return dev

    def update_state(self, native_id: str, endpoint_index: int, value: bool) -> Update:
        with self._lock:
            dev = self._require(native_id)
            if endpoint_index < 0 or endpoint_index >= dev.capability.relay_count:
                raise UnsupportedCommand(
                    f"{dev.display_name}: endpoint {endpoint_index} outside 0..{dev.capability.relay_count - 1}"
                )
            value = bool(value)
            if dev.last_states[endpoint_index] is value:
                return Update(changed=False, device=dev)
            dev.last_states[endpoint_index] = value
            return Update(changed=True, device=dev)

    def update_availability(self, native_id: str, value: bool) -> Update:
        with self._lock:
            dev = self._require(native_id)
            value = bool(value)
            if dev.last_available is value:
                return Update(changed=False, device=dev)
            dev.last_available = value
            return Update(changed=True, device=dev)
