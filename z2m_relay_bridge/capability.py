from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from .errors import CapabilityRejected, MalformedInput, UnsupportedCommand

_LOGGER = logging.getLogger("z2m_bridge.capability")

MAX_RELAYS = 28

# Tasmota GPIO role codes: Relay1..Relay28 and the inverted Relay_i1..Relay_i28.
RELAY_CODES = range(224, 252)
RELAY_INV_CODES = range(256, 284)

# Tasmota discovery "rl" entry for a plain relay (0 none, 2 light, 3 shutter).
RL_RELAY = 1


@dataclass(frozen=True)
class Capability:
    """Relay endpoints of a device.

    ``channels[i]`` is the Tasmota POWER channel (1-based) behind
    ``endpoints[i]``. Relays need not occupy POWER1..N: lights and shutters
    share the same channel numbering.
    """

    relay_count: int
    endpoints: tuple[str, ...]
    channels: tuple[int, ...]

    @property
    def multi(self) -> bool:
        return self.relay_count > 1

    @property
    def endpoint_ids(self) -> tuple[str, ...]:
        if not self.multi:
            return ()
        return tuple(f"l{i}" for i in range(1, self.relay_count + 1))

    def channel_for(self, index: int) -> int:
        if index < 0 or index >= self.relay_count:
            raise UnsupportedCommand(f"endpoint {index} outside 0..{self.relay_count - 1}")
        return self.channels[index]

    def index_for_channel(self, channel: int) -> int | None:
        try:
            return self.channels.index(channel)
        except ValueError:
            return None


@dataclass(frozen=True)
class ExplicitRelayList:
    """Relay flags as announced in Tasmota discovery (``rl``)."""

    flags: tuple[Any, ...]

    def channels(self) -> tuple[int, ...]:
        # Position in "rl" is the POWER channel.
        return tuple(i + 1 for i, f in enumerate(self.flags) if f == RL_RELAY)

    def relay_count(self) -> int:
        return len(self.channels())


@dataclass(frozen=True)
class GpioRoleScan:
    """GPIO role assignments; roles in the two relay ranges are counted."""

    codes: tuple[int, ...]

    @staticmethod
    def from_raw(raw: Any) -> "GpioRoleScan":
        if isinstance(raw, dict):
            values = list(raw.values())
        elif isinstance(raw, (list, tuple)):
            values = list(raw)
        else:
            raise MalformedInput("gpio assignments must be a mapping or a list")
        codes: list[int] = []
        for v in values:
            code = _gpio_code(v)
            if code is not None:
                codes.append(code)
        return GpioRoleScan(codes=tuple(codes))

    def channels(self) -> tuple[int, ...]:
        out: list[int] = []
        for c in self.codes:
            if c in RELAY_CODES:
                out.append(c - RELAY_CODES.start + 1)
            elif c in RELAY_INV_CODES:
                out.append(c - RELAY_INV_CODES.start + 1)
        return tuple(sorted(out))

    def relay_count(self) -> int:
        return len(self.channels())


RelaySource = Union[ExplicitRelayList, GpioRoleScan]


def _gpio_code(v: Any) -> int | None:
    # Accepts 224, "224" and the GPIO command response form {"224": "Relay1"}.
    if isinstance(v, dict):
        if len(v) != 1:
            return None
        v = next(iter(v.keys()))
    if isinstance(v, bool):
        return None
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return None


def strategy_for(raw: dict[str, Any]) -> RelaySource:
    if not isinstance(raw, dict):
        raise MalformedInput("device configuration must be an object")
    rl = raw.get("rl")
    if rl is not None:
        if not isinstance(rl, (list, tuple)):
            raise MalformedInput("'rl' must be a list")
        return ExplicitRelayList(flags=tuple(rl))
    gpio = raw.get("gpio")
    if gpio is not None:
        return GpioRoleScan.from_raw(gpio)
    raise MalformedInput("device configuration carries neither 'rl' nor 'gpio'")


def endpoint_names(relay_count: int) -> tuple[str, ...]:
    if relay_count == 1:
        return ("state",)
    return tuple(f"state_l{i}" for i in range(1, relay_count + 1))


def capability_for(relay_count: int, channels: tuple[int, ...] | None = None) -> Capability:
    """Capability for ``relay_count`` relays on ``channels`` (POWER1..N when omitted)."""
    if relay_count < 1 or relay_count > MAX_RELAYS:
        raise CapabilityRejected(f"{relay_count} relay(s), must have 1-{MAX_RELAYS}")
    if channels is None:
        channels = tuple(range(1, relay_count + 1))
    elif len(channels) != relay_count:
        raise CapabilityRejected(f"{len(channels)} channel(s) for {relay_count} relay(s)")
    return Capability(relay_count=relay_count, endpoints=endpoint_names(relay_count), channels=tuple(channels))


def derive_capability(raw: dict[str, Any]) -> Capability:
    source = strategy_for(raw)
    channels = source.channels()
    _LOGGER.debug("%s -> relay channel(s) %s", type(source).__name__, list(channels))
    return capability_for(len(channels), channels)
