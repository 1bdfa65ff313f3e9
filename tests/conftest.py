"""
Shared fakes for bridge tests.
"""

from typing import Any

import pytest

from z2m_relay_bridge.engine import BridgeEngine
from z2m_relay_bridge.mqtt_client import MqttStatus
from z2m_relay_bridge.settings import default_bridge_config


class RecordingPublisher:
    """Collects publish(suffix, payload, retain) calls."""

    def __init__(self):
        self.calls: list[tuple[str, Any, bool]] = []

    def __call__(self, suffix: str, payload: Any, retain: bool) -> None:
        self.calls.append((suffix, payload, retain))

    def topics(self) -> list[str]:
        return [c[0] for c in self.calls]

    def to(self, suffix: str) -> list[Any]:
        return [c[1] for c in self.calls if c[0] == suffix]

    def clear(self) -> None:
        self.calls.clear()


class RecordingNative:
    def __init__(self):
        self.commands: list[tuple[str, int, str]] = []

    def __call__(self, native_id: str, endpoint_index: int, value: str) -> None:
        self.commands.append((native_id, endpoint_index, value))


class FakeMqtt:
    """Stands in for MqttClient: records publishes, dispatches injected messages."""

    def __init__(self):
        self.published: list[tuple[str, Any, bool]] = []
        self.subscriptions: list[tuple[str, Any]] = []
        self.connected = False

    def publish(self, topic: str, payload: Any, *, retain: bool = False, qos: int = 0) -> None:
        self.published.append((topic, payload, retain))

    def subscribe(self, topic: str, handler=None, *, qos: int = 0) -> None:
        self.subscriptions.append((topic, handler))

    def set_connect_handler(self, handler) -> None:
        self.connect_handler = handler

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def status(self) -> MqttStatus:
        return MqttStatus(connected=self.connected, last_error=None)


MAC_A = "600194CC5E44"
MAC_B = "600194CC5E45"


def tasmota_config(mac: str = MAC_A, name: str = "Kitchen", relays: int = 1, **extra: Any) -> dict[str, Any]:
    rl = [1] * relays + [0] * max(0, 8 - relays)
    cfg = {"mac": mac, "dn": name, "t": f"tasmota_{mac[-6:]}", "md": "Sonoff Basic", "sw": "13.2.0", "rl": rl}
    cfg.update(extra)
    return cfg


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def native():
    return RecordingNative()


@pytest.fixture
def engine(publisher, native):
    return BridgeEngine(
        publish=publisher,
        send_native=native,
        cfg=default_bridge_config(),
        date_code="20260101",
    )
