"""
Tests for the bridge engine: discovery, state sync, commands and bridge topics.
"""

import asyncio

import pytest

from conftest import MAC_A, MAC_B, tasmota_config

BRIDGE_TOPICS = ["bridge/info", "bridge/devices", "bridge/groups", "bridge/extensions", "bridge/state"]


class TestDiscovery:
    def test_idempotent(self, engine):
        first = engine.on_discovery(MAC_A, tasmota_config())
        second = engine.on_discovery(MAC_A, tasmota_config(name="Renamed"))
        assert first is not None
        assert second is None
        assert len(engine.registry) == 1
        assert engine.registry.get(MAC_A).display_name == "Kitchen"

    def test_mac_formats_are_one_device(self, engine):
        engine.on_discovery("60:01:94:CC:5E:44", tasmota_config())
        engine.on_discovery(MAC_A, tasmota_config())
        assert len(engine.registry) == 1

    def test_mac_taken_from_payload(self, engine):
        dev = engine.on_discovery("", tasmota_config())
        assert dev.native_id == MAC_A

    def test_rejected_devices_never_registered(self, engine):
        assert engine.on_discovery(MAC_A, tasmota_config(rl=[0] * 8)) is None
        assert engine.on_discovery(MAC_B, {"mac": MAC_B, "dn": "x", "gpio": list(range(224, 252)) + [256]}) is None
        assert len(engine.registry) == 0

    def test_malformed_payload_dropped(self, engine):
        assert engine.on_discovery(MAC_A, "not a dict") is None
        assert engine.on_discovery("zz", {"rl": [1]}) is None
        assert len(engine.registry) == 0

    def test_display_name_fallbacks(self, engine):
        dev = engine.on_discovery(MAC_A, {"mac": MAC_A, "t": "tasmota_5E44", "rl": [1]})
        assert dev.display_name == "tasmota_5E44"
        dev = engine.on_discovery(MAC_B, {"mac": MAC_B, "rl": [1]})
        assert dev.display_name == f"Tasmota_{MAC_B}"

    def test_default_name_collision_falls_back_to_topic(self, engine):
        engine.on_discovery(MAC_A, tasmota_config(name="Tasmota"))
        dev = engine.on_discovery(MAC_B, tasmota_config(mac=MAC_B, name="Tasmota"))
        assert dev.display_name == "tasmota_CC5E45"
        assert engine.registry.find_by_display_name("Tasmota").native_id == MAC_A

    def test_collision_without_topic_falls_back_to_id(self, engine):
        engine.on_discovery(MAC_A, {"mac": MAC_A, "dn": "Lamp", "rl": [1]})
        dev = engine.on_discovery(MAC_B, {"mac": MAC_B, "dn": "Lamp", "rl": [1]})
        assert dev.display_name == f"Tasmota_{MAC_B}"

    def test_every_candidate_taken_rejected(self, engine):
        taken = f"Tasmota_{MAC_B}"
        engine.on_discovery(MAC_A, {"mac": MAC_A, "dn": taken, "rl": [1]})
        assert engine.on_discovery(MAC_B, {"mac": MAC_B, "dn": taken, "t": taken, "rl": [1]}) is None
        assert len(engine.registry) == 1

    def test_no_publish_before_start(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        assert publisher.calls == []

    def test_new_device_after_start_republishes_topology(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.start()
        publisher.clear()
        engine.on_discovery(MAC_B, tasmota_config(mac=MAC_B, name="Garage"))
        assert publisher.topics() == BRIDGE_TOPICS
        devices = publisher.to("bridge/devices")[0]
        assert [d["friendly_name"] for d in devices] == ["Coordinator", "Kitchen", "Garage"]

    def test_known_device_rediscovered_publishes_nothing(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.start()
        publisher.clear()
        engine.on_discovery(MAC_A, tasmota_config())
        assert publisher.calls == []


class TestTopology:
    def test_publish_order_and_retain(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.start()
        assert publisher.topics() == BRIDGE_TOPICS
        assert all(retain for _, _, retain in publisher.calls)
        assert publisher.to("bridge/groups") == [[]]
        assert publisher.to("bridge/extensions") == [[]]
        assert publisher.to("bridge/state") == [{"state": "online"}]
        devices = publisher.to("bridge/devices")[0]
        assert devices[0]["type"] == "Coordinator"
        assert devices[1]["ieee_address"] == "0x0000600194cc5e44"
        assert engine.initialized is True

    @pytest.mark.asyncio
    async def test_periodic_refresh_and_cancel(self, engine, publisher):
        engine.start(refresh_interval_s=0.01)
        assert engine.bridge.periodic_running
        await asyncio.sleep(0.1)
        assert len(publisher.to("bridge/devices")) >= 2
        await engine.shutdown()
        assert not engine.bridge.periodic_running
        publisher.clear()
        await asyncio.sleep(0.05)
        assert "bridge/devices" not in publisher.topics()


class TestStateSync:
    def test_dedup(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        assert engine.on_state_change(MAC_A, 0, True) is True
        assert engine.on_state_change(MAC_A, 0, True) is False
        assert publisher.calls == [("Kitchen", {"state": "ON", "linkquality": 255}, False)]

    def test_snapshot_contains_every_endpoint(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config(relays=2))
        engine.on_state_change(MAC_A, 0, True)
        engine.on_state_change(MAC_A, 1, False)
        snapshots = publisher.to("Kitchen")
        assert len(snapshots) == 2
        assert snapshots[1] == {"state_l1": "ON", "state_l2": "OFF", "linkquality": 255}

    def test_unknown_endpoint_renders_off(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config(relays=2))
        engine.on_state_change(MAC_A, 1, True)
        assert publisher.to("Kitchen") == [{"state_l1": "OFF", "state_l2": "ON", "linkquality": 255}]

    def test_unknown_device_ignored(self, engine, publisher):
        assert engine.on_state_change(MAC_A, 0, True) is False
        assert engine.on_availability_change(MAC_A, True) is False
        assert publisher.calls == []

    def test_out_of_range_endpoint_dropped(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        assert engine.on_state_change(MAC_A, 3, True) is False
        assert publisher.calls == []

    def test_separators_in_native_id(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        assert engine.on_state_change("60:01:94:cc:5e:44", 0, True) is True

    def test_availability_publishes_marker_then_snapshot(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.on_state_change(MAC_A, 0, True)
        publisher.clear()
        assert engine.on_availability_change(MAC_A, False) is True
        assert publisher.calls == [
            ("Kitchen/availability", {"state": "offline"}, True),
            ("Kitchen", {"state": "ON", "linkquality": 255}, False),
        ]
        publisher.clear()
        assert engine.on_availability_change(MAC_A, False) is False
        assert publisher.calls == []


class TestCommands:
    def test_toggle_resolves_against_last_state(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.on_state_change(MAC_A, 0, True)
        assert engine.on_command("Kitchen", '{"state": "TOGGLE"}') == [(0, "OFF")]
        assert native.commands == [(MAC_A, 0, "OFF")]

    def test_toggle_unknown_state_turns_on(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.on_command("Kitchen", '{"state": "toggle"}')
        assert native.commands == [(MAC_A, 0, "ON")]

    def test_translator_does_not_touch_state(self, engine):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.on_command("Kitchen", '{"state": "ON"}')
        assert engine.registry.get(MAC_A).last_states == [None]

    def test_multi_relay_subset(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config(relays=3))
        engine.on_command("Kitchen", '{"state_l1": "ON", "state_l3": "OFF", "brightness": 10}')
        assert native.commands == [(MAC_A, 0, "ON"), (MAC_A, 2, "OFF")]

    def test_multi_relay_ignores_bare_state(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config(relays=2))
        assert engine.on_command("Kitchen", '{"state": "ON"}') == []
        assert native.commands == []

    def test_bad_value_skipped(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config(relays=2))
        engine.on_command("Kitchen", '{"state_l1": "BLINK", "state_l2": "ON"}')
        assert native.commands == [(MAC_A, 1, "ON")]

    def test_bare_payload(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.on_command("Kitchen", "off")
        assert native.commands == [(MAC_A, 0, "OFF")]

    def test_property_topic(self, engine, native):
        engine.on_discovery(MAC_A, tasmota_config(relays=2))
        engine.on_property_command("Kitchen", "state_l2", "ON")
        assert native.commands == [(MAC_A, 1, "ON")]

    @pytest.mark.parametrize("payload", ["", "{not json", "[1, 2]", "DIM"])
    def test_malformed_dropped(self, engine, native, payload):
        engine.on_discovery(MAC_A, tasmota_config())
        assert engine.on_command("Kitchen", payload) == []
        assert native.commands == []

    def test_unknown_device_dropped(self, engine, native):
        assert engine.on_command("Nobody", '{"state": "ON"}') == []
        assert native.commands == []


class TestShutdown:
    @pytest.mark.asyncio
    async def test_sweep(self, engine, publisher):
        engine.on_discovery(MAC_A, tasmota_config())
        engine.on_discovery(MAC_B, tasmota_config(mac=MAC_B, name="Garage"))
        engine.on_availability_change(MAC_A, True)
        engine.start()
        publisher.clear()
        await engine.shutdown()
        assert publisher.calls == [
            ("bridge/state", {"state": "offline"}, True),
            ("Kitchen/availability", {"state": "offline"}, True),
            ("Garage/availability", {"state": "offline"}, True),
        ]
        assert engine.initialized is False
