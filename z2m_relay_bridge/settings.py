from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    username: str
    password: str
    client_id: str


@dataclass(frozen=True)
class TasmotaConfig:
    base_topic: str
    request_gpio: bool


@dataclass(frozen=True)
class BridgeConfig:
    base_topic: str
    version: str
    commit: str
    coordinator_ieee: str
    coordinator_model: str
    coordinator_vendor: str
    coordinator_description: str
    vendor: str
    refresh_interval_s: float
    startup_delay_s: float


@dataclass(frozen=True)
class Settings:
    mqtt: MqttConfig
    tasmota: TasmotaConfig
    bridge: BridgeConfig
    debug: bool


def read_options() -> dict[str, Any]:
    path = os.environ.get("Z2M_BRIDGE_OPTIONS", "/data/options.json")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}


def default_bridge_config(**overrides: Any) -> BridgeConfig:
    return load_settings({"bridge": overrides}).bridge


def load_settings(options: dict[str, Any]) -> Settings:
    def _read_float(raw: dict[str, Any], key: str, default: float) -> float:
        try:
            v = raw.get(key)
            if v is None:
                return float(default)
            return float(v)
        except Exception:
            return float(default)

    mqtt_raw = options.get("mqtt") or {}
    mqtt = MqttConfig(
        host=str(mqtt_raw.get("host") or "core-mosquitto"),
        port=int(mqtt_raw.get("port") or 1883),
        username=str(mqtt_raw.get("username") or ""),
        password=str(mqtt_raw.get("password") or ""),
        client_id=str(mqtt_raw.get("client_id") or "tasmota-z2m-bridge"),
    )

    tasmota_raw = options.get("tasmota") or {}
    tasmota = TasmotaConfig(
        base_topic=str(tasmota_raw.get("base_topic") or "tasmota").strip("/"),
        request_gpio=bool(tasmota_raw.get("request_gpio", True)),
    )

    bridge_raw = options.get("bridge") or {}
    vendor = str(bridge_raw.get("vendor") or "Tasmota")
    bridge = BridgeConfig(
        base_topic=str(bridge_raw.get("base_topic") or "zigbee2mqtt").strip("/"),
        version=str(bridge_raw.get("version") or "2.7.1"),
        commit=str(bridge_raw.get("commit") or "tasmota-bridge"),
        coordinator_ieee=str(bridge_raw.get("coordinator_ieee") or "0x00dead0beef0babe").lower(),
        coordinator_model=str(bridge_raw.get("coordinator_model") or f"{vendor} Bridge"),
        coordinator_vendor=str(bridge_raw.get("coordinator_vendor") or vendor),
        coordinator_description=str(
            bridge_raw.get("coordinator_description") or f"{vendor} to Zigbee2MQTT Virtual Bridge Coordinator"
        ),
        vendor=vendor,
        refresh_interval_s=max(5.0, _read_float(bridge_raw, "refresh_interval_s", 60.0)),
        startup_delay_s=max(0.0, _read_float(bridge_raw, "startup_delay_s", 2.0)),
    )

    return Settings(
        mqtt=mqtt,
        tasmota=tasmota,
        bridge=bridge,
        debug=bool(options.get("debug") or False),
    )
