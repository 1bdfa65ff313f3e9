from __future__ import annotations

import datetime
from typing import Any

from .capability import Capability
from .identity import to_ieee_address, to_network_address
from .settings import BridgeConfig

ONOFF_CLUSTERS = ["genBasic", "genIdentify", "genOnOff"]
LINKQUALITY_MAX = 255


def today_date_code() -> str:
    return datetime.date.today().strftime("%Y%m%d")


def _switch_expose(prop: str, endpoint: str | None) -> dict[str, Any]:
    feature: dict[str, Any] = {
        "access": 7,  # read/write/publish
        "description": "On/off state of the switch",
        "label": "State",
        "name": "state",
        "property": prop,
        "type": "binary",
        "value_off": "OFF",
        "value_on": "ON",
        "value_toggle": "TOGGLE",
    }
    expose: dict[str, Any] = {"type": "switch", "features": [feature]}
    if endpoint:
        feature["endpoint"] = endpoint
        expose["endpoint"] = endpoint
    return expose


def _linkquality_expose() -> dict[str, Any]:
    return {
        "access": 1,
        "category": "diagnostic",
        "description": "Link quality (signal strength)",
        "label": "Linkquality",
        "name": "linkquality",
        "property": "linkquality",
        "type": "numeric",
        "unit": "lqi",
        "value_max": LINKQUALITY_MAX,
        "value_min": 0,
    }


def exposes_for(capability: Capability) -> list[dict[str, Any]]:
    ids = capability.endpoint_ids
    out = [
        _switch_expose(prop, ids[i] if ids else None)
        for i, prop in enumerate(capability.endpoints)
    ]
    out.append(_linkquality_expose())
    return out


def endpoints_for(capability: Capability) -> dict[str, Any]:
    ids = capability.endpoint_ids
    out: dict[str, Any] = {}
    for i in range(capability.relay_count):
        ep: dict[str, Any] = {
            "bindings": [],
            "clusters": {"input": list(ONOFF_CLUSTERS), "output": []},
            "configured_reportings": [],
            "scenes": [],
        }
        if ids:
            ep["name"] = ids[i]
        out[str(i + 1)] = ep
    return out


def device_description(
    *,
    native_id: str,
    display_name: str,
    capability: Capability,
    vendor: str,
    model: str | None = None,
    firmware: str | None = None,
    date_code: str | None = None,
) -> dict[str, Any]:
    """Build the ``bridge/devices`` entry for one relay device.

    The interview fields are always reported as completed: there is no real
    Zigbee handshake behind the emulated device.
    """
    model = model or "Generic"
    return {
        "ieee_address": to_ieee_address(native_id),
        "type": "Router",
        "network_address": to_network_address(native_id),
        "supported": True,
        "friendly_name": display_name,
        "disabled": False,
        "definition": {
            "model": model,
            "vendor": vendor,
            "description": f"{vendor} {model if model != 'Generic' else 'Device'}",
            "exposes": exposes_for(capability),
            "options": [],
            "supports_ota": False,
            "source": "native",
        },
        "power_source": "Mains (single phase)",
        "model_id": model,
        "manufacturer": vendor,
        "endpoints": endpoints_for(capability),
        "interview_completed": True,
        "interviewing": False,
        "interview_state": "SUCCESSFUL",
        "software_build_id": firmware or "1.0.0",
        "date_code": date_code or today_date_code(),
    }


def coordinator_entry(cfg: BridgeConfig) -> dict[str, Any]:
    return {
        "disabled": False,
        "friendly_name": "Coordinator",
        "ieee_address": cfg.coordinator_ieee,
        "interview_completed": True,
        "interview_state": "SUCCESSFUL",
        "interviewing": False,
        "network_address": 0,
        "supported": True,
        "type": "Coordinator",
        "definition": {
            "model": cfg.coordinator_model,
            "vendor": cfg.coordinator_vendor,
            "description": cfg.coordinator_description,
        },
    }


def bridge_info(cfg: BridgeConfig, *, debug: bool = False) -> dict[str, Any]:
    log_level = "debug" if debug else "error"
    adapter = f"{cfg.vendor.lower()}-bridge"
    return {
        "version": cfg.version,
        "commit": cfg.commit,
        "coordinator": {
            "ieee_address": cfg.coordinator_ieee,
            "type": adapter,
            "meta": {
                "revision": 20230507,
                "maintrel": 1,
                "majorrel": 2,
                "minorrel": 7,
                "product": 1,
                "transportrev": 2,
            },
        },
        "zigbee_herdsman": {"version": "7.0.4"},
        "zigbee_herdsman_converters": {"version": "25.83.1"},
        "network": {
            "channel": 15,
            "extended_pan_id": cfg.coordinator_ieee,
            "pan_id": 815,
        },
        "log_level": log_level,
        "permit_join": False,
        "restart_required": False,
        "config": {
            "advanced": {
                "output": "json",
                "legacy_api": False,
                "legacy_availability_payload": False,
                "cache_state": True,
                "cache_state_persistent": True,
                "cache_state_send_on_startup": True,
                "elapsed": False,
                "log_level": log_level,
                "pan_id": 6754,
                "channel": 15,
                "transmit_power": 20,
            },
            "availability": {
                "active": {"timeout": 10},
                "passive": {"timeout": 1500},
                "enabled": True,
            },
            "devices": {},
            "groups": {},
            "homeassistant": {"enabled": False},
            "mqtt": {"base_topic": cfg.base_topic, "server": "mqtt://localhost", "version": 4},
            "serial": {"adapter": adapter, "port": "virtual"},
            "frontend": {"enabled": True, "package": "zigbee2mqtt-frontend", "port": 8080},
        },
        "mqtt": {"server": "mqtt://localhost", "version": 4},
    }
